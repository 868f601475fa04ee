# reqgraph/graph/neo4j_connector.py
from neo4j import GraphDatabase, unit_of_work
from neo4j.exceptions import Neo4jError, DriverError, ServiceUnavailable, SessionExpired
from typing import List, Dict, Any, Optional, Tuple
import logging

from reqgraph.errors import GraphWriteError, ServiceUnavailableError

logger = logging.getLogger(__name__)

Statement = Tuple[str, Dict[str, Any]]


class Neo4jConnector:
    """Connector für Neo4j Graph-Datenbank Operationen."""

    def __init__(
        self,
        uri: str,
        user: str,
        password: str,
        database: Optional[str] = None,
        transaction_timeout: float = 30.0,
        connection_timeout: float = 30.0,
    ):
        self.driver = GraphDatabase.driver(
            uri,
            auth=(user, password),
            connection_timeout=connection_timeout,
            max_transaction_retry_time=transaction_timeout,
        )
        self.database = database
        self.transaction_timeout = transaction_timeout
        logger.info(f"Neo4j Verbindung hergestellt: {uri}")

    def close(self):
        """Schließt die Datenbankverbindung."""
        self.driver.close()

    def verify(self):
        """Prüft die Verbindung (wirft ServiceUnavailableError)."""
        try:
            self.driver.verify_connectivity()
        except (ServiceUnavailable, SessionExpired) as e:
            raise ServiceUnavailableError(f"Neo4j nicht erreichbar: {e}", service="neo4j") from e

    def execute_query(self, query: str, parameters: Optional[Dict] = None) -> List[Dict]:
        """Führt eine Cypher-Query aus (Auto-Commit)."""
        try:
            with self.driver.session(database=self.database) as session:
                result = session.run(query, parameters or {})
                return [record.data() for record in result]
        except (ServiceUnavailable, SessionExpired) as e:
            raise ServiceUnavailableError(f"Neo4j nicht erreichbar: {e}", service="neo4j") from e
        except (Neo4jError, DriverError) as e:
            raise GraphWriteError(f"Cypher fehlgeschlagen: {e}") from e

    def execute_write(self, statements: List[Statement]) -> List[List[Dict]]:
        """
        Führt mehrere Statements in EINER Schreibtransaktion aus.

        Returns:
            Ergebnisse pro Statement (in Reihenfolge)

        Raises:
            ServiceUnavailableError: Verbindung verloren / Datenbank nicht erreichbar
            GraphWriteError: Statement fehlgeschlagen (Transaktion zurückgerollt)
        """
        @unit_of_work(timeout=self.transaction_timeout)
        def work(tx):
            results = []
            for query, parameters in statements:
                result = tx.run(query, parameters or {})
                results.append([record.data() for record in result])
            return results

        try:
            with self.driver.session(database=self.database) as session:
                return session.execute_write(work)
        except (ServiceUnavailable, SessionExpired) as e:
            raise ServiceUnavailableError(f"Neo4j nicht erreichbar: {e}", service="neo4j") from e
        except (Neo4jError, DriverError) as e:
            raise GraphWriteError(f"Transaktion fehlgeschlagen: {e}") from e

    def clear_database(self):
        """Löscht alle Daten (nur für Entwicklung!)."""
        self.execute_query("MATCH (n) DETACH DELETE n")
        logger.warning("Datenbank wurde geleert!")
