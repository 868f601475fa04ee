# reqgraph/llm/ollama_client.py
"""
Ollama-Client mit OpenAI-kompatiblem Interface.

Die Extraktion spricht das LLM ausschließlich über
`client.chat.completions.create(...)` an, damit Ollama und OpenAI
austauschbar bleiben. Zusätzlich gibt es `complete(prompt, model, options)`
für einfache Einzel-Prompts über /api/generate.

Verbindungsfehler und Timeouts werden als ServiceUnavailableError
weitergereicht (wiederholbar, fatal für den Task).

Verwendung:
    from reqgraph.llm.ollama_client import OllamaClient

    client = OllamaClient(model="llama3.1:8b")
    response = client.chat.completions.create(
        messages=[{"role": "user", "content": "Hallo"}],
        temperature=0.0
    )
"""

import logging
import requests
from dataclasses import dataclass
from typing import List, Dict, Any, Optional

from reqgraph.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"


@dataclass
class Message:
    role: str
    content: str


@dataclass
class Choice:
    index: int
    message: Message
    finish_reason: str


@dataclass
class Usage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatCompletion:
    """OpenAI-kompatible Response-Struktur."""
    id: str
    object: str
    created: int
    model: str
    choices: List[Choice]
    usage: Usage


class ChatCompletions:
    """Wrapper für chat.completions.create()"""

    def __init__(self, client: 'OllamaClient'):
        self.client = client

    def create(
        self,
        model: str = None,
        messages: List[Dict[str, str]] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        **kwargs
    ) -> ChatCompletion:
        """
        OpenAI-kompatible chat completion.

        Args:
            model: Modellname (z.B. "llama3.1:8b")
            messages: Liste von Messages
            temperature: Sampling-Temperatur
            max_tokens: Maximale Ausgabe-Tokens

        Raises:
            ServiceUnavailableError: Ollama nicht erreichbar oder Timeout
        """
        model = model or self.client.model

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            }
        }

        data = self.client._post("/api/chat", payload)

        prompt_tokens = data.get("prompt_eval_count", 0)
        completion_tokens = data.get("eval_count", 0)
        return ChatCompletion(
            id=f"ollama-{data.get('created_at', '')}",
            object="chat.completion",
            created=0,
            model=model,
            choices=[
                Choice(
                    index=0,
                    message=Message(
                        role="assistant",
                        content=data.get("message", {}).get("content", "")
                    ),
                    finish_reason=data.get("done_reason", "stop")
                )
            ],
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens
            )
        )


class Chat:
    """Wrapper für client.chat"""

    def __init__(self, client: 'OllamaClient'):
        self.completions = ChatCompletions(client)


class OllamaClient:
    """
    Ollama-Client mit OpenAI-kompatiblem Interface.

    Unterstützt lokale LLMs wie Llama, Mistral, Qwen, etc.
    """

    def __init__(
        self,
        model: str = "llama3.1:8b",
        base_url: str = "http://localhost:11434",
        timeout: float = DEFAULT_TIMEOUT,
        check_connection: bool = True,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
    ):
        """
        Args:
            model: Standard-Modell (z.B. "llama3.1:8b", "mistral:latest")
            base_url: Ollama API URL
            timeout: HTTP-Timeout pro Anfrage in Sekunden
            check_connection: Erreichbarkeit beim Start prüfen
            embedding_model: Modell für embed() (z.B. "nomic-embed-text", 768 Dimensionen)
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.embedding_model = embedding_model
        self.chat = Chat(self)

        if check_connection:
            self._check_connection()
        logger.info(f"OllamaClient initialisiert: {model} @ {base_url}")

    def _check_connection(self):
        """Prüft ob Ollama erreichbar ist."""
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ServiceUnavailableError(
                f"Ollama nicht erreichbar unter {self.base_url}. "
                "Starte Ollama mit: ollama serve",
                service="llm",
            ) from e

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = requests.post(
                f"{self.base_url}{path}",
                json=payload,
                timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            logger.error(f"Ollama nicht erreichbar: {e}")
            raise ServiceUnavailableError(f"Ollama nicht erreichbar: {e}", service="llm") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            logger.error(f"Ollama API Fehler ({status}): {e}")
            if status >= 500 or status == 429:
                raise ServiceUnavailableError(f"Ollama API Fehler: {e}", service="llm") from e
            raise

    def is_available(self) -> bool:
        """Prüft die Erreichbarkeit ohne Exception."""
        try:
            self._check_connection()
            return True
        except ServiceUnavailableError:
            return False

    def complete(
        self,
        prompt: str,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Einfacher Prompt -> Text über /api/generate.

        Raises:
            ServiceUnavailableError: Ollama nicht erreichbar oder Timeout
        """
        payload = {
            "model": model or self.model,
            "prompt": prompt,
            "stream": False,
            "options": dict(options or {}),
        }
        data = self._post("/api/generate", payload)
        return data.get("response", "")

    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """
        Embedding-Vektor für einen Text über /api/embeddings.

        Raises:
            ServiceUnavailableError: Ollama nicht erreichbar oder Timeout
        """
        model = model or self.embedding_model
        data = self._post("/api/embeddings", {"model": model, "prompt": text})
        embedding = data.get("embedding") or []
        logger.debug(f"Embedding erzeugt: {model}, {len(text)} Zeichen, {len(embedding)} Dimensionen")
        return [float(v) for v in embedding]


class OpenAIChatAdapter:
    """
    Dünne Hülle um den OpenAI-Client.

    Übersetzt Verbindungsfehler und 5xx in ServiceUnavailableError, damit die
    Pipeline beide Provider gleich behandelt.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str = None,
        timeout: float = DEFAULT_TIMEOUT,
        embedding_model: str = "text-embedding-3-small",
    ):
        from openai import OpenAI
        self.model = model
        self.embedding_model = embedding_model
        self._client = OpenAI(api_key=api_key, timeout=timeout)
        self.chat = self
        self.completions = self

    def _call(self, method, **kwargs):
        import openai
        try:
            return method(**kwargs)
        except (openai.APIConnectionError, openai.APITimeoutError, openai.RateLimitError) as e:
            raise ServiceUnavailableError(f"OpenAI nicht erreichbar: {e}", service="llm") from e
        except openai.APIStatusError as e:
            logger.error(f"OpenAI API Fehler ({e.status_code}): {e}")
            if e.status_code >= 500:
                raise ServiceUnavailableError(f"OpenAI API Fehler: {e}", service="llm") from e
            raise

    def create(self, model: str = None, messages: List[Dict[str, str]] = None, **kwargs):
        return self._call(
            self._client.chat.completions.create,
            model=model or self.model, messages=messages, **kwargs
        )

    def complete(self, prompt: str, model: Optional[str] = None, options: Optional[Dict[str, Any]] = None) -> str:
        response = self.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            **(options or {})
        )
        return response.choices[0].message.content or ""

    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        response = self._call(
            self._client.embeddings.create, model=model or self.embedding_model, input=text
        )
        return [float(v) for v in response.data[0].embedding]


def create_llm_client(
    provider: str = "ollama",
    model: str = None,
    api_key: str = None,
    **kwargs
):
    """
    Factory-Funktion für LLM-Clients.

    Args:
        provider: "ollama" oder "openai"
        model: Modellname
        api_key: API-Key (nur für OpenAI)

    Returns:
        LLM-Client mit OpenAI-kompatiblem Interface
    """
    if provider == "ollama":
        model = model or "llama3.1:8b"
        return OllamaClient(model=model, **kwargs)

    elif provider == "openai":
        return OpenAIChatAdapter(model=model or "gpt-4o-mini", api_key=api_key,
                                 timeout=kwargs.get("timeout", DEFAULT_TIMEOUT))

    else:
        raise ValueError(f"Unbekannter Provider: {provider}")


# =============================================================================
# Test
# =============================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    print("=== Ollama Client Test ===\n")

    client = OllamaClient(model="llama3.1:8b")

    response = client.chat.completions.create(
        messages=[
            {"role": "user", "content": "Nenne eine typische nicht-funktionale Anforderung an einen Online-Shop."}
        ],
        temperature=0.0
    )
    print(f"Antwort: {response.choices[0].message.content}")
    print(f"Tokens: {response.usage.total_tokens}")
    print(f"complete(): {client.complete('Was ist 2+2? Antworte nur mit der Zahl.')}")
