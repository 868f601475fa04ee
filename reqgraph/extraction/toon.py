# reqgraph/extraction/toon.py
"""
Kompaktes tabellarisches Austauschformat (TOON) für LLM-Ein- und Ausgaben.

Spart gegenüber JSON deutlich Tokens, weil Feldnamen nur einmal pro Block
stehen:

    project: Shop
    requirements[2]{identifier,name,priority,tags}:
      REQ-001,Login,must,[auth|ui]
      REQ-002,"Export, CSV",should,
    stakeholders[2]: Kunde,Admin

Regeln:
- Tabellenblock: name[N]{f1,f2,...}: gefolgt von N eingerückten Zeilen
- Primitive Liste: name[N]: a,b,c
- Skalar: key: value
- Leere Zelle = Feld fehlt, null = None
- Listen in Zellen: [a|b|c]
- Strings mit Sonderzeichen (, " | [ ] { } \\, Zeilenumbrüche, Rand-Whitespace)
  oder die wie Zahl/Bool/null aussehen, werden in "..." gesetzt;
  eingebettete Anführungszeichen werden verdoppelt.

decode() ist bewusst tolerant und wirft nie: fehlerhafte Zeilen werden
übersprungen und als Diagnose gemeldet (decode_with_diagnostics).
"""

import re
import json
import math
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")
_HEADER_PATTERN = re.compile(r"^([A-Za-z_][A-Za-z0-9_.-]*)\[(\d*)\](?:\{([^}]*)\})?:\s*(.*)$")
_SCALAR_PATTERN = re.compile(r"^([A-Za-z_][A-Za-z0-9_.-]*):(?:\s+(.*))?$")
_INT_PATTERN = re.compile(r"^-?(?:0|[1-9]\d*)$")
_FLOAT_PATTERN = re.compile(r"^-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?$")
_FENCE_PATTERN = re.compile(r"```(\w*)[ \t]*\n(.*?)(?:```|$)", re.DOTALL)

_SPECIAL_CHARS = set(',"|[]{}\\\n\r\t')
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "\\": "\\", '"': '"'}
_REVERSE_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r", "\t": "\\t"}

INDENT = "  "


class _Absent:
    """Marker für leere Zellen (Feld fehlt)."""

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


@dataclass
class DecodeResult:
    """Best-Effort-Ergebnis plus Diagnosen zu übersprungenen Teilen."""
    data: Dict[str, Any] = field(default_factory=dict)
    diagnostics: List[str] = field(default_factory=list)
    format: str = "toon"

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    @property
    def is_empty(self) -> bool:
        return not self.data


# =============================================================================
# Encoding
# =============================================================================

def encode(data: Dict[str, Any]) -> str:
    """
    Serialisiert ein Dict in TOON.

    Werte müssen Skalare, Listen von Skalaren oder Listen von flachen Dicts sein.

    Raises:
        ValueError: ungültiger Schlüssel
        TypeError: nicht tabellarisch darstellbarer Wert
    """
    lines: List[str] = []
    for key, value in data.items():
        _check_key(key)
        if isinstance(value, (list, tuple)):
            if value and all(isinstance(v, dict) for v in value):
                lines.extend(_encode_table(key, value))
            elif any(isinstance(v, (dict, list, tuple)) for v in value):
                raise TypeError(f"'{key}': gemischte oder verschachtelte Listen nicht unterstützt")
            else:
                cells = ",".join(_encode_primitive(v) for v in value)
                lines.append(f"{key}[{len(value)}]: {cells}".rstrip())
        elif isinstance(value, dict):
            raise TypeError(f"'{key}': verschachtelte Objekte nicht unterstützt")
        else:
            lines.append(f"{key}: {_encode_primitive(value)}")
    return "\n".join(lines)


def _encode_table(name: str, rows: List[Dict[str, Any]]) -> List[str]:
    fields: List[str] = []
    for row in rows:
        for key in row:
            if key not in fields:
                _check_key(key)
                fields.append(key)

    lines = [f"{name}[{len(rows)}]{{{','.join(fields)}}}:"]
    for row in rows:
        cells = [_encode_cell(row[f]) if f in row else "" for f in fields]
        lines.append(INDENT + ",".join(cells))
    return lines


def _encode_cell(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        if any(isinstance(v, (dict, list, tuple)) for v in value):
            raise TypeError("Verschachtelte Listen in Zellen nicht unterstützt")
        return "[" + "|".join(_encode_primitive(v) for v in value) + "]"
    if isinstance(value, dict):
        raise TypeError("Objekte in Zellen nicht unterstützt")
    return _encode_primitive(value)


def _encode_primitive(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return "null"
        return repr(value)
    text = str(value)
    if _needs_quotes(text):
        return _quote(text)
    return text


def _needs_quotes(text: str) -> bool:
    if text == "" or text != text.strip():
        return True
    if any(ch in _SPECIAL_CHARS for ch in text):
        return True
    if text[0] in "#`-":
        return True
    # würde beim Dekodieren nicht als String zurückkommen
    return not isinstance(_coerce_bare(text), str)


def _quote(text: str) -> str:
    escaped = "".join(_REVERSE_ESCAPES.get(ch, ch) for ch in text)
    return '"' + escaped.replace('"', '""') + '"'


def _check_key(key: Any):
    if not isinstance(key, str) or not _KEY_PATTERN.match(key):
        raise ValueError(f"Ungültiger Feldname für TOON: {key!r}")


# =============================================================================
# Decoding
# =============================================================================

def decode(text: str) -> Dict[str, Any]:
    """Tolerantes Dekodieren, liefert nur die Daten."""
    return decode_with_diagnostics(text).data


def decode_with_diagnostics(text: str) -> DecodeResult:
    """
    Dekodiert TOON-Text und sammelt Diagnosen statt Exceptions.

    Zeilen, die nicht verstanden werden, werden übersprungen.
    """
    result = DecodeResult()
    if not isinstance(text, str):
        result.diagnostics.append(f"Eingabe ist kein String: {type(text).__name__}")
        return result

    # nur "\n" trennt Zeilen; splitlines() trennt auch an \x0c, \x85 und \u2028
    lines = [line.rstrip("\r") for line in text.split("\n")]
    i = 0
    while i < len(lines):
        raw = lines[i]
        line = raw.strip()
        i += 1

        if not line or line.startswith("#") or line.startswith("```"):
            continue

        header = _HEADER_PATTERN.match(line)
        if header:
            name, count, fields, inline = header.groups()
            declared = int(count) if count else None
            body, i = _collect_body(lines, i)

            if fields is not None:
                field_names = [f.strip() for f in fields.split(",") if f.strip()]
                rows = _decode_rows(name, field_names, body, inline, result)
                result.data.setdefault(name, [])
                if not isinstance(result.data[name], list):
                    result.diagnostics.append(f"'{name}' überschreibt einen Skalar")
                    result.data[name] = []
                result.data[name].extend(rows)
                actual = len(rows)
            else:
                items = _decode_list(name, inline, body, result)
                result.data[name] = items
                actual = len(items)

            if declared is not None and declared != actual:
                result.diagnostics.append(
                    f"'{name}': {declared} Einträge deklariert, {actual} gelesen"
                )
            continue

        scalar = _SCALAR_PATTERN.match(line)
        if scalar:
            key, value = scalar.groups()
            decoded = _decode_cell(value or "", result.diagnostics)
            if decoded is ABSENT:
                decoded = None
            result.data[key] = decoded
            continue

        result.diagnostics.append(f"Zeile {i} nicht erkannt: {line[:60]}")

    return result


def _collect_body(lines: List[str], start: int) -> Tuple[List[str], int]:
    """Sammelt Blockzeilen: eingerückt, oder unerkannt (fehlende Einrückung)."""
    body = []
    i = start
    while i < len(lines):
        raw = lines[i]
        stripped = raw.strip()
        if not stripped:
            i += 1
            if body:
                break
            continue
        if stripped.startswith("```"):
            break
        indented = raw[:1] in (" ", "\t")
        if not indented and (_HEADER_PATTERN.match(stripped) or _SCALAR_PATTERN.match(stripped)):
            break
        body.append(stripped)
        i += 1
    return body, i


def _decode_rows(
    name: str,
    fields: List[str],
    body: List[str],
    inline: str,
    result: DecodeResult,
) -> List[Dict[str, Any]]:
    rows = []
    row_lines = ([inline] if inline else []) + body
    for n, line in enumerate(row_lines, 1):
        tokens, errors = _split(line, ",")
        result.diagnostics.extend(f"'{name}' Zeile {n}: {e}" for e in errors)

        if len(tokens) != len(fields):
            result.diagnostics.append(
                f"'{name}' Zeile {n}: {len(tokens)} Zellen für {len(fields)} Felder"
            )

        row = {}
        for field_name, token in zip(fields, tokens):
            value = _decode_cell(token, result.diagnostics)
            if value is not ABSENT:
                row[field_name] = value
        rows.append(row)
    return rows


def _decode_list(name: str, inline: str, body: List[str], result: DecodeResult) -> List[Any]:
    items = []
    for line in ([inline] if inline else []) + body:
        tokens, errors = _split(line, ",")
        result.diagnostics.extend(f"'{name}': {e}" for e in errors)
        for token in tokens:
            value = _decode_cell(token, result.diagnostics)
            if value is not ABSENT:
                items.append(value)
    return items


def _split(line: str, delimiter: str) -> Tuple[List[str], List[str]]:
    """
    Teilt eine Zeile an `delimiter`, respektiert "..." und [...] am Zellanfang.

    Returns:
        (Rohtokens, Fehlermeldungen)
    """
    tokens = []
    errors = []
    current = []
    in_quotes = False
    bracket_depth = 0
    i = 0
    n = len(line)

    while i < n:
        ch = line[i]
        if in_quotes:
            current.append(ch)
            if ch == "\\" and i + 1 < n:
                current.append(line[i + 1])
                i += 2
                continue
            if ch == '"':
                if i + 1 < n and line[i + 1] == '"':
                    current.append('"')
                    i += 2
                    continue
                in_quotes = False
            i += 1
            continue

        if ch == '"':
            in_quotes = True
        elif ch == "[" and (bracket_depth > 0 or not "".join(current).strip()):
            bracket_depth += 1
        elif ch == "]" and bracket_depth > 0:
            bracket_depth -= 1
        elif ch == delimiter and bracket_depth == 0:
            tokens.append("".join(current))
            current = []
            i += 1
            continue
        current.append(ch)
        i += 1

    if in_quotes:
        errors.append("nicht geschlossenes Anführungszeichen")
    if bracket_depth > 0:
        errors.append("nicht geschlossene Liste")
    tokens.append("".join(current))
    return tokens, errors


def _decode_cell(token: str, diagnostics: Optional[List[str]] = None) -> Any:
    token = token.strip()
    if token == "":
        return ABSENT
    if token.startswith('"'):
        return _unquote(token, diagnostics)
    if token.startswith("["):
        inner = token[1:-1] if token.endswith("]") else token[1:]
        if not inner.strip():
            return []
        parts, errors = _split(inner, "|")
        if diagnostics is not None:
            diagnostics.extend(errors)
        values = [_decode_cell(p, diagnostics) for p in parts]
        return [v for v in values if v is not ABSENT]
    return _coerce_bare(token)


def _unquote(token: str, diagnostics: Optional[List[str]] = None) -> str:
    out = []
    i = 1
    n = len(token)
    closed_at = None
    while i < n:
        ch = token[i]
        if ch == "\\" and i + 1 < n:
            nxt = token[i + 1]
            out.append(_ESCAPES.get(nxt, "\\" + nxt))
            i += 2
            continue
        if ch == '"':
            if i + 1 < n and token[i + 1] == '"':
                out.append('"')
                i += 2
                continue
            closed_at = i
            break
        out.append(ch)
        i += 1

    if closed_at is None:
        if diagnostics is not None:
            diagnostics.append(f"nicht geschlossener String: {token[:40]}")
    elif closed_at < n - 1:
        rest = token[closed_at + 1:]
        if diagnostics is not None:
            diagnostics.append(f"Zeichen nach schließendem Anführungszeichen: {rest[:20]}")
        out.append(rest)
    return "".join(out)


def _coerce_bare(token: str) -> Any:
    if token == "null":
        return None
    if token == "true":
        return True
    if token == "false":
        return False
    if _INT_PATTERN.match(token):
        return int(token)
    if _FLOAT_PATTERN.match(token):
        value = float(token)
        if math.isfinite(value):
            return value
    return token


# =============================================================================
# LLM-Antworten
# =============================================================================

def extract_block(text: str) -> Tuple[str, str]:
    """
    Sucht den Nutzdaten-Block in einer LLM-Antwort.

    Reihenfolge: ```toon-Block, ```json-Block, nacktes {...}, sonst Gesamttext.

    Returns:
        (Inhalt, Format) mit Format "toon" oder "json"
    """
    blocks = _FENCE_PATTERN.findall(text or "")
    for lang, content in blocks:
        if lang.lower() == "toon":
            return content.strip(), "toon"
    for lang, content in blocks:
        if lang.lower() == "json":
            return content.strip(), "json"

    stripped = (text or "").strip()
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start >= 0 and end > start and _HEADER_PATTERN.match(stripped.splitlines()[0]) is None:
        candidate = stripped[start:end + 1]
        if candidate.lstrip("{").lstrip().startswith('"'):
            return candidate, "json"

    if len(blocks) == 1:
        return blocks[0][1].strip(), "toon"
    return stripped, "toon"


def parse_response(text: str) -> DecodeResult:
    """Dekodiert eine komplette LLM-Antwort (TOON bevorzugt, JSON als Fallback)."""
    content, fmt = extract_block(text)
    if fmt == "json":
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.debug(f"JSON-Fallback fehlgeschlagen: {e}")
            result = decode_with_diagnostics(content)
            result.diagnostics.insert(0, f"ungültiges JSON: {e}")
            return result
        if not isinstance(data, dict):
            return DecodeResult(data={}, diagnostics=["JSON ist kein Objekt"], format="json")
        return DecodeResult(data=data, format="json")
    return decode_with_diagnostics(content)
