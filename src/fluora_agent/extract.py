# extract.py
# Best-effort recovery of binding values from stage output.
#
# Stage output may be a JSON document, prose with a JSON fragment, or plain
# prose. Extraction tries, in order:
#   1. strict JSON parse of the whole content
#   2. scan for embedded JSON fragments
#   3. key/value regex heuristic on the raw text
# Fields read from one stage are resolved together: every value comes from the
# same JSON object, so an item id is never paired with another item's price.
# Anything incomplete or ambiguous is NOT_FOUND, never a guess. Pure functions
# only: the same content always yields the same values.

import json
import re
from collections.abc import Iterator
from typing import Any, Literal

from fluora_agent.errors import ExtractionFailure
from fluora_agent.models import StageId

FieldName = Literal["serverId", "mcpServerUrl", "itemId", "itemPrice", "serverWalletAddress"]

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "serverId": ("serverId", "server_id"),
    "mcpServerUrl": ("mcpServerUrl", "mcp_server_url", "serverUrl"),
    "itemId": ("itemId", "item_id"),
    "itemPrice": ("itemPrice", "item_price", "price"),
    "serverWalletAddress": ("serverWalletAddress", "walletAddress", "wallet_address"),
}


class _NotFound:
    """Sentinel for a field that could not be extracted."""

    _instance = None

    def __new__(cls) -> "_NotFound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NotFound"


NOT_FOUND = _NotFound()

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")

Where = tuple[tuple[str, str], ...]


# ---------------------------------------------------------------------------
# JSON discovery
# ---------------------------------------------------------------------------


def _parse_whole(content: str) -> list[Any]:
    raw = _FENCE_RE.sub("", content.strip())
    try:
        return [json.loads(raw, strict=False)]
    except json.JSONDecodeError:
        return []


def _scan_fragments(content: str) -> list[Any]:
    """Every top-level JSON object or array embedded in free text."""
    decoder = json.JSONDecoder(strict=False)
    found: list[Any] = []
    index = 0
    while True:
        starts = [pos for pos in (content.find("{", index), content.find("[", index)) if pos != -1]
        if not starts:
            return found
        start = min(starts)
        try:
            obj, end = decoder.raw_decode(content, start)
        except json.JSONDecodeError:
            index = start + 1
            continue
        found.append(obj)
        index = end


def _walk(obj: Any) -> Iterator[dict[str, Any]]:
    """Depth-first, document-order traversal of every dict in obj.

    String values that themselves hold JSON (tool results echoed as strings)
    are decoded and walked too.
    """
    if isinstance(obj, dict):
        yield obj
        for value in obj.values():
            yield from _walk(value)
    elif isinstance(obj, list):
        for item in obj:
            yield from _walk(item)
    elif isinstance(obj, str) and obj.strip()[:1] in ("{", "["):
        for nested in _parse_whole(obj):
            yield from _walk(nested)


# ---------------------------------------------------------------------------
# Record selection
# ---------------------------------------------------------------------------


def _scalar(value: Any) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _normalize(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def _mentions(candidate: dict[str, Any], near: str) -> bool:
    needle = _normalize(near)
    return any(
        isinstance(value, str) and needle in _normalize(value)
        for value in candidate.values()
    )


def _matches(node: dict[str, Any], where: Where) -> bool:
    """Every (key, value) pair in where is present on node, compared normalized."""
    return all(
        isinstance(node.get(key), str) and _normalize(node[key]) == _normalize(value)
        for key, value in where
    )


def _field_value(node: dict[str, Any], field: str) -> str | None:
    for alias in FIELD_ALIASES.get(field, (field,)):
        value = _scalar(node.get(alias))
        if value is not None:
            return value
    return None


def _nodes(objects: list[Any]) -> list[dict[str, Any]]:
    return [node for obj in objects for node in _walk(obj)]


def _complete(nodes: list[dict[str, Any]], fields: tuple[str, ...]) -> list[tuple[dict[str, Any], dict[str, str]]]:
    """(object, values) for every object carrying all fields, in document order."""
    found: list[tuple[dict[str, Any], dict[str, str]]] = []
    for node in nodes:
        values = {field: _field_value(node, field) for field in fields}
        if all(value is not None for value in values.values()):
            found.append((node, values))
    return found


def _choose(
    candidates: list[tuple[dict[str, Any], dict[str, str]]],
    near: str | None,
) -> dict[str, str] | None:
    if not candidates:
        return None
    if near is None:
        return candidates[0][1]
    for node, values in candidates:
        if _mentions(node, near):
            return values
    # An unambiguous candidate is accepted even if it does not echo the hint.
    distinct = {tuple(values.values()) for _, values in candidates}
    return candidates[0][1] if len(distinct) == 1 else None


# ---------------------------------------------------------------------------
# Regex heuristic
# ---------------------------------------------------------------------------


def _hint_pattern(near: str) -> re.Pattern[str]:
    """Matches near in raw text regardless of case, spacing, and punctuation."""
    return re.compile(r"[^a-z0-9]*".join(re.escape(ch) for ch in _normalize(near)), re.IGNORECASE)


def _from_text(content: str, field: str, near: str | None) -> str | None:
    """
    First key/value occurrence of field after the hint.

    With a hint that does not locate a value, only an unambiguous match
    (a single distinct value in the whole text) is returned.
    """
    hint_end = None
    if near:
        hit = _hint_pattern(near).search(content)
        hint_end = hit.end() if hit else None

    for alias in FIELD_ALIASES.get(field, (field,)):
        pattern = re.compile(
            rf"""["']?\b{re.escape(alias)}\b["']?\s*[:=]\s*["']?([^"'\s,;}}\]]+)""",
        )
        values = [match.group(1).rstrip(".") for match in pattern.finditer(content)]
        if not values:
            continue
        if not near:
            return values[0]
        if hint_end is not None:
            after = pattern.search(content, hint_end)
            if after:
                return after.group(1).rstrip(".")
        return values[0] if len(set(values)) == 1 else None
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_group(
    content: str,
    fields: tuple[str, ...],
    near: str | None = None,
    where: Where = (),
) -> dict[str, str] | _NotFound:
    """
    Recover several fields that must come from the same record.

    near prefers the JSON object (or text region) that mentions the hint,
    e.g. a server name inside a marketplace listing. where restricts JSON
    objects to those carrying every given (key, value) pair, e.g.
    (("paymentMethod", "USDC_BASE_SEPOLIA"),). Returns NOT_FOUND unless every
    field resolves from one object.
    """
    fields = tuple(fields)
    if not content:
        return NOT_FOUND
    near = near if near and _normalize(near) else None

    for objects in (_parse_whole(content), _scan_fragments(content)):
        nodes = _nodes(objects)
        if any(_field_value(node, field) is not None for node in nodes for field in fields):
            # Structured data wins; an incomplete or ambiguous match is not retried as prose.
            eligible = [node for node in nodes if _matches(node, where)]
            chosen = _choose(_complete(eligible, fields), near)
            return chosen if chosen is not None else NOT_FOUND

    hint = near or (where[0][1] if where else None)
    values = {field: _from_text(content, field, hint) for field in fields}
    if any(value is None for value in values.values()):
        return NOT_FOUND
    return values


def extract(content: str, field: str, near: str | None = None, where: Where = ()) -> str | _NotFound:
    """Recover a single field from content, or NOT_FOUND."""
    values = extract_group(content, (field,), near, where)
    if values is NOT_FOUND:
        return NOT_FOUND
    return values[field]


def missing_field(content: str, fields: tuple[str, ...], where: Where = ()) -> str:
    """The first field no eligible record carries; the first field when the records merely disagree."""
    for objects in (_parse_whole(content), _scan_fragments(content)):
        eligible = [node for node in _nodes(objects) if _matches(node, where)]
        if eligible:
            for field in fields:
                if all(_field_value(node, field) is None for node in eligible):
                    return field
            return fields[0]
    for field in fields:
        if _from_text(content, field, None) is None:
            return field
    return fields[0]


def require_group(
    content: str,
    fields: tuple[str, ...],
    stage: StageId,
    near: str | None = None,
    where: Where = (),
) -> dict[str, str]:
    """Like extract_group(), but raises ExtractionFailure instead of returning NOT_FOUND."""
    values = extract_group(content, fields, near, where)
    if values is NOT_FOUND:
        raise ExtractionFailure(missing_field(content, tuple(fields), where), stage)
    return values


def defer_reference(field: str, label: str) -> str:
    """Natural-language stand-in for a binding the model must resolve itself."""
    return f"<get the {field} from the {label}>"
