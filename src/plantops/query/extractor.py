"""Intent/entity extraction — one classification call per query.

The schema (entity sets, property names, type hints) is embedded in a single
prompt; the model answers with one JSON object:

    {"entitySet": "...", "intent": "...", "properties": {"Prop": "value" | null}}

The reply is validated against the SchemaMap: the entity set must match a
known set (exact, case-insensitive, or bidirectional substring), otherwise it
becomes None; property keys unknown to the chosen set are dropped. Anything
unparseable yields the canonical miss ``Extraction(None, "Unknown", {})``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from plantops.rag.llm_client import complete
from plantops.schema.provider import PropertySchema, SchemaMap

logger = logging.getLogger(__name__)

UNKNOWN_INTENT = "Unknown"

# Cap on properties listed per entity set in the prompt.
_MAX_PROPERTIES_PER_SET = 60

_SCALARS = (str, int, float, bool)

_EXTRACT_SYSTEM = """\
You classify questions about records in a business system.
Known entity sets and their properties (name: hint):
{schema}

Reply with exactly one JSON object and nothing else:
{{"entitySet": <one entity set name above, or null>,
  "intent": <short intent such as "Lookup", or "Unknown" if no entity set fits>,
  "properties": {{<property name>: <value mentioned in the question>,
                  <property name the user asks about>: null}}}}
Only use property names listed for the chosen entity set."""


@dataclass
class Extraction:
    """Validated classification of a query."""

    entity_set: str | None = None
    intent: str = UNKNOWN_INTENT
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def is_unknown(self) -> bool:
        return self.entity_set is None or self.intent.strip().lower() == UNKNOWN_INTENT.lower()

    @property
    def filters(self) -> dict[str, Any]:
        """Properties carrying a value (used as query predicates)."""
        return {k: v for k, v in self.properties.items() if v not in (None, "")}

    @property
    def requested(self) -> list[str]:
        """Properties the user asked about (null-valued)."""
        return [k for k, v in self.properties.items() if v is None]


def unknown_extraction() -> Extraction:
    return Extraction(entity_set=None, intent=UNKNOWN_INTENT, properties={})


class IntentExtractor:
    """Classify a query against a SchemaMap via one LLM call.

    Args:
        model: LiteLLM model used for the classification call.
    """

    def __init__(self, model: str = "openai/gpt-4o-mini") -> None:
        self._model = model

    def extract(self, query: str, schema_map: SchemaMap) -> Extraction:
        """Return a validated Extraction. Never raises."""
        if not schema_map or not query.strip():
            return unknown_extraction()
        try:
            raw = complete(
                model=self._model,
                messages=[
                    {"role": "system", "content": build_prompt(schema_map)},
                    {"role": "user", "content": query},
                ],
                max_tokens=300,
                temperature=0,
            )
        except Exception as exc:
            logger.warning("Extraction call failed, treating as Unknown: %s", exc)
            return unknown_extraction()

        parsed = parse_reply(raw)
        if parsed is None:
            logger.debug("Extraction reply is not a JSON object: %.200r", raw)
            return unknown_extraction()
        return validate(parsed, schema_map)


# ------------------------------------------------------------------
# Prompt
# ------------------------------------------------------------------


def type_hint(prop: PropertySchema) -> str:
    """Short human hint for an Edm type, e.g. 'text ≤12 chars', 'number', 'date'."""
    edm = prop.type.removeprefix("Edm.")
    if edm == "String":
        return f"text ≤{prop.max_length} chars" if prop.max_length else "text"
    if edm in ("Byte", "SByte", "Int16", "Int32", "Int64", "Decimal", "Double", "Single"):
        return "number"
    if edm == "Boolean":
        return "true/false"
    if edm in ("DateTime", "DateTimeOffset", "Date"):
        return "date"
    if edm == "Guid":
        return "id"
    return edm.lower()


def build_prompt(schema_map: SchemaMap) -> str:
    lines: list[str] = []
    for set_name, es in schema_map.items():
        props = list(es.properties.items())[:_MAX_PROPERTIES_PER_SET]
        rendered = ", ".join(
            f"{name} ({type_hint(p)}{'; ' + p.label if p.label and p.label != name else ''})"
            for name, p in props
        )
        lines.append(f"- {set_name}: {rendered}")
    return _EXTRACT_SYSTEM.format(schema="\n".join(lines))


# ------------------------------------------------------------------
# Parsing + validation
# ------------------------------------------------------------------


def parse_reply(raw: str) -> dict[str, Any] | None:
    """Recover the outermost JSON object from a (possibly chatty) reply."""
    try:
        start = raw.index("{")
        end = raw.rindex("}") + 1
        obj = json.loads(raw[start:end])
    except (ValueError, json.JSONDecodeError, TypeError):
        return None
    return obj if isinstance(obj, dict) else None


def match_entity_set(candidate: Any, schema_map: SchemaMap) -> str | None:
    """Resolve *candidate* to a known entity set name, or None.

    Order: exact, case-insensitive, then bidirectional substring (closest
    length wins, ties broken alphabetically).
    """
    if not isinstance(candidate, str) or not candidate.strip():
        return None
    name = candidate.strip()
    if name in schema_map:
        return name
    lowered = name.lower()
    for known in schema_map:
        if known.lower() == lowered:
            return known
    fuzzy = [
        known
        for known in schema_map
        if lowered in known.lower() or known.lower() in lowered
    ]
    if not fuzzy:
        return None
    return min(fuzzy, key=lambda k: (abs(len(k) - len(name)), k))


def validate(raw: dict[str, Any], schema_map: SchemaMap) -> Extraction:
    """Coerce a parsed reply into an Extraction consistent with *schema_map*."""
    entity_set = match_entity_set(raw.get("entitySet"), schema_map)
    intent = raw.get("intent")
    intent = intent.strip() if isinstance(intent, str) and intent.strip() else UNKNOWN_INTENT

    properties: dict[str, Any] = {}
    raw_props = raw.get("properties")
    if entity_set is not None and isinstance(raw_props, dict):
        known = schema_map[entity_set].properties
        by_lower = {k.lower(): k for k in known}
        for key, value in raw_props.items():
            canonical = key if key in known else by_lower.get(str(key).lower())
            if canonical is None:
                continue
            if value is None or isinstance(value, _SCALARS):
                properties[canonical] = value

    return Extraction(entity_set=entity_set, intent=intent, properties=properties)
