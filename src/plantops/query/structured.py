"""Structured lookup against the OData resource.

A validated Extraction becomes either a key read (every key property has a
value) or a first-page read with a conjunctive filter. The outcome is a tagged
result (``Hit``, ``Miss``, ``NoRecords`` or ``TransportError``) and callers
route on the type, never on message text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Union

from plantops.query.extractor import Extraction
from plantops.schema.odata import ODataClient, ResourceTransportError, build_filter, format_key
from plantops.schema.provider import EntitySetSchema, SchemaMap, humanize

logger = logging.getLogger(__name__)

# Maximum fields rendered for a single record / records listed in a preview.
_MAX_FIELDS = 5
_MAX_PREVIEW = 5

_NAME_HINTS = ("name", "description", "text", "title")


@dataclass
class Hit:
    answer: str
    entity_set: str
    records: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Miss:
    reason: str


@dataclass
class NoRecords(Miss):
    """The read succeeded but returned no records."""

    reason: str = "no data found"


@dataclass
class TransportError:
    detail: str


StructuredResult = Union[Hit, Miss, TransportError]


class StructuredQueryHandler:
    """Answer an Extraction from the structured resource.

    Args:
        client: OData client bound to the resource base URL.
        page_size: ``$top`` for filtered reads.
    """

    def __init__(self, client: ODataClient, page_size: int = 5) -> None:
        self._client = client
        self._page_size = page_size

    def handle(self, extraction: Extraction, schema_map: SchemaMap) -> StructuredResult:
        if extraction.is_unknown or extraction.entity_set not in schema_map:
            return Miss("no matching entity set")
        es = schema_map[extraction.entity_set]
        filters = extraction.filters
        if not filters:
            return Miss("no filter values in query")

        version = self._client.version
        try:
            key_segment = format_key(filters, es, version)
            if key_segment is not None and set(filters) <= set(es.keys):
                record = self._client.read_entity(es.name, key_segment)
                records = [record] if record else []
            else:
                filter_expr = build_filter(filters, es, version)
                if not filter_expr:
                    return Miss("no usable filter predicates")
                records = self._client.read_entity_set(
                    es.name, filter_expr=filter_expr, top=self._page_size
                )
        except ResourceTransportError as exc:
            logger.warning("Structured read on %s failed: %s", es.name, exc)
            return TransportError(str(exc))

        if not records:
            return NoRecords()
        return Hit(answer=render_answer(records, extraction, es), entity_set=es.name, records=records)


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------


def _present(value: Any) -> bool:
    return value not in (None, "") and not isinstance(value, (dict, list))


def _subject(record: dict[str, Any], es: EntitySetSchema) -> str:
    key_values = [str(record[k]) for k in es.keys if _present(record.get(k))]
    label = humanize(es.name)
    return f"{label} {', '.join(key_values)}" if key_values else label


def _display_name(record: dict[str, Any], es: EntitySetSchema) -> str | None:
    for prop in es.properties:
        if prop in es.keys:
            continue
        if any(h in prop.lower() for h in _NAME_HINTS) and _present(record.get(prop)):
            return str(record[prop])
    return None


def render_answer(
    records: list[dict[str, Any]], extraction: Extraction, es: EntitySetSchema
) -> str:
    """Render records per the answer policy.

    1. A requested (null-valued) property present on the first record → one sentence.
    2. Exactly one record → up to five labelled fields.
    3. Several records → name + key preview of at most five.
    """
    first = records[0]
    for prop in extraction.requested:
        if _present(first.get(prop)):
            return f"The {es.label_of(prop)} of {_subject(first, es)} is {first[prop]}."

    if len(records) == 1:
        ordered = list(es.keys) + [p for p in es.properties if p not in es.keys]
        ordered += [p for p in first if p not in es.properties]
        lines = [
            f"- {es.label_of(p)}: {first[p]}" for p in ordered if _present(first.get(p))
        ][:_MAX_FIELDS]
        return f"{_subject(first, es)}:\n" + "\n".join(lines)

    preview = []
    for record in records[:_MAX_PREVIEW]:
        keys = ", ".join(str(record[k]) for k in es.keys if _present(record.get(k)))
        name = _display_name(record, es)
        if name is None:
            preview.append(f"- {_subject(record, es)}")
        else:
            preview.append(f"- {name} ({keys})" if keys else f"- {name}")
    return f"Found {len(records)} {humanize(es.name)} records:\n" + "\n".join(preview)
