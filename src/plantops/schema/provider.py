"""Schema introspection: discover entity sets and properties at runtime.

Every provider returns the same uniform shape — a SchemaMap — regardless of
where the description came from:

    {entity_set: EntitySetSchema(properties={name: PropertySchema(type, max_length, label)},
                                 keys=[...])}

Fetched maps are held by a SchemaCache that the caller owns and injects; the
cache has an explicit invalidation hook and an optional TTL.
"""

from __future__ import annotations

import json
import logging
import re
import time
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from plantops.schema.odata import ODataClient, ResourceTransportError

logger = logging.getLogger(__name__)

_LABEL_TERMS = ("Common.Label", "com.sap.vocabularies.Common.v1.Label", "Core.Description")


class SchemaFetchError(RuntimeError):
    """Raised when a resource's structural description is unreachable or malformed."""


@dataclass(frozen=True)
class PropertySchema:
    type: str = "Edm.String"
    max_length: int | None = None
    label: str = ""


@dataclass
class EntitySetSchema:
    name: str
    entity_type: str = ""
    properties: dict[str, PropertySchema] = field(default_factory=dict)
    keys: list[str] = field(default_factory=list)

    def label_of(self, prop: str) -> str:
        schema = self.properties.get(prop)
        return schema.label if schema and schema.label else humanize(prop)


SchemaMap = dict[str, EntitySetSchema]


def humanize(name: str) -> str:
    """'AssetManufacturerName' → 'Asset Manufacturer Name'; 'order_id' → 'Order id'."""
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])", " ", name)
    spaced = spaced.replace("_", " ").strip()
    return spaced[:1].upper() + spaced[1:] if spaced else name


# ------------------------------------------------------------------
# Uniform dict shape
# ------------------------------------------------------------------


def schema_map_to_dict(schema_map: SchemaMap) -> dict[str, Any]:
    """Render a SchemaMap as ``{set: {properties: {name: {type, maxLength, label}}, keys}}``."""
    return {
        name: {
            "properties": {
                prop: {"type": p.type, "maxLength": p.max_length, "label": p.label}
                for prop, p in es.properties.items()
            },
            "keys": list(es.keys),
        }
        for name, es in schema_map.items()
    }


def schema_map_from_dict(data: dict[str, Any]) -> SchemaMap:
    """Inverse of schema_map_to_dict(). Raises SchemaFetchError on a bad shape."""
    if not isinstance(data, dict) or not data:
        raise SchemaFetchError("Schema description must be a non-empty mapping")
    result: SchemaMap = {}
    for set_name, body in data.items():
        if not isinstance(body, dict) or not isinstance(body.get("properties"), dict):
            raise SchemaFetchError(f"Entity set '{set_name}' has no properties mapping")
        props: dict[str, PropertySchema] = {}
        for prop, attrs in body["properties"].items():
            attrs = attrs or {}
            max_length = attrs.get("maxLength")
            props[prop] = PropertySchema(
                type=str(attrs.get("type", "Edm.String")),
                max_length=int(max_length) if max_length is not None else None,
                label=str(attrs.get("label") or humanize(prop)),
            )
        keys = [k for k in body.get("keys", []) if k in props]
        result[str(set_name)] = EntitySetSchema(
            name=str(set_name), entity_type=str(body.get("entityType", set_name)),
            properties=props, keys=keys,
        )
    return result


# ------------------------------------------------------------------
# Providers
# ------------------------------------------------------------------


class SchemaProvider(ABC):
    """Capability returning a SchemaMap for a resource base URL."""

    @abstractmethod
    def fetch(self, base_url: str) -> SchemaMap:
        """Return the SchemaMap for *base_url*.

        Raises:
            SchemaFetchError: If the description is unreachable or malformed.
        """


class ODataMetadataProvider(SchemaProvider):
    """Read ``{base}/$metadata`` (EDMX, OData V2 or V4) and parse it."""

    def __init__(self, client_factory: Callable[[str], ODataClient] | None = None) -> None:
        self._client_factory = client_factory or (lambda url: ODataClient(url))

    def fetch(self, base_url: str) -> SchemaMap:
        try:
            raw = self._client_factory(base_url).fetch_metadata()
        except (ResourceTransportError, ValueError) as exc:
            raise SchemaFetchError(f"Could not fetch metadata for '{base_url}': {exc}") from exc
        return parse_edmx(raw)


class StaticSchemaProvider(SchemaProvider):
    """Serve a SchemaMap from a YAML/JSON file in the uniform dict shape.

    The same map is returned for every base URL.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    def fetch(self, base_url: str) -> SchemaMap:
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SchemaFetchError(f"Cannot read schema file '{self._path}': {exc}") from exc
        try:
            if self._path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise SchemaFetchError(f"Malformed schema file '{self._path}': {exc}") from exc
        return schema_map_from_dict(data)


# ------------------------------------------------------------------
# EDMX parsing
# ------------------------------------------------------------------


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _attr(elem: ET.Element, local_name: str) -> str | None:
    """Return an attribute by local name, ignoring its namespace (e.g. sap:label)."""
    for key, value in elem.attrib.items():
        if _local(key) == local_name:
            return value
    return None


def _children(elem: ET.Element, local_name: str) -> list[ET.Element]:
    return [c for c in elem if _local(c.tag) == local_name]


def _annotation_label(elem: ET.Element) -> str | None:
    for ann in _children(elem, "Annotation"):
        if ann.get("Term") in _LABEL_TERMS and ann.get("String"):
            return ann.get("String")
    return None


def parse_edmx(raw: bytes | str) -> SchemaMap:
    """Parse an EDMX $metadata document into a SchemaMap.

    Namespaces are matched by local name so that V2 (``sap:label``) and V4
    (``Common.Label`` annotations, inline or in ``Annotations`` blocks) both work.

    Raises:
        SchemaFetchError: If the document is not XML or declares no entity sets.
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as exc:
        raise SchemaFetchError(f"Malformed $metadata document: {exc}") from exc

    types: dict[str, tuple[dict[str, PropertySchema], list[str]]] = {}
    external_labels: dict[tuple[str, str], str] = {}
    sets: list[tuple[str, str]] = []

    for schema in (e for e in root.iter() if _local(e.tag) == "Schema"):
        for entity_type in _children(schema, "EntityType"):
            type_name = entity_type.get("Name", "")
            props: dict[str, PropertySchema] = {}
            for prop in _children(entity_type, "Property"):
                name = prop.get("Name")
                if not name:
                    continue
                max_length = prop.get("MaxLength")
                props[name] = PropertySchema(
                    type=prop.get("Type", "Edm.String"),
                    max_length=int(max_length) if max_length and max_length.isdigit() else None,
                    label=_attr(prop, "label") or _annotation_label(prop) or "",
                )
            keys = [
                ref.get("Name", "")
                for key in _children(entity_type, "Key")
                for ref in _children(key, "PropertyRef")
            ]
            types[type_name] = (props, [k for k in keys if k in props])

        for block in _children(schema, "Annotations"):
            target = block.get("Target", "")
            if "/" not in target:
                continue
            type_part, prop_name = target.rsplit("/", 1)
            label = _annotation_label(block)
            if label:
                external_labels[(type_part.rsplit(".", 1)[-1], prop_name)] = label

        for container in _children(schema, "EntityContainer"):
            for entity_set in _children(container, "EntitySet"):
                sets.append(
                    (entity_set.get("Name", ""), entity_set.get("EntityType", "").rsplit(".", 1)[-1])
                )

    result: SchemaMap = {}
    for set_name, type_name in sets:
        if not set_name or type_name not in types:
            continue
        props, keys = types[type_name]
        labelled = {
            name: PropertySchema(
                type=p.type,
                max_length=p.max_length,
                label=p.label or external_labels.get((type_name, name)) or humanize(name),
            )
            for name, p in props.items()
        }
        result[set_name] = EntitySetSchema(
            name=set_name, entity_type=type_name, properties=labelled, keys=list(keys)
        )

    if not result:
        raise SchemaFetchError("$metadata document declares no entity sets")
    return result


# ------------------------------------------------------------------
# Cache
# ------------------------------------------------------------------


class SchemaCache:
    """Explicitly owned per-URL schema memo with invalidation and optional TTL.

    Concurrent first fetches for the same URL may both hit the provider; they
    converge on equal values, so no lock is taken.

    Args:
        provider: The SchemaProvider used on a cache miss.
        ttl_seconds: Entry lifetime; None keeps entries until invalidated.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        provider: SchemaProvider,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, SchemaMap]] = {}

    def get(self, base_url: str) -> SchemaMap:
        """Return the cached SchemaMap for *base_url*, fetching it on a miss.

        Raises:
            SchemaFetchError: Propagated from the provider; failures are not cached.
        """
        key = base_url.rstrip("/")
        entry = self._entries.get(key)
        if entry is not None:
            fetched_at, schema_map = entry
            if self._ttl is None or self._clock() - fetched_at < self._ttl:
                return schema_map
            logger.debug("Schema cache entry for %s expired", key)

        schema_map = self._provider.fetch(key)
        self._entries[key] = (self._clock(), schema_map)
        logger.info("Cached schema for %s (%d entity sets)", key, len(schema_map))
        return schema_map

    def invalidate(self, base_url: str) -> bool:
        """Drop the entry for *base_url*. Returns True if one was cached."""
        return self._entries.pop(base_url.rstrip("/"), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, base_url: object) -> bool:
        return isinstance(base_url, str) and base_url.rstrip("/") in self._entries
