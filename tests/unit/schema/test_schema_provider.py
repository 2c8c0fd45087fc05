"""Tests for schema introspection: EDMX parsing, static maps, and the cache."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from plantops.schema.odata import ResourceTransportError
from plantops.schema.provider import (
    ODataMetadataProvider,
    SchemaCache,
    SchemaFetchError,
    SchemaProvider,
    StaticSchemaProvider,
    humanize,
    parse_edmx,
    schema_map_from_dict,
    schema_map_to_dict,
)

_EDMX_V2 = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="1.0" xmlns:edmx="http://schemas.microsoft.com/ado/2007/06/edmx"
    xmlns:sap="http://www.sap.com/Protocols/SAPData">
  <edmx:DataServices>
    <Schema Namespace="API_EQUIPMENT" xmlns="http://schemas.microsoft.com/ado/2008/09/edm">
      <EntityType Name="A_EquipmentType">
        <Key><PropertyRef Name="Equipment"/></Key>
        <Property Name="Equipment" Type="Edm.String" MaxLength="18" sap:label="Equipment"/>
        <Property Name="AssetManufacturerName" Type="Edm.String" MaxLength="30"
                  sap:label="Manufacturer"/>
        <Property Name="ConstructionYear" Type="Edm.String" MaxLength="4"/>
      </EntityType>
      <EntityContainer Name="API_EQUIPMENT_Entities">
        <EntitySet Name="A_Equipment" EntityType="API_EQUIPMENT.A_EquipmentType"/>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

_EDMX_V4 = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="4.0" xmlns:edmx="http://docs.oasis-open.org/odata/ns/edmx">
  <edmx:DataServices>
    <Schema Namespace="Plant" xmlns="http://docs.oasis-open.org/odata/ns/edm">
      <EntityType Name="MaintenanceOrder">
        <Key><PropertyRef Name="OrderId"/></Key>
        <Property Name="OrderId" Type="Edm.String" MaxLength="12">
          <Annotation Term="Common.Label" String="Order"/>
        </Property>
        <Property Name="Priority" Type="Edm.Int32"/>
      </EntityType>
      <Annotations Target="Plant.MaintenanceOrder/Priority">
        <Annotation Term="Common.Label" String="Order Priority"/>
      </Annotations>
      <EntityContainer Name="Container">
        <EntitySet Name="Orders" EntityType="Plant.MaintenanceOrder"/>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""


class _CountingProvider(SchemaProvider):
    def __init__(self, schema_map=None, error: Exception | None = None) -> None:
        self.calls = 0
        self._map = schema_map or parse_edmx(_EDMX_V4)
        self._error = error

    def fetch(self, base_url: str):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._map


class _FakeClient:
    def __init__(self, payload: bytes | None = None, error: Exception | None = None) -> None:
        self._payload = payload
        self._error = error

    def fetch_metadata(self) -> bytes:
        if self._error is not None:
            raise self._error
        return self._payload


# ------------------------------------------------------------------
# humanize
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "name, expected",
    [
        ("AssetManufacturerName", "Asset Manufacturer Name"),
        ("order_id", "Order id"),
        ("ID", "ID"),
        ("HTTPStatus", "HTTP Status"),
    ],
)
def test_humanize(name: str, expected: str) -> None:
    assert humanize(name) == expected


# ------------------------------------------------------------------
# EDMX parsing
# ------------------------------------------------------------------


def test_parse_edmx_v2_properties_keys_and_labels() -> None:
    schema_map = parse_edmx(_EDMX_V2)
    assert list(schema_map) == ["A_Equipment"]
    es = schema_map["A_Equipment"]
    assert es.entity_type == "A_EquipmentType"
    assert es.keys == ["Equipment"]
    assert es.properties["AssetManufacturerName"].label == "Manufacturer"
    assert es.properties["AssetManufacturerName"].max_length == 30
    # no sap:label → humanized name
    assert es.properties["ConstructionYear"].label == "Construction Year"


def test_parse_edmx_v4_inline_and_external_annotations() -> None:
    es = parse_edmx(_EDMX_V4)["Orders"]
    assert es.properties["OrderId"].label == "Order"
    assert es.properties["Priority"].label == "Order Priority"
    assert es.properties["Priority"].type == "Edm.Int32"
    assert es.properties["Priority"].max_length is None
    assert es.label_of("Priority") == "Order Priority"
    assert es.label_of("Unknown_field") == "Unknown field"


def test_parse_edmx_malformed_raises() -> None:
    with pytest.raises(SchemaFetchError, match="Malformed"):
        parse_edmx("<not-xml")


def test_parse_edmx_without_entity_sets_raises() -> None:
    with pytest.raises(SchemaFetchError, match="no entity sets"):
        parse_edmx("<Edmx><DataServices><Schema/></DataServices></Edmx>")


# ------------------------------------------------------------------
# Uniform dict shape
# ------------------------------------------------------------------


def test_schema_map_dict_shape() -> None:
    data = schema_map_to_dict(parse_edmx(_EDMX_V4))
    assert data["Orders"]["keys"] == ["OrderId"]
    assert data["Orders"]["properties"]["OrderId"] == {
        "type": "Edm.String",
        "maxLength": 12,
        "label": "Order",
    }
    assert schema_map_to_dict(schema_map_from_dict(data)) == data


@pytest.mark.parametrize("data", [{}, {"Orders": {}}, {"Orders": {"properties": []}}, []])
def test_schema_map_from_dict_rejects_bad_shapes(data) -> None:
    with pytest.raises(SchemaFetchError):
        schema_map_from_dict(data)


# ------------------------------------------------------------------
# Providers
# ------------------------------------------------------------------


def test_static_provider_reads_yaml(tmp_path: Path) -> None:
    path = tmp_path / "schema.yaml"
    path.write_text(
        yaml.dump(
            {"Orders": {"properties": {"OrderId": {"type": "Edm.String"}}, "keys": ["OrderId"]}}
        ),
        encoding="utf-8",
    )
    schema_map = StaticSchemaProvider(path).fetch("https://any.example.com")
    assert schema_map["Orders"].keys == ["OrderId"]
    assert schema_map["Orders"].properties["OrderId"].label == "Order Id"


def test_static_provider_reads_json(tmp_path: Path) -> None:
    path = tmp_path / "schema.json"
    path.write_text(json.dumps({"Plants": {"properties": {"Name": {}}}}), encoding="utf-8")
    assert "Plants" in StaticSchemaProvider(path).fetch("")


def test_static_provider_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(SchemaFetchError, match="Cannot read"):
        StaticSchemaProvider(tmp_path / "absent.yaml").fetch("")


def test_static_provider_malformed_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "schema.json"
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(SchemaFetchError, match="Malformed"):
        StaticSchemaProvider(path).fetch("")


def test_metadata_provider_parses_client_payload() -> None:
    provider = ODataMetadataProvider(lambda url: _FakeClient(_EDMX_V2.encode()))
    assert "A_Equipment" in provider.fetch("https://erp.example.com/odata")


def test_metadata_provider_wraps_transport_errors() -> None:
    provider = ODataMetadataProvider(
        lambda url: _FakeClient(error=ResourceTransportError("connection refused"))
    )
    with pytest.raises(SchemaFetchError, match="connection refused"):
        provider.fetch("https://erp.example.com/odata")


# ------------------------------------------------------------------
# Cache
# ------------------------------------------------------------------


def test_cache_fetches_once_per_url() -> None:
    provider = _CountingProvider()
    cache = SchemaCache(provider)
    first = cache.get("https://erp.example.com/odata/")
    second = cache.get("https://erp.example.com/odata")
    assert first is second
    assert provider.calls == 1
    assert "https://erp.example.com/odata" in cache


def test_cache_invalidate_forces_refetch() -> None:
    provider = _CountingProvider()
    cache = SchemaCache(provider)
    cache.get("https://a")
    assert cache.invalidate("https://a") is True
    assert cache.invalidate("https://a") is False
    cache.get("https://a")
    assert provider.calls == 2


def test_cache_ttl_expiry() -> None:
    now = [100.0]
    provider = _CountingProvider()
    cache = SchemaCache(provider, ttl_seconds=60, clock=lambda: now[0])
    cache.get("https://a")
    now[0] = 159.0
    cache.get("https://a")
    assert provider.calls == 1
    now[0] = 161.0
    cache.get("https://a")
    assert provider.calls == 2


def test_cache_does_not_store_failures() -> None:
    provider = _CountingProvider(error=SchemaFetchError("down"))
    cache = SchemaCache(provider)
    with pytest.raises(SchemaFetchError):
        cache.get("https://a")
    assert "https://a" not in cache
    with pytest.raises(SchemaFetchError):
        cache.get("https://a")
    assert provider.calls == 2
