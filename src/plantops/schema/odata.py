"""OData resource client — $metadata, filtered collection reads, key reads.

Transport rules:
- Allowed URL schemes: https:// and http:// only.
- Timeout: configurable (default 30 seconds, connect + read).
- Max redirects: 3.
- Max response body: 10 MB.
- Basic auth credentials come from PLANTOPS_RESOURCE_USERNAME /
  PLANTOPS_RESOURCE_PASSWORD, never from config files.

Envelopes:
- V2:  {"d": {...}}  or  {"d": {"results": [...]}}
- V4:  {"value": [...]}  or a bare entity object
"""

from __future__ import annotations

import base64
import http.client
import json
import logging
import os
import ssl
import urllib.error
import urllib.parse
import urllib.request
from http.client import HTTPResponse
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from plantops.schema.provider import EntitySetSchema

logger = logging.getLogger(__name__)

_USER_AGENT = "plantops/0.1"
_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
_DEFAULT_TIMEOUT = 30  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}

_NUMERIC_TYPES = frozenset(
    [
        "Edm.Byte",
        "Edm.SByte",
        "Edm.Int16",
        "Edm.Int32",
        "Edm.Int64",
        "Edm.Decimal",
        "Edm.Double",
        "Edm.Single",
    ]
)


class ResourceTransportError(RuntimeError):
    """Raised when the structured resource cannot be reached or answers garbage."""


class ODataClient:
    """Minimal read-only OData client over urllib.

    Args:
        base_url: Service root URL (no trailing slash needed).
        version: ``v2`` or ``v4`` — controls filter syntax and the ``$format`` hint.
        timeout: Per-request timeout in seconds.
        verify_tls: Disable only for hosts with self-signed certificates.
        username / password: Basic auth; default to the PLANTOPS_RESOURCE_* env vars.
    """

    def __init__(
        self,
        base_url: str,
        *,
        version: str = "v4",
        timeout: int = _DEFAULT_TIMEOUT,
        verify_tls: bool = True,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        parsed = urllib.parse.urlparse(base_url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise ValueError(
                f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
            )
        self.base_url = base_url.rstrip("/")
        self.version = version
        self.timeout = timeout
        self._verify_tls = verify_tls
        self._username = username if username is not None else os.environ.get(
            "PLANTOPS_RESOURCE_USERNAME"
        )
        self._password = password if password is not None else os.environ.get(
            "PLANTOPS_RESOURCE_PASSWORD"
        )

    # ------------------------------------------------------------------
    # Public reads
    # ------------------------------------------------------------------

    def fetch_metadata(self) -> bytes:
        """Return the raw EDMX document from ``{base}/$metadata``."""
        return self._get(f"{self.base_url}/$metadata", accept="application/xml")

    def read_entity_set(
        self, entity_set: str, filter_expr: str | None = None, top: int = 5
    ) -> list[dict[str, Any]]:
        """GET ``{base}/{entity_set}`` with an optional ``$filter``; first page only."""
        params: dict[str, str] = {"$top": str(top)}
        if filter_expr:
            params["$filter"] = filter_expr
        if self.version == "v2":
            params["$format"] = "json"
        query = urllib.parse.urlencode(params, quote_via=urllib.parse.quote, safe="$(),'")
        url = f"{self.base_url}/{urllib.parse.quote(entity_set)}?{query}"
        return unwrap_envelope(self._get_json(url))

    def read_entity(self, entity_set: str, key_segment: str) -> dict[str, Any] | None:
        """GET ``{base}/{entity_set}(key)``. Returns None on 404."""
        key = urllib.parse.quote(key_segment, safe="',=")
        url = f"{self.base_url}/{urllib.parse.quote(entity_set)}({key})"
        if self.version == "v2":
            url += "?$format=json"
        try:
            records = unwrap_envelope(self._get_json(url))
        except _NotFound:
            return None
        return records[0] if records else None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _get_json(self, url: str) -> Any:
        body = self._get(url, accept="application/json")
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ResourceTransportError(f"Malformed JSON from '{url}': {exc}") from exc

    def _get(self, url: str, accept: str) -> bytes:
        headers = {"User-Agent": _USER_AGENT, "Accept": accept}
        if self._username:
            token = base64.b64encode(
                f"{self._username}:{self._password or ''}".encode()
            ).decode("ascii")
            headers["Authorization"] = f"Basic {token}"
        request = urllib.request.Request(url, headers=headers)

        opener = urllib.request.build_opener(
            urllib.request.HTTPSHandler(context=self._ssl_context()),
            _LimitedRedirectHandler(_MAX_REDIRECTS),
        )

        logger.debug("GET %s", url)
        try:
            response: HTTPResponse
            with opener.open(request, timeout=self.timeout) as response:
                body = response.read(_MAX_BYTES + 1)
        except urllib.error.HTTPError as exc:
            if exc.code == 404:
                raise _NotFound(url) from exc
            raise ResourceTransportError(
                f"HTTP {exc.code} from '{url}': {exc.reason}"
            ) from exc
        except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
            raise ResourceTransportError(f"Failed to fetch '{url}': {exc}") from exc

        if len(body) > _MAX_BYTES:
            raise ResourceTransportError(
                f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit for '{url}'."
            )
        return body

    def _ssl_context(self) -> ssl.SSLContext:
        ctx = ssl.create_default_context()
        if not self._verify_tls:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx


class _NotFound(ResourceTransportError):
    """404 from the resource; read_entity() maps it to None."""


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise an error after more than *max_redirects* redirects."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise ResourceTransportError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        return super().redirect_request(req, fp, code, msg, headers, newurl)


# ------------------------------------------------------------------
# Envelopes
# ------------------------------------------------------------------


def unwrap_envelope(payload: Any) -> list[dict[str, Any]]:
    """Return the records carried by a V2 or V4 JSON envelope, metadata stripped."""
    if not isinstance(payload, dict):
        raise ResourceTransportError(
            f"Unexpected OData payload type: {type(payload).__name__}"
        )
    if "d" in payload:
        inner = payload["d"]
        if isinstance(inner, dict) and isinstance(inner.get("results"), list):
            records = inner["results"]
        else:
            records = [inner]
    elif isinstance(payload.get("value"), list):
        records = payload["value"]
    else:
        records = [payload]
    return [_clean_record(r) for r in records if isinstance(r, dict)]


def _clean_record(record: dict[str, Any]) -> dict[str, Any]:
    """Drop OData bookkeeping fields and navigation stubs."""
    cleaned: dict[str, Any] = {}
    for key, value in record.items():
        if key == "__metadata" or key.startswith("@odata.") or "@odata." in key:
            continue
        if isinstance(value, dict) and "__deferred" in value:
            continue
        cleaned[key] = value
    return cleaned


# ------------------------------------------------------------------
# Filters and keys
# ------------------------------------------------------------------


def quote_literal(value: Any) -> str:
    """Quote a string literal for an OData URL expression (single quotes doubled)."""
    return "'" + str(value).replace("'", "''") + "'"


def _typed_literal(value: Any, edm_type: str, version: str) -> str | None:
    """Render *value* as an OData literal of *edm_type*; None if it does not fit."""
    if edm_type in _NUMERIC_TYPES:
        try:
            float(str(value))
        except ValueError:
            return None
        return str(value)
    if edm_type == "Edm.Boolean":
        text = str(value).strip().lower()
        if text in ("true", "yes", "1"):
            return "true"
        if text in ("false", "no", "0"):
            return "false"
        return None
    if edm_type == "Edm.Guid":
        return f"guid{quote_literal(value)}" if version == "v2" else str(value)
    if edm_type == "Edm.DateTime" and version == "v2":
        return f"datetime{quote_literal(value)}"
    if edm_type in ("Edm.DateTimeOffset", "Edm.Date") and version == "v4":
        return str(value)
    return quote_literal(value)


def build_filter(
    predicates: dict[str, Any], schema: EntitySetSchema, version: str = "v4"
) -> str:
    """Build a conjunctive ``$filter`` from non-null *predicates*.

    String properties use a substring match (``contains`` / ``substringof``);
    every other type uses equality. Predicates whose value cannot be rendered
    for the property's type are skipped.
    """
    clauses: list[str] = []
    for name, value in predicates.items():
        if value is None or value == "":
            continue
        prop = schema.properties.get(name)
        edm_type = prop.type if prop else "Edm.String"
        if edm_type == "Edm.String":
            literal = quote_literal(value)
            if version == "v2":
                clauses.append(f"substringof({literal},{name}) eq true")
            else:
                clauses.append(f"contains({name},{literal})")
            continue
        literal = _typed_literal(value, edm_type, version)
        if literal is None:
            logger.debug("Skipping predicate %s=%r: not a valid %s", name, value, edm_type)
            continue
        clauses.append(f"{name} eq {literal}")
    return " and ".join(clauses)


def format_key(values: dict[str, Any], schema: EntitySetSchema, version: str = "v4") -> str | None:
    """Render the key segment for ``{Set}(key)``; None unless every key has a value."""
    if not schema.keys or any(values.get(k) in (None, "") for k in schema.keys):
        return None
    parts: list[str] = []
    for key in schema.keys:
        prop = schema.properties.get(key)
        literal = _typed_literal(values[key], prop.type if prop else "Edm.String", version)
        if literal is None:
            return None
        parts.append(literal if len(schema.keys) == 1 else f"{key}={literal}")
    return ",".join(parts)
