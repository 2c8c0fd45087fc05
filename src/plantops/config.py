"""PlantOps configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (PLANTOPS_GENERATION_MODEL, PLANTOPS_EMBEDDING_MODEL,
                             PLANTOPS_RESOURCE_URL)
  3. Per-project plantops.yaml  (next to .plantops.db)
  4. Global ~/.plantops/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys or resource credentials; use
environment variables instead (OPENAI_API_KEY, PLANTOPS_RESOURCE_PASSWORD, ...).
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".plantops"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "plantops.yaml"

# Matches api_key, api-key, api_secret, *_token, token, *_secret, secret,
# password, passwd, credential(s). Does NOT match token_budget or max_turns.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "resource",
        "schema",
        "embedding",
        "generation",
        "retrieval",
        "chunking",
        "memory",
        "attribution",
    ]
)

_ODATA_VERSIONS: frozenset[str] = frozenset(["v2", "v4"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ResourceCfg:
    """Structured resource (OData service) settings (plantops.yaml: resource:).

    Attributes:
        base_url: Service root, e.g. ``https://host/sap/opu/odata/sap/API_MAINTENANCEORDER``.
            Empty disables the structured path entirely.
        odata_version: ``v2`` (substringof filters, ``d`` envelope) or ``v4``.
        timeout: Per-request timeout in seconds.
        page_size: ``$top`` used for filtered reads.
        verify_tls: Set to False only for hosts with self-signed certificates.
    """

    base_url: str = ""
    odata_version: str = "v4"
    timeout: int = 30
    page_size: int = 5
    verify_tls: bool = True


@dataclass
class SchemaCfg:
    """Schema cache policy (plantops.yaml: schema:).

    ``cache_ttl_seconds`` of None keeps a fetched schema for the process lifetime.
    ``static_path`` points at a YAML/JSON schema map used instead of $metadata.
    """

    cache_ttl_seconds: int | None = None
    static_path: str | None = None


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (plantops.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536


@dataclass
class GenerationCfg:
    """LLM generation configuration (plantops.yaml: generation:)."""

    model: str = "openai/gpt-4o"
    scorer_model: str = "openai/gpt-4o-mini"


@dataclass
class RetrievalCfg:
    """Retrieval configuration (plantops.yaml: retrieval:)."""

    top_k: int = 5


@dataclass
class ChunkingCfg:
    """Fixed-window chunking in characters (plantops.yaml: chunking:)."""

    chunk_size: int = 1500
    overlap: int = 150


@dataclass
class MemoryCfg:
    """Conversation memory window (plantops.yaml: memory:).

    The window is filled newest-first until ``token_budget`` would be exceeded
    or ``max_turns`` messages are selected, whichever comes first.
    """

    token_budget: int = 2_000
    max_turns: int = 10


@dataclass
class AttributionCfg:
    """Citation attribution pass (plantops.yaml: attribution:)."""

    enabled: bool = True


@dataclass
class PlantOpsConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    resource: ResourceCfg = field(default_factory=ResourceCfg)
    schema: SchemaCfg = field(default_factory=SchemaCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    memory: MemoryCfg = field(default_factory=MemoryCfg)
    attribution: AttributionCfg = field(default_factory=AttributionCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Config file '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _validate_resource(cfg: ResourceCfg) -> None:
    if cfg.odata_version not in _ODATA_VERSIONS:
        raise ConfigError(
            f"resource.odata_version must be one of {sorted(_ODATA_VERSIONS)}, "
            f"got '{cfg.odata_version}'"
        )
    if cfg.base_url and not cfg.base_url.startswith(("http://", "https://")):
        raise ConfigError(
            f"resource.base_url must be an http(s) URL: '{cfg.base_url}'"
        )
    if cfg.page_size < 1:
        raise ConfigError(f"resource.page_size must be >= 1, got {cfg.page_size}")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> PlantOpsConfig:
    """Build a *PlantOpsConfig* from a merged raw YAML dict."""
    cfg = PlantOpsConfig()

    if "resource" in data:
        r = data["resource"]
        cfg.resource = ResourceCfg(
            base_url=str(r.get("base_url", cfg.resource.base_url)).rstrip("/"),
            odata_version=str(r.get("odata_version", cfg.resource.odata_version)).lower(),
            timeout=int(r.get("timeout", cfg.resource.timeout)),
            page_size=int(r.get("page_size", cfg.resource.page_size)),
            verify_tls=bool(r.get("verify_tls", cfg.resource.verify_tls)),
        )

    if "schema" in data:
        s = data["schema"]
        ttl = s.get("cache_ttl_seconds", cfg.schema.cache_ttl_seconds)
        cfg.schema = SchemaCfg(
            cache_ttl_seconds=int(ttl) if ttl is not None else None,
            static_path=s.get("static_path") or cfg.schema.static_path,
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            scorer_model=str(g.get("scorer_model", cfg.generation.scorer_model)),
        )

    if "retrieval" in data:
        cfg.retrieval = RetrievalCfg(
            top_k=int(data["retrieval"].get("top_k", cfg.retrieval.top_k)),
        )

    if "chunking" in data:
        c = data["chunking"]
        cfg.chunking = ChunkingCfg(
            chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "memory" in data:
        m = data["memory"]
        cfg.memory = MemoryCfg(
            token_budget=int(m.get("token_budget", cfg.memory.token_budget)),
            max_turns=int(m.get("max_turns", cfg.memory.max_turns)),
        )

    if "attribution" in data:
        cfg.attribution = AttributionCfg(
            enabled=bool(data["attribution"].get("enabled", cfg.attribution.enabled)),
        )

    return cfg


def _apply_env_overrides(cfg: PlantOpsConfig) -> PlantOpsConfig:
    """Apply PLANTOPS_* environment variable overrides."""
    if model := os.environ.get("PLANTOPS_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("PLANTOPS_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if url := os.environ.get("PLANTOPS_RESOURCE_URL"):
        cfg.resource.base_url = url.rstrip("/")
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> PlantOpsConfig:
    """Load and return a merged *PlantOpsConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *plantops.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *PlantOpsConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if the
            resource section holds an invalid value.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_project, project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate_resource(cfg.resource)
    return cfg
