"""lexrag configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (LEXRAG_DB, LEXRAG_GENERATION_MODEL, LEXRAG_EMBEDDING_MODEL,
                             LEXRAG_LOG_LEVEL, LEXRAG_ADMIN_TOKEN, LEXRAG_STORAGE_DIR)
  3. Per-project lexrag.yaml  (next to the database)
  4. Global ~/.lexrag/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys or the admin token; use environment
variables instead. All YAML reads use yaml.safe_load(), never yaml.load().
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".lexrag"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "lexrag.yaml"

# Fields that suggest a credential are forbidden in global config.
# Does NOT match legitimate config keys like monthly_tokens, max_tokens.
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
        "database",
        "embedding",
        "generation",
        "retrieval",
        "chunking",
        "ingestion",
        "ledger",
        "conversations",
        "server",
        "logging",
        "storage",
    ]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (lexrag.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Vector length produced by *model*. The document store
            refuses vectors of any other length.
        batch_size: Chunks embedded per batch during ingestion.
        batch_delay: Seconds to sleep between batches (rate limiting).
    """

    model: str = "openai/text-embedding-ada-002"
    dimensions: int = 1536
    batch_size: int = 5
    batch_delay: float = 1.0


@dataclass
class GenerationCfg:
    """Chat completion configuration (lexrag.yaml: generation:)."""

    model: str = "openai/gpt-4"
    temperature: float = 0.3
    max_tokens: int = 1000
    timeout: float = 60.0
    history_messages: int = 10


@dataclass
class RetrievalCfg:
    """Similarity search configuration (lexrag.yaml: retrieval:)."""

    similarity_threshold: float = 0.7
    match_count: int = 5


@dataclass
class ChunkingCfg:
    """Sentence chunker bounds in characters (lexrag.yaml: chunking:)."""

    max_length: int = 1000
    min_length: int = 50


@dataclass
class IngestionCfg:
    """Text extraction limits (lexrag.yaml: ingestion:)."""

    min_text_length: int = 100
    fetch_timeout: float = 30.0
    validate_timeout: float = 10.0
    max_bytes: int = 5 * 1024 * 1024


@dataclass
class PlanCfg:
    """A billing plan.

    Attributes:
        monthly_tokens: Token allowance granted at the start of each period.
        metered: Whether the plan enforces a hard limit. Unmetered plans skip
            balance checks and token consumption entirely.
    """

    monthly_tokens: int = 0
    metered: bool = True


def _default_plans() -> dict[str, PlanCfg]:
    return {
        "free": PlanCfg(monthly_tokens=10_000, metered=True),
        "basic": PlanCfg(monthly_tokens=100_000, metered=True),
        "unlimited": PlanCfg(monthly_tokens=0, metered=False),
    }


@dataclass
class LedgerCfg:
    """Token ledger configuration (lexrag.yaml: ledger:)."""

    plans: dict[str, PlanCfg] = field(default_factory=_default_plans)
    default_plan: str = "free"
    estimate_floor: int = 100
    estimate_divisor: int = 3
    period_days: int = 30
    free_starter_tokens: int = 10_000

    def plan(self, name: str) -> PlanCfg:
        """Return the plan called *name*, raising ConfigError if unknown."""
        try:
            return self.plans[name]
        except KeyError:
            known = ", ".join(sorted(self.plans)) or "(none)"
            raise ConfigError(f"Unknown plan '{name}'. Configured plans: {known}") from None


@dataclass
class ConversationsCfg:
    """Conversation retention (lexrag.yaml: conversations:)."""

    max_per_user: int = 20
    title_max_length: int = 50


@dataclass
class ServerCfg:
    """HTTP server configuration (lexrag.yaml: server:).

    The admin token is read from LEXRAG_ADMIN_TOKEN only.
    """

    host: str = "127.0.0.1"
    port: int = 8000
    admin_token: str | None = None


@dataclass
class LoggingCfg:
    level: str = "INFO"
    json: bool = False


@dataclass
class StorageCfg:
    """Object storage for uploaded document files."""

    directory: str = ".lexrag-storage"


@dataclass
class LexragConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: str = ".lexrag.db"
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)
    ledger: LedgerCfg = field(default_factory=LedgerCfg)
    conversations: ConversationsCfg = field(default_factory=ConversationsCfg)
    server: ServerCfg = field(default_factory=ServerCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)


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
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


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


def _parse_plans(raw: dict[str, Any], defaults: dict[str, PlanCfg]) -> dict[str, PlanCfg]:
    plans = dict(defaults)
    for name, p in raw.items():
        base = plans.get(name, PlanCfg())
        p = p or {}
        plans[str(name)] = PlanCfg(
            monthly_tokens=int(p.get("monthly_tokens", base.monthly_tokens)),
            metered=bool(p.get("metered", base.metered)),
        )
    return plans


def _cfg_from_dict(data: dict[str, Any]) -> LexragConfig:
    """Build a *LexragConfig* from a merged raw YAML dict."""
    cfg = LexragConfig()

    if "database" in data:
        d = data["database"]
        cfg.database = str(d.get("path", cfg.database)) if isinstance(d, dict) else str(d)

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            batch_delay=float(e.get("batch_delay", cfg.embedding.batch_delay)),
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
            timeout=float(g.get("timeout", cfg.generation.timeout)),
            history_messages=int(g.get("history_messages", cfg.generation.history_messages)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            similarity_threshold=float(
                r.get("similarity_threshold", cfg.retrieval.similarity_threshold)
            ),
            match_count=int(r.get("match_count", cfg.retrieval.match_count)),
        )

    if "chunking" in data:
        c = data["chunking"]
        cfg.chunking = ChunkingCfg(
            max_length=int(c.get("max_length", cfg.chunking.max_length)),
            min_length=int(c.get("min_length", cfg.chunking.min_length)),
        )

    if "ingestion" in data:
        i = data["ingestion"]
        cfg.ingestion = IngestionCfg(
            min_text_length=int(i.get("min_text_length", cfg.ingestion.min_text_length)),
            fetch_timeout=float(i.get("fetch_timeout", cfg.ingestion.fetch_timeout)),
            validate_timeout=float(i.get("validate_timeout", cfg.ingestion.validate_timeout)),
            max_bytes=int(i.get("max_bytes", cfg.ingestion.max_bytes)),
        )

    if "ledger" in data:
        lg = data["ledger"]
        cfg.ledger = LedgerCfg(
            plans=_parse_plans(lg.get("plans", {}) or {}, cfg.ledger.plans),
            default_plan=str(lg.get("default_plan", cfg.ledger.default_plan)),
            estimate_floor=int(lg.get("estimate_floor", cfg.ledger.estimate_floor)),
            estimate_divisor=int(lg.get("estimate_divisor", cfg.ledger.estimate_divisor)),
            period_days=int(lg.get("period_days", cfg.ledger.period_days)),
            free_starter_tokens=int(
                lg.get("free_starter_tokens", cfg.ledger.free_starter_tokens)
            ),
        )
        if cfg.ledger.estimate_divisor < 1:
            raise ConfigError("ledger.estimate_divisor must be >= 1")
        cfg.ledger.plan(cfg.ledger.default_plan)

    if "conversations" in data:
        cv = data["conversations"]
        cfg.conversations = ConversationsCfg(
            max_per_user=int(cv.get("max_per_user", cfg.conversations.max_per_user)),
            title_max_length=int(
                cv.get("title_max_length", cfg.conversations.title_max_length)
            ),
        )

    if "server" in data:
        s = data["server"]
        cfg.server = ServerCfg(
            host=str(s.get("host", cfg.server.host)),
            port=int(s.get("port", cfg.server.port)),
        )

    if "logging" in data:
        lo = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lo.get("level", cfg.logging.level)).upper(),
            json=bool(lo.get("json", cfg.logging.json)),
        )

    if "storage" in data:
        st = data["storage"]
        cfg.storage = StorageCfg(directory=str(st.get("directory", cfg.storage.directory)))

    return cfg


def _apply_env_overrides(cfg: LexragConfig) -> LexragConfig:
    """Apply LEXRAG_* environment variable overrides."""
    if db := os.environ.get("LEXRAG_DB"):
        cfg.database = db
    if model := os.environ.get("LEXRAG_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("LEXRAG_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if level := os.environ.get("LEXRAG_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    if token := os.environ.get("LEXRAG_ADMIN_TOKEN"):
        cfg.server.admin_token = token
    if directory := os.environ.get("LEXRAG_STORAGE_DIR"):
        cfg.storage.directory = directory
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> LexragConfig:
    """Load and return a merged *LexragConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *lexrag.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains credential-like fields, or if a
            configured plan name is unknown.
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

    cfg = _cfg_from_dict(merged)
    return _apply_env_overrides(cfg)


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.lexrag/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# lexrag global configuration — model defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export LEXRAG_ADMIN_TOKEN=...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-ada-002\n"
            "  dimensions: 1536\n"
            "\n"
            "generation:\n"
            "  model: openai/gpt-4\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
