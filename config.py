"""
config.py — Trove configuration loader.

Load order:
  1. Determine work_dir: explicit arg → TROVE_WORK_DIR env var → ./trove_work
  2. Read {work_dir}/config.yaml (an empty file means "all defaults")
  3. Validate numeric fields → raise ConfigError if malformed
  4. Normalize all paths via pathlib.Path.resolve()

Public API:
  load_config(config_file, work_dir) -> Config
  get_config() -> Config             (lazy, loaded once per process)
  configure_logging(cfg)             console + {work_dir}/logs/trove.log
  ollama_available(base_url) -> bool
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigError(Exception):
    """Raised when config.yaml is malformed."""


# ---------------------------------------------------------------------------
# Work directory discovery
# ---------------------------------------------------------------------------

_WORK_DIR_ENV = "TROVE_WORK_DIR"
_CONFIG_FILENAME = "config.yaml"


def _get_work_dir() -> Path:
    env = os.environ.get(_WORK_DIR_ENV)
    if env:
        return Path(env).resolve()
    return Path(__file__).resolve().parent / "trove_work"


def _as_float(section: dict[str, Any], key: str, default: float) -> float:
    raw = section.get(key, default)
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"config.yaml: '{key}' must be a number, got {raw!r}") from exc


def _as_int(section: dict[str, Any], key: str, default: int) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise ConfigError(f"config.yaml: '{key}' must be an integer, got {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"config.yaml: '{key}' must be an integer, got {raw!r}") from exc


def _as_bool(section: dict[str, Any], key: str, default: bool) -> bool:
    raw = section.get(key, default)
    if not isinstance(raw, bool):
        raise ConfigError(f"config.yaml: '{key}' must be true or false, got {raw!r}")
    return raw


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------

class Config:
    def __init__(
        self,
        data: dict[str, Any],
        work_dir: Path,
        config_file: Path,
    ) -> None:
        self._data = data
        self.work_dir = work_dir
        self.config_file = config_file

        # --- Ollama (chat, vision, embeddings) ---
        oll = data.get("ollama") or {}
        # base_url: null disables every AI capability (NullProvider).
        self.ollama_base_url: str | None = oll.get("base_url", "http://localhost:11434")
        self.chat_model: str = oll.get("chat_model", "mistral")
        self.vision_model: str = oll.get("vision_model", "llava")
        self.embed_model: str = oll.get("embed_model", "nomic-embed-text")
        self.ollama_timeout: float = _as_float(oll, "timeout_seconds", 30)
        self.num_ctx: int = _as_int(oll, "num_ctx", 4096)

        # --- Enrichment ---
        enr = data.get("enrichment") or {}
        self.enrichment_enabled: bool = _as_bool(enr, "enabled", True)
        self.max_tags: int = _as_int(enr, "max_tags", 7)
        self.embed_max_chars: int = _as_int(enr, "embed_max_chars", 8000)
        self.prompt_max_chars: int = _as_int(enr, "prompt_max_chars", 4000)
        self.extracted_text_max_chars: int = _as_int(enr, "extracted_text_max_chars", 10000)

        # --- Search ---
        srch = data.get("search") or {}
        self.semantic_threshold: float = _as_float(srch, "semantic_threshold", 0.5)
        self.semantic_limit: int = _as_int(srch, "semantic_limit", 50)
        self.keyword_limit: int = _as_int(srch, "keyword_limit", 25)
        self.semantic_timeout: float = _as_float(srch, "semantic_timeout_seconds", 10)
        self.result_limit: int = _as_int(srch, "result_limit", 50)
        if not 0.0 <= self.semantic_threshold <= 1.0:
            raise ConfigError("config.yaml: 'semantic_threshold' must be within [0, 1]")

        # --- Processing ---
        proc = data.get("processing") or {}
        self.processing_workers: int = max(1, _as_int(proc, "workers", 2))
        self.thumbnail_size: int = _as_int(proc, "thumbnail_size", 400)

        # --- OCR (opt-in only) ---
        ocr = data.get("ocr") or {}
        self.ocr_enabled: bool = _as_bool(ocr, "enabled", False)
        self.tesseract_cmd: str = ocr.get("tesseract_cmd", "tesseract")

        # --- Uploads ---
        up = data.get("uploads") or {}
        self.max_file_bytes: int = _as_int(up, "max_file_mb", 3072) * 1024 * 1024

        # --- Server ---
        srv = data.get("server") or {}
        self.server_host: str = srv.get("host", "0.0.0.0")
        self.server_port: int = _as_int(srv, "port", 7860)

        # --- Logging ---
        lg = data.get("logging") or {}
        self.log_level: str = str(lg.get("level", "INFO")).upper()
        self.log_file: str | None = lg.get("file", "trove.log")

    # --- Path helpers ---

    def get_db_path(self) -> Path:
        return self.work_dir / "db" / "trove.db"

    def get_vector_dir(self) -> Path:
        return self.work_dir / "vectors"

    def get_blob_dir(self) -> Path:
        return self.work_dir / "blobs"

    def get_log_dir(self) -> Path:
        return self.work_dir / "logs"

    def ensure_dirs(self) -> None:
        """Create all work subdirectories if they don't exist."""
        for d in [
            self.get_db_path().parent,
            self.get_vector_dir(),
            self.get_blob_dir(),
            self.get_log_dir(),
        ]:
            d.mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def _load_yaml(config_file: Path) -> dict[str, Any]:
    if not config_file.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_file}\n"
            "Create it (an empty file is enough to use the defaults)."
        )
    with config_file.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a YAML mapping")
    return data


def load_config(
    config_file: Path | None = None,
    work_dir: Path | None = None,
) -> Config:
    """
    Load and return a Config instance.

    Args:
        config_file: Explicit path to config.yaml (overrides discovery).
        work_dir:    Override work directory (overrides env var + default).
    """
    _work_dir = Path(work_dir).resolve() if work_dir else _get_work_dir()
    _config_file = config_file or (_work_dir / _CONFIG_FILENAME)
    data = _load_yaml(_config_file)
    return Config(data, _work_dir, _config_file)


_cfg: Config | None = None


def get_config() -> Config:
    """Return the process-wide Config, loading it on first use."""
    global _cfg
    if _cfg is None:
        _cfg = load_config()
    return _cfg


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(cfg: Config) -> None:
    """Console handler plus an optional file handler under {work_dir}/logs."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.log_file:
        log_dir = cfg.get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / cfg.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format=_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


# ---------------------------------------------------------------------------
# Ollama availability check
# ---------------------------------------------------------------------------

def ollama_available(base_url: str | None = None) -> bool:
    """
    Ping Ollama's /api/tags endpoint.
    Returns False without raising if Ollama is unreachable or not configured.
    """
    import urllib.request

    if not base_url:
        return False
    url = base_url.rstrip("/") + "/api/tags"
    try:
        with urllib.request.urlopen(url, timeout=3) as resp:
            return resp.status == 200
    except Exception:
        return False
