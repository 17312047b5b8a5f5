import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW_SECONDS = 6 * 3600


@dataclass(frozen=True)
class Paths:
    project_root: Path = Path(__file__).resolve().parents[2]
    data_root: Path = project_root / "data"


@dataclass
class ThermobandConfig:
    api_base_url: str = "http://localhost:8000"
    request_timeout_seconds: float = 10.0
    history_window_seconds: int = DEFAULT_HISTORY_WINDOW_SECONDS
    registry_path: str | None = None  # None keeps the registry in memory
    audit_path: str | None = None
    max_retries: int = 3
    log_level: str = "INFO"


_ENV_OVERRIDES = {
    "api_base_url": ("TB_API_URL", str),
    "request_timeout_seconds": ("TB_REQUEST_TIMEOUT", float),
    "history_window_seconds": ("TB_HISTORY_WINDOW", int),
    "registry_path": ("TB_REGISTRY_PATH", str),
    "audit_path": ("TB_AUDIT_PATH", str),
    "max_retries": ("TB_MAX_RETRIES", int),
    "log_level": ("TB_LOG_LEVEL", str),
}


def _read_payload(cfg_path: Path) -> dict:
    if not cfg_path.exists():
        return {}
    try:
        with open(cfg_path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable config %s: %s", cfg_path, e)
        return {}
    if not isinstance(payload, dict):
        logger.warning("Ignoring config %s: top level must be an object", cfg_path)
        return {}
    return payload


def load_config(path: Path | str | None = None) -> ThermobandConfig:
    """Build the runtime config from an optional JSON file plus ``TB_*`` env vars.

    When ``path`` is omitted, ``<data_root>/thermoband_config.json`` is used if
    it exists. Environment variables win over file values.
    """
    cfg_path = Path(path) if path is not None else Paths().data_root / "thermoband_config.json"
    payload = _read_payload(cfg_path)

    defaults = ThermobandConfig()
    values = {}
    for field_name, (env_name, cast) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None:
            raw = payload.get(field_name)
        if raw is None or raw == "":
            values[field_name] = getattr(defaults, field_name)
            continue
        try:
            values[field_name] = cast(raw)
        except (TypeError, ValueError):
            logger.warning("Invalid value %r for %s, using default", raw, field_name)
            values[field_name] = getattr(defaults, field_name)

    cfg = ThermobandConfig(**values)
    if cfg.history_window_seconds <= 0:
        logger.warning("history_window_seconds must be positive, using default")
        cfg.history_window_seconds = DEFAULT_HISTORY_WINDOW_SECONDS
    return cfg


def configure_logging(cfg: ThermobandConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
