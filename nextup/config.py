"""
nextup/config.py - Local settings storage

Reads operator settings from a platform-appropriate config directory:
  - macOS/Linux: ~/.nextup/config.toml
  - Windows: %APPDATA%\\nextup\\config.toml

Environment variables supply the defaults, so a fresh machine can run from
env alone and the file only needs the overrides.

Example:
    [truefinals]
    user_id = "abc123"
    api_key = "..."

    [ledger]
    url = "http://localhost:8787"

    [obs]
    url = "ws://localhost:4455"
    password = "hunter2"

    [arenas]
    default = ["Arena 1", "Arena 2", "Stream"]

    [polling]
    tournament_interval = 2.0  # seconds
    assignment_interval = 2.0
"""

import logging
import os
import sys
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path

import tomli_w

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================


def _get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "nextup"
    return Path.home() / ".nextup"


CONFIG_DIR = _get_config_dir()
CONFIG_PATH = CONFIG_DIR / "config.toml"

DEFAULT_OBS_URL = "ws://localhost:4455"
DEFAULT_POLL_INTERVAL = 2.0


# ============================================================================
# Data Types
# ============================================================================


def _env_arenas() -> list[str]:
    raw = os.environ.get("NEXTUP_DEFAULT_ARENAS", "")
    return [name.strip() for name in raw.split(",") if name.strip()]


@dataclass
class Settings:
    """Everything an operator station needs to talk to its collaborators."""

    tf_user_id: str = ""
    tf_api_key: str = ""
    ledger_url: str = ""
    obs_url: str = DEFAULT_OBS_URL
    obs_password: str = ""
    default_arenas: list[str] = field(default_factory=list)
    tournament_poll_interval: float = DEFAULT_POLL_INTERVAL
    assignment_poll_interval: float = DEFAULT_POLL_INTERVAL

    @classmethod
    def from_env(cls) -> "Settings":
        """Defaults, with NEXTUP_* environment variables applied."""
        return cls(
            tf_user_id=os.environ.get("NEXTUP_TF_USER_ID", ""),
            tf_api_key=os.environ.get("NEXTUP_TF_API_KEY", ""),
            ledger_url=os.environ.get("NEXTUP_LEDGER_URL", ""),
            obs_url=os.environ.get("NEXTUP_OBS_URL", DEFAULT_OBS_URL),
            obs_password=os.environ.get("NEXTUP_OBS_PASSWORD", ""),
            default_arenas=_env_arenas(),
        )

    @property
    def has_provider_credentials(self) -> bool:
        return bool(self.tf_user_id and self.tf_api_key)


# ============================================================================
# Parsing
# ============================================================================


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _positive_float(value, fallback: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return fallback
    return float(value)


def _merge(defaults: Settings, raw: dict) -> Settings:
    """Overlay parsed TOML sections on top of defaults. Wrong types are ignored."""
    tf = _section(raw, "truefinals")
    ledger = _section(raw, "ledger")
    obs = _section(raw, "obs")
    arenas = _section(raw, "arenas")
    polling = _section(raw, "polling")

    def _str(section: dict, key: str, fallback: str) -> str:
        value = section.get(key)
        return value if isinstance(value, str) else fallback

    arena_names = arenas.get("default")
    if isinstance(arena_names, list):
        arena_names = [str(a).strip() for a in arena_names if str(a).strip()]
    else:
        arena_names = defaults.default_arenas

    return Settings(
        tf_user_id=_str(tf, "user_id", defaults.tf_user_id),
        tf_api_key=_str(tf, "api_key", defaults.tf_api_key),
        ledger_url=_str(ledger, "url", defaults.ledger_url),
        obs_url=_str(obs, "url", defaults.obs_url),
        obs_password=_str(obs, "password", defaults.obs_password),
        default_arenas=arena_names,
        tournament_poll_interval=_positive_float(
            polling.get("tournament_interval"), defaults.tournament_poll_interval
        ),
        assignment_poll_interval=_positive_float(
            polling.get("assignment_interval"), defaults.assignment_poll_interval
        ),
    )


def load_settings(path: Path | None = None) -> Settings:
    """
    Read settings from TOML file.

    Args:
        path: Override config file path (default: ~/.nextup/config.toml)

    Returns:
        Settings. Missing file or bad TOML returns the defaults.
    """
    config_path = path or CONFIG_PATH
    defaults = Settings.from_env()

    if not config_path.exists():
        return defaults

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return defaults

    return _merge(defaults, raw)


def _to_toml(settings: Settings) -> dict:
    return {
        "truefinals": {"user_id": settings.tf_user_id, "api_key": settings.tf_api_key},
        "ledger": {"url": settings.ledger_url},
        "obs": {"url": settings.obs_url, "password": settings.obs_password},
        "arenas": {"default": list(settings.default_arenas)},
        "polling": {
            "tournament_interval": float(settings.tournament_poll_interval),
            "assignment_interval": float(settings.assignment_poll_interval),
        },
    }


def save_settings(settings: Settings, path: Path | None = None) -> bool:
    """Write settings to disk. Returns False (and logs) if the write fails."""
    config_path = path or CONFIG_PATH
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "wb") as f:
            tomli_w.dump(_to_toml(settings), f)
    except OSError as e:
        logger.warning(f"Failed to save settings to {config_path}: {e}")
        return False
    return True


def reset_settings(path: Path | None = None) -> Settings:
    """Delete the settings file and return the defaults."""
    config_path = path or CONFIG_PATH
    try:
        config_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove {config_path}: {e}")
    return Settings.from_env()


def settings_dict(settings: Settings, redact: bool = True) -> dict:
    """Settings as a plain dict, secrets masked unless redact=False."""
    data = asdict(settings)
    if redact:
        for key in ("tf_api_key", "obs_password"):
            if data[key]:
                data[key] = "***"
    return data
