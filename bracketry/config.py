"""
bracketry/config.py - Local configuration management

Reads config from a platform-appropriate config directory:
  - macOS/Linux: ~/.bracketry/config.toml
  - Windows: %APPDATA%\\bracketry\\config.toml

Example:
    [server]
    host = "127.0.0.1"
    port = 8000
    db = "~/brackets/brackets.db"

    [payout]
    split = [0.60, 0.25, 0.15]   # 1st, 2nd, 3rd

    [logging]
    level = "INFO"

BRACKETRY_DB and BRACKETRY_LOG_LEVEL in the environment win over the file.
"""

import logging
import math
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError
from .payout import DEFAULT_SPLIT

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================


def _get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "bracketry"
    return Path.home() / ".bracketry"


CONFIG_DIR = _get_config_dir()
CONFIG_PATH = CONFIG_DIR / "config.toml"

DEFAULT_DB_PATH = "brackets.db"


# ============================================================================
# Data Types
# ============================================================================

@dataclass
class ServerConfig:
    """Where the HTTP service listens and what it stores into."""

    host: str = "127.0.0.1"
    port: int = 8000
    db_path: str = DEFAULT_DB_PATH


@dataclass
class PayoutConfig:
    split: tuple[float, float, float] = DEFAULT_SPLIT


@dataclass
class BracketryConfig:
    """Top-level configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    payout: PayoutConfig = field(default_factory=PayoutConfig)
    log_level: str = "INFO"


# ============================================================================
# Parsing
# ============================================================================

def _expand(path: str | None) -> str | None:
    """Expand ~ in a path string."""
    if path is None:
        return None
    if path == ":memory:":
        return path
    return str(Path(path).expanduser())


def _parse_split(raw) -> tuple[float, float, float]:
    """Validate a [payout] split: three non-negative shares summing to 1."""
    if not isinstance(raw, (list, tuple)) or len(raw) != 3:
        raise ConfigError(f"payout.split must have exactly 3 entries, got {raw!r}")
    try:
        shares = tuple(float(x) for x in raw)
    except (TypeError, ValueError):
        raise ConfigError(f"payout.split entries must be numbers, got {raw!r}")
    if any(s < 0 for s in shares):
        raise ConfigError(f"payout.split entries must be non-negative, got {raw!r}")
    if not math.isclose(sum(shares), 1.0, abs_tol=1e-9):
        raise ConfigError(f"payout.split must sum to 1, got {sum(shares)}")
    return shares


def load_config(path: Path | None = None) -> BracketryConfig:
    """
    Read config from TOML file.

    Args:
        path: Override config file path (default: ~/.bracketry/config.toml)

    Returns:
        BracketryConfig. Missing file or bad TOML returns defaults.

    Raises:
        ConfigError: the file parsed but holds invalid values.
    """
    config_path = path or CONFIG_PATH

    if not config_path.exists():
        return BracketryConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return BracketryConfig()

    server = ServerConfig()
    server_data = raw.get("server", {})
    if isinstance(server_data, dict):
        server = ServerConfig(
            host=server_data.get("host", server.host),
            port=int(server_data.get("port", server.port)),
            db_path=_expand(server_data.get("db")) or server.db_path,
        )

    payout = PayoutConfig()
    payout_data = raw.get("payout", {})
    if isinstance(payout_data, dict) and "split" in payout_data:
        payout = PayoutConfig(split=_parse_split(payout_data["split"]))

    log_level = "INFO"
    logging_data = raw.get("logging", {})
    if isinstance(logging_data, dict):
        log_level = str(logging_data.get("level", log_level)).upper()

    return BracketryConfig(server=server, payout=payout, log_level=log_level)


def apply_env_overrides(config: BracketryConfig) -> BracketryConfig:
    """Environment wins over the file (for containers and the test harness)."""
    db = os.environ.get("BRACKETRY_DB")
    if db:
        config.server.db_path = _expand(db)
    level = os.environ.get("BRACKETRY_LOG_LEVEL")
    if level:
        config.log_level = level.upper()
    return config
