"""
Process-level settings.

Values are read from the environment (a ``.env`` file is loaded at startup by
``cc_switch.main``). The data directory can additionally be overridden for the
whole process, which is what ``cc-switch-server --config-dir`` does; the
override wins over ``CC_SWITCH_CONFIG_DIR``.
"""
import os
import threading
from pathlib import Path
from typing import Optional

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8766
DEFAULT_CONFIG_DIRNAME = ".cc-switch"

_override_lock = threading.Lock()
_config_dir_override: Optional[Path] = None


def set_config_dir_override(path: Optional[os.PathLike]) -> None:
    """Install (or clear, with ``None``) the process-wide data directory override."""
    global _config_dir_override
    with _override_lock:
        _config_dir_override = Path(path).expanduser() if path is not None else None


def get_config_dir_override() -> Optional[Path]:
    with _override_lock:
        return _config_dir_override


def get_home_dir() -> Path:
    """Home directory under which the external tools' config files live."""
    raw = os.getenv("CC_SWITCH_HOME", "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home()


def get_config_dir() -> Path:
    """Directory holding the durable provider records."""
    override = get_config_dir_override()
    if override is not None:
        return override
    raw = os.getenv("CC_SWITCH_CONFIG_DIR", "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home() / DEFAULT_CONFIG_DIRNAME


def get_host() -> str:
    return os.getenv("CC_SWITCH_HOST", "").strip() or DEFAULT_HOST


def get_port() -> int:
    raw = os.getenv("CC_SWITCH_PORT", "").strip()
    if not raw:
        return DEFAULT_PORT
    try:
        return int(raw)
    except ValueError:
        return DEFAULT_PORT
