"""
Rendering of a provider's settings into the live config file of its
application, and atomic replacement of that file.

Each application has one artifact, registered in ``ARTIFACTS``:

- ``claude``: ``~/.claude/settings.json``, the settings mapping as JSON.
- ``codex``: ``~/.codex/config.toml``, the TOML text kept in ``settings["config"]``.
- ``gemini``: ``~/.gemini/.env``, ``settings["env"]`` as ``KEY=VALUE`` lines.
  Keys that are not valid variable names are dropped.
"""
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from cc_switch.config import get_home_dir
from cc_switch.errors import ConfigWriteFailure
from cc_switch.services.app_types import AppType, parse_app_type
from cc_switch.services.provider_store import Provider
from cc_switch.utils.atomic_file import atomic_write_bytes

logger = logging.getLogger(__name__)

_ENV_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _render_claude(settings: Dict[str, Any]) -> bytes:
    return (json.dumps(settings, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def _render_codex(settings: Dict[str, Any]) -> bytes:
    text = settings.get("config")
    if not isinstance(text, str) or not text:
        return b""
    if not text.endswith("\n"):
        text += "\n"
    return text.encode("utf-8")


def _dotenv_value(value: Any) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    if text == "" or any(ch in text for ch in (" ", "\t", "#", '"', "'", "\n", "\\")):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'
    return text


def _render_gemini(settings: Dict[str, Any]) -> bytes:
    env = settings.get("env")
    if not isinstance(env, dict):
        return b""
    lines = []
    for key, value in env.items():
        if not isinstance(key, str) or not _ENV_KEY.match(key):
            logger.warning("Skipping gemini env key %r: not a valid variable name", key)
            continue
        lines.append(f"{key}={_dotenv_value(value)}")
    return ("\n".join(lines) + "\n").encode("utf-8") if lines else b""


@dataclass(frozen=True)
class AppArtifact:
    relative_path: Tuple[str, ...]
    render: Callable[[Dict[str, Any]], bytes]


ARTIFACTS: Dict[AppType, AppArtifact] = {
    AppType.CLAUDE: AppArtifact((".claude", "settings.json"), _render_claude),
    AppType.CODEX: AppArtifact((".codex", "config.toml"), _render_codex),
    AppType.GEMINI: AppArtifact((".gemini", ".env"), _render_gemini),
}


@dataclass(frozen=True)
class WriteResult:
    """What a ``write_atomically`` call replaced, enough to undo it."""

    app: AppType
    target: Path
    existed: bool
    previous: Optional[bytes]
    backup: Optional[Path]


class ConfigMaterializer:
    def __init__(self, home_dir: Optional[Union[str, os.PathLike]] = None):
        self._home_dir = Path(home_dir) if home_dir is not None else None

    @property
    def home_dir(self) -> Path:
        return self._home_dir if self._home_dir is not None else get_home_dir()

    def _artifact(self, app: Union[AppType, str]) -> AppArtifact:
        return ARTIFACTS[parse_app_type(app)]

    def target_path(self, app: Union[AppType, str]) -> Path:
        return self.home_dir.joinpath(*self._artifact(app).relative_path)

    def render(self, app: Union[AppType, str], provider: Provider) -> bytes:
        return self._artifact(app).render(provider.settings)

    def read_live(self, app: Union[AppType, str]) -> Optional[bytes]:
        target = self.target_path(app)
        if not target.exists():
            return None
        return target.read_bytes()

    def write_atomically(self, app: Union[AppType, str], data: bytes) -> WriteResult:
        """
        Replace the live config file of ``app`` with ``data``.

        The previous content, if any, is captured in the returned result and
        copied to ``<target>.bak`` before the rename. On failure the target is
        left exactly as it was and ``ConfigWriteFailure`` is raised.
        """
        app = parse_app_type(app)
        target = self.target_path(app)
        try:
            existed = target.exists()
            previous = target.read_bytes() if existed else None
            atomic_write_bytes(target, data, backup=existed)
        except OSError as e:
            logger.error("Failed to write %s config %s: %s", app.value, target, e)
            raise ConfigWriteFailure(f"failed to write {target}: {e}") from e

        logger.info("Wrote %s config %s (%d bytes)", app.value, target, len(data))
        return WriteResult(
            app=app,
            target=target,
            existed=existed,
            previous=previous,
            backup=Path(f"{target}.bak") if existed else None,
        )

    def restore(self, result: WriteResult) -> None:
        """Put the target back to what ``result`` replaced."""
        try:
            if result.existed:
                atomic_write_bytes(result.target, result.previous or b"", backup=False)
            elif result.target.exists():
                result.target.unlink()
        except OSError as e:
            logger.error("Failed to restore %s config %s: %s", result.app.value, result.target, e)
            raise ConfigWriteFailure(f"failed to restore {result.target}: {e}") from e
        logger.info("Restored %s config %s", result.app.value, result.target)
