import json
import logging
import os
import shutil
import uuid
from datetime import datetime
from typing import Any, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def timestamp_tag() -> str:
    return datetime.now().strftime("%Y%m%d%H%M%S")


def backup_path(path: PathLike) -> str:
    return f"{os.fspath(path)}.bak"


def atomic_write_bytes(path: PathLike, data: bytes, backup: bool = True) -> None:
    """
    Replace ``path`` with ``data`` so readers only ever see the old or the new
    content.

    The bytes go to a temp file in the same directory, are fsynced, then
    renamed over the target. When ``backup`` is set and the target exists, it
    is first copied to ``<path>.bak``. Any ``OSError`` propagates and the
    target is left untouched.
    """
    path = os.fspath(path)
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp.{timestamp_tag()}.{uuid.uuid4().hex[:8]}"
    try:
        if backup and os.path.exists(path):
            shutil.copy2(path, backup_path(path))
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError as e:
                logger.warning("Could not remove temp file %s: %s", tmp_path, e)


def atomic_write_json(path: PathLike, data: Any, backup: bool = True) -> None:
    payload = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    atomic_write_bytes(path, payload.encode("utf-8"), backup=backup)
