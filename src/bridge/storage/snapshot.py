"""Snapshot file helpers shared by the vector store and pattern cache.

Writes go to a temporary sibling file that then replaces the target, so
a crash mid-write never leaves a truncated snapshot behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from bridge.exceptions import StorageError

logger = logging.getLogger(__name__)


def write_snapshot(path: Path, payload: str) -> None:
    """Atomically write a serialized snapshot.

    Blocking; callers run it in a worker thread.

    Raises:
        StorageError: If the directory or file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as e:
        raise StorageError(f"Cannot write snapshot {path}: {e}") from e
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    except OSError as e:
        Path(tmp_name).unlink(missing_ok=True)
        raise StorageError(f"Cannot write snapshot {path}: {e}") from e
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_snapshot(path: Path) -> Any | None:
    """Read and decode a JSON snapshot.

    Returns:
        The decoded JSON value, or None if the file is missing or corrupt.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("Could not read snapshot %s: %s", path, e)
        return None
    except UnicodeDecodeError as e:
        logger.warning("Ignoring undecodable snapshot %s: %s", path, e)
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("Ignoring corrupt snapshot %s: %s", path, e)
        return None
