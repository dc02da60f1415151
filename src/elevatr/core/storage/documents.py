"""
Namespaced JSON document store.

Persists one JSON document per string key as ``{root}/{key}.json``. This is
the device-side storage used by local-device users and by the navigation
state persistence. Writes are atomic (temp file + rename) so a crash never
leaves a half-written document behind.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from .errors import StorageCorruptedError, StorageError

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class JsonDocumentStore:
    """
    Key/value store of JSON documents in a directory.

    Example:
        >>> store = JsonDocumentStore(Path("~/.local/share/elevatr").expanduser())
        >>> store.set("elevatr_local_sprints_local_1", [{"id": "s1"}])
        >>> store.get("elevatr_local_sprints_local_1")
        [{'id': 's1'}]
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if not key:
            raise StorageError("Document key must not be empty", "invalid-input")
        return self.root / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read a document.

        Returns:
            Parsed JSON, or ``default`` when the document doesn't exist

        Raises:
            StorageCorruptedError: If the document is not valid JSON
        """
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with path.open(encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise StorageCorruptedError(f"Failed to parse {path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def set(self, key: str, value: Any) -> None:
        """Write a document atomically."""
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".doc_", suffix=".json.tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def delete(self, key: str) -> bool:
        """Remove a document. Returns True if something was deleted."""
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix`` (sorted)."""
        if not self.root.exists():
            return []
        safe_prefix = _UNSAFE_KEY_CHARS.sub("_", prefix)
        return sorted(
            p.stem for p in self.root.glob("*.json") if p.stem.startswith(safe_prefix)
        )
