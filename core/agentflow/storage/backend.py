"""
File-based key-value storage.

Each value is a JSON document at ``{base_path}/{key}.json``. Keys are
validated so a caller can never address a file outside ``base_path``.
"""

import json
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any


@contextmanager
def atomic_write(path: Path, encoding: str = "utf-8") -> Iterator[IO[str]]:
    """Write to a temp file next to ``path`` and move it into place on success."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            yield f
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileStorage:
    """
    JSON-file backed key-value store.

    Directory structure:
    {base_path}/
      {key}.json
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)

    def _validate_key(self, key: str) -> None:
        """
        Validate key to prevent path traversal attacks.

        Args:
            key: The key to validate

        Raises:
            ValueError: If key contains path traversal or dangerous patterns
        """
        if not key or key.strip() == "":
            raise ValueError("Key cannot be empty")

        # Block path separators
        if "/" in key or "\\" in key:
            raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")

        # Block parent directory references
        if ".." in key or key.startswith("."):
            raise ValueError(f"Invalid key format: path traversal detected in '{key}'")

        # Block drive-letter paths
        if len(key) > 1 and key[1] == ":":
            raise ValueError(f"Invalid key format: absolute paths not allowed in '{key}'")

        if "\x00" in key:
            raise ValueError("Invalid key format: null bytes not allowed")

        dangerous_chars = {"<", ">", "|", "&", "$", "`", "'", '"'}
        if any(char in key for char in dangerous_chars):
            raise ValueError(f"Invalid key format: contains dangerous characters in '{key}'")

    def _path(self, key: str) -> Path:
        self._validate_key(key)
        return self.base_path / f"{key}.json"

    # === KEY-VALUE OPERATIONS ===

    def put(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under ``key``."""
        with atomic_write(self._path(key)) as f:
            json.dump(value, f, indent=2, default=str)

    def put_text(self, key: str, text: str) -> None:
        """Store an already serialized JSON document (e.g. ``model_dump_json``)."""
        with atomic_write(self._path(key)) as f:
            f.write(text)

    def get(self, key: str) -> Any | None:
        """Load the value stored under ``key``, or None."""
        text = self.get_text(key)
        return None if text is None else json.loads(text)

    def get_text(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def delete(self, key: str) -> bool:
        """Delete a key. Returns False when it did not exist."""
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def list_keys(self) -> list[str]:
        """All stored keys, oldest file first."""
        if not self.base_path.exists():
            return []
        files = sorted(self.base_path.glob("*.json"), key=lambda p: (p.stat().st_mtime_ns, p.name))
        return [f.stem for f in files]

    # === UTILITY ===

    def get_stats(self) -> dict:
        """Get storage statistics."""
        return {
            "total_keys": len(self.list_keys()),
            "storage_path": str(self.base_path),
        }
