"""JSON snapshot save/load for TaxonomyCore.

A snapshot is the dict produced by TaxonomyCore.to_dict(), written as one
JSON document. Useful for fixtures, exchange and debugging; SQLite
(storage.py) is the durable backend.

Security:
    Path validation is performed to prevent path traversal. Paths are
    resolved to absolute paths before use.
"""

from __future__ import annotations

import json
from pathlib import Path

from .core import TaxonomyCore

SNAPSHOT_VERSION = "1.0"


def _validate_path(path: str, base_dir: Path | None = None) -> Path:
    """Validate and resolve a file path.

    Args:
        path: The path to validate
        base_dir: Optional base directory that the path must be within

    Returns:
        Resolved absolute Path

    Raises:
        ValueError: If path is invalid or attempts path traversal
    """
    if "\x00" in path:
        raise ValueError(f"Invalid path (contains null bytes): {path!r}")

    resolved = Path(path).resolve()

    if base_dir is not None:
        base_resolved = base_dir.resolve()
        try:
            resolved.relative_to(base_resolved)
        except ValueError:
            raise ValueError(
                f"Path traversal detected: {path} is outside base directory {base_dir}"
            )

    return resolved


def save_store(store: TaxonomyCore, path: str, base_dir: Path | None = None) -> None:
    """Write a JSON snapshot of a store.

    Raises:
        ValueError: If path is invalid
    """
    validated_path = _validate_path(path, base_dir)
    data = {"version": SNAPSHOT_VERSION, **store.to_dict()}

    validated_path.parent.mkdir(parents=True, exist_ok=True)

    with open(validated_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def load_store(path: str, base_dir: Path | None = None) -> TaxonomyCore:
    """Read a JSON snapshot into a new store.

    Raises:
        ValueError: If path is invalid or the snapshot version is unsupported
        FileNotFoundError: If file does not exist
    """
    validated_path = _validate_path(path, base_dir)

    with open(validated_path, encoding="utf-8") as f:
        data = json.load(f)

    version = data.get("version", SNAPSHOT_VERSION)
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version {version!r} in {path}")
    return TaxonomyCore.from_dict(data)
