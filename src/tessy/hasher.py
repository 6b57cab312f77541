import glob
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

_CHUNK_SIZE = 1024 * 1024
_GLOB_CHARS = ("*", "?", "[")


@dataclass(frozen=True)
class FileFingerprint:
    """Content digest and size of a file, directory or glob pattern."""

    digest: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {"digest": self.digest, "size": self.size}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileFingerprint":
        return cls(digest=str(data["digest"]), size=int(data["size"]))


def hash_task(action: dict[str, Any], working_dir: str, outputs: list[str]) -> str:
    """Signature of a task's action in its execution context."""
    data = {
        "action": action,
        "working_dir": working_dir,
        "outputs": list(outputs),
    }

    serialized = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode()).hexdigest()


def hash_file(path: Path) -> FileFingerprint:
    digest = hashlib.sha256()
    size = 0
    with open(path, "rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            digest.update(chunk)
            size += len(chunk)
    return FileFingerprint(digest=digest.hexdigest(), size=size)


def _hash_listing(base: Path, files: list[Path]) -> FileFingerprint:
    digest = hashlib.sha256()
    total = 0
    for key, file_path in sorted((_listing_key(base, f), f) for f in files):
        file_fp = hash_file(file_path)
        digest.update(key.encode())
        digest.update(b"\0")
        digest.update(file_fp.digest.encode())
        digest.update(b"\n")
        total += file_fp.size
    return FileFingerprint(digest=digest.hexdigest(), size=total)


def _listing_key(base: Path, file_path: Path) -> str:
    return Path(os.path.relpath(file_path, base)).as_posix()


def _walk_files(directory: Path) -> list[Path]:
    files = []
    for root, dirs, names in os.walk(directory, onerror=_raise):
        dirs.sort()
        for name in sorted(names):
            candidate = Path(root) / name
            if candidate.is_file():
                files.append(candidate)
    return files


def _raise(error: OSError) -> None:
    raise error


def is_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in _GLOB_CHARS)


def fingerprint_path(base: Path, declared: str) -> Optional[FileFingerprint]:
    """Fingerprint a declared path relative to ``base``.

    Regular files are hashed by content. Directories and glob patterns are
    hashed over the sorted list of the files they cover. A path that exists
    is never treated as a pattern, so ``data[1].csv`` names that file.

    Returns:
        The fingerprint, or None if nothing exists at the path (or the glob
        matches no files)

    Raises:
        OSError: If the path exists but cannot be read
    """
    path = base / declared
    if os.path.lexists(path):
        if path.is_dir():
            return _hash_listing(path, _walk_files(path))
        return hash_file(path)

    if not is_glob(declared):
        return None

    # root_dir is ignored for absolute patterns, which then match absolute paths
    matches = [
        base / match
        for match in glob.glob(declared, root_dir=base, recursive=True)
    ]
    matches = [m for m in matches if m.is_file()]
    if not matches:
        return None
    return _hash_listing(base, matches)
