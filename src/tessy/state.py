"""Fingerprint store: what tessy knew after each task's last successful run."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from tessy.hasher import FileFingerprint
from tessy.logging import Logger

STORE_VERSION = 1


@dataclass
class StoreEntry:
    """
    Fingerprints recorded when a task last succeeded.

    A ``None`` fingerprint in ``inputs`` means the declared input did not exist
    when the task ran.
    """

    action_hash: str
    inputs: dict[str, Optional[FileFingerprint]] = field(default_factory=dict)
    outputs: dict[str, FileFingerprint] = field(default_factory=dict)
    completed_at: float = 0.0
    exit_status: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "action_hash": self.action_hash,
            "inputs": {
                path: fp.to_dict() if fp is not None else None
                for path, fp in self.inputs.items()
            },
            "outputs": {path: fp.to_dict() for path, fp in self.outputs.items()},
            "completed_at": self.completed_at,
            "exit_status": self.exit_status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StoreEntry":
        """Create from dictionary loaded from JSON.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed
        """
        return cls(
            action_hash=str(data["action_hash"]),
            inputs={
                str(path): FileFingerprint.from_dict(fp) if fp is not None else None
                for path, fp in data.get("inputs", {}).items()
            },
            outputs={
                str(path): FileFingerprint.from_dict(fp)
                for path, fp in data.get("outputs", {}).items()
            },
            completed_at=float(data.get("completed_at", 0.0)),
            exit_status=int(data.get("exit_status", 0)),
        )


class FingerprintStore:
    """
    Manages the persisted fingerprint store file.

    Entries are replaced as a whole, and every write goes to a temporary file
    that is then renamed over the store, so a crash never leaves a half-written
    store behind.
    """

    STORE_FILE = Path(".tessy") / "fingerprints.json"

    def __init__(
        self,
        project_root: Path,
        logger: Logger,
        store_path: Path | str | None = None,
    ):
        """
        Initialize the store.

        Args:
        project_root: Root directory of the project
        logger: Logger for diagnostic output
        store_path: Optional explicit location; relative paths resolve against
            project_root. Falls back to TESSY_STORE_PATH, then the default.
        """
        self.logger = logger
        self.project_root = project_root

        if store_path is None:
            store_path = os.environ.get("TESSY_STORE_PATH") or None

        if store_path is None:
            self.store_path = project_root / self.STORE_FILE
        else:
            self.store_path = project_root / Path(store_path)

        self._entries: dict[str, StoreEntry] = {}
        self._loaded = False

    def load(self) -> None:
        """
        Load the store from disk.

        A missing file gives an empty store. A corrupt file also gives an empty
        store (forcing a full rebuild) and logs a warning.
        """
        self._entries = {}
        self._loaded = True

        if not self.store_path.exists():
            self.logger.trace(f"No fingerprint store found at {self.store_path}")
            return

        self.logger.trace(f"Loading fingerprint store from {self.store_path}")
        try:
            with open(self.store_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            self.logger.warn(
                f"[yellow]Fingerprint store {self.store_path} is unreadable ({e}); "
                f"all tasks will be rebuilt[/yellow]"
            )
            return

        if (
            not isinstance(data, dict)
            or data.get("version") != STORE_VERSION
            or not isinstance(data.get("entries"), dict)
        ):
            self.logger.warn(
                f"[yellow]Fingerprint store {self.store_path} has an unrecognised format; "
                f"all tasks will be rebuilt[/yellow]"
            )
            return

        for task_name, raw in data["entries"].items():
            try:
                self._entries[task_name] = StoreEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                self.logger.warn(
                    f"[yellow]Dropping malformed fingerprint entry for '{task_name}': {e}[/yellow]"
                )

        self.logger.trace(f"Loaded {len(self._entries)} fingerprint entry(ies)")

    def save(self) -> None:
        """
        Atomically write the whole store to disk.
        """
        if not self._loaded:
            self.load()
        self._write(self._entries)

    def _write(self, entries: dict[str, StoreEntry]) -> None:
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": STORE_VERSION,
            "entries": {name: entry.to_dict() for name, entry in entries.items()},
        }

        self.logger.trace(
            f"Saving fingerprint store to {self.store_path} ({len(entries)} entry(ies))"
        )

        fd, tmp_name = tempfile.mkstemp(
            prefix=self.store_path.name + ".",
            suffix=".tmp",
            dir=self.store_path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.store_path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def get(self, task_name: str) -> StoreEntry | None:
        if not self._loaded:
            self.load()
        return self._entries.get(task_name)

    def commit(self, task_name: str, entry: StoreEntry) -> None:
        """
        Replace the entry for a task and persist the store immediately.

        The whole store is rewritten and fsynced on every commit. The in-memory
        entry only changes once the write has landed.

        Args:
        task_name: Task the entry belongs to
        entry: Fingerprints recorded after the task succeeded
        """
        if not self._loaded:
            self.load()
        entries = dict(self._entries)
        entries[task_name] = entry
        self._write(entries)
        self._entries[task_name] = entry

    def prune(self, valid_task_names: Iterable[str]) -> list[str]:
        """
        Remove entries for tasks that no longer exist.

        Returns:
        Names of the removed entries
        """
        if not self._loaded:
            self.load()

        valid = set(valid_task_names)
        removed = [name for name in self._entries if name not in valid]

        if removed:
            self.logger.trace(
                f"Pruning {len(removed)} stale fingerprint entry(ies): "
                f"{', '.join(removed[:5])}{'...' if len(removed) > 5 else ''}"
            )

        for name in removed:
            del self._entries[name]
        return removed

    def clear(self) -> None:
        """
        Clear all entries (useful for testing).
        """
        self._entries = {}
        self._loaded = True

    def task_names(self) -> list[str]:
        if not self._loaded:
            self.load()
        return list(self._entries.keys())
