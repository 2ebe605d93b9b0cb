from __future__ import annotations

import io
import json
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager, suppress
from typing import Dict, Iterator, Optional

from bowlbuilder.config import Settings
from bowlbuilder.services.exceptions import RepoError


# Cross-platform file lock (fcntl for *nix; msvcrt for Windows)
@contextmanager
def _locked(path: str) -> Iterator[io.FileIO]:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    f = open(path, "a+b")  # create if missing
    try:
        if os.name == "nt":
            import msvcrt  # type: ignore
            msvcrt.locking(f.fileno(), msvcrt.LK_LOCK, 1)
        else:
            import fcntl  # type: ignore
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
    except OSError as e:
        f.close()
        raise RepoError(f"Could not lock file {path}: {e}") from e
    try:
        yield f
    finally:
        try:
            if os.name == "nt":
                import msvcrt  # type: ignore
                f.seek(0)
                msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
            else:
                import fcntl  # type: ignore
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        finally:
            f.close()


def _replace_file(path: str, data: bytes) -> None:
    """Write `data` beside `path`, then rename over it; readers never see a partial file."""
    folder = os.path.dirname(path) or "."
    os.makedirs(folder, exist_ok=True)
    staged: Optional[str] = None
    try:
        with tempfile.NamedTemporaryFile("wb", dir=folder, prefix=".store-", suffix=".json", delete=False) as tmp:
            staged = tmp.name
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(staged, path)
    except OSError as e:
        if staged:
            with suppress(OSError):
                os.unlink(staged)
        raise RepoError(f"Could not replace {path}: {e}") from e


def _append_line(path: str, line: str) -> None:
    try:
        with _locked(path) as f:
            f.seek(0, os.SEEK_END)
            f.write((line + "\n").encode("utf-8"))
            f.flush()
    except OSError as e:
        raise RepoError(f"Append failed for {path}: {e}") from e


class StoreSelectionRepo(ABC):
    @abstractmethod
    def load(self, user_id: str) -> Optional[str]: ...
    @abstractmethod
    def save(self, user_id: str, store_id: str) -> None: ...


class JSONStoreSelectionRepo(StoreSelectionRepo):
    """Last selected store per user, kept in a single JSON object {user_id: store_id}."""

    def __init__(self, settings: Settings):
        self.path = settings.store_selection_file

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with _locked(self.path) as f:
            f.seek(0)
            raw = f.read() or b"{}"
        obj = json.loads(raw.decode("utf-8"))
        if not isinstance(obj, dict):
            raise ValueError("store selection file must hold a JSON object")
        return {str(k): str(v) for k, v in obj.items() if v}

    def load(self, user_id: str) -> Optional[str]:
        try:
            return self._read_all().get(user_id)
        except (OSError, ValueError) as e:
            raise RepoError(f"Failed to load store selection from {self.path}: {e}") from e

    def save(self, user_id: str, store_id: str) -> None:
        try:
            selections = self._read_all()
            selections[user_id] = store_id
            payload = json.dumps(selections, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
            _replace_file(self.path, payload)
        except (OSError, ValueError) as e:
            raise RepoError(f"Failed to save store selection to {self.path}: {e}") from e
