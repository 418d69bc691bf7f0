"""Durable conversation storage over an opaque key/blob store."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from loguru import logger

from luminous.core.prompt import seed_history
from luminous.core.state import InternalState
from luminous.core.turns import History

BLOB_FILE_SUFFIX = ".json"
PROFILE_SUFFIX = ":profile"


class BlobStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryBlobStore:
    """Blob store kept in a dict. Used by tests and ephemeral servers."""

    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._blobs.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._blobs[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)


class FileBlobStore:
    """One file per key under ``root``. Writes replace the file atomically."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def path_for(self, key: str) -> Path:
        return self.root / f"{quote(key, safe='')}{BLOB_FILE_SUFFIX}"

    def get(self, key: str) -> str | None:
        path = self.path_for(key)
        with self._lock:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        with self._lock:
            fd, temp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=BLOB_FILE_SUFFIX)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                Path(temp_name).replace(path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise

    def delete(self, key: str) -> None:
        with self._lock:
            self.path_for(key).unlink(missing_ok=True)


@dataclass(frozen=True)
class Profile:
    """State and keepsake persisted next to the history."""

    state: InternalState
    keepsake: str | None = None

    def to_payload(self) -> dict[str, object]:
        return {"state": self.state.to_payload(), "keepsake": self.keepsake}

    @classmethod
    def from_payload(cls, payload: object) -> Profile:
        if not isinstance(payload, dict):
            return cls(state=InternalState())
        keepsake = payload.get("keepsake")
        return cls(
            state=InternalState.from_payload(payload.get("state")),
            keepsake=keepsake if isinstance(keepsake, str) and keepsake else None,
        )


class ConversationStore:
    """History of the single session, replaced wholesale on every save."""

    def __init__(self, blob: BlobStore, session_key: str) -> None:
        self._blob = blob
        self.session_key = session_key

    @property
    def profile_key(self) -> str:
        return f"{self.session_key}{PROFILE_SUFFIX}"

    def load(self) -> History:
        """Stored history, or the core memory seed when nothing usable is stored."""
        raw = self._blob.get(self.session_key)
        if raw is None:
            return seed_history()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("store.load.corrupt key={}", self.session_key)
            return seed_history()
        history = History.from_payload(payload)
        if not len(history):
            return seed_history()
        return history

    def save(self, history: History) -> None:
        self._blob.set(self.session_key, json.dumps(history.to_payload(), ensure_ascii=False))
        logger.debug("store.save key={} turns={}", self.session_key, len(history))

    def load_profile(self) -> Profile:
        raw = self._blob.get(self.profile_key)
        if raw is None:
            return Profile(state=InternalState())
        try:
            return Profile.from_payload(json.loads(raw))
        except json.JSONDecodeError:
            logger.warning("store.profile.corrupt key={}", self.profile_key)
            return Profile(state=InternalState())

    def save_profile(self, state: InternalState, keepsake: str | None) -> None:
        profile = Profile(state=state, keepsake=keepsake)
        self._blob.set(self.profile_key, json.dumps(profile.to_payload(), ensure_ascii=False))

    def reset(self) -> None:
        self._blob.delete(self.session_key)
        self._blob.delete(self.profile_key)
