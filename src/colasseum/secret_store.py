from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, Optional, Union

from .project_constants import PASSPHRASE_PREFIX, REVEAL_SEEN_PREFIX, WIN_RESULT_PREFIX

EntryId = Union[int, str]


class SecretStore:
    """
    Purchase-time secrets and reveal bookkeeping, kept in one JSON file on
    the local device. The file is rewritten atomically on every change.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise RuntimeError(f"Secret store {self.path} is not a JSON object")
        return data

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".secrets-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def _put(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def get(self, entry_id: EntryId) -> Optional[str]:
        return self._get(f"{PASSPHRASE_PREFIX}{entry_id}")

    def put(self, entry_id: EntryId, secret: str) -> None:
        self._put(f"{PASSPHRASE_PREFIX}{entry_id}", secret)

    def mark_reveal_seen(self, entry_id: EntryId) -> None:
        self._put(f"{REVEAL_SEEN_PREFIX}{entry_id}", str(int(time.time() * 1000)))

    def has_seen_reveal(self, entry_id: EntryId) -> bool:
        return bool(self._get(f"{REVEAL_SEEN_PREFIX}{entry_id}"))

    def store_result(self, entry_id: EntryId, is_winner: bool) -> None:
        self._put(f"{WIN_RESULT_PREFIX}{entry_id}", "win" if is_winner else "loss")

    def stored_result(self, entry_id: EntryId) -> Optional[bool]:
        value = self._get(f"{WIN_RESULT_PREFIX}{entry_id}")
        if value == "win":
            return True
        if value == "loss":
            return False
        return None
