# =============================================
# File: astro_ai/services/profiles.py
# Purpose: Interaction log + user preference store for recommendations
# =============================================
from __future__ import annotations

import json
import os
import threading
from datetime import datetime
from typing import Dict, List, Optional

from astro_ai.models import Interaction, UserPreferences
from astro_ai.utils.locks import KeyedLocks


class InteractionStore:
    """
    Append-only interaction log, one list per user.
    Writers for different users never contend; `history()` returns a snapshot copy,
    so scoring never sees a list that is being appended to.
    """

    def __init__(self, history_cap: int = 500) -> None:
        self._logs: Dict[str, List[Interaction]] = {}
        self._locks = KeyedLocks()
        self._history_cap = history_cap

    def record(self, interaction: Interaction) -> None:
        with self._locks.hold(interaction.user_id):
            log = self._logs.setdefault(interaction.user_id, [])
            log.append(interaction)
            if len(log) > self._history_cap:
                del log[: len(log) - self._history_cap]

    def history(self, user_id: str, since: Optional[datetime] = None) -> List[Interaction]:
        with self._locks.hold(user_id):
            log = list(self._logs.get(user_id, ()))
        if since is not None:
            log = [i for i in log if i.timestamp >= since]
        return log

    def clear(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._logs.clear()
            return
        with self._locks.hold(user_id):
            self._logs.pop(user_id, None)


class PreferenceStore:
    """
    Last-write-wins preference overrides per user.
    Persistence: optional JSON file (written atomically via a temp file + os.replace).
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._mem: Dict[str, UserPreferences] = {}
        self._load()

    def _load(self) -> None:
        if not self._path or not os.path.exists(self._path):
            return
        with open(self._path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        self._mem = {uid: UserPreferences.model_validate(p) for uid, p in raw.items()}

    def _flush(self) -> None:
        if not self._path:
            return
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        tmp = self._path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({uid: p.model_dump(mode="json") for uid, p in self._mem.items()}, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self._path)

    def set(self, prefs: UserPreferences) -> UserPreferences:
        with self._lock:
            self._mem[prefs.user_id] = prefs.model_copy(deep=True)
            self._flush()
            return prefs.model_copy(deep=True)

    def get(self, user_id: str) -> Optional[UserPreferences]:
        with self._lock:
            p = self._mem.get(user_id)
            return p.model_copy(deep=True) if p is not None else None
