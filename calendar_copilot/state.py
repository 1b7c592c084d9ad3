from __future__ import annotations

import json
import pathlib
import threading
from typing import Any, Dict, Mapping, Optional, Union

from .agent.schemas import PendingDraft
from .models import Preferences, PreferencesUpdate, ProtectedTimeRule
from .utils import _log_debug


class PreferenceConflictError(Exception):

    def __init__(self, expected_version: int, current_version: int) -> None:
        super().__init__(
            f"Preferences were modified concurrently "
            f"(expected version {expected_version}, found {current_version})")
        self.expected_version = expected_version
        self.current_version = current_version


class PreferenceStore:
    """Per-user preferences with an optimistic-concurrency version token.

    Every successful update bumps ``version``. Writers that read first and
    pass the version they read as ``expected_version`` get a
    PreferenceConflictError instead of silently overwriting a newer write.
    """

    def __init__(self, data_file: Optional[pathlib.Path] = None) -> None:
        self._data_file = data_file
        self._lock = threading.Lock()
        self._preferences: Dict[str, Preferences] = {}
        self._load_from_disk()

    def _load_from_disk(self) -> None:
        if self._data_file is None or not self._data_file.exists():
            return
        try:
            data = json.loads(self._data_file.read_text(encoding="utf-8"))
        except Exception as exc:
            _log_debug(f"[PREF STORE] load failed: {exc}")
            return
        if not isinstance(data, dict):
            return
        for user_id, raw in data.items():
            try:
                self._preferences[user_id] = Preferences.model_validate(raw)
            except Exception as exc:
                _log_debug(f"[PREF STORE] skipping preferences for {user_id}: {exc}")

    def _save_to_disk(self) -> None:
        if self._data_file is None:
            return
        try:
            payload = {
                user_id: prefs.model_dump(mode="json")
                for user_id, prefs in self._preferences.items()
            }
            self._data_file.write_text(json.dumps(payload, ensure_ascii=False, indent=2),
                                       encoding="utf-8")
        except Exception as exc:
            _log_debug(f"[PREF STORE] save failed: {exc}")

    def get_preferences(self, user_id: str) -> Preferences:
        with self._lock:
            stored = self._preferences.get(user_id)
            if stored is None:
                return Preferences()
            return stored.model_copy(deep=True)

    def update_preferences(self,
                           user_id: str,
                           partial: Union[PreferencesUpdate, Mapping[str, Any]],
                           expected_version: Optional[int] = None) -> Preferences:
        if isinstance(partial, PreferencesUpdate):
            changes = partial.changes()
            if expected_version is None:
                expected_version = partial.version
        else:
            changes = dict(partial)
            changes.pop("version", None)

        with self._lock:
            current = self._preferences.get(user_id) or Preferences()
            if expected_version is not None and expected_version != current.version:
                raise PreferenceConflictError(expected_version, current.version)
            merged = current.model_dump()
            merged.update(changes)
            merged["version"] = current.version + 1
            updated = Preferences.model_validate(merged)
            self._preferences[user_id] = updated
            self._save_to_disk()
            return updated.model_copy(deep=True)

    def add_protected_time(self,
                           user_id: str,
                           rule: ProtectedTimeRule,
                           max_attempts: int = 3) -> Preferences:
        """Append ``rule`` with a versioned read-modify-write, retrying on conflict."""
        current = None
        for _ in range(max_attempts):
            current = self.get_preferences(user_id)
            rules = [*current.protected_times, rule]
            try:
                return self.update_preferences(user_id,
                                               {"protected_times": rules},
                                               expected_version=current.version)
            except PreferenceConflictError as exc:
                _log_debug(f"[PREF STORE] protected time add retry: {exc}")
        latest = self.get_preferences(user_id).version
        raise PreferenceConflictError(current.version if current else 0, latest)


class PendingDraftStore:
    """Email drafts awaiting explicit confirmation, one per user."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._drafts: Dict[str, PendingDraft] = {}

    def save(self, draft: PendingDraft) -> None:
        with self._lock:
            self._drafts[draft.user_id] = draft

    def get(self, user_id: str) -> Optional[PendingDraft]:
        with self._lock:
            return self._drafts.get(user_id)

    def pop(self, user_id: str) -> Optional[PendingDraft]:
        with self._lock:
            return self._drafts.pop(user_id, None)
