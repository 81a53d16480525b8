"""Persistent settings store and the record of previously imported pages."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

PREVIOUSLY_IMPORTED_KEY = 'previously_imported_ids'
ATTACHMENT_OWNERS_KEY = 'attachment_owners'


class SettingsStore:
    """
    Key-value JSON blob kept in a single file.

    Every set() rewrites the file atomically (temp file + rename), so an
    interrupted run never leaves a truncated store behind.
    """

    def __init__(self, path: str, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.orchestrator.state')
        self.data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            backup = self.path.with_name(self.path.name + '.corrupt')
            self.logger.error(f"Could not read settings store {self.path}: {e}; "
                              f"moving it to {backup} and starting empty")
            os.replace(self.path, backup)
            return {}

        if not isinstance(data, dict):
            self.logger.warning(f"Settings store {self.path} does not hold an object, ignoring it")
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if value is None:
            self.data.pop(key, None)
        else:
            self.data[key] = value
        self.save()

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=self.path.name, dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self.data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class ImportStateStore:
    """
    Set of page IDs already migrated, persisted after every page.

    Also remembers which content location each saved attachment path belongs
    to, so a later run never mistakes a same-named file for its own.
    """

    def __init__(self, store: SettingsStore, logger: Optional[logging.Logger] = None):
        self.store = store
        self.logger = logger or logging.getLogger('onenote_markdown_migrator.orchestrator.state')
        self._ids = set(store.get(PREVIOUSLY_IMPORTED_KEY) or [])
        self._attachment_owners: Dict[str, str] = dict(store.get(ATTACHMENT_OWNERS_KEY) or {})

    def has(self, page_id: str) -> bool:
        return page_id in self._ids

    def mark_imported(self, page_id: str) -> None:
        if page_id in self._ids:
            return
        self._ids.add(page_id)
        # Persist immediately so an interrupted run loses at most the page in flight
        self.store.set(PREVIOUSLY_IMPORTED_KEY, sorted(self._ids))

    def attachment_owner(self, path: str) -> Optional[str]:
        return self._attachment_owners.get(path)

    def record_attachment(self, path: str, content_location: str) -> None:
        if self._attachment_owners.get(path) == content_location:
            return
        self._attachment_owners[path] = content_location
        self.store.set(ATTACHMENT_OWNERS_KEY, self._attachment_owners)

    def __len__(self) -> int:
        return len(self._ids)
