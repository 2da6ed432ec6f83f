"""Simple JSON document collection for participant records.

Documents live in a single JSON file keyed by an opaque id::

    {
        "3f2b...": {"name": "...", "profileUrl": "...", ...},
        "91ac...": { ... }
    }

Every mutation rewrites the file (temp file + rename, so a crash never
leaves half a catalog behind) and then notifies listeners with a full
snapshot of the collection.  Listeners get snapshots, never diffs.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from etl.errors import StoreError

logger = logging.getLogger(__name__)

Snapshot = Dict[str, Dict[str, Any]]
# Receives None when the snapshot could not be read
Listener = Callable[[Optional[Snapshot]], None]


class JsonCollection:
    """A key-value document collection persisted to *path*."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

    # -- persistence -------------------------------------------------------

    def _load(self) -> Snapshot:
        """Return the full catalog ({} if the file does not exist yet)."""

        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            raise StoreError(f"Participant store {self.path} is corrupted: {exc}") from exc
        except OSError as exc:
            raise StoreError(f"Cannot read participant store {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreError(f"Participant store {self.path} does not hold a document map")
        return data

    def _save(self, catalog: Snapshot) -> None:
        """Write *catalog* back to disk (pretty-printed for readability)."""

        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(catalog, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StoreError(f"Cannot write participant store {self.path}: {exc}") from exc

    # -- reads -------------------------------------------------------------

    def all(self) -> Snapshot:
        with self._lock:
            return copy.deepcopy(self._load())

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._load().get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    # -- writes ------------------------------------------------------------

    def add(self, document: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        with self._lock:
            catalog = self._load()
            catalog[doc_id] = copy.deepcopy(document)
            self._save(catalog)
        logger.debug("Added document %s", doc_id)
        self._notify()
        return doc_id

    def update(self, doc_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            catalog = self._load()
            if doc_id not in catalog:
                raise StoreError(f"No participant with id {doc_id}")
            catalog[doc_id].update(copy.deepcopy(fields))
            self._save(catalog)
        logger.debug("Updated document %s", doc_id)
        self._notify()

    def delete(self, doc_id: str) -> None:
        with self._lock:
            catalog = self._load()
            if catalog.pop(doc_id, None) is None:
                raise StoreError(f"No participant with id {doc_id}")
            self._save(catalog)
        logger.debug("Deleted document %s", doc_id)
        self._notify()

    @contextmanager
    def transaction(self) -> Iterator["JsonCollection"]:
        """Hold the collection lock so a read-then-write sequence is not interleaved."""

        with self._lock:
            yield self

    # -- change feed -------------------------------------------------------

    def listen(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for post-mutation snapshots; returns an unsubscribe callable."""

        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
            if not listeners:
                return
            try:
                snapshot = self.all()
            except StoreError as exc:
                logger.error("Could not read snapshot for listeners: %s", exc)
                snapshot = None
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Collection listener failed")


__all__ = ["JsonCollection", "Snapshot", "Listener"]
