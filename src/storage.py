"""
Tournament persistence.

``PersistenceService`` is the load / save / delete contract the rest of the
application talks to. It notifies subscribers after every write and offers
``update`` for a locked read-modify-write of a single tournament. The actual
storage is delegated to an adapter:

    YamlStorageAdapter   - one ``<id>.yaml`` document per tournament
    MemoryStorageAdapter - plain dict, used by tests
"""
import os
import re
import glob
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

import yaml
from filelock import FileLock

from engine.errors import EngineError, not_found
from engine.models import Tournament
from engine.validation import is_valid_tournament

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r'^[A-Za-z0-9_-]+$')


def _sort_key(tournament: Tournament):
    return tournament.created_at, tournament.id


class MemoryStorageAdapter:
    """Keeps wire-format documents in memory, so stored snapshots never alias live ones."""

    def __init__(self):
        self._documents: Dict[str, dict] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def load(self, tournament_id: str) -> Optional[Tournament]:
        data = self._documents.get(tournament_id)
        return Tournament.from_dict(data) if data is not None else None

    def load_all(self) -> List[Tournament]:
        return sorted((Tournament.from_dict(d) for d in self._documents.values()), key=_sort_key)

    def save(self, tournament: Tournament):
        self._documents[tournament.id] = tournament.to_dict()

    def delete(self, tournament_id: str):
        self._documents.pop(tournament_id, None)

    def delete_all(self):
        self._documents.clear()

    def lock(self, tournament_id: str):
        with self._guard:
            return self._locks.setdefault(tournament_id, threading.RLock())


class YamlStorageAdapter:
    """One YAML file per tournament under ``data_dir``. Callers hold ``lock(id)`` while writing."""

    def __init__(self, data_dir: str, lock_timeout: float = 10):
        self.data_dir = data_dir
        self.lock_timeout = lock_timeout

    def _path(self, tournament_id: str) -> Optional[str]:
        """Path of a tournament document, or None for an id that is not filesystem-safe."""
        if not tournament_id or not _SAFE_ID.match(tournament_id):
            return None
        return os.path.join(self.data_dir, f'{tournament_id}.yaml')

    def _read(self, path: str) -> Optional[Tournament]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f'Failed to parse {path}: {e}')
            return None
        if not is_valid_tournament(data):
            logger.warning(f'Skipping malformed tournament document {path}')
            return None
        return Tournament.from_dict(data)

    def load(self, tournament_id: str) -> Optional[Tournament]:
        path = self._path(tournament_id)
        if path is None or not os.path.exists(path):
            return None
        return self._read(path)

    def load_all(self) -> List[Tournament]:
        tournaments = []
        for path in sorted(glob.glob(os.path.join(self.data_dir, '*.yaml'))):
            tournament = self._read(path)
            if tournament is not None:
                tournaments.append(tournament)
        return sorted(tournaments, key=_sort_key)

    def save(self, tournament: Tournament):
        path = self._path(tournament.id)
        if path is None:
            raise ValueError(f'Invalid tournament id: {tournament.id!r}')
        os.makedirs(self.data_dir, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(tournament.to_dict(), f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    def delete(self, tournament_id: str):
        path = self._path(tournament_id)
        if path is not None and os.path.exists(path):
            os.remove(path)

    def delete_all(self):
        for path in glob.glob(os.path.join(self.data_dir, '*.yaml')):
            os.remove(path)

    def lock(self, tournament_id: str) -> FileLock:
        os.makedirs(self.data_dir, exist_ok=True)
        name = tournament_id if _SAFE_ID.match(tournament_id or '') else 'invalid-id'
        return FileLock(os.path.join(self.data_dir, f'.{name}.lock'), timeout=self.lock_timeout)


class PersistenceService:
    """Tournament store with change notifications."""

    def __init__(self, adapter=None):
        self.adapter = adapter if adapter is not None else MemoryStorageAdapter()
        self._subscribers: List[Callable[[], None]] = []

    def _notify(self):
        for callback in list(self._subscribers):
            callback()

    def load(self, tournament_id: str) -> Optional[Tournament]:
        return self.adapter.load(tournament_id)

    def load_all(self) -> List[Tournament]:
        return self.adapter.load_all()

    def save(self, tournament: Tournament):
        with self.adapter.lock(tournament.id):
            self.adapter.save(tournament)
        self._notify()

    def delete(self, tournament_id: str):
        with self.adapter.lock(tournament_id):
            self.adapter.delete(tournament_id)
        self._notify()

    def delete_all(self):
        self.adapter.delete_all()
        self._notify()

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` after every write. Returns a function that unsubscribes it."""
        if callback not in self._subscribers:
            self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def update(self, tournament_id: str,
               fn: Callable[[Tournament], Tuple[Tournament, Optional[EngineError]]]
               ) -> Tuple[Optional[Tournament], Optional[EngineError]]:
        """
        Read, transform and write back one tournament under its lock.

        ``fn`` follows the engine convention and returns ``(tournament, error)``.
        Nothing is written when it reports an error or hands back the same
        snapshot.
        """
        if self.adapter.load(tournament_id) is None:
            return None, not_found('Tournament', tournament_id)
        with self.adapter.lock(tournament_id):
            # Reload under the lock; another writer may have got there first
            current = self.adapter.load(tournament_id)
            if current is None:
                return None, not_found('Tournament', tournament_id)
            updated, error = fn(current)
            if error:
                return current, error
            changed = updated is not current
            if changed:
                self.adapter.save(updated)
        if changed:
            self._notify()
        return updated, None
