import copy
import json
import logging
import os
import tempfile
from contextlib import ExitStack, contextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Iterator

from fastapi import Request
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from capacita.core.config import Settings
from capacita.core.errors import PersistenceError
from capacita.models.stored_collection import Base, StoredCollection

logger = logging.getLogger(__name__)

COURSES = 'courses'
STUDENTS = 'students'
COMPANIES = 'companies'
USERS = 'users'
CHANGE_HISTORY = 'change_history'
COLLECTIONS = (COURSES, STUDENTS, COMPANIES, USERS, CHANGE_HISTORY)

Records = list[dict[str, Any]]


class CollectionStore:
    """Whole-collection persistence with per-collection locking.

    ``read``/``write`` keep the lenient contract (``[]``/``False`` on failure);
    ``transaction`` is strict and raises ``PersistenceError``.
    """

    backend = ''

    def __init__(self) -> None:
        self._locks: dict[str, Lock] = {}
        self._locks_guard = Lock()

    def initialize(self) -> None:
        pass

    def load(self, name: str) -> Records:
        """Like ``read`` but raises ``PersistenceError`` instead of hiding a failure."""
        return self._load(name)

    def read(self, name: str) -> Records:
        try:
            return self._load(name)
        except PersistenceError:
            logger.error('Error reading %s from %s store', name, self.backend)
            return []

    def write(self, name: str, records: Records) -> bool:
        with self._lock_for(name):
            try:
                self._save({name: records}, snapshot=None)
            except PersistenceError:
                logger.error('Error writing %s to %s store', name, self.backend)
                return False
        return True

    @contextmanager
    def transaction(self, *names: str) -> Iterator[dict[str, Records]]:
        ordered = sorted(set(names))
        with ExitStack() as stack:
            for name in ordered:
                stack.enter_context(self._lock_for(name))
            with self._unit_of_work(ordered) as working:
                yield working

    @contextmanager
    def _unit_of_work(self, names: list[str]) -> Iterator[dict[str, Records]]:
        snapshot = {name: self._load(name) for name in names}
        working = copy.deepcopy(snapshot)
        yield working
        changed = {name: working[name] for name in names if working[name] != snapshot[name]}
        if changed:
            self._save(changed, snapshot=snapshot)

    def _lock_for(self, name: str) -> Lock:
        with self._locks_guard:
            return self._locks.setdefault(name, Lock())

    def _load(self, name: str) -> Records:
        raise NotImplementedError

    def _save(self, collections: dict[str, Records], snapshot: dict[str, Records] | None) -> None:
        raise NotImplementedError


class JsonFileStore(CollectionStore):
    """One ``<name>.json`` file per collection, shaped ``{"<name>": [...]}``."""

    backend = 'file'

    def __init__(self, data_dir: str) -> None:
        super().__init__()
        self.data_dir = data_dir

    def initialize(self) -> None:
        os.makedirs(self.data_dir, exist_ok=True)

    def path_for(self, name: str) -> str:
        return os.path.join(self.data_dir, f'{name}.json')

    def _load(self, name: str) -> Records:
        path = self.path_for(name)
        if not os.path.exists(path):
            return []

        try:
            with open(path, encoding='utf-8') as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.exception('Could not load %s', path)
            raise PersistenceError() from exc

        if isinstance(data, dict):
            data = data.get(name) or []
        if not isinstance(data, list):
            logger.error('Collection file %s does not hold a list', path)
            raise PersistenceError()
        return data

    def _write_file(self, name: str, records: Records) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
        descriptor, temp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f'.{name}.', suffix='.tmp')
        try:
            with os.fdopen(descriptor, 'w', encoding='utf-8') as handle:
                json.dump({name: records}, handle, ensure_ascii=False, indent=2)
            os.replace(temp_path, self.path_for(name))
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    def _save(self, collections: dict[str, Records], snapshot: dict[str, Records] | None) -> None:
        written: list[str] = []
        try:
            for name, records in collections.items():
                self._write_file(name, records)
                written.append(name)
        except (OSError, TypeError, ValueError) as exc:
            logger.exception('Could not write collections %s', ', '.join(collections))
            if snapshot is not None:
                self._restore(written, snapshot)
            raise PersistenceError() from exc

    def _restore(self, names: list[str], snapshot: dict[str, Records]) -> None:
        for name in names:
            try:
                self._write_file(name, snapshot[name])
            except OSError:
                logger.exception('Could not roll back %s after a failed transaction', name)


class DatabaseStore(CollectionStore):
    """Collections kept as JSON text in the ``stored_collections`` table."""

    backend = 'database'

    def __init__(self, database_url: str) -> None:
        super().__init__()
        self.engine = create_engine(database_url)
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self._schema_lock = Lock()
        self._schema_checked = False

    def initialize(self) -> None:
        self.ensure_schema()

    def ensure_schema(self) -> None:
        if self._schema_checked:
            return

        with self._schema_lock:
            if self._schema_checked:
                return

            try:
                if StoredCollection.__tablename__ not in inspect(self.engine).get_table_names():
                    Base.metadata.create_all(bind=self.engine, tables=[StoredCollection.__table__])
            except SQLAlchemyError as exc:
                logger.exception('Could not create the stored_collections table')
                raise PersistenceError() from exc

            self._schema_checked = True

    def _load(self, name: str) -> Records:
        self.ensure_schema()
        db = self.session_factory()
        try:
            row = db.get(StoredCollection, name)
            return _decode_row(row)
        except (SQLAlchemyError, ValueError) as exc:
            logger.exception('Could not load collection %s', name)
            raise PersistenceError() from exc
        finally:
            db.close()

    def _save(self, collections: dict[str, Records], snapshot: dict[str, Records] | None) -> None:
        del snapshot
        self.ensure_schema()
        db = self.session_factory()
        try:
            for name, records in collections.items():
                _upsert_row(db, name, records)
            db.commit()
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            db.rollback()
            logger.exception('Could not write collections %s', ', '.join(collections))
            raise PersistenceError() from exc
        finally:
            db.close()

    @contextmanager
    def _unit_of_work(self, names: list[str]) -> Iterator[dict[str, Records]]:
        self.ensure_schema()
        db = self.session_factory()
        try:
            try:
                rows = {name: db.get(StoredCollection, name, with_for_update=True) for name in names}
                snapshot = {name: _decode_row(row) for name, row in rows.items()}
            except (SQLAlchemyError, ValueError) as exc:
                logger.exception('Could not load collections %s', ', '.join(names))
                raise PersistenceError() from exc

            working = copy.deepcopy(snapshot)
            yield working

            try:
                for name in names:
                    if working[name] != snapshot[name]:
                        _upsert_row(db, name, working[name])
                db.commit()
            except (SQLAlchemyError, TypeError, ValueError) as exc:
                db.rollback()
                logger.exception('Could not write collections %s', ', '.join(names))
                raise PersistenceError() from exc
        finally:
            db.close()


def _decode_row(row: StoredCollection | None) -> Records:
    if row is None:
        return []
    data = json.loads(row.data)
    if not isinstance(data, list):
        raise ValueError(f'Collection {row.name} does not hold a list')
    return data


def _upsert_row(db, name: str, records: Records) -> None:
    payload = json.dumps(records, ensure_ascii=False)
    now = datetime.now(timezone.utc)
    row = db.get(StoredCollection, name)
    if row is None:
        db.add(StoredCollection(name=name, data=payload, updated_at=now))
    else:
        row.data = payload
        row.updated_at = now


def build_store(settings: Settings) -> CollectionStore:
    if settings.storage_backend == 'database':
        return DatabaseStore(settings.database_url)
    return JsonFileStore(settings.data_dir)


def get_store(request: Request) -> CollectionStore:
    return request.app.state.store
