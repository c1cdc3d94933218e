from __future__ import annotations

import threading
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from db import make_session_factory
from models import KeyValueEntry
from utils import iso_utc_now

MEMORY_URL = "memory://"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SqlKeyValueStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        with self._session_factory() as db:
            row = db.execute(select(KeyValueEntry).where(KeyValueEntry.key == str(key))).scalar_one_or_none()
            return None if row is None else str(row.value or "")

    def set(self, key: str, value: str) -> None:
        with self._session_factory() as db:
            row = db.execute(select(KeyValueEntry).where(KeyValueEntry.key == str(key))).scalar_one_or_none()
            if row is None:
                row = KeyValueEntry(key=str(key))
                db.add(row)
            row.value = str(value)
            row.updatedAt = iso_utc_now()
            db.commit()

    def remove(self, key: str) -> None:
        with self._session_factory() as db:
            row = db.execute(select(KeyValueEntry).where(KeyValueEntry.key == str(key))).scalar_one_or_none()
            if row is not None:
                db.delete(row)
                db.commit()


def open_kv_store(cfg) -> KeyValueStore:
    url = str(getattr(cfg, "KV_STORE_URL", "") or MEMORY_URL).strip()
    if url == MEMORY_URL:
        return MemoryKeyValueStore()
    return SqlKeyValueStore(make_session_factory(url))
