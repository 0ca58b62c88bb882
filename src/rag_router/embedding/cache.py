"""Embedding cache keyed by normalized-text hash, optionally sqlite-backed."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from hashlib import md5
from pathlib import Path


def cache_key(text: str) -> str:
    return md5(text.lower().strip().encode("utf-8")).hexdigest()


class EmbeddingCache:
    """Vectors cached independently from labeled examples.

    With `path` set, entries are written through to a sqlite table and survive
    process restarts; otherwise the cache lives in memory only. The async
    accessors run sqlite reads and writes in a worker thread.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._memory: dict[str, list[float]] = {}
        self._lock = threading.Lock()
        self._db_file = Path(path) if path else None
        if self._db_file is not None:
            _ensure_cache_table(self._db_file)

    def get(self, text: str) -> list[float] | None:
        key = cache_key(text)
        vector = self._from_memory(key)
        if vector is not None or self._db_file is None:
            return vector
        return self._load(key)

    async def aget(self, text: str) -> list[float] | None:
        key = cache_key(text)
        vector = self._from_memory(key)
        if vector is not None or self._db_file is None:
            return vector
        return await asyncio.to_thread(self._load, key)

    def put(self, text: str, vector: list[float]) -> None:
        key = cache_key(text)
        with self._lock:
            self._memory[key] = vector
        if self._db_file is not None:
            self._save(key, vector)

    async def aput(self, text: str, vector: list[float]) -> None:
        key = cache_key(text)
        with self._lock:
            self._memory[key] = vector
        if self._db_file is not None:
            await asyncio.to_thread(self._save, key, vector)

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._memory)

    def _from_memory(self, key: str) -> list[float] | None:
        with self._lock:
            return self._memory.get(key)

    def _load(self, key: str) -> list[float] | None:
        with sqlite3.connect(self._db_file) as conn:
            row = conn.execute(
                "SELECT vector FROM embeddings WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        vector = [float(value) for value in json.loads(row[0])]
        with self._lock:
            self._memory[key] = vector
        return vector

    def _save(self, key: str, vector: list[float]) -> None:
        with sqlite3.connect(self._db_file) as conn:
            conn.execute(
                "INSERT INTO embeddings(key, vector) VALUES(?, ?) "
                "ON CONFLICT(key) DO UPDATE SET vector=excluded.vector",
                (key, json.dumps(vector)),
            )
            conn.commit()


def _ensure_cache_table(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS embeddings (key TEXT PRIMARY KEY, vector TEXT NOT NULL)"
        )
        conn.commit()
