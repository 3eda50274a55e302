from __future__ import annotations

import asyncio
import copy
import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from relpop import where as where_mod
from relpop.identifiers import DocId
from relpop_common.errors import DuplicateDocument, NotFound, StorageError

log = logging.getLogger(__name__)


class MemoryDocumentStore:
    """Dict-backed store. Used for tests and for embedding without a database."""

    def __init__(self, seed: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self._docs: Dict[str, Dict[DocId, Dict[str, Any]]] = {}
        for collection, docs in (seed or {}).items():
            for doc in docs:
                self._docs.setdefault(collection, {})[doc["id"]] = copy.deepcopy(doc)

    async def fetch_by_id(
        self,
        collection: str,
        doc_id: DocId,
        where: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        doc = self._docs.get(collection, {}).get(doc_id)
        if doc is None or not where_mod.matches(doc, where):
            raise NotFound(collection, doc_id)
        return copy.deepcopy(doc)

    async def find(
        self,
        collection: str,
        where: Optional[Dict[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        hits = [d for d in self._docs.get(collection, {}).values() if where_mod.matches(d, where)]
        start = max(int(offset or 0), 0)
        page = hits[start:] if limit is None else hits[start:start + max(int(limit), 0)]
        return [copy.deepcopy(d) for d in page], len(hits)

    async def ids(self, collection: str) -> List[DocId]:
        return list(self._docs.get(collection, {}))

    async def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        docs = self._docs.setdefault(collection, {})
        if doc["id"] in docs:
            raise DuplicateDocument(collection, doc["id"])
        docs[doc["id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    async def replace(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        docs = self._docs.get(collection, {})
        if doc["id"] not in docs:
            raise NotFound(collection, doc["id"])
        docs[doc["id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    async def delete(self, collection: str, doc_id: DocId) -> None:
        if self._docs.get(collection, {}).pop(doc_id, None) is None:
            raise NotFound(collection, doc_id)


class SqliteDocumentStore:
    """
    Documents as JSON rows in SQLite, one table for every collection.
    Filters are compiled to json_extract/json_each SQL so they gate the lookup itself.
    Calls run in a worker thread; a module-wide lock serializes connections.
    """

    _LOCK = threading.Lock()

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(str(self.db_path))
        con.row_factory = sqlite3.Row
        return con

    def _init_schema(self) -> None:
        with self._LOCK:
            try:
                con = self._connect()
            except sqlite3.Error as e:
                raise StorageError(f"Could not open document store at {self.db_path}: {e}") from e
            try:
                con.execute("PRAGMA journal_mode=WAL;")
                con.execute("PRAGMA synchronous=NORMAL;")
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        collection TEXT NOT NULL,
                        doc_key TEXT NOT NULL,         -- str(id); the typed id lives in data
                        data TEXT NOT NULL,            -- JSON document
                        updated_at INTEGER NOT NULL,   -- unix epoch seconds
                        UNIQUE (collection, doc_key)
                    );
                    """
                )
                con.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Could not initialise document store at {self.db_path}: {e}") from e
            finally:
                con.close()

    def _run(self, fn, *args):
        t0 = time.perf_counter()
        with self._LOCK:
            try:
                con = self._connect()
            except sqlite3.Error as e:
                raise StorageError(f"Could not open document store: {e}") from e
            try:
                return fn(con, *args)
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as e:
                raise StorageError(f"Document store query failed: {e}") from e
            finally:
                con.close()
                log.debug("sqlite %s took %d ms", getattr(fn, "__name__", "call"), int((time.perf_counter() - t0) * 1000))

    # ---- sync bodies (run in a worker thread) ---------------------------------
    @staticmethod
    def _fetch_one(con: sqlite3.Connection, collection: str, doc_id: DocId, where: Optional[dict]) -> Optional[dict]:
        cond, params = where_mod.to_sql(where)
        row = con.execute(
            f"SELECT data FROM documents WHERE collection = ? AND doc_key = ? AND {cond}",
            [collection, str(doc_id), *params],
        ).fetchone()
        return json.loads(row["data"]) if row else None

    @staticmethod
    def _find(con: sqlite3.Connection, collection: str, where: Optional[dict], limit: Optional[int], offset: int):
        cond, params = where_mod.to_sql(where)
        base = f"FROM documents WHERE collection = ? AND {cond}"
        total = con.execute(f"SELECT COUNT(*) {base}", [collection, *params]).fetchone()[0]

        sql = f"SELECT data {base} ORDER BY seq"
        page_params: List[Any] = [collection, *params]
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            page_params += [max(int(limit), 0), max(int(offset or 0), 0)]
        else:
            sql += " LIMIT -1 OFFSET ?"
            page_params += [max(int(offset or 0), 0)]
        rows = con.execute(sql, page_params).fetchall()
        return [json.loads(r["data"]) for r in rows], int(total)

    @staticmethod
    def _ids(con: sqlite3.Connection, collection: str) -> List[DocId]:
        rows = con.execute(
            "SELECT json_extract(data, '$.id') AS id FROM documents WHERE collection = ? ORDER BY seq",
            [collection],
        ).fetchall()
        return [r["id"] for r in rows]

    @staticmethod
    def _insert(con: sqlite3.Connection, collection: str, doc: dict) -> None:
        con.execute(
            "INSERT INTO documents (collection, doc_key, data, updated_at) VALUES (?, ?, ?, ?)",
            [collection, str(doc["id"]), json.dumps(doc, ensure_ascii=False), int(time.time())],
        )
        con.commit()

    @staticmethod
    def _replace(con: sqlite3.Connection, collection: str, doc: dict) -> int:
        cur = con.execute(
            "UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND doc_key = ?",
            [json.dumps(doc, ensure_ascii=False), int(time.time()), collection, str(doc["id"])],
        )
        con.commit()
        return cur.rowcount

    @staticmethod
    def _delete(con: sqlite3.Connection, collection: str, doc_id: DocId) -> int:
        cur = con.execute("DELETE FROM documents WHERE collection = ? AND doc_key = ?", [collection, str(doc_id)])
        con.commit()
        return cur.rowcount

    # ---- port -----------------------------------------------------------------
    async def fetch_by_id(
        self,
        collection: str,
        doc_id: DocId,
        where: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        doc = await asyncio.to_thread(self._run, self._fetch_one, collection, doc_id, where)
        if doc is None:
            raise NotFound(collection, doc_id)
        return doc

    async def find(
        self,
        collection: str,
        where: Optional[Dict[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        return await asyncio.to_thread(self._run, self._find, collection, where, limit, offset)

    async def ids(self, collection: str) -> List[DocId]:
        return await asyncio.to_thread(self._run, self._ids, collection)

    async def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        try:
            await asyncio.to_thread(self._run, self._insert, collection, doc)
        except sqlite3.IntegrityError as e:
            raise DuplicateDocument(collection, doc["id"]) from e
        return copy.deepcopy(doc)

    async def replace(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        changed = await asyncio.to_thread(self._run, self._replace, collection, doc)
        if not changed:
            raise NotFound(collection, doc["id"])
        return copy.deepcopy(doc)

    async def delete(self, collection: str, doc_id: DocId) -> None:
        deleted = await asyncio.to_thread(self._run, self._delete, collection, doc_id)
        if not deleted:
            raise NotFound(collection, doc_id)
