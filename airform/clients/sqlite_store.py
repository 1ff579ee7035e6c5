"""SQLite-backed document store for users, forms and responses."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple


class SQLiteStore:
    """JSON documents addressed by a (pk, sk) key pair.

    Every write replaces the whole document, so callers always persist a
    complete record rather than patching individual fields.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    pk TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (pk, sk)
                )
                """
            )

    @staticmethod
    def _key(item: Dict[str, Any]) -> Tuple[str, str]:
        pk = item.get("pk")
        sk = item.get("sk")
        if not pk or not sk:
            raise ValueError("Item must include 'pk' and 'sk' keys")
        return pk, sk

    def put_item(self, item: Dict[str, Any]) -> None:
        self.put_items([item])

    def put_items(self, items: Iterable[Dict[str, Any]]) -> None:
        """Upsert several documents in a single transaction."""
        rows = [(*self._key(item), json.dumps(item)) for item in items]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO documents (pk, sk, data)
                VALUES (?, ?, ?)
                ON CONFLICT(pk, sk) DO UPDATE SET data = excluded.data
                """,
                rows,
            )

    def put_item_if_absent(self, item: Dict[str, Any]) -> bool:
        """Insert ``item`` unless its key exists; return whether it was written."""
        pk, sk = self._key(item)
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO documents (pk, sk, data) VALUES (?, ?, ?) "
                "ON CONFLICT(pk, sk) DO NOTHING",
                (pk, sk, json.dumps(item)),
            )
        return cursor.rowcount == 1

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["data"])

    def delete_items(self, keys: Iterable[Tuple[str, str]]) -> None:
        """Delete several documents in a single transaction."""
        with self._connect() as conn:
            conn.executemany(
                "DELETE FROM documents WHERE pk = ? AND sk = ?",
                list(keys),
            )

    def delete_partition(self, *, partition_key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM documents WHERE pk = ?", (partition_key,))

    def list_items_with_prefix(
        self, *, partition_key: str, sort_key_prefix: str
    ) -> list[Dict[str, Any]]:
        escaped = (
            sort_key_prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        )
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM documents WHERE pk = ? AND sk LIKE ? ESCAPE '\\'",
                (partition_key, f"{escaped}%"),
            ).fetchall()
        return [json.loads(row["data"]) for row in rows]


__all__ = ["SQLiteStore"]
