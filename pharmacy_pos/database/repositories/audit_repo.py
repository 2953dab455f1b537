# pharmacy_pos/database/repositories/audit_repo.py
from __future__ import annotations

import json
import sqlite3
from typing import Any


class AuditLogRepo:
    """
    Append-only audit trail. `log()` never opens its own transaction: it
    writes inside whatever business transaction is in progress, so the
    trail rolls back together with the change it describes.
    """

    def __init__(self, conn: sqlite3.Connection):
        conn.row_factory = sqlite3.Row
        self.conn = conn

    def log(
        self,
        action: str,
        entity_type: str,
        entity_id: int | None = None,
        entity_name: str | None = None,
        changes: dict[str, Any] | None = None,
        user_id: int | None = None,
    ) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO audit_logs (user_id, action, entity_type, entity_id, entity_name, changes)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                action,
                entity_type,
                entity_id,
                entity_name,
                json.dumps(changes, default=str, sort_keys=True) if changes else None,
            ),
        )
        return int(cur.lastrowid)

    def list_logs(
        self,
        entity_type: str | None = None,
        entity_id: int | None = None,
        limit: int = 100,
    ) -> list[dict]:
        where: list[str] = []
        params: list[Any] = []
        if entity_type:
            where.append("entity_type = ?")
            params.append(entity_type)
        if entity_id is not None:
            where.append("entity_id = ?")
            params.append(entity_id)

        sql = "SELECT * FROM audit_logs"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY log_id DESC LIMIT ?"
        params.append(max(1, int(limit)))

        out = []
        for r in self.conn.execute(sql, params).fetchall():
            d = dict(r)
            d["changes"] = json.loads(d["changes"]) if d["changes"] else None
            out.append(d)
        return out
