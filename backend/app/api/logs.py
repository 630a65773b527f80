"""
backend/app/api/logs.py - Registro de actividad
"""
from fastapi import APIRouter
from typing import Optional
import pandas as pd

from cod_logic.db import get_connection

router = APIRouter(prefix="/logs", tags=["logs"])


# ─────────────────────────────────────
# Helper Functions
# ─────────────────────────────────────

def add_log(
    action_type: str,
    target_type: str = None,
    target_id: str = None,
    target_name: str = None,
    user_nickname: str = None,
    details: str = None
):
    """Agrega una fila de auditoría"""
    with get_connection() as con:
        con.execute(
            """INSERT INTO activity_logs
               (action_type, target_type, target_id, target_name, user_nickname, details)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (action_type, target_type, target_id, target_name, user_nickname, details)
        )
        con.commit()


# ─────────────────────────────────────
# API Endpoints
# ─────────────────────────────────────

@router.get("")
@router.get("/")
async def get_logs(
    action_type: Optional[str] = None,
    target_type: Optional[str] = None,
    period_from: Optional[str] = None,
    period_to: Optional[str] = None,
    limit: int = 500
):
    """Lista de actividad, la más reciente primero"""
    query = "SELECT * FROM activity_logs WHERE 1=1"
    params = []

    if action_type:
        query += " AND action_type = ?"
        params.append(action_type)

    if target_type:
        query += " AND target_type = ?"
        params.append(target_type)

    if period_from:
        query += " AND date(created_at) >= date(?)"
        params.append(period_from)

    if period_to:
        query += " AND date(created_at) <= date(?)"
        params.append(period_to)

    query += " ORDER BY created_at DESC, log_id DESC LIMIT ?"
    params.append(limit)

    with get_connection() as con:
        df = pd.read_sql(query, con, params=params)
        action_types = pd.read_sql(
            "SELECT DISTINCT action_type FROM activity_logs ORDER BY action_type", con
        )['action_type'].tolist()

    logs = []
    for _, row in df.iterrows():
        logs.append({
            "log_id": int(row['log_id']),
            "action_type": row['action_type'],
            "target_type": row['target_type'] if pd.notna(row['target_type']) else None,
            "target_id": row['target_id'] if pd.notna(row['target_id']) else None,
            "target_name": row['target_name'] if pd.notna(row['target_name']) else None,
            "user_nickname": row['user_nickname'] if pd.notna(row['user_nickname']) else None,
            "details": row['details'] if pd.notna(row['details']) else None,
            "created_at": str(row['created_at']) if row['created_at'] else None,
        })

    return {
        "logs": logs,
        "total": len(logs),
        "filters": {"action_types": action_types},
    }
