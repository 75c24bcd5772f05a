"""
SQLite storage for resolved window results.
"""
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, asdict


@dataclass
class WindowResult:
    id: Optional[int]
    window_id: int
    asset: str
    winner: str  # YES or NO
    result: str  # WIN, LOSS, BREAKEVEN
    pnl: float
    yes_shares: float
    no_shares: float
    total_cost: float
    resolved_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _connect(db_path: str) -> sqlite3.Connection:
    return sqlite3.connect(db_path)


def init_db(db_path: str):
    """Initialize the database with required tables."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(db_path)
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS results (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            window_id INTEGER NOT NULL,
            asset TEXT NOT NULL,
            winner TEXT NOT NULL,
            result TEXT NOT NULL,
            pnl REAL NOT NULL,
            yes_shares REAL NOT NULL,
            no_shares REAL NOT NULL,
            total_cost REAL NOT NULL,
            resolved_at TEXT NOT NULL,
            UNIQUE (window_id, asset)
        )
    """)

    conn.commit()
    conn.close()


def record_result(db_path: str, result: WindowResult) -> Optional[int]:
    """
    Insert a resolved window. A window/asset pair is stored once; a repeat
    insert returns None.
    """
    conn = _connect(db_path)
    cursor = conn.cursor()

    resolved_at = result.resolved_at or datetime.now(timezone.utc).isoformat()
    cursor.execute("""
        INSERT OR IGNORE INTO results
        (window_id, asset, winner, result, pnl, yes_shares, no_shares, total_cost, resolved_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        result.window_id, result.asset, result.winner, result.result, result.pnl,
        result.yes_shares, result.no_shares, result.total_cost, resolved_at
    ))

    row_id = cursor.lastrowid if cursor.rowcount else None
    conn.commit()
    conn.close()
    return row_id


def load_stats(db_path: str) -> dict:
    """All-time totals from stored results."""
    conn = _connect(db_path)
    conn.row_factory = sqlite3.Row
    cursor = conn.cursor()

    cursor.execute("""
        SELECT
            COALESCE(SUM(CASE WHEN result = 'WIN' THEN 1 ELSE 0 END), 0) AS wins,
            COALESCE(SUM(CASE WHEN result = 'LOSS' THEN 1 ELSE 0 END), 0) AS losses,
            COALESCE(SUM(CASE WHEN result = 'BREAKEVEN' THEN 1 ELSE 0 END), 0) AS breakeven,
            COALESCE(SUM(pnl), 0) AS total_pnl
        FROM results
    """)
    row = cursor.fetchone()
    conn.close()

    return dict(row) if row else {"wins": 0, "losses": 0, "breakeven": 0, "total_pnl": 0.0}


def recent_results(db_path: str, limit: int = 100) -> list[WindowResult]:
    """Most recent results first."""
    conn = _connect(db_path)
    conn.row_factory = sqlite3.Row
    cursor = conn.cursor()

    cursor.execute("SELECT * FROM results ORDER BY resolved_at DESC, id DESC LIMIT ?", (limit,))
    rows = cursor.fetchall()
    conn.close()

    return [WindowResult(**dict(row)) for row in rows]
