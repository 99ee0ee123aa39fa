"""SQLite storage for tokens, holder snapshots, audit logs and stats.

Connections are never shared: every operation opens its own, and writes run
inside an explicit BEGIN IMMEDIATE / COMMIT with ROLLBACK on any error.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .token_accounts import RankedHolder

logger = logging.getLogger(__name__)

Json = Dict[str, Any]

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tokens (
      mint TEXT PRIMARY KEY,
      ticker TEXT,
      creator_address TEXT,
      volume_24h REAL NOT NULL DEFAULT 0,
      market_cap REAL NOT NULL DEFAULT 0,
      created_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_tokens_volume ON tokens(volume_24h);",
    "CREATE INDEX IF NOT EXISTS idx_tokens_mcap ON tokens(market_cap);",
    """
    CREATE TABLE IF NOT EXISTS token_holders (
      mint TEXT NOT NULL,
      holder_address TEXT NOT NULL,
      rank INTEGER NOT NULL,
      last_updated INTEGER NOT NULL,
      PRIMARY KEY (mint, holder_address)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_holders_holder ON token_holders(holder_address);",
    """
    CREATE TABLE IF NOT EXISTS airdrop_logs (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      amount REAL NOT NULL,
      recipients INTEGER NOT NULL,
      total_points INTEGER NOT NULL,
      signatures TEXT NOT NULL,
      details TEXT NOT NULL,
      timestamp TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS cycle_logs (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      type TEXT NOT NULL,
      status TEXT NOT NULL,
      reason TEXT NOT NULL,
      data TEXT NOT NULL,
      timestamp TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS stats (
      key TEXT PRIMARY KEY,
      value REAL NOT NULL DEFAULT 0
    );
    """,
)

STAT_KEYS = (
    "lifetimeCreatorFeesLamports",
    "accumulatedFeesLamports",
    "totalPumpBoughtLamports",
    "totalPumpTokensBought",
    "nextCheckTime",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _now_ms() -> int:
    return int(time.time() * 1000)


class Store:
    def __init__(self, path: str) -> None:
        self.path = str(path)

    def _connect(self) -> sqlite3.Connection:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(
            self.path,
            timeout=30.0,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA busy_timeout=30000;")
        return con

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        with self.connection() as con:
            con.execute("BEGIN IMMEDIATE;")
            try:
                yield con
            except BaseException:
                con.execute("ROLLBACK;")
                raise
            con.execute("COMMIT;")

    def init_schema(self) -> None:
        with self.write_tx() as con:
            for stmt in SCHEMA:
                con.execute(stmt)
            con.executemany(
                "INSERT OR IGNORE INTO stats (key, value) VALUES (?, 0)",
                [(k,) for k in STAT_KEYS],
            )

    # ---- tokens (written by the market-data collaborator) ----

    def upsert_token(
        self,
        mint: str,
        creator_address: Optional[str],
        volume_24h: float = 0.0,
        market_cap: float = 0.0,
        ticker: Optional[str] = None,
    ) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                INSERT INTO tokens (mint, ticker, creator_address, volume_24h, market_cap, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(mint) DO UPDATE SET
                  ticker = COALESCE(excluded.ticker, tokens.ticker),
                  creator_address = COALESCE(excluded.creator_address, tokens.creator_address),
                  volume_24h = excluded.volume_24h,
                  market_cap = excluded.market_cap
                """,
                (mint, ticker, creator_address, volume_24h, market_cap, _now_iso()),
            )

    def top_tokens_by_volume(self, limit: int) -> List[sqlite3.Row]:
        with self.connection() as con:
            return con.execute(
                "SELECT mint, creator_address, ticker FROM tokens "
                "ORDER BY volume_24h DESC, mint ASC LIMIT ?",
                (limit,),
            ).fetchall()

    def top_token_by_market_cap(self) -> Optional[sqlite3.Row]:
        with self.connection() as con:
            return con.execute(
                "SELECT mint, creator_address, ticker FROM tokens "
                "ORDER BY market_cap DESC, mint ASC LIMIT 1"
            ).fetchone()

    # ---- holder snapshots ----

    def replace_holders(self, mint: str, holders: Sequence[RankedHolder]) -> None:
        """Delete-then-insert in one transaction; the old snapshot survives any error."""
        now = _now_ms()
        with self.write_tx() as con:
            con.execute("DELETE FROM token_holders WHERE mint = ?", (mint,))
            con.executemany(
                "INSERT INTO token_holders (mint, holder_address, rank, last_updated) "
                "VALUES (?, ?, ?, ?)",
                [(mint, h.owner, h.rank, now) for h in holders],
            )

    def holders_for_mint(self, mint: str) -> List[Tuple[str, int]]:
        with self.connection() as con:
            rows = con.execute(
                "SELECT holder_address, rank FROM token_holders WHERE mint = ? ORDER BY rank",
                (mint,),
            ).fetchall()
        return [(r["holder_address"], int(r["rank"])) for r in rows]

    def holder_position_counts(self, mints: Sequence[str]) -> Dict[str, int]:
        """Number of distinct mints (out of `mints`) each address is a ranked holder of."""
        if not mints:
            return {}
        placeholders = ",".join("?" for _ in mints)
        with self.connection() as con:
            rows = con.execute(
                f"SELECT holder_address, COUNT(DISTINCT mint) AS positions "
                f"FROM token_holders WHERE mint IN ({placeholders}) "
                f"GROUP BY holder_address ORDER BY holder_address",
                list(mints),
            ).fetchall()
        return {r["holder_address"]: int(r["positions"]) for r in rows}

    # ---- audit logs ----

    def insert_airdrop_log(
        self,
        amount: float,
        recipients: int,
        total_points: int,
        signatures: Sequence[str],
        details: Json,
    ) -> None:
        with self.write_tx() as con:
            con.execute(
                "INSERT INTO airdrop_logs (amount, recipients, total_points, signatures, details, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    amount,
                    recipients,
                    total_points,
                    ",".join(signatures),
                    json.dumps(details, sort_keys=True),
                    _now_iso(),
                ),
            )

    def recent_airdrop_logs(self, limit: int = 10) -> List[Json]:
        with self.connection() as con:
            rows = con.execute(
                "SELECT * FROM airdrop_logs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        out = []
        for r in rows:
            entry = dict(r)
            entry["signatures"] = [s for s in entry["signatures"].split(",") if s]
            entry["details"] = json.loads(entry["details"])
            out.append(entry)
        return out

    def append_cycle_log(self, log_type: str, status: str, reason: str, data: Json) -> None:
        with self.write_tx() as con:
            con.execute(
                "INSERT INTO cycle_logs (type, status, reason, data, timestamp) VALUES (?, ?, ?, ?, ?)",
                (log_type, status, reason, json.dumps(data, sort_keys=True, default=str), _now_iso()),
            )

    def recent_cycle_logs(self, limit: int = 10) -> List[Json]:
        with self.connection() as con:
            rows = con.execute(
                "SELECT * FROM cycle_logs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        out = []
        for r in rows:
            entry = dict(r)
            entry["data"] = json.loads(entry["data"])
            out.append(entry)
        return out

    # ---- stats ----

    def increment_stat(self, key: str, amount: float) -> None:
        with self.write_tx() as con:
            con.execute(
                "INSERT INTO stats (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = value + excluded.value",
                (key, amount),
            )

    def set_stat(self, key: str, value: float) -> None:
        with self.write_tx() as con:
            con.execute(
                "INSERT INTO stats (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def get_stats(self) -> Dict[str, float]:
        with self.connection() as con:
            rows = con.execute("SELECT key, value FROM stats ORDER BY key").fetchall()
        return {r["key"]: r["value"] for r in rows}

    def record_claim(self, lamports: int) -> None:
        """Adds a successful fee claim to the lifetime and pending-spend counters."""
        with self.write_tx() as con:
            for key in ("lifetimeCreatorFeesLamports", "accumulatedFeesLamports"):
                con.execute(
                    "INSERT INTO stats (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = value + excluded.value",
                    (key, lamports),
                )

    def consume_accumulated_fees(self, lamports: int) -> None:
        with self.write_tx() as con:
            con.execute(
                "UPDATE stats SET value = MAX(0, value - ?) WHERE key = 'accumulatedFeesLamports'",
                (lamports,),
            )
