"""DuckDB storage: append-only balance snapshots, alert rules and alerts."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, localcontext
from pathlib import Path
from typing import Any

import duckdb
import pandas as pd

from walletwatch.config import get_settings
from walletwatch.models.schema import Alert, AlertRule, BalanceSnapshot, ChainBalance, utcnow

logger = logging.getLogger(__name__)

MEMORY = ":memory:"
CENTS = Decimal("0.01")
# DECIMAL(20, 2) holds 18 integer digits
MAX_TOTAL = Decimal(10) ** 18


def get_connection(path: Path | str | None = None) -> duckdb.DuckDBPyConnection:
    """Get a DuckDB connection, creating tables if needed. ``":memory:"`` for tests."""
    if path is None:
        path = get_settings().duckdb_path
    if str(path) != MEMORY:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = duckdb.connect(str(path))
    _create_tables(conn)
    return conn


def _create_tables(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS balance_snapshots (
            id VARCHAR PRIMARY KEY,
            case_id VARCHAR NOT NULL,
            address_id VARCHAR NOT NULL,
            balance_data VARCHAR NOT NULL,
            total_value DECIMAL(20, 2) NOT NULL,
            snapshot_at TIMESTAMP NOT NULL,
            created_at TIMESTAMP NOT NULL DEFAULT current_timestamp
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_snapshots_address
        ON balance_snapshots (case_id, address_id, snapshot_at)
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS alert_rules (
            id VARCHAR PRIMARY KEY,
            case_id VARCHAR NOT NULL,
            rule_type VARCHAR NOT NULL,
            name VARCHAR NOT NULL,
            config VARCHAR NOT NULL,
            enabled BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS alerts (
            id VARCHAR PRIMARY KEY,
            case_id VARCHAR NOT NULL,
            address_id VARCHAR,
            rule_id VARCHAR,
            alert_type VARCHAR NOT NULL,
            title VARCHAR NOT NULL,
            message VARCHAR NOT NULL,
            details VARCHAR,
            severity VARCHAR NOT NULL DEFAULT 'warning',
            is_read BOOLEAN NOT NULL DEFAULT FALSE,
            triggered_at TIMESTAMP NOT NULL
        )
    """)


def to_cents(value: float | Decimal) -> Decimal:
    """Round to cents. Raises ValueError for non-finite totals or ones too large to store."""
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a number: {value!r}") from e
    if not amount.is_finite() or abs(amount) >= MAX_TOTAL:
        raise ValueError(f"Total value {value!r} cannot be stored as DECIMAL(20, 2)")
    with localcontext() as ctx:
        ctx.prec = 40
        return amount.quantize(CENTS)


_SNAPSHOT_COLS = "id, case_id, address_id, balance_data, total_value, snapshot_at"


def _row_to_snapshot(row: tuple) -> BalanceSnapshot:
    return BalanceSnapshot(
        id=row[0],
        case_id=row[1],
        address_id=row[2],
        balance_data=ChainBalance.model_validate_json(row[3]),
        total_value=row[4],
        snapshot_at=row[5],
    )


class SnapshotRepository:
    """Append-only per-address snapshots. ``snapshot_at`` defines "latest"."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def append(
        self,
        case_id: str,
        address_id: str,
        data: ChainBalance,
        snapshot_at: datetime | None = None,
    ) -> BalanceSnapshot:
        snapshot = BalanceSnapshot(
            case_id=case_id,
            address_id=address_id,
            balance_data=data,
            total_value=to_cents(data.total_value),
            snapshot_at=snapshot_at or utcnow(),
        )
        self.conn.execute(
            f"INSERT INTO balance_snapshots ({_SNAPSHOT_COLS}) VALUES (?, ?, ?, ?, ?, ?)",
            [
                snapshot.id,
                case_id,
                address_id,
                data.model_dump_json(),
                snapshot.total_value,
                snapshot.snapshot_at,
            ],
        )
        return snapshot

    def latest(self, case_id: str, address_id: str) -> BalanceSnapshot | None:
        row = self.conn.execute(f"""
            SELECT {_SNAPSHOT_COLS} FROM balance_snapshots
            WHERE case_id = ? AND address_id = ?
            ORDER BY snapshot_at DESC
            LIMIT 1
        """, [case_id, address_id]).fetchone()
        return _row_to_snapshot(row) if row else None

    def in_range(
        self,
        case_id: str,
        address_id: str,
        start: datetime,
        end: datetime,
    ) -> list[BalanceSnapshot]:
        """Snapshots with start <= snapshot_at <= end, newest first."""
        rows = self.conn.execute(f"""
            SELECT {_SNAPSHOT_COLS} FROM balance_snapshots
            WHERE case_id = ? AND address_id = ?
              AND snapshot_at >= ? AND snapshot_at <= ?
            ORDER BY snapshot_at DESC
        """, [case_id, address_id, start, end]).fetchall()
        return [_row_to_snapshot(r) for r in rows]

    def latest_for_case(self, case_id: str) -> list[BalanceSnapshot]:
        """Latest snapshot of every address in the case."""
        rows = self.conn.execute(f"""
            SELECT {_SNAPSHOT_COLS} FROM balance_snapshots
            WHERE case_id = ?
            QUALIFY row_number() OVER (PARTITION BY address_id ORDER BY snapshot_at DESC) = 1
            ORDER BY address_id
        """, [case_id]).fetchall()
        return [_row_to_snapshot(r) for r in rows]

    def history(self, case_id: str, address_id: str) -> pd.DataFrame:
        """Total value over time, oldest first."""
        return self.conn.execute("""
            SELECT snapshot_at, CAST(total_value AS DOUBLE) AS total_value, id
            FROM balance_snapshots
            WHERE case_id = ? AND address_id = ?
            ORDER BY snapshot_at
        """, [case_id, address_id]).fetchdf()

    def delete_for_address(self, address_id: str) -> None:
        """Cascade hook for a deleted monitored address."""
        self.conn.execute("DELETE FROM balance_snapshots WHERE address_id = ?", [address_id])


_ALERT_COLS = (
    "id, case_id, address_id, rule_id, alert_type, title, message, details, severity, is_read, triggered_at"
)


def _row_to_alert(row: tuple) -> Alert:
    return Alert(
        id=row[0],
        case_id=row[1],
        address_id=row[2],
        rule_id=row[3],
        alert_type=row[4],
        title=row[5],
        message=row[6],
        details=json.loads(row[7]) if row[7] else {},
        severity=row[8],
        is_read=bool(row[9]),
        triggered_at=row[10],
    )


class AlertRepository:
    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def append(self, alert: Alert) -> str:
        self.conn.execute(
            f"INSERT INTO alerts ({_ALERT_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                alert.id,
                alert.case_id,
                alert.address_id,
                alert.rule_id,
                alert.alert_type,
                alert.title,
                alert.message,
                json.dumps(alert.details, default=str),
                alert.severity,
                alert.is_read,
                alert.triggered_at,
            ],
        )
        return alert.id

    def mark_read(self, alert_id: str) -> None:
        self.conn.execute("UPDATE alerts SET is_read = TRUE WHERE id = ?", [alert_id])

    def mark_all_read(self, case_id: str) -> None:
        self.conn.execute("UPDATE alerts SET is_read = TRUE WHERE case_id = ?", [case_id])

    def list_recent(self, case_id: str, limit: int = 50, unread_only: bool = False) -> list[Alert]:
        query = f"SELECT {_ALERT_COLS} FROM alerts WHERE case_id = ?"
        if unread_only:
            query += " AND NOT is_read"
        query += f" ORDER BY triggered_at DESC LIMIT {int(limit)}"
        rows = self.conn.execute(query, [case_id]).fetchall()
        return [_row_to_alert(r) for r in rows]

    def unread_count(self, case_id: str) -> int:
        result = self.conn.execute(
            "SELECT COUNT(*) FROM alerts WHERE case_id = ? AND NOT is_read", [case_id]
        ).fetchone()
        return result[0] if result else 0


_RULE_COLS = "id, case_id, rule_type, name, config, enabled, created_at, updated_at"


def _load_config(rule_id: str, text: str) -> dict[str, Any]:
    try:
        config = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"Alert rule {rule_id} has unparseable config: {text[:100]!r}")
        return {}
    return config if isinstance(config, dict) else {}


def _row_to_rule(row: tuple) -> AlertRule:
    return AlertRule(
        id=row[0],
        case_id=row[1],
        rule_type=row[2],
        name=row[3],
        config=_load_config(row[0], row[4]),
        enabled=bool(row[5]),
        created_at=row[6],
        updated_at=row[7],
    )


class AlertRuleRepository:
    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def create(
        self,
        case_id: str,
        rule_type: str,
        name: str,
        config: dict[str, Any],
        enabled: bool = True,
    ) -> AlertRule:
        """Insert a rule. Raises ValueError if the config does not fit the rule type."""
        from walletwatch.alerts.rules import parse_rule_config

        parse_rule_config(rule_type, config)
        rule = AlertRule(case_id=case_id, rule_type=rule_type, name=name, config=config, enabled=enabled)
        self.conn.execute(
            f"INSERT INTO alert_rules ({_RULE_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [
                rule.id,
                rule.case_id,
                rule.rule_type,
                rule.name,
                json.dumps(rule.config),
                rule.enabled,
                rule.created_at,
                rule.updated_at,
            ],
        )
        return rule

    def get(self, rule_id: str) -> AlertRule | None:
        row = self.conn.execute(
            f"SELECT {_RULE_COLS} FROM alert_rules WHERE id = ?", [rule_id]
        ).fetchone()
        return _row_to_rule(row) if row else None

    def list_for_case(self, case_id: str) -> list[AlertRule]:
        rows = self.conn.execute(
            f"SELECT {_RULE_COLS} FROM alert_rules WHERE case_id = ? ORDER BY created_at DESC",
            [case_id],
        ).fetchall()
        return [_row_to_rule(r) for r in rows]

    def list_enabled(self, case_id: str) -> list[AlertRule]:
        rows = self.conn.execute(
            f"SELECT {_RULE_COLS} FROM alert_rules WHERE case_id = ? AND enabled ORDER BY created_at",
            [case_id],
        ).fetchall()
        return [_row_to_rule(r) for r in rows]

    def update(
        self,
        rule_id: str,
        name: str | None = None,
        config: dict[str, Any] | None = None,
        enabled: bool | None = None,
    ) -> AlertRule | None:
        rule = self.get(rule_id)
        if rule is None:
            return None
        if config is not None:
            from walletwatch.alerts.rules import parse_rule_config

            parse_rule_config(rule.rule_type, config)

        updated = rule.model_copy(update={
            "name": name if name else rule.name,
            "config": config if config is not None else rule.config,
            "enabled": enabled if enabled is not None else rule.enabled,
            "updated_at": utcnow(),
        })
        self.conn.execute(
            "UPDATE alert_rules SET name = ?, config = ?, enabled = ?, updated_at = ? WHERE id = ?",
            [updated.name, json.dumps(updated.config), updated.enabled, updated.updated_at, rule_id],
        )
        return updated

    def delete(self, rule_id: str) -> None:
        self.conn.execute("DELETE FROM alert_rules WHERE id = ?", [rule_id])
