"""Evaluate a case's enabled alert rules against a freshly polled balance."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Protocol

from walletwatch.alerts.rules import DETECTORS, RuleContext, parse_rule_config
from walletwatch.models.schema import Alert, AlertRule, BalanceSnapshot, ChainBalance, utcnow

logger = logging.getLogger(__name__)

# evaluate() reads the previous snapshot itself unless one is passed
_LOOKUP: Any = object()


class SnapshotReader(Protocol):
    def latest(self, case_id: str, address_id: str) -> BalanceSnapshot | None: ...

    def in_range(self, case_id: str, address_id: str, start: datetime, end: datetime) -> list[BalanceSnapshot]: ...


class RuleReader(Protocol):
    def list_enabled(self, case_id: str) -> list[AlertRule]: ...


class AlertRuleEngine:
    def __init__(self, rules: RuleReader, snapshots: SnapshotReader):
        self.rules = rules
        self.snapshots = snapshots

    def evaluate(
        self,
        case_id: str,
        address_id: str,
        current: ChainBalance,
        *,
        previous: BalanceSnapshot | None = _LOOKUP,
        evaluated_at: datetime | None = None,
        current_snapshot_id: str | None = None,
    ) -> list[Alert]:
        """Run every enabled rule once and return the alerts that fired.

        ``previous`` must be the snapshot that was latest before ``current``
        was recorded; when omitted, the latest stored snapshot is used, which
        is only right if ``current`` has not been written yet. Volatility
        windows end at ``evaluated_at`` and skip ``current_snapshot_id``.
        Alerts are returned, not persisted.
        """
        if previous is _LOOKUP:
            previous = self.snapshots.latest(case_id, address_id)
        evaluated_at = evaluated_at or utcnow()

        def snapshots_since(window: timedelta) -> list[BalanceSnapshot]:
            found = self.snapshots.in_range(case_id, address_id, evaluated_at - window, evaluated_at)
            return [s for s in found if s.id != current_snapshot_id]

        ctx = RuleContext(current=current, previous=previous, snapshots_since=snapshots_since)

        alerts: list[Alert] = []
        for rule in self.rules.list_enabled(case_id):
            detector = DETECTORS.get(rule.rule_type)
            if detector is None:
                logger.warning(f"Skipping rule {rule.id} ({rule.name}): unknown type {rule.rule_type!r}")
                continue
            try:
                config = parse_rule_config(rule.rule_type, rule.config)
            except ValueError as e:
                logger.warning(f"Skipping rule {rule.id} ({rule.name}): invalid config: {e}")
                continue
            try:
                detection = detector(config, ctx)
            except Exception:
                logger.exception(f"Rule {rule.id} ({rule.name}) failed for address {address_id}")
                continue
            if detection is None:
                continue

            logger.info(f"Rule {rule.name} ({rule.rule_type}) fired for address {address_id}: {detection.message}")
            alerts.append(Alert(
                case_id=case_id,
                address_id=address_id,
                rule_id=rule.id,
                alert_type=rule.rule_type,
                title=detection.title,
                message=detection.message,
                details=detection.details,
                severity=detection.severity,
                triggered_at=evaluated_at,
            ))
        return alerts
