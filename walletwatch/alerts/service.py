"""One poll cycle: aggregate balances, record snapshots, run alert rules."""

from __future__ import annotations

import logging

import duckdb

from walletwatch.alerts.engine import AlertRuleEngine
from walletwatch.models.schema import AddressQuery, Alert, MonitoredAddress, PollResult
from walletwatch.portfolio.aggregator import EmptyAddressListError, PortfolioAggregator
from walletwatch.storage.database import AlertRepository, AlertRuleRepository, SnapshotRepository

logger = logging.getLogger(__name__)


class MonitorService:
    def __init__(
        self,
        aggregator: PortfolioAggregator,
        snapshots: SnapshotRepository,
        alerts: AlertRepository,
        rules: AlertRuleRepository,
    ):
        self.aggregator = aggregator
        self.snapshots = snapshots
        self.alerts = alerts
        self.engine = AlertRuleEngine(rules=rules, snapshots=snapshots)

    @classmethod
    def from_connection(cls, conn: duckdb.DuckDBPyConnection, aggregator: PortfolioAggregator | None = None) -> MonitorService:
        return cls(
            aggregator=aggregator or PortfolioAggregator.from_settings(),
            snapshots=SnapshotRepository(conn),
            alerts=AlertRepository(conn),
            rules=AlertRuleRepository(conn),
        )

    async def poll_and_detect(self, case_id: str, targets: list[MonitoredAddress]) -> PollResult:
        """Poll every target, snapshot each success and evaluate rules per address.

        A chain that failed to resolve gets no snapshot, so a provider outage
        never reads as the balance dropping to zero. A failed snapshot write
        skips rule evaluation for that address only.
        """
        if not targets:
            raise EmptyAddressListError("targets must be a non-empty list")

        portfolio = await self.aggregator.aggregate(
            [AddressQuery(chain=t.chain, address=t.address) for t in targets]
        )

        result = PollResult()
        for target, balance in zip(targets, portfolio.balances):
            if balance.error is not None:
                result.failures[target.address_id] = f"query failed: {balance.error}"
                continue

            try:
                previous = self.snapshots.latest(case_id, target.address_id)
                snapshot = self.snapshots.append(case_id, target.address_id, balance)
            except (duckdb.Error, ValueError) as e:
                logger.error(f"Snapshot write failed for address {target.address_id}: {e}")
                result.failures[target.address_id] = f"snapshot write failed: {e}"
                continue
            result.snapshots_created += 1

            try:
                fired = self.engine.evaluate(
                    case_id,
                    target.address_id,
                    balance,
                    previous=previous,
                    evaluated_at=snapshot.snapshot_at,
                    current_snapshot_id=snapshot.id,
                )
            except duckdb.Error as e:
                logger.error(f"Rule evaluation failed for address {target.address_id}: {e}")
                result.failures[target.address_id] = f"rule evaluation failed: {e}"
                continue
            result.alerts.extend(self._store_alerts(fired))

        result.alerts_triggered = len(result.alerts)
        logger.info(
            f"Case {case_id}: {result.snapshots_created} snapshots, "
            f"{result.alerts_triggered} alerts, {len(result.failures)} failures"
        )
        return result

    def _store_alerts(self, alerts: list[Alert]) -> list[Alert]:
        stored = []
        for alert in alerts:
            try:
                self.alerts.append(alert)
            except duckdb.Error as e:
                logger.error(f"Alert write failed for rule {alert.rule_id}: {e}")
                continue
            stored.append(alert)
        return stored
