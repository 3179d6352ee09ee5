"""Tests for rule configs, the five detectors and the rule engine."""

from datetime import datetime, timedelta

import pytest

from walletwatch.alerts import rules
from walletwatch.alerts.engine import AlertRuleEngine
from walletwatch.alerts.rules import (
    AddressRiskConfig,
    AssetEmptiedConfig,
    BalanceVolatilityConfig,
    LargeTransferConfig,
    RuleContext,
    detect_address_risk,
    detect_asset_emptied,
    detect_large_inflow,
    detect_large_outflow,
    parse_rule_config,
)

from conftest import chain_balance, snapshot

NOW = datetime(2026, 1, 1, 12, 0, 0)


def ctx(current, previous=None, risk_level=None):
    return RuleContext(
        current=chain_balance(current, risk_level=risk_level),
        previous=snapshot(previous, at=NOW - timedelta(minutes=5)) if previous is not None else None,
    )


class TestParseRuleConfig:
    def test_camel_case_keys(self):
        config = parse_rule_config("balance_volatility", {"timeWindow": 15, "percentage": 20})

        assert isinstance(config, BalanceVolatilityConfig)
        assert config.time_window == 15
        assert config.percentage == 20

    def test_snake_case_keys(self):
        config = parse_rule_config("address_risk", {"risk_levels": [4, 5], "alert_on_new_address": False})

        assert config.risk_levels == [4, 5]
        assert config.alert_on_new_address is False

    def test_address_risk_defaults_new_address_on(self):
        assert parse_rule_config("address_risk", {"riskLevels": [5]}).alert_on_new_address is True

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown rule type"):
            parse_rule_config("whale_watch", {})

    def test_extra_keys_ignored(self):
        config = parse_rule_config("large_outflow", {"threshold": 10, "note": "ops"})

        assert config.threshold == 10


class TestLargeTransfer:
    def test_outflow_below_threshold(self):
        assert detect_large_outflow(LargeTransferConfig(threshold=1000), ctx(4500, previous=5000)) is None

    def test_outflow_fires(self):
        detection = detect_large_outflow(LargeTransferConfig(threshold=1000), ctx(3000, previous=5000))

        assert detection.severity == "error"
        assert detection.details["change_amount"] == 2000
        assert detection.details["change_percentage"] == 40
        assert detection.details["threshold"] == 1000

    def test_outflow_at_threshold_fires(self):
        assert detect_large_outflow(LargeTransferConfig(threshold=1000), ctx(4000, previous=5000)) is not None

    def test_outflow_ignores_increase(self):
        assert detect_large_outflow(LargeTransferConfig(threshold=0), ctx(6000, previous=5000)) is None

    def test_no_previous_snapshot(self):
        assert detect_large_outflow(LargeTransferConfig(threshold=0), ctx(10)) is None
        assert detect_large_inflow(LargeTransferConfig(threshold=0), ctx(10)) is None

    def test_inflow_fires_as_info(self):
        detection = detect_large_inflow(LargeTransferConfig(threshold=500), ctx(2000, previous=1000))

        assert detection.severity == "info"
        assert detection.details["change_amount"] == 1000
        assert detection.details["change_percentage"] == 100

    def test_inflow_from_zero_has_no_percentage(self):
        detection = detect_large_inflow(LargeTransferConfig(threshold=500), ctx(2000, previous=0))

        assert detection.details["change_percentage"] is None
        assert "n/a" in detection.message


class TestAssetEmptied:
    def test_percentage_drop(self):
        config = AssetEmptiedConfig(threshold=1, percentage=50)

        detection = detect_asset_emptied(config, ctx(1400, previous=10000))

        assert detection.severity == "error"
        assert detection.details["change_amount"] == 8600
        assert detection.details["change_percentage"] == 86
        assert detection.details["condition"] == "percentage"

    def test_without_percentage_only_threshold_counts(self):
        assert detect_asset_emptied(AssetEmptiedConfig(threshold=1), ctx(1400, previous=10000)) is None

    def test_threshold_crossing(self):
        detection = detect_asset_emptied(AssetEmptiedConfig(threshold=1), ctx(0.5, previous=10000))

        assert detection.severity == "error"
        assert detection.details["condition"] == "threshold"
        assert detection.details["change_amount"] == pytest.approx(9999.5)
        assert detection.details["change_percentage"] == pytest.approx(99.995)

    def test_threshold_takes_precedence(self):
        config = AssetEmptiedConfig(threshold=100, percentage=10)

        detection = detect_asset_emptied(config, ctx(50, previous=1000))

        assert detection.details["condition"] == "threshold"
        assert detection.title == "Assets emptied"

    def test_already_empty_does_not_refire(self):
        assert detect_asset_emptied(AssetEmptiedConfig(threshold=1), ctx(0, previous=0.5)) is None


class TestAddressRisk:
    config = AddressRiskConfig(risk_levels=[3, 4, 5])

    def test_high_risk_is_error(self):
        detection = detect_address_risk(self.config, ctx(100, previous=100, risk_level=5))

        assert detection.severity == "error"
        assert detection.details["risk_level"] == 5
        assert detection.details["risk_name"] == "high risk"

    def test_medium_risk_is_warning(self):
        detection = detect_address_risk(self.config, ctx(100, previous=100, risk_level=3))

        assert detection.severity == "warning"

    def test_level_not_monitored(self):
        assert detect_address_risk(self.config, ctx(100, previous=100, risk_level=2)) is None

    def test_new_address_without_risk_data(self):
        detection = detect_address_risk(self.config, ctx(100))

        assert detection.title == "New address"
        assert detection.details["is_new_address"] is True
        assert detection.details["previous_value"] is None

    def test_known_address_without_risk_data(self):
        assert detect_address_risk(self.config, ctx(100, previous=100)) is None

    def test_new_address_alert_disabled(self):
        config = AddressRiskConfig(risk_levels=[5], alert_on_new_address=False)

        assert detect_address_risk(config, ctx(100)) is None


class TestAlertRuleEngine:
    @pytest.fixture
    def engine(self, rule_repo, snapshots):
        return AlertRuleEngine(rules=rule_repo, snapshots=snapshots)

    def test_volatility_uses_oldest_snapshot_in_window(self, engine, rule_repo, snapshots):
        rule_repo.create("case-1", "balance_volatility", "15m swing", {"timeWindow": 15, "percentage": 20})
        snapshots.append("case-1", "addr-1", chain_balance(1000), snapshot_at=NOW - timedelta(minutes=20))

        assert engine.evaluate("case-1", "addr-1", chain_balance(1300), evaluated_at=NOW) == []

        snapshots.append("case-1", "addr-1", chain_balance(1000), snapshot_at=NOW - timedelta(minutes=10))

        alerts = engine.evaluate("case-1", "addr-1", chain_balance(1300), evaluated_at=NOW)

        assert len(alerts) == 1
        assert alerts[0].severity == "warning"
        assert alerts[0].details["change_percentage"] == pytest.approx(30)
        assert alerts[0].details["direction"] == "increased"

    def test_volatility_oldest_not_newest(self, engine, rule_repo, snapshots):
        rule_repo.create("case-1", "balance_volatility", "swing", {"timeWindow": 15, "percentage": 20})
        snapshots.append("case-1", "addr-1", chain_balance(1000), snapshot_at=NOW - timedelta(minutes=12))
        snapshots.append("case-1", "addr-1", chain_balance(1250), snapshot_at=NOW - timedelta(minutes=2))

        alerts = engine.evaluate("case-1", "addr-1", chain_balance(1300), evaluated_at=NOW)

        assert alerts[0].details["previous_value"] == 1000

    def test_volatility_skips_zero_base(self, engine, rule_repo, snapshots):
        rule_repo.create("case-1", "balance_volatility", "swing", {"timeWindow": 15, "percentage": 20})
        snapshots.append("case-1", "addr-1", chain_balance(0), snapshot_at=NOW - timedelta(minutes=5))

        assert engine.evaluate("case-1", "addr-1", chain_balance(5000), evaluated_at=NOW) == []

    def test_volatility_excludes_current_snapshot(self, engine, rule_repo, snapshots):
        rule_repo.create("case-1", "balance_volatility", "swing", {"timeWindow": 15, "percentage": 20})
        current = snapshots.append("case-1", "addr-1", chain_balance(1300), snapshot_at=NOW)

        alerts = engine.evaluate(
            "case-1", "addr-1", chain_balance(1300),
            previous=None, evaluated_at=NOW, current_snapshot_id=current.id,
        )

        assert alerts == []

    def test_previous_read_from_store_by_default(self, engine, rule_repo, snapshots):
        rule = rule_repo.create("case-1", "large_outflow", "out", {"threshold": 1000})
        snapshots.append("case-1", "addr-1", chain_balance(5000), snapshot_at=NOW - timedelta(minutes=5))

        alerts = engine.evaluate("case-1", "addr-1", chain_balance(3000), evaluated_at=NOW)

        assert [a.rule_id for a in alerts] == [rule.id]
        assert alerts[0].alert_type == "large_outflow"
        assert alerts[0].case_id == "case-1"
        assert alerts[0].address_id == "addr-1"
        assert alerts[0].triggered_at == NOW

    def test_evaluation_is_repeatable(self, engine, rule_repo, snapshots):
        rule_repo.create("case-1", "large_outflow", "out", {"threshold": 1000})
        previous = snapshot(5000, at=NOW - timedelta(minutes=5))

        first = engine.evaluate("case-1", "addr-1", chain_balance(3000), previous=previous, evaluated_at=NOW)
        second = engine.evaluate("case-1", "addr-1", chain_balance(3000), previous=previous, evaluated_at=NOW)

        assert [(a.rule_id, a.details) for a in first] == [(a.rule_id, a.details) for a in second]

    def test_disabled_rules_ignored(self, engine, rule_repo):
        rule_repo.create("case-1", "large_outflow", "out", {"threshold": 0}, enabled=False)
        previous = snapshot(5000)

        assert engine.evaluate("case-1", "addr-1", chain_balance(10), previous=previous, evaluated_at=NOW) == []

    def test_malformed_and_unknown_rules_skipped(self, engine, conn, rule_repo):
        conn.execute(
            "INSERT INTO alert_rules VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            ["bad-config", "case-1", "large_outflow", "broken", '{"threshold": "lots"}', True, NOW, NOW],
        )
        conn.execute(
            "INSERT INTO alert_rules VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            ["bad-type", "case-1", "whale_watch", "legacy", "{}", True, NOW, NOW],
        )
        good = rule_repo.create("case-1", "large_outflow", "out", {"threshold": 1000})

        alerts = engine.evaluate(
            "case-1", "addr-1", chain_balance(3000), previous=snapshot(5000), evaluated_at=NOW,
        )

        assert [a.rule_id for a in alerts] == [good.id]

    def test_failing_detector_does_not_stop_others(self, engine, rule_repo, monkeypatch):
        def explode(config, ctx):
            raise ZeroDivisionError("bad math")

        monkeypatch.setitem(rules.DETECTORS, "large_inflow", explode)
        rule_repo.create("case-1", "large_inflow", "in", {"threshold": 0})
        outflow = rule_repo.create("case-1", "large_outflow", "out", {"threshold": 0})

        alerts = engine.evaluate(
            "case-1", "addr-1", chain_balance(3000), previous=snapshot(5000), evaluated_at=NOW,
        )

        assert [a.rule_id for a in alerts] == [outflow.id]

    def test_other_cases_rules_not_applied(self, engine, rule_repo):
        rule_repo.create("case-2", "large_outflow", "out", {"threshold": 0})

        assert engine.evaluate(
            "case-1", "addr-1", chain_balance(0), previous=snapshot(5000), evaluated_at=NOW,
        ) == []
