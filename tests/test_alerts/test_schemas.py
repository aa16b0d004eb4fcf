"""Tests for Alert and MetricSnapshot dataclasses."""

import json
from datetime import datetime, timezone

import pytest

from market_monitor.alerts.config import AlertConfig
from market_monitor.alerts.schemas import Alert, MetricSnapshot, dedup_bucket


def _make_alert(**overrides) -> Alert:
    fields = {
        "alert_type": "SSR_BULLISH",
        "message": "SSR at 3.00 - Bullish signal.",
        "severity": "medium",
        "metric": "ssr",
        "value": 3.0,
    }
    fields.update(overrides)
    return Alert(**fields)


class TestAlert:
    """Alert validation and serialization."""

    def test_defaults(self):
        alert = _make_alert()
        assert alert.alert_id
        assert alert.created_at.tzinfo is not None
        assert alert.details == {}
        assert alert.acknowledged is False

    def test_invalid_type(self):
        with pytest.raises(ValueError, match="alert_type"):
            _make_alert(alert_type="NOT_A_TYPE")

    def test_invalid_severity(self):
        with pytest.raises(ValueError, match="severity"):
            _make_alert(severity="critical")

    def test_origin(self):
        assert _make_alert().origin == "threshold"
        release = _make_alert(
            alert_type="RELEASE_COUNTDOWN", metric="release:cpi_2026_3", value=30.0,
        )
        assert release.origin == "release"

    def test_immutable(self):
        alert = _make_alert()
        with pytest.raises(AttributeError):
            alert.value = 5.0  # type: ignore[misc]

    def test_from_dict(self):
        created = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        original = _make_alert(created_at=created, details={"bound": 4.0})
        restored = Alert.from_dict(original.to_dict())
        assert restored == original

    def test_from_dict_missing_value(self):
        data = _make_alert(value=None).to_dict()
        assert Alert.from_dict(data).value is None

    def test_details_read_only(self):
        alert = _make_alert(details={"prediction": {"summary": "Hot"}, "tags": ["cpi"]})
        with pytest.raises(TypeError):
            alert.details["bound"] = 1.0  # type: ignore[index]
        with pytest.raises(TypeError):
            alert.details["prediction"]["summary"] = "Cold"  # type: ignore[index]
        assert alert.details["tags"] == ("cpi",)

    def test_details_copied_from_caller(self):
        payload = {"prediction": {"summary": "Hot"}}
        alert = _make_alert(details=payload)
        payload["prediction"]["summary"] = "Cold"
        payload["extra"] = True
        assert alert.details == {"prediction": {"summary": "Hot"}}

    def test_to_dict_returns_plain_json(self):
        alert = _make_alert(details={"prediction": {"summary": "Hot"}, "tags": ["cpi"]})
        data = alert.to_dict()
        assert type(data["details"]) is dict
        assert type(data["details"]["prediction"]) is dict
        assert json.loads(json.dumps(data))["details"] == {
            "prediction": {"summary": "Hot"}, "tags": ["cpi"],
        }


class TestDedupKey:
    """Dedup identity."""

    def test_value_is_bucketed(self):
        a = _make_alert(value=3.001)
        b = _make_alert(value=2.999)
        assert a.dedup_key() == b.dedup_key() == "SSR_BULLISH:ssr:3.00"

    def test_different_bucket(self):
        assert _make_alert(value=3.1).dedup_key() != _make_alert(value=3.0).dedup_key()

    def test_none_value(self):
        alert = _make_alert(alert_type="RELEASE_DATA", metric="release:pce_2026_4", value=None)
        assert alert.dedup_key() == "RELEASE_DATA:release:pce_2026_4:none"

    def test_bucket_precision(self):
        assert dedup_bucket(1.23456, 0) == "1"
        assert dedup_bucket(1.23456, 3) == "1.235"


class TestMetricSnapshot:
    """Snapshot parsing from flat and nested payloads."""

    def test_flat_keys(self):
        snap = MetricSnapshot.from_dict({"ssr": 1.5, "btc_dominance": "58.2"})
        assert snap.ssr == 1.5
        assert snap.btc_dominance == 58.2
        assert snap.eth_net_flow is None

    def test_nested_payload(self):
        snap = MetricSnapshot.from_dict({
            "stablecoinMetrics": {"ssr": 3.2, "change_24h": -6.1},
            "bitcoinDominance": {"value": 41.0},
            "exchangeFlows": {
                "btc": {"netFlow": 2_000_000},
                "eth": {"netFlow": "-1500000"},
            },
        })
        assert snap.ssr == 3.2
        assert snap.stablecoin_change_24h == -6.1
        assert snap.btc_dominance == 41.0
        assert snap.btc_net_flow == 2_000_000.0
        assert snap.eth_net_flow == -1_500_000.0

    def test_flat_wins_over_nested(self):
        snap = MetricSnapshot.from_dict({"ssr": 9.0, "stablecoinMetrics": {"ssr": 1.0}})
        assert snap.ssr == 9.0

    def test_garbage_values_are_missing(self):
        snap = MetricSnapshot.from_dict({"ssr": "n/a", "btc_dominance": True})
        assert snap.ssr is None
        assert snap.btc_dominance is None

    def test_collected_at_parsed(self):
        snap = MetricSnapshot.from_dict({"collected_at": "2026-03-01T12:00:00+00:00"})
        assert snap.collected_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestAlertConfig:
    """Threshold configuration validation."""

    def test_defaults(self):
        config = AlertConfig()
        assert config.ssr_very_bullish == 2.0
        assert config.exchange_flow_threshold == 1_000_000.0
        assert config.dedup_window_minutes == 60

    def test_unordered_ssr_bands_rejected(self):
        with pytest.raises(ValueError):
            AlertConfig(ssr_bullish=1.0, ssr_very_bullish=2.0)

    def test_dominance_band_rejected(self):
        with pytest.raises(ValueError):
            AlertConfig(btc_dominance_low=60.0, btc_dominance_high=55.0)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("ALERTS_DEDUP_WINDOW_MINUTES", "15")
        assert AlertConfig().dedup_window_minutes == 15
