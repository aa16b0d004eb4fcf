"""Tests for the default release calendar and calendar queries."""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from market_monitor.releases import calendar
from market_monitor.releases.schemas import NotificationFlag, ScheduledRelease

NY = ZoneInfo("America/New_York")


def _make_release(release_id: str, at: datetime, impact: str = "high") -> ScheduledRelease:
    return ScheduledRelease(
        id=release_id,
        kind="CUSTOM",
        title=release_id,
        scheduled_at=at,
        impact=impact,
    )


class TestNextBusinessDay:
    """Weekend shifting."""

    def test_weekday_unchanged(self):
        assert calendar.next_business_day(date(2026, 3, 13)) == date(2026, 3, 13)

    def test_saturday_moves_to_monday(self):
        assert calendar.next_business_day(date(2026, 6, 13)) == date(2026, 6, 15)

    def test_sunday_moves_to_monday(self):
        assert calendar.next_business_day(date(2026, 12, 13)) == date(2026, 12, 14)


class TestGenerateDefaultReleases:
    """CPI/PCE series generation."""

    @pytest.fixture
    def releases(self):
        return {r.id: r for r in calendar.generate_default_releases(start_year=2026, years=1)}

    def test_count(self, releases):
        assert len(releases) == 24

    def test_cpi_on_13th_at_0830_new_york(self, releases):
        cpi = releases["cpi_2026_1"]
        assert cpi.kind == "CPI"
        assert cpi.source == "BLS"
        assert cpi.impact == "high"
        local = cpi.scheduled_at.astimezone(NY)
        assert local.date() == date(2026, 1, 13)
        assert local.time() == time(8, 30)
        assert cpi.scheduled_at.astimezone(timezone.utc).hour == 13

    def test_daylight_saving_offset(self, releases):
        # 08:30 EDT is 12:30 UTC
        assert releases["cpi_2026_4"].scheduled_at.astimezone(timezone.utc).hour == 12

    def test_weekend_shift(self, releases):
        assert releases["cpi_2026_6"].scheduled_at.date() == date(2026, 6, 15)
        assert releases["pce_2026_2"].scheduled_at.date() == date(2026, 3, 2)

    def test_title_uses_release_month(self, releases):
        assert releases["pce_2026_5"].title == (
            "Personal Consumption Expenditures (PCE) - May 2026"
        )

    def test_no_flags_fired(self, releases):
        assert all(not r.notifications_sent for r in releases.values())

    def test_multiple_years(self):
        generated = calendar.generate_default_releases(start_year=2026, years=2)
        ids = {r.id for r in generated}
        assert len(generated) == 48
        assert "cpi_2027_12" in ids


class TestQueries:
    """upcoming / next_high_impact / stats."""

    @pytest.fixture
    def now(self):
        return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.fixture
    def releases(self, now):
        return [
            _make_release("later", now + timedelta(days=10)),
            _make_release("past", now - timedelta(days=1)),
            _make_release("soon_low", now + timedelta(hours=2), impact="low"),
            _make_release("soon_high", now + timedelta(days=1)),
        ]

    def test_upcoming_sorted(self, releases, now):
        assert [r.id for r in calendar.upcoming(releases, now)] == [
            "soon_low", "soon_high", "later",
        ]

    def test_upcoming_limit(self, releases, now):
        assert len(calendar.upcoming(releases, now, limit=1)) == 1

    def test_next_high_impact(self, releases, now):
        assert calendar.next_high_impact(releases, now).id == "soon_high"

    def test_next_high_impact_none(self, now):
        low = [_make_release("x", now + timedelta(days=1), impact="low")]
        assert calendar.next_high_impact(low, now) is None

    def test_stats(self, releases, now):
        stats = calendar.stats(releases, now)
        assert stats.total == 4
        assert stats.upcoming == 3
        assert stats.past == 1
        assert stats.high_impact_upcoming == 2
        assert stats.next_release.id == "soon_low"

    def test_stats_empty(self, now):
        stats = calendar.stats([], now)
        assert stats.total == 0
        assert stats.next_release is None
        assert stats.to_dict()["next_release"] is None

    def test_custom_release_id(self):
        at = datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc)
        assert calendar.custom_release_id(at) == f"custom_{int(at.timestamp() * 1000)}"


class TestScheduledRelease:
    """Release validation and serialization."""

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            _make_release("x", datetime(2026, 3, 1, 8, 30))

    def test_invalid_kind(self):
        with pytest.raises(ValueError, match="kind"):
            ScheduledRelease(
                id="x", kind="GDP", title="x",
                scheduled_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
            )

    def test_invalid_impact(self):
        with pytest.raises(ValueError, match="impact"):
            _make_release("x", datetime(2026, 3, 1, tzinfo=timezone.utc), impact="extreme")

    def test_dict_round_trip_keeps_flags(self):
        release = _make_release("x", datetime(2026, 3, 1, tzinfo=timezone.utc))
        release.notifications_sent = {NotificationFlag.MIN_60, NotificationFlag.WARNING_24H}
        data = release.to_dict()
        assert data["notifications_sent"] == ["24h_warning", "60min"]
        assert ScheduledRelease.from_dict(data).notifications_sent == release.notifications_sent

    def test_flag_countdown_minutes(self):
        assert NotificationFlag.for_minutes(15) is NotificationFlag.MIN_15
        assert NotificationFlag.MIN_5.countdown_minutes == 5
        assert NotificationFlag.DATA_COLLECTED.countdown_minutes is None
