"""
Tests for dispatch mode selection.
"""

from datetime import datetime, timedelta, timezone

from analytics_dispatch.config import AuthMode, ConfigurationSnapshot
from analytics_dispatch.core.mode import DispatchKind, DispatchMode, select_mode

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def snapshot(**overrides: object) -> ConfigurationSnapshot:
    values = {
        "enabled": True,
        "log_only": False,
        "async_enabled": False,
        "debug_enabled": False,
        "maintenance_window_active": False,
        "next_slot_after_window": None,
        "auth_mode": AuthMode.LEGACY,
    }
    values.update(overrides)
    return ConfigurationSnapshot(**values)  # type: ignore[arg-type]


class TestSelectMode:
    """Test the mode decision table."""

    def test_synchronous_by_default(self) -> None:
        mode = select_mode(snapshot(), NOW)

        assert mode == DispatchMode.immediate(background=False)
        assert mode.label == "inline"

    def test_async_runs_in_background(self) -> None:
        mode = select_mode(snapshot(async_enabled=True), NOW)

        assert mode.kind is DispatchKind.IMMEDIATE
        assert mode.background
        assert mode.run_at is None
        assert mode.label == "background"

    def test_maintenance_window_defers_synchronous(self) -> None:
        next_slot = NOW + timedelta(hours=4)

        mode = select_mode(
            snapshot(maintenance_window_active=True, next_slot_after_window=next_slot),
            NOW,
        )

        assert mode.is_deferred
        assert mode.run_at == next_slot
        assert mode.label == "deferred"

    def test_maintenance_window_wins_over_async(self) -> None:
        next_slot = NOW + timedelta(minutes=30)

        mode = select_mode(
            snapshot(
                async_enabled=True,
                maintenance_window_active=True,
                next_slot_after_window=next_slot,
            ),
            NOW,
        )

        assert mode == DispatchMode.deferred(next_slot)

    def test_log_only_does_not_change_mode(self) -> None:
        assert select_mode(snapshot(log_only=True), NOW) == select_mode(snapshot(), NOW)

    def test_missing_next_slot_falls_back_to_now(self) -> None:
        mode = select_mode(snapshot(maintenance_window_active=True), NOW)

        assert mode.is_deferred
        assert mode.run_at == NOW
