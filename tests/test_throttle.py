# tests/test_throttle.py
"""Unit tests for the image admission controller."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import datetime, timedelta, timezone
from app.services.throttle import AdmissionController, ThrottleConfig, describe


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_controller(ratio=0.01, max_per_hour=1_000_000, method="interval", enabled=True, **kwargs):
    config = ThrottleConfig(enabled=enabled, process_ratio=ratio, max_per_hour=max_per_hour,
                            sampling_method=method)
    return AdmissionController(config, **kwargs)


def run_images(controller, count, batch_size=1):
    admitted = 0
    for i in range(count):
        ok = controller.admit(i % batch_size, batch_size)
        controller.record_decision(ok)
        admitted += ok
    return admitted


class TestInterval:
    def test_ratio_holds_for_single_image_batches(self):
        controller = make_controller(clock=FakeClock())
        assert run_images(controller, 100_000, batch_size=1) == 1000

    def test_ratio_holds_for_large_batches(self):
        controller = make_controller(clock=FakeClock())
        assert run_images(controller, 100_000, batch_size=1000) == 1000

    def test_admissions_are_evenly_spaced(self):
        controller = make_controller(ratio=0.25, clock=FakeClock())
        decisions = [controller.admit() for _ in range(8)]
        assert decisions == [False, False, False, True, False, False, False, True]

    def test_zero_ratio_admits_nothing(self):
        controller = make_controller(ratio=0.0, clock=FakeClock())
        assert run_images(controller, 1000) == 0

    def test_full_ratio_admits_everything(self):
        controller = make_controller(ratio=1.0, clock=FakeClock())
        assert run_images(controller, 50) == 50


class TestHourlyCeiling:
    def test_ceiling_caps_admissions(self):
        controller = make_controller(ratio=1.0, max_per_hour=10, clock=FakeClock())
        assert run_images(controller, 50) == 10
        stats = controller.stats()
        assert stats["last_hour_admitted"] == 10
        assert stats["last_hour_skipped"] == 40

    def test_ceiling_resets_next_hour(self):
        clock = FakeClock()
        controller = make_controller(ratio=1.0, max_per_hour=10, clock=clock)
        assert run_images(controller, 20) == 10
        clock.advance(hours=1)
        assert run_images(controller, 20) == 10
        assert controller.stats()["total_processed"] == 20
        assert len(controller.stats()["hourly_stats"]) == 2


class TestModes:
    def test_disabled_admits_everything(self):
        controller = make_controller(ratio=0.0, max_per_hour=1, enabled=False, clock=FakeClock())
        assert run_images(controller, 25) == 25

    def test_random_sampling_uses_rng(self):
        draws = iter([0.5, 0.001, 0.2, 0.009])
        controller = make_controller(method="random", rng=lambda: next(draws), clock=FakeClock())
        assert [controller.admit() for _ in range(4)] == [False, True, False, True]

    def test_fails_closed_on_internal_error(self):
        def broken_clock():
            raise RuntimeError("clock exploded")
        controller = make_controller(ratio=1.0, clock=broken_clock)
        assert controller.admit() is False


class TestStats:
    def test_counters_reflect_decisions(self):
        controller = make_controller(clock=FakeClock())
        controller.record_decision(True)
        controller.record_decision(False)
        controller.record_decision(False)
        stats = controller.stats()
        assert stats["total_received"] == 3
        assert stats["total_processed"] == 1
        assert stats["total_skipped"] == 2
        assert stats["projected_if_no_throttle"] == 3
        assert stats["effective_ratio"] == pytest.approx(1 / 3)
        assert stats["last_event_at"] == "2026-03-01T10:00:00+00:00"

    def test_empty_stats(self):
        stats = make_controller(clock=FakeClock()).stats()
        assert stats["total_received"] == 0
        assert stats["effective_ratio"] == 0.0
        assert stats["hourly_stats"] == []

    def test_reset_clears_counters(self):
        controller = make_controller(ratio=1.0, clock=FakeClock())
        run_images(controller, 5)
        controller.reset()
        stats = controller.stats()
        assert stats["total_received"] == 0
        assert stats["images_seen"] == 0

    def test_old_buckets_are_pruned(self):
        clock = FakeClock()
        controller = make_controller(ratio=1.0, clock=clock)
        for _ in range(30):
            run_images(controller, 1)
            clock.advance(hours=1)
        assert len(controller.stats()["hourly_stats"]) <= 25


class TestUpdateConfig:
    def test_partial_update(self):
        controller = make_controller(ratio=0.01, max_per_hour=100, clock=FakeClock())
        config = controller.update_config(process_ratio=0.5)
        assert config.process_ratio == 0.5
        assert config.max_per_hour == 100
        assert controller.config.process_ratio == 0.5
        assert "50.00%" in config.description

    def test_values_are_clamped(self):
        controller = make_controller(clock=FakeClock())
        config = controller.update_config(process_ratio=7, max_per_hour=0)
        assert config.process_ratio == 1.0
        assert config.max_per_hour == 1

    def test_unknown_sampling_method_rejected(self):
        controller = make_controller(clock=FakeClock())
        with pytest.raises(ValueError):
            controller.update_config(sampling_method="first")
        assert controller.config.sampling_method == "interval"

    def test_describe_disabled(self):
        config = ThrottleConfig(enabled=False, process_ratio=0.1, max_per_hour=5)
        assert describe(config).startswith("Throttle disabled")
