import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.feature_flags import FeatureFlagsManager
from services.obs.metrics import ImportMetricsCollector


def test_shop_override_only_affects_that_shop():
    flags = FeatureFlagsManager()

    assert flags.set_flag("import.atomic_writes", False, shop_id="A.myshopify.com")

    assert flags.import_options("a.myshopify.com")["atomic_writes"] is False
    assert flags.import_options("b.myshopify.com")["atomic_writes"] is True
    assert flags.change_history[-1].shop_id == "a.myshopify.com"


def test_unknown_flag_and_bad_policy_values():
    flags = FeatureFlagsManager()

    assert flags.set_flag("bundling.enabled", True) is False
    flags.set_flag("import.on_invalid_rating", "lenient")
    assert flags.get_flag("import.on_invalid_rating") == "default"


def test_clear_shop_overrides():
    flags = FeatureFlagsManager()
    flags.set_flag("import.resolve_products", False, shop_id="a.myshopify.com")

    flags.clear_shop_overrides("a.myshopify.com")

    assert flags.import_options("a.myshopify.com")["resolve_products"] is True


def test_run_counters_and_phase_timings():
    collector = ImportMetricsCollector()

    collector.start_run("u1", "shop")
    with collector.phase_timer("u1", "normalize"):
        pass
    summary = collector.finish_run("u1", success=True, data_rows=5, imported=4, skipped=1, unresolved_products=2)

    assert summary["imported"] == 4
    assert "normalize" in summary["phases"]
    assert collector.counters["total_runs"] == 1
    assert collector.counters["successful_runs"] == 1
    assert collector.counters["rows_skipped"] == 1
    assert collector.counters["unresolved_products"] == 2
    assert collector.get_phase_diagnostics("normalize")["normalize"]["count"] == 1


def test_phase_timer_records_failed_phase():
    collector = ImportMetricsCollector()
    collector.start_run("u2", "shop")

    with pytest.raises(RuntimeError):
        with collector.phase_timer("u2", "write"):
            raise RuntimeError("boom")

    summary = collector.finish_run("u2", success=False)
    assert "write" in summary["phases"]
    assert collector.counters["failed_runs"] == 1
    assert collector.counters["reviews_imported"] == 0


def test_finish_unknown_run_returns_empty_summary():
    collector = ImportMetricsCollector()

    assert collector.finish_run("nope", success=True) == {}
    assert collector.get_performance_summary()["error"] == "No metrics available"


def test_phase_timings_keep_a_bounded_window():
    collector = ImportMetricsCollector()
    collector.start_run("u3", "shop")

    for _ in range(1005):
        with collector.phase_timer("u3", "tokenize"):
            pass

    assert len(collector.phase_timings["tokenize"]) == 1000
    assert collector.get_phase_diagnostics("tokenize")["tokenize"]["count"] == 1000
