"""
Import Metrics
Run counters and phase timings for review imports
"""
from typing import Dict, List, Any, Optional
import logging
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
import statistics
import threading

logger = logging.getLogger(__name__)


@dataclass
class ImportRunMetrics:
    """Metrics for one import run"""
    upload_id: str
    shop_id: str
    start_time: float
    end_time: float = 0
    total_duration_ms: float = 0
    data_rows: int = 0
    imported: int = 0
    skipped: int = 0
    unresolved_products: int = 0
    success: bool = False
    phases: Dict[str, float] = field(default_factory=dict)


class ImportMetricsCollector:
    """Collects and aggregates import metrics"""

    def __init__(self):
        self.active_runs: Dict[str, ImportRunMetrics] = {}
        self.historical_metrics = deque(maxlen=1000)
        self.phase_timings = defaultdict(lambda: deque(maxlen=1000))  # phase_name -> recent durations_ms
        self.counters = {
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "reviews_imported": 0,
            "rows_skipped": 0,
            "unresolved_products": 0,
            "rejected_uploads": 0,
        }
        self._lock = threading.Lock()

    def start_run(self, upload_id: str, shop_id: str) -> None:
        with self._lock:
            self.active_runs[upload_id] = ImportRunMetrics(
                upload_id=upload_id,
                shop_id=shop_id,
                start_time=time.time(),
            )
            self.counters["total_runs"] += 1
        logger.info(f"Started import tracking for upload: {upload_id}")

    @contextmanager
    def phase_timer(self, upload_id: str, phase_name: str):
        """Times one import phase; the timing is recorded even when the phase raises."""
        start_time = time.time()
        try:
            yield
        finally:
            duration_ms = (time.time() - start_time) * 1000
            with self._lock:
                self.phase_timings[phase_name].append(duration_ms)
                run = self.active_runs.get(upload_id)
                if run is not None:
                    run.phases[phase_name] = round(duration_ms, 2)

    def record_rejection(self, reason: str) -> None:
        with self._lock:
            self.counters["rejected_uploads"] += 1
        logger.info(f"Upload rejected: {reason}")

    def finish_run(
        self,
        upload_id: str,
        success: bool,
        data_rows: int = 0,
        imported: int = 0,
        skipped: int = 0,
        unresolved_products: int = 0,
    ) -> Dict[str, Any]:
        """Finish tracking a run and return its summary"""
        with self._lock:
            run = self.active_runs.pop(upload_id, None)
            if run is None:
                logger.warning(f"No import metrics found for upload: {upload_id}")
                return {}

            run.end_time = time.time()
            run.total_duration_ms = (run.end_time - run.start_time) * 1000
            run.data_rows = data_rows
            run.imported = imported
            run.skipped = skipped
            run.unresolved_products = unresolved_products
            run.success = success

            if success:
                self.counters["successful_runs"] += 1
                self.counters["reviews_imported"] += imported
            else:
                self.counters["failed_runs"] += 1
            self.counters["rows_skipped"] += skipped
            self.counters["unresolved_products"] += unresolved_products

            self.historical_metrics.append(run)
            return self._generate_run_summary(run)

    def get_phase_diagnostics(self, phase_name: Optional[str] = None) -> Dict[str, Any]:
        diagnostics = {}
        with self._lock:
            phases = [phase_name] if phase_name else list(self.phase_timings.keys())
            for phase in phases:
                timings = self.phase_timings.get(phase, [])
                if timings:
                    diagnostics[phase] = self._calculate_phase_stats(timings)
        return diagnostics

    def get_performance_summary(self) -> Dict[str, Any]:
        with self._lock:
            recent = list(self.historical_metrics)[-100:]
            if not recent:
                return {"error": "No metrics available", "counters": dict(self.counters)}
            durations = [m.total_duration_ms for m in recent]
            successful = sum(1 for m in recent if m.success)
            return {
                "counters": dict(self.counters),
                "success_rate": round(successful / len(recent), 3),
                "recent_runs_analyzed": len(recent),
                "performance": {
                    "avg_duration_ms": round(statistics.mean(durations), 2),
                    "p50_duration_ms": round(statistics.median(durations), 2),
                    "p95_duration_ms": round(self._percentile(durations, 95), 2),
                    "max_duration_ms": round(max(durations), 2),
                },
            }

    def reset_metrics(self) -> None:
        with self._lock:
            self.active_runs.clear()
            self.historical_metrics.clear()
            self.phase_timings.clear()
            for key in self.counters:
                self.counters[key] = 0
        logger.info("Import metrics reset")

    def _generate_run_summary(self, run: ImportRunMetrics) -> Dict[str, Any]:
        summary = asdict(run)
        summary["total_duration_ms"] = round(run.total_duration_ms, 2)
        return summary

    def _calculate_phase_stats(self, timings: List[float]) -> Dict[str, Any]:
        return {
            "count": len(timings),
            "avg_ms": round(statistics.mean(timings), 2),
            "p50_ms": round(statistics.median(timings), 2),
            "p95_ms": round(self._percentile(timings, 95), 2),
            "max_ms": round(max(timings), 2),
        }

    def _percentile(self, data: List[float], percentile: int) -> float:
        if not data:
            return 0.0
        sorted_data = sorted(data)
        index = int((percentile / 100) * len(sorted_data))
        return sorted_data[min(index, len(sorted_data) - 1)]


# Global metrics collector
metrics_collector = ImportMetricsCollector()
