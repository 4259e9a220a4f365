import os
import time

import psutil


class PerformanceMetrics:
    def __init__(self):
        self.overall_start_time = None
        self.overall_end_time = None
        self.max_memory = 0.0

    def _get_memory_usage_mb(self):
        """Mengembalikan penggunaan memori proses saat ini (MB)."""
        process = psutil.Process(os.getpid())
        return process.memory_info().rss / (1024 * 1024)

    def check_memory(self):
        self.max_memory = max(self.max_memory, self._get_memory_usage_mb())
        return self.max_memory

    def start_overall_measurement(self):
        self.max_memory = 0.0
        self.overall_start_time = time.perf_counter()
        self.check_memory()

    def end_overall_measurement(self):
        self.overall_end_time = time.perf_counter()
        self.check_memory()

    def get_overall_metrics_summary(self, solutions=None):
        if self.overall_start_time is None or self.overall_end_time is None:
            summary = {"total_time_ms": None, "max_memory_MB": None}
        else:
            summary = {
                "total_time_ms": round((self.overall_end_time - self.overall_start_time) * 1000),
                "max_memory_MB": round(self.max_memory, 2),
            }
        if solutions is not None:
            summary["discovered_utility"] = solutions.util_sum
            summary["min_solution_fitness"] = solutions.min_solution_fitness
        return summary

    def format_stats(self, solutions=None):
        summary = self.get_overall_metrics_summary(solutions)
        lines = [
            "============= STATS ==============",
            f" Total time ~ {summary['total_time_ms']} ms",
            f" Memory ~ {summary['max_memory_MB']} MB",
        ]
        if solutions is not None:
            lines.append(f" Discovered Utility   : {summary['discovered_utility']}")
            lines.append(f" Min Solution Fitness : {summary['min_solution_fitness']}")
        lines.append("==================================")
        return "\n".join(lines)
