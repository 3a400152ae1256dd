"""
UserOperation validation metrics.

Prometheus counters and histograms for validation verdicts, so operators can
see which rules reject traffic and how long trace analysis takes.
"""

from __future__ import annotations

import threading

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


class ValidationMetrics:
    """Metrics for trace validation passes."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or REGISTRY

        self.validations_total = Counter(
            'erc4337_validations_total',
            'Total number of UserOperation validation passes',
            ['result'],
            registry=self.registry
        )

        self.violations_total = Counter(
            'erc4337_rule_violations_total',
            'Total number of rejected UserOperations by violated rule',
            ['rule', 'entity'],
            registry=self.registry
        )

        self.trace_steps = Histogram(
            'erc4337_trace_steps',
            'Number of trace steps attributed to validated entities',
            buckets=[10, 100, 1_000, 10_000, 100_000, 1_000_000],
            registry=self.registry
        )

        self.validation_latency = Histogram(
            'erc4337_validation_latency_seconds',
            'Time spent classifying one validation trace',
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
            registry=self.registry
        )

    def record_accepted(self, duration: float, step_count: int) -> None:
        self.validations_total.labels(result="accepted").inc()
        self.validation_latency.observe(duration)
        self.trace_steps.observe(step_count)

    def record_rejected(self, rule: str, entity: str, duration: float) -> None:
        self.validations_total.labels(result="rejected").inc()
        self.violations_total.labels(rule=rule, entity=entity).inc()
        self.validation_latency.observe(duration)

    def record_malformed(self, duration: float) -> None:
        self.validations_total.labels(result="malformed").inc()
        self.validation_latency.observe(duration)


_default_metrics: ValidationMetrics | None = None
_default_metrics_lock = threading.Lock()


def get_validation_metrics() -> ValidationMetrics:
    """Process-wide metrics registered on the default Prometheus registry."""
    global _default_metrics
    with _default_metrics_lock:
        if _default_metrics is None:
            _default_metrics = ValidationMetrics()
        return _default_metrics
