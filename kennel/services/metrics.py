"""Prometheus counters bound to an explicitly constructed registry."""
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest


class KennelMetrics:
    """
    One instance per application, created in create_app and handed to
    whoever needs it. Nothing is registered on the global default registry.
    """

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()
        self.overrides_issued = Counter(
            "kennel_overrides_issued_total",
            "Override tokens issued",
            ["scope"],
            registry=self.registry,
        )
        self.overrides_consumed = Counter(
            "kennel_overrides_consumed_total",
            "Override tokens consumed",
            ["scope"],
            registry=self.registry,
        )
        self.override_failures = Counter(
            "kennel_override_failures_total",
            "Rejected override token presentations",
            ["stage"],
            registry=self.registry,
        )
        self.crud_operations = Counter(
            "kennel_crud_operations_total",
            "CRUD factory operations by outcome",
            ["entity", "verb", "outcome"],
            registry=self.registry,
        )

    content_type = CONTENT_TYPE_LATEST

    def render(self) -> bytes:
        return generate_latest(self.registry)
