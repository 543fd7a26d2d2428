from decimal import Decimal

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class MetricsUpdater:
    """
    applies key pool and cost ingestion events to Prometheus metrics.
     - cost_usd_total / cost_records_total: what the ingestion runs
     added to the ledger.
     - active_keys: size of the active credential set.
     - assignments_total: credentials handed out to new callers.
     - refresh_*: duration, outcome and errors of refresh attempts.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._cost_usd: "Counter" = Counter(
            "keysmith_cost_usd_total",
            "Total ingested cost in USD",
            registry=registry,
        )
        self._cost_records: "Counter" = Counter(
            "keysmith_cost_records_total",
            "Total number of ingested cost records",
            registry=registry,
        )
        self._active_keys: "Gauge" = Gauge(
            "keysmith_active_keys",
            "Number of active API keys in the pool",
            registry=registry,
        )
        self._assignments: "Counter" = Counter(
            "keysmith_assignments_total",
            "Total number of API keys assigned to new callers",
            registry=registry,
        )
        self._refresh_duration: "Histogram" = Histogram(
            "keysmith_refresh_duration_seconds",
            "Duration of cost refresh runs",
            registry=registry,
        )
        self._refresh_outcomes: "Counter" = Counter(
            "keysmith_refresh_attempts_total",
            "Total refresh attempts by outcome",
            ["outcome"],
            registry=registry,
        )
        self._refresh_errors: "Counter" = Counter(
            "keysmith_refresh_errors_total",
            "Total number of refresh errors by error type",
            ["error"],
            registry=registry,
        )
        self._last_refresh_success: "Gauge" = Gauge(
            "keysmith_last_refresh_success_timestamp_seconds",
            "Unix timestamp of the last successful cost refresh",
            registry=registry,
        )

    def record_ingested(self, records: "int", amount_usd: "Decimal") -> "None":
        self._cost_records.inc(records)
        if amount_usd > 0:
            self._cost_usd.inc(float(amount_usd))

    def set_active_keys(self, count: "int") -> "None":
        self._active_keys.set(count)

    def inc_assignment(self) -> "None":
        self._assignments.inc()

    def observe_refresh_duration(self, duration_seconds: "float") -> "None":
        self._refresh_duration.observe(duration_seconds)

    def inc_refresh_outcome(self, outcome: "str") -> "None":
        self._refresh_outcomes.labels(outcome=outcome).inc()

    def inc_refresh_error(self, error: "str") -> "None":
        self._refresh_errors.labels(error=error).inc()

    def set_last_refresh_success(self, timestamp: "float") -> "None":
        self._last_refresh_success.set(timestamp)
