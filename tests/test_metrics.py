from decimal import Decimal

from prometheus_client import CollectorRegistry

from keysmith.metrics import MetricsUpdater


class TestMetricsUpdater:
    def test_metrics_are_registered(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        MetricsUpdater(registry=registry)
        # prometheus_client strips _total suffix from Counter family names
        metric_names = [m.name for m in registry.collect()]
        assert "keysmith_cost_usd" in metric_names
        assert "keysmith_cost_records" in metric_names
        assert "keysmith_active_keys" in metric_names
        assert "keysmith_assignments" in metric_names
        assert "keysmith_refresh_duration_seconds" in metric_names
        assert "keysmith_refresh_attempts" in metric_names
        assert "keysmith_refresh_errors" in metric_names
        assert "keysmith_last_refresh_success_timestamp_seconds" in metric_names

    def test_record_ingested_increments_counters(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)

        updater.record_ingested(3, Decimal("1.50"))
        updater.record_ingested(0, Decimal("0"))

        assert registry.get_sample_value("keysmith_cost_records_total") == 3.0
        assert registry.get_sample_value("keysmith_cost_usd_total") == 1.50

    def test_pool_metrics(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)

        updater.set_active_keys(4)
        updater.inc_assignment()
        updater.inc_assignment()

        assert registry.get_sample_value("keysmith_active_keys") == 4.0
        assert registry.get_sample_value("keysmith_assignments_total") == 2.0

    def test_refresh_metrics_update(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)

        updater.observe_refresh_duration(0.5)
        updater.inc_refresh_outcome("too_soon")
        updater.inc_refresh_error("RateLimitedError")
        updater.set_last_refresh_success(1000.0)

        assert registry.get_sample_value("keysmith_refresh_duration_seconds_count") == 1.0
        assert (
            registry.get_sample_value(
                "keysmith_refresh_attempts_total", {"outcome": "too_soon"}
            )
            == 1.0
        )
        assert (
            registry.get_sample_value(
                "keysmith_refresh_errors_total", {"error": "RateLimitedError"}
            )
            == 1.0
        )
        assert (
            registry.get_sample_value("keysmith_last_refresh_success_timestamp_seconds")
            == 1000.0
        )
