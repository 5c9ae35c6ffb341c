"""
Metrics Collection with Prometheus.

Exposes governance decisions (authorization, quota), metering, cache and
billing-event throughput alongside HTTP request metrics.
"""

from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info

from governance.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ACTION = "action"
    PLAN = "plan"
    REASON = "reason"
    ERROR_TYPE = "error_type"


class GovernanceMetrics:
    """
    Centralized metrics for the governance API.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Authorization decisions (allowed/denied by reason)
    - Quota checks (allowed/denied by action and plan)
    - Usage recorded (events, tokens, cost)
    - Response cache (hits, misses, writes, evictions)
    - Billing events (ingest outcome, processing result)
    - Invites (created, redeemed, rejected)
    """

    def __init__(self) -> None:
        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("governance_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "governance_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "governance_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "governance_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Authorization Metrics
        # ====================================================================
        self.authorization_decisions_total = Counter(
            "governance_authorization_decisions_total",
            "Authorization decisions by outcome",
            ["allowed", MetricLabels.REASON],
        )

        # ====================================================================
        # Quota Metrics
        # ====================================================================
        self.quota_checks_total = Counter(
            "governance_quota_checks_total",
            "Quota checks performed",
            [MetricLabels.ACTION, MetricLabels.PLAN, "allowed"],
        )

        self.quota_check_duration_seconds = Histogram(
            "governance_quota_check_duration_seconds",
            "Quota check duration in seconds",
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
        )

        # ====================================================================
        # Usage Metrics
        # ====================================================================
        self.usage_events_total = Counter(
            "governance_usage_events_total",
            "Usage log rows recorded",
            [MetricLabels.ACTION],
        )

        self.usage_tokens_total = Counter(
            "governance_usage_tokens_total",
            "Tokens consumed by recorded actions",
            [MetricLabels.ACTION],
        )

        self.usage_cost_usd_total = Counter(
            "governance_usage_cost_usd_total",
            "Cost in USD of recorded actions",
            [MetricLabels.ACTION],
        )

        # ====================================================================
        # Cache Metrics
        # ====================================================================
        self.cache_lookups_total = Counter(
            "governance_cache_lookups_total",
            "Response cache lookups by result",
            ["result"],
        )

        self.cache_writes_total = Counter(
            "governance_cache_writes_total",
            "Response cache writes",
        )

        self.cache_evictions_total = Counter(
            "governance_cache_evictions_total",
            "Expired cache entries removed",
            ["trigger"],
        )

        # ====================================================================
        # Billing Event Metrics
        # ====================================================================
        self.billing_events_total = Counter(
            "governance_billing_events_total",
            "Billing events ingested by outcome",
            ["event_type", "outcome"],
        )

        self.billing_event_processing_total = Counter(
            "governance_billing_event_processing_total",
            "Billing event state transitions by result",
            ["event_type", "success"],
        )

        # ====================================================================
        # Invite Metrics
        # ====================================================================
        self.invites_total = Counter(
            "governance_invites_total",
            "Invite lifecycle operations",
            [MetricLabels.OPERATION, "result"],
        )

        # ====================================================================
        # Database & Error Metrics
        # ====================================================================
        self.db_write_verifications_total = Counter(
            "governance_db_write_verifications_total",
            "Total write verification checks",
            ["success"],
        )

        self.errors_total = Counter(
            "governance_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_authorization(self, allowed: bool, reason: str | None) -> None:
        self.authorization_decisions_total.labels(
            allowed=str(allowed), reason=reason or "granted"
        ).inc()

    def record_quota_check(self, action: str, plan: str, allowed: bool, duration: float) -> None:
        self.quota_checks_total.labels(action=action, plan=plan, allowed=str(allowed)).inc()
        self.quota_check_duration_seconds.observe(duration)

    def record_usage(self, action: str, tokens: int, cost_usd: float) -> None:
        self.usage_events_total.labels(action=action).inc()
        self.usage_tokens_total.labels(action=action).inc(tokens)
        self.usage_cost_usd_total.labels(action=action).inc(cost_usd)

    def record_cache_lookup(self, hit: bool) -> None:
        self.cache_lookups_total.labels(result="hit" if hit else "miss").inc()

    def record_billing_event(self, event_type: str, outcome: str) -> None:
        self.billing_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_billing_processing(self, event_type: str, success: bool) -> None:
        self.billing_event_processing_total.labels(
            event_type=event_type, success=str(success)
        ).inc()

    def record_invite(self, operation: str, result: str) -> None:
        self.invites_total.labels(operation=operation, result=result).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = GovernanceMetrics()
