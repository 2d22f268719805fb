"""Prometheus metrics shared by the authorization chain and the escalation engine."""

from prometheus_client import Counter


AUTH_FAILURES = Counter(
    "portal_auth_failures_total",
    "Requests rejected by the authentication gate",
    ["reason"],
)
ESCALATION_SWEEPS = Counter(
    "portal_escalation_sweeps_total",
    "Escalation sweeps started, by trigger (scheduled/manual/startup)",
    ["trigger"],
)
ESCALATION_SWEEPS_SKIPPED = Counter(
    "portal_escalation_sweeps_skipped_total",
    "Escalation sweeps skipped because another sweep was still running",
    ["trigger"],
)
COMPLAINTS_ESCALATED = Counter(
    "portal_complaints_escalated_total",
    "Complaints whose escalation level advanced during a sweep",
)
ESCALATION_ROW_FAILURES = Counter(
    "portal_escalation_row_failures_total",
    "Complaints that could not be evaluated or written during a sweep",
)
NOTIFICATION_FAILURES = Counter(
    "portal_notification_failures_total",
    "Notification deliveries that failed",
    ["kind"],
)
