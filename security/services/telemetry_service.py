# security/services/telemetry_service.py
"""
Security telemetry snapshot for the admin dashboard.

Counts audit outcomes over short windows, lists the busiest rate-limit
scopes, and raises threshold alerts.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from django.db import DatabaseError
from django.db.models import Count
from django.utils import timezone

from security.models import SecurityAuditEvent
from users.services.rate_limit_service import RateLimitStorageError, rate_limit_service
from users.validators import redact_email

logger = logging.getLogger("security.telemetry")

EventType = SecurityAuditEvent.EventType

MODERATION_EVENT_TYPES = [EventType.ADMIN_REVIEW_MODERATE]
ADMIN_USER_EVENT_TYPES = [
    EventType.ADMIN_USER_UPDATE_ROLE,
    EventType.ADMIN_USER_DELETE,
    EventType.ADMIN_USER_UPSERT,
    EventType.ADMIN_LISTING_IMAGES_REORDER,
]
VERIFY_FAILURE_OUTCOMES = ["invalid_code", "invalid_or_expired", "not_allowed", "rate_limited"]

TOP_SCOPES_LIMIT = 20
RECENT_EVENTS_LIMIT = 30

# Alert thresholds
VERIFY_FAILURES_15M_THRESHOLD = 25
REQUEST_RATE_LIMITED_15M_THRESHOLD = 20
MODERATION_1H_THRESHOLD = 30
ADMIN_USER_ACTIONS_1H_THRESHOLD = 20
SCOPE_HITS_24H_THRESHOLD = 1000


@dataclass(frozen=True)
class SecurityAlert:
    code: str
    severity: str
    message: str
    current_value: int
    threshold: int

    def as_dict(self):
        return {
            "code": self.code,
            "severity": self.severity,
            "message": self.message,
            "currentValue": self.current_value,
            "threshold": self.threshold,
        }


@dataclass(frozen=True)
class TelemetryResult:
    ok: bool
    snapshot: Optional[dict] = None
    reason: Optional[str] = None


# ============================================================
# QUERIES
# ============================================================

def _outcome_counts(event_type: str, since) -> Dict[str, int]:
    rows = (
        SecurityAuditEvent.objects.filter(event_type=event_type, created_at__gte=since)
        .values("outcome")
        .annotate(total=Count("id"))
    )
    return {row["outcome"]: row["total"] for row in rows}


def _event_outcome_counts(event_types: List[str], since) -> Dict[str, int]:
    rows = (
        SecurityAuditEvent.objects.filter(event_type__in=event_types, created_at__gte=since)
        .values("event_type", "outcome")
        .annotate(total=Count("id"))
    )
    return {f"{row['event_type']}:{row['outcome']}": row["total"] for row in rows}


def _recent_events(limit: int = RECENT_EVENTS_LIMIT) -> List[dict]:
    rows = SecurityAuditEvent.objects.order_by("-created_at", "-id").values(
        "event_type", "outcome", "actor_email", "target_email", "created_at"
    )[:limit]
    return [
        {
            "eventType": row["event_type"],
            "outcome": row["outcome"],
            "actorEmail": redact_email(row["actor_email"]),
            "targetEmail": redact_email(row["target_email"]),
            "createdAt": row["created_at"].isoformat(),
        }
        for row in rows
    ]


# ============================================================
# ALERTS
# ============================================================

def build_alerts(windows: Dict[str, Dict[str, int]], scope_hits: List[dict]) -> List[SecurityAlert]:
    alerts = []

    verify_failures = sum(windows["otpVerify15m"].get(outcome, 0) for outcome in VERIFY_FAILURE_OUTCOMES)
    if verify_failures >= VERIFY_FAILURES_15M_THRESHOLD:
        alerts.append(SecurityAlert(
            code="otp_verify_failures_burst",
            severity="critical",
            message="High burst of OTP verify failures in the last 15 minutes.",
            current_value=verify_failures,
            threshold=VERIFY_FAILURES_15M_THRESHOLD,
        ))

    request_limited = windows["otpRequest15m"].get("rate_limited", 0)
    if request_limited >= REQUEST_RATE_LIMITED_15M_THRESHOLD:
        alerts.append(SecurityAlert(
            code="otp_request_rate_limited_spike",
            severity="warning",
            message="OTP request rate-limited responses are elevated in the last 15 minutes.",
            current_value=request_limited,
            threshold=REQUEST_RATE_LIMITED_15M_THRESHOLD,
        ))

    moderation = sum(windows["moderation1h"].values())
    if moderation >= MODERATION_1H_THRESHOLD:
        alerts.append(SecurityAlert(
            code="moderation_action_spike",
            severity="warning",
            message="Moderation action volume is elevated in the last hour.",
            current_value=moderation,
            threshold=MODERATION_1H_THRESHOLD,
        ))

    admin_actions = sum(windows["adminUserActions1h"].values())
    if admin_actions >= ADMIN_USER_ACTIONS_1H_THRESHOLD:
        alerts.append(SecurityAlert(
            code="admin_user_action_spike",
            severity="warning",
            message="Admin access-management actions are elevated in the last hour.",
            current_value=admin_actions,
            threshold=ADMIN_USER_ACTIONS_1H_THRESHOLD,
        ))

    if scope_hits and scope_hits[0]["hits"] >= SCOPE_HITS_24H_THRESHOLD:
        top = scope_hits[0]
        alerts.append(SecurityAlert(
            code="rate_limit_scope_high_hits",
            severity="warning",
            message=f"Rate-limit bucket '{top['scope']}' has very high hit volume in 24h.",
            current_value=top["hits"],
            threshold=SCOPE_HITS_24H_THRESHOLD,
        ))

    if not alerts:
        alerts.append(SecurityAlert(
            code="no_active_alerts",
            severity="info",
            message="No active security alerts for current thresholds.",
            current_value=0,
            threshold=0,
        ))

    return alerts


# ============================================================
# SNAPSHOT
# ============================================================

def get_security_telemetry_snapshot(now=None) -> TelemetryResult:
    now = now or timezone.now()
    last_15m = now - timedelta(minutes=15)
    last_1h = now - timedelta(hours=1)
    last_24h = now - timedelta(hours=24)

    try:
        windows = {
            "otpRequest15m": _outcome_counts(EventType.OTP_REQUEST, last_15m),
            "otpVerify15m": _outcome_counts(EventType.OTP_VERIFY, last_15m),
            "otpVerify1h": _outcome_counts(EventType.OTP_VERIFY, last_1h),
            "moderation1h": _event_outcome_counts(MODERATION_EVENT_TYPES, last_1h),
            "adminUserActions1h": _event_outcome_counts(ADMIN_USER_EVENT_TYPES, last_1h),
        }
        scope_hits = [
            {"scope": scope, "hits": hits}
            for scope, hits in rate_limit_service.scope_hits_since(last_24h, limit=TOP_SCOPES_LIMIT)
        ]
        recent = _recent_events()
    except (DatabaseError, RateLimitStorageError) as e:
        logger.warning(f"Failed to build telemetry snapshot: {e}")
        return TelemetryResult(ok=False, reason="db_unavailable")

    alerts = build_alerts(windows, scope_hits)

    return TelemetryResult(
        ok=True,
        snapshot={
            "generatedAt": now.isoformat(),
            "windows": windows,
            "rateLimitScopeHits24h": scope_hits,
            "recentAuditEvents": recent,
            "alerts": [alert.as_dict() for alert in alerts],
        },
    )
