from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Union

from tradelog.models import Subscription
from .mapper import parse_iso
from .repository import get_latest_for_user

ROUTE_SUBSCRIBE = "/subscribe"
ROUTE_DASHBOARD = "/dashboard"

ACCESS_NONE = "none"
ACCESS_LIMITED = "limited"
ACCESS_FULL = "full"

REASON_NO_HISTORY = "no_history"
REASON_INACTIVE = "inactive"
REASON_ACTIVE = "active"

_ENTITLED_STATUSES = {"active", "trialing"}

# A stored row, or the same fields as a mapping (mapped records, cached payloads)
SubscriptionLike = Union[Subscription, Mapping[str, Any]]


@dataclass(frozen=True)
class AccessDecision:
    has_history: bool
    is_active: bool
    route: str
    access: str
    reason: str
    status: str | None = None

    def to_dict(self) -> dict:
        return {
            "route": self.route,
            "access": self.access,
            "isActive": self.is_active,
            "hasHistory": self.has_history,
            "status": self.status,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AccessDecision":
        return cls(
            has_history=bool(data.get("hasHistory")),
            is_active=bool(data.get("isActive")),
            route=data.get("route") or ROUTE_SUBSCRIBE,
            access=data.get("access") or ACCESS_NONE,
            reason=data.get("reason") or REASON_NO_HISTORY,
            status=data.get("status"),
        )


def _field(record: SubscriptionLike, name: str):
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _as_utc(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = parse_iso(value)
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def is_entitled(record: SubscriptionLike, now: datetime) -> bool:
    """
    Whether a subscription row grants full access at ``now``.

    - active/trialing: paid-through window still open, no scheduled cancellation
      already reached, and no ended_at at all
    - canceled: still entitled while the already-paid period runs, unless
      ended_at has already been reached
    """
    status = str(_field(record, "status") or "")
    period_end = _as_utc(_field(record, "current_period_end"))
    cancel_at = _as_utc(_field(record, "cancel_at"))
    ended_at = _as_utc(_field(record, "ended_at"))

    if status in _ENTITLED_STATUSES:
        # Any ended_at is terminal here; the status string may be stale
        if ended_at is not None:
            return False
        period_open = period_end is None or period_end > now
        cancel_pending = cancel_at is None or cancel_at > now
        return period_open and cancel_pending

    if status == "canceled":
        if ended_at is not None and ended_at <= now:
            return False
        return period_end is not None and period_end > now

    return False


def decide_access(record: SubscriptionLike | None, now: datetime | None = None) -> AccessDecision:
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if record is None:
        return AccessDecision(
            has_history=False,
            is_active=False,
            route=ROUTE_SUBSCRIBE,
            access=ACCESS_NONE,
            reason=REASON_NO_HISTORY,
            status=None,
        )

    status = _field(record, "status")
    if is_entitled(record, now):
        return AccessDecision(
            has_history=True,
            is_active=True,
            route=ROUTE_DASHBOARD,
            access=ACCESS_FULL,
            reason=REASON_ACTIVE,
            status=status,
        )
    return AccessDecision(
        has_history=True,
        is_active=False,
        route=ROUTE_DASHBOARD,
        access=ACCESS_LIMITED,
        reason=REASON_INACTIVE,
        status=status,
    )


def resolve_access_for_user(user_id: str, now: datetime | None = None) -> AccessDecision:
    return decide_access(get_latest_for_user(user_id), now)
