"""
Credential hygiene for an application.

This is a liveness signal, not a vulnerability signal: an app whose secrets
and certificates have all expired cannot authenticate any more, so its grants
are dead weight that can be revoked without breaking anything.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Iterable

from .models import parse_dt

EXPIRY_WARNING_DAYS = 30

HEALTH_NONE = "None"
HEALTH_EXPIRED = "ALL EXPIRED"
HEALTH_EXPIRING = "EXPIRING SOON"
HEALTH_OK = "Healthy"


def latest_expiry(credentials: Iterable[dict]) -> datetime | None:
    """Latest endDateTime across the credentials; unparseable dates are ignored."""
    expiries = [dt for c in credentials if (dt := parse_dt(c.get("endDateTime")))]
    return max(expiries) if expiries else None


def credential_health(
    password_credentials: Iterable[dict],
    key_credentials: Iterable[dict],
    now: datetime,
) -> str:
    """
    Classify by the last moment the app still holds *some* valid credential.

    Returns "None", "ALL EXPIRED", "EXPIRING SOON (<n> days)" or "Healthy".
    """
    max_expiry = latest_expiry([*password_credentials, *key_credentials])
    if max_expiry is None:
        return HEALTH_NONE
    if max_expiry < now:
        return HEALTH_EXPIRED
    if max_expiry <= now + timedelta(days=EXPIRY_WARNING_DAYS):
        days_left = math.ceil((max_expiry - now).total_seconds() / 86400)
        return f"{HEALTH_EXPIRING} ({days_left} days)"
    return HEALTH_OK


def is_expired(health: str) -> bool:
    return health == HEALTH_EXPIRED


def is_expiring(health: str) -> bool:
    return health.startswith(HEALTH_EXPIRING)


def credential_status(credentials: Iterable[dict]) -> str:
    """Column value for the secret / certificate counts."""
    count = len(list(credentials))
    return f"Valid ({count})" if count else "None"
