from __future__ import annotations

from fastapi import Header, HTTPException, status

from .crud import normalize_email
from .db import SessionLocal
from .notifications import DbNotificationSink, NotificationSink
from .utils.time_utils import Clock


# Identity is asserted by a trusted gateway in front of the service; there is
# no login flow here.
USER_HEADER = "X-User-Email"


def get_current_user_api(x_user_email: str | None = Header(default=None, alias=USER_HEADER)) -> str:
    email = normalize_email(x_user_email)
    if not email or "@" not in email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing or invalid {USER_HEADER} header",
        )
    return email


def get_clock() -> Clock:
    return Clock()


def get_notification_sink() -> NotificationSink:
    return DbNotificationSink(SessionLocal)
