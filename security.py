"""
Authentication helpers: password hashing, JWT access tokens, login lockout and the
inactivity guard.

The lockout and inactivity rules are plain functions over timestamps so they can be
tested without a database or a clock.
"""
import math
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException
from passlib.context import CryptContext
from pydantic import BaseModel

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
JWT_SECRET = os.getenv("JWT_SECRET", "handloom-dev-secret-change-me-in-production")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", "60"))

SESSION_INACTIVITY_MIN = int(os.getenv("SESSION_INACTIVITY_MIN", "30"))
SESSION_WARNING_MIN = int(os.getenv("SESSION_WARNING_MIN", "5"))
LOGIN_MAX_ATTEMPTS = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5"))
LOGIN_LOCKOUT_MIN = int(os.getenv("LOGIN_LOCKOUT_MIN", "15"))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # MongoDB hands back naive datetimes unless the client is tz_aware
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ---------- Passwords & tokens ----------

class TokenData(BaseModel):
    user_id: str
    email: str
    role: str


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user_doc: Dict[str, Any]) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_doc.get("_id")),
        "email": user_doc.get("email"),
        "role": user_doc.get("role", "customer"),
        "exp": now + timedelta(minutes=JWT_EXP_MIN),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str, verify_exp: bool = True) -> TokenData:
    """Decode a bearer token. With verify_exp=False a lapsed token is still accepted if its
    signature holds; the session refresh path relies on the inactivity guard instead."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"], options={"verify_exp": verify_exp})
        return TokenData(user_id=payload["sub"], email=payload["email"], role=payload.get("role", "customer"))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except (jwt.InvalidTokenError, KeyError):
        raise HTTPException(status_code=401, detail="Invalid token")


# ---------- Login lockout ----------

def lockout_remaining(record: Optional[Dict[str, Any]], now: datetime) -> Optional[timedelta]:
    """Time left on an active lock, or None when the email may try again."""
    if not record:
        return None
    locked_until = as_utc(record.get("lockedUntil"))
    if locked_until is None or locked_until <= now:
        return None
    return locked_until - now


def register_failure(record: Optional[Dict[str, Any]], now: datetime,
                     max_attempts: Optional[int] = None, lockout_minutes: Optional[int] = None) -> Dict[str, Any]:
    """Return the new {attempts, lockedUntil} after one more failed login."""
    max_attempts = max_attempts or LOGIN_MAX_ATTEMPTS
    lockout_minutes = lockout_minutes or LOGIN_LOCKOUT_MIN
    attempts = int((record or {}).get("attempts", 0))
    if record and as_utc(record.get("lockedUntil")) is not None and lockout_remaining(record, now) is None:
        # the previous lock ran out, start counting again
        attempts = 0
    attempts += 1
    locked_until = now + timedelta(minutes=lockout_minutes) if attempts >= max_attempts else None
    return {"attempts": attempts, "lockedUntil": locked_until}


def attempts_left(record: Dict[str, Any], max_attempts: Optional[int] = None) -> int:
    return max((max_attempts or LOGIN_MAX_ATTEMPTS) - int(record.get("attempts", 0)), 0)


def minutes_left(remaining: timedelta) -> int:
    return max(math.ceil(remaining.total_seconds() / 60), 1)


# ---------- Inactivity guard ----------

@dataclass
class SessionState:
    status: str  # active | warning | expired
    seconds_left: int

    def as_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "secondsLeft": self.seconds_left}


class InactivityGuard:
    """
    Decides whether a session is active, due a countdown warning, or expired.

    The warning window opens `warning_minutes` before the timeout. Callers poll `check`;
    nothing here runs on its own.
    """

    def __init__(self, timeout_minutes: Optional[int] = None, warning_minutes: Optional[int] = None):
        self.timeout = timedelta(minutes=timeout_minutes if timeout_minutes is not None else SESSION_INACTIVITY_MIN)
        warning = timedelta(minutes=warning_minutes if warning_minutes is not None else SESSION_WARNING_MIN)
        self.warning = min(warning, self.timeout)

    def check(self, last_activity: Optional[datetime], now: datetime) -> SessionState:
        last_activity = as_utc(last_activity)
        if last_activity is None:
            return SessionState("expired", 0)
        elapsed = now - last_activity
        if elapsed >= self.timeout:
            return SessionState("expired", 0)
        left = math.ceil((self.timeout - elapsed).total_seconds())
        if elapsed >= self.timeout - self.warning:
            return SessionState("warning", left)
        return SessionState("active", left)
