"""
Security utilities: admin password check, bearer sessions, input sanitization.
"""
import hmac
import re
import secrets
from collections import OrderedDict
from datetime import datetime, timedelta, timezone

import jwt

ADMIN_SUBJECT = "admin"


# ── Admin password ──

def check_password(submitted, expected: str) -> bool:
    """Constant-time compare. An unset secret never matches."""
    if not expected or not isinstance(submitted, str) or not submitted:
        return False
    return hmac.compare_digest(submitted.encode("utf-8"), expected.encode("utf-8"))


def bearer_token(auth_header: str) -> str | None:
    """Extract the token from 'Bearer <token>'."""
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


# ── Sessions ──

class SignedSessions:
    """Stateless HS256 tokens; any instance holding the secret can verify them."""

    def __init__(self, secret: str, ttl_seconds: int):
        self.secret = secret
        self.ttl = timedelta(seconds=ttl_seconds)

    def issue(self) -> tuple[str, datetime]:
        now = datetime.now(timezone.utc)
        expires = now + self.ttl
        payload = {"sub": ADMIN_SUBJECT, "iat": now, "exp": expires, "jti": secrets.token_hex(8)}
        return jwt.encode(payload, self.secret, algorithm="HS256"), expires

    def is_valid(self, token: str) -> bool:
        if not token:
            return False
        try:
            payload = jwt.decode(token, self.secret, algorithms=["HS256"])
        except jwt.InvalidTokenError:
            return False
        return payload.get("sub") == ADMIN_SUBJECT


class MemorySessions:
    """Opaque tokens held in process memory. Keeps the most recent max_sessions."""

    def __init__(self, ttl_seconds: int, max_sessions: int = 100):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_sessions = max(1, max_sessions)
        self._tokens = OrderedDict()

    def issue(self) -> tuple[str, datetime]:
        token = secrets.token_hex(32)
        expires = datetime.now(timezone.utc) + self.ttl
        self._tokens[token] = expires
        while len(self._tokens) > self.max_sessions:
            self._tokens.popitem(last=False)
        return token, expires

    def is_valid(self, token: str) -> bool:
        expires = self._tokens.get(token) if token else None
        if expires is None:
            return False
        if expires <= datetime.now(timezone.utc):
            del self._tokens[token]
            return False
        return True

    def __len__(self):
        return len(self._tokens)


# ── Input sanitization ──

def sanitize_text(text, max_length: int = 5000) -> str:
    """Strip control characters and enforce length limit."""
    if not text:
        return ""
    text = str(text)[:max_length]
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)
    return text.strip()


def clamp_int(value, low: int, high: int, default: int = None) -> int:
    """Safely parse and clamp an integer."""
    try:
        v = int(value)
        return max(low, min(high, v))
    except (TypeError, ValueError):
        return default if default is not None else low
