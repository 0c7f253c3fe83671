"""
OTP Service
One-time codes for registration and password reset.

Codes live in an in-process cache for the lifetime of the worker. They are
not shared between workers and are lost on restart; a user simply asks for
a new code.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional
import logging
import secrets
import threading
import time

from motor.motor_asyncio import AsyncIOMotorDatabase
from starlette.concurrency import run_in_threadpool

from eqms.core.config import settings
from eqms.core.exceptions import NotFoundError, QmsError, ValidationError
from eqms.db.mongo import Collections
from eqms.models.auth import OtpAction
from eqms.services.email_service import EmailService

logger = logging.getLogger(__name__)


@dataclass
class OtpEntry:
    code: str
    expires_at: float


class OtpCache:
    """email -> (code, expiry) with a fixed TTL"""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, OtpEntry] = {}
        self._lock = threading.Lock()

    def put(self, email: str, code: str) -> OtpEntry:
        entry = OtpEntry(code=code, expires_at=self.clock() + self.ttl_seconds)
        with self._lock:
            self._entries[email.lower()] = entry
        return entry

    def get(self, email: str) -> Optional[OtpEntry]:
        with self._lock:
            return self._entries.get(email.lower())

    def delete(self, email: str) -> None:
        with self._lock:
            self._entries.pop(email.lower(), None)

    def is_expired(self, entry: OtpEntry) -> bool:
        return self.clock() >= entry.expires_at

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [k for k, v in self._entries.items() if now >= v.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)


# Process-wide cache
otp_cache = OtpCache(settings.OTP_TTL_SECONDS)


class OtpVerificationError(ValidationError):
    """Verification failed; `action` tells the client what to do next"""

    def __init__(self, message: str, action: Optional[str] = None):
        super().__init__(message, details={"action": action} if action else None)
        self.action = action


def generate_code(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


class OtpService:
    """Generate and verify one-time codes"""

    def __init__(self, db: AsyncIOMotorDatabase, cache: OtpCache = otp_cache):
        self.db = db
        self.cache = cache

    async def generate(self, email: str, action: OtpAction) -> None:
        user = await self.db[Collections.USERS].find_one({"email": email.lower()})
        if action == OtpAction.REGISTER and user:
            raise ValidationError("User already exists with this email")
        if action == OtpAction.RESET and not user:
            raise NotFoundError("User", email)

        self.cache.purge_expired()
        code = generate_code(settings.OTP_LENGTH)
        self.cache.put(email, code)

        sent = await run_in_threadpool(EmailService.send_otp, email, code)
        if not sent:
            self.cache.delete(email)
            raise QmsError("Failed to send OTP email")
        logger.info(f"OTP issued for {email} ({action.value})")

    def verify(self, email: str, code: Optional[str]) -> None:
        if not code:
            raise OtpVerificationError("OTP is required")

        entry = self.cache.get(email)
        if entry is None:
            raise OtpVerificationError("OTP not found. Please request a new one", action="resend")

        if self.cache.is_expired(entry):
            self.cache.delete(email)
            raise OtpVerificationError("OTP expired. Please request a new one", action="resend")

        if not secrets.compare_digest(entry.code, str(code)):
            raise OtpVerificationError("Invalid OTP")

        self.cache.delete(email)
        logger.info(f"OTP verified for {email}")
