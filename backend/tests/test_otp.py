"""
One-time codes: cache expiry, generation rules and verification outcomes.
"""
import uuid

import pytest

from eqms.core.exceptions import NotFoundError, QmsError, ValidationError
from eqms.db.mongo import Collections
from eqms.models.auth import OtpAction
from eqms.services.email_service import EmailService
from eqms.services.otp_service import OtpCache, OtpService, OtpVerificationError

from conftest import API


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return OtpCache(ttl_seconds=300, clock=clock)


@pytest.fixture
def sent(monkeypatch):
    """Codes "mailed" by the service, keyed by email"""
    outbox = {}

    def fake_send(email, code):
        outbox[email] = code
        return True

    monkeypatch.setattr(EmailService, "send_otp", staticmethod(fake_send))
    return outbox


def test_cache_keys_are_case_insensitive(cache):
    cache.put("Alice@Example.com", "123456")
    assert cache.get("alice@example.com").code == "123456"


def test_cache_expiry(cache, clock):
    entry = cache.put("a@example.com", "123456")
    clock.now += 299
    assert not cache.is_expired(entry)
    clock.now += 1
    assert cache.is_expired(entry)
    assert cache.purge_expired() == 1
    assert cache.get("a@example.com") is None


async def test_generate_for_registration(db, cache, sent):
    await OtpService(db, cache).generate("new@example.com", OtpAction.REGISTER)
    assert len(sent["new@example.com"]) == 6
    assert cache.get("new@example.com").code == sent["new@example.com"]


async def test_generate_register_rejects_existing_user(db, cache, sent):
    await db[Collections.USERS].insert_one({"id": "u1", "email": "taken@example.com"})
    with pytest.raises(ValidationError):
        await OtpService(db, cache).generate("taken@example.com", OtpAction.REGISTER)
    assert sent == {}


async def test_generate_reset_requires_user(db, cache, sent):
    with pytest.raises(NotFoundError):
        await OtpService(db, cache).generate("nobody@example.com", OtpAction.RESET)


async def test_failed_email_drops_the_code(db, cache, monkeypatch):
    monkeypatch.setattr(EmailService, "send_otp", staticmethod(lambda email, code: False))
    with pytest.raises(QmsError):
        await OtpService(db, cache).generate("new@example.com", OtpAction.REGISTER)
    assert cache.get("new@example.com") is None


def test_verify_outcomes(db, cache, clock):
    service = OtpService(db, cache)

    with pytest.raises(OtpVerificationError) as exc_info:
        service.verify("a@example.com", None)
    assert exc_info.value.action is None

    with pytest.raises(OtpVerificationError) as exc_info:
        service.verify("a@example.com", "111111")
    assert exc_info.value.action == "resend"

    cache.put("a@example.com", "123456")
    with pytest.raises(OtpVerificationError) as exc_info:
        service.verify("a@example.com", "654321")
    assert exc_info.value.action is None

    service.verify("a@example.com", "123456")
    # single use
    assert cache.get("a@example.com") is None


def test_verify_expired_code(db, cache, clock):
    cache.put("a@example.com", "123456")
    clock.now += 301
    with pytest.raises(OtpVerificationError) as exc_info:
        OtpService(db, cache).verify("a@example.com", "123456")
    assert exc_info.value.action == "resend"
    assert cache.get("a@example.com") is None


async def test_otp_endpoints(client, sent):
    email = f"{uuid.uuid4().hex[:10]}@example.com"

    response = await client.post(
        f"{API}/otp/generate-otp", json={"email": email, "action": "register"}
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    response = await client.post(f"{API}/otp/verify-otp", json={"email": email, "otp": "000000x"})
    assert response.status_code == 400
    assert response.json()["success"] is False

    response = await client.post(
        f"{API}/otp/verify-otp", json={"email": email, "otp": sent[email]}
    )
    assert response.status_code == 200

    response = await client.post(
        f"{API}/otp/verify-otp", json={"email": email, "otp": sent[email]}
    )
    assert response.status_code == 400
    assert response.json()["action"] == "resend"
