import time

import jwt
import pytest

from core.config import settings
from core.rate_limit import RateLimiter
from core.security import ALGORITHM, create_registration_token, create_session_token, decode_token, generate_otp
from utils.mobile_utils import national_mobile, valid_pincode
from utils.paging import paging


@pytest.mark.parametrize("raw", ["9876543210", "+91 98765 43210", "09876543210", " 98765-43210 "])
def test_national_mobile_accepts_common_spellings(raw):
    assert national_mobile(raw) == "9876543210"


@pytest.mark.parametrize("raw", ["", "12345", "5876543210", "+1 415 555 2671", "98765432101", "call me"])
def test_national_mobile_rejects(raw):
    with pytest.raises(ValueError):
        national_mobile(raw)


def test_pincode():
    assert valid_pincode(" 302001 ") == "302001"
    for bad in ("012345", "30200", "3020011", "30a001"):
        with pytest.raises(ValueError):
            valid_pincode(bad)


def test_generate_otp_length():
    assert len(generate_otp()) == settings.OTP_LENGTH
    assert len(generate_otp(4)) == 4
    assert generate_otp(8).isdigit()


def test_session_token_claims():
    claims = decode_token(create_session_token(42))
    assert claims["sub"] == "42"
    assert claims["type"] == "session"


def test_registration_token_claims():
    claims = decode_token(create_registration_token("9876543210"))
    assert claims["sub"] == "9876543210"
    assert claims["type"] == "registration"
    assert claims["exp"] - claims["iat"] == settings.OTP_EXPIRY_MINUTES * 60


def test_expired_and_tampered_tokens():
    expired = jwt.encode({"sub": "1", "type": "session", "exp": int(time.time()) - 10},
                         settings.SECRET_KEY, algorithm=ALGORITHM)
    with pytest.raises(ValueError, match="Expired token"):
        decode_token(expired)
    with pytest.raises(ValueError, match="Invalid token"):
        decode_token(create_session_token(1) + "x")


def test_rate_limiter_window(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(time, "monotonic", lambda: now[0])
    limiter = RateLimiter()

    assert [limiter.hit("k", 2, 60) for _ in range(3)] == [False, False, True]
    now[0] += 61
    assert limiter.hit("k", 2, 60) is False
    limiter.reset("k")
    assert limiter.hits == {}


def test_rate_limiter_forgets_idle_keys(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(time, "monotonic", lambda: now[0])
    limiter = RateLimiter()

    limiter.hit("api:10.0.0.1", 5, 60)
    limiter.hit("otp:9876543210", 5, 3600)
    now[0] += 61
    assert limiter.sweep() == 1
    assert set(limiter.hits) == {"otp:9876543210"}
    assert set(limiter.windows) == {"otp:9876543210"}


def test_rate_limiter_sweeps_while_counting(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(time, "monotonic", lambda: now[0])
    limiter = RateLimiter()
    limiter.sweep_every = 10

    for n in range(9):
        limiter.hit(f"api:10.0.0.{n}", 5, 60)
    now[0] += 61
    limiter.hit("api:10.0.0.200", 5, 60)
    assert set(limiter.hits) == {"api:10.0.0.200"}


def test_paging_clamps():
    assert paging(0, -5, 100) == (1, 0)
    assert paging(500, 20, 100) == (100, 20)
