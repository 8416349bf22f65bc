from datetime import datetime, timedelta, timezone
import secrets

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError
from passlib.context import CryptContext
from core.config import settings

ALGORITHM = "HS256"
otp_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def generate_otp(length: int | None = None) -> str:
    length = length or settings.OTP_LENGTH
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def hash_otp(otp: str) -> str:
    return otp_context.hash(otp)


def verify_otp_hash(otp: str, otp_hash: str) -> bool:
    return otp_context.verify(otp, otp_hash)


def create_session_token(user_id: int) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(hours=settings.SESSION_TIMEOUT_HOURS)
    payload = {"sub": str(user_id), "type": "session", "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise ValueError("Expired token")
    except InvalidTokenError:
        raise ValueError("Invalid token")


def create_registration_token(mobile: str) -> str:
    """Proof that ``mobile`` passed a registration OTP, exchanged at /register."""
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=settings.OTP_EXPIRY_MINUTES)
    payload = {"sub": mobile, "type": "registration", "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)
