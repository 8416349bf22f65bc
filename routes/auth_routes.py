# routes/auth_routes.py
from __future__ import annotations

import logging
import re
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from core.config import Settings, get_settings
from core.rate_limit import limiter
from core.responses import envelope, raise_for_outcome
from core.security import create_registration_token, create_session_token, decode_token
from db.database import get_db
from db.models import User
from db.schemas import UserOut, UserProfileOut
from services.notifications import Notifier, get_notifier
from services.users import UserService
from utils.mobile_utils import national_mobile, valid_pincode

log = logging.getLogger(__name__)

OTP_DIGITS = re.compile(r"^\d{4,8}$")


# ------------------------------------------------------------------------------
# Pydantic Schemas
# ------------------------------------------------------------------------------
class MobileRequest(BaseModel):
    mobile: str

    @field_validator("mobile")
    @classmethod
    def indian_mobile(cls, v: str) -> str:
        return national_mobile(v)


class SendOtpRequest(MobileRequest):
    purpose: Literal["login", "registration"] = "login"


class LoginRequest(MobileRequest):
    otp: str

    @field_validator("otp")
    @classmethod
    def numeric_otp(cls, v: str) -> str:
        v = v.strip()
        if not OTP_DIGITS.match(v):
            raise ValueError("OTP must be numeric")
        return v


class VerifyOtpRequest(LoginRequest):
    purpose: Literal["login", "registration"] = "login"


class ProfileFields(BaseModel):
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(default=None, max_length=500)
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    pincode: Optional[str] = None

    @field_validator("pincode")
    @classmethod
    def indian_pincode(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return valid_pincode(v)


class RegisterRequest(MobileRequest, ProfileFields):
    name: str = Field(min_length=2, max_length=255)
    registration_token: str = Field(min_length=1)


class UpdateProfileRequest(ProfileFields):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)


# ------------------------------------------------------------------------------
# Session helpers
# ------------------------------------------------------------------------------
def _session_user(request: Request, db: Session, settings: Settings) -> Optional[User]:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        return None
    try:
        payload = decode_token(token)
    except ValueError as e:
        log.info("Rejected session cookie: %s", e)
        return None
    sub = payload.get("sub")
    if payload.get("type") != "session" or not sub:
        return None
    user = db.get(User, int(sub))
    if not user or not user.is_verified:
        return None
    return user


def get_current_user(request: Request, db: Session = Depends(get_db),
                     settings: Settings = Depends(get_settings)) -> User:
    user = _session_user(request, db, settings)
    if user is None:
        log.warning("Authentication required for %s %s", request.method, request.url.path)
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def get_optional_user(request: Request, db: Session = Depends(get_db),
                      settings: Settings = Depends(get_settings)) -> Optional[User]:
    return _session_user(request, db, settings)


def _start_session(response: JSONResponse, user: User, settings: Settings) -> JSONResponse:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=create_session_token(user.id),
        max_age=settings.SESSION_TIMEOUT_HOURS * 3600,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return response


def _public(user: User) -> dict:
    return UserOut.model_validate(user).model_dump()


def _otp_login(users: UserService, payload: LoginRequest, request: Request, settings: Settings) -> JSONResponse:
    user = users.get_user_by_mobile(payload.mobile)
    if not user:
        raise HTTPException(status_code=404, detail="Mobile number not registered")
    if not users.verify_otp(payload.mobile, payload.otp, "login"):
        raise HTTPException(status_code=400, detail="Invalid or expired OTP")
    if not user.is_verified:
        raise HTTPException(status_code=403, detail="User account not verified")
    users.mark_login(user)
    log.info("User %s logged in via OTP", user.id)
    return _start_session(envelope(request, {"message": "Login successful", "user": _public(user)}), user, settings)


# ------------------------------------------------------------------------------
# Router
# ------------------------------------------------------------------------------
router = APIRouter()


@router.post("/send-otp")
def send_otp(payload: SendOtpRequest, request: Request, background: BackgroundTasks,
             db: Session = Depends(get_db), settings: Settings = Depends(get_settings),
             notifier: Notifier = Depends(get_notifier)):
    users = UserService(db, settings, limiter)
    existing = users.get_user_by_mobile(payload.mobile)
    if payload.purpose == "login" and not existing:
        raise HTTPException(status_code=404, detail="Mobile number not registered")
    if payload.purpose == "registration" and existing:
        raise HTTPException(status_code=409, detail="Mobile number already registered")

    otp = users.generate_otp(payload.mobile, payload.purpose)
    if otp is None:
        raise HTTPException(status_code=429, detail="Too many OTP requests. Please try again later.")

    background.add_task(notifier.otp, payload.mobile, otp)
    data = {"message": "OTP sent successfully"}
    if settings.DEBUG:
        data["otp"] = otp
    return envelope(request, data)


@router.post("/verify-otp")
def verify_otp(payload: VerifyOtpRequest, request: Request,
               db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    users = UserService(db, settings, limiter)
    if payload.purpose == "registration":
        if not users.verify_otp(payload.mobile, payload.otp, payload.purpose):
            raise HTTPException(status_code=400, detail="Invalid or expired OTP")
        return envelope(request, {
            "message": "OTP verified successfully",
            "registration_token": create_registration_token(payload.mobile),
        })
    return _otp_login(users, payload, request, settings)


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, request: Request,
             db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    try:
        claims = decode_token(payload.registration_token)
    except ValueError as e:
        log.warning("Registration for %s refused: %s", payload.mobile, e)
        raise HTTPException(status_code=400, detail="Mobile number not verified")
    if claims.get("type") != "registration" or claims.get("sub") != payload.mobile:
        log.warning("Registration for %s refused: token issued for another mobile", payload.mobile)
        raise HTTPException(status_code=400, detail="Mobile number not verified")

    users = UserService(db, settings, limiter)
    outcome = users.create_user(payload.model_dump(exclude={"registration_token"}))
    raise_for_outcome(outcome)

    user = outcome.data
    users.verify_user(user.id)
    db.refresh(user)
    log.info("User %s registered", user.id)
    body = {"message": "Registration successful", "user": _public(user)}
    return _start_session(envelope(request, body, 201), user, settings)


@router.post("/login")
def login(payload: LoginRequest, request: Request,
          db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    return _otp_login(UserService(db, settings, limiter), payload, request, settings)


@router.post("/logout")
def logout(request: Request, settings: Settings = Depends(get_settings),
           user: Optional[User] = Depends(get_optional_user)):
    response = envelope(request, {"message": "Logout successful"})
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    log.info("User %s logged out", user.id if user else "unknown")
    return response


@router.get("/profile")
def profile(request: Request, user: User = Depends(get_current_user)):
    return envelope(request, {"user": UserProfileOut.model_validate(user)})


@router.put("/update-profile")
def update_profile(payload: UpdateProfileRequest, request: Request,
                   user: User = Depends(get_current_user),
                   db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    outcome = UserService(db, settings, limiter).update_user(user.id, payload.model_dump(exclude_none=True))
    raise_for_outcome(outcome)
    return envelope(request, {"message": outcome.message})


@router.get("/check-session")
def check_session(request: Request, user: Optional[User] = Depends(get_optional_user)):
    if user is None:
        return envelope(request, {"authenticated": False})
    return envelope(request, {"authenticated": True, "user": _public(user)})
