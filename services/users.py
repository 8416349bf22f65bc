import logging
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from core.config import Settings, settings as default_settings
from core.rate_limit import RateLimiter, limiter as default_limiter
from core.security import generate_otp, hash_otp, verify_otp_hash
from db.models import CartItem, OTPVerification, Order, User
from db.schemas import UserSummaryOut
from services.results import Outcome, CONFLICT, INVALID, NOT_FOUND
from utils.dates import period_starts

log = logging.getLogger(__name__)

OTP_PURPOSES = ("login", "registration")
PROFILE_FIELDS = ("name", "email", "address", "city", "state", "pincode")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UserService:
    def __init__(self, db: Session, settings: Settings = default_settings, limiter: RateLimiter = default_limiter):
        self.db = db
        self.settings = settings
        self.limiter = limiter

    # ------------- accounts -------------
    def get_user_by_id(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_user_by_mobile(self, mobile: str) -> Optional[User]:
        return self.db.scalars(select(User).where(User.mobile == mobile)).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.scalars(select(User).where(User.email == email)).first()

    def create_user(self, data: dict) -> Outcome:
        mobile = data["mobile"]
        if self.get_user_by_mobile(mobile):
            log.warning("Registration refused: mobile %s already registered", mobile)
            return Outcome.fail("Mobile number already registered", CONFLICT)
        email = data.get("email") or None
        if email and self.get_user_by_email(email):
            log.warning("Registration refused: email %s already registered", email)
            return Outcome.fail("Email already registered", CONFLICT)

        user = User(
            mobile=mobile,
            email=email,
            name=data["name"],
            address=data.get("address"),
            city=data.get("city"),
            state=data.get("state"),
            pincode=data.get("pincode"),
            is_verified=False,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        log.info("User %s created for mobile %s", user.id, mobile)
        return Outcome.ok("User created", user)

    def update_user(self, user_id: int, data: dict) -> Outcome:
        changes = {k: v for k, v in data.items() if k in PROFILE_FIELDS and v not in (None, "")}
        if not changes:
            return Outcome.fail("No data provided for update", INVALID)
        user = self.get_user_by_id(user_id)
        if not user:
            return Outcome.fail("User not found", NOT_FOUND)
        if "email" in changes:
            other = self.get_user_by_email(changes["email"])
            if other and other.id != user_id:
                return Outcome.fail("Email already registered", CONFLICT)

        for field, value in changes.items():
            setattr(user, field, value)
        self.db.commit()
        log.info("User %s updated fields %s", user_id, sorted(changes))
        return Outcome.ok("Profile updated successfully", user)

    def verify_user(self, user_id: int) -> bool:
        result = self.db.execute(
            update(User).where(User.id == user_id).values(is_verified=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    def mark_login(self, user: User):
        user.last_login_at = _now()
        self.db.commit()

    def delete_user(self, user_id: int) -> bool:
        """Soft delete: the row stays for order history, its identifiers are freed."""
        user = self.get_user_by_id(user_id)
        if not user:
            return False
        suffix = f"_deleted_{int(time.time())}"
        try:
            self.db.execute(
                delete(CartItem).where(CartItem.user_id == user_id).execution_options(synchronize_session=False)
            )
            user.is_verified = False
            user.mobile = f"{user.mobile}{suffix}"
            if user.email:
                user.email = f"{user.email}{suffix}"
            self.db.commit()
        except Exception:
            self.db.rollback()
            log.exception("Deleting user %s failed", user_id)
            raise
        log.info("User %s soft-deleted", user_id)
        return True

    # ------------- admin -------------
    def get_all_users(self, limit: int = 50, offset: int = 0, search: str = "") -> List[UserSummaryOut]:
        order_count = (
            select(func.count(Order.id)).where(Order.user_id == User.id).correlate(User).scalar_subquery()
        )
        stmt = select(User, order_count)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(User.name.ilike(pattern), User.mobile.ilike(pattern), User.email.ilike(pattern)))
        rows = self.db.execute(
            stmt.order_by(User.created_at.desc(), User.id.desc()).limit(limit).offset(offset)
        ).all()
        log.debug("Listed %d users (search=%r)", len(rows), search)
        return [
            UserSummaryOut.model_validate(user).model_copy(update={"order_count": n})
            for user, n in rows
        ]

    def user_statistics(self) -> dict:
        def count(*conds) -> int:
            return self.db.scalar(select(func.count(User.id)).where(*conds)) or 0

        day, month = period_starts()
        return {
            "total_users": count(),
            "verified_users": count(User.is_verified.is_(True)),
            "new_users_today": count(User.created_at >= day),
            "new_users_month": count(User.created_at >= month),
        }

    # ------------- OTP -------------
    def generate_otp(self, mobile: str, purpose: str = "login") -> Optional[str]:
        """Create and store a fresh OTP. Returns None when the mobile is rate limited."""
        if self.limiter.hit(f"otp:{mobile}", self.settings.OTP_RATE_LIMIT, self.settings.OTP_RATE_WINDOW_SECONDS):
            log.warning("OTP rate limit exceeded for %s", mobile)
            return None

        now = _now()
        self.db.execute(
            delete(OTPVerification)
            .where(OTPVerification.mobile == mobile, OTPVerification.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        otp = generate_otp(self.settings.OTP_LENGTH)
        expires_at = now + timedelta(minutes=self.settings.OTP_EXPIRY_MINUTES)
        self.db.add(OTPVerification(mobile=mobile, otp_hash=hash_otp(otp), purpose=purpose, expires_at=expires_at))
        self.db.commit()
        log.info("OTP issued for %s (purpose=%s, expires %s)", mobile, purpose, expires_at.isoformat())
        return otp

    def verify_otp(self, mobile: str, otp: str, purpose: str = "login") -> bool:
        candidates = self.db.scalars(
            select(OTPVerification)
            .where(
                OTPVerification.mobile == mobile,
                OTPVerification.purpose == purpose,
                OTPVerification.is_used.is_(False),
                OTPVerification.expires_at > _now(),
            )
            .order_by(OTPVerification.id.desc())
        ).all()

        for record in candidates:
            if not verify_otp_hash(otp, record.otp_hash):
                continue
            # conditional update: a code can be consumed once even under concurrent attempts
            result = self.db.execute(
                update(OTPVerification)
                .where(OTPVerification.id == record.id, OTPVerification.is_used.is_(False))
                .values(is_used=True)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            if result.rowcount == 1:
                log.info("OTP %s verified for %s", record.id, mobile)
                return True
            break

        log.warning("OTP verification failed for %s (purpose=%s)", mobile, purpose)
        return False

    def purge_stale_otps(self) -> int:
        result = self.db.execute(
            delete(OTPVerification)
            .where(or_(OTPVerification.expires_at < _now(), OTPVerification.is_used.is_(True)))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount
