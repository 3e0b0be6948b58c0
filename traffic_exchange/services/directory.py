"""Identity & site directory (database-backed default).

Supplies member and site records to the validation pipeline and the API, and
registers members (API key, unique referral code, optional referral bonus).
Passwords and browser sessions live outside this service.
"""
from __future__ import annotations

import secrets
import string
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from traffic_exchange.config import REFERRAL_SETTINGS, VIEW_VALIDATION_SETTINGS
from traffic_exchange.models.db.enums import UserRole
from traffic_exchange.models.db.sites import Site
from traffic_exchange.models.db.users import User
from traffic_exchange.services.errors import Conflict, LedgerError, NotFound, StorageFailure
from traffic_exchange.services.points_ledger import apply_referral_bonus
from traffic_exchange.utils import get_logger, log_business_event
from traffic_exchange.utils.time import ensure_utc, utc_now

logger = get_logger(__name__)

REFERRAL_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 10


def generate_api_key() -> str:
    return f"tx_{secrets.token_hex(12)}"


def generate_referral_code(length: Optional[int] = None) -> str:
    length = length or int(REFERRAL_SETTINGS["code_length"])  # type: ignore[arg-type]
    return "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(length))


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found", code="user_not_found")
    return user


def is_valid_referral_code(db: Session, code: Optional[str]) -> Optional[int]:
    """Referrer id for an active member's referral code, else None."""
    if not code or not code.strip():
        return None
    return db.execute(
        select(User.id).where(User.referral_code == code.strip().upper(), User.is_active.is_(True))
    ).scalar_one_or_none()


def _unused_referral_code(db: Session) -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_referral_code()
        if db.execute(select(User.id).where(User.referral_code == code)).first() is None:
            return code
    raise StorageFailure("Could not allocate a unique referral code")


def register_user(
    db: Session,
    *,
    username: str,
    email: str,
    referral_code: Optional[str] = None,
    role: UserRole = UserRole.MEMBER,
    now: Optional[datetime] = None,
    request_id: Optional[str] = None,
) -> User:
    """Create a member; a valid referral code grants both parties the bonus atomically.

    An unknown referral code is ignored rather than failing registration.
    """
    now = ensure_utc(now or utc_now())
    existing = db.execute(
        select(User).where(or_(func.lower(User.username) == username.lower(), func.lower(User.email) == email.lower()))
    ).scalars().first()
    if existing is not None:
        raise Conflict("Username or email already registered", code="user_exists")

    referrer_id = is_valid_referral_code(db, referral_code)
    if referral_code and referrer_id is None:
        logger.info("Ignoring unknown referral code", referral_code=referral_code, request_id=request_id)

    user = User(
        username=username,
        email=email,
        api_key=generate_api_key(),
        role=role,
        referral_code=_unused_referral_code(db),
        referred_by_id=referrer_id,
        points_balance=Decimal("0"),
        earnings_available=Decimal("0"),
        earnings_locked=Decimal("0"),
        fraud_flag_count=0,
    )
    try:
        db.add(user)
        db.flush()
        if referrer_id is not None:
            apply_referral_bonus(db, referred_user_id=user.id, referrer_id=referrer_id, now=now)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise Conflict("Username, email or referral code already taken", code="user_exists") from e
    except LedgerError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure("Could not persist registration") from e
    db.refresh(user)

    log_business_event(
        event_type="user_registered",
        details={"username": user.username, "role": user.role.value, "referred_by_id": referrer_id},
        user_id=user.id,
        request_id=request_id,
    )
    if referrer_id is not None:
        log_business_event(
            event_type="referral_bonus_granted",
            details={"referrer_id": referrer_id, "bonus_points": REFERRAL_SETTINGS["bonus_points"]},
            user_id=user.id,
            request_id=request_id,
        )
    return user


def create_site(
    db: Session,
    *,
    owner_id: int,
    url: str,
    points_per_view: Optional[Decimal] = None,
    request_id: Optional[str] = None,
) -> Site:
    get_user(db, owner_id)
    rate = Decimal(points_per_view) if points_per_view is not None else Decimal(str(VIEW_VALIDATION_SETTINGS["default_points_per_view"]))
    site = Site(owner_id=owner_id, url=url, points_per_view=rate, is_active=True)
    try:
        db.add(site)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure("Could not persist site") from e
    db.refresh(site)
    log_business_event(
        event_type="site_created",
        details={"site_id": site.id, "url": url, "points_per_view": rate},
        user_id=owner_id,
        request_id=request_id,
    )
    return site


def list_referrals(db: Session, user_id: int) -> list[User]:
    get_user(db, user_id)
    return list(
        db.execute(select(User).where(User.referred_by_id == user_id).order_by(User.created_at.desc(), User.id.desc())).scalars()
    )


__all__ = [
    "generate_api_key",
    "generate_referral_code",
    "get_user",
    "is_valid_referral_code",
    "register_user",
    "create_site",
    "list_referrals",
]
