"""
Dependencies for authentication, database sessions, and request metadata.
"""
import hmac
from typing import Generator, Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from traffic_exchange.database import SessionLocal
from traffic_exchange.models.db import User
from traffic_exchange.models.db.enums import UserRole
from traffic_exchange.services.fraud_checks import HeaderProxyEvaluator, ProxyEvaluator, RequestMeta
from traffic_exchange.utils import get_logger
from traffic_exchange.utils.observability import client_ip

logger = get_logger(__name__)
security = HTTPBearer()

_proxy_evaluator: ProxyEvaluator = HeaderProxyEvaluator()

def _key_prefix(value: str) -> str:
    return value[:10] + "..." if len(value) > 10 else value

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Extract and validate a member from their API key.

    Raises:
        HTTPException: If API key is invalid or user is inactive
    """
    api_key = credentials.credentials

    user = db.query(User).filter(
        User.api_key == api_key,
        User.is_active.is_(True)
    ).first()

    if not user:
        logger.warning(
            "Authentication failed: invalid or inactive API key",
            api_key_prefix=_key_prefix(api_key)
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.debug("User authenticated", user_id=user.id, user_role=user.role)
    return user

def require_admin(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Dependency that requires ADMIN role.

    Raises:
        HTTPException: If user is not an admin
    """
    if current_user.role != UserRole.ADMIN:
        logger.warning(
            "Access denied: admin required",
            user_id=current_user.id,
            user_role=current_user.role
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return current_user

def require_withdrawal_service(request: Request) -> str:
    """Internal auth for the withdrawal subsystem: ``Authorization: Service <token>``.

    Endpoints guarded by this are disabled (503) while no service token is configured.
    """
    from traffic_exchange import config

    expected: Optional[str] = config.WITHDRAWAL_SERVICE_TOKEN
    if not expected:
        logger.warning("Withdrawal service endpoint called but no service token configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Withdrawal service access is not configured"
        )

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Service "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Service token required",
            headers={"WWW-Authenticate": "Service"},
        )

    token = auth_header[len("Service "):]
    if not hmac.compare_digest(token.encode(), expected.encode()):
        logger.warning(
            "Service authentication failed: invalid token",
            provided_token_prefix=_key_prefix(token)
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid service token"
        )
    return "withdrawal-service"

def get_request_meta(request: Request) -> RequestMeta:
    """Client IP, user agent and raw headers as seen by the fraud pipeline."""
    return RequestMeta(
        ip=client_ip(request.client.host if request.client else None),
        user_agent=request.headers.get("User-Agent", ""),
        headers=dict(request.headers),
    )

def get_proxy_evaluator() -> ProxyEvaluator:
    """Proxy/VPN capability used by view completion; override to plug in real fraud scoring."""
    return _proxy_evaluator

def get_pagination_params(
    limit: int = 50,
    offset: int = 0
) -> dict:
    """
    Validate and return pagination parameters.

    Raises:
        HTTPException: If parameters are invalid
    """
    if limit < 1 or limit > 500:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Limit must be between 1 and 500"
        )

    if offset < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Offset must be >= 0"
        )

    return {"limit": limit, "offset": offset}
