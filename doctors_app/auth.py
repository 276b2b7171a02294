import logging
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session, joinedload

from .config import JWT_ALGORITHM, JWT_SECRET
from .database import get_db
from .models import ROLE_ADMIN, Account

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify and decode an access token issued by the auth service

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"⚠️ JWT verification failed: {e}")
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Account:
    """Resolve the acting account from the Bearer token"""

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    account_id = payload.get("userId") or payload.get("sub")
    try:
        account_id = int(account_id)
    except (TypeError, ValueError):
        logger.error(f"❌ Token missing user ID claim. Available claims: {list(payload.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims") from None

    account = (
        db.query(Account)
        .options(joinedload(Account.doctor_profile))
        .filter(Account.id == account_id)
        .first()
    )
    if not account:
        logger.warning(f"⚠️ Token for unknown account {account_id}")
        raise HTTPException(status_code=401, detail="Account not found")

    if not account.is_active:
        logger.warning(f"⚠️ Inactive account {account_id} attempted to authenticate")
        raise HTTPException(status_code=401, detail="Account is deactivated")

    logger.debug(f"✅ Account authenticated: {account.id} ({account.role})")
    return account


def require_roles(*roles: str):
    """Dependency factory restricting a route to the given account roles"""

    async def checker(account: Account = Depends(get_current_user)) -> Account:
        if account.role not in roles:
            logger.warning(f"⚠️ Account {account.id} with role {account.role} denied (requires {roles})")
            raise HTTPException(status_code=403, detail="You do not have permission to perform this action")
        return account

    return checker


require_admin = require_roles(ROLE_ADMIN)


async def require_verified(account: Account = Depends(get_current_user)) -> Account:
    """Require a verified phone number"""
    if not account.is_phone_verified:
        raise HTTPException(status_code=403, detail="Please verify your phone number first")
    return account
