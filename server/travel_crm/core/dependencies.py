"""FastAPI dependencies for authentication, authorization and the payment gateway."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

import jwt
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.midtrans import MidtransClient
from ..models.booking import Booking
from ..models.customer import Customer
from ..models.user import User, UserRole
from .database import get_db
from .exceptions import AuthenticationError, AuthorizationError
from .security import TOKEN_TYPE_CUSTOMER, TOKEN_TYPE_USER, decode_access_token

logger = logging.getLogger(__name__)

# Customers authenticate with their own token type and act under this virtual role
CUSTOMER_ROLE = "CUSTOMER"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller: a staff user or a customer."""

    id: UUID
    role: str
    name: str
    email: str

    @property
    def is_customer(self) -> bool:
        return self.role == CUSTOMER_ROLE


def _extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError("Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError("Invalid authentication scheme")
    return token


async def get_current_principal(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """
    Authentication dependency that validates Bearer tokens.

    The token subject is looked up in the database on every request, so
    removed accounts lose access immediately.

    Raises:
        AuthenticationError: If the token is missing, invalid, expired or names an unknown subject
        AuthorizationError: If the subject is a deactivated staff account
    """
    token = _extract_bearer_token(authorization)

    try:
        payload = decode_access_token(token)
        subject_id = UUID(str(payload["sub"]))
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except (jwt.PyJWTError, ValueError):
        raise AuthenticationError("Invalid token")

    token_type = payload.get("type", TOKEN_TYPE_USER)

    if token_type == TOKEN_TYPE_CUSTOMER:
        customer = await db.get(Customer, subject_id)
        if customer is None:
            raise AuthenticationError("Customer not found")
        return Principal(id=customer.id, role=CUSTOMER_ROLE, name=customer.name, email=customer.email)

    if token_type != TOKEN_TYPE_USER:
        raise AuthenticationError("Invalid token type")

    user = await db.get(User, subject_id)
    if user is None:
        raise AuthenticationError("User not found")
    if not user.is_active:
        logger.warning("Deactivated user attempted access", extra={"user_id": str(user.id)})
        raise AuthorizationError("User account is deactivated")

    return Principal(id=user.id, role=UserRole(user.role).value, name=user.name, email=user.email)


def require_roles(*roles: str) -> Callable:
    """
    Build a dependency that admits only principals holding one of ``roles``.

    ``CUSTOMER`` may be listed alongside staff roles.
    """
    allowed = {role.value if isinstance(role, UserRole) else role for role in roles}

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise AuthorizationError(required_roles=sorted(allowed))
        return principal

    return dependency


def ensure_booking_access(principal: Principal, booking: Booking) -> None:
    """Customers may only see and act on their own bookings; staff see all."""
    if principal.is_customer and booking.customer_id != principal.id:
        raise AuthorizationError("You do not have access to this booking")


def get_payment_gateway(request: Request) -> MidtransClient:
    """Payment provider client owned by the application."""
    return request.app.state.payment_gateway
