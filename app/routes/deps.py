"""
Request dependencies: the trusted caller identity.

The identity provider sits in front of this API and forwards the
authenticated user as X-User-ID / X-User-Role headers.
"""

from typing import Optional

from fastapi import Depends, Header

from app.core.errors import PermissionDeniedError, ValidationError
from app.models.user import Identity, UserRole


async def get_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Identity:
    if not x_user_id or not x_user_id.strip():
        raise PermissionDeniedError("X-User-ID header is required")
    try:
        role = UserRole((x_user_role or UserRole.CITIZEN.value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role: {x_user_role}")
    return Identity(user_id=x_user_id.strip(), role=role)


async def require_staff(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_staff:
        raise PermissionDeniedError("This action requires department staff or admin role")
    return identity


async def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.role != UserRole.ADMIN:
        raise PermissionDeniedError("This action requires admin role")
    return identity
