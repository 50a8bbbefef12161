from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

import quakewatch.repositories.user as user_repo
from quakewatch.api.deps import authorize, get_db, rate_limit, require_permission, verify_csrf
from quakewatch.core.tokens import AccessClaims
from quakewatch.domain.permissions import Permission, Role
from quakewatch.errors import DomainValidationError, NotFoundError
from quakewatch.schemas.pagination import PaginatedResponse
from quakewatch.schemas.user import User, UserAdminUpdate

router = APIRouter(
    prefix="/users",
    tags=["users"],
    dependencies=[Depends(rate_limit("user"))],
)


@router.get("", response_model=PaginatedResponse[User])
async def get_all_users_paginated(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(100, ge=1, le=1000, alias="pageSize", description="Number of items per page"),
    db: AsyncSession = Depends(get_db),
    claims: AccessClaims = Depends(require_permission(Permission.read_users)),
):
    """
    Get all users with pagination. Requires the ``read:users`` permission.

    Password, refresh token and reset fields are never included.
    """
    users, total = await user_repo.get_all_users_paginated(db, page=page, page_size=page_size)
    return PaginatedResponse[User](
        items=[User.model_validate(user) for user in users],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{user_id}", response_model=User)
async def get_user_by_id(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    claims: AccessClaims = Depends(authorize(Role.admin, Role.moderator)),
):
    """Get a user by ID. Admins and moderators only."""
    user = await user_repo.get_user_by_id(db, user_id)
    if not user:
        raise NotFoundError("User not found")
    return User.model_validate(user)


@router.patch("/{user_id}", response_model=User, dependencies=[Depends(verify_csrf)])
async def update_user_by_id(
    user_id: str,
    user_data: UserAdminUpdate,
    db: AsyncSession = Depends(get_db),
    claims: AccessClaims = Depends(authorize(Role.admin)),
):
    """
    Change a user's role or active flag. Admin only.

    Deactivating a user also revokes their refresh token. Admins cannot
    change their own role or deactivate themselves.
    """
    # Compare primary keys: "01" and "1" name the same row.
    is_self = user_repo.decode_user_id(user_id) == user_repo.decode_user_id(claims.sub)
    if is_self and (user_data.role is not None or user_data.is_active is False):
        raise DomainValidationError("You cannot change your own role or deactivate yourself")

    user = await user_repo.update_user(
        db, user_id, role=user_data.role, is_active=user_data.is_active
    )
    return User.model_validate(user)
