from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quakewatch.db.models.user import User as UserModel
from quakewatch.domain.permissions import Role
from quakewatch.errors import NotFoundError


def encode_user_id(user_id: int) -> str:
    """Turn a primary key into the opaque id used outside the repository."""
    return str(user_id)


def decode_user_id(user_id: str) -> int | None:
    """Turn an opaque id back into a primary key; None if it cannot be one."""
    try:
        return int(user_id)
    except (TypeError, ValueError):
        return None


async def get_user_by_email(db: AsyncSession, email: str) -> UserModel | None:
    """Get a user by email."""
    result = await db.execute(select(UserModel).where(UserModel.email == email))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: str) -> UserModel | None:
    """Get a user by ID."""
    pk = decode_user_id(user_id)
    if pk is None:
        return None
    return await db.get(UserModel, pk)


async def get_user_by_reset_digest(db: AsyncSession, digest: str) -> UserModel | None:
    """Get a user by password reset token digest. Expiry is checked by the caller."""
    result = await db.execute(
        select(UserModel).where(UserModel.password_reset_token == digest)
    )
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    email: str,
    first_name: str,
    last_name: str,
    password_hash: str,
    role: Role = Role.user,
) -> UserModel:
    """Create a new user in the database. Pure data access - no business logic."""
    db_user = UserModel(
        email=email,
        first_name=first_name,
        last_name=last_name,
        password_hash=password_hash,
        role=role,
        is_active=True,
        email_verified=False,
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user


async def set_refresh_token(db: AsyncSession, user_id: str, token: str | None) -> None:
    """Overwrite the stored refresh token, whatever it was."""
    pk = decode_user_id(user_id)
    if pk is None:
        raise NotFoundError("User not found")
    await db.execute(
        update(UserModel).where(UserModel.id == pk).values(refresh_token=token)
    )
    await db.commit()


async def clear_refresh_token(db: AsyncSession, user_id: str) -> bool:
    """Clear the stored refresh token. Returns False if the user does not exist."""
    pk = decode_user_id(user_id)
    if pk is None:
        return False
    result = await db.execute(
        update(UserModel).where(UserModel.id == pk).values(refresh_token=None)
    )
    await db.commit()
    return result.rowcount > 0


async def rotate_refresh_token(
    db: AsyncSession, user_id: str, expected: str, replacement: str
) -> bool:
    """
    Replace the refresh token only if it still equals ``expected``.

    Returns False when another request already rotated or cleared it, so at
    most one caller presenting the same token wins.
    """
    pk = decode_user_id(user_id)
    if pk is None:
        return False
    result = await db.execute(
        update(UserModel)
        .where(
            UserModel.id == pk,
            UserModel.refresh_token == expected,
            UserModel.is_active.is_(True),
        )
        .values(refresh_token=replacement)
    )
    await db.commit()
    return result.rowcount == 1


async def set_password_reset_token(
    db: AsyncSession, user_id: str, digest: str, expires: datetime
) -> None:
    """Store a password reset token digest and its expiry together."""
    pk = decode_user_id(user_id)
    if pk is None:
        raise NotFoundError("User not found")
    await db.execute(
        update(UserModel)
        .where(UserModel.id == pk)
        .values(password_reset_token=digest, password_reset_expires=expires)
    )
    await db.commit()


async def consume_password_reset(
    db: AsyncSession, user_id: str, digest: str, password_hash: str
) -> bool:
    """
    Set a new password and clear the reset token and refresh token.

    Conditional on the reset digest still being stored, so a token can only
    be spent once even under concurrent requests.
    """
    pk = decode_user_id(user_id)
    if pk is None:
        return False
    result = await db.execute(
        update(UserModel)
        .where(UserModel.id == pk, UserModel.password_reset_token == digest)
        .values(
            password_hash=password_hash,
            password_reset_token=None,
            password_reset_expires=None,
            refresh_token=None,
        )
    )
    await db.commit()
    return result.rowcount == 1


async def update_user(
    db: AsyncSession,
    user_id: str,
    role: Role | None = None,
    is_active: bool | None = None,
) -> UserModel:
    """Update user fields. Only provided fields will be updated."""
    user = await get_user_by_id(db, user_id)
    if not user:
        raise NotFoundError("User not found")

    if role is not None:
        user.role = role
    if is_active is not None:
        user.is_active = is_active
        if not is_active:
            user.refresh_token = None

    await db.commit()
    await db.refresh(user)
    return user


async def get_all_users_paginated(
    db: AsyncSession, page: int = 1, page_size: int = 100
) -> tuple[list[UserModel], int]:
    """
    Get all users with pagination, sorted by email for stable pagination.

    Args:
        page: Page number (1-indexed)
        page_size: Number of items per page

    Returns:
        Tuple of (list of users, total count)
    """
    total = await db.scalar(select(func.count()).select_from(UserModel))
    skip = (page - 1) * page_size
    result = await db.execute(
        select(UserModel).order_by(UserModel.email).offset(skip).limit(page_size)
    )
    return list(result.scalars().all()), total or 0
