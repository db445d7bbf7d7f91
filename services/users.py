"""User bootstrap helpers."""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User


async def ensure_user(db: AsyncSession, user_id: str, email: Optional[str] = None) -> User:
    """Return the user row for a session subject, creating it on first use."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user:
        if email and not user.email:
            user.email = email
            await db.commit()
        return user

    user = User(id=user_id, email=email)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Created concurrently by another request for the same subject.
        await db.rollback()
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one()
    return user
