"""Submission model for user-proposed catalog items awaiting moderation."""

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


SUBMISSION_PENDING = "pending"
SUBMISSION_APPROVED = "approved"
SUBMISSION_DECLINED = "declined"
SUBMISSION_STATUSES = (SUBMISSION_PENDING, SUBMISSION_APPROVED, SUBMISSION_DECLINED)


class Submission(Base):
    """A proposed tool. Its id becomes the catalog item id on approval."""

    __tablename__ = "submissions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'declined')",
            name="ck_submissions_status",
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    email = Column(String, nullable=True)
    title = Column(String, nullable=False)
    link = Column(String, nullable=False)
    category = Column(String, nullable=False)
    price = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    has_image = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default=SUBMISSION_PENDING, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="submissions")
