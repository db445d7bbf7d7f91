"""CatalogItem model for public tools and news posts."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from database import Base


ITEM_KIND_TOOL = "tool"
ITEM_KIND_NEWS = "news"


class CatalogItem(Base):
    """A publicly listed catalog entry.

    Only view registration and submission promotion write to this table.
    """

    __tablename__ = "catalog_items"
    __table_args__ = (
        CheckConstraint("view_count >= 0", name="ck_catalog_items_view_count_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    kind = Column(String, nullable=False, default=ITEM_KIND_TOOL, index=True)
    title = Column(String, nullable=False)
    category = Column(String, nullable=True, index=True)
    price = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    link = Column(String, nullable=True)
    view_count = Column(Integer, nullable=False, default=0, server_default="0", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
