"""SQLAlchemy ORM models for the durable URL store.

Data Model Layout
=================
::
    urls table
    ├─ id (VARCHAR(36) PRIMARY KEY, uuid4)
    ├─ original_url (TEXT NOT NULL)
    ├─ short_code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW(), INDEXED)
    ├─ expires_at (TIMESTAMPTZ NOT NULL, INDEXED)
    └─ click_count (INTEGER DEFAULT 0)

Key Behaviours
===============
- The UNIQUE constraint on short_code is the final authority on code
  uniqueness; the pool only makes collisions rare.
- The pool reads short_code only; the URL-creation path owns writes.

Classes:
    URL:  A shortened URL mapping with click tracking and expiry.
"""

import datetime
import uuid

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from codepool.database import Base

__all__ = ["URL"]


class URL(Base):
    __tablename__ = "urls"
    __table_args__ = (
        Index("idx_urls_expires_at", "expires_at"),
        Index("idx_urls_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    short_code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<URL(id={self.id}, short_code='{self.short_code}', clicks={self.click_count})>"
