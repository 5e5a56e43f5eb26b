"""
models/user.py — users table definition for the relational user directory.

Columns and constraints mirror migrations/versions/001_initial_schema.py.
No business logic. No imports from services or routes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fedauth.app.extensions import db


class UserRecord(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        # One record per federated identity.
        UniqueConstraint("provider", "provider_id", name="uq_users_provider_identity"),
    )

    # "<provider>-<provider_id>", assigned at creation, never changed.
    id: Mapped[str] = mapped_column(String(320), primary_key=True)

    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(255), nullable=False)

    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    photo: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # JSON array of role names; the directory never writes an empty list.
    roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=lambda: ["user"])

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    refresh_tokens: Mapped[list["RefreshTokenRecord"]] = relationship(  # noqa: F821
        "RefreshTokenRecord",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<UserRecord id={self.id!r} provider={self.provider!r}>"
