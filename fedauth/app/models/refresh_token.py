"""
models/refresh_token.py — refresh_tokens table definition.

One row per active refresh token. Rotation and logout delete the row; a
token is active exactly while its row exists.

FK policy: user_id ON DELETE CASCADE: tokens are owned by the user.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fedauth.app.extensions import db


class RefreshTokenRecord(db.Model):
    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # SHA-256 hex digest of the exact signed token string. Comparing digests
    # is comparing exact strings; a re-serialized token hashes differently.
    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["UserRecord"] = relationship(  # noqa: F821
        "UserRecord",
        back_populates="refresh_tokens",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<RefreshTokenRecord id={self.id} user_id={self.user_id!r}>"
