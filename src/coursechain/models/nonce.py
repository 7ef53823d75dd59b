# src/coursechain/models/nonce.py
"""Single-use sign-in challenges."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from coursechain.db.session import Base
from coursechain.db.time import utcnow


class AuthNonce(Base):
    """Challenge issued to a wallet address; deleted when consumed."""

    __tablename__ = "auth_nonces"
    __table_args__ = (Index("ix_auth_nonces_address_nonce", "address", "nonce"),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    nonce: Mapped[str] = mapped_column(String(32), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
