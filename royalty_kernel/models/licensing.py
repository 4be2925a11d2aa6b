"""
Module: royalty_kernel.models.licensing
Responsibility: Read model of the licensing domain consumed by royalty
    calculation: creators, IP assets, ownership splits and licenses.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    (none) -- these tables are owned and written by the licensing system.
    The royalty engine only reads them; ownership split validity is checked
    at calculation time by the ownership split engine.

Audit relevance:
    License fee, revenue-share rate and ownership shares recorded here are
    the inputs to every royalty line.  LICENSE lines copy the license id,
    asset id, revenue and share so statements stay explainable even if a
    license is later amended.
"""

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from royalty_kernel.db.base import Base, UUID, UUIDString
from royalty_kernel.domain.values import LicenseStatus


class Creator(Base):
    """A royalty recipient."""

    __tablename__ = "creators"

    display_name: Mapped[str] = mapped_column(String(200), nullable=False)

    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # VIP creators use the lower payout threshold
    is_vip: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    statement_emails_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Creator {self.display_name}>"


class IpAsset(Base):
    """
    A licensable work.

    Derivative works point at their parent through parent_asset_id and name
    the original creator owed a share of their royalties.
    """

    __tablename__ = "ip_assets"

    title: Mapped[str] = mapped_column(String(300), nullable=False)

    is_derivative: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    parent_asset_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ip_assets.id"),
        nullable=True,
    )

    # 0 = original, 1 = first derivative, 2 = derivative of a derivative ...
    derivative_level: Mapped[int] = mapped_column(default=0, nullable=False)

    original_creator_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("creators.id"),
        nullable=True,
    )

    # Per-asset override of the configured default original-creator share
    original_creator_share_bps: Mapped[int | None] = mapped_column(nullable=True)

    ownerships: Mapped[list["IpOwnership"]] = relationship(
        back_populates="ip_asset",
        order_by="IpOwnership.creator_id",
    )

    def __repr__(self) -> str:
        return f"<IpAsset {self.title}>"


class IpOwnership(Base):
    """One creator's share of an asset over a date range."""

    __tablename__ = "ip_ownerships"

    __table_args__ = (Index("idx_ownership_asset", "ip_asset_id"),)

    ip_asset_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ip_assets.id"),
        nullable=False,
    )

    creator_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("creators.id"),
        nullable=False,
    )

    share_bps: Mapped[int] = mapped_column(nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Open-ended when NULL
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    ip_asset: Mapped["IpAsset"] = relationship(back_populates="ownerships")


class License(Base):
    """A license granting use of an asset for a fee and/or revenue share."""

    __tablename__ = "licenses"

    __table_args__ = (
        Index("idx_license_asset", "ip_asset_id"),
        Index("idx_license_status_dates", "status", "start_date", "end_date"),
    )

    ip_asset_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ip_assets.id"),
        nullable=False,
    )

    status: Mapped[LicenseStatus] = mapped_column(
        String(20), default=LicenseStatus.ACTIVE, nullable=False
    )

    license_type: Mapped[str] = mapped_column(
        String(30), default="NON_EXCLUSIVE", nullable=False
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    fee_cents: Mapped[int] = mapped_column(default=0, nullable=False)

    rev_share_bps: Mapped[int] = mapped_column(default=0, nullable=False)

    scope: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    ip_asset: Mapped["IpAsset"] = relationship()

    def __repr__(self) -> str:
        return f"<License {self.id} {self.license_type} {self.fee_cents}c>"
