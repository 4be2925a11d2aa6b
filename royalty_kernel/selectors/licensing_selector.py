"""
Licensing read-model selector.

Provides the license and creator reads the royalty calculation needs.  The
licensing tables are owned by the licensing system; nothing here writes.

Key design decisions:
- A license is active in a period when it is ACTIVE, not soft-deleted, and
  start_date <= period_end AND end_date >= period_start.
- Ownerships are filtered to the same inclusive window; an ownership with
  no end_date is open-ended.
- Ownerships come back ordered by creator id so that allocation order, and
  therefore largest-remainder tie-breaking, is stable across runs.
"""

from collections import defaultdict
from datetime import date
from typing import Iterable
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from royalty_kernel.domain.dtos import CreatorInfo, LicenseSnapshot
from royalty_kernel.domain.values import LicenseStatus
from royalty_kernel.models.licensing import Creator, IpOwnership, License
from royalty_kernel.selectors.base import BaseSelector


class LicensingSelector(BaseSelector[License]):
    """Selector over licenses, ownerships and creators."""

    def __init__(self, session: Session):
        super().__init__(session)

    def active_licenses(
        self, period_start: date, period_end: date
    ) -> list[LicenseSnapshot]:
        """
        Licenses active in [period_start, period_end] with their ownerships.

        Returns:
            Snapshots ordered by (start_date, id).
        """
        licenses = self.session.scalars(
            select(License)
            .options(selectinload(License.ip_asset))
            .where(
                License.status == LicenseStatus.ACTIVE.value,
                License.deleted_at.is_(None),
                License.start_date <= period_end,
                License.end_date >= period_start,
            )
            .order_by(License.start_date, License.id)
        ).all()
        if not licenses:
            return []

        ownerships = self._ownerships_in_period(
            {lic.ip_asset_id for lic in licenses}, period_start, period_end
        )
        return [
            LicenseSnapshot.from_model(lic, ownerships.get(lic.ip_asset_id, []))
            for lic in licenses
        ]

    def _ownerships_in_period(
        self, asset_ids: Iterable[UUID], period_start: date, period_end: date
    ) -> dict[UUID, list[IpOwnership]]:
        rows = self.session.scalars(
            select(IpOwnership)
            .where(
                IpOwnership.ip_asset_id.in_(list(asset_ids)),
                IpOwnership.start_date <= period_end,
                or_(
                    IpOwnership.end_date.is_(None),
                    IpOwnership.end_date >= period_start,
                ),
            )
            .order_by(IpOwnership.ip_asset_id, IpOwnership.creator_id)
        ).all()
        by_asset: dict[UUID, list[IpOwnership]] = defaultdict(list)
        for row in rows:
            by_asset[row.ip_asset_id].append(row)
        return by_asset

    def get_creator(self, creator_id: UUID) -> CreatorInfo | None:
        creator = self.session.get(Creator, creator_id)
        return CreatorInfo.from_model(creator) if creator else None

    def get_creators(self, creator_ids: Iterable[UUID]) -> dict[UUID, CreatorInfo]:
        ids = list(creator_ids)
        if not ids:
            return {}
        creators = self.session.scalars(
            select(Creator).where(Creator.id.in_(ids))
        ).all()
        return {c.id: CreatorInfo.from_model(c) for c in creators}

    def admins(self) -> list[CreatorInfo]:
        """Accounts flagged as administrators, for dispute notifications."""
        creators = self.session.scalars(
            select(Creator).where(Creator.is_admin.is_(True)).order_by(Creator.id)
        ).all()
        return [CreatorInfo.from_model(c) for c in creators]
