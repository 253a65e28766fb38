"""
Polymorphic association store.

One owned record (agent prompt, lead feedback, workflow run, lead) may
belong to several owners. Each (owned, owner) pair exists at most once:
the unique index on association_links decides races, and the loser of a
race observes AlreadyLinked instead of writing a second row.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Tuple, Union

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lead_attribution.database import store_errors
from lead_attribution.exceptions import AlreadyLinked
from lead_attribution.models import AssociationLink, OwnedKind, OwnerKind
from lead_attribution.schemas.audit import DuplicateLinkGroup, MultiOwnerRecord

logger = logging.getLogger(__name__)


KindLike = Union[OwnedKind, OwnerKind, str]


@dataclass
class LinkRequest:
    owned_id: Any
    owned_kind: KindLike
    owner_id: Any
    owner_kind: KindLike


@dataclass
class LinkBatchResult:
    created: List[int] = field(default_factory=list)
    already_linked: List[AlreadyLinked] = field(default_factory=list)


def _kind(value: KindLike, enum_cls) -> str:
    """Validate a kind against its enum and return the stored value."""
    return enum_cls(value).value


class AssociationStore:
    """Single writer of association_links."""

    def __init__(self, db: Session):
        self.db = db

    def _pair_filter(self, owned_id: str, owned_kind: str, owner_id: str, owner_kind: str):
        return and_(
            AssociationLink.owned_kind == owned_kind,
            AssociationLink.owned_id == owned_id,
            AssociationLink.owner_kind == owner_kind,
            AssociationLink.owner_id == owner_id,
        )

    def link(
        self,
        owned_id: Any,
        owned_kind: KindLike,
        owner_id: Any,
        owner_kind: KindLike
    ) -> int:
        """
        Attach an owned record to an owner.

        The insert runs in a SAVEPOINT, so a rejected duplicate leaves the
        caller's surrounding transaction intact.

        Returns:
            id of the new link

        Raises:
            AlreadyLinked: the pair already exists
            StoreUnavailable / TransactionFailed: backing store failure
        """
        owned_kind = _kind(owned_kind, OwnedKind)
        owner_kind = _kind(owner_kind, OwnerKind)
        owned_id = str(owned_id)
        owner_id = str(owner_id)

        link = AssociationLink(
            owned_id=owned_id,
            owned_kind=owned_kind,
            owner_id=owner_id,
            owner_kind=owner_kind,
        )

        with store_errors("association link"):
            try:
                with self.db.begin_nested():
                    self.db.add(link)
                    self.db.flush()
            except IntegrityError as e:
                existing_id = self.db.execute(
                    select(AssociationLink.id).where(
                        self._pair_filter(owned_id, owned_kind, owner_id, owner_kind)
                    )
                ).scalars().first()
                logger.debug(
                    f"Already linked: {owned_kind}:{owned_id} -> {owner_kind}:{owner_id}"
                )
                raise AlreadyLinked(
                    owned_id, owned_kind, owner_id, owner_kind, link_id=existing_id
                ) from e

        logger.debug(f"Linked {owned_kind}:{owned_id} -> {owner_kind}:{owner_id} (#{link.id})")
        return link.id

    def link_many(self, requests: Iterable[LinkRequest]) -> LinkBatchResult:
        """Attach many pairs; existing pairs are collected, not fatal."""
        result = LinkBatchResult()
        for req in requests:
            try:
                result.created.append(
                    self.link(req.owned_id, req.owned_kind, req.owner_id, req.owner_kind)
                )
            except AlreadyLinked as e:
                result.already_linked.append(e)

        logger.info(
            f"Linked {len(result.created)} records, "
            f"{len(result.already_linked)} already linked"
        )
        return result

    def count_links(
        self,
        owned_id: Any,
        owned_kind: KindLike,
        owner_id: Any,
        owner_kind: KindLike
    ) -> int:
        with store_errors("association count"):
            return self.db.execute(
                select(func.count()).select_from(AssociationLink).where(
                    self._pair_filter(
                        str(owned_id),
                        _kind(owned_kind, OwnedKind),
                        str(owner_id),
                        _kind(owner_kind, OwnerKind),
                    )
                )
            ).scalar_one()

    def owners_of(self, owned_id: Any, owned_kind: KindLike) -> List[Tuple[str, str]]:
        """Distinct (owner_kind, owner_id) pairs for an owned record."""
        with store_errors("association owners"):
            rows = self.db.execute(
                select(AssociationLink.owner_kind, AssociationLink.owner_id)
                .where(
                    AssociationLink.owned_kind == _kind(owned_kind, OwnedKind),
                    AssociationLink.owned_id == str(owned_id),
                )
                .distinct()
                .order_by(AssociationLink.owner_kind, AssociationLink.owner_id)
            ).all()
        return [(row.owner_kind, row.owner_id) for row in rows]

    # ========================================================================
    # AUDITS (read-only)
    # ========================================================================

    def find_duplicates(self, kind: KindLike) -> List[DuplicateLinkGroup]:
        """Pairs linked more than once. Rows that predate the unique index."""
        owned_kind = _kind(kind, OwnedKind)
        count = func.count(AssociationLink.id).label("count")

        with store_errors("duplicate audit"):
            rows = self.db.execute(
                select(
                    AssociationLink.owned_id,
                    AssociationLink.owner_kind,
                    AssociationLink.owner_id,
                    count,
                )
                .where(AssociationLink.owned_kind == owned_kind)
                .group_by(
                    AssociationLink.owned_id,
                    AssociationLink.owner_kind,
                    AssociationLink.owner_id,
                )
                .having(func.count(AssociationLink.id) > 1)
                .order_by(AssociationLink.owned_id)
            ).all()

        if rows:
            logger.warning(f"{len(rows)} duplicate {owned_kind} link groups")

        return [
            DuplicateLinkGroup(
                owned_id=row.owned_id,
                owned_kind=owned_kind,
                owner_id=row.owner_id,
                owner_kind=row.owner_kind,
                count=row.count,
            )
            for row in rows
        ]

    def find_multi_owner(self, kind: KindLike) -> List[MultiOwnerRecord]:
        """Owned records attached to more than one distinct owner."""
        owned_kind = _kind(kind, OwnedKind)

        distinct_pairs = (
            select(
                AssociationLink.owned_id,
                AssociationLink.owner_kind,
                AssociationLink.owner_id,
            )
            .where(AssociationLink.owned_kind == owned_kind)
            .distinct()
            .subquery()
        )
        owner_count = func.count().label("distinct_owner_count")

        with store_errors("multi-owner audit"):
            rows = self.db.execute(
                select(distinct_pairs.c.owned_id, owner_count)
                .group_by(distinct_pairs.c.owned_id)
                .having(func.count() > 1)
                .order_by(distinct_pairs.c.owned_id)
            ).all()

        return [
            MultiOwnerRecord(
                owned_id=row.owned_id,
                owned_kind=owned_kind,
                distinct_owner_count=row.distinct_owner_count,
            )
            for row in rows
        ]

    def total_links(self, kind: Optional[KindLike] = None) -> int:
        stmt = select(func.count()).select_from(AssociationLink)
        if kind is not None:
            stmt = stmt.where(AssociationLink.owned_kind == _kind(kind, OwnedKind))
        with store_errors("association total"):
            return self.db.execute(stmt).scalar_one()
