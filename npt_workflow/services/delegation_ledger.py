"""
Delegation Ledger: time-bounded overrides of the Role Directory.

``effective_approver(rig, role, at)`` answers "who may act for this role
right now". It is a pure read of assignment and delegation history at
``at``: a delegation counts only if it had been created, had not been
revoked, and its window ``[starts_at, ends_at)`` contains ``at``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import as_utc, utcnow
from ..models import Delegation
from .exceptions import NotFoundError, UnauthorizedError, WorkflowValidationError
from .role_directory import RoleDirectory, require_role_key

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class DelegationInput:
    """Input for creating a delegation."""
    delegator_id: str
    delegate_id: str
    starts_at: datetime
    ends_at: datetime
    rig_id: int | None = None
    role: str | None = None
    reason: str | None = None


@dataclass
class ApproverResolution:
    """Who may act for (rig, role) at an instant, and why."""
    rig_id: int
    role_key: str
    principal_id: str | None
    nominal_id: str | None
    delegation_id: UUID | None = None

    @property
    def is_delegated(self) -> bool:
        return self.delegation_id is not None


# =============================================================================
# DELEGATION LEDGER
# =============================================================================


class DelegationLedger:
    """Maintains delegations and resolves effective approvers."""

    def __init__(self, session: AsyncSession, directory: RoleDirectory | None = None):
        self._session = session
        self._directory = directory or RoleDirectory(session)

    @property
    def directory(self) -> RoleDirectory:
        return self._directory

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def delegate(
        self,
        input: DelegationInput,
        now: datetime | None = None,
    ) -> Delegation:
        """Record a delegation of authority from one principal to another."""
        now = as_utc(now) or utcnow()
        starts_at = as_utc(input.starts_at)
        ends_at = as_utc(input.ends_at)

        if input.delegate_id == input.delegator_id:
            raise WorkflowValidationError("A principal cannot delegate to themselves")
        if ends_at <= starts_at:
            raise WorkflowValidationError(
                "Delegation must end after it starts",
                starts_at=starts_at.isoformat(),
                ends_at=ends_at.isoformat(),
            )
        role_key = require_role_key(input.role) if input.role else None
        if input.rig_id is not None and role_key is not None:
            holder = await self._directory.holder_at(input.rig_id, role_key, starts_at)
            if holder != input.delegator_id:
                raise UnauthorizedError(
                    f"{input.delegator_id} does not hold {role_key} on rig {input.rig_id}",
                    rig_id=input.rig_id,
                    role=role_key,
                )

        delegation = Delegation(
            delegator_id=input.delegator_id,
            delegate_id=input.delegate_id,
            starts_at=starts_at,
            ends_at=ends_at,
            rig_id=input.rig_id,
            role_key=role_key,
            reason=input.reason,
            is_active=True,
            created_at=now,
        )
        self._session.add(delegation)
        await self._session.flush()

        logger.info(
            f"Delegation {delegation.id}: {input.delegator_id} -> {input.delegate_id} "
            f"(rig={input.rig_id or '*'}, role={role_key or '*'}) "
            f"[{starts_at.isoformat()}, {ends_at.isoformat()})"
        )
        return delegation

    async def revoke_delegation(
        self,
        delegation_id: UUID,
        revoked_by: str | None = None,
        now: datetime | None = None,
    ) -> Delegation:
        """Deactivate a delegation. The row is kept for history.

        When ``revoked_by`` is given it must be the delegator.
        """
        now = as_utc(now) or utcnow()
        result = await self._session.execute(
            select(Delegation).where(Delegation.id == delegation_id).with_for_update()
        )
        delegation = result.scalar_one_or_none()
        if delegation is None:
            raise NotFoundError(f"Delegation {delegation_id} not found")
        if revoked_by is not None and revoked_by != delegation.delegator_id:
            raise UnauthorizedError(
                f"Only the delegator can revoke delegation {delegation_id}"
            )

        if delegation.is_active:
            delegation.is_active = False
            delegation.revoked_at = now
            await self._session.flush()
            logger.info(f"Revoked delegation {delegation_id}")

        return delegation

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    async def resolve(
        self,
        rig_id: int,
        role: str,
        at: datetime | None = None,
    ) -> ApproverResolution:
        """Resolve the effective approver for (rig, role) at ``at``."""
        role_key = require_role_key(role)
        at = as_utc(at) or utcnow()

        nominal_id = await self._directory.holder_at(rig_id, role_key, at)
        matches = await self.matching_delegations(rig_id, role_key, at, nominal_id)

        if not matches:
            return ApproverResolution(
                rig_id=rig_id,
                role_key=role_key,
                principal_id=nominal_id,
                nominal_id=nominal_id,
            )

        winner = matches[0]
        if len(matches) > 1:
            logger.warning(
                f"Ambiguous delegation for {role_key} on rig {rig_id} at {at.isoformat()}: "
                f"{len(matches)} active delegations, using most recent {winner.id}",
            )

        return ApproverResolution(
            rig_id=rig_id,
            role_key=role_key,
            principal_id=winner.delegate_id,
            nominal_id=nominal_id,
            delegation_id=winner.id,
        )

    async def effective_approver(
        self,
        rig_id: int,
        role: str,
        at: datetime | None = None,
    ) -> str | None:
        """Principal who may act for (rig, role) at ``at``, or None."""
        resolution = await self.resolve(rig_id, role, at)
        return resolution.principal_id

    async def require_effective_approver(
        self,
        rig_id: int,
        role: str,
        at: datetime | None = None,
    ) -> ApproverResolution:
        """Like ``resolve`` but a vacant role is a validation error."""
        resolution = await self.resolve(rig_id, role, at)
        if resolution.principal_id is None:
            raise WorkflowValidationError(
                f"No approver can be resolved for {resolution.role_key} on rig {rig_id}",
                rig_id=rig_id,
                role=resolution.role_key,
            )
        return resolution

    async def approver_holders(
        self,
        rig_id: int,
        roles: Iterable[str],
        at: datetime | None = None,
    ) -> list[str]:
        """Effective approvers for each role, de-duplicated. Vacant roles are skipped."""
        holders: list[str] = []
        for role in roles:
            principal_id = await self.effective_approver(rig_id, role, at)
            if principal_id is not None and principal_id not in holders:
                holders.append(principal_id)
        return holders

    async def matching_delegations(
        self,
        rig_id: int,
        role_key: str,
        at: datetime,
        nominal_id: str | None,
    ) -> Sequence[Delegation]:
        """Delegations in force for (rig, role) at ``at``, newest first.

        Only delegations issued by the nominal holder at ``at`` count, and
        only when their rig/role scope is empty or matches. A vacant role
        has nobody to delegate it.
        """
        if nominal_id is None:
            return []

        result = await self._session.execute(
            select(Delegation)
            .where(
                Delegation.delegator_id == nominal_id,
                or_(Delegation.rig_id.is_(None), Delegation.rig_id == rig_id),
                or_(Delegation.role_key.is_(None), Delegation.role_key == role_key),
                Delegation.created_at <= at,
                or_(Delegation.revoked_at.is_(None), Delegation.revoked_at > at),
                Delegation.starts_at <= at,
                Delegation.ends_at > at,
            )
            .order_by(Delegation.created_at.desc(), Delegation.id.desc())
        )
        return result.scalars().all()

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_delegations(
        self,
        principal_id: str,
        include_inactive: bool = False,
    ) -> Sequence[Delegation]:
        """Delegations given or received by a principal."""
        query = select(Delegation).where(
            or_(
                Delegation.delegator_id == principal_id,
                Delegation.delegate_id == principal_id,
            )
        )
        if not include_inactive:
            query = query.where(Delegation.is_active.is_(True))

        result = await self._session.execute(query.order_by(Delegation.starts_at.desc()))
        return result.scalars().all()
