"""
Role Directory: (rig, role) -> assigned principal.

Assignments are versioned rows. Giving a role to someone new closes the
previous row (``is_active = False``, ``deactivated_at = now``) and inserts a
fresh one, so the holder at any past instant can still be read back.
"""

import logging
from datetime import datetime
from typing import Sequence

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import as_utc, utcnow
from ..models import RoleAssignment
from .exceptions import ConcurrencyConflictError, NotFoundError, WorkflowValidationError
from .path_resolver import normalize_role_key

logger = logging.getLogger(__name__)


def require_role_key(role: str) -> str:
    """Normalize a role name or raise a validation error."""
    role_key = normalize_role_key(role)
    if role_key is None:
        raise WorkflowValidationError(f"Unknown role: {role!r}", role=role)
    return role_key


class RoleDirectory:
    """Reads and maintains the versioned role assignment table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def assign_role(
        self,
        rig_id: int,
        role: str,
        principal_id: str,
        assigned_by: str | None = None,
        now: datetime | None = None,
    ) -> RoleAssignment:
        """Make ``principal_id`` the holder of ``role`` on ``rig_id``.

        Re-assigning the current holder is a no-op and returns the existing row.
        """
        role_key = require_role_key(role)
        now = as_utc(now) or utcnow()

        current = await self._locked_active(rig_id, role_key)
        if current is not None and current.principal_id == principal_id:
            return current

        try:
            if current is not None:
                current.is_active = False
                current.deactivated_at = now
                # The partial unique index only allows one active row
                await self._session.flush()

            assignment = RoleAssignment(
                rig_id=rig_id,
                role_key=role_key,
                principal_id=principal_id,
                is_active=True,
                assigned_at=now,
                assigned_by=assigned_by,
            )
            self._session.add(assignment)
            await self._session.flush()
        except IntegrityError as e:
            raise ConcurrencyConflictError(
                f"Role {role_key} on rig {rig_id} was reassigned concurrently"
            ) from e

        logger.info(
            f"Assigned {role_key} on rig {rig_id} to {principal_id}"
            + (f" (replacing {current.principal_id})" if current else "")
        )
        return assignment

    async def revoke_role(
        self,
        rig_id: int,
        role: str,
        now: datetime | None = None,
    ) -> RoleAssignment:
        """Close the active assignment for (rig, role), leaving it vacant."""
        role_key = require_role_key(role)
        now = as_utc(now) or utcnow()

        current = await self._locked_active(rig_id, role_key)
        if current is None:
            raise NotFoundError(
                f"No active assignment for {role_key} on rig {rig_id}",
                rig_id=rig_id,
                role=role_key,
            )

        current.is_active = False
        current.deactivated_at = now
        await self._session.flush()

        logger.info(f"Revoked {role_key} on rig {rig_id} from {current.principal_id}")
        return current

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def active_assignment(self, rig_id: int, role: str) -> RoleAssignment | None:
        role_key = require_role_key(role)
        result = await self._session.execute(
            select(RoleAssignment).where(
                RoleAssignment.rig_id == rig_id,
                RoleAssignment.role_key == role_key,
                RoleAssignment.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def holder_at(self, rig_id: int, role_key: str, at: datetime) -> str | None:
        """Principal holding (rig, role) at instant ``at``, by assignment only."""
        at = as_utc(at)
        result = await self._session.execute(
            select(RoleAssignment.principal_id)
            .where(
                RoleAssignment.rig_id == rig_id,
                RoleAssignment.role_key == role_key,
                RoleAssignment.assigned_at <= at,
                or_(
                    RoleAssignment.deactivated_at.is_(None),
                    RoleAssignment.deactivated_at > at,
                ),
            )
            .order_by(RoleAssignment.assigned_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_assignments(self, rig_id: int) -> Sequence[RoleAssignment]:
        """Active assignments for a rig."""
        result = await self._session.execute(
            select(RoleAssignment)
            .where(
                RoleAssignment.rig_id == rig_id,
                RoleAssignment.is_active.is_(True),
            )
            .order_by(RoleAssignment.role_key)
        )
        return result.scalars().all()

    async def assignment_history(self, rig_id: int, role: str) -> Sequence[RoleAssignment]:
        """Every assignment ever made for (rig, role), oldest first."""
        role_key = require_role_key(role)
        result = await self._session.execute(
            select(RoleAssignment)
            .where(
                RoleAssignment.rig_id == rig_id,
                RoleAssignment.role_key == role_key,
            )
            .order_by(RoleAssignment.assigned_at)
        )
        return result.scalars().all()

    async def _locked_active(self, rig_id: int, role_key: str) -> RoleAssignment | None:
        result = await self._session.execute(
            select(RoleAssignment)
            .where(
                RoleAssignment.rig_id == rig_id,
                RoleAssignment.role_key == role_key,
                RoleAssignment.is_active.is_(True),
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()
