"""
Workflow Path Resolver: maps a report category to its ordered approver roles.

The table is static. A report's path is resolved once, at initiation, and
snapshotted onto the report; later edits to this table never move a report
that is already in flight.
"""

import re
from dataclasses import dataclass


# =============================================================================
# ROLES & PATHS
# =============================================================================


TOOL_PUSHER = "tool_pusher"
DRILLING_SUPERVISOR = "ds"
MAINTENANCE_ENGINEER = "pme"
OPERATIONS_SUPERINTENDENT = "ose"


@dataclass(frozen=True)
class WorkflowPath:
    """Named, ordered role list. ``roles[0]`` initiates, the rest approve."""
    name: str
    roles: tuple[str, ...]

    @property
    def initiator_role(self) -> str:
        return self.roles[0]

    @property
    def approver_roles(self) -> tuple[str, ...]:
        return self.roles[1:]

    def next_role(self, role: str) -> str | None:
        """Role after ``role`` in this path, or None when ``role`` is last."""
        index = self.roles.index(role)
        if index + 1 < len(self.roles):
            return self.roles[index + 1]
        return None


DRILLING_PATH = WorkflowPath(
    name="drilling",
    roles=(TOOL_PUSHER, DRILLING_SUPERVISOR, OPERATIONS_SUPERINTENDENT),
)

MAINTENANCE_PATH = WorkflowPath(
    name="e-maintenance",
    roles=(TOOL_PUSHER, MAINTENANCE_ENGINEER, DRILLING_SUPERVISOR, OPERATIONS_SUPERINTENDENT),
)

DEFAULT_PATH = DRILLING_PATH

# Normalized categories routed through the maintenance engineer
MAINTENANCE_CATEGORIES = frozenset({
    "e-maintenance",
    "maintenance",
    "electrical-maintenance",
    "mechanical-maintenance",
})

# Every role that approves somewhere after initiation
APPROVER_ROLES: tuple[str, ...] = (
    MAINTENANCE_ENGINEER,
    DRILLING_SUPERVISOR,
    OPERATIONS_SUPERINTENDENT,
)

ALL_ROLES: tuple[str, ...] = (TOOL_PUSHER,) + APPROVER_ROLES

# Display names used by the rig-side tooling
_ROLE_ALIASES = {
    "tool-pusher": TOOL_PUSHER,
    "toolpusher": TOOL_PUSHER,
    "tp": TOOL_PUSHER,
    "ds": DRILLING_SUPERVISOR,
    "drilling-supervisor": DRILLING_SUPERVISOR,
    "pme": MAINTENANCE_ENGINEER,
    "e-maintenance-engineer": MAINTENANCE_ENGINEER,
    "maintenance-engineer": MAINTENANCE_ENGINEER,
    "ose": OPERATIONS_SUPERINTENDENT,
    "operations-superintendent": OPERATIONS_SUPERINTENDENT,
    "operation-superintendent": OPERATIONS_SUPERINTENDENT,
}

_SEPARATORS = re.compile(r"[\s._-]+")


# =============================================================================
# RESOLUTION
# =============================================================================


def normalize_category(category: str | None) -> str:
    """Trim, case-fold and collapse separators so 'E.Maintenance' == 'e maintenance'."""
    if not category:
        return ""
    return _SEPARATORS.sub("-", category.strip().casefold()).strip("-")


def resolve_path(category: str | None) -> WorkflowPath:
    """Return the approval path for a report category.

    Unknown or blank categories take the default drilling path.
    """
    if normalize_category(category) in MAINTENANCE_CATEGORIES:
        return MAINTENANCE_PATH
    return DEFAULT_PATH


def path_from_snapshot(name: str | None, roles: list[str] | None) -> WorkflowPath | None:
    """Rebuild a path from the columns snapshotted on a report."""
    if not roles:
        return None
    return WorkflowPath(name=name or "", roles=tuple(roles))


def normalize_role_key(role: str) -> str | None:
    """Map a role key or a legacy display name to a role key.

    Returns None for names that are not workflow roles.
    """
    key = normalize_category(role)
    if key.replace("-", "_") in ALL_ROLES:
        return key.replace("-", "_")
    return _ROLE_ALIASES.get(key)
