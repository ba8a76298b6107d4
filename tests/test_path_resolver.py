"""
Tests for the Workflow Path Resolver.

The resolver is pure: category in, role path out.
"""

import pytest

from npt_workflow.services.path_resolver import (
    APPROVER_ROLES,
    DRILLING_PATH,
    MAINTENANCE_PATH,
    normalize_category,
    normalize_role_key,
    resolve_path,
)


class TestResolvePath:
    """Category -> path selection."""

    @pytest.mark.parametrize(
        "category",
        ["E.Maintenance", "E-Maintenance", "e maintenance", "  E_MAINTENANCE ", "Maintenance"],
    )
    def test_maintenance_designations_take_maintenance_path(self, category):
        path = resolve_path(category)

        assert path is MAINTENANCE_PATH
        assert path.roles == ("tool_pusher", "pme", "ds", "ose")

    @pytest.mark.parametrize("category", ["Drilling", "drilling", "Rig Move", "", None])
    def test_everything_else_takes_drilling_path(self, category):
        path = resolve_path(category)

        assert path is DRILLING_PATH
        assert path.roles == ("tool_pusher", "ds", "ose")

    def test_resolution_is_deterministic(self):
        assert resolve_path("E.Maintenance") == resolve_path("E.Maintenance")

    def test_next_role_walks_the_path(self):
        assert MAINTENANCE_PATH.next_role("tool_pusher") == "pme"
        assert MAINTENANCE_PATH.next_role("pme") == "ds"
        assert MAINTENANCE_PATH.next_role("ose") is None

    def test_initiator_and_approvers(self):
        assert DRILLING_PATH.initiator_role == "tool_pusher"
        assert DRILLING_PATH.approver_roles == ("ds", "ose")
        assert set(MAINTENANCE_PATH.approver_roles) == set(APPROVER_ROLES)


class TestNormalization:

    def test_separators_collapse(self):
        assert normalize_category("E.Maintenance") == "e-maintenance"
        assert normalize_category("E -- Maintenance") == "e-maintenance"

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("tool_pusher", "tool_pusher"),
            ("Tool Pusher", "tool_pusher"),
            ("DS", "ds"),
            ("Drilling Supervisor", "ds"),
            ("E-Maintenance Engineer", "pme"),
            ("OSE", "ose"),
            ("Operations Superintendent", "ose"),
            ("Admin", None),
        ],
    )
    def test_role_names(self, name, expected):
        assert normalize_role_key(name) == expected
