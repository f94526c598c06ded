"""Tests for RBAC permission checking logic."""

import pytest
from core.rbac import _check_permission, get_effective_actions, normalize_role, role_allows


class TestCheckPermission:
    """Test permission matching including wildcards."""

    def test_exact_match(self):
        perms = {"automation:manage", "automation:approve"}
        assert _check_permission(perms, "automation:manage") is True
        assert _check_permission(perms, "automation:approve") is True

    def test_no_match(self):
        perms = {"automation:manage"}
        assert _check_permission(perms, "automation:replay") is False
        assert _check_permission(perms, "partner:manage") is False

    def test_wildcard_match(self):
        perms = {"automation:*"}
        assert _check_permission(perms, "automation:manage") is True
        assert _check_permission(perms, "automation:replay") is True

    def test_wildcard_no_cross_resource(self):
        perms = {"automation:*"}
        assert _check_permission(perms, "partner:manage") is False
        assert _check_permission(perms, "automationx:manage") is False

    def test_global_wildcard(self):
        perms = {"*"}
        assert _check_permission(perms, "automation:approve") is True
        assert _check_permission(perms, "anything:anything") is True

    def test_empty_permissions(self):
        perms: set[str] = set()
        assert _check_permission(perms, "automation:manage") is False


class TestRoles:
    """Test the role table, inheritance and fallbacks."""

    def test_normalize_role(self):
        assert normalize_role("ADMIN") == "system_admin"
        assert normalize_role(" Teacher ") == "teacher"
        assert normalize_role("wizard") == "parent"
        assert normalize_role(None) == "parent"

    def test_inheritance_chain(self):
        teacher = get_effective_actions("teacher")
        school_admin = get_effective_actions("school_admin")
        district_admin = get_effective_actions("district_admin")
        assert teacher <= school_admin <= district_admin
        assert get_effective_actions("parent") <= teacher

    @pytest.mark.parametrize(
        "role,action,allowed",
        [
            ("parent", "automation:manage", False),
            ("teacher", "automation:manage", False),
            ("school_admin", "automation:manage", True),
            ("school_admin", "automation:request_review", True),
            ("school_admin", "automation:approve", False),
            ("district_admin", "automation:approve", True),
            ("district_admin", "automation:publish", True),
            ("district_admin", "automation:replay", True),
            ("system_admin", "automation:replay", True),
            ("admin", "whatever:thing", True),
            ("partner", "automation:manage", False),
        ],
    )
    def test_role_allows(self, role, action, allowed):
        assert role_allows(role, action) is allowed

    def test_empty_action_is_allowed(self):
        assert role_allows("parent", "") is True
