"""
Tests for the Scope Lock Engine
===============================

Tests for safetygate/scope_lock.py
"""

import pytest

from safetygate.safety_types import ActionType
from safetygate.scope_lock import (
    ALWAYS_FORBIDDEN,
    check_action,
    create_scope_lock,
    format_for_display,
    infer_allowed_actions,
    normalize_path,
)


@pytest.fixture
def login_lock():
    return create_scope_lock("Add a login page with OAuth")


class TestNormalizePath:
    """Tests for path normalization."""

    def test_separators_and_dots(self):
        assert normalize_path("./src\\app/../lib/") == "src/lib/"

    def test_leading_slash(self):
        assert normalize_path("/src/app/page.tsx") == "src/app/page.tsx"

    def test_empty(self):
        assert normalize_path("") == ""
        assert normalize_path(".") == ""


class TestCreateScopeLock:
    """Tests for building a lock from a request."""

    def test_infers_directories(self, login_lock):
        assert login_lock.allowed_directories == ["src/app/(auth)/", "src/lib/auth/", "src/app/"]

    def test_always_forbidden(self, login_lock):
        for entry in ALWAYS_FORBIDDEN:
            assert entry in login_lock.forbidden_files

    def test_default_actions(self, login_lock):
        assert login_lock.allowed_actions == [ActionType.CREATE_FILE, ActionType.MODIFY_FILE]
        assert login_lock.violations == []
        assert login_lock.id.startswith("SL-")

    def test_actions_from_wording(self):
        actions = infer_allowed_actions("Install zod and run the migration")
        assert ActionType.ADD_DEPENDENCY in actions
        assert ActionType.REMOVE_DEPENDENCY in actions
        assert ActionType.RUN_COMMAND in actions
        assert ActionType.DELETE_FILE not in actions

    def test_caller_lists_merged(self):
        lock = create_scope_lock(
            "Add a login page",
            allowed_directories=["./src/middleware/", "src/app/"],
            forbidden_files=["src/db/schema.ts"],
        )
        assert "src/middleware/" in lock.allowed_directories
        assert lock.allowed_directories.count("src/app/") == 1
        assert lock.forbidden_files[0] == "src/db/schema.ts"


class TestCheckAction:
    """Tests for checking actions against a lock."""

    def test_allowed_target(self, login_lock):
        check = check_action(login_lock, "create-file", "src/app/login/page.tsx")
        assert check.allowed
        assert check.violation is None

    def test_env_variants_forbidden(self, login_lock):
        for target in (".env", ".env.local", "config/.env.production", ".envrc", ".env-production", "config/.env_local"):
            check = check_action(login_lock, "modify-file", target)
            assert not check.allowed, target
            assert "(.env)" in check.reason

    def test_env_forbidden_inside_allowed_directory(self):
        lock = create_scope_lock("Add a login page", allowed_directories=["config/"])
        check = check_action(lock, "modify-file", "config/.envrc")
        assert not check.allowed
        assert check.violation is not None

    def test_nested_node_modules_forbidden(self, login_lock):
        check = check_action(login_lock, "modify-file", "packages/web/node_modules/pkg/index.js")
        assert not check.allowed
        assert "node_modules/" in check.reason

    def test_outside_allowed_directories(self, login_lock):
        check = check_action(login_lock, "modify-file", "src/server/db.ts")
        assert not check.allowed
        assert "outside the allowed directories" in check.reason
        assert check.violation.target_file == "src/server/db.ts"
        assert check.violation.action_type == "modify-file"

    def test_is_pure(self, login_lock):
        check_action(login_lock, "modify-file", ".env")
        assert login_lock.violations == []

    def test_unexpected_action_type_warns(self, login_lock):
        check = check_action(login_lock, "delete-file", "src/app/old/page.tsx")
        assert check.allowed
        assert "delete-file" in check.warning

    def test_no_target(self, login_lock):
        assert check_action(login_lock, "run-command", None).allowed

    def test_no_directory_restriction(self):
        lock = create_scope_lock("Fix the typo in the footer")
        assert lock.allowed_directories == []
        assert check_action(lock, "modify-file", "anything/footer.tsx").allowed
        assert not check_action(lock, "modify-file", "yarn.lock").allowed

    def test_record_violation(self, login_lock):
        check = check_action(login_lock, "modify-file", ".env")
        login_lock.record_violation(check.violation)
        assert len(login_lock.violations) == 1


class TestDisplay:
    """Tests for the define_scope summary."""

    def test_format(self, login_lock):
        text = format_for_display(login_lock)
        assert text.startswith("## SCOPE LOCK ACTIVE")
        assert "`src/app/(auth)/`" in text
        assert "`.env`" in text

    def test_format_without_directories(self):
        text = format_for_display(create_scope_lock("Fix the typo in the footer"))
        assert "no directory restriction" in text
