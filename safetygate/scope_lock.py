"""
Scope Lock Engine
=================

Fixes what the assistant may touch for one user request and checks each
proposed action against it.

The check is default-allow: an action is blocked only when its target is a
forbidden file, or lies outside a non-empty list of allowed directories.
An action type the lock did not infer is a warning, not a block.

Usage:
    lock = create_scope_lock("Add a login page with OAuth")
    check = check_action(lock, "modify-file", ".env.local")
    check.allowed          # False
    check.reason           # "'.env.local' is a protected file (.env)"
"""

import posixpath
from dataclasses import dataclass
from typing import Optional, Sequence

from safetygate.patterns import directories_for_keywords, extract_keywords
from safetygate.safety_types import ActionType, ScopeLock, Violation, now_iso, short_id

# Always forbidden, whatever the caller passes
ALWAYS_FORBIDDEN = (
    ".env",
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    ".git/",
    "node_modules/",
)

# Inferred from request wording: action -> trigger phrases
ACTION_TRIGGERS: tuple[tuple[tuple[ActionType, ...], tuple[str, ...]], ...] = (
    ((ActionType.ADD_DEPENDENCY, ActionType.REMOVE_DEPENDENCY), ("install", "package", "dependency", "dependencies", "npm ", "library")),
    ((ActionType.DELETE_FILE,), ("delete", "remove", "clean up", "cleanup")),
    ((ActionType.RUN_COMMAND,), ("run ", "execute", "build", "test", "migrate")),
    ((ActionType.MODIFY_CONFIG,), ("config", "setting", "environment")),
)


def normalize_path(path: str) -> str:
    """Forward slashes, no leading ./ or /, collapsed ./.. segments."""
    cleaned = (path or "").strip().replace("\\", "/")
    if not cleaned:
        return ""
    trailing = cleaned.endswith("/")
    cleaned = posixpath.normpath(cleaned).lstrip("/")
    if cleaned == ".":
        return ""
    return cleaned + "/" if trailing else cleaned


def infer_allowed_actions(user_request: str) -> list[ActionType]:
    lowered = user_request.lower() + " "
    actions = [ActionType.CREATE_FILE, ActionType.MODIFY_FILE]
    for granted, triggers in ACTION_TRIGGERS:
        if any(t in lowered for t in triggers):
            actions.extend(a for a in granted if a not in actions)
    return actions


def create_scope_lock(
    user_request: str,
    allowed_directories: Optional[Sequence[str]] = None,
    forbidden_files: Optional[Sequence[str]] = None,
) -> ScopeLock:
    """
    Build a scope lock for a request.

    Args:
        user_request: The user's request text
        allowed_directories: Extra directories to allow (merged with inferred ones)
        forbidden_files: Extra files/prefixes to forbid (ALWAYS_FORBIDDEN is always added)

    Returns:
        A new ScopeLock with no violations
    """
    directories = directories_for_keywords(extract_keywords(user_request))
    for directory in allowed_directories or ():
        normalized = normalize_path(directory)
        if normalized and normalized not in directories:
            directories.append(normalized)

    forbidden: list[str] = []
    for entry in list(forbidden_files or ()) + list(ALWAYS_FORBIDDEN):
        normalized = normalize_path(entry)
        if normalized and normalized not in forbidden:
            forbidden.append(normalized)

    return ScopeLock(
        id=short_id("SL"),
        created_at=now_iso(),
        user_request=user_request,
        allowed_actions=infer_allowed_actions(user_request),
        allowed_directories=directories,
        forbidden_files=forbidden,
    )


@dataclass
class ScopeCheck:
    allowed: bool
    reason: Optional[str] = None
    warning: Optional[str] = None
    violation: Optional[Violation] = None


def _matches_forbidden(target: str, entry: str) -> bool:
    if entry.endswith("/"):
        # directory: match it at the start or anywhere below the root
        return target.startswith(entry) or f"/{entry}" in f"/{target}"
    if target == entry or target.startswith(entry + "/"):
        return True
    basename = posixpath.basename(target)
    if entry.startswith(".") and "." not in entry[1:]:
        # dotfile family: ".env" also covers ".env.local" and ".envrc"
        return basename.startswith(entry)
    return basename == entry or basename.startswith(entry + ".")


def check_action(lock: ScopeLock, action_type: str, target_file: Optional[str]) -> ScopeCheck:
    """
    Check one action against a lock. Pure: records nothing.

    Returns:
        ScopeCheck with allowed False and a Violation when blocked
    """
    target = normalize_path(target_file or "")
    warning = None
    known_actions = {a.value for a in lock.allowed_actions}
    if action_type and action_type not in known_actions:
        warning = f"Action '{action_type}' was not inferred from the request; confirm it is intended."

    if not target:
        return ScopeCheck(allowed=True, warning=warning)

    for entry in lock.forbidden_files:
        if _matches_forbidden(target, entry):
            reason = f"'{target}' is a protected file ({entry})"
            return ScopeCheck(
                allowed=False,
                reason=reason,
                warning=warning,
                violation=Violation(
                    action_type=action_type,
                    target_file=target,
                    reason=reason,
                    timestamp=now_iso(),
                ),
            )

    if lock.allowed_directories and not any(
        target.startswith(d if d.endswith("/") else d + "/") or target == d.rstrip("/")
        for d in lock.allowed_directories
    ):
        reason = f"'{target}' is outside the allowed directories: {', '.join(lock.allowed_directories)}"
        return ScopeCheck(
            allowed=False,
            reason=reason,
            warning=warning,
            violation=Violation(
                action_type=action_type,
                target_file=target,
                reason=reason,
                timestamp=now_iso(),
            ),
        )

    return ScopeCheck(allowed=True, warning=warning)


def format_for_display(lock: ScopeLock) -> str:
    """Summary returned by define_scope."""
    lines = [
        "## SCOPE LOCK ACTIVE",
        "",
        f"**Request:** {lock.user_request}",
        "",
        "**Allowed actions:**",
    ]
    lines.extend(f"- {a.value}" for a in lock.allowed_actions)
    lines.append("")
    lines.append("**Allowed directories:**")
    if lock.allowed_directories:
        lines.extend(f"- `{d}`" for d in lock.allowed_directories)
    else:
        lines.append("- (any, no directory restriction)")
    lines.append("")
    lines.append("**Forbidden:**")
    lines.extend(f"- `{f}`" for f in lock.forbidden_files)
    lines.append("")
    lines.append("Any action outside this scope is blocked and recorded as a violation.")
    return "\n".join(lines)
