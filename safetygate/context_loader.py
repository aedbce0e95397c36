"""
Context Loader
==============

Reads a project's history before the assistant acts on it:

    <project>/.safetygate.json          state (name, stack, features, task)
    <project>/.safetygate/DECISIONS.md  decision ledger
    <project>/.safetygate/ATTEMPTS.md   tried approaches
    <project>/.safetygate/BLOCKED.md    blockers
    <project>/.safetygate/DEVLOG.md     recent changes

File names come from SafetyConfig. Each read is capped in size and time;
a slow, unreadable or oversized file becomes a warning, never an exception.
The same parsers accept inline content for clients that send file bodies
instead of a path.
"""

import asyncio
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from safetygate.attempt_tracker import AttemptTracker
from safetygate.config import SafetyConfig
from safetygate.decision_log import content_id
from safetygate.safety_types import (
    Attempt,
    AttemptResult,
    Blocker,
    BlockerCategory,
    BlockerStatus,
    Decision,
    DecisionCategory,
    FileChange,
    Impact,
    MadeBy,
    ProjectContext,
    now_iso,
)

logger = logging.getLogger(__name__)

DECISIONS_FILE = "DECISIONS.md"
ATTEMPTS_FILE = "ATTEMPTS.md"
BLOCKED_FILE = "BLOCKED.md"
DEVLOG_FILE = "DEVLOG.md"


@dataclass
class LoadResult:
    success: bool
    context: Optional[ProjectContext] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def project_hash(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:12]


# =============================================================================
# Markdown parsing
# =============================================================================

_SECTION_RE = re.compile(r"^## (?!#)", re.MULTILINE)
_DATED_HEADER_RE = re.compile(r"^\[?(\d{4}-\d{2}-\d{2}[^\]\s]*)\]?\s*-\s*(.+)$")
_ATTEMPT_HEADER_RE = re.compile(r"^### Attempt \d+ \((\w+)\)(.*)$", re.MULTILINE)


def _split_sections(content: str) -> list[str]:
    parts = _SECTION_RE.split(content)
    # parts[0] is the preamble before the first "## "
    return [p.strip() for p in parts[1:] if p.strip()]


def _field(body: str, name: str) -> Optional[str]:
    match = re.search(rf"^\*\*{re.escape(name)}:\*\*\s*(.*)$", body, re.MULTILINE | re.IGNORECASE)
    if not match:
        return None
    return match.group(1).strip() or None


def _bullets_after(body: str, label: str) -> list[str]:
    lines = body.splitlines()
    items: list[str] = []
    collecting = False
    for line in lines:
        stripped = line.strip()
        if stripped.lower().startswith(f"**{label.lower()}:**"):
            collecting = True
            continue
        if collecting:
            if stripped.startswith("- "):
                items.append(stripped[2:].strip().strip("`"))
            elif stripped:
                break
            elif items:
                break
    return items


_CATEGORY_HINTS = (
    (DecisionCategory.SECURITY, ("auth", "security", "permission", "secret", "encrypt")),
    (DecisionCategory.DATA_MODEL, ("schema", "table", "database", "model", "column")),
    (DecisionCategory.API_DESIGN, ("api", "endpoint", "route")),
    (DecisionCategory.UI_DESIGN, ("ui", "design", "layout", "component", "style")),
    (DecisionCategory.DEPLOYMENT, ("deploy", "hosting", "vercel", "ci")),
    (DecisionCategory.INTEGRATION, ("integration", "webhook", "stripe", "email")),
)


def _parse_category(raw: Optional[str], text: str) -> DecisionCategory:
    if raw:
        try:
            return DecisionCategory(raw.strip().lower())
        except ValueError:
            pass
    lowered = text.lower()
    for category, hints in _CATEGORY_HINTS:
        if any(re.search(rf"\b{re.escape(h)}", lowered) for h in hints):
            return category
    return DecisionCategory.ARCHITECTURE


def _parse_enum(enum_cls, raw: Optional[str], default):
    if not raw:
        return default
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        return default


def parse_decisions(content: str) -> list[Decision]:
    """Parse DECISIONS.md. Entries without a dated header are skipped."""
    decisions = []
    for section in _split_sections(content):
        body = section.split("\n---", 1)[0]
        header, _, rest = body.partition("\n")
        match = _DATED_HEADER_RE.match(header.strip())
        if not match:
            continue
        date, title = match.group(1), match.group(2).strip()
        made_by_raw = _field(rest, "Made by") or "ai"
        reasoning = _field(rest, "Reasoning") or ""
        decisions.append(Decision(
            id=content_id(date, title),
            timestamp=date,
            decision=title,
            category=_parse_category(_field(rest, "Category"), f"{title} {reasoning}"),
            reasoning=reasoning,
            impact=_parse_enum(Impact, _field(rest, "Impact"), Impact.MEDIUM),
            alternatives_considered=tuple(_bullets_after(rest, "Alternatives considered")),
            reversible=(_field(rest, "Reversible") or "yes").lower().startswith("y"),
            made_by=MadeBy.USER if made_by_raw.lower().startswith("user") else MadeBy.AI,
            user_approved="user approved" in made_by_raw.lower(),
            related_files=tuple(_bullets_after(rest, "Related files")),
        ))
    return decisions


def parse_attempts(content: str) -> list[Attempt]:
    """Parse ATTEMPTS.md (## Issue: ... / ### Attempt N (result))."""
    attempts = []
    for section in _split_sections(content):
        header, _, body = section.partition("\n")
        if not header.lower().startswith("issue:"):
            continue
        issue = header.split(":", 1)[1].strip()
        matches = list(_ATTEMPT_HEADER_RE.finditer(body))
        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(body)
            chunk = body[match.end():end]
            approach = _field(chunk, "Approach") or ""
            code = re.search(r"```[^\n]*\n(.*?)```", chunk, re.DOTALL)
            result = _parse_enum(AttemptResult, match.group(1), AttemptResult.FAILURE)
            attempts.append(Attempt(
                id="A-" + hashlib.md5(f"{issue}\x1f{i}\x1f{approach}".encode("utf-8")).hexdigest()[:8],
                timestamp=now_iso(),
                issue=issue,
                approach=approach,
                code_or_command=code.group(1).strip() if code else "",
                result=result,
                signature=AttemptTracker.signature(issue, approach),
                should_not_retry="do not retry" in match.group(2).lower(),
                error_message=_field(chunk, "Error"),
                lessons_learned=_field(chunk, "Lesson"),
            ))
    return attempts


def parse_blockers(content: str) -> list[Blocker]:
    blockers = []
    for section in _split_sections(content):
        header, _, body = section.partition("\n")
        match = _DATED_HEADER_RE.match(header.strip())
        if not match:
            continue
        date, title = match.group(1), match.group(2).strip()
        blockers.append(Blocker(
            id="B-" + hashlib.md5(f"{date}\x1f{title}".encode("utf-8")).hexdigest()[:8],
            created_at=date,
            description=title,
            category=_parse_enum(BlockerCategory, _field(body, "Category"), BlockerCategory.ERROR),
            error_message=_field(body, "Error"),
            attempts_made=_bullets_after(body, "Attempted Solutions"),
            status=_parse_enum(BlockerStatus, _field(body, "Status"), BlockerStatus.ACTIVE),
        ))
    return blockers


_CHANGE_RE = re.compile(r"^\s*-\s*`([^`]+)`\s*(?:-\s*(.*))?$", re.MULTILINE)


def parse_devlog(content: str) -> list[FileChange]:
    """File changes from DEVLOG.md, newest entry first (file order)."""
    changes = []
    for section in _split_sections(content):
        header, _, body = section.partition("\n")
        match = _DATED_HEADER_RE.match(header.strip())
        if not match:
            continue
        date = match.group(1)
        for change in _CHANGE_RE.finditer(body):
            changes.append(FileChange(date=date, file=change.group(1), change=(change.group(2) or "").strip()))
    return changes


# =============================================================================
# Loader
# =============================================================================

def _read_capped(path: Path, limit: int) -> Optional[bytes]:
    if not path.is_file():
        return None
    with open(path, "rb") as f:
        return f.read(limit)


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


class ContextLoader:
    """Bounded, time-limited loading of project history."""

    def __init__(self, config: Optional[SafetyConfig] = None):
        self.config = config or SafetyConfig()

    async def _read(self, path: Path, warnings: list[str]) -> Optional[str]:
        limit = self.config.context_max_bytes
        try:
            data = await asyncio.wait_for(
                asyncio.to_thread(_read_capped, path, limit + 1),
                timeout=self.config.context_read_timeout_seconds,
            )
        except asyncio.TimeoutError:
            warnings.append(f"Timed out reading {path.name}; skipped")
            return None
        except OSError as e:
            warnings.append(f"Could not read {path.name}: {e}")
            return None
        if data is None:
            return None
        if len(data) > limit:
            warnings.append(f"{path.name} is larger than {limit} bytes; truncated")
            data = data[:limit]
        return data.decode("utf-8", errors="replace")

    async def load(self, project_path: str | Path) -> LoadResult:
        """
        Load context from a project directory.

        Returns:
            LoadResult; success is False when neither the state file nor the
            context directory exists, or when the state file is not valid JSON
        """
        root = Path(project_path)
        state_path = root / self.config.state_file_name
        context_dir = root / self.config.context_dir_name
        warnings: list[str] = []

        try:
            state_exists, dir_exists = await asyncio.wait_for(
                asyncio.to_thread(lambda: (state_path.is_file(), context_dir.is_dir())),
                timeout=self.config.context_read_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return LoadResult(
                success=False,
                warnings=[f"Timed out checking {root}; context not loaded"],
            )
        if not state_exists and not dir_exists:
            return LoadResult(
                success=False,
                errors=[f"No {self.config.state_file_name} or {self.config.context_dir_name}/ found in {root}"],
            )

        state_json = await self._read(state_path, warnings) if state_exists else None
        if not state_exists:
            warnings.append(f"No {self.config.state_file_name}; using defaults")

        contents = {}
        if dir_exists:
            for name in (DECISIONS_FILE, ATTEMPTS_FILE, BLOCKED_FILE, DEVLOG_FILE):
                contents[name] = await self._read(context_dir / name, warnings)

        result = self.load_from_content(
            state_json=state_json,
            decisions=contents.get(DECISIONS_FILE),
            attempts=contents.get(ATTEMPTS_FILE),
            blocked=contents.get(BLOCKED_FILE),
            devlog=contents.get(DEVLOG_FILE),
            project_id=str(root.resolve()),
            default_name=root.resolve().name,
        )
        result.warnings = warnings + result.warnings
        if result.context:
            result.context.project_path = str(root)
        return result

    def load_from_content(
        self,
        state_json: Optional[str] = None,
        decisions: Optional[str] = None,
        attempts: Optional[str] = None,
        blocked: Optional[str] = None,
        devlog: Optional[str] = None,
        project_id: Optional[str] = None,
        default_name: str = "Unknown",
    ) -> LoadResult:
        """Build a context from file bodies passed in directly."""
        state: dict = {}
        if state_json:
            try:
                loaded = json.loads(state_json)
            except json.JSONDecodeError as e:
                return LoadResult(success=False, errors=[f"Malformed state JSON: {e}"])
            if not isinstance(loaded, dict):
                return LoadResult(success=False, errors=["Malformed state JSON: top level must be an object"])
            state = loaded

        name = str(state.get("projectName") or default_name)
        build = state.get("build") if isinstance(state.get("build"), dict) else {}
        stack = state.get("stack") if isinstance(state.get("stack"), dict) else {}
        context = ProjectContext(
            project_name=name,
            project_hash=project_hash(project_id or name),
            current_task=state.get("currentTask"),
            current_phase=str(build.get("currentPhase") or state.get("currentPhase") or "development"),
            stack={str(k): str(v) for k, v in stack.items()},
            built_features=_string_list(state.get("builtFeatures")),
            pending_features=_string_list(state.get("pendingFeatures")),
            decisions=parse_decisions(decisions) if decisions else [],
            attempts=parse_attempts(attempts) if attempts else [],
            active_blockers=[
                b for b in (parse_blockers(blocked) if blocked else [])
                if b.status is BlockerStatus.ACTIVE
            ],
            recent_changes=parse_devlog(devlog)[:25] if devlog else [],
        )

        warnings = []
        critical = [d for d in context.decisions if d.impact is Impact.CRITICAL]
        if critical:
            warnings.append(f"{len(critical)} critical decisions in effect; review before making changes")
        if context.active_blockers:
            warnings.append(f"{len(context.active_blockers)} active blockers; check {BLOCKED_FILE}")
        no_retry = [a for a in context.attempts if a.result is AttemptResult.FAILURE and a.should_not_retry]
        if no_retry:
            warnings.append(f"{len(no_retry)} approaches marked do not retry")

        logger.debug(
            "Loaded context for %s: %d decisions, %d attempts",
            name, len(context.decisions), len(context.attempts),
        )
        return LoadResult(success=True, context=context, warnings=warnings)


def format_context_for_prompt(context: ProjectContext) -> str:
    """Context summary for prompt injection."""
    lines = [
        "## PROJECT CONTEXT",
        "",
        f"**Project:** {context.project_name}",
        f"**Phase:** {context.current_phase}",
    ]
    if context.stack:
        lines.append("")
        lines.append("### Tech Stack")
        lines.extend(f"- {k}: {v}" for k, v in context.stack.items())
    if context.critical_decisions:
        lines.append("")
        lines.append("### CRITICAL DECISIONS (must follow)")
        lines.extend(f"- **{d.decision}**: {d.reasoning}" for d in context.critical_decisions)
    if context.failed_attempts:
        lines.append("")
        lines.append("### FAILED APPROACHES (do not retry)")
        lines.extend(f"- {a.approach}: {a.error_message or 'failed'}" for a in context.failed_attempts[:5])
    if context.active_blockers:
        lines.append("")
        lines.append("### ACTIVE BLOCKERS")
        lines.extend(f"- {b.description}" for b in context.active_blockers)
    if context.built_features:
        lines.append("")
        lines.append("### Built Features")
        lines.extend(f"- {f}" for f in context.built_features)
    return "\n".join(lines)
