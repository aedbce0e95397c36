"""
Attempt Tracker
===============

Keeps an append-only log of approaches tried against an issue and stops the
assistant from repeating one that already failed.

Each attempt carries a signature built from its issue and approach:

    "build failing tsc::clear cache next"

An approach counts as already tried when its signature matches exactly or
when both the issue and the approach overlap an earlier attempt above the
similarity threshold (token Jaccard, default 0.7).

Usage:
    tracker = AttemptTracker()
    log = AttemptLog()
    check = tracker.has_been_tried("Build failing", "Clear .next cache", log.entries)
    attempt = tracker.create_attempt(
        issue="Build failing", approach="Clear .next cache",
        code_or_command="rm -rf .next", result=AttemptResult.FAILURE,
        prior=log.entries,
    )
    log.append(attempt)
"""

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Sequence

from safetygate.matchers import TokenOverlapMatcher, tokenize
from safetygate.safety_types import Attempt, AttemptResult, now_iso, short_id


class AttemptLog:
    """Append-only attempt list for one session."""

    def __init__(self, attempts: Optional[Iterable[Attempt]] = None):
        self._attempts: list[Attempt] = []
        self._ids: set[str] = set()
        for attempt in attempts or ():
            self.append(attempt)

    def __len__(self) -> int:
        return len(self._attempts)

    def __iter__(self) -> Iterator[Attempt]:
        return iter(tuple(self._attempts))

    @property
    def entries(self) -> tuple[Attempt, ...]:
        return tuple(self._attempts)

    def append(self, attempt: Attempt) -> bool:
        if attempt.id in self._ids:
            return False
        self._attempts.append(attempt)
        self._ids.add(attempt.id)
        return True

    def extend_loaded(self, attempts: Iterable[Attempt]) -> int:
        return sum(1 for a in attempts if self.append(a))


@dataclass
class TriedCheck:
    already_tried: bool
    recommendation: str
    previous_attempt: Optional[Attempt] = None
    similarity: float = 0.0
    lessons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "alreadyTried": self.already_tried,
            "recommendation": self.recommendation,
            "previousAttempt": self.previous_attempt.to_dict() if self.previous_attempt else None,
            "similarity": round(self.similarity, 3),
            "lessons": self.lessons,
        }


# Approach categories by issue domain: (suggestion, tokens that mean it was already tried)
APPROACH_CATEGORIES: dict[str, tuple[tuple[str, tuple[str, ...]], ...]] = {
    "build": (
        ("Clear build caches and rebuild from scratch", ("cache", "clean", "rm", ".next", "dist")),
        ("Check the compiler/bundler config for the failing target", ("tsconfig", "config", "webpack", "vite")),
        ("Reproduce with a minimal file to isolate the failing import", ("isolate", "minimal", "bisect")),
    ),
    "dependencies": (
        ("Reinstall dependencies from a clean lockfile", ("reinstall", "install", "node_modules", "lockfile")),
        ("Pin or downgrade the conflicting package version", ("pin", "downgrade", "version")),
        ("Check peer dependency requirements", ("peer", "peerdependencies")),
    ),
    "tests": (
        ("Run the failing test alone with verbose output", ("verbose", "only", "single", "--grep")),
        ("Check test setup and teardown for shared state", ("setup", "teardown", "beforeeach", "fixture")),
        ("Mock the external call the test depends on", ("mock", "stub", "spy")),
    ),
    "database": (
        ("Inspect the generated SQL or migration output", ("sql", "migration", "generate")),
        ("Verify the connection string and database permissions", ("connection", "url", "env")),
        ("Reset the local database and re-run migrations", ("reset", "drop", "push")),
    ),
    "auth": (
        ("Check callback URLs and provider configuration", ("callback", "redirect", "provider")),
        ("Inspect the session/token payload and expiry", ("token", "jwt", "session", "cookie")),
        ("Verify auth environment variables are loaded", ("env", "secret", "key")),
    ),
    "network": (
        ("Check CORS and allowed origins", ("cors", "origin")),
        ("Retry with a longer timeout or smaller payloads", ("timeout", "retry")),
        ("Call the endpoint directly to separate client from server errors", ("curl", "fetch", "postman")),
    ),
    "permissions": (
        ("Check file ownership and permissions", ("chmod", "chown", "permission")),
        ("Run from a directory the process can write to", ("directory", "path", "tmp")),
    ),
    "performance": (
        ("Profile to find the slow path before changing code", ("profile", "profiler", "trace")),
        ("Add caching or memoization for repeated work", ("cache", "memo", "memoize")),
        ("Paginate or batch large operations", ("paginate", "batch", "limit")),
    ),
    "general": (
        ("Read the full error output and stack trace", ("log", "stack", "trace")),
        ("Search the library's docs and issue tracker for the error", ("docs", "issue", "github")),
        ("Reduce the change to the smallest failing step", ("minimal", "revert", "smaller")),
    ),
}

DOMAIN_CUES: dict[str, tuple[str, ...]] = {
    "build": ("build", "compile", "tsc", "bundle", "webpack", "vite", "typescript"),
    "dependencies": ("install", "dependency", "package", "npm", "pnpm", "yarn", "module"),
    "tests": ("test", "tests", "vitest", "jest", "playwright", "spec"),
    "database": ("database", "db", "sql", "migration", "drizzle", "prisma", "postgres", "query"),
    "auth": ("auth", "login", "session", "oauth", "token", "jwt", "signin"),
    "network": ("fetch", "request", "cors", "api", "timeout", "network", "endpoint"),
    "permissions": ("permission", "eacces", "eperm", "denied", "access"),
    "performance": ("slow", "performance", "memory", "leak", "latency"),
}


class AttemptTracker:
    """Signature, dedup and suggestion logic over an attempt log."""

    def __init__(self, matcher: Optional[TokenOverlapMatcher] = None, failure_limit: int = 2):
        self.matcher = matcher or TokenOverlapMatcher()
        self.failure_limit = failure_limit

    @staticmethod
    def signature(issue: str, approach: str) -> str:
        return " ".join(sorted(tokenize(issue))) + "::" + " ".join(sorted(tokenize(approach)))

    def create_attempt(
        self,
        issue: str,
        approach: str,
        code_or_command: str,
        result: AttemptResult,
        prior: Sequence[Attempt] = (),
        error_message: Optional[str] = None,
        lessons_learned: Optional[str] = None,
    ) -> Attempt:
        """
        Build an Attempt with its signature and retry verdict.

        Args:
            prior: Attempts already in the log (used to count failures)

        Returns:
            The new Attempt (not yet appended to any log)
        """
        signature = self.signature(issue, approach)
        failures = sum(
            1 for a in prior
            if a.signature == signature and a.result is AttemptResult.FAILURE
        )
        if result is AttemptResult.FAILURE:
            failures += 1
        return Attempt(
            id=short_id("A"),
            timestamp=now_iso(),
            issue=issue,
            approach=approach,
            code_or_command=code_or_command,
            result=result,
            signature=signature,
            should_not_retry=failures >= self.failure_limit,
            error_message=error_message,
            lessons_learned=lessons_learned,
        )

    def _similarity(self, issue: str, approach: str, attempt: Attempt) -> float:
        if self.signature(issue, approach) == attempt.signature:
            return 1.0
        return min(
            self.matcher.similarity(issue, attempt.issue),
            self.matcher.similarity(approach, attempt.approach),
        )

    def has_been_tried(self, issue: str, approach: str, attempts: Sequence[Attempt]) -> TriedCheck:
        """Find the closest earlier attempt of this approach to this issue."""
        best: Optional[Attempt] = None
        best_score = 0.0
        for attempt in attempts:
            score = self._similarity(issue, approach, attempt)
            # ties go to the latest attempt
            if score >= self.matcher.threshold and score >= best_score:
                best, best_score = attempt, score

        if best is None:
            lessons = [
                a.lessons_learned for a in attempts
                if a.lessons_learned and self.matcher.similarity(issue, a.issue) >= self.matcher.threshold
            ]
            recommendation = "New approach. Proceed and log the result."
            if lessons:
                recommendation = "New approach. Apply lessons from earlier attempts on this issue."
            return TriedCheck(already_tried=False, recommendation=recommendation, lessons=lessons)

        if best.result is AttemptResult.FAILURE:
            recommendation = (
                "This approach already failed"
                + (f" with: {best.error_message}" if best.error_message else "")
                + ". Do not repeat it; try a different approach."
            )
        elif best.result is AttemptResult.SUCCESS:
            recommendation = "This approach worked before. Reuse it."
        else:
            recommendation = "This approach partially worked before. Build on it rather than starting over."
        if best.lessons_learned:
            recommendation += f" Lesson: {best.lessons_learned}"

        return TriedCheck(
            already_tried=True,
            recommendation=recommendation,
            previous_attempt=best,
            similarity=best_score,
            lessons=[best.lessons_learned] if best.lessons_learned else [],
        )

    def failed_attempts(self, issue: str, attempts: Iterable[Attempt]) -> list[Attempt]:
        return [
            a for a in attempts
            if a.result is AttemptResult.FAILURE and self.matcher.matches(issue, a.issue)
        ]

    def approach_failures(self, approach: str, attempts: Iterable[Attempt]) -> list[Attempt]:
        """Failed attempts whose approach matches, whatever the issue."""
        return [
            a for a in attempts
            if a.result is AttemptResult.FAILURE and self.matcher.matches(approach, a.approach)
        ]

    def detect_domains(self, issue: str) -> list[str]:
        tokens = tokenize(issue)
        domains = [d for d, cues in DOMAIN_CUES.items() if tokens & set(cues)]
        return domains + ["general"]

    def suggest_alternatives(self, issue: str, attempts: Sequence[Attempt]) -> list[str]:
        """
        Approach categories for the issue's domain that no failed attempt used,
        followed by clues from the recorded error messages and commands.
        """
        failed = self.failed_attempts(issue, attempts)
        tried_tokens: set[str] = set()
        for a in failed:
            tried_tokens |= tokenize(f"{a.approach} {a.code_or_command}")

        suggestions: list[str] = []
        for domain in self.detect_domains(issue):
            for suggestion, markers in APPROACH_CATEGORIES[domain]:
                if tried_tokens & set(markers):
                    continue
                suggestions.append(suggestion)

        commands = " ".join(a.code_or_command.lower() for a in failed)
        if ("bash" in commands or "sh " in commands) and "powershell" not in commands:
            suggestions.append("Try PowerShell instead of bash for Windows compatibility")
        if failed and "node " not in commands and "npx " not in commands:
            suggestions.append("Try a Node.js script instead of shell commands")

        for a in failed:
            error = (a.error_message or "").lower()
            if "not found" in error:
                suggestions.append("Check that the command or module is installed")
            if "permission" in error:
                suggestions.append("Check file permissions or run with the required privileges")
            if "path" in error or "space" in error:
                suggestions.append("Quote paths or use a different path format")
            if "timeout" in error:
                suggestions.append("Increase the timeout or split the work into smaller steps")

        return list(dict.fromkeys(suggestions))


def attempts_to_markdown(attempts: Iterable[Attempt]) -> str:
    """ATTEMPTS.md content grouped by issue."""
    by_issue: dict[str, list[Attempt]] = {}
    for a in attempts:
        by_issue.setdefault(a.issue, []).append(a)

    lines = ["# Attempt Log", ""]
    for issue, items in by_issue.items():
        lines.append(f"## Issue: {issue}")
        lines.append("")
        for n, a in enumerate(items, 1):
            marker = " DO NOT RETRY" if a.should_not_retry else ""
            lines.append(f"### Attempt {n} ({a.result.value}){marker}")
            lines.append(f"**Approach:** {a.approach}")
            lines.append("```")
            lines.append(a.code_or_command)
            lines.append("```")
            if a.error_message:
                lines.append(f"**Error:** {a.error_message}")
            if a.lessons_learned:
                lines.append(f"**Lesson:** {a.lessons_learned}")
            lines.append("")
    return "\n".join(lines)


def format_for_prompt(attempts: Sequence[Attempt]) -> str:
    """List the failed approaches the assistant must not repeat."""
    failed = [a for a in attempts if a.result is AttemptResult.FAILURE]
    if not failed:
        return ""
    lines = ["## FAILED APPROACHES (do not repeat)", ""]
    for a in failed:
        suffix = " [DO NOT RETRY]" if a.should_not_retry else ""
        lines.append(f"- {a.issue}: {a.approach}{suffix}")
        if a.error_message:
            lines.append(f"  Error: {a.error_message}")
    return "\n".join(lines)
