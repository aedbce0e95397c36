"""
Decision Ledger
===============

Append-only record of project decisions plus the contradiction detector
that checks proposed actions against high-impact decisions.

Usage:
    ledger = DecisionLedger()
    ledger.append(
        decision="Use Drizzle ORM for database access",
        category=DecisionCategory.TECH_STACK,
        reasoning="Typed queries, no codegen step",
        impact=Impact.CRITICAL,
    )

    detector = ContradictionDetector()
    contradiction = detector.check("Install Prisma and create schema", ledger.entries)
    if contradiction:
        print(contradiction.explanation)

Markdown format (DECISIONS.md), one entry per decision:

    ## 2025-01-15 - Use Drizzle ORM for database access

    **Category:** tech-stack
    **Impact:** critical
    **Reversible:** No
    **Made by:** ai (user approved)

    **Reasoning:** Typed queries, no codegen step

    **Alternatives considered:**
    - Prisma

    ---
"""

import hashlib
from typing import Iterable, Iterator, Optional, Sequence

from safetygate.matchers import SubjectChoiceMatcher
from safetygate.safety_types import (
    Contradiction,
    Decision,
    DecisionCategory,
    Impact,
    MadeBy,
    now_iso,
    short_id,
)


def content_id(*parts: str) -> str:
    """Stable id for records parsed from files, so reloads de-duplicate."""
    digest = hashlib.md5("\x1f".join(parts).encode("utf-8")).hexdigest()
    return f"D-{digest[:8]}"


class DecisionLedger:
    """Append-only list of decisions for one session."""

    def __init__(self, decisions: Optional[Iterable[Decision]] = None):
        self._decisions: list[Decision] = []
        self._ids: set[str] = set()
        for decision in decisions or ():
            self.add(decision)

    def __len__(self) -> int:
        return len(self._decisions)

    def __iter__(self) -> Iterator[Decision]:
        return iter(tuple(self._decisions))

    @property
    def entries(self) -> tuple[Decision, ...]:
        return tuple(self._decisions)

    def add(self, decision: Decision) -> bool:
        """Append an existing decision. Returns False if its id is already present."""
        if decision.id in self._ids:
            return False
        self._decisions.append(decision)
        self._ids.add(decision.id)
        return True

    def extend_loaded(self, decisions: Iterable[Decision]) -> int:
        """Merge decisions from a context load. Returns how many were new."""
        return sum(1 for d in decisions if self.add(d))

    def append(
        self,
        decision: str,
        category: DecisionCategory,
        reasoning: str,
        impact: Impact,
        alternatives_considered: Sequence[str] = (),
        reversible: bool = True,
        made_by: MadeBy = MadeBy.AI,
        user_approved: bool = False,
        related_files: Sequence[str] = (),
    ) -> Decision:
        """Create a decision with a fresh id and timestamp and append it."""
        record = Decision(
            id=short_id("D"),
            timestamp=now_iso(),
            decision=decision,
            category=category,
            reasoning=reasoning,
            impact=impact,
            alternatives_considered=tuple(alternatives_considered),
            reversible=reversible,
            made_by=made_by,
            user_approved=user_approved,
            related_files=tuple(related_files),
        )
        self.add(record)
        return record


# =============================================================================
# Contradiction detection
# =============================================================================

class ContradictionDetector:
    """
    Flags actions that pick a different technology for a subject than a
    high or critical decision already fixed.
    """

    def __init__(self, matcher: Optional[SubjectChoiceMatcher] = None):
        self.matcher = matcher or SubjectChoiceMatcher()

    def find_all(self, action: str, decisions: Iterable[Decision]) -> list[Contradiction]:
        """Every conflict, most severe first, ledger order within a severity."""
        proposed = self.matcher.extract(action)
        if not proposed:
            return []

        found: list[tuple[int, int, Contradiction]] = []
        for order, decision in enumerate(decisions):
            if not decision.is_critical:
                continue
            # Reasoning often names the rejected options, so it is only a fallback
            category = decision.category.value
            decided = (
                self.matcher.extract(decision.decision, category=category)
                or self.matcher.extract(decision.reasoning, category=category)
            )
            for subject, choices in decided.items():
                conflicting = proposed.get(subject, set()) - choices
                if not conflicting:
                    continue
                proposed_choice = sorted(conflicting)[0]
                decided_choice = sorted(choices)[0]
                found.append((-decision.impact.rank, order, Contradiction(
                    proposed_action=action,
                    conflicting_decision=decision,
                    subject=subject,
                    decided_choice=decided_choice,
                    proposed_choice=proposed_choice,
                    explanation=(
                        f"Action uses {proposed_choice} for {subject}, but decision "
                        f"\"{decision.decision}\" ({decision.impact.value} impact) chose {decided_choice}."
                    ),
                    severity=decision.impact,
                )))
                break
        found.sort(key=lambda item: (item[0], item[1]))
        return [c for _, _, c in found]

    def check(self, action: str, decisions: Iterable[Decision]) -> Optional[Contradiction]:
        """The single most severe contradiction, or None."""
        found = self.find_all(action, decisions)
        return found[0] if found else None


# =============================================================================
# Queries and rendering
# =============================================================================

_AREA_CATEGORIES = {
    "auth": DecisionCategory.SECURITY,
    "api": DecisionCategory.API_DESIGN,
    "database": DecisionCategory.DATA_MODEL,
    "ui": DecisionCategory.UI_DESIGN,
    "pattern": DecisionCategory.PATTERNS,
    "deploy": DecisionCategory.DEPLOYMENT,
}


def relevant_decisions(decisions: Iterable[Decision], area: str) -> list[Decision]:
    """Decisions that matter for a work area: by category, by shared words, or by impact."""
    area_lower = area.lower()
    words = [w for w in area_lower.split() if len(w) > 3]
    relevant = []
    for d in decisions:
        text = f"{d.decision} {d.reasoning}".lower()
        by_category = any(
            cue in area_lower and d.category is category
            for cue, category in _AREA_CATEGORIES.items()
        )
        if by_category or d.is_critical or any(w in text for w in words):
            relevant.append(d)
    return relevant


_IMPACT_MARKERS = {
    Impact.CRITICAL: "[CRITICAL]",
    Impact.HIGH: "[HIGH]",
    Impact.MEDIUM: "[MEDIUM]",
    Impact.LOW: "[LOW]",
}


def format_for_prompt(decisions: Sequence[Decision]) -> str:
    """Group decisions by category for injection into an assistant prompt."""
    if not decisions:
        return ""
    lines = ["## ACTIVE DECISIONS (must follow)", ""]
    by_category: dict[DecisionCategory, list[Decision]] = {}
    for d in decisions:
        by_category.setdefault(d.category, []).append(d)
    for category, items in by_category.items():
        lines.append(f"### {category.value}")
        for d in items:
            lines.append(f"{_IMPACT_MARKERS[d.impact]} **{d.decision}**")
            lines.append(f"   Reasoning: {d.reasoning}")
            if not d.reversible:
                lines.append("   IRREVERSIBLE: do not change without the user")
            lines.append("")
    return "\n".join(lines)


def decision_to_markdown(decision: Decision) -> str:
    lines = [
        f"## {decision.timestamp[:10]} - {decision.decision}",
        "",
        f"**Category:** {decision.category.value}",
        f"**Impact:** {decision.impact.value}",
        f"**Reversible:** {'Yes' if decision.reversible else 'No'}",
        f"**Made by:** {decision.made_by.value}{' (user approved)' if decision.user_approved else ''}",
        "",
        f"**Reasoning:** {decision.reasoning}",
        "",
    ]
    if decision.alternatives_considered:
        lines.append("**Alternatives considered:**")
        lines.extend(f"- {alt}" for alt in decision.alternatives_considered)
        lines.append("")
    if decision.related_files:
        lines.append("**Related files:**")
        lines.extend(f"- `{path}`" for path in decision.related_files)
        lines.append("")
    lines.append("---")
    lines.append("")
    return "\n".join(lines)


DECISIONS_HEADER = """# Project Decisions

Significant decisions made during development.
Check this file before making changes that could contradict an existing decision.

"""


def decisions_to_markdown(decisions: Iterable[Decision]) -> str:
    """Full DECISIONS.md content, newest first."""
    ordered = sorted(decisions, key=lambda d: d.timestamp, reverse=True)
    return DECISIONS_HEADER + "\n".join(decision_to_markdown(d) for d in ordered)
