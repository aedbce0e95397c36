"""
Intent Clarifier
================

Scores how well a free-text request pins down what should be built and
drives a bounded question/answer loop until it does.

Each field is scored 0-100 from keyword presence. The overall score is a
weighted average (required fields weigh more), and the request is ready only
when the overall score clears the threshold AND no required field is below
its own minimum, so one well-covered field cannot mask a missing one.

Usage:
    clarifier = IntentClarifier()
    state = clarifier.start("Build a booking app for salons")
    state.ready_to_proceed            # False
    state.pending[0].id               # "targetUsers"
    clarifier.answer(state, "targetUsers", "Businesses (B2B)")
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from safetygate.matchers import KeywordPresenceMatcher
from safetygate.safety_types import (
    PRIORITY_ORDER,
    ClarificationQuestion,
    ConfidenceScore,
    Priority,
    to_wire,
)

ANSWERED_CONFIDENCE = 95
UNSURE_CONFIDENCE = 40
UNSURE_ANSWERS = ("not sure", "unsure", "unknown", "don't know", "dont know", "tbd")


@dataclass(frozen=True)
class FieldRule:
    name: str
    question: str
    keywords: tuple[str, ...]
    required: bool = False
    minimum: int = 40
    weight: int = 1
    options: tuple[str, ...] = ()
    priority: Priority = Priority.MEDIUM


DEFAULT_FIELDS: tuple[FieldRule, ...] = (
    FieldRule(
        name="businessType",
        question="What type of business or app is this?",
        keywords=(
            "saas", "subscription service", "marketplace", "e-commerce", "ecommerce",
            "online store", "shop", "internal tool", "dashboard", "blog", "booking",
            "crm", "portal", "platform", "directory", "agency",
        ),
        required=True, minimum=60, weight=2,
        options=(
            "E-commerce / Online store",
            "SaaS / Subscription service",
            "Marketplace / Platform",
            "Internal tool / Dashboard",
            "Content / Blog / Media",
            "Booking / Scheduling",
            "Social / Community",
            "Other",
        ),
        priority=Priority.HIGH,
    ),
    FieldRule(
        name="targetUsers",
        question="Who will use this app?",
        keywords=(
            "customers", "clients", "b2b", "b2c", "consumers", "businesses", "team",
            "employees", "admins", "developers", "students", "owners", "members", "patients",
        ),
        required=True, minimum=60, weight=2,
        options=(
            "Consumers (B2C)",
            "Businesses (B2B)",
            "Internal team only",
            "Developers / API users",
            "Multiple user types",
        ),
        priority=Priority.HIGH,
    ),
    FieldRule(
        name="coreFeature",
        question="What is the #1 thing users need to do in this app?",
        keywords=(
            "track", "manage", "book", "schedule", "share", "sell", "buy", "upload",
            "search", "analyze", "invoice", "message", "order", "publish", "can ",
        ),
        required=True, minimum=60, weight=2,
        priority=Priority.HIGH,
    ),
    FieldRule(
        name="dataModel",
        question="What are the main things the app stores (e.g. users, orders, projects)?",
        keywords=("table", "schema", "model", "records", "entities", "database", "fields", "relationship"),
        priority=Priority.MEDIUM,
    ),
    FieldRule(
        name="techConstraints",
        question="Any required technologies or hosting constraints?",
        keywords=(
            "next.js", "nextjs", "react", "postgres", "supabase", "drizzle", "prisma",
            "tailwind", "typescript", "vercel", "python", "stack",
        ),
        options=("Use the default stack", "I have specific requirements"),
        priority=Priority.LOW,
    ),
    FieldRule(
        name="hasAuth",
        question="Do users need accounts to use this?",
        keywords=("login", "log in", "sign up", "signup", "account", "auth", "password", "oauth", "sso", "roles"),
        options=(
            "Yes - required for all features",
            "Yes - for some features",
            "No - public access only",
        ),
        priority=Priority.MEDIUM,
    ),
    FieldRule(
        name="hasPayments",
        question="Will users pay for anything?",
        keywords=("pay", "stripe", "subscription", "billing", "checkout", "pricing", "free"),
        options=(
            "Yes - subscriptions",
            "Yes - one-time purchases",
            "Yes - marketplace (take a cut)",
            "No - free app",
            "Not sure yet",
        ),
        priority=Priority.HIGH,
    ),
)


@dataclass
class IntentState:
    """Clarification progress for one session."""
    user_request: str
    scores: dict[str, ConfidenceScore]
    pending: list[ClarificationQuestion]
    answers: dict[str, str] = field(default_factory=dict)
    rounds: int = 0
    exhausted: bool = False
    overall_confidence: int = 0
    ready_to_proceed: bool = False

    def to_dict(self) -> dict:
        return {
            "overallConfidence": self.overall_confidence,
            "scores": to_wire(list(self.scores.values())),
            "clarificationQuestions": to_wire(self.pending),
            "readyToProceed": self.ready_to_proceed,
            "rounds": self.rounds,
            "exhausted": self.exhausted,
        }


class IntentClarifier:
    """Confidence scoring and the clarification loop."""

    def __init__(
        self,
        fields: Sequence[FieldRule] = DEFAULT_FIELDS,
        ready_threshold: int = 70,
        max_rounds: int = 5,
        matcher: Optional[KeywordPresenceMatcher] = None,
    ):
        self.fields = tuple(fields)
        self.ready_threshold = ready_threshold
        self.max_rounds = max_rounds
        self.matcher = matcher or KeywordPresenceMatcher()
        self._rules = {rule.name: rule for rule in self.fields}

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def score_field(self, rule: FieldRule, request: str) -> ConfidenceScore:
        confidence, hits = self.matcher.score(request, rule.keywords)
        if hits:
            reasoning = f"Request mentions: {', '.join(h.strip() for h in hits)}"
        else:
            reasoning = "Nothing in the request indicates this"
        return ConfidenceScore(
            field=rule.name,
            value=", ".join(h.strip() for h in hits) or None,
            confidence=confidence,
            reasoning=reasoning,
            needs_clarification=confidence < rule.minimum,
        )

    def overall(self, scores: dict[str, ConfidenceScore]) -> int:
        total_weight = sum(rule.weight for rule in self.fields)
        weighted = sum(scores[rule.name].confidence * rule.weight for rule in self.fields)
        return round(weighted / total_weight) if total_weight else 0

    def is_ready(self, scores: dict[str, ConfidenceScore]) -> bool:
        if self.overall(scores) < self.ready_threshold:
            return False
        return all(
            scores[rule.name].confidence >= rule.minimum
            for rule in self.fields if rule.required
        )

    def question_for(self, rule: FieldRule) -> ClarificationQuestion:
        return ClarificationQuestion(
            id=rule.name,
            field=rule.name,
            question=rule.question,
            options=rule.options,
            required=rule.required,
            priority=rule.priority,
        )

    def _questions(self, scores: dict[str, ConfidenceScore]) -> list[ClarificationQuestion]:
        ordered = sorted(
            enumerate(self.fields),
            key=lambda item: (PRIORITY_ORDER[item[1].priority], item[0]),
        )
        return [self.question_for(rule) for _, rule in ordered if scores[rule.name].needs_clarification]

    def _refresh(self, state: IntentState) -> IntentState:
        state.overall_confidence = self.overall(state.scores)
        state.ready_to_proceed = self.is_ready(state.scores)
        return state

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def start(self, user_request: str) -> IntentState:
        """Analyze a request and open the question list."""
        scores = {rule.name: self.score_field(rule, user_request) for rule in self.fields}
        state = IntentState(
            user_request=user_request,
            scores=scores,
            pending=self._questions(scores),
        )
        return self._refresh(state)

    def has_question(self, state: IntentState, question_id: str) -> bool:
        return any(q.id == question_id for q in state.pending)

    def answer(self, state: IntentState, question_id: str, answer: str) -> IntentState:
        """
        Apply an answer to a pending question.

        Args:
            state: The session's clarification state
            question_id: A pending question id (check with has_question first)
            answer: The user's answer (free text or one of the options)

        Returns:
            The same state, updated
        """
        rule = self._rules[question_id]
        unsure = any(marker in answer.lower() for marker in UNSURE_ANSWERS)
        confidence = UNSURE_CONFIDENCE if unsure else ANSWERED_CONFIDENCE
        state.scores[question_id] = ConfidenceScore(
            field=question_id,
            value=answer,
            confidence=confidence,
            reasoning="Answered by user" + (" (unsure)" if unsure else ""),
            needs_clarification=confidence < rule.minimum,
        )
        state.answers[question_id] = answer
        state.pending = [q for q in state.pending if q.id != question_id]
        state.rounds += 1
        if state.rounds >= self.max_rounds and state.pending:
            state.pending = []
            state.exhausted = True
        return self._refresh(state)

    def confirmation_summary(self, state: IntentState) -> str:
        """Plain summary of what is understood, for the user to confirm."""
        lines = ["## What I understand", ""]
        for rule in self.fields:
            score = state.scores[rule.name]
            value = score.value or "(unknown)"
            lines.append(f"- **{rule.name}**: {value} ({score.confidence}%)")
        lines.append("")
        lines.append(f"Overall confidence: {state.overall_confidence}%")
        if state.ready_to_proceed:
            lines.append("Ready to proceed.")
        elif state.exhausted:
            lines.append("Question limit reached. Confirm the gaps above with the user before building.")
        return "\n".join(lines)


def analyze_intent(user_request: str, clarifier: Optional[IntentClarifier] = None) -> dict:
    """One-shot analysis: {overallConfidence, scores, clarificationQuestions, readyToProceed}."""
    state = (clarifier or IntentClarifier()).start(user_request)
    return state.to_dict()
