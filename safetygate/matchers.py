"""
Matchers
========

Pure text-matching strategies. Each takes its thresholds and dictionaries
as constructor arguments so the heuristics can be tuned or swapped without
touching the components that use them.

- TokenOverlapMatcher: Jaccard overlap of token sets (attempt tracking)
- SubjectChoiceMatcher: subject -> chosen technology extraction (contradictions)
- KeywordPresenceMatcher: keyword hits -> 0-100 confidence (intent scoring)
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9._+#-]*")


def tokenize(text: str, min_length: int = 1) -> frozenset[str]:
    """Case-folded token set with surrounding punctuation removed."""
    tokens = _TOKEN_RE.findall((text or "").casefold())
    return frozenset(t.strip(".-") for t in tokens if len(t.strip(".-")) >= min_length)


def tokenize_ordered(text: str) -> list[str]:
    return [t.strip(".-") for t in _TOKEN_RE.findall((text or "").casefold()) if t.strip(".-")]


# =============================================================================
# Token overlap
# =============================================================================

@dataclass(frozen=True)
class TokenOverlapMatcher:
    """Jaccard similarity over tokens longer than `min_token_length - 1` chars."""
    threshold: float = 0.7
    min_token_length: int = 3

    def similarity(self, a: str, b: str) -> float:
        tokens_a = tokenize(a, self.min_token_length)
        tokens_b = tokenize(b, self.min_token_length)
        if not tokens_a and not tokens_b:
            # Both empty after filtering: compare raw text
            return 1.0 if (a or "").strip().casefold() == (b or "").strip().casefold() else 0.0
        union = tokens_a | tokens_b
        return len(tokens_a & tokens_b) / len(union)

    def matches(self, a: str, b: str) -> bool:
        return self.similarity(a, b) >= self.threshold


# =============================================================================
# Subject / choice extraction
# =============================================================================

SUBJECT_CHOICES: dict[str, dict[str, tuple[str, ...]]] = {
    # subject -> canonical choice -> terms
    "orm": {
        "drizzle": ("drizzle",),
        "prisma": ("prisma",),
        "typeorm": ("typeorm",),
        "sequelize": ("sequelize",),
        "kysely": ("kysely",),
        "sqlalchemy": ("sqlalchemy",),
        "mongoose": ("mongoose",),
    },
    "database": {
        "postgres": ("postgres", "postgresql", "neon"),
        "mysql": ("mysql", "planetscale"),
        "sqlite": ("sqlite", "turso"),
        "mongodb": ("mongodb", "mongo"),
        "supabase": ("supabase",),
        "firebase": ("firebase", "firestore"),
        "dynamodb": ("dynamodb",),
    },
    "auth-provider": {
        "clerk": ("clerk",),
        "nextauth": ("nextauth", "next-auth", "auth.js", "authjs"),
        "auth0": ("auth0",),
        "supabase": ("supabase",),
        "firebase": ("firebase",),
        "lucia": ("lucia",),
        "cognito": ("cognito",),
    },
    "ui-library": {
        "shadcn": ("shadcn",),
        "mui": ("mui", "material-ui"),
        "chakra": ("chakra",),
        "mantine": ("mantine",),
        "antd": ("antd", "ant-design"),
    },
    "css": {
        "tailwind": ("tailwind", "tailwindcss"),
        "styled-components": ("styled-components",),
        "emotion": ("emotion",),
        "sass": ("sass", "scss"),
        "css-modules": ("css-modules",),
    },
    "framework": {
        "nextjs": ("next.js", "nextjs"),
        "remix": ("remix",),
        "sveltekit": ("sveltekit",),
        "nuxt": ("nuxt",),
        "astro": ("astro",),
        "vite": ("vite",),
    },
    "payments": {
        "stripe": ("stripe",),
        "paddle": ("paddle",),
        "lemonsqueezy": ("lemonsqueezy", "lemon-squeezy"),
        "paypal": ("paypal",),
    },
    "email": {
        "resend": ("resend",),
        "sendgrid": ("sendgrid",),
        "postmark": ("postmark",),
        "nylas": ("nylas",),
        "ses": ("ses",),
    },
    "hosting": {
        "vercel": ("vercel",),
        "netlify": ("netlify",),
        "fly": ("fly.io",),
        "railway": ("railway",),
        "render": ("render.com",),
    },
    "state-management": {
        "redux": ("redux",),
        "zustand": ("zustand",),
        "jotai": ("jotai",),
        "mobx": ("mobx",),
        "recoil": ("recoil",),
    },
    "testing": {
        "vitest": ("vitest",),
        "jest": ("jest",),
        "playwright": ("playwright",),
        "cypress": ("cypress",),
    },
    "api-style": {
        "trpc": ("trpc",),
        "graphql": ("graphql",),
        "rest": ("rest", "restful"),
    },
}

# Words that point a shared term at one subject ("supabase auth" vs "supabase database")
SUBJECT_CUES: dict[str, tuple[str, ...]] = {
    "orm": ("orm",),
    "database": ("database", "db", "postgres", "sql", "storage", "data"),
    "auth-provider": ("auth", "authentication", "login", "signin", "sign-in", "sso", "oauth"),
    "ui-library": ("components", "component", "library"),
    "css": ("css", "styling", "styles"),
    "framework": ("framework",),
    "payments": ("payment", "payments", "billing", "checkout"),
    "email": ("email", "mail"),
    "hosting": ("hosting", "deploy", "deployment"),
    "state-management": ("state",),
    "testing": ("test", "tests", "testing"),
    "api-style": ("api", "apis", "endpoint", "endpoints"),
}

# Choice terms that are also everyday words; these only count when the next
# token is one of their subject's cues ("rest api", not "the rest of")
CUE_REQUIRED_TERMS = frozenset({"rest"})

# Subject preference by decision category when a shared term has no cue
CATEGORY_SUBJECTS: dict[str, tuple[str, ...]] = {
    "security": ("auth-provider",),
    "data-model": ("database", "orm"),
    "deployment": ("hosting",),
    "ui-design": ("ui-library", "css"),
    "api-design": ("api-style",),
    "integration": ("payments", "email"),
}

NEGATION_CUES = frozenset({
    "not", "no", "without", "instead", "from", "replace", "replacing", "remove",
    "removing", "drop", "dropping", "over", "than", "avoid", "never", "off",
})

NEGATION_WINDOW = 2


@dataclass
class SubjectChoiceMatcher:
    """
    Extracts {subject: {choice}} from text.

    A choice preceded (within NEGATION_WINDOW tokens) by a negation cue is
    recorded as rejected rather than chosen, so "migrate from prisma to
    drizzle" yields orm={drizzle}.
    """
    subjects: dict[str, dict[str, tuple[str, ...]]] = field(default_factory=lambda: SUBJECT_CHOICES)
    cues: dict[str, tuple[str, ...]] = field(default_factory=lambda: SUBJECT_CUES)
    category_subjects: dict[str, tuple[str, ...]] = field(default_factory=lambda: CATEGORY_SUBJECTS)
    negations: frozenset[str] = NEGATION_CUES
    cue_required: frozenset[str] = CUE_REQUIRED_TERMS
    window: int = NEGATION_WINDOW

    def __post_init__(self):
        # term -> [(subject, choice)]
        self._terms: dict[str, list[tuple[str, str]]] = {}
        for subject, choices in self.subjects.items():
            for choice, terms in choices.items():
                for term in terms:
                    self._terms.setdefault(term, []).append((subject, choice))

    def extract(self, text: str, category: Optional[str] = None) -> dict[str, set[str]]:
        """Positive (subject -> choices) found in text."""
        tokens = tokenize_ordered(text)
        token_set = set(tokens)
        found: dict[str, set[str]] = {}
        for index, token in enumerate(tokens):
            candidates = self._terms.get(token)
            if not candidates:
                continue
            if self._negated(tokens, index):
                continue
            if token in self.cue_required:
                candidates = self._followed_by_cue(candidates, tokens, index)
            for subject, choice in self._resolve(candidates, token_set, category):
                found.setdefault(subject, set()).add(choice)
        return found

    def _followed_by_cue(
        self,
        candidates: list[tuple[str, str]],
        tokens: Sequence[str],
        index: int,
    ) -> list[tuple[str, str]]:
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        return [c for c in candidates if following in self.cues.get(c[0], ())]

    def _negated(self, tokens: Sequence[str], index: int) -> bool:
        start = max(0, index - self.window)
        return any(t in self.negations for t in tokens[start:index])

    def _resolve(
        self,
        candidates: list[tuple[str, str]],
        token_set: set[str],
        category: Optional[str],
    ) -> list[tuple[str, str]]:
        if len(candidates) == 1:
            return candidates
        cued = [c for c in candidates if token_set & set(self.cues.get(c[0], ()))]
        if cued:
            return cued
        preferred = self.category_subjects.get(category or "", ())
        by_category = [c for c in candidates if c[0] in preferred]
        if by_category:
            return by_category
        return candidates


# =============================================================================
# Keyword presence
# =============================================================================

DEFAULT_PRESENCE_SCALE = ((0, 15), (1, 65), (2, 80), (3, 90))


@dataclass(frozen=True)
class KeywordPresenceMatcher:
    """Maps the number of keyword hits in text to a 0-100 confidence."""
    scale: tuple[tuple[int, int], ...] = DEFAULT_PRESENCE_SCALE

    def hits(self, text: str, keywords: Iterable[str]) -> list[str]:
        lowered = (text or "").lower()
        return [k for k in keywords if k in lowered]

    def score(self, text: str, keywords: Iterable[str]) -> tuple[int, list[str]]:
        found = self.hits(text, keywords)
        confidence = self.scale[0][1]
        for minimum, value in self.scale:
            if len(found) >= minimum:
                confidence = value
        return confidence, found
