"""
Pattern Index
=============

One keyword table drives both guidance-module discovery and scope-lock
directory inference:

    keyword -> KeywordEntry(modules=(...), directories=(...))

Guidance content itself is a keyed lookup behind a ContentProvider; this
module never decides what the modules say.

Usage:
    keywords = extract_keywords("Add OAuth login with Stripe checkout")
    modules = modules_for_keywords(keywords)        # 02-auth.md, 05-payments.md
    dirs = directories_for_keywords(keywords)        # src/app/(auth)/, ...
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

CORE_MODULE = "00-core.md"
DEFAULT_MODULES = ("04-frontend.md", "03-api.md")

# Keywords this short only match as whole words ("ai" must not fire on "email")
SHORT_KEYWORD_LENGTH = 3


@dataclass(frozen=True)
class KeywordEntry:
    modules: tuple[str, ...]
    directories: tuple[str, ...] = ()


_AUTH = KeywordEntry(("02-auth.md",), ("src/app/(auth)/", "src/lib/auth/"))
_DATABASE = KeywordEntry(("01-database.md",), ("src/db/",))
_API = KeywordEntry(("03-api.md",), ("src/app/api/",))
_FRONTEND = KeywordEntry(("04-frontend.md",), ("src/components/",))
_PAYMENTS = KeywordEntry(("05-payments.md",), ("src/app/api/webhooks/", "src/lib/payments/"))
_VOICE = KeywordEntry(("06a-voice.md",), ("src/lib/voice/",))
_EMAIL = KeywordEntry(("06b-email.md",), ("src/lib/email/", "src/emails/"))
_TESTING = KeywordEntry(("08-testing.md",), ("tests/", "__tests__/"))
_DESIGN = KeywordEntry(("09-design.md",), ("src/components/", "src/app/"))
_AI = KeywordEntry(("14-ai.md",), ("src/lib/ai/",))

KEYWORD_INDEX: dict[str, KeywordEntry] = {
    # Auth
    "auth": _AUTH,
    "login": _AUTH,
    "signup": _AUTH,
    "password": _AUTH,
    "session": _AUTH,
    "oauth": _AUTH,
    "jwt": _AUTH,
    # Database
    "database": _DATABASE,
    "drizzle": _DATABASE,
    "postgres": _DATABASE,
    "sql": _DATABASE,
    "schema": _DATABASE,
    "migration": _DATABASE,
    "query": _DATABASE,
    # API
    "api": _API,
    "route": _API,
    "endpoint": _API,
    "rest": _API,
    "validation": _API,
    # Frontend
    "react": _FRONTEND,
    "component": _FRONTEND,
    "form": _FRONTEND,
    "state": _FRONTEND,
    "hook": _FRONTEND,
    "page": KeywordEntry(("04-frontend.md",), ("src/app/",)),
    # Payments
    "payment": _PAYMENTS,
    "stripe": _PAYMENTS,
    "subscription": _PAYMENTS,
    "billing": _PAYMENTS,
    "checkout": _PAYMENTS,
    # Voice / email
    "voice": KeywordEntry(("06a-voice.md", "25c-voice-vapi.md"), _VOICE.directories),
    "vapi": KeywordEntry(("06a-voice.md", "25c-voice-vapi.md"), _VOICE.directories),
    "call": _VOICE,
    "phone": _VOICE,
    "email": KeywordEntry(("06b-email.md", "28-email-design.md"), _EMAIL.directories),
    "resend": _EMAIL,
    "nylas": _EMAIL,
    "smtp": _EMAIL,
    # Testing
    "test": _TESTING,
    "playwright": _TESTING,
    "vitest": _TESTING,
    # Design
    "ui": _DESIGN,
    "design": _DESIGN,
    "dashboard": _DESIGN,
    "layout": KeywordEntry(("09a-layouts.md",), ("src/app/",)),
    "accessibility": KeywordEntry(("09b-accessibility.md",), ("src/components/",)),
    "seo": KeywordEntry(("09c-seo.md",), ("src/app/",)),
    # AI
    "ai": _AI,
    "openai": _AI,
    "anthropic": _AI,
    "llm": _AI,
    "embedding": _AI,
    # Plain code locations
    "lib": KeywordEntry((), ("src/lib/",)),
    "util": KeywordEntry((), ("src/lib/",)),
}


# Fallback categories used when no keyword matches
CATEGORY_HEURISTICS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "api-integration": (
        ("integrat", "webhook", "third-party", "sync", "connect", "import"),
        ("03-api.md", "06-integrations.md"),
    ),
    "background-jobs": (
        ("cron", "queue", "job", "schedul", "background", "worker", "batch"),
        ("06d-background-jobs.md",),
    ),
    "documents": (
        ("pdf", "document", "upload", "file", "csv", "export", "report"),
        ("06e-documents.md",),
    ),
    "realtime": (
        ("realtime", "real-time", "websocket", "live", "notification", "chat", "presence"),
        ("11-realtime.md",),
    ),
    "ai": (
        ("gpt", "chatbot", "assistant", "prompt", "agent", "summariz", "generat"),
        ("14-ai.md",),
    ),
}


# Common words that would otherwise fire inside unrelated ones
# ("rest" in "interest", "call" in "callback", "test" in "latest")
WHOLE_WORD_KEYWORDS = frozenset({"rest", "call", "form", "page", "hook", "state", "test", "util"})


def _keyword_pattern(keyword: str) -> re.Pattern:
    escaped = re.escape(keyword)
    if len(keyword) <= SHORT_KEYWORD_LENGTH:
        return re.compile(rf"(?<![a-z0-9]){escaped}s?(?![a-z0-9])")
    if keyword in WHOLE_WORD_KEYWORDS:
        return re.compile(rf"(?<![a-z0-9]){escaped}(?:s|es|ing|ed)?(?![a-z0-9])")
    return re.compile(escaped)


_PATTERNS = {keyword: _keyword_pattern(keyword) for keyword in KEYWORD_INDEX}


def extract_keywords(text: str) -> list[str]:
    """
    Find index keywords in free text.

    Args:
        text: Task description, file paths, or any other text

    Returns:
        Matched keywords ordered by first appearance, without duplicates
    """
    lowered = (text or "").lower()
    hits = []
    for keyword, pattern in _PATTERNS.items():
        match = pattern.search(lowered)
        if match:
            hits.append((match.start(), keyword))
    hits.sort()
    return [keyword for _, keyword in hits]


def normalize_keywords(keywords: Iterable[str]) -> list[str]:
    """Lower-case caller supplied keywords and keep only those the index knows."""
    seen = []
    for keyword in keywords:
        k = keyword.strip().lower()
        if k in KEYWORD_INDEX and k not in seen:
            seen.append(k)
    return seen


def modules_for_keywords(keywords: Iterable[str]) -> list[str]:
    modules: list[str] = []
    for keyword in keywords:
        entry = KEYWORD_INDEX.get(keyword)
        if not entry:
            continue
        for module in entry.modules:
            if module not in modules:
                modules.append(module)
    return modules


def directories_for_keywords(keywords: Iterable[str]) -> list[str]:
    directories: list[str] = []
    for keyword in keywords:
        entry = KEYWORD_INDEX.get(keyword)
        if not entry:
            continue
        for directory in entry.directories:
            if directory not in directories:
                directories.append(directory)
    return directories


def suggest_categories(text: str) -> list[dict]:
    """
    Category fallback for tasks no keyword matched.

    Returns:
        [{"category", "modules", "matched"}] for each category with a hit
    """
    lowered = (text or "").lower()
    suggestions = []
    for category, (cues, modules) in CATEGORY_HEURISTICS.items():
        matched = [cue for cue in cues if cue in lowered]
        if matched:
            suggestions.append({
                "category": category,
                "modules": list(modules),
                "matched": matched,
            })
    return suggestions


# =============================================================================
# Content Providers
# =============================================================================

class ContentProvider:
    """Keyed lookup of guidance module text."""

    def get(self, name: str) -> Optional[str]:
        raise NotImplementedError


class StaticContentProvider(ContentProvider):
    """In-memory modules, mostly for tests and embedding."""

    def __init__(self, modules: Optional[dict[str, str]] = None):
        self._modules = dict(modules or {})

    def get(self, name: str) -> Optional[str]:
        return self._modules.get(name)


class DirectoryContentProvider(ContentProvider):
    """Reads `<directory>/<name>` on demand, capped at max_bytes."""

    def __init__(self, directory: Path, max_bytes: int = 512_000):
        self.directory = Path(directory)
        self.max_bytes = max_bytes
        self._cache: dict[str, Optional[str]] = {}

    def get(self, name: str) -> Optional[str]:
        if name in self._cache:
            return self._cache[name]
        path = self.directory / name
        # Module names are flat file names; refuse anything that walks out
        if path.parent.resolve() != self.directory.resolve() or not path.is_file():
            self._cache[name] = None
            return None
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read(self.max_bytes)
        except OSError as e:
            logger.warning("Could not read guidance module %s: %s", path, e)
            content = None
        self._cache[name] = content
        return content
