"""
Tests for Matchers
==================

Tests for safetygate/matchers.py
"""

from safetygate.matchers import (
    KeywordPresenceMatcher,
    SubjectChoiceMatcher,
    TokenOverlapMatcher,
    tokenize,
    tokenize_ordered,
)


class TestTokenize:
    """Tests for tokenization."""

    def test_keeps_dotted_names(self):
        assert tokenize("Use Next.js, not Remix!") == frozenset({"use", "next.js", "not", "remix"})

    def test_min_length(self):
        assert tokenize("npm i on windows", min_length=3) == frozenset({"npm", "windows"})

    def test_ordered(self):
        assert tokenize_ordered("Migrate from Prisma to Drizzle.") == ["migrate", "from", "prisma", "to", "drizzle"]


class TestTokenOverlapMatcher:
    """Tests for Jaccard similarity."""

    def test_identical(self):
        matcher = TokenOverlapMatcher()
        assert matcher.similarity("clear the build cache", "Clear the build cache") == 1.0

    def test_partial_overlap(self):
        """Short tokens are dropped before comparing."""
        matcher = TokenOverlapMatcher()
        assert matcher.similarity("npm install fails", "npm install failing") == 0.5
        assert not matcher.matches("npm install fails", "npm install failing")

    def test_threshold_is_configurable(self):
        matcher = TokenOverlapMatcher(threshold=0.5)
        assert matcher.matches("npm install fails", "npm install failing")

    def test_both_empty_after_filtering(self):
        matcher = TokenOverlapMatcher()
        assert matcher.similarity("a b", "A B") == 1.0
        assert matcher.similarity("a b", "c d") == 0.0


class TestSubjectChoiceMatcher:
    """Tests for subject/choice extraction."""

    def test_simple_choice(self):
        matcher = SubjectChoiceMatcher()
        assert matcher.extract("Install Prisma and create schema") == {"orm": {"prisma"}}

    def test_negated_choice_skipped(self):
        """'from prisma' is what is being left, not what is chosen."""
        matcher = SubjectChoiceMatcher()
        assert matcher.extract("Migrate from Prisma to Drizzle") == {"orm": {"drizzle"}}

    def test_shared_term_resolved_by_cue(self):
        matcher = SubjectChoiceMatcher()
        assert matcher.extract("Use Supabase for login") == {"auth-provider": {"supabase"}}

    def test_shared_term_resolved_by_category(self):
        matcher = SubjectChoiceMatcher()
        assert matcher.extract("Use Supabase", category="data-model") == {"database": {"supabase"}}

    def test_shared_term_without_hints_counts_for_all(self):
        matcher = SubjectChoiceMatcher()
        assert matcher.extract("Use Supabase") == {
            "database": {"supabase"},
            "auth-provider": {"supabase"},
        }

    def test_nothing_found(self):
        assert SubjectChoiceMatcher().extract("Rename the button label") == {}

    def test_custom_dictionary(self):
        matcher = SubjectChoiceMatcher(subjects={"queue": {"sqs": ("sqs",), "rabbitmq": ("rabbitmq",)}})
        assert matcher.extract("Publish events to RabbitMQ") == {"queue": {"rabbitmq"}}


class TestKeywordPresenceMatcher:
    """Tests for keyword hit scoring."""

    def test_scale(self):
        matcher = KeywordPresenceMatcher()
        assert matcher.score("nothing here", ("book",)) == (15, [])
        assert matcher.score("book a slot", ("book", "table")) == (65, ["book"])
        assert matcher.score("book a table", ("book", "table", "chair")) == (80, ["book", "table"])
        assert matcher.score("book a table chair", ("book", "table", "chair"))[0] == 90

    def test_custom_scale(self):
        matcher = KeywordPresenceMatcher(scale=((0, 0), (1, 100)))
        assert matcher.score("stripe", ("stripe",)) == (100, ["stripe"])
