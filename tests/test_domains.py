"""
Unit tests for domain classification.
"""

import random

import pytest

from repowiki.indexing import Chunk, ChunkType, DomainClassifier, DomainHint, generate_domain_context
from repowiki.indexing.domains import identifier_words, merge_domain_hints


class TestDomainClassifier:
    """Test keyword-table classification."""

    @pytest.fixture
    def classifier(self):
        return DomainClassifier()

    def test_auth_service_ranks_authentication_first(self, classifier):
        hints = classifier.classify(
            "AuthService",
            "Handles login and JWT validation",
            [],
            "def refresh(self, user):\n    return self.store.get(user.id)",
        )

        assert hints[0].category == "authentication"
        assert hints[0].source == "name"
        assert {"auth", "login", "jwt"} <= set(hints[0].keywords)
        body_only = [h for h in hints if h.source == "content"]
        assert all(hints[0].confidence > h.confidence for h in body_only)

    def test_at_most_three_hints_sorted_by_confidence(self, classifier):
        hints = classifier.classify(
            "PaymentController",
            "Checkout endpoint that charges the cart and sends an invoice email",
            ["@Post('/checkout')"],
            "logger.error('payment failed'); cache.invalidate(order.id); queue.publish(event)",
        )

        assert len(hints) == 3
        confidences = [h.confidence for h in hints]
        assert confidences == sorted(confidences, reverse=True)
        assert hints[0].category == "payment"

    def test_confidence_is_capped(self, classifier):
        hints = classifier.classify("authLoginTokenSessionPassword", "oauth jwt sso credential")
        assert hints[0].confidence == 1.0

    def test_no_matches_no_hints(self, classifier):
        assert classifier.classify("zzz", None, None, "qqq") == []

    def test_short_keywords_need_whole_words(self, classifier):
        hints = classifier.classify("dbConnection", None, None, "")
        data_access = next(h for h in hints if h.category == "data-access")
        assert "db" in data_access.keywords

        hints = classifier.classify("dumbbell", None, None, "")
        assert all("db" not in h.keywords for h in hints)

    def test_deterministic(self, classifier):
        args = ("UserRepository", "Loads users from the database", [], "SELECT * FROM users")
        assert classifier.classify(*args) == classifier.classify(*args)

    def test_keyword_order_does_not_change_hints(self, classifier):
        words = ["login", "password", "cache", "redis", "invoice", "payment", "query", "database", "email"]
        expected = classifier.classify("handler", None, None, " ".join(words))
        assert len(expected) == 3

        for seed in range(5):
            shuffled = list(words)
            random.Random(seed).shuffle(shuffled)
            hints = classifier.classify("handler", None, None, " ".join(shuffled))
            assert [(h.category, h.confidence) for h in hints] == \
                [(h.category, h.confidence) for h in expected]


def test_identifier_words_split_camel_and_snake_case():
    assert identifier_words("parseHTTPRequest_body") == {"parse", "http", "request", "body"}


def test_merge_domain_hints_keeps_best_per_category():
    merged = merge_domain_hints([
        [DomainHint("authentication", 0.4, "name"), DomainHint("logging", 0.2, "content")],
        [DomainHint("authentication", 0.6, "content"), DomainHint("caching", 0.5, "name")],
    ])

    assert [(h.category, h.confidence) for h in merged] == [
        ("authentication", 0.6), ("caching", 0.5), ("logging", 0.2)
    ]


def test_generate_domain_context():
    chunk = Chunk.create(
        "src/auth.py", 1, 3, "def login(): ...", "python", ChunkType.FUNCTION,
        name="login",
        parent_name="AuthService",
        signature="def login(username, password)",
        domain_hints=[
            DomainHint("authentication", 0.8, "name"),
            DomainHint("user-management", 0.2, "content"),
        ],
    )

    assert generate_domain_context(chunk) == \
        "[FUNCTION] login in AuthService (authentication) - def login(username, password)"


def test_generate_domain_context_skips_file_type():
    chunk = Chunk.create("README.md", 1, 2, "# Hi\ntext", "markdown", ChunkType.FILE, name="README")
    assert generate_domain_context(chunk) == "README"
