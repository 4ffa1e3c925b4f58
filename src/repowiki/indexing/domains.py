"""
Domain Classification

Infers business-domain categories for a code chunk from its name,
documentation, decorators and body using a fixed keyword table.
"""

import re
from typing import Dict, List, Optional, Set, Tuple

from .models import Chunk, ChunkType, DomainHint


# Category -> keywords. Dict order is the tie-break order for equal confidences.
DOMAIN_KEYWORDS: Dict[str, List[str]] = {
    "authentication": ["auth", "login", "logout", "signin", "signout", "password", "credential",
                       "jwt", "token", "oauth", "sso", "saml", "identity", "session"],
    "authorization": ["permission", "role", "policy", "access", "authorize", "acl", "rbac",
                      "scope", "claim", "grant", "deny", "allowed", "forbidden"],
    "user-management": ["user", "account", "profile", "member", "registration", "signup",
                        "onboard", "invite", "team", "organization"],
    "data-access": ["repository", "dao", "query", "database", "db", "sql", "orm", "entity",
                    "schema", "migration", "seed", "connection", "pool"],
    "api-endpoint": ["endpoint", "route", "controller", "handler", "request", "response", "rest",
                     "graphql", "api", "http", "get", "post", "put", "delete", "patch"],
    "business-logic": ["service", "domain", "workflow", "process", "rule", "calculation",
                       "business", "logic", "usecase", "interactor"],
    "validation": ["validate", "validator", "schema", "constraint", "rule", "sanitize", "clean",
                   "check", "verify", "assert"],
    "error-handling": ["error", "exception", "catch", "throw", "handle", "fault", "failure",
                       "recovery", "retry", "fallback"],
    "logging": ["log", "logger", "trace", "debug", "info", "warn", "error", "audit", "track",
                "telemetry", "metric", "monitor"],
    "caching": ["cache", "redis", "memcache", "ttl", "invalidate", "store", "retrieve", "memo",
                "buffer"],
    "messaging": ["queue", "message", "event", "publish", "subscribe", "broker", "kafka",
                  "rabbitmq", "bus", "notification", "emit", "listener"],
    "scheduling": ["schedule", "cron", "job", "task", "timer", "interval", "background", "worker",
                   "batch", "recurring"],
    "file-handling": ["file", "upload", "download", "stream", "blob", "storage", "s3",
                      "attachment", "document", "media", "image"],
    "payment": ["payment", "invoice", "billing", "subscription", "charge", "refund",
                "transaction", "order", "cart", "checkout", "stripe", "price"],
    "notification": ["notify", "notification", "alert", "email", "sms", "push", "send",
                     "template", "mail"],
    "search": ["search", "query", "filter", "sort", "index", "elastic", "fulltext", "find",
               "lookup", "autocomplete"],
    "analytics": ["analytics", "report", "metric", "dashboard", "chart", "aggregate",
                  "statistics", "insight", "tracking"],
    "configuration": ["config", "setting", "option", "preference", "environment", "env",
                      "constant", "feature", "flag", "toggle"],
    "testing": ["test", "spec", "mock", "stub", "fixture", "assert", "expect", "describe", "it",
                "beforeeach", "aftereach"],
    "infrastructure": ["deploy", "build", "ci", "docker", "kubernetes", "terraform", "aws",
                       "azure", "gcp", "infra", "devops"],
    "ui-component": ["component", "render", "view", "page", "layout", "widget", "modal", "form",
                     "button", "input", "table", "list"],
    "state-management": ["state", "store", "reducer", "action", "dispatch", "selector",
                         "context", "provider", "atom", "signal"],
    "routing": ["route", "router", "navigate", "redirect", "path", "url", "link", "history",
                "breadcrumb"],
    "middleware": ["middleware", "interceptor", "filter", "guard", "pipe", "transform", "before",
                   "after", "around"],
    "utility": ["util", "helper", "common", "shared", "lib", "tool", "format", "parse", "convert",
                "transform"],
}

# Keywords this short only count when they appear as a whole identifier word
SHORT_KEYWORD_LENGTH = 3
MAX_HINTS = 3

SOURCE_WEIGHTS = {"name": 3, "documentation": 2, "content": 1}

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD = re.compile(r"[a-z0-9]+")


def identifier_words(text: str) -> Set[str]:
    """Split text into lowercase words, breaking camelCase and snake_case apart."""
    text = _ACRONYM_BOUNDARY.sub(r"\1 \2", text)
    text = _CAMEL_BOUNDARY.sub(r"\1 \2", text)
    return set(_WORD.findall(text.lower()))


class _SearchText:
    """Lowercased text with its word set, for keyword lookups."""

    def __init__(self, text: str):
        self.lower = text.lower()
        self.words = identifier_words(text)

    def contains(self, keyword: str) -> bool:
        if len(keyword) <= SHORT_KEYWORD_LENGTH:
            return keyword in self.words
        return keyword in self.lower


class DomainClassifier:
    """Keyword-table classifier producing at most three domain hints per chunk."""

    def __init__(self, keywords: Optional[Dict[str, List[str]]] = None, max_hints: int = MAX_HINTS):
        self.keywords = keywords or DOMAIN_KEYWORDS
        self.max_hints = max_hints
        self._order = {category: i for i, category in enumerate(self.keywords)}

    def classify(self, name: Optional[str], documentation: Optional[str] = None,
                 decorators: Optional[List[str]] = None, body: str = "") -> List[DomainHint]:
        """
        Infer domain hints for a construct.

        Args:
            name: Construct name (matches weigh 3)
            documentation: Leading comment or docstring (matches weigh 2)
            decorators: Decorator/annotation text (matches weigh 1)
            body: Construct source (matches weigh 1)

        Returns:
            Up to three hints ordered by confidence, ties in table order
        """
        name_text = _SearchText(name or "")
        doc_text = _SearchText(documentation or "")
        full_text = _SearchText(" ".join([
            name or "", documentation or "", " ".join(decorators or []), body or ""
        ]))

        scored: List[Tuple[float, int, DomainHint]] = []
        for category, keywords in self.keywords.items():
            matched: List[str] = []
            score = 0
            best_source = None
            for keyword in keywords:
                if not full_text.contains(keyword):
                    continue
                matched.append(keyword)
                if name_text.contains(keyword):
                    source = "name"
                elif doc_text.contains(keyword):
                    source = "documentation"
                else:
                    source = "content"
                score += SOURCE_WEIGHTS[source]
                if best_source is None or SOURCE_WEIGHTS[source] > SOURCE_WEIGHTS[best_source]:
                    best_source = source

            if not matched:
                continue
            confidence = min(score / 10, 1.0)
            hint = DomainHint(category=category, confidence=confidence,
                              source=best_source, keywords=matched)
            scored.append((-confidence, self._order[category], hint))

        scored.sort(key=lambda item: (item[0], item[1]))
        return [hint for _, _, hint in scored[:self.max_hints]]

    def classify_chunk(self, chunk: Chunk) -> List[DomainHint]:
        return self.classify(chunk.name, chunk.documentation, chunk.decorators, chunk.content)


def merge_domain_hints(hint_lists: List[List[DomainHint]], max_hints: int = MAX_HINTS) -> List[DomainHint]:
    """Union hints by category keeping the most confident one, then take the top few."""
    best: Dict[str, DomainHint] = {}
    first_seen: Dict[str, int] = {}
    for hints in hint_lists:
        for hint in hints:
            if hint.category not in first_seen:
                first_seen[hint.category] = len(first_seen)
            current = best.get(hint.category)
            if current is None or hint.confidence > current.confidence:
                best[hint.category] = hint

    ordered = sorted(best.values(), key=lambda h: (-h.confidence, first_seen[h.category]))
    return ordered[:max_hints]


def generate_domain_context(chunk: Chunk) -> str:
    """One-line semantic summary of a chunk, prepended to its text before embedding."""
    parts = []

    if chunk.chunk_type not in (ChunkType.UNKNOWN, ChunkType.FILE):
        parts.append(f"[{chunk.chunk_type.value.upper()}]")

    if chunk.name:
        parts.append(chunk.name)

    if chunk.parent_name:
        parts.append(f"in {chunk.parent_name}")

    domains = ", ".join(
        hint.category.replace("-", " ")
        for hint in chunk.domain_hints
        if hint.confidence > 0.3
    )
    if domains:
        parts.append(f"({domains})")

    if chunk.signature:
        parts.append(f"- {chunk.signature}")

    return " ".join(parts)
