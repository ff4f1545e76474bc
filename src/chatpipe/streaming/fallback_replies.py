"""
Locally generated substitute replies used when both the stream and the
one-shot call fail.

Rules are an ordered list of (name, predicate, response) evaluated top to
bottom; the last rule always matches so every message gets a reply.
"""

from __future__ import annotations

import re

from collections.abc import Callable, Iterable
from dataclasses import dataclass

ReplyPredicate = Callable[[str], bool]


@dataclass(frozen=True, slots=True)
class ReplyRule:
    """One entry of the substitute reply table."""

    name: str
    predicate: ReplyPredicate
    response: str

    def matches(self, text: str) -> bool:
        return self.predicate(text)


def keyword_predicate(*keywords: str) -> ReplyPredicate:
    """Build a case-insensitive keyword matcher.

    ASCII keywords match on word boundaries ("hi" does not match "this");
    other keywords (e.g. Chinese) match as plain substrings.
    """
    parts = [rf"\b{re.escape(word)}\b" if word.isascii() else re.escape(word) for word in keywords]
    pattern = re.compile("|".join(parts), re.IGNORECASE)

    def predicate(text: str) -> bool:
        return pattern.search(text) is not None

    return predicate


def always(_text: str) -> bool:
    return True


GREETING_REPLY = (
    "Hello! The assistant service is offline at the moment, so this reply was generated locally. "
    "Please try again shortly."
)

HELP_REPLY = (
    "I can't reach the assistant service right now, but here is what you can do:\n"
    "- Check your network connection and the backend address in settings.\n"
    "- Send your message again once the connection is back.\n"
    "- Your conversation history is kept, so nothing you wrote is lost."
)

FEATURES_REPLY = (
    "When connected, the assistant can:\n"
    "- Answer questions and explain concepts\n"
    "- Summarize and rewrite text you paste in\n"
    "- Help with code, including formatting and review\n"
    "The service is unreachable right now, so please try again in a moment."
)

TEST_REPLY = "Test received. The assistant backend did not respond, so this reply was generated locally."

GENERIC_REPLY = (
    "Sorry, I can't reach the assistant service right now. Your message has been kept; please try again shortly."
)

DEFAULT_REPLY_RULES: tuple[ReplyRule, ...] = (
    ReplyRule("greeting", keyword_predicate("hello", "hi", "hey", "你好", "您好"), GREETING_REPLY),
    ReplyRule("help", keyword_predicate("help", "帮助", "怎么用"), HELP_REPLY),
    ReplyRule(
        "features",
        keyword_predicate("feature", "features", "what can you do", "capabilities", "功能"),
        FEATURES_REPLY,
    ),
    ReplyRule("test", keyword_predicate("test", "testing", "ping", "测试"), TEST_REPLY),
    ReplyRule("generic", always, GENERIC_REPLY),
)


class LocalReplyRules:
    """Evaluates an ordered rule table against the user's message."""

    def __init__(self, rules: Iterable[ReplyRule] = DEFAULT_REPLY_RULES):
        self.rules: tuple[ReplyRule, ...] = tuple(rules)
        if not self.rules:
            raise ValueError("at least one reply rule is required")

    def match(self, text: str) -> ReplyRule:
        """Return the first matching rule; the last rule is the catch-all."""
        for rule in self.rules:
            if rule.matches(text):
                return rule
        return self.rules[-1]

    def reply_for(self, text: str) -> str:
        return self.match(text).response


__all__ = [
    "DEFAULT_REPLY_RULES",
    "LocalReplyRules",
    "ReplyRule",
    "keyword_predicate",
]
