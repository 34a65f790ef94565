"""Message acceptance predicates: blocked phrases and spam heuristics.

Both checks are pure functions of the message body.  ``check_content`` is
the single entry point used by the router; it raises ``PolicyViolation``
and never reports which rule fired to the sender.
"""

import re

BLOCKED_PHRASES = (
    "rape",
    "rapist",
    "pedo",
    "pedophile",
    "child abuse",
    "kill yourself",
    "kys",
)

SPAM_MIN_LENGTH = 3
_REPEATED_CHAR_RE = re.compile(r"(.)\1{4,}", re.DOTALL)
_SHOUTING_RE = re.compile(r"^[A-Z0-9!?@#$%^&*() ]+$")
_SHOUTING_RATIO = 0.6
_MIN_TILE_REPEATS = 4


class PolicyViolation(Exception):
    """Raised when a message body is blocked or classified as spam."""

    def __init__(self, rule: str):
        super().__init__(rule)
        self.rule = rule


def contains_blocked_content(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in BLOCKED_PHRASES)


def _is_shouting(text: str) -> bool:
    """All caps, digits and symbols, with caps plus symbols over 60% of the body.

    Digits and spaces count toward the length but not toward the shouting
    share, so "PR #1234" passes while "ABC123!!!" does not.
    """
    if not _SHOUTING_RE.match(text):
        return False
    if not any(ch.isupper() for ch in text):
        return False
    loud = sum(1 for ch in text if not ch.isdigit() and ch != " ")
    return loud / len(text) > _SHOUTING_RATIO


def _is_tiled(text: str) -> bool:
    """True if some substring of length 1..len/3 repeats to form the whole text
    at least four times."""
    length = len(text)
    for size in range(1, length // 3 + 1):
        if length % size:
            continue
        repeats = length // size
        if repeats >= _MIN_TILE_REPEATS and text[:size] * repeats == text:
            return True
    return False


def is_spam(text: str) -> bool:
    body = text.strip()
    if len(body) < SPAM_MIN_LENGTH:
        return False
    return bool(_REPEATED_CHAR_RE.search(body)) or _is_shouting(body) or _is_tiled(body)


def check_content(text: str) -> None:
    """Raise PolicyViolation if *text* must not be accepted."""
    if contains_blocked_content(text):
        raise PolicyViolation("blocklist")
    if is_spam(text):
        raise PolicyViolation("spam")
