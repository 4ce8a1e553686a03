"""Ticket reference extraction from commit messages."""

import re
from typing import Set

# Project codes that denote merge requests, code reviews and external
# references rather than issue tracker tickets.
EXCLUDED_PREFIXES = ("MR", "CR", "EA")

TICKET_PATTERN = re.compile(
    r"\b(?!(?:" + "|".join(EXCLUDED_PREFIXES) + r")-)([A-Z]+-[0-9]+)\b"
)


def extract_tickets(message: str) -> Set[str]:
    """Extract ticket IDs such as ``IDEA-12345`` from a commit message.

    Args:
        message: Free-text commit message

    Returns:
        Set of distinct ticket IDs (possibly empty)
    """
    if not message:
        return set()
    return set(TICKET_PATTERN.findall(message))
