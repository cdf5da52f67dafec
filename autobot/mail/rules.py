"""Forward-rule matching and forwarded-message formatting."""

from __future__ import annotations

import re

from autobot.core.errors import ValidationError
from autobot.core.models import EmailMessage, ForwardRule

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: str) -> bool:
    """Syntactic check only: something@something.tld, no whitespace."""
    return bool(_EMAIL_RE.match(email))


def matches_subject(subject: str, search: str) -> bool:
    """Case-insensitive substring match."""
    return search.lower() in subject.lower()


def format_forward_body(body: str, sender: str, subject: str) -> str:
    return f"Forwarded from: {sender}\nOriginal subject: {subject}\n\n{body}"


def forward_subject(subject: str) -> str:
    return f"FWD: {subject}"


def matching_rules(message: EmailMessage, rules: list[ForwardRule]) -> list[ForwardRule]:
    """Rules whose search term appears in the message subject.

    Every rule is evaluated; a message may match several rules and is
    forwarded once per match.
    """
    return [r for r in rules if matches_subject(message.subject, r.subject_search)]


def check_destination(rule: ForwardRule) -> None:
    """Raise ValidationError when the rule's destination is not an address."""
    if not is_valid_email(rule.destination_email):
        raise ValidationError(f"Invalid destination email: {rule.destination_email!r}")
