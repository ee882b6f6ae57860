"""Routing filters: decide which destination folders a mail goes to."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from .models import CanonicalMail, FilterField, FilterOperation, MailFilter, MailFilterRule

logger = structlog.get_logger()

_Compare = Callable[[str, str], bool]

_OPERATIONS: dict[FilterOperation, _Compare] = {
    FilterOperation.CONTAINS: lambda actual, expected: expected in actual,
    FilterOperation.EQUALS: lambda actual, expected: actual == expected,
}


def evaluate(rule: MailFilterRule, mail: CanonicalMail) -> bool | None:
    """Evaluate one rule against *mail*, case-insensitively.

    Returns ``None`` for rules whose field or operation is unknown.
    """
    try:
        field = FilterField(rule.field.lower())
        compare = _OPERATIONS[FilterOperation(rule.operation.lower())]
    except (ValueError, KeyError):
        logger.warning("unknown_filter_rule", field=rule.field, operation=rule.operation)
        return None

    expected = rule.value.lower()
    if field is FilterField.TO:
        # holds for every recipient; no recipients means it holds
        return all(compare(recipient.lower(), expected) for recipient in mail.to)
    if field is FilterField.FROM:
        return compare(mail.from_address.lower(), expected)
    if field is FilterField.SUBJECT:
        return compare(mail.subject.lower(), expected)
    return compare(mail.content.lower(), expected)


def matches(mail: CanonicalMail, rules: list[MailFilterRule]) -> bool:
    """AND of every active rule; all rules are evaluated."""
    result = True
    for rule in rules:
        if not rule.active:
            continue
        outcome = evaluate(rule, mail)
        if outcome is not None:
            result &= outcome
    return result


def select_filters(filters: list[MailFilter], mail: CanonicalMail) -> list[MailFilter]:
    """Active filters matching *mail*, in configuration order."""
    return [f for f in filters if f.active and matches(mail, f.rules)]
