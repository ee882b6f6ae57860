"""Mail address formatting and parsing."""

from __future__ import annotations

import email.utils
import re

MAIL_REGEX = re.compile(
    r"([_A-Za-z0-9-]+)(\.[_A-Za-z0-9-]+)*@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*(\.[A-Za-z]{2,})"
)


def fix_address_name(name: str | None) -> str:
    """Normalize a display name to a double-quoted form.

    ``'Bob'`` becomes ``"Bob"``, an already double-quoted name is kept as is.
    """
    if name is None:
        return ""
    name = name.strip()
    if not name:
        return ""
    if len(name) > 1 and name.startswith("'") and name.endswith("'"):
        return f'"{name[1:-1]}"'
    if len(name) > 1 and name.startswith('"') and name.endswith('"'):
        return name
    return f'"{name}"'


def format_address(name: str | None, address: str) -> str:
    """Render ``"Name" <address>``, or the bare address when there is no
    distinct display name."""
    if name and name != address:
        return f"{fix_address_name(name)} <{address}>"
    return address


def format_address_list(header_values: list[str]) -> list[str]:
    """Parse RFC 2822 address headers into formatted address strings."""
    return [
        format_address(name, addr)
        for name, addr in email.utils.getaddresses(header_values)
        if addr
    ]


def parse_mail_list(mails: str | None) -> list[str]:
    """Split a comma separated string, keeping only valid mail addresses."""
    if not mails:
        return []
    result: list[str] = []
    for token in mails.split(","):
        candidate = token.strip()
        if MAIL_REGEX.fullmatch(candidate):
            result.append(candidate)
    return result
