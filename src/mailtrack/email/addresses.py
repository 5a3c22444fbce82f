"""Helpers for splitting and normalizing RFC 5322 address strings."""

from __future__ import annotations

import email.utils


def split_address(value: str) -> tuple[str, str]:
    """Split ``"Name <addr>"`` (or a bare address) into ``(name, addr)``.

    Uses :func:`email.utils.parseaddr`; falls back to the stripped input when
    the string cannot be parsed.  The name is empty when absent.
    """
    name, addr = email.utils.parseaddr(value)
    return name.strip(), (addr or value.strip())


def bare_address(value: str) -> str:
    """Return just the mailbox address from *value*."""
    return split_address(value)[1]


def bare_addresses(values: list[str]) -> list[str]:
    """Return bare mailbox addresses for every non-blank entry in *values*."""
    return [bare_address(v) for v in values if v and v.strip()]
