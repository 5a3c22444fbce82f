"""Correlation token minting and subject-line embedding.

A token has the form ``PREFIX-XXXXXXXX`` (eight uppercase alphanumerics) and
travels in the subject line as ``[PREFIX-XXXXXXXX]``.  The grammar is tiny and
explicit: the first bracketed group that matches wins, anything else in the
subject (reply prefixes, other bracket groups, whitespace) is ignored.
"""

from __future__ import annotations

import re
import secrets
import string

DEFAULT_PREFIX = "FO"
TOKEN_ALPHABET = string.ascii_uppercase + string.digits
TOKEN_SUFFIX_LENGTH = 8

_PREFIX_RE = re.compile(r"^[A-Z][A-Z0-9]*$")


class TokenCodec:
    """Mint, embed, and extract correlation tokens for one prefix.

    Args:
        prefix: Uppercase alphanumeric prefix placed before the dash.

    Raises:
        ValueError: If *prefix* is not uppercase alphanumeric.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX) -> None:
        if not _PREFIX_RE.match(prefix):
            raise ValueError(f"Token prefix must be uppercase alphanumeric, got {prefix!r}")
        self.prefix = prefix
        body = rf"{re.escape(prefix)}-[A-Z0-9]{{{TOKEN_SUFFIX_LENGTH}}}"
        self._token_re = re.compile(rf"^{body}$")
        self._bracketed_re = re.compile(rf"\[({body})\]")

    def mint(self) -> str:
        """Return a new random token.

        Uniqueness is probabilistic; the thread registry enforces it.
        """
        suffix = "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_SUFFIX_LENGTH))
        return f"{self.prefix}-{suffix}"

    def is_valid(self, token: str) -> bool:
        """Return True if *token* is well-formed for this prefix."""
        return bool(self._token_re.match(token))

    def embed(self, subject: str, token: str) -> str:
        """Append ``[token]`` to *subject* unless it is already present.

        Args:
            subject: The subject line, possibly already a reply (``Re: ...``).
            token: A well-formed token.

        Returns:
            The subject carrying the bracketed token.

        Raises:
            ValueError: If *token* is malformed.
        """
        if not self.is_valid(token):
            raise ValueError(f"Malformed correlation token: {token!r}")
        if f"[{token}]" in subject:
            return subject
        stripped = subject.rstrip()
        if not stripped:
            return f"[{token}]"
        return f"{stripped} [{token}]"

    def extract(self, subject: str | None) -> str | None:
        """Return the first bracketed token in *subject*, or ``None``.

        Absence is an expected outcome (stripped or mangled subjects, spam,
        bounces) and never raises.
        """
        if not subject:
            return None
        match = self._bracketed_re.search(subject)
        return match.group(1) if match else None
