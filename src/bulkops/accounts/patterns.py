"""Email address generation for bulk account creation.

Patterns may contain three placeholders:
    {index}      1-based position of the address in the run
    {timestamp}  milliseconds since the epoch, fixed for the whole run
    {random}     five random base-36 characters, fresh per address
"""

from __future__ import annotations

import secrets
import string
import time

from .models import AccountCreationOptions

_ALPHABET = string.digits + string.ascii_lowercase


def random_token(length: int = 5) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def expand_pattern(pattern: str, index: int, *, timestamp: int, random_part: str | None = None) -> str:
    """Substitute placeholders in ``pattern``.

    Example:
        >>> expand_pattern("user{index}-{timestamp}@example.com", 3, timestamp=1700000000000)
        'user3-1700000000000@example.com'
    """
    return (
        pattern.replace("{index}", str(index))
        .replace("{timestamp}", str(timestamp))
        .replace("{random}", random_part if random_part is not None else random_token())
    )


def generate_email_addresses(options: AccountCreationOptions, *, timestamp: int | None = None) -> list[str]:
    """Addresses for a bulk creation, in creation order.

    Without ``email_pattern`` the scheme is ``{prefix}-{timestamp}-{i}@{domain}``.
    """
    ts = timestamp if timestamp is not None else int(time.time() * 1000)
    if options.email_pattern:
        return [expand_pattern(options.email_pattern, i, timestamp=ts) for i in range(1, options.count + 1)]
    return [f"{options.email_prefix}-{ts}-{i}@{options.domain}" for i in range(1, options.count + 1)]
