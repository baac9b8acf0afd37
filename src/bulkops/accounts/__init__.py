"""Temporary-mail accounts: API client, models, and bulk operations.

Example:
    >>> from bulkops.accounts import AccountCreationOptions, AccountManager, MailApiClient
    >>> async with MailApiClient() as api:
    ...     result = await AccountManager(api).create_bulk_accounts(
    ...         AccountCreationOptions(count=5, email_prefix="qa", password="S3cret!pass"))
"""

from .client import PROVIDER_HEADER, MailApiClient
from .manager import AccountManager
from .models import (
    DEFAULT_DOMAIN,
    TEST_PASSWORD,
    Account,
    AccountCreationOptions,
    AccountCreationSummary,
    AccountStatistics,
    AccountValidationFailure,
    AccountValidationResult,
    BulkAccountResult,
    Domain,
    Message,
    MessageFilter,
    MessageRetrievalResult,
    MessageSort,
    Sender,
    Token,
    ValidationSummary,
)
from .patterns import expand_pattern, generate_email_addresses, random_token

__all__ = [
    # Client
    "MailApiClient",
    "PROVIDER_HEADER",
    # Manager
    "AccountManager",
    # Models
    "DEFAULT_DOMAIN",
    "TEST_PASSWORD",
    "Account",
    "AccountCreationOptions",
    "AccountCreationSummary",
    "AccountStatistics",
    "AccountValidationFailure",
    "AccountValidationResult",
    "BulkAccountResult",
    "Domain",
    "Message",
    "MessageFilter",
    "MessageRetrievalResult",
    "MessageSort",
    "Sender",
    "Token",
    "ValidationSummary",
    # Patterns
    "expand_pattern",
    "generate_email_addresses",
    "random_token",
]
