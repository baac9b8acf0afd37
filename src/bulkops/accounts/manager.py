"""Bulk account operations on top of BatchExecutor.

AccountManager turns account-level requests (create N mailboxes, validate a
set of credentials, read many inboxes) into executor runs, then reshapes
the generic BatchResult into account-specific results. Listeners receive
ProgressEvents: one ``started``, a ``progress`` per settled task, and one
terminal ``completed``, ``cancelled`` or ``error``.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from functools import partial
from typing import Any, Callable, TypeVar

from bulkops.foundation.errors import ConfigurationError, ErrorCode, PermanentError
from bulkops.runtime.batch import BatchExecutor, BatchOperationConfig, BatchResult, OperationFailure
from bulkops.runtime.concurrency import CancelToken
from bulkops.runtime.observability import get_logger, log_context
from bulkops.runtime.progress import OperationProgress, ProgressEvent, ProgressEventCallback, ProgressEventKind

from .client import MailApiClient
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
    Message,
    MessageFilter,
    MessageRetrievalResult,
    MessageSort,
    ValidationSummary,
)
from .patterns import generate_email_addresses

T = TypeVar("T")

DEFAULT_MAX_MESSAGES = 50
MAX_MESSAGE_PAGES = 10


class AccountManager:
    """Creates, validates and inspects mailbox accounts in bulk.

    Example:
        >>> async with MailApiClient() as api:
        ...     manager = AccountManager(api, BatchOperationConfig(concurrency=2, request_delay=0.5))
        ...     manager.set_progress_callback(lambda e: print(e.kind, e.progress and e.progress.percentage))
        ...     result = await manager.create_bulk_accounts(
        ...         AccountCreationOptions(count=25, email_prefix="qa", password="S3cret!pass"))
    """

    def __init__(
        self,
        client: MailApiClient,
        config: BatchOperationConfig | dict[str, Any] | None = None,
        *,
        executor: BatchExecutor[Any, Any] | None = None,
    ) -> None:
        self.client = client
        self.executor = executor or BatchExecutor(config if config is not None else BatchOperationConfig.from_settings())
        self.log = get_logger("bulkops.accounts")
        self._progress_callback: ProgressEventCallback | None = None

    @property
    def config(self) -> BatchOperationConfig:
        return self.executor.config

    def set_progress_callback(self, callback: ProgressEventCallback | None) -> None:
        self._progress_callback = callback

    # ─────────────────────────────────────────────────────────────────
    # Creation
    # ─────────────────────────────────────────────────────────────────

    async def create_bulk_accounts(
        self, options: AccountCreationOptions, *, cancel: CancelToken | None = None
    ) -> BulkAccountResult:
        """Create ``options.count`` accounts; failures are collected, never raised.

        Tasks are identified by address, so ``failed[i].item_id`` and
        ``unprocessed`` name the mailboxes concerned. Raises ConfigurationError
        before any request if the addresses are not unique (e.g. a pattern
        without ``{index}`` or ``{random}``).
        """
        addresses = generate_email_addresses(options)
        _require_unique(addresses)
        overrides = {k: v for k, v in (("batch_size", options.batch_size),
                                       ("concurrency", options.concurrency)) if v is not None}
        config = self.config.model_copy(update=overrides) if overrides else None
        worker = partial(self.client.create_account, password=options.password)
        result = await self._run("account-creation", addresses, worker, config=config,
                                 id_of=lambda address: address, cancel=cancel)
        return self._creation_result(result, options.metadata)

    async def create_accounts_with_pattern(
        self, pattern: str, count: int, password: str, *, cancel: CancelToken | None = None
    ) -> BulkAccountResult:
        """Create accounts whose addresses expand ``pattern`` ({index}, {timestamp}, {random})."""
        options = AccountCreationOptions(count=count, password=password, email_pattern=pattern)
        return await self.create_bulk_accounts(options, cancel=cancel)

    async def generate_test_accounts(
        self, count: int, prefix: str = "test", domain: str = DEFAULT_DOMAIN
    ) -> BulkAccountResult:
        """Create throwaway accounts with a fixed test password."""
        options = AccountCreationOptions(
            count=count, email_prefix=prefix, domain=domain, password=TEST_PASSWORD,
            metadata={"purpose": "testing", "created_at": datetime.now(UTC).isoformat()},
        )
        return await self.create_bulk_accounts(options)

    # ─────────────────────────────────────────────────────────────────
    # Validation
    # ─────────────────────────────────────────────────────────────────

    async def validate_bulk_accounts(
        self, accounts: Sequence[Account], *, cancel: CancelToken | None = None
    ) -> AccountValidationResult:
        """Authenticate every account; an account is valid if a token can be obtained."""
        result = await self._run("validation", accounts, self._validate_one,
                                 id_of=lambda a: a.id, cancel=cancel)
        by_id = {a.id: a for a in accounts}
        invalid = [
            AccountValidationFailure(
                account=by_id[f.item_id],
                reason=f.error,
                details=_detail_text(f),
                suggested_fix=_suggested_fix(f),
            )
            for f in result.failed
        ]
        total = len(accounts)
        return AccountValidationResult(
            valid=result.successful,
            invalid=invalid,
            metrics=result.metrics,
            summary=ValidationSummary(
                total_validated=total,
                valid_count=len(result.successful),
                invalid_count=len(invalid),
                validation_rate=(len(result.successful) / total) * 100 if total else 0.0,
            ),
        )

    async def _validate_one(self, account: Account) -> Account:
        if not account.password:
            raise PermanentError("account password not available for validation",
                                 context={"details": f"no password stored for {account.address}"})
        await self.client.get_token(account.address, account.password)
        return account

    # ─────────────────────────────────────────────────────────────────
    # Messages
    # ─────────────────────────────────────────────────────────────────

    async def fetch_bulk_messages(
        self,
        accounts: Sequence[Account],
        *,
        max_messages_per_account: int = DEFAULT_MAX_MESSAGES,
        message_filter: MessageFilter | None = None,
        sort_by: MessageSort | None = None,
        cancel: CancelToken | None = None,
    ) -> MessageRetrievalResult:
        """Read the inbox of every account, keeping at most ``max_messages_per_account`` matches each.

        With ``sort_by`` every page (up to the page limit) is read and sorted
        before truncation; otherwise reading stops once enough messages matched.
        """
        worker = partial(self._fetch_one, limit=max_messages_per_account, message_filter=message_filter,
                         sort_by=sort_by)
        result = await self._run("message-retrieval", accounts, worker, id_of=lambda a: a.address, cancel=cancel)
        return MessageRetrievalResult(
            messages=dict(result.successful),
            failed=result.failed,
            metrics=result.metrics,
        )

    async def _fetch_one(
        self, account: Account, *, limit: int, message_filter: MessageFilter | None, sort_by: MessageSort | None
    ) -> tuple[str, list[Message]]:
        if not account.password:
            raise PermanentError("account password not available for authentication",
                                 context={"details": f"no password stored for {account.address}"})
        token = await self.client.get_token(account.address, account.password)
        collected: list[Message] = []
        for page in range(1, MAX_MESSAGE_PAGES + 1):
            if sort_by is None and len(collected) >= limit:
                break
            batch = await self.client.get_messages(token.token, page=page)
            if not batch:
                break
            collected.extend(m for m in batch if message_filter is None or message_filter.matches(m))
        if sort_by is not None:
            collected = sort_by.apply(collected)
        return account.address, collected[:limit]

    # ─────────────────────────────────────────────────────────────────
    # Statistics
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def get_account_statistics(accounts: Sequence[Account]) -> AccountStatistics:
        """Totals by status, quota usage and provider."""
        active = disabled = deleted = quota = used = 0
        providers: dict[str, int] = {}
        for account in accounts:
            if account.is_deleted:
                deleted += 1
            elif account.is_disabled:
                disabled += 1
            else:
                active += 1
            quota += account.quota
            used += account.used
            provider = account.provider_id or "unknown"
            providers[provider] = providers.get(provider, 0) + 1
        total = len(accounts)
        return AccountStatistics(
            total=total, active=active, disabled=disabled, deleted=deleted,
            total_quota=quota, total_used=used, average_usage=used / total if total else 0.0,
            providers=providers,
        )

    # ─────────────────────────────────────────────────────────────────
    # Execution & Events
    # ─────────────────────────────────────────────────────────────────

    async def _run(
        self,
        operation: str,
        items: Sequence[T],
        worker: Callable[[T], Any],
        *,
        config: BatchOperationConfig | None = None,
        id_of: Callable[[T], str] | None = None,
        cancel: CancelToken | None = None,
    ) -> BatchResult[Any]:
        operation_id = f"{operation}-{uuid.uuid4().hex[:8]}"
        self._emit(ProgressEventKind.STARTED, operation_id, data={"operation": operation, "total": len(items)})

        def on_progress(progress: OperationProgress) -> None:
            self._emit(ProgressEventKind.PROGRESS, operation_id, progress=progress)

        try:
            with log_context(operation_id=operation_id):
                result = await self.executor.run(items, worker, config, on_progress, cancel=cancel, id_of=id_of,
                                                 step=operation)
        except Exception as e:
            self.log.error("bulk operation failed", operation=operation, operation_id=operation_id, error=str(e))
            self._emit(ProgressEventKind.ERROR, operation_id, error=str(e))
            raise

        kind = ProgressEventKind.CANCELLED if result.cancelled else ProgressEventKind.COMPLETED
        self._emit(kind, operation_id, data=result.summary.model_dump(mode="json"))
        self.log.info("bulk operation finished", operation=operation, operation_id=operation_id,
                      succeeded=len(result.successful), failed=len(result.failed), cancelled=result.cancelled)
        return result

    def _emit(self, kind: ProgressEventKind, operation_id: str, **fields: Any) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(ProgressEvent(kind=kind, operation_id=operation_id, **fields))
        except Exception as e:
            self.log.warning("progress listener failed", operation_id=operation_id, kind=str(kind), error=str(e))

    @staticmethod
    def _creation_result(result: BatchResult[Account], metadata: dict[str, Any]) -> BulkAccountResult:
        s = result.summary
        return BulkAccountResult(
            successful=result.successful,
            failed=result.failed,
            unprocessed=result.unprocessed,
            metrics=result.metrics,
            summary=AccountCreationSummary(
                total_attempted=s.total_attempted,
                success_count=s.success_count,
                failure_count=s.failure_count,
                success_rate=s.success_rate,
                total_time_ms=s.total_time_ms,
                average_time_per_account_ms=s.average_time_per_item_ms,
                cancelled=result.cancelled,
            ),
            metadata=metadata,
        )


def _require_unique(addresses: Sequence[str]) -> None:
    seen: set[str] = set()
    for address in addresses:
        if address in seen:
            raise ConfigurationError(
                f"generated address {address!r} is not unique; "
                "use an email pattern with {index} or {random}"
            )
        seen.add(address)


def _detail_text(failure: OperationFailure) -> str | None:
    details = (failure.context or {}).get("details")
    return None if details is None else str(details)


def _suggested_fix(failure: OperationFailure) -> str | None:
    if "password not available" in failure.error:
        return "Keep the password returned by account creation and validate that copy"
    if failure.status_code == 401:
        return "Check the stored password; the account may have been recreated"
    if failure.status_code == 404:
        return "The account no longer exists; remove it from the set"
    if failure.error_code in (ErrorCode.RATE_LIMITED, ErrorCode.TIMEOUT, ErrorCode.NETWORK_ERROR) \
            or (failure.status_code or 0) >= 500:
        return "Transient provider problem; retry validation later"
    return None
