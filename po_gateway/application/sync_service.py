"""Broker operations sync orchestration"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

from po_gateway.application.token_manager import OnRefreshed, TokenManager
from po_gateway.config import settings
from po_gateway.domain.dedupe import DedupeIndex, dedupe_against_index, merge_batch, normalize_operation
from po_gateway.domain.error_taxonomy import classify, is_retryable_error
from po_gateway.domain.exceptions import DomainException, NotAuthenticatedError, TokenExpiredError
from po_gateway.domain.models import (
    BrokerAuth,
    ErrorCategory,
    MergeResult,
    Operation,
    OperationSource,
    OperationsPage,
    SyncMode,
    SyncResult,
    SyncSession,
    SyncStatus,
)
from po_gateway.infrastructure.observability.logging import log_sync_session
from po_gateway.infrastructure.observability.metrics import record_sync_outcome
from po_gateway.utils.date_utils import now_ms
from po_gateway.utils.retry import parse_retry_after, retry_with_backoff

_CLOSED = (SyncStatus.FAILED, SyncStatus.CANCELED)


class OperationsTransport(Protocol):
    async def list_operations(
        self,
        token: Optional[str],
        date: Optional[str] = None,
        page_token: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> OperationsPage: ...


class SyncSink(Protocol):
    """Destination of a sync run; nothing is persisted before commit"""

    def start(self, session: SyncSession) -> None: ...

    def stage_page(self, session: SyncSession, accepted: List[Operation], page_index: int, estimated_total: Optional[int]) -> None: ...

    def commit(self, session: SyncSession, merge: MergeResult, evaluated_count: int) -> None: ...

    def fail(self, session: SyncSession) -> None: ...

    def cancel(self, session: SyncSession) -> None: ...


@dataclass(frozen=True)
class SyncProgress:
    page_index: int
    operations_count: int
    pages_fetched: int
    estimated_total: Optional[int]
    retrieved_count: int


@dataclass
class _PageFetch:
    page: Optional[OperationsPage]
    retry_attempts: int
    error: Optional[BaseException] = None
    category: Optional[ErrorCategory] = None


class SyncOrchestrator:
    """
    Drives one sync run: token check → page fetch with retry → normalize →
    timestamp filter → dedupe → stage, repeated until the page cursor runs
    out, then a single all-or-nothing commit.

    Pages are fetched strictly one after another. Cancellation is cooperative
    and checked before every page fetch and before commit. Concurrent runs
    against the same sink must be serialized by the caller.
    """

    def __init__(
        self,
        transport: OperationsTransport,
        token_manager: TokenManager,
        sink: SyncSink,
        retry_sequence_ms: Optional[Sequence[int]] = None,
        rate_limit_default_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
    ):
        self.transport = transport
        self.token_manager = token_manager
        self.sink = sink
        self.retry_sequence_ms = list(settings.retry_sequence_ms if retry_sequence_ms is None else retry_sequence_ms)
        self.rate_limit_default_ms = rate_limit_default_ms or settings.rate_limit_default_wait_ms
        self._sleep = sleep
        self._clock = clock

    async def sync_daily(
        self,
        auth: Optional[BrokerAuth],
        baseline: Sequence[Operation],
        trading_day: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[Callable[[SyncProgress], None]] = None,
        on_auth_refreshed: Optional[OnRefreshed] = None,
    ) -> SyncResult:
        """Retrieve every operation of the trading day not already in baseline"""
        return await self._run(
            auth,
            baseline,
            mode=SyncMode.DAILY,
            min_timestamp=None,
            trading_day=trading_day,
            cancel_event=cancel_event,
            on_progress=on_progress,
            on_auth_refreshed=on_auth_refreshed,
        )

    async def refresh(
        self,
        auth: Optional[BrokerAuth],
        baseline: Sequence[Operation],
        last_sync_timestamp: Optional[int],
        trading_day: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[Callable[[SyncProgress], None]] = None,
        on_auth_refreshed: Optional[OnRefreshed] = None,
    ) -> SyncResult:
        """Daily sync restricted to operations newer than the last successful sync"""
        return await self._run(
            auth,
            baseline,
            mode=SyncMode.REFRESH,
            min_timestamp=last_sync_timestamp,
            trading_day=trading_day,
            cancel_event=cancel_event,
            on_progress=on_progress,
            on_auth_refreshed=on_auth_refreshed,
        )

    async def _fetch_page(self, auth: BrokerAuth, trading_day: Optional[str], page_token: Optional[str]) -> _PageFetch:
        attempts = 0
        date = trading_day if trading_day and trading_day != "today" else None

        async def fetch() -> OperationsPage:
            nonlocal attempts
            attempts += 1
            return await self.transport.list_operations(
                token=auth.token,
                date=date,
                page_token=page_token,
                account_id=auth.account_id,
            )

        try:
            page = await retry_with_backoff(
                fetch,
                sequence_ms=self.retry_sequence_ms,
                should_retry=is_retryable_error,
                sleep=self._sleep,
            )
            return _PageFetch(page=page, retry_attempts=max(attempts - 1, 0))
        except Exception as e:
            return _PageFetch(page=None, retry_attempts=max(attempts - 1, 0), error=e, category=classify(e))

    async def _run(
        self,
        auth: Optional[BrokerAuth],
        baseline: Sequence[Operation],
        mode: SyncMode,
        min_timestamp: Optional[int],
        trading_day: Optional[str],
        cancel_event: Optional[asyncio.Event],
        on_progress: Optional[Callable[[SyncProgress], None]],
        on_auth_refreshed: Optional[OnRefreshed],
    ) -> SyncResult:
        session = SyncSession(
            session_id=f"sync-{uuid.uuid4()}",
            mode=mode,
            start_time=self._clock(),
            status=SyncStatus.IN_PROGRESS,
        )
        self.sink.start(session)
        logging.info(
            "Sync started",
            extra={"session_id": session.session_id, "mode": mode.value, "baseline_count": len(baseline)},
        )

        index = DedupeIndex(baseline)
        candidates: List[Operation] = []
        current_auth = auth
        page_token: Optional[str] = None
        page_index = 0
        evaluated = 0
        estimated_total: Optional[int] = None
        committed = False

        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    return self._cancel(session)

                try:
                    current_auth = await self.token_manager.ensure_valid(current_auth, on_auth_refreshed)
                except (NotAuthenticatedError, TokenExpiredError) as e:
                    code = "NOT_AUTHENTICATED" if isinstance(e, NotAuthenticatedError) else "TOKEN_EXPIRED"
                    return self._fail(session, code, needs_reauth=True)
                except DomainException as e:
                    return self._fail(session, str(e))

                fetch = await self._fetch_page(current_auth, trading_day, page_token)
                session.retry_attempts += fetch.retry_attempts

                if fetch.page is None:
                    return self._fail_from_error(session, fetch)

                normalized = [normalize_operation(raw, OperationSource.BROKER) for raw in fetch.page.operations]
                if min_timestamp is not None:
                    normalized = [op for op in normalized if op.trade_timestamp > min_timestamp]
                evaluated += len(normalized)

                accepted = dedupe_against_index(index, normalized)
                candidates.extend(accepted)
                logging.info(
                    "Sync page fetched",
                    extra={
                        "session_id": session.session_id,
                        "page_index": page_index,
                        "fetched": len(normalized),
                        "accepted": len(accepted),
                    },
                )

                if fetch.page.estimated_total is not None:
                    estimated_total = fetch.page.estimated_total
                session.pages_fetched = page_index + 1
                self.sink.stage_page(session, accepted, page_index, estimated_total)

                if on_progress is not None:
                    on_progress(
                        SyncProgress(
                            page_index=page_index,
                            operations_count=len(candidates),
                            pages_fetched=page_index + 1,
                            estimated_total=estimated_total,
                            retrieved_count=len(normalized),
                        )
                    )

                page_token = fetch.page.next_page_token or None
                page_index += 1
                if not page_token:
                    break

            if cancel_event is not None and cancel_event.is_set():
                return self._cancel(session)

            merge = merge_batch(baseline, candidates)
            logging.info(
                "Final merge",
                extra={
                    "session_id": session.session_id,
                    "baseline_count": len(baseline),
                    "candidate_count": len(candidates),
                    "merged_count": len(merge.merged),
                    "new_ops_count": merge.new_ops_count,
                },
            )

            session.status = SyncStatus.SUCCESS
            session.end_time = self._clock()
            session.operations_imported_count = merge.new_ops_count
            self.sink.commit(session, merge, evaluated)
            committed = True
            self._finish(session)

            return SyncResult(
                status=SyncStatus.SUCCESS,
                mode=mode,
                session_id=session.session_id,
                operations_added=merge.new_ops_count,
                new_orders_count=merge.new_orders_count,
                total_operations=len(merge.merged),
                pages_fetched=session.pages_fetched,
                evaluated_count=evaluated,
                retry_attempts=session.retry_attempts,
            )

        except asyncio.CancelledError:
            if session.status not in _CLOSED:
                self._cancel(session)
            raise
        except Exception as e:
            logging.error(f"Unexpected sync error: {e}", extra={"session_id": session.session_id})
            # _fail and _cancel mark the session closed before touching the sink
            if not committed and session.status not in _CLOSED:
                self._fail(session, str(e) or "SYNC_ERROR")
            raise

    def _fail_from_error(self, session: SyncSession, fetch: _PageFetch) -> SyncResult:
        if fetch.category == ErrorCategory.AUTH:
            return self._fail(session, "TOKEN_EXPIRED", needs_reauth=True)

        if fetch.category == ErrorCategory.RATE_LIMIT:
            wait_ms = parse_retry_after(fetch.error, self.rate_limit_default_ms)
            return self._fail(
                session,
                "RATE_LIMITED",
                session_error=f"RATE_LIMITED:{wait_ms}",
                rate_limited=True,
                rate_limit_ms=wait_ms,
            )

        return self._fail(session, str(fetch.error) or "SYNC_PAGE_ERROR")

    def _fail(
        self,
        session: SyncSession,
        error: str,
        session_error: Optional[str] = None,
        needs_reauth: bool = False,
        rate_limited: bool = False,
        rate_limit_ms: Optional[int] = None,
    ) -> SyncResult:
        session.status = SyncStatus.FAILED
        session.end_time = self._clock()
        session.error = session_error or error
        logging.warning(
            "Sync failed",
            extra={"session_id": session.session_id, "sync_error": session.error, "retry_attempts": session.retry_attempts},
        )
        self.sink.fail(session)
        self._finish(session)

        return SyncResult(
            status=SyncStatus.FAILED,
            mode=session.mode,
            session_id=session.session_id,
            pages_fetched=session.pages_fetched,
            retry_attempts=session.retry_attempts,
            error=error,
            needs_reauth=needs_reauth,
            rate_limited=rate_limited,
            rate_limit_ms=rate_limit_ms,
        )

    def _cancel(self, session: SyncSession) -> SyncResult:
        session.status = SyncStatus.CANCELED
        session.end_time = self._clock()
        session.operations_imported_count = 0
        logging.info("Sync canceled", extra={"session_id": session.session_id, "pages_fetched": session.pages_fetched})
        self.sink.cancel(session)
        self._finish(session)

        return SyncResult(
            status=SyncStatus.CANCELED,
            mode=session.mode,
            session_id=session.session_id,
            pages_fetched=session.pages_fetched,
            retry_attempts=session.retry_attempts,
        )

    def _finish(self, session: SyncSession) -> None:
        record_sync_outcome(
            mode=session.mode.value,
            status=session.status.value,
            pages_fetched=session.pages_fetched,
            retry_attempts=session.retry_attempts,
            imported=session.operations_imported_count,
        )
        log_sync_session(session)
