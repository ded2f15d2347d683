"""
Pager — walks the NSU cursor across consecutive distribution pages.

Caller-side helper: the core pipeline performs exactly one request and
never retries. The pager repeats it, advancing the cursor to each page's
ultNSU, until the service reports no more documents.

Stop conditions:
  - a status other than 138 (137 "no documents", 656 "consumption" ...)
  - ultNSU == maxNSU (caught up)
  - a cursor that did not advance (the service would loop forever)
  - max_pages reached
  - a failure that is not transient

Transient failures (TRANSPORT_ERROR, TIMEOUT_ERROR) are retried per page
with tenacity's exponential backoff.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from nfe_distribution.domain.models import DistributionResult, DocumentRecord, PagedBatch
from nfe_distribution.result import ErrorCode, Result

log = structlog.get_logger()

TRANSIENT_CODES = frozenset({ErrorCode.TRANSPORT_ERROR, ErrorCode.TIMEOUT_ERROR})

type PageFetcher = Callable[[int], Result[DistributionResult]]


def _is_transient(result: Result[DistributionResult]) -> bool:
    return result.is_failure() and result.error().code in TRANSIENT_CODES


def _log_retry(state: RetryCallState) -> None:
    outcome = state.outcome.result() if state.outcome else None
    log.warning(
        "pager.retrying",
        attempt=state.attempt_number,
        error=outcome.error().message if outcome is not None else None,
    )


def _last_result(state: RetryCallState) -> Result[DistributionResult]:
    """Give up by returning the final failed Result instead of raising RetryError."""
    assert state.outcome is not None
    return state.outcome.result()


class DistributionPager:
    """
    Collect every document available from a starting cursor.

    `fetch_page` performs one call for a given cursor — typically
    fetch_documents bound to a certificate, tax ID and state.
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        max_pages: int = 50,
        attempts: int = 3,
        backoff_multiplier: float = 1.0,
        backoff_max: float = 30.0,
    ) -> None:
        if max_pages < 1:
            raise ValueError(f"max_pages must be at least 1, got {max_pages}")
        self._fetch_page = fetch_page
        self._max_pages = max_pages
        self._retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=backoff_multiplier, min=0, max=backoff_max),
            retry=retry_if_result(_is_transient),
            before_sleep=_log_retry,
            retry_error_callback=_last_result,
        )

    def fetch_page(self, nsu: int) -> Result[DistributionResult]:
        """One page, with transient failures retried."""
        return self._retrying(self._fetch_page, nsu)

    def collect(self, start_nsu: int = 0) -> Result[PagedBatch]:
        documents: list[DocumentRecord] = []
        cursor = start_nsu
        pages = 0

        while True:
            page_result = self.fetch_page(cursor)
            if page_result.is_failure():
                return Result.failure_from(page_result.error())

            page = page_result.value()
            pages += 1
            documents.extend(page.documents)
            log.info(
                "pager.page",
                page=pages,
                cursor=cursor,
                status=page.status_code,
                documents=len(page.documents),
                last_nsu=page.last_nsu,
                max_nsu=page.max_nsu,
            )

            next_cursor = page.last_nsu if page.last_nsu else cursor
            if not page.documents_found or not page.has_more:
                break
            if next_cursor <= cursor:
                log.warning("pager.cursor_stalled", cursor=cursor, last_nsu=page.last_nsu)
                break
            if pages >= self._max_pages:
                log.info("pager.max_pages_reached", max_pages=self._max_pages)
                break
            cursor = next_cursor

        return Result.success(
            PagedBatch(
                documents=tuple(documents),
                last_nsu=next_cursor,
                max_nsu=page.max_nsu,
                status_code=page.status_code,
                status_reason=page.status_reason,
                pages=pages,
            )
        )
