"""Read-through cache for the market summary report.

Fresh report (younger than the freshness window) → served as-is.
Stale or missing → regenerated from the latest news through the completion
collaborator. Concurrent misses share one generation (single-flight), and a
failed generation stores nothing, so the previous report stays in place.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from .errors import ReportUnavailableError
from .models import IngestionStats, Report, ReportResult
from .singleflight import SingleFlight
from .store import Clock, NewsStore, ReportStore, utc_now

logger = logging.getLogger(__name__)

Summarizer = Callable[[str, str], str]

REPORT_SYSTEM_PROMPT = (
    "You are a senior analyst based in Australia. Summarize these headlines in "
    "4 professional bullet points. Use ONLY the provided data."
)

CONTEXT_SEPARATOR = "\n---\n"

_GET_KEY = "report"
_REFRESH_KEY = "refresh"


def _to_result(report: Report, is_cached: bool) -> ReportResult:
    return ReportResult(report=report.report_text, timestamp=report.created_at, is_cached=is_cached)


class ReportCache:
    """Single "current report" slot backed by the append-only report table."""

    def __init__(
        self,
        news_store: NewsStore,
        report_store: ReportStore,
        summarize: Summarizer,
        freshness: timedelta = timedelta(hours=3),
        context_items: int = 15,
        ingest: Callable[[], IngestionStats] | None = None,
        wait_timeout: float | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.news_store = news_store
        self.report_store = report_store
        self.summarize = summarize
        self.freshness = freshness
        self.context_items = context_items
        self.ingest = ingest
        self.wait_timeout = wait_timeout
        self._clock = clock
        self._flights = SingleFlight(name="report")
        # at most one collaborator call per slot, whichever path triggered it
        self._generate_lock = threading.Lock()

    def _fresh_report(self) -> Report | None:
        report = self.report_store.latest()
        if report is None:
            return None
        if self._clock() - report.created_at >= self.freshness:
            return None
        return report

    def _wait(self, key: str, fn: Callable[[], ReportResult]) -> ReportResult:
        try:
            return self._flights.do(key, fn, timeout=self.wait_timeout)
        except FutureTimeoutError as exc:
            raise ReportUnavailableError(
                f"Timed out after {self.wait_timeout}s waiting for report"
            ) from exc
        except ReportUnavailableError:
            raise
        except Exception as exc:
            raise ReportUnavailableError(f"Report generation failed: {exc}") from exc

    def get(self) -> ReportResult:
        """Return the current report, regenerating it when stale."""
        try:
            report = self._fresh_report()
        except SQLAlchemyError as exc:
            raise ReportUnavailableError(f"Report lookup failed: {exc}") from exc
        if report is not None:
            logger.debug("Serving cached report %d", report.id)
            return _to_result(report, is_cached=True)
        return self._wait(_GET_KEY, self._get_or_generate)

    def _get_or_generate(self) -> ReportResult:
        with self._generate_lock:
            # a refresh or an earlier flight may have stored a report while we waited
            report = self._fresh_report()
            if report is not None:
                return _to_result(report, is_cached=True)
            return self._generate()

    def generate(self) -> ReportResult:
        """Summarize the latest news and persist a new report unconditionally."""
        with self._generate_lock:
            return self._generate()

    def _generate(self) -> ReportResult:
        news = self.news_store.query_latest(self.context_items)
        if not news:
            logger.warning("No news stored yet; generating report from empty context")
        context = CONTEXT_SEPARATOR.join(item.content for item in news)

        logger.info("Generating market report from %d items...", len(news))
        report_text = self.summarize(REPORT_SYSTEM_PROMPT, context)

        report = self.report_store.add(report_text)
        logger.info("Stored report %d (%d chars)", report.id, len(report_text))
        return _to_result(report, is_cached=False)

    def refresh_all(self) -> ReportResult:
        """Re-run ingestion, wait for it to finish, then force a new report."""
        return self._wait(_REFRESH_KEY, self._refresh)

    def _refresh(self) -> ReportResult:
        if self.ingest is not None:
            stats = self.ingest()
            if not stats.ok:
                logger.warning("Refresh ingestion could not run: %s", stats.setup_error)
        return self.generate()

    def close(self) -> None:
        self._flights.shutdown()
