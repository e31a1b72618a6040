"""Streaming version-trim engine.

One run walks the selected libraries of a single site, one page of items at a
time, and removes non-current file versions created before the cutoff. Work
is strictly sequential. Per-item and per-chunk failures are recorded and the
scan moves on; only configuration errors, the safety ceiling and an operator
stop end a run early, and those paths still persist run state and print a
summary. A remote failure before the scan starts (reading the version policy
or listing libraries) ends the run with a summary and no state change.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, List, Optional, Sequence, TypeVar

import httpx

from connector.runtime_config import TrimConfigError, TrimOptions
from connector.session import FileItem, FileVersion, Library, LibrarySession, RemoteError
from trimmer.checkpoints import STOP, AutoContinue, CheckpointGuard, ConsolePrompt, ContinuationPolicy
from trimmer.exception_sink import (
    ACTION_DELETE,
    ACTION_LOAD,
    ACTION_SKIP,
    RESULT_BLOCKED,
    RESULT_FAILED,
    RESULT_SKIPPED,
    ExceptionSink,
)
from trimmer.policy_gate import BLOCKED_POLICY, PolicyGate
from trimmer.progress_tracker import ProgressTracker
from trimmer.retry_utils import RetryConfig, is_policy_block, with_retry
from trimmer.run_state import RunStateStore, effective_dry_run, target_key
from trimmer.size_estimator import estimate_library_bytes, iter_item_pages
from trimmer.targets import matching_skip_token, read_skip_tokens, resolve_targets


LOGGER = logging.getLogger("versiontrim.engine")

T = TypeVar("T")

OUTCOME_COMPLETED = "completed"
OUTCOME_ABORTED_USER = "aborted_user"
OUTCOME_ABORTED_SAFETY = "aborted_safety"
OUTCOME_BLOCKED_POLICY = "blocked_policy"
OUTCOME_BLOCKED_COOLDOWN = "blocked_cooldown"
OUTCOME_FAILED_REMOTE = "failed_remote"

EXIT_SAFETY_ABORT = 3
EXIT_REMOTE_FAILURE = 4

REMOTE_ERRORS = (RemoteError, httpx.HTTPError)


class SafetyThresholdExceeded(RuntimeError):
    """The run reached its file-count ceiling."""


class RunAborted(RuntimeError):
    """The operator chose to stop at a checkpoint."""


@dataclass
class RunSummary:
    processed: int = 0
    files_with_old_versions: int = 0
    failed_or_blocked_deletes: int = 0
    skipped: int = 0
    versions_eligible: int = 0
    versions_deleted: int = 0
    size_before_bytes: Optional[int] = None
    size_after_bytes: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "filesWithOldVersions": self.files_with_old_versions,
            "failedOrBlockedDeletes": self.failed_or_blocked_deletes,
            "skipped": self.skipped,
            "versionsEligible": self.versions_eligible,
            "versionsDeleted": self.versions_deleted,
            "sizeBeforeBytes": self.size_before_bytes,
            "sizeAfterBytes": self.size_after_bytes,
        }


@dataclass(frozen=True)
class RunResult:
    outcome: str
    dry_run: bool
    summary: RunSummary
    message: str = ""

    @property
    def exit_code(self) -> int:
        if self.outcome == OUTCOME_ABORTED_SAFETY:
            return EXIT_SAFETY_ABORT
        if self.outcome == OUTCOME_FAILED_REMOTE:
            return EXIT_REMOTE_FAILURE
        return 0

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "dryRun": self.dry_run,
            "message": self.message,
            "summary": self.summary.to_dict(),
        }


@dataclass
class _ScanContext:
    """Per-run accumulator handed to every library and item step."""

    summary: RunSummary
    guard: CheckpointGuard
    cutoff: datetime
    dry_run: bool
    skip_tokens: List[str] = field(default_factory=list)
    stop_message: Optional[str] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def eligible_versions(versions: Sequence[FileVersion], cutoff: datetime) -> List[FileVersion]:
    """Non-current versions created strictly before the cutoff, oldest first."""
    eligible = [
        version
        for version in versions
        if not version.is_current and version.id is not None and version.created < cutoff
    ]
    return sorted(eligible, key=lambda version: version.created)


def classify_failure(error: BaseException) -> str:
    return RESULT_BLOCKED if is_policy_block(error) else RESULT_FAILED


def chunked(values: Sequence[T], size: int) -> Iterator[List[T]]:
    for start in range(0, len(values), size):
        yield list(values[start:start + size])


class TrimEngine:
    def __init__(
        self,
        session: Optional[LibrarySession],
        options: TrimOptions,
        state_store: Optional[RunStateStore] = None,
        sink: Optional[ExceptionSink] = None,
        continuation: Optional[ContinuationPolicy] = None,
        progress: Optional[ProgressTracker] = None,
        now: Optional[datetime] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if session is None:
            raise TrimConfigError("An established site session is required before trimming.")
        self.session = session
        self.options = options
        self.state_store = state_store or RunStateStore(options.state_dir)
        self.sink = sink or ExceptionSink(options.exception_log)
        self.continuation = continuation or (AutoContinue() if options.auto_continue else ConsolePrompt())
        self.progress = progress or ProgressTracker()
        self.now = now
        self.retry_config = RetryConfig(max_attempts=options.max_retries)
        self._clock = clock
        self._sleep = sleep

    @property
    def site_url(self) -> str:
        return self.session.site_url

    def _retry(self, operation: Callable[[], T], name: str) -> T:
        return with_retry(operation, self.retry_config, name, sleep=self._sleep)

    def run(self) -> RunResult:
        now = self.now or _utc_now()
        key = target_key(self.site_url)
        state = self.state_store.load(key)
        dry_run = effective_dry_run(state, self.options.delete)

        try:
            gate = PolicyGate(self.session, state, self.retry_config, now=now, sleep=self._sleep).check()
        except REMOTE_ERRORS as exc:
            return self._remote_failure(dry_run, "Version policy could not be read", exc)
        if gate.blocked:
            outcome = OUTCOME_BLOCKED_POLICY if gate.reason == BLOCKED_POLICY else OUTCOME_BLOCKED_COOLDOWN
            result = RunResult(outcome=outcome, dry_run=dry_run, summary=RunSummary(), message=gate.message)
            self._finish(result)
            return result

        if dry_run and self.options.delete:
            LOGGER.warning(
                "No dry run on record for this site; running as dry run despite the delete request",
                extra={"site": self.site_url, "mode": "dry-run"},
            )

        try:
            available = self._retry(self.session.list_libraries, "List libraries")
        except REMOTE_ERRORS as exc:
            return self._remote_failure(dry_run, "Libraries could not be listed", exc)
        libraries = resolve_targets(
            available,
            names=self.options.libraries,
            csv_path=self.options.libraries_csv,
            all_libraries=self.options.all_libraries,
        )
        self.progress.total_libraries = len(libraries)

        context = _ScanContext(
            summary=RunSummary(),
            guard=CheckpointGuard(
                self.continuation,
                every_files=self.options.pause_every_files,
                every_minutes=self.options.pause_every_minutes,
                clock=self._clock,
            ),
            cutoff=now - timedelta(days=self.options.older_than_days),
            dry_run=dry_run,
            skip_tokens=read_skip_tokens(self.options.skip_tokens_csv),
        )
        LOGGER.info(
            "Trimming %d librar%s; cutoff %s",
            len(libraries),
            "y" if len(libraries) == 1 else "ies",
            context.cutoff.isoformat(),
            extra={"site": self.site_url, "mode": "dry-run" if dry_run else "delete"},
        )

        if self.options.measure_size:
            context.summary.size_before_bytes = self._measure(libraries)

        outcome = OUTCOME_COMPLETED
        message = ""
        try:
            for library in libraries:
                self._raise_if_stopped(context)
                self._trim_library(library, context)
        except SafetyThresholdExceeded as exc:
            outcome = OUTCOME_ABORTED_SAFETY
            message = str(exc)
            LOGGER.error(message, extra={"site": self.site_url, "outcome": outcome})
        except RunAborted as exc:
            outcome = OUTCOME_ABORTED_USER
            message = str(exc)
            LOGGER.warning(message, extra={"site": self.site_url, "outcome": outcome})

        if outcome == OUTCOME_COMPLETED and context.stop_message:
            LOGGER.info(
                "Stop requested at the final checkpoint; the scan had already finished",
                extra={"site": self.site_url, "processed": context.summary.processed},
            )

        if self.options.measure_size and outcome != OUTCOME_ABORTED_SAFETY:
            context.summary.size_after_bytes = self._measure(libraries)

        self.state_store.record_run(key, self.site_url, state, dry_run, self.now or _utc_now())
        result = RunResult(outcome=outcome, dry_run=dry_run, summary=context.summary, message=message)
        self._finish(result)
        return result

    def _remote_failure(self, dry_run: bool, what: str, error: BaseException) -> RunResult:
        message = f"{what}; run ended before scanning: {error}"
        LOGGER.error(message, extra={"site": self.site_url, "outcome": OUTCOME_FAILED_REMOTE})
        result = RunResult(outcome=OUTCOME_FAILED_REMOTE, dry_run=dry_run, summary=RunSummary(), message=message)
        self._finish(result)
        return result

    def _measure(self, libraries: Sequence[Library]) -> Optional[int]:
        total = 0
        for library in libraries:
            try:
                total += estimate_library_bytes(
                    self.session,
                    library,
                    self.options.page_size,
                    self.retry_config,
                    sleep=self._sleep,
                )
            except Exception as exc:
                LOGGER.warning(
                    "Size measurement failed for '%s': %s",
                    library.title,
                    exc,
                    extra={"site": self.site_url, "library": library.title},
                )
                return None
        return total

    def _trim_library(self, library: Library, context: _ScanContext) -> None:
        self.progress.start_library(library.title)
        pages = iter_item_pages(
            self.session,
            library,
            self.options.page_size,
            self.retry_config,
            sleep=self._sleep,
        )
        while True:
            try:
                page = next(pages)
            except StopIteration:
                break
            except Exception as exc:
                self.sink.record(
                    self.site_url,
                    library.title,
                    library.root_url,
                    None,
                    ACTION_LOAD,
                    RESULT_FAILED,
                    f"Item page could not be read; library scan stopped: {exc}",
                )
                self.progress.report_error(library.title, str(exc))
                return
            for item in page.items:
                if item.is_file:
                    self._process_item(library, item, context)
        self.progress.complete_library(library.title)

    def _raise_if_stopped(self, context: _ScanContext) -> None:
        if context.stop_message:
            raise RunAborted(context.stop_message)

    def _process_item(self, library: Library, item: FileItem, context: _ScanContext) -> None:
        self._raise_if_stopped(context)
        summary = context.summary
        if summary.processed >= self.options.max_files:
            raise SafetyThresholdExceeded(
                f"Safety ceiling of {self.options.max_files} files reached in '{library.title}'; run aborted."
            )
        summary.processed += 1

        token = matching_skip_token(item.leaf_name, context.skip_tokens)
        if token:
            summary.skipped += 1
            self.sink.record(
                self.site_url,
                library.title,
                item.file_ref,
                item.id,
                ACTION_SKIP,
                RESULT_SKIPPED,
                f"File name matches skip token '{token}'",
            )
        else:
            self._trim_item(library, item, context)

        self.progress.file_processed(library.title, summary.processed)
        decision = context.guard.file_done(summary.processed, library.title, context.dry_run)
        if decision == STOP:
            # Takes effect when the next file or library arrives.
            context.stop_message = f"Run stopped at checkpoint after {summary.processed} files."

    def _trim_item(self, library: Library, item: FileItem, context: _ScanContext) -> None:
        summary = context.summary
        try:
            versions = self._retry(
                lambda: self.session.load_versions(library, item),
                f"Load versions for {item.file_ref}",
            )
        except Exception as exc:
            summary.skipped += 1
            self.sink.record(
                self.site_url, library.title, item.file_ref, item.id, ACTION_LOAD, RESULT_FAILED, str(exc)
            )
            return

        eligible = eligible_versions(versions, context.cutoff)
        if not eligible:
            return
        summary.files_with_old_versions += 1
        summary.versions_eligible += len(eligible)

        if context.dry_run:
            labels = ", ".join(version.label for version in eligible)
            self.sink.record(
                self.site_url,
                library.title,
                item.file_ref,
                item.id,
                ACTION_DELETE,
                RESULT_SKIPPED,
                f"Dry run: would delete {len(eligible)} version(s) created before "
                f"{context.cutoff.date().isoformat()} [{labels}]",
            )
            return

        for index, chunk in enumerate(chunked(eligible, self.options.version_batch_size)):
            if index and self.options.batch_pause_seconds > 0:
                self._sleep(self.options.batch_pause_seconds)
            version_ids = [version.id for version in chunk]
            try:
                self._retry(
                    lambda: self.session.delete_versions(library, item, version_ids),
                    f"Delete {len(version_ids)} version(s) of {item.file_ref}",
                )
            except Exception as exc:
                summary.failed_or_blocked_deletes += 1
                labels = ", ".join(version.label for version in chunk)
                self.sink.record(
                    self.site_url,
                    library.title,
                    item.file_ref,
                    item.id,
                    ACTION_DELETE,
                    classify_failure(exc),
                    f"Chunk {index + 1} [{labels}]: {exc}",
                )
                continue
            summary.versions_deleted += len(chunk)

    def _finish(self, result: RunResult) -> None:
        self.progress.print_summary(result.summary.to_dict(), result.outcome, result.dry_run)
        LOGGER.info(
            "Trim run finished: %s",
            result.outcome,
            extra={
                "site": self.site_url,
                "outcome": result.outcome,
                "mode": "dry-run" if result.dry_run else "delete",
                "processed": result.summary.processed,
            },
        )
