from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import logging
import time
from typing import Literal, Protocol

from conflictlabeler.mergeability import StatusModel
from conflictlabeler.models import FileChange, PullRequest
from conflictlabeler.observability import log_event, log_warning_event


LOGGER = logging.getLogger("conflictlabeler.pulls")


class PullRequestSource(Protocol):
    def list_open_pull_requests(self) -> tuple[PullRequest, ...]: ...

    def get_pull_request(self, number: int) -> PullRequest: ...


class FileChangeSource(Protocol):
    def list_pull_request_file_changes(self, pr_number: int) -> tuple[FileChange, ...]: ...

    def list_commit_file_changes(self, ref: str) -> tuple[FileChange, ...]: ...


class SoftConflictCheckError(RuntimeError):
    pass


@dataclass(frozen=True)
class PollResult:
    pull_requests: tuple[PullRequest, ...]
    undetermined: tuple[int, ...] = ()
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return not self.undetermined

    def failure_message(self) -> str:
        numbers = ", ".join(f"#{number}" for number in self.undetermined)
        return f"Could not determine mergeable status for: {numbers}"


def gather_pull_requests(
    github: PullRequestSource,
    status_model: StatusModel,
    *,
    wait_ms: int,
    max_retries: int,
) -> PollResult:
    """Fetch every open pull request until each has a known merge status.

    GitHub computes mergeability lazily after a push to the base branch, so the
    first read often reports UNKNOWN. The whole open set is refetched on every
    attempt. At most
    ``max_retries`` fetches are made. Pull requests still unknown after the last
    one are reported in ``PollResult.undetermined`` rather than raised.
    """
    _validate_budget(wait_ms=wait_ms, max_retries=max_retries)
    attempt = 0
    pull_requests: tuple[PullRequest, ...] = ()
    unknown: tuple[int, ...] = ()
    while True:
        if attempt > 0:
            _wait(wait_ms, attempt=attempt, pending=unknown)
        attempt += 1
        pull_requests = github.list_open_pull_requests()
        unknown = tuple(pr.number for pr in pull_requests if status_model.is_unknown(pr))
        log_event(
            LOGGER,
            "poll_attempt",
            attempt=attempt,
            count=len(pull_requests),
            unknown_count=len(unknown),
        )
        if not unknown or attempt >= max_retries:
            break

    return _finish(pull_requests, unknown=unknown, attempts=attempt)


def gather_pull_request(
    github: PullRequestSource,
    status_model: StatusModel,
    number: int,
    *,
    mergeable_hint: bool | None,
    wait_ms: int,
    max_retries: int,
) -> PollResult:
    """Single pull request form of ``gather_pull_requests``.

    ``mergeable_hint`` is the ``mergeable`` value carried by the triggering event.
    When it is not a definite bool, GitHub has not computed it yet and the first
    fetch is delayed by one wait as well.
    """
    _validate_budget(wait_ms=wait_ms, max_retries=max_retries)
    attempt = 0
    while True:
        if attempt > 0 or not isinstance(mergeable_hint, bool):
            _wait(wait_ms, attempt=attempt, pending=(number,))
        attempt += 1
        pull_request = github.get_pull_request(number)
        unknown = status_model.is_unknown(pull_request)
        log_event(
            LOGGER,
            "poll_attempt",
            attempt=attempt,
            pr_number=number,
            status=status_model.status_of(pull_request),
        )
        if not unknown or attempt >= max_retries:
            break

    return _finish(
        (pull_request,),
        unknown=(pull_request.number,) if unknown else (),
        attempts=attempt,
    )


def file_changes_differ(
    pr_files: Sequence[FileChange],
    merge_files: Sequence[FileChange],
) -> bool:
    """True when the merge commit touches different content than the pull request diff.

    Listings are compared by filename, not by position; GitHub does not promise the
    same order for the pull request files endpoint and the commit endpoint.
    """
    return _difference_reason(pr_files, merge_files) is not None


def has_merge_changes(github: FileChangeSource, pull_request: PullRequest) -> bool:
    oid = pull_request.potential_merge_commit_oid
    if oid is None:
        raise SoftConflictCheckError(
            f"Pull request #{pull_request.number} has no potential merge commit"
        )
    pr_files = github.list_pull_request_file_changes(pull_request.number)
    merge_files = github.list_commit_file_changes(oid)

    reason = _difference_reason(pr_files, merge_files)
    if reason is None:
        return False
    log_event(
        LOGGER,
        "soft_conflict_detected",
        pr_number=pull_request.number,
        reason=reason,
        pr_file_count=len(pr_files),
        merge_file_count=len(merge_files),
    )
    return True


def _difference_reason(
    pr_files: Sequence[FileChange],
    merge_files: Sequence[FileChange],
) -> Literal["file_count", "sha_mismatch"] | None:
    if len(pr_files) != len(merge_files):
        return "file_count"
    pr_shas = {change.filename: change.sha for change in pr_files}
    merge_shas = {change.filename: change.sha for change in merge_files}
    if pr_shas != merge_shas:
        return "sha_mismatch"
    return None


def _validate_budget(*, wait_ms: int, max_retries: int) -> None:
    if wait_ms < 0:
        raise ValueError("wait_ms must be >= 0")
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")


def _wait(wait_ms: int, *, attempt: int, pending: tuple[int, ...]) -> None:
    log_event(LOGGER, "poll_waiting", attempt=attempt, wait_ms=wait_ms, pending=pending)
    time.sleep(wait_ms / 1000)


def _finish(
    pull_requests: tuple[PullRequest, ...],
    *,
    unknown: tuple[int, ...],
    attempts: int,
) -> PollResult:
    result = PollResult(pull_requests=pull_requests, undetermined=unknown, attempts=attempts)
    if not result.ok:
        log_warning_event(
            LOGGER,
            "poll_exhausted",
            attempts=attempts,
            undetermined=unknown,
        )
    return result
