from __future__ import annotations

from collections.abc import Iterable
import logging
from typing import Protocol

from conflictlabeler.mergeability import StatusModel
from conflictlabeler.models import FileChange, Label, LabelAction, MergeStatus, PullRequest
from conflictlabeler.observability import log_event, log_warning_event
from conflictlabeler.pulls import has_merge_changes


LOGGER = logging.getLogger("conflictlabeler.labels")


class LabelGateway(Protocol):
    def add_label(self, label_id: str, labelable_id: str) -> None: ...

    def remove_label(self, label_id: str, labelable_id: str) -> None: ...

    def post_comment(self, subject_id: str, body: str) -> None: ...

    def list_pull_request_file_changes(self, pr_number: int) -> tuple[FileChange, ...]: ...

    def list_commit_file_changes(self, ref: str) -> tuple[FileChange, ...]: ...


class LabelNotFoundError(RuntimeError):
    pass


def find_label_by_name(labels: Iterable[Label], name: str) -> Label:
    for label in labels:
        if label.name == name:
            return label
    raise LabelNotFoundError(f'The label "{name}" was not found in your repository!')


def is_already_labeled(pull_request: PullRequest, label: Label) -> bool:
    return any(existing.id == label.id for existing in pull_request.labels)


def decide_label_action(
    status: MergeStatus,
    *,
    has_label: bool,
    soft_conflict: bool | None,
) -> LabelAction:
    """Map one pull request's state onto the single label action it needs.

    ``soft_conflict`` is ``None`` when soft-conflict detection is disabled. A hard
    conflict always wins, and an unknown status is left alone until a later run.
    """
    if status == "conflicting":
        return "noop" if has_label else "add"
    if status != "mergeable":
        return "noop"
    if soft_conflict:
        return "noop" if has_label else "add"
    return "remove" if has_label else "noop"


def update_pull_request_conflict_label(
    github: LabelGateway,
    pull_request: PullRequest,
    label: Label,
    *,
    status_model: StatusModel,
    detect_soft_conflicts: bool,
    comment_body: str | None = None,
    dry_run: bool = False,
) -> LabelAction:
    status = status_model.status_of(pull_request)
    has_label = is_already_labeled(pull_request, label)

    soft_conflict: bool | None = None
    if detect_soft_conflicts and status == "mergeable":
        if pull_request.potential_merge_commit_oid is None:
            log_event(
                LOGGER,
                "label_skipped",
                pr_number=pull_request.number,
                reason="merge_commit_pending",
            )
            return "noop"
        soft_conflict = has_merge_changes(github, pull_request)

    action = decide_label_action(status, has_label=has_label, soft_conflict=soft_conflict)
    if action == "noop":
        log_event(
            LOGGER,
            "label_skipped",
            pr_number=pull_request.number,
            status=status,
            has_label=has_label,
        )
        return action
    if dry_run:
        log_event(LOGGER, "label_dry_run", pr_number=pull_request.number, action=action)
        return action

    if action == "add":
        github.add_label(label.id, pull_request.id)
        log_event(LOGGER, "label_added", pr_number=pull_request.number, label=label.name)
        if comment_body is not None:
            _post_conflict_comment(github, pull_request, comment_body)
    else:
        github.remove_label(label.id, pull_request.id)
        log_event(LOGGER, "label_removed", pr_number=pull_request.number, label=label.name)
    return action


def _post_conflict_comment(github: LabelGateway, pull_request: PullRequest, body: str) -> None:
    try:
        github.post_comment(pull_request.id, body)
    except Exception as exc:  # noqa: BLE001
        log_warning_event(
            LOGGER,
            "conflict_comment_failed",
            pr_number=pull_request.number,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return
    log_event(LOGGER, "conflict_comment_posted", pr_number=pull_request.number)
