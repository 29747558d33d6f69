from __future__ import annotations

from dataclasses import dataclass
import logging

from conflictlabeler.config import AppConfig
from conflictlabeler.events import TriggerEvent
from conflictlabeler.github_gateway import GitHubGateway
from conflictlabeler.labels import find_label_by_name, update_pull_request_conflict_label
from conflictlabeler.mergeability import status_model_for
from conflictlabeler.models import Label, LabelAction
from conflictlabeler.observability import log_event, log_warning_event
from conflictlabeler.pulls import PollResult, gather_pull_request, gather_pull_requests


LOGGER = logging.getLogger("conflictlabeler.runner")


@dataclass(frozen=True)
class RunReport:
    actions: tuple[tuple[int, LabelAction], ...]
    undetermined: tuple[int, ...] = ()
    failed: tuple[int, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.undetermined and not self.failed

    def failure_message(self) -> str:
        parts: list[str] = []
        if self.undetermined:
            numbers = ", ".join(f"#{number}" for number in self.undetermined)
            parts.append(f"Could not determine mergeable status for: {numbers}")
        if self.failed:
            numbers = ", ".join(f"#{number}" for number in self.failed)
            parts.append(f"Failed to update the conflict label on: {numbers}")
        return "; ".join(parts)


class ConflictLabelRunner:
    def __init__(
        self,
        config: AppConfig,
        *,
        github: GitHubGateway,
        event: TriggerEvent,
        dry_run: bool = False,
    ) -> None:
        self._config = config
        self._github = github
        self._event = event
        self._dry_run = dry_run
        self._status_model = status_model_for(config.labeler.status_model)

    def run(self) -> RunReport:
        labeler = self._config.labeler
        label = self.resolve_conflict_label()

        number = self._event.pull_request_number
        if self._event.targets_single_pull_request and number is not None:
            poll = gather_pull_request(
                self._github,
                self._status_model,
                number,
                mergeable_hint=self._event.mergeable_hint,
                wait_ms=labeler.wait_ms,
                max_retries=labeler.max_retries,
            )
        else:
            poll = gather_pull_requests(
                self._github,
                self._status_model,
                wait_ms=labeler.wait_ms,
                max_retries=labeler.max_retries,
            )

        report = self._update_labels(poll, label)
        log_event(
            LOGGER,
            "run_finished",
            event_name=self._event.name,
            ok=report.ok,
            added=sum(1 for _, action in report.actions if action == "add"),
            removed=sum(1 for _, action in report.actions if action == "remove"),
            undetermined=report.undetermined,
            failed=report.failed,
        )
        return report

    def resolve_conflict_label(self) -> Label:
        name = self._config.labeler.conflict_label_name
        label = find_label_by_name(self._github.list_labels(name), name)
        log_event(LOGGER, "labels_resolved", label=label.name, label_id=label.id)
        return label

    def _update_labels(self, poll: PollResult, label: Label) -> RunReport:
        labeler = self._config.labeler
        actions: list[tuple[int, LabelAction]] = []
        failed: list[int] = []
        for pull_request in poll.pull_requests:
            try:
                action = update_pull_request_conflict_label(
                    self._github,
                    pull_request,
                    label,
                    status_model=self._status_model,
                    detect_soft_conflicts=labeler.detect_soft_conflicts,
                    comment_body=labeler.comment_for(pull_request.number),
                    dry_run=self._dry_run,
                )
            except Exception as exc:  # noqa: BLE001
                log_warning_event(
                    LOGGER,
                    "pull_request_update_failed",
                    pr_number=pull_request.number,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                if labeler.failure_mode == "abort":
                    raise
                failed.append(pull_request.number)
                continue
            actions.append((pull_request.number, action))
        return RunReport(
            actions=tuple(actions),
            undetermined=poll.undetermined,
            failed=tuple(failed),
        )
