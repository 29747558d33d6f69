"""Normalize the host's mergeability fields into one canonical status.

GitHub exposes two overlapping signals: the tri-state ``mergeable`` field and
the richer ``mergeStateStatus`` enum. A run picks one ``StatusModel`` up front
and every other component only ever sees a ``MergeStatus``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Final

from conflictlabeler.models import MergeStatus, PullRequest


_MERGEABLE_TO_STATUS: Final[dict[str, MergeStatus]] = {
    "CONFLICTING": "conflicting",
    "MERGEABLE": "mergeable",
    "UNKNOWN": "unknown",
}

# Policy gates (review, checks, branch freshness, draft) are not conflicts.
_MERGE_STATE_TO_STATUS: Final[dict[str, MergeStatus]] = {
    "DIRTY": "conflicting",
    "UNKNOWN": "unknown",
    "CLEAN": "mergeable",
    "BEHIND": "mergeable",
    "BLOCKED": "mergeable",
    "DRAFT": "mergeable",
    "HAS_HOOKS": "mergeable",
    "UNSTABLE": "mergeable",
}


@dataclass(frozen=True)
class StatusModel:
    name: str
    classify: Callable[[PullRequest], MergeStatus]

    def status_of(self, pull_request: PullRequest) -> MergeStatus:
        return self.classify(pull_request)

    def is_unknown(self, pull_request: PullRequest) -> bool:
        return self.classify(pull_request) == "unknown"


def _from_mergeable(pull_request: PullRequest) -> MergeStatus:
    return _MERGEABLE_TO_STATUS.get(pull_request.mergeable, "unknown")


def _from_merge_state_status(pull_request: PullRequest) -> MergeStatus:
    if pull_request.merge_state_status is None:
        return "unknown"
    return _MERGE_STATE_TO_STATUS.get(pull_request.merge_state_status, "unknown")


def _from_both(pull_request: PullRequest) -> MergeStatus:
    statuses = (_from_mergeable(pull_request), _from_merge_state_status(pull_request))
    if "conflicting" in statuses:
        return "conflicting"
    if "unknown" in statuses:
        return "unknown"
    return "mergeable"


MERGEABLE_MODEL: Final[StatusModel] = StatusModel(name="mergeable", classify=_from_mergeable)
MERGE_STATE_STATUS_MODEL: Final[StatusModel] = StatusModel(
    name="merge_state_status", classify=_from_merge_state_status
)
COMBINED_MODEL: Final[StatusModel] = StatusModel(name="combined", classify=_from_both)

_MODELS_BY_NAME: Final[dict[str, StatusModel]] = {
    model.name: model for model in (MERGEABLE_MODEL, MERGE_STATE_STATUS_MODEL, COMBINED_MODEL)
}
STATUS_MODEL_NAMES: Final[tuple[str, ...]] = tuple(sorted(_MODELS_BY_NAME))


def status_model_for(name: str) -> StatusModel:
    normalized = name.strip().lower()
    model = _MODELS_BY_NAME.get(normalized)
    if model is None:
        raise ValueError(
            f"Unknown status model {name!r}; expected one of: {', '.join(STATUS_MODEL_NAMES)}"
        )
    return model
