from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


MergeableState = Literal["CONFLICTING", "MERGEABLE", "UNKNOWN"]
MergeStateStatus = Literal[
    "BEHIND",
    "BLOCKED",
    "CLEAN",
    "DIRTY",
    "DRAFT",
    "HAS_HOOKS",
    "UNKNOWN",
    "UNSTABLE",
]
MergeStatus = Literal["conflicting", "mergeable", "unknown"]
LabelAction = Literal["add", "remove", "noop"]
FailureMode = Literal["continue", "abort"]

MERGEABLE_STATES: frozenset[str] = frozenset({"CONFLICTING", "MERGEABLE", "UNKNOWN"})
MERGE_STATE_STATUSES: frozenset[str] = frozenset(
    {"BEHIND", "BLOCKED", "CLEAN", "DIRTY", "DRAFT", "HAS_HOOKS", "UNKNOWN", "UNSTABLE"}
)


@dataclass(frozen=True)
class Label:
    id: str
    name: str


@dataclass(frozen=True)
class FileChange:
    filename: str
    sha: str


@dataclass(frozen=True)
class PullRequest:
    id: str
    number: int
    mergeable: MergeableState
    labels: tuple[Label, ...] = ()
    merge_state_status: MergeStateStatus | None = None
    potential_merge_commit_oid: str | None = None
