from __future__ import annotations

from hypothesis import given, strategies as st
import pytest

from conflictlabeler.github_gateway import GitHubApiError, MalformedDiffError
from conflictlabeler.labels import (
    LabelNotFoundError,
    decide_label_action,
    find_label_by_name,
    is_already_labeled,
    update_pull_request_conflict_label,
)
from conflictlabeler.mergeability import MERGE_STATE_STATUS_MODEL, MERGEABLE_MODEL
from conflictlabeler.models import FileChange, Label, MergeableState, MergeStatus, PullRequest


EXPECTED_LABEL = Label(id="MDU6TGFiZWwyNzYwMjE1ODI0", name="expected_label")
OTHER_LABEL = Label(id="MDU6TGFiZWwxMjUyNDcxNTgz", name="has conflicts")


def _pr(
    mergeable: MergeableState,
    *labels: Label,
    oid: str | None = "abc123",
) -> PullRequest:
    return PullRequest(
        id="MDExOlB1bGxSZXF1ZXN0NTc4ODgyNDUw",
        number=7,
        mergeable=mergeable,
        labels=labels,
        potential_merge_commit_oid=oid,
    )


class FakeGitHub:
    def __init__(
        self,
        *,
        pr_files: tuple[FileChange, ...] = (),
        merge_files: tuple[FileChange, ...] = (),
        fail_on: str | None = None,
    ) -> None:
        self.pr_files = pr_files
        self.merge_files = merge_files
        self.fail_on = fail_on
        self.calls: list[tuple[str, ...]] = []

    def add_label(self, label_id: str, labelable_id: str) -> None:
        self._record("add_label", label_id, labelable_id)

    def remove_label(self, label_id: str, labelable_id: str) -> None:
        self._record("remove_label", label_id, labelable_id)

    def post_comment(self, subject_id: str, body: str) -> None:
        self._record("post_comment", subject_id, body)

    def list_pull_request_file_changes(self, pr_number: int) -> tuple[FileChange, ...]:
        self._record("pr_files", str(pr_number))
        return self.pr_files

    def list_commit_file_changes(self, ref: str) -> tuple[FileChange, ...]:
        self.calls.append(("commit_files", ref))
        if self.fail_on == "commit_files":
            raise MalformedDiffError(f"Commit {ref} was returned without a file list")
        return self.merge_files

    def mutations(self) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[0] in {"add_label", "remove_label"}]

    def _record(self, name: str, *args: str) -> None:
        self.calls.append((name, *args))
        if self.fail_on == name:
            raise GitHubApiError(f"GitHub GraphQL request failed: {name} boom")


def test_find_label_by_name_single_label() -> None:
    assert find_label_by_name([EXPECTED_LABEL], "expected_label") is EXPECTED_LABEL


def test_find_label_by_name_among_many_labels() -> None:
    assert find_label_by_name([OTHER_LABEL, EXPECTED_LABEL], "expected_label") is EXPECTED_LABEL


def test_find_label_by_name_requires_exact_match() -> None:
    labels = [OTHER_LABEL, Label(id="1654984416", name="expected_label_v2")]
    with pytest.raises(LabelNotFoundError, match="expected_label"):
        find_label_by_name(labels, "expected_label")


def test_is_already_labeled_by_id() -> None:
    assert is_already_labeled(_pr("MERGEABLE", EXPECTED_LABEL), EXPECTED_LABEL) is True
    assert is_already_labeled(_pr("MERGEABLE", OTHER_LABEL, EXPECTED_LABEL), EXPECTED_LABEL)
    assert is_already_labeled(_pr("MERGEABLE"), EXPECTED_LABEL) is False
    assert is_already_labeled(_pr("MERGEABLE", OTHER_LABEL), EXPECTED_LABEL) is False
    assert (
        is_already_labeled(
            _pr("MERGEABLE", OTHER_LABEL, Label(id="other", name="some other label")),
            EXPECTED_LABEL,
        )
        is False
    )


def test_is_already_labeled_ignores_name_collisions() -> None:
    renamed = Label(id="different-id", name="expected_label")
    assert is_already_labeled(_pr("MERGEABLE", renamed), EXPECTED_LABEL) is False


@pytest.mark.parametrize(
    ("status", "soft_conflict", "has_label", "expected"),
    [
        ("conflicting", None, True, "noop"),
        ("conflicting", None, False, "add"),
        ("mergeable", None, True, "remove"),
        ("mergeable", None, False, "noop"),
        ("mergeable", True, True, "noop"),
        ("mergeable", True, False, "add"),
        ("mergeable", False, True, "remove"),
        ("mergeable", False, False, "noop"),
        ("unknown", None, True, "noop"),
        ("unknown", None, False, "noop"),
        ("unknown", True, False, "noop"),
        ("conflicting", False, True, "noop"),
        ("conflicting", False, False, "add"),
    ],
)
def test_decide_label_action_table(
    status: MergeStatus, soft_conflict: bool | None, has_label: bool, expected: str
) -> None:
    assert decide_label_action(status, has_label=has_label, soft_conflict=soft_conflict) == expected


@given(
    st.sampled_from(["conflicting", "mergeable", "unknown"]),
    st.booleans(),
    st.one_of(st.none(), st.booleans()),
)
def test_decide_label_action_is_a_pure_function(
    status: MergeStatus, has_label: bool, soft_conflict: bool | None
) -> None:
    first = decide_label_action(status, has_label=has_label, soft_conflict=soft_conflict)
    second = decide_label_action(status, has_label=has_label, soft_conflict=soft_conflict)
    assert first == second
    if first == "add":
        assert not has_label
    if first == "remove":
        assert has_label


def test_update_adds_label_to_conflicting_pull_request() -> None:
    github = FakeGitHub()

    action = update_pull_request_conflict_label(
        github,
        _pr("CONFLICTING"),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=False,
    )

    assert action == "add"
    assert github.calls == [
        ("add_label", "MDU6TGFiZWwyNzYwMjE1ODI0", "MDExOlB1bGxSZXF1ZXN0NTc4ODgyNDUw")
    ]


def test_update_does_nothing_when_conflicting_and_already_labeled() -> None:
    github = FakeGitHub()

    action = update_pull_request_conflict_label(
        github,
        _pr("CONFLICTING", EXPECTED_LABEL),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=True,
    )

    assert action == "noop"
    assert github.calls == []


def test_update_removes_label_when_mergeable_again() -> None:
    github = FakeGitHub()

    action = update_pull_request_conflict_label(
        github,
        _pr("MERGEABLE", EXPECTED_LABEL),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=False,
    )

    assert action == "remove"
    assert github.calls == [
        ("remove_label", "MDU6TGFiZWwyNzYwMjE1ODI0", "MDExOlB1bGxSZXF1ZXN0NTc4ODgyNDUw")
    ]


def test_update_does_nothing_when_mergeable_and_unlabeled() -> None:
    github = FakeGitHub()

    action = update_pull_request_conflict_label(
        github,
        _pr("MERGEABLE"),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=False,
    )

    assert action == "noop"
    assert github.calls == []


def test_update_defers_unknown_status() -> None:
    github = FakeGitHub()

    action = update_pull_request_conflict_label(
        github,
        _pr("UNKNOWN", EXPECTED_LABEL),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=True,
    )

    assert action == "noop"
    assert github.calls == []


def test_update_labels_soft_conflict() -> None:
    github = FakeGitHub(
        pr_files=(FileChange("a.py", "1"),),
        merge_files=(FileChange("a.py", "2"),),
    )

    action = update_pull_request_conflict_label(
        github,
        _pr("MERGEABLE"),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=True,
    )

    assert action == "add"
    assert github.calls[:2] == [("pr_files", "7"), ("commit_files", "abc123")]
    assert github.mutations() == [
        ("add_label", "MDU6TGFiZWwyNzYwMjE1ODI0", "MDExOlB1bGxSZXF1ZXN0NTc4ODgyNDUw")
    ]


def test_update_keeps_label_on_soft_conflict() -> None:
    github = FakeGitHub(
        pr_files=(FileChange("a.py", "1"), FileChange("b.py", "2")),
        merge_files=(FileChange("a.py", "1"),),
    )

    action = update_pull_request_conflict_label(
        github,
        _pr("MERGEABLE", EXPECTED_LABEL),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=True,
    )

    assert action == "noop"
    assert github.mutations() == []


def test_update_removes_label_when_merge_matches_diff() -> None:
    files = (FileChange("a.py", "1"),)
    github = FakeGitHub(pr_files=files, merge_files=files)

    action = update_pull_request_conflict_label(
        github,
        _pr("MERGEABLE", EXPECTED_LABEL),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=True,
    )

    assert action == "remove"
    assert github.mutations() == [
        ("remove_label", "MDU6TGFiZWwyNzYwMjE1ODI0", "MDExOlB1bGxSZXF1ZXN0NTc4ODgyNDUw")
    ]


def test_update_skips_soft_check_until_merge_commit_exists() -> None:
    github = FakeGitHub()

    action = update_pull_request_conflict_label(
        github,
        _pr("MERGEABLE", EXPECTED_LABEL, oid=None),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=True,
    )

    assert action == "noop"
    assert github.calls == []


def test_update_propagates_malformed_merge_diff() -> None:
    github = FakeGitHub(pr_files=(FileChange("a.py", "1"),), fail_on="commit_files")

    with pytest.raises(MalformedDiffError):
        update_pull_request_conflict_label(
            github,
            _pr("MERGEABLE", EXPECTED_LABEL),
            EXPECTED_LABEL,
            status_model=MERGEABLE_MODEL,
            detect_soft_conflicts=True,
        )
    assert github.mutations() == []


@pytest.mark.parametrize(
    ("mergeable", "labels", "fail_on"),
    [
        ("CONFLICTING", (), "add_label"),
        ("MERGEABLE", (EXPECTED_LABEL,), "remove_label"),
    ],
)
def test_update_propagates_mutation_failure(
    mergeable: MergeableState, labels: tuple[Label, ...], fail_on: str
) -> None:
    github = FakeGitHub(fail_on=fail_on)

    with pytest.raises(GitHubApiError, match="boom"):
        update_pull_request_conflict_label(
            github,
            _pr(mergeable, *labels),
            EXPECTED_LABEL,
            status_model=MERGEABLE_MODEL,
            detect_soft_conflicts=False,
        )


def test_update_posts_comment_after_adding_label() -> None:
    github = FakeGitHub()

    update_pull_request_conflict_label(
        github,
        _pr("CONFLICTING"),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=False,
        comment_body="please rebase",
    )

    assert [call[0] for call in github.calls] == ["add_label", "post_comment"]
    assert github.calls[1] == ("post_comment", "MDExOlB1bGxSZXF1ZXN0NTc4ODgyNDUw", "please rebase")


def test_update_comment_failure_does_not_fail_the_label_change() -> None:
    github = FakeGitHub(fail_on="post_comment")

    action = update_pull_request_conflict_label(
        github,
        _pr("CONFLICTING"),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=False,
        comment_body="please rebase",
    )

    assert action == "add"
    assert [call[0] for call in github.calls] == ["add_label", "post_comment"]


def test_update_does_not_comment_when_removing() -> None:
    github = FakeGitHub()

    update_pull_request_conflict_label(
        github,
        _pr("MERGEABLE", EXPECTED_LABEL),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=False,
        comment_body="please rebase",
    )

    assert [call[0] for call in github.calls] == ["remove_label"]


def test_update_dry_run_reports_action_without_mutation() -> None:
    github = FakeGitHub()

    action = update_pull_request_conflict_label(
        github,
        _pr("CONFLICTING"),
        EXPECTED_LABEL,
        status_model=MERGEABLE_MODEL,
        detect_soft_conflicts=False,
        comment_body="please rebase",
        dry_run=True,
    )

    assert action == "add"
    assert github.calls == []


def test_update_uses_merge_state_status_model() -> None:
    github = FakeGitHub()
    pull_request = PullRequest(
        id="PR_9",
        number=9,
        mergeable="UNKNOWN",
        merge_state_status="DIRTY",
    )

    action = update_pull_request_conflict_label(
        github,
        pull_request,
        EXPECTED_LABEL,
        status_model=MERGE_STATE_STATUS_MODEL,
        detect_soft_conflicts=False,
    )

    assert action == "add"
    assert github.calls == [("add_label", "MDU6TGFiZWwyNzYwMjE1ODI0", "PR_9")]
