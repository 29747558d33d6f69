from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Final, cast
from urllib.parse import urlencode

from conflictlabeler.models import (
    MERGE_STATE_STATUSES,
    MERGEABLE_STATES,
    FileChange,
    Label,
    MergeableState,
    MergeStateStatus,
    PullRequest,
)
from conflictlabeler.observability import log_event
from conflictlabeler.shell import CommandError, run


LOGGER = logging.getLogger("conflictlabeler.github_gateway")
_PAGE_SIZE: Final[int] = 100

_PULL_REQUEST_FIELDS: Final[str] = """
        id
        number
        mergeable
        mergeStateStatus
        potentialMergeCommit {
          oid
        }
        labels(first: 100) {
          edges {
            node {
              id
              name
            }
          }
        }
"""

_OPEN_PULL_REQUESTS_QUERY: Final[str] = (
    """
query ($owner: String!, $repo: String!, $after: String) {
  repository(owner: $owner, name: $repo) {
    pullRequests(first: 100, states: OPEN, after: $after) {
      edges {
        node {"""
    + _PULL_REQUEST_FIELDS
    + """        }
      }
      pageInfo {
        endCursor
        hasNextPage
      }
    }
  }
}
"""
)

_PULL_REQUEST_QUERY: Final[str] = (
    """
query ($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {"""
    + _PULL_REQUEST_FIELDS
    + """    }
  }
}
"""
)

_LABELS_QUERY: Final[str] = """
query ($owner: String!, $repo: String!, $query: String!) {
  repository(owner: $owner, name: $repo) {
    labels(first: 100, query: $query) {
      edges {
        node {
          id
          name
        }
      }
    }
  }
}
"""

_ADD_LABEL_MUTATION: Final[str] = """
mutation ($label: ID!, $labelable: ID!) {
  addLabelsToLabelable(input: {labelIds: [$label], labelableId: $labelable}) {
    clientMutationId
  }
}
"""

_REMOVE_LABEL_MUTATION: Final[str] = """
mutation ($label: ID!, $labelable: ID!) {
  removeLabelsFromLabelable(input: {labelIds: [$label], labelableId: $labelable}) {
    clientMutationId
  }
}
"""

_ADD_COMMENT_MUTATION: Final[str] = """
mutation ($subject: ID!, $body: String!) {
  addComment(input: {subjectId: $subject, body: $body}) {
    clientMutationId
  }
}
"""


class GitHubApiError(RuntimeError):
    """GitHub answered, but not with something we can use."""


class MalformedDiffError(GitHubApiError):
    """A commit payload arrived without its file list."""


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    token: str | None = field(default=None, repr=False)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def list_labels(self, query: str) -> tuple[Label, ...]:
        data = self._graphql(_LABELS_QUERY, {"query": query})
        repository = _require_object(data.get("repository"), what="repository")
        labels_obj = _require_object(repository.get("labels"), what="labels")
        labels = tuple(_parse_label(node) for node in _edge_nodes(labels_obj))
        log_event(LOGGER, "github_read", endpoint="labels", query=query, count=len(labels))
        return labels

    def list_open_pull_requests(self) -> tuple[PullRequest, ...]:
        pull_requests: list[PullRequest] = []
        cursor: str | None = None
        pages = 0
        while True:
            data = self._graphql(_OPEN_PULL_REQUESTS_QUERY, {"after": cursor})
            repository = _require_object(data.get("repository"), what="repository")
            connection = _require_object(repository.get("pullRequests"), what="pullRequests")
            pull_requests.extend(_parse_pull_request(node) for node in _edge_nodes(connection))
            pages += 1

            page_info = _require_object(connection.get("pageInfo"), what="pageInfo")
            if page_info.get("hasNextPage") is not True:
                break
            end_cursor = page_info.get("endCursor")
            if not isinstance(end_cursor, str) or not end_cursor:
                raise GitHubApiError("Unexpected GitHub response: hasNextPage without endCursor")
            cursor = end_cursor

        log_event(
            LOGGER,
            "github_read",
            endpoint="open_pull_requests",
            pages=pages,
            count=len(pull_requests),
        )
        return tuple(pull_requests)

    def get_pull_request(self, number: int) -> PullRequest:
        data = self._graphql(_PULL_REQUEST_QUERY, {"number": number})
        repository = _require_object(data.get("repository"), what="repository")
        pull_request = _parse_pull_request(repository.get("pullRequest"))
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            pr_number=pull_request.number,
            mergeable=pull_request.mergeable,
        )
        return pull_request

    def add_label(self, label_id: str, labelable_id: str) -> None:
        self._mutate(
            "label_add",
            _ADD_LABEL_MUTATION,
            {"label": label_id, "labelable": labelable_id},
        )

    def remove_label(self, label_id: str, labelable_id: str) -> None:
        self._mutate(
            "label_remove",
            _REMOVE_LABEL_MUTATION,
            {"label": label_id, "labelable": labelable_id},
        )

    def post_comment(self, subject_id: str, body: str) -> None:
        self._mutate("comment_add", _ADD_COMMENT_MUTATION, {"subject": subject_id, "body": body})

    def list_pull_request_file_changes(self, pr_number: int) -> tuple[FileChange, ...]:
        changes: list[FileChange] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/files?{query}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubApiError(
                    "Unexpected GitHub response: expected list of pull request files"
                )
            changes.extend(_parse_file_changes(payload))
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_files",
            pr_number=pr_number,
            count=len(changes),
        )
        return tuple(changes)

    def list_commit_file_changes(self, ref: str) -> tuple[FileChange, ...]:
        changes: list[FileChange] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{self.owner}/{self.name}/commits/{ref}?{query}"
            payload_obj = _as_object_dict(self._api_json("GET", path))
            if payload_obj is None:
                raise GitHubApiError("Unexpected GitHub response: expected object for commit")
            files = payload_obj.get("files")
            if not isinstance(files, list):
                raise MalformedDiffError(f"Commit {ref} was returned without a file list")
            changes.extend(_parse_file_changes(files))
            if len(files) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="commit_files",
            ref=ref,
            count=len(changes),
        )
        return tuple(changes)

    def _mutate(self, operation: str, mutation: str, variables: dict[str, object]) -> None:
        try:
            self._graphql(mutation, variables, repo_scoped=False)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_write_failed",
                repo_full_name=self.full_name,
                operation=operation,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_write", repo_full_name=self.full_name, operation=operation)

    def _env(self) -> dict[str, str] | None:
        if not self.token:
            return None
        return {"GH_TOKEN": self.token}

    def _run_gh(self, cmd: list[str], *, input_text: str | None = None) -> str:
        try:
            return run(cmd, input_text=input_text, env=self._env())
        except CommandError as exc:
            # gh exits non-zero on API-level failures but still prints the response.
            if exc.stdout.strip():
                return exc.stdout
            message = exc.stderr.strip() or f"gh exited with status {exc.returncode}"
            raise GitHubApiError(f"gh api failed: {message}") from exc

    def _graphql(
        self, query: str, variables: dict[str, object], *, repo_scoped: bool = True
    ) -> dict[str, object]:
        if repo_scoped:
            variables = {"owner": self.owner, "repo": self.name, **variables}
        body = {"query": query, "variables": variables}
        raw = self._run_gh(["gh", "api", "graphql", "--input", "-"], input_text=json.dumps(body))
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise GitHubApiError(
                f"Unexpected GitHub GraphQL response: {_preview_for_log(raw)}"
            ) from exc
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub GraphQL response: expected object")

        errors = payload_obj.get("errors")
        if isinstance(errors, list) and errors:
            messages = [
                _as_string(error_obj.get("message"))
                for error in errors
                if (error_obj := _as_object_dict(error)) is not None
            ]
            raise GitHubApiError(f"GitHub GraphQL request failed: {'; '.join(messages)}")

        data = _as_object_dict(payload_obj.get("data"))
        if data is None:
            message = _as_string(payload_obj.get("message")) or "missing data"
            raise GitHubApiError(f"GitHub GraphQL request failed: {message}")
        return data

    def _api_json(self, method: str, path: str) -> object:
        method_upper = method.upper()
        if method_upper != "GET":
            raise ValueError("_api_json only supports GET; writes go through GraphQL")
        cmd = ["gh", "api", "--method", method_upper, "--include", path]
        raw = self._run_gh(cmd)
        try:
            status_code, _headers, body = _parse_http_response(raw)
            if status_code < 200 or status_code >= 300:
                message = body.strip() or "<empty>"
                raise GitHubApiError(
                    f"GitHub API request failed with status {status_code}: {message}"
                )
            return json.loads(body)
        except Exception as exc:
            log_event(
                LOGGER,
                "github_get_failed",
                path=path,
                error_type=type(exc).__name__,
                error=str(exc),
                raw_preview=_preview_for_log(raw),
            )
            if isinstance(exc, GitHubApiError):
                raise
            raise GitHubApiError(f"GitHub GET failed for path {path}: {exc}") from exc


def _parse_pull_request(node: object) -> PullRequest:
    node_obj = _require_object(node, what="pull request")
    mergeable = _as_string(node_obj.get("mergeable")).upper()
    if mergeable not in MERGEABLE_STATES:
        raise GitHubApiError(f"Unexpected GitHub mergeable value: {mergeable!r}")

    merge_state_raw = node_obj.get("mergeStateStatus")
    merge_state_status: MergeStateStatus | None = None
    if merge_state_raw is not None:
        normalized = _as_string(merge_state_raw).upper()
        if normalized not in MERGE_STATE_STATUSES:
            raise GitHubApiError(f"Unexpected GitHub mergeStateStatus value: {normalized!r}")
        merge_state_status = cast(MergeStateStatus, normalized)

    potential = _as_object_dict(node_obj.get("potentialMergeCommit"))
    oid = potential.get("oid") if potential is not None else None

    labels_obj = _as_object_dict(node_obj.get("labels"))
    labels = (
        tuple(_parse_label(label) for label in _edge_nodes(labels_obj))
        if labels_obj is not None
        else ()
    )

    return PullRequest(
        id=_require_str(node_obj.get("id"), what="id"),
        number=_as_int(node_obj.get("number"), field="number"),
        mergeable=cast(MergeableState, mergeable),
        labels=labels,
        merge_state_status=merge_state_status,
        potential_merge_commit_oid=oid if isinstance(oid, str) and oid else None,
    )


def _parse_label(node: object) -> Label:
    node_obj = _require_object(node, what="label")
    return Label(
        id=_require_str(node_obj.get("id"), what="label id"),
        name=_as_string(node_obj.get("name")),
    )


def _parse_file_changes(items: list[object]) -> list[FileChange]:
    changes: list[FileChange] = []
    for item in items:
        item_obj = _as_object_dict(item)
        if item_obj is None:
            continue
        filename = item_obj.get("filename")
        if not isinstance(filename, str) or not filename:
            continue
        changes.append(FileChange(filename=filename, sha=_as_string(item_obj.get("sha"))))
    return changes


def _edge_nodes(connection: dict[str, object]) -> list[object]:
    edges = connection.get("edges")
    if not isinstance(edges, list):
        raise GitHubApiError("Unexpected GitHub response: expected edges list")
    nodes: list[object] = []
    for edge in edges:
        edge_obj = _as_object_dict(edge)
        if edge_obj is None:
            continue
        nodes.append(edge_obj.get("node"))
    return nodes


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise GitHubApiError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _require_object(value: object, *, what: str) -> dict[str, object]:
    value_obj = _as_object_dict(value)
    if value_obj is None:
        raise GitHubApiError(f"Unexpected GitHub response: expected object for {what}")
    return value_obj


def _require_str(value: object, *, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise GitHubApiError(f"Unexpected GitHub response: missing {what}")
    return value


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")
