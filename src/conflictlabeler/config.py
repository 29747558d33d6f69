from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import Final, cast

from conflictlabeler.mergeability import STATUS_MODEL_NAMES
from conflictlabeler.models import FailureMode


DEFAULT_COMMENT_BODY: Final[str] = (
    ":warning: There is a conflict on this PR. If you are the author, please solve it."
)
DEFAULT_WAIT_MS: Final[int] = 500
DEFAULT_MAX_RETRIES: Final[int] = 1
_TOKEN_ENV_KEYS: Final[tuple[str, ...]] = ("GH_TOKEN", "GITHUB_TOKEN")
_FAILURE_MODES: Final[tuple[str, ...]] = ("abort", "continue")


@dataclass(frozen=True)
class RepoConfig:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class LabelerConfig:
    conflict_label_name: str
    wait_ms: int = DEFAULT_WAIT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    detect_soft_conflicts: bool = False
    comment_body: str | None = None
    status_model: str = "mergeable"
    failure_mode: FailureMode = "continue"

    def comment_for(self, pr_number: int) -> str | None:
        if self.comment_body is None:
            return None
        return self.comment_body.replace("{number}", str(pr_number))


@dataclass(frozen=True)
class AppConfig:
    repo: RepoConfig
    labeler: LabelerConfig
    token: str | None = None


class ConfigError(ValueError):
    pass


def load_config(path: Path, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    repo_data = _require_table(data, "repo")
    labeler_data = _require_table(data, "labeler")

    repo = RepoConfig(
        owner=_require_str(repo_data, "owner"),
        name=_require_str(repo_data, "name"),
    )
    labeler = LabelerConfig(
        conflict_label_name=_require_str(labeler_data, "conflict_label_name"),
        wait_ms=_int_with_default(labeler_data, "wait_ms", DEFAULT_WAIT_MS),
        max_retries=_int_with_default(labeler_data, "max_retries", DEFAULT_MAX_RETRIES),
        detect_soft_conflicts=_bool_with_default(labeler_data, "detect_soft_conflicts", False),
        comment_body=_comment_body(labeler_data.get("comment_on_conflict", False)),
        status_model=_status_model_with_default(labeler_data, "status_model", "mergeable"),
        failure_mode=_failure_mode_with_default(labeler_data, "failure_mode", "continue"),
    )
    if labeler.wait_ms < 0:
        raise ConfigError("labeler.wait_ms must be >= 0")
    if labeler.max_retries < 1:
        raise ConfigError("labeler.max_retries must be >= 1")

    return AppConfig(repo=repo, labeler=labeler, token=_token_from_env(environ))


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """Build configuration from GitHub Actions ``INPUT_*`` variables."""
    label_name = _input(environ, "conflict_label_name")
    if not label_name:
        raise ConfigError("Input required and not supplied: conflict_label_name")
    token = _input(environ, "github_token") or _token_from_env(environ)
    if not token:
        raise ConfigError("Input required and not supplied: github_token")

    repository = environ.get("GITHUB_REPOSITORY", "").strip()
    owner, sep, name = repository.partition("/")
    if not sep or not owner or not name:
        raise ConfigError(f"GITHUB_REPOSITORY must look like owner/name, got {repository!r}")

    wait_ms = _parse_int(_input(environ, "wait_ms"))
    if wait_ms is None or wait_ms < 0:
        wait_ms = DEFAULT_WAIT_MS
    # Unset, non-numeric or non-positive retry counts fall back to a single attempt.
    max_retries = _parse_int(_input(environ, "max_retries"))
    if max_retries is None or max_retries < 1:
        max_retries = DEFAULT_MAX_RETRIES

    comment_raw = _input(environ, "comment_on_conflict")
    comment_value: object = comment_raw
    if comment_raw.lower() in {"", "false"}:
        comment_value = False
    elif comment_raw.lower() == "true":
        comment_value = True

    labeler = LabelerConfig(
        conflict_label_name=label_name,
        wait_ms=wait_ms,
        max_retries=max_retries,
        detect_soft_conflicts=_input(environ, "detect_merge_changes").lower() == "true",
        comment_body=_comment_body(comment_value),
        status_model=_parse_choice(
            _input(environ, "status_model") or "mergeable",
            key="status_model",
            choices=STATUS_MODEL_NAMES,
        ),
        failure_mode=cast(
            FailureMode,
            _parse_choice(
                _input(environ, "failure_mode") or "continue",
                key="failure_mode",
                choices=_FAILURE_MODES,
            ),
        ),
    )
    return AppConfig(repo=RepoConfig(owner=owner, name=name), labeler=labeler, token=token)


def _input(environ: Mapping[str, str], name: str) -> str:
    key = f"INPUT_{name.replace(' ', '_').upper()}"
    return environ.get(key, "").strip()


def _token_from_env(environ: Mapping[str, str] | None) -> str | None:
    if environ is None:
        return None
    for key in _TOKEN_ENV_KEYS:
        value = environ.get(key, "").strip()
        if value:
            return value
    return None


def _parse_int(raw: str) -> int | None:
    try:
        return int(raw, 10)
    except ValueError:
        return None


def _comment_body(value: object) -> str | None:
    if value is False:
        return None
    if value is True:
        return DEFAULT_COMMENT_BODY
    if isinstance(value, str) and value.strip():
        return value
    raise ConfigError("comment_on_conflict must be a boolean or a non-empty string")


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _status_model_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be one of: {', '.join(STATUS_MODEL_NAMES)}")
    return _parse_choice(value, key=key, choices=STATUS_MODEL_NAMES)


def _failure_mode_with_default(
    data: dict[str, object], key: str, default: FailureMode
) -> FailureMode:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be one of: {', '.join(_FAILURE_MODES)}")
    return cast(FailureMode, _parse_choice(value, key=key, choices=_FAILURE_MODES))


def _parse_choice(value: str, *, key: str, choices: tuple[str, ...]) -> str:
    normalized = value.strip().lower()
    if normalized not in choices:
        raise ConfigError(f"{key} must be one of: {', '.join(choices)}")
    return normalized
