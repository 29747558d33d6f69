from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import cast


@dataclass(frozen=True)
class TriggerEvent:
    name: str
    pull_request_number: int | None = None
    mergeable_hint: bool | None = None

    @property
    def targets_single_pull_request(self) -> bool:
        return self.name == "pull_request" and self.pull_request_number is not None


def load_event(name: str, path: Path | None) -> TriggerEvent:
    if path is None or not path.exists():
        return TriggerEvent(name=name)
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Event payload at {path} must be a JSON object")
    return event_from_payload(name, cast(dict[str, object], payload))


def event_from_payload(name: str, payload: dict[str, object]) -> TriggerEvent:
    pull_request = payload.get("pull_request")
    if not isinstance(pull_request, dict):
        return TriggerEvent(name=name)

    number = payload.get("number", pull_request.get("number"))
    if isinstance(number, bool) or not isinstance(number, int):
        number = None
    mergeable = pull_request.get("mergeable")
    return TriggerEvent(
        name=name,
        pull_request_number=number,
        mergeable_hint=mergeable if isinstance(mergeable, bool) else None,
    )
