# Where: teamcity_reporter/messages.py
# What: TeamCity service message types, value escaping and line encoding.
# Why: Produce deterministic single-line records regardless of value content.
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from teamcity_reporter.naming import derive_name

MESSAGE_SUITE_STARTED = "testSuiteStarted"
MESSAGE_SUITE_FINISHED = "testSuiteFinished"
MESSAGE_TEST_STARTED = "testStarted"
MESSAGE_TEST_FAILED = "testFailed"
MESSAGE_TEST_IGNORED = "testIgnored"
MESSAGE_TEST_FINISHED = "testFinished"

MESSAGE_TYPES = frozenset(
    {
        MESSAGE_SUITE_STARTED,
        MESSAGE_SUITE_FINISHED,
        MESSAGE_TEST_STARTED,
        MESSAGE_TEST_FAILED,
        MESSAGE_TEST_IGNORED,
        MESSAGE_TEST_FINISHED,
    }
)

# Value of the `type` attribute on testFailed for expected/actual failures.
COMPARISON_FAILURE = "comparisonFailure"

MESSAGE_PREFIX = "##teamcity["

# Applied in a single translate pass, so replacements are never re-escaped.
_ESCAPES = {
    "|": "||",
    "'": "|'",
    "\n": "|n",
    "\r": "|r",
    "[": "|[",
    "]": "|]",
}
_ESCAPE_TABLE = str.maketrans(_ESCAPES)
_UNESCAPES = {escaped[1]: raw for raw, escaped in _ESCAPES.items()}


def escape_value(value: Any) -> str:
    return str(value).strip().translate(_ESCAPE_TABLE)


def unescape_value(value: str) -> str:
    chars: list[str] = []
    it = iter(value)
    for char in it:
        if char != "|":
            chars.append(char)
            continue
        code = next(it, "")
        chars.append(_UNESCAPES.get(code, code))
    return "".join(chars)


def format_timestamp(moment: datetime) -> str:
    """Render `moment` as `YYYY-MM-DDThh:mm:ss.mmm+hhmm`.

    Naive datetimes are interpreted as local time. Milliseconds are floored.
    """
    if moment.tzinfo is None:
        moment = moment.astimezone()
    millis = moment.microsecond // 1000
    return f"{moment:%Y-%m-%dT%H:%M:%S}.{millis:03d}{moment:%z}"


def local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class ServiceMessage:
    message_type: str
    params: dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        attributes = "".join(
            f" {key}='{escape_value(value)}'" for key, value in self.params.items()
        )
        return f"{MESSAGE_PREFIX}{self.message_type}{attributes}]\n"


class MessageEncoder:
    """Builds service messages, filling in `name`, `timestamp` and `flowId`.

    `flow_id` and `clock` are injected once so a run reports a stable flow
    and tests can pin both values.
    """

    def __init__(
        self,
        *,
        flow_id: int | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.flow_id = os.getpid() if flow_id is None else flow_id
        self._clock = clock

    def build(
        self,
        message_type: str,
        subject: object,
        params: Mapping[str, Any] | None = None,
    ) -> ServiceMessage:
        if message_type not in MESSAGE_TYPES:
            raise ValueError(f"unknown service message type: {message_type!r}")
        merged: dict[str, str] = {key: str(value) for key, value in (params or {}).items()}
        merged.setdefault("name", derive_name(subject))
        if "timestamp" not in merged:
            merged["timestamp"] = format_timestamp(self._clock())
        merged.setdefault("flowId", str(self.flow_id))
        return ServiceMessage(message_type, merged)

    def encode(
        self,
        message_type: str,
        subject: object,
        params: Mapping[str, Any] | None = None,
    ) -> str:
        return self.build(message_type, subject, params).render()
