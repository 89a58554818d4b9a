# Where: teamcity_reporter/listener.py
# What: Translate test lifecycle events into TeamCity service messages.
# Why: One place decides message type and parameters per event, in call order.
from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import replace
from typing import Any, Callable

from teamcity_reporter.events import (
    EVENT_SUITE_END,
    EVENT_SUITE_START,
    EVENT_TEST_END,
    EVENT_TEST_ERROR,
    EVENT_TEST_FAILURE,
    EVENT_TEST_INCOMPLETE,
    EVENT_TEST_RISKY,
    EVENT_TEST_SKIPPED,
    EVENT_TEST_START,
    EVENT_TEST_WARNING,
    Event,
)
from teamcity_reporter.failures import (
    FailureDetail,
    failure_from_exc_info,
    failure_from_exception,
)
from teamcity_reporter.messages import (
    MESSAGE_SUITE_FINISHED,
    MESSAGE_SUITE_STARTED,
    MESSAGE_TEST_FAILED,
    MESSAGE_TEST_FINISHED,
    MESSAGE_TEST_IGNORED,
    MESSAGE_TEST_STARTED,
    MessageEncoder,
)
from teamcity_reporter.sink import MessageSink

logger = logging.getLogger(__name__)


def duration_millis(elapsed: float) -> int:
    return math.floor(elapsed * 1000)


def _as_failure(payload: Any) -> FailureDetail:
    if isinstance(payload, FailureDetail):
        # testFailed always carries details, even an empty trace.
        return payload if payload.details is not None else replace(payload, details="")
    if isinstance(payload, tuple):
        return failure_from_exc_info(payload)
    if isinstance(payload, BaseException):
        return failure_from_exception(payload)
    return FailureDetail(message=str(payload if payload is not None else "").strip(), details="")


def _skip_message(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, FailureDetail):
        return payload.message
    if isinstance(payload, tuple):
        payload = payload[1]
    return str(payload)


class TeamCityReporter:
    """Writes one service message per lifecycle call to `sink`.

    Suites may nest; pairing start/end calls is the engine's job and is not
    checked here. Failure payloads may be exceptions, `sys.exc_info()`
    tuples, prepared `FailureDetail` values or plain strings.
    """

    def __init__(
        self,
        sink: MessageSink,
        *,
        encoder: MessageEncoder | None = None,
        capture_standard_output: str = "true",
    ) -> None:
        self._sink = sink
        self._encoder = encoder or MessageEncoder()
        self._capture_standard_output = capture_standard_output
        self._handlers: dict[str, Callable[[Event], None]] = {
            EVENT_SUITE_START: lambda e: self.start_suite(e.subject),
            EVENT_SUITE_END: lambda e: self.end_suite(e.subject),
            EVENT_TEST_START: lambda e: self.start_test(e.subject),
            EVENT_TEST_END: lambda e: self.end_test(e.subject, e.elapsed),
            EVENT_TEST_FAILURE: lambda e: self.add_failure(e.subject, e.payload),
            EVENT_TEST_ERROR: lambda e: self.add_error(e.subject, e.payload),
            EVENT_TEST_SKIPPED: lambda e: self.add_skipped(e.subject, e.payload),
            EVENT_TEST_INCOMPLETE: lambda e: self.add_incomplete(e.subject, e.payload),
            EVENT_TEST_RISKY: lambda e: self.add_risky(e.subject, e.payload),
            EVENT_TEST_WARNING: lambda e: self.add_warning(e.subject, e.payload),
        }

    @property
    def flow_id(self) -> int:
        return self._encoder.flow_id

    def emit(self, event: Event) -> None:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            raise ValueError(f"unknown event type: {event.event_type!r}")
        handler(event)

    def write_message(
        self,
        message_type: str,
        subject: object,
        params: Mapping[str, Any] | None = None,
    ) -> None:
        line = self._encoder.encode(message_type, subject, params)
        logger.debug(
            "emit %s",
            message_type,
            extra={"message_type": message_type, "flow_id": self._encoder.flow_id},
        )
        self._sink.write(line)

    def start_suite(self, suite: object) -> None:
        self.write_message(MESSAGE_SUITE_STARTED, suite)

    def end_suite(self, suite: object) -> None:
        self.write_message(MESSAGE_SUITE_FINISHED, suite)

    def start_test(self, test: object) -> None:
        self.write_message(
            MESSAGE_TEST_STARTED,
            test,
            {"captureStandardOutput": self._capture_standard_output},
        )

    def end_test(self, test: object, elapsed: float) -> None:
        self.write_message(MESSAGE_TEST_FINISHED, test, {"duration": duration_millis(elapsed)})

    def add_error(self, test: object, error: Any) -> None:
        self.write_message(MESSAGE_TEST_FAILED, test, _as_failure(error).to_params())

    def add_failure(self, test: object, failure: Any) -> None:
        self.add_error(test, failure)

    def add_skipped(self, test: object, reason: Any) -> None:
        self.write_message(MESSAGE_TEST_IGNORED, test, {"message": _skip_message(reason)})

    def add_incomplete(self, test: object, reason: Any) -> None:
        self.add_skipped(test, reason)

    def add_risky(self, test: object, reason: Any) -> None:
        self.add_skipped(test, reason)

    def add_warning(self, test: object, warning: Any) -> None:
        if isinstance(warning, (BaseException, FailureDetail, tuple)):
            self.add_error(test, warning)
            return
        self.write_message(MESSAGE_TEST_FAILED, test, {"message": str(warning).strip()})
