"""
TeamCity service message reporting for Python test runs.

Re-exports the encoder, reporter and subject types used by adapters and callers.
"""

from .failures import (
    Comparison,
    ExpectationFailedError,
    FailureDetail,
    assert_equal,
)
from .listener import TeamCityReporter
from .messages import MessageEncoder, ServiceMessage, escape_value
from .naming import (
    SelfDescribingSubject,
    SuiteSubject,
    TestCaseSubject,
    derive_name,
)
from .sink import FileSink, StreamSink, open_sink

__all__ = [
    "Comparison",
    "ExpectationFailedError",
    "FailureDetail",
    "FileSink",
    "MessageEncoder",
    "SelfDescribingSubject",
    "ServiceMessage",
    "StreamSink",
    "SuiteSubject",
    "TeamCityReporter",
    "TestCaseSubject",
    "assert_equal",
    "derive_name",
    "escape_value",
    "open_sink",
]
