# Where: teamcity_reporter/tests/test_listener.py
# What: Event-to-message mapping tests for TeamCityReporter.
# Why: Lock down message types, explicit params and emission order per event kind.
from __future__ import annotations

import io

import pytest

from teamcity_reporter.events import (
    EVENT_SUITE_START,
    EVENT_TEST_END,
    EVENT_TEST_RISKY,
    Event,
)
from teamcity_reporter.failures import Comparison, ExpectationFailedError, FailureDetail
from teamcity_reporter.listener import TeamCityReporter, duration_millis
from teamcity_reporter.messages import MessageEncoder
from teamcity_reporter.naming import SelfDescribingSubject, SuiteSubject, TestCaseSubject
from teamcity_reporter.sink import StreamSink

FIXTURE_CLASS = "teamcity_reporter.tests.fixtures.DataProviderTest"
DATA_SETS = ("one", "two", "three", "four", "five.one")


def _raised(exc: BaseException) -> BaseException:
    try:
        raise exc
    except BaseException as caught:
        return caught


def test_start_test(reporter, out, tail) -> None:
    reporter.start_test(TestCaseSubject("UnitTest"))
    assert out.getvalue() == "##teamcity[testStarted captureStandardOutput='true'" + tail(
        "UnitTest"
    )


def test_end_test_floors_duration(reporter, out, tail) -> None:
    reporter.end_test(TestCaseSubject("UnitTest"), 5.6712)
    assert out.getvalue() == "##teamcity[testFinished duration='5671'" + tail("UnitTest")


@pytest.mark.parametrize(
    ("elapsed", "millis"), [(0.0, 0), (0.0009, 0), (1.0, 1000), (2.5, 2500), (5.6712, 5671)]
)
def test_duration_millis(elapsed: float, millis: int) -> None:
    assert duration_millis(elapsed) == millis


def test_start_and_end_suite(reporter, out, tail) -> None:
    suite = SuiteSubject("TestSuite")
    reporter.start_suite(suite)
    reporter.end_suite(suite)
    assert out.getvalue() == (
        "##teamcity[testSuiteStarted" + tail("TestSuite")
        + "##teamcity[testSuiteFinished" + tail("TestSuite")
    )


def test_add_skipped(reporter, out, tail) -> None:
    reporter.add_skipped(TestCaseSubject("SkippedTest"), Exception("Skip message"))
    assert out.getvalue() == "##teamcity[testIgnored message='Skip message'" + tail(
        "SkippedTest"
    )


def test_skip_incomplete_and_risky_encode_identically(encoder) -> None:
    outputs = []
    for method in ("add_skipped", "add_incomplete", "add_risky"):
        out = io.StringIO()
        reporter = TeamCityReporter(StreamSink(out), encoder=encoder)
        getattr(reporter, method)(TestCaseSubject("Ignored"), Exception("Reason"))
        outputs.append(out.getvalue())
    assert outputs[0] == outputs[1] == outputs[2]
    assert outputs[0].startswith("##teamcity[testIgnored message='Reason' name='Ignored'")


def test_add_skipped_accepts_plain_reason(reporter, out, tail) -> None:
    reporter.add_skipped(TestCaseSubject("SkippedTest"), "not on this platform")
    assert out.getvalue() == "##teamcity[testIgnored message='not on this platform'" + tail(
        "SkippedTest"
    )


def test_add_error(reporter, out, tail) -> None:
    reporter.add_error(TestCaseSubject("UnitTest"), _raised(Exception("ErrorMessage")))
    output = out.getvalue()
    assert output.startswith("##teamcity[testFailed message='Exception: ErrorMessage' details='")
    assert output.endswith(tail("UnitTest"))
    assert "details=''" not in output


def test_add_failure(reporter, out, tail) -> None:
    reporter.add_failure(TestCaseSubject("FailedTest"), _raised(AssertionError("Assertion error")))
    output = out.getvalue()
    assert output.startswith("##teamcity[testFailed message='Assertion error' details='")
    assert output.endswith(tail("FailedTest"))


def test_add_failure_with_comparison_failure(reporter, out, tail) -> None:
    exc = _raised(
        ExpectationFailedError(
            "ExpectationFailed", Comparison("expectedAsString", "actualAsString")
        )
    )
    reporter.add_failure(TestCaseSubject("testMethod"), exc)
    output = out.getvalue()
    assert output.startswith(
        "##teamcity[testFailed message='ExpectationFailed|n--- Expected|n+++ Actual|n@@ @@"
        "|n-expectedAsString|n+actualAsString' details="
    )
    assert output.endswith(
        " type='comparisonFailure' expected='expectedAsString' actual='actualAsString'"
        + tail("testMethod")
    )


def test_trailing_whitespace_is_removed_from_message(reporter, out, tail) -> None:
    reporter.add_error(
        TestCaseSubject("ErrorTest"), _raised(RuntimeError("\n\nError\nwith newlines\n"))
    )
    output = out.getvalue()
    assert output.startswith(
        "##teamcity[testFailed message='RuntimeError: |n|nError|nwith newlines' details='"
    )
    assert output.endswith("'" + tail("ErrorTest"))


def test_add_error_accepts_exc_info_tuple(reporter, out, parse_message) -> None:
    exc = _raised(ValueError("bad"))
    reporter.add_error(TestCaseSubject("t"), (type(exc), exc, exc.__traceback__))
    kind, attrs = parse_message(out.getvalue())
    assert kind == "testFailed"
    assert attrs["message"] == "ValueError: bad"
    assert "in _raised" in attrs["details"]


def test_error_never_raised_keeps_empty_details(reporter, out) -> None:
    reporter.add_error(TestCaseSubject("t"), ValueError("bad"))
    assert "message='ValueError: bad' details='' name='t'" in out.getvalue()


def test_prepared_failure_without_details_sends_empty_details(reporter, out, tail) -> None:
    reporter.add_error(TestCaseSubject("t"), FailureDetail("Connection refused"))
    assert out.getvalue() == (
        "##teamcity[testFailed message='Connection refused' details=''" + tail("t")
    )


def test_warning_with_exception_is_reported_as_error(reporter, out, parse_message) -> None:
    reporter.add_warning(TestCaseSubject("t"), _raised(UserWarning("deprecated")))
    kind, attrs = parse_message(out.getvalue())
    assert kind == "testFailed"
    assert attrs["message"] == "UserWarning: deprecated"
    assert "details" in attrs


def test_warning_without_exception_has_message_only(reporter, out, tail) -> None:
    reporter.add_warning(TestCaseSubject("t"), "  Something looks off  ")
    assert out.getvalue() == "##teamcity[testFailed message='Something looks off'" + tail("t")


def test_self_describing_subject_name(reporter, out, tail) -> None:
    reporter.start_test(SelfDescribingSubject("/srv/tests/example.phpt"))
    assert out.getvalue() == (
        "##teamcity[testStarted captureStandardOutput='true'" + tail("/srv/tests/example.phpt")
    )


def test_capture_standard_output_is_configurable(encoder, tail) -> None:
    out = io.StringIO()
    reporter = TeamCityReporter(StreamSink(out), encoder=encoder, capture_standard_output="false")
    reporter.start_test(TestCaseSubject("t"))
    assert out.getvalue() == "##teamcity[testStarted captureStandardOutput='false'" + tail("t")


def test_data_driven_invocations_nest_in_method_suite(reporter, out, tail) -> None:
    outer = SuiteSubject(FIXTURE_CLASS)
    method_suite = SuiteSubject(f"{FIXTURE_CLASS}::testMethodWithDataProvider")

    reporter.start_suite(outer)
    reporter.start_suite(method_suite)
    for dataset in DATA_SETS:
        test = TestCaseSubject("testMethodWithDataProvider", dataset)
        reporter.start_test(test)
        reporter.end_test(test, 5)
    reporter.end_suite(method_suite)
    simple = TestCaseSubject("testSimpleMethod")
    reporter.start_test(simple)
    reporter.end_test(simple, 6)
    reporter.end_suite(outer)

    expected = [f"##teamcity[testSuiteStarted{tail(FIXTURE_CLASS)}"]
    expected.append(
        f"##teamcity[testSuiteStarted{tail(FIXTURE_CLASS + '::testMethodWithDataProvider')}"
    )
    for dataset in DATA_SETS:
        name = f'testMethodWithDataProvider with data set "{dataset}"'
        expected.append(f"##teamcity[testStarted captureStandardOutput='true'{tail(name)}")
        expected.append(f"##teamcity[testFinished duration='5000'{tail(name)}")
    expected.append(
        f"##teamcity[testSuiteFinished{tail(FIXTURE_CLASS + '::testMethodWithDataProvider')}"
    )
    expected.append(f"##teamcity[testStarted captureStandardOutput='true'{tail('testSimpleMethod')}")
    expected.append(f"##teamcity[testFinished duration='6000'{tail('testSimpleMethod')}")
    expected.append(f"##teamcity[testSuiteFinished{tail(FIXTURE_CLASS)}")

    assert len(expected) == 14
    assert out.getvalue() == "".join(expected)


def test_emit_dispatches_events(encoder) -> None:
    direct_out = io.StringIO()
    direct = TeamCityReporter(StreamSink(direct_out), encoder=encoder)
    direct.start_suite(SuiteSubject("s"))
    direct.add_risky(TestCaseSubject("t"), "no assertions")
    direct.end_test(TestCaseSubject("t"), 1.5)

    emitted_out = io.StringIO()
    emitted = TeamCityReporter(StreamSink(emitted_out), encoder=encoder)
    emitted.emit(Event(EVENT_SUITE_START, SuiteSubject("s")))
    emitted.emit(Event(EVENT_TEST_RISKY, TestCaseSubject("t"), payload="no assertions"))
    emitted.emit(Event(EVENT_TEST_END, TestCaseSubject("t"), elapsed=1.5))

    assert emitted_out.getvalue() == direct_out.getvalue()


def test_emit_rejects_unknown_event(reporter) -> None:
    with pytest.raises(ValueError, match="unknown event type"):
        reporter.emit(Event("test_exploded", TestCaseSubject("t")))


def test_flow_id_comes_from_encoder() -> None:
    reporter = TeamCityReporter(StreamSink(io.StringIO()), encoder=MessageEncoder(flow_id=3))
    assert reporter.flow_id == 3
