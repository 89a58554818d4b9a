# Where: teamcity_reporter/naming.py
# What: Subject variants and display-name derivation for service messages.
# Why: Keep naming read-only and exhaustive over the subjects the engines hand us.
from __future__ import annotations

import unittest
from dataclasses import dataclass


@dataclass(frozen=True)
class TestCaseSubject:
    name: str
    dataset: str | None = None

    # Keep pytest from collecting this as a test class.
    __test__ = False

    @property
    def display_name(self) -> str:
        if self.dataset is None:
            return self.name
        return f'{self.name} with data set "{self.dataset}"'


@dataclass(frozen=True)
class SuiteSubject:
    name: str


@dataclass(frozen=True)
class SelfDescribingSubject:
    description: str

    def describe(self) -> str:
        return self.description


def derive_name(subject: object) -> str:
    """Return the display name of a test, suite or other reportable subject.

    Only identity metadata is inspected; no test code is run.
    """
    if isinstance(subject, TestCaseSubject):
        return subject.display_name
    if isinstance(subject, SuiteSubject):
        return subject.name
    if isinstance(subject, unittest.TestCase):
        return _unittest_case_name(subject)
    describe = getattr(subject, "describe", None)
    if callable(describe):
        return str(describe())
    return type(subject).__name__


def _unittest_case_name(test: unittest.TestCase) -> str:
    parent = getattr(test, "test_case", None)
    if isinstance(parent, unittest.TestCase):
        # unittest sub-test: report the parameters as a dataset label.
        label = test._subDescription().strip()
        if label.startswith("(") and label.endswith(")"):
            label = label[1:-1]
        return TestCaseSubject(_unittest_case_name(parent), label).display_name
    method = getattr(test, "_testMethodName", None)
    if method:
        return method
    return type(test).__name__
