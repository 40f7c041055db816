"""Tests for core.types module."""

from core.errors.classifiers import BrokerErrorClassifier, StoreErrorClassifier
from core.types import ErrorCategory, ErrorClassifier


class TestErrorCategory:
    def test_values(self):
        assert ErrorCategory.TRANSIENT.value == "transient"
        assert ErrorCategory.PERMANENT.value == "permanent"
        assert ErrorCategory.UNKNOWN.value == "unknown"

    def test_all_members(self):
        assert set(ErrorCategory.__members__.keys()) == {"TRANSIENT", "PERMANENT", "UNKNOWN"}

    def test_from_value(self):
        assert ErrorCategory("transient") is ErrorCategory.TRANSIENT


class TestErrorClassifier:
    def test_is_protocol(self):
        assert hasattr(ErrorClassifier, "classify_error")
        assert hasattr(ErrorClassifier, "is_transient")

    def test_classifiers_satisfy_protocol(self):
        classifiers: list[ErrorClassifier] = [BrokerErrorClassifier(), StoreErrorClassifier()]
        for classifier in classifiers:
            assert classifier.classify_error(ValueError("x")) == ErrorCategory.UNKNOWN
            assert classifier.is_transient(ConnectionRefusedError("refused")) is True
