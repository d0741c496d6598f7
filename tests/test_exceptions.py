"""Tests for the error taxonomy and logging helpers."""

import json
import logging

import pytest

from evisynth import (
    ConfigurationError,
    InsufficientDataError,
    InsufficientStudiesError,
    NumericalInstabilityError,
    SynthesisError,
)
from evisynth.utils.logging import JSONFormatter, get_logger


class TestExceptions:
    """SynthesisError hierarchy."""

    def test_message_with_details(self) -> None:
        error = InsufficientDataError("Missing SD", {"study_id": "S1"})
        assert "Missing SD" in str(error)
        assert "Details" in str(error)
        assert error.details == {"study_id": "S1"}

    def test_message_without_details(self) -> None:
        assert str(ConfigurationError("Bad model")) == "Bad model"

    def test_hierarchy(self) -> None:
        assert issubclass(InsufficientDataError, SynthesisError)
        assert issubclass(InsufficientDataError, ValueError)
        assert issubclass(ConfigurationError, ValueError)
        assert issubclass(NumericalInstabilityError, ArithmeticError)
        assert issubclass(InsufficientStudiesError, SynthesisError)

    def test_insufficient_studies_counts(self) -> None:
        error = InsufficientStudiesError("Need more", required=3, available=1, details={"step": "egger"})
        assert error.required == 3
        assert error.available == 1
        assert error.details == {"required": 3, "available": 1, "step": "egger"}

    def test_catch_as_base(self) -> None:
        with pytest.raises(SynthesisError):
            raise NumericalInstabilityError("Zero variance", {"study_id": "S2"})


class TestLogging:
    """Logger factory and JSON formatter."""

    def test_json_formatter(self) -> None:
        record = logging.LogRecord("evisynth.test", logging.INFO, __file__, 1, "pooled %d studies", (4,), None)
        payload = json.loads(JSONFormatter().format(record))
        assert payload["level"] == "INFO"
        assert payload["logger"] == "evisynth.test"
        assert payload["message"] == "pooled 4 studies"

    def test_handler_attached_once(self) -> None:
        first = get_logger("evisynth.tests.handler")
        second = get_logger("evisynth.tests.handler")
        assert first is second
        assert len(second.handlers) == 1

    def test_level_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("EVISYNTH_LOG_LEVEL", "debug")
        logger = get_logger("evisynth.tests.env_level")
        assert logger.level == logging.DEBUG

    def test_json_format_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("EVISYNTH_LOG_FORMAT", "json")
        logger = get_logger("evisynth.tests.env_json")
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
