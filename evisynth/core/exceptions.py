"""
Exceptions for evisynth.

All errors raised by the synthesis engine derive from SynthesisError, which
carries a human-readable message plus a details dictionary naming the study,
computation step, or offending parameter.
"""

from __future__ import annotations
from typing import Any, Dict, Optional


class SynthesisError(Exception):
    """Base exception for all evisynth errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# INPUT ERRORS
# =============================================================================


class InsufficientDataError(SynthesisError, ValueError):
    """Raw counts, means or SDs are missing or invalid."""

    pass


class InsufficientStudiesError(SynthesisError, ValueError):
    """Fewer studies than the requested operation requires."""

    def __init__(
        self,
        message: str,
        required: int,
        available: int,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = {"required": required, "available": available}
        merged.update(details or {})
        super().__init__(message, merged)
        self.required = required
        self.available = available


# =============================================================================
# COMPUTATION ERRORS
# =============================================================================


class NumericalInstabilityError(SynthesisError, ArithmeticError):
    """Zero total variance, degenerate weights or non-finite intermediates."""

    pass


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(SynthesisError, ValueError):
    """Invalid model, measure or configuration value."""

    pass
