"""
Pipeline Exceptions

Errors raised by the transformation pipeline. Cast/parse failures, duplicate
keys and orphaned references are recovered locally and only counted; the
exceptions below are reserved for conditions that make downstream relations
untrustworthy.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for all pipeline errors"""


class ConfigError(PipelineError):
    """Invalid or inconsistent configuration"""


class MissingRelationError(PipelineError):
    """A stage input relation or required column is missing"""


class SanityGateError(PipelineError):
    """Pre-flight row count expectation did not hold"""

    def __init__(self, message: str, expected: int, actual: int):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class GuardrailError(PipelineError):
    """
    A fatal guardrail failed.

    Typical cause: dim_date range does not cover the observed order dates,
    which silently drops fact rows. Fix the date range setting and rebuild.
    """

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result
