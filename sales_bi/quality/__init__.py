"""
Data Quality Module
"""
from .validators import DataValidator, ValidationResult, ValidationSeverity, ValidationStatus
from .profiling import RawProfile, RawValidator, profile_raw

__all__ = [
    "DataValidator",
    "ValidationResult",
    "ValidationSeverity",
    "ValidationStatus",
    "RawProfile",
    "RawValidator",
    "profile_raw",
]
