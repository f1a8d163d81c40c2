"""
Data Validation Module

Rule-based quality checks used as post-build QA and guardrails by every
pipeline stage. Implements validation patterns inspired by Great Expectations.

Features:
- Null and uniqueness checks (single and composite keys)
- Range/boundary checks
- Pattern and enum checks
- Referential integrity checks
- Numeric parity (reconciliation) checks
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import polars as pl
import structlog

logger = structlog.get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Critical - blocks pipeline
    WARNING = "warning"  # Non-critical - logged but continues
    INFO = "info"  # Informational only


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    suite: str = "default"
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    @property
    def passed(self) -> bool:
        return self.status != ValidationStatus.FAILED

    def get(self, name: str) -> Optional[ValidationCheck]:
        """Look up a check by name"""
        for check in self.checks:
            if check.name == name:
                return check
        return None

    def failures(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]

    def to_frame(self) -> pl.DataFrame:
        """Materialize the check suite as a queryable relation"""
        return pl.DataFrame(
            {
                "suite": [self.suite] * len(self.checks),
                "check": [c.name for c in self.checks],
                "passed": [c.passed for c in self.checks],
                "severity": [c.severity.value for c in self.checks],
                "message": [c.message for c in self.checks],
                "failed_rows": [c.failed_rows for c in self.checks],
                "total_rows": [c.total_rows for c in self.checks],
                "details": [
                    json.dumps(c.details, default=str, sort_keys=True) if c.details else None
                    for c in self.checks
                ],
            },
            schema={
                "suite": pl.Utf8,
                "check": pl.Utf8,
                "passed": pl.Boolean,
                "severity": pl.Utf8,
                "message": pl.Utf8,
                "failed_rows": pl.Int64,
                "total_rows": pl.Int64,
                "details": pl.Utf8,
            },
        )


def _missing_columns(df: pl.DataFrame, columns: Sequence[str]) -> List[str]:
    return [c for c in columns if c not in df.columns]


class DataValidator:
    """
    Data validator with a fluent check suite.

    Validates data quality through:
    - Null checks
    - Range/boundary checks
    - Uniqueness checks
    - Pattern matching
    - Referential integrity
    - Reconciliation between two computed values

    Example:
        validator = DataValidator("stg_orders")
        validator.add_not_null_check("order_id")
        validator.add_range_check("quantity", min_value=1)
        result = validator.validate(df)
    """

    def __init__(self, suite: str = "default"):
        self.suite = suite
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def _column_not_found(self, name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
        return ValidationCheck(
            name=name,
            passed=False,
            severity=severity,
            message=f"Column '{column}' not found",
        )

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"not_null_{column}"
            if column not in df.columns:
                return self._column_not_found(name, column, severity)

            null_count = df[column].null_count()
            total = len(df)
            passed = null_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values" if not passed else f"Column '{column}' has no null values",
                details={"null_count": null_count, "null_percentage": (null_count / total) * 100 if total > 0 else 0},
                failed_rows=null_count,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        columns: Union[str, Sequence[str]],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for uniqueness of a column or composite key"""
        key = [columns] if isinstance(columns, str) else list(columns)

        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"unique_{'_'.join(key)}"
            missing = _missing_columns(df, key)
            if missing:
                return self._column_not_found(name, missing[0], severity)

            total = len(df)
            unique_count = df.select(key).n_unique() if total else 0
            duplicate_count = total - unique_count
            passed = duplicate_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Key {key} has {duplicate_count} duplicate rows" if not passed else f"Key {key} values are unique",
                details={"unique_count": unique_count, "duplicate_count": duplicate_count},
                failed_rows=duplicate_count,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
        name: Optional[str] = None,
    ) -> "DataValidator":
        """Add check for values within specified (inclusive) range"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            check_name = name or f"range_{column}"
            if column not in df.columns:
                return self._column_not_found(check_name, column, severity)

            value = pl.col(column).cast(pl.Float64)
            conditions = []
            if min_value is not None:
                conditions.append(value < min_value)
            if max_value is not None:
                conditions.append(value > max_value)

            if not conditions:
                return ValidationCheck(
                    name=check_name,
                    passed=True,
                    severity=severity,
                    message="No range specified",
                )

            combined = conditions[0]
            for cond in conditions[1:]:
                combined = combined | cond

            out_of_range = df.filter(combined).height
            total = len(df)
            passed = out_of_range == 0

            return ValidationCheck(
                name=check_name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {out_of_range} values outside range [{min_value}, {max_value}]" if not passed else "All values in range",
                details={"min": min_value, "max": max_value, "out_of_range_count": out_of_range},
                failed_rows=out_of_range,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_positive_check(
        self,
        column: str,
        allow_zero: bool = True,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for positive values"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"positive_{column}"
            if column not in df.columns:
                return self._column_not_found(name, column, severity)

            value = pl.col(column).cast(pl.Float64)
            bad = value < 0 if allow_zero else value <= 0
            failed = df.filter(bad).height
            passed = failed == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {failed} non-positive values" if not passed else f"Column '{column}' values are positive",
                details={"allow_zero": allow_zero, "failed_count": failed},
                failed_rows=failed,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_pattern_check(
        self,
        column: str,
        pattern: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add regex pattern check"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"pattern_{column}"
            if column not in df.columns:
                return self._column_not_found(name, column, severity)

            non_matching = df.filter(
                ~pl.col(column).str.contains(pattern) & pl.col(column).is_not_null()
            ).height
            total = df.filter(pl.col(column).is_not_null()).height
            passed = non_matching == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {non_matching} values not matching pattern" if not passed else "All values match pattern",
                details={"pattern": pattern, "non_matching_count": non_matching},
                failed_rows=non_matching,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values in allowed set"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"enum_{column}"
            if column not in df.columns:
                return self._column_not_found(name, column, severity)

            invalid = df.filter(
                ~pl.col(column).is_in(allowed_values) & pl.col(column).is_not_null()
            ).height
            total = len(df)
            passed = invalid == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {invalid} invalid values" if not passed else "All values are valid",
                details={"allowed_values": allowed_values, "invalid_count": invalid},
                failed_rows=invalid,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_count_check(
        self,
        name: str,
        count_func: Callable[[pl.DataFrame], int],
        message: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check that passes when count_func returns zero offending rows"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            failed = int(count_func(df))
            passed = failed == 0
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"{message}: {failed}" if not passed else "Check passed",
                details={"offending_count": failed},
                failed_rows=failed,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_referential_integrity_check(
        self,
        column: str,
        reference_df: pl.DataFrame,
        reference_column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add referential integrity check"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"ref_integrity_{column}"
            if column not in df.columns:
                return self._column_not_found(name, column, severity)

            orphans = count_orphans(df, column, reference_df, reference_column)
            total = len(df)
            passed = orphans == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {orphans} orphan records" if not passed else "Referential integrity maintained",
                details={"orphan_count": orphans},
                failed_rows=orphans,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_equality_check(
        self,
        name: str,
        left: Callable[[pl.DataFrame], Any],
        right: Callable[[pl.DataFrame], Any],
        tolerance: float = 0.0,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check that two computed values agree (within tolerance for numbers)"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            lhs = left(df)
            rhs = right(df)
            if isinstance(lhs, (int, float)) and isinstance(rhs, (int, float)):
                passed = abs(float(lhs) - float(rhs)) <= tolerance
            else:
                passed = lhs == rhs

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message="Values reconcile" if passed else f"Mismatch: {lhs} != {rhs}",
                details={"left": lhs, "right": rhs, "tolerance": tolerance},
                failed_rows=0 if passed else 1,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on DataFrame.

        Args:
            df: DataFrame to validate

        Returns:
            ValidationResult with all check results
        """
        started_at = datetime.utcnow()
        results = []

        logger.info(f"Running {len(self._checks)} validation checks on {len(df)} rows", suite=self.suite)

        for check_func in self._checks:
            result = check_func(df)
            results.append(result)

            if not result.passed:
                logger.warning(
                    f"Validation failed: {result.name}",
                    suite=self.suite,
                    message=result.message,
                    severity=result.severity.value,
                )

        return summarize_checks(results, suite=self.suite, started_at=started_at)


def summarize_checks(
    results: List[ValidationCheck],
    suite: str = "default",
    started_at: Optional[datetime] = None,
) -> ValidationResult:
    """Roll individual check results up into a ValidationResult"""
    passed_checks = sum(1 for r in results if r.passed)
    failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
    warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

    if failed_checks > 0:
        status = ValidationStatus.FAILED
    elif warning_count > 0:
        status = ValidationStatus.PARTIAL
    else:
        status = ValidationStatus.PASSED

    validation_result = ValidationResult(
        status=status,
        total_checks=len(results),
        passed_checks=passed_checks,
        failed_checks=failed_checks,
        warning_count=warning_count,
        checks=results,
        suite=suite,
        started_at=started_at or datetime.utcnow(),
        completed_at=datetime.utcnow(),
    )

    logger.info(
        f"Validation complete: {status.value}",
        suite=suite,
        passed=passed_checks,
        failed=failed_checks,
        warnings=warning_count,
    )

    return validation_result


def count_orphans(
    df: pl.DataFrame,
    column: str,
    reference_df: pl.DataFrame,
    reference_column: str,
) -> int:
    """Left-join-then-null orphan count; null foreign keys count as orphans too"""
    ref = reference_df.select(pl.col(reference_column).alias("__ref_key")).unique().with_columns(
        pl.lit(True).alias("__matched")
    )
    joined = df.select(pl.col(column).alias("__ref_key")).join(ref, on="__ref_key", how="left")
    return joined.filter(pl.col("__matched").is_null()).height
