"""
Data Validation Module

Rule-based quality checks over polars snapshots of warehouse tables.

Features:
- Null, uniqueness and range checks
- Referential integrity checks
- SCD Type 2 interval checks (well-formed, non-overlapping, single open version)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import polars as pl
import structlog

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


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
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    def failures(self) -> List[ValidationCheck]:
        return [check for check in self.checks if not check.passed]


def _missing_column(name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
    return ValidationCheck(
        name=name,
        passed=False,
        severity=severity,
        message=f"Column '{column}' not found",
    )


class DataValidator:
    """
    Data validator with a chainable check suite.

    Example:
        validator = DataValidator()
        validator.add_not_null_check("customer_id")
        validator.add_range_check("actual_revenue_amount", min_value=0)
        result = validator.validate(df)
    """

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode  # Fail on any warning
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def reset(self) -> None:
        """Drop all registered checks"""
        self._checks = []

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"not_null_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            null_count = df[column].null_count()
            total = len(df)
            passed = null_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values" if not passed else f"Column '{column}' has no null values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        columns: List[str],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check that the given column combination is unique"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"unique_{'_'.join(columns)}"
            missing = [c for c in columns if c not in df.columns]
            if missing:
                return _missing_column(name, missing[0], severity)

            total = len(df)
            duplicate_count = total - df.select(columns).unique().height
            passed = duplicate_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"{columns} has {duplicate_count} duplicate values" if not passed else f"{columns} values are unique",
                details={"duplicate_count": duplicate_count},
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
    ) -> "DataValidator":
        """Add check for values within specified range"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"range_{column}"
            if column not in df.columns:
                return _missing_column(name, column, severity)

            # Decimal strings compare numerically
            value = pl.col(column).cast(pl.Float64, strict=False)
            conditions = []
            if min_value is not None:
                conditions.append(value < min_value)
            if max_value is not None:
                conditions.append(value > max_value)

            if not conditions:
                return ValidationCheck(
                    name=name,
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
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {out_of_range} values outside range [{min_value}, {max_value}]" if not passed else "All values in range",
                details={"min": min_value, "max": max_value, "out_of_range_count": out_of_range},
                failed_rows=out_of_range,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_non_negative_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values >= 0"""
        return self.add_range_check(column, min_value=0, severity=severity)

    def add_custom_check(
        self,
        name: str,
        check_func: Callable[[pl.DataFrame], bool],
        message_on_fail: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add custom validation check"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            try:
                passed = bool(check_func(df))
            except Exception as e:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"Check failed with error: {str(e)}",
                )
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message="Check passed" if passed else message_on_fail,
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
                return _missing_column(name, column, severity)

            ref_values = reference_df[reference_column].unique().to_list()
            orphans = df.filter(
                ~pl.col(column).is_in(ref_values) & pl.col(column).is_not_null()
            ).height
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

    # ------------------------------------------------------------------
    # SCD Type 2 checks
    # ------------------------------------------------------------------

    def add_interval_check(
        self,
        start_column: str = "effective_start_key",
        end_column: str = "effective_end_key",
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check that every closed interval ends after it starts"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = "well_formed_intervals"
            for column in (start_column, end_column):
                if column not in df.columns:
                    return _missing_column(name, column, severity)

            malformed = df.filter(
                pl.col(end_column).is_not_null() & (pl.col(end_column) <= pl.col(start_column))
            ).height
            passed = malformed == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"{malformed} versions end on or before they start" if not passed else "All intervals well formed",
                details={"malformed_count": malformed},
                failed_rows=malformed,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_no_overlap_check(
        self,
        key_column: str = "business_id",
        start_column: str = "effective_start_key",
        end_column: str = "effective_end_key",
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """
        Add check that versions of the same entity never overlap.

        Sorted by start, a version overlaps its successor when it is open or
        ends after the successor starts.
        """
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"no_overlap_{key_column}"
            for column in (key_column, start_column, end_column):
                if column not in df.columns:
                    return _missing_column(name, column, severity)

            ordered = df.sort([key_column, start_column]).with_columns(
                pl.col(start_column).shift(-1).over(key_column).alias("_next_start")
            )
            overlapping = ordered.filter(
                pl.col("_next_start").is_not_null()
                & (pl.col(end_column).is_null() | (pl.col(end_column) > pl.col("_next_start")))
            )
            count = overlapping.height
            passed = count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"{count} versions overlap their successor" if not passed else "No overlapping versions",
                details={"entities": sorted(overlapping[key_column].unique().to_list())},
                failed_rows=count,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_single_open_version_check(
        self,
        key_column: str = "business_id",
        end_column: str = "effective_end_key",
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check that no entity has more than one open version"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"single_open_version_{key_column}"
            for column in (key_column, end_column):
                if column not in df.columns:
                    return _missing_column(name, column, severity)

            offenders = (
                df.filter(pl.col(end_column).is_null())
                .group_by(key_column)
                .agg(pl.len().alias("open_versions"))
                .filter(pl.col("open_versions") > 1)
            )
            count = offenders.height
            passed = count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"{count} entities have more than one open version" if not passed else "At most one open version per entity",
                details={"entities": sorted(offenders[key_column].to_list())},
                failed_rows=count,
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
        started_at = _now()
        results = []

        logger.info("Running validation checks", checks=len(self._checks), rows=len(df))

        for check_func in self._checks:
            result = check_func(df)
            results.append(result)

            if not result.passed:
                logger.warning(
                    f"Validation failed: {result.name}",
                    message=result.message,
                    severity=result.severity.value,
                )

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0:
            status = ValidationStatus.FAILED
        elif warning_count > 0 and self.strict_mode:
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
            started_at=started_at,
            completed_at=_now(),
        )

        logger.info(
            f"Validation complete: {status.value}",
            passed=passed_checks,
            failed=failed_checks,
            warnings=warning_count,
        )

        return validation_result


# Pre-built validators
def create_versioned_dimension_validator() -> DataValidator:
    """Validator for interval snapshots (business_id, surrogate_key, start, end)"""
    return (
        DataValidator()
        .add_not_null_check("business_id")
        .add_not_null_check("effective_start_key")
        .add_unique_check(["surrogate_key"])
        .add_unique_check(["business_id", "effective_start_key"])
        .add_interval_check()
        .add_single_open_version_check()
        .add_no_overlap_check()
    )


def create_revenue_validator() -> DataValidator:
    """Validator for revenue fact batches before they are recorded"""
    return (
        DataValidator()
        .add_not_null_check("business_event_id")
        .add_not_null_check("customer_reference")
        .add_not_null_check("revenue_date_key")
        .add_unique_check(["business_event_id"])
        .add_non_negative_check("actual_amount")
        .add_non_negative_check("forecast_amount")
    )
