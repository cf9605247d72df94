"""Core error types with rich context.

Every failure raised by tshierkit is a ``TSHierKitError`` subclass carrying
an ``error_code``, a context dict and a fix hint.
"""

from __future__ import annotations

from typing import Any


class TSHierKitError(Exception):
    """Base exception with rich context."""

    error_code: str = "E_UNKNOWN"
    fix_hint: str = ""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        fix_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if fix_hint:
            self.fix_hint = fix_hint

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.context:
            parts.append(f"(context: {self.context})")
        if self.fix_hint:
            parts.append(f"[hint: {self.fix_hint}]")
        return " ".join(parts)

    def __reduce__(self) -> tuple[Any, ...]:
        # Keep context intact when errors cross a process pool boundary
        return (self.__class__, (self.message, self.context, self.fix_hint))


class EContractViolation(TSHierKitError):
    """Input violates an API contract."""

    error_code = "E_CONTRACT_VIOLATION"
    fix_hint = "Check argument shapes and types against the documented contract"


class EInvalidStructure(TSHierKitError):
    """Grouping specification is inconsistent with the bottom-level data."""

    error_code = "E_INVALID_STRUCTURE"
    fix_hint = "Leaf counts of the last grouping level must sum to the number of bottom columns"


class EOutOfRange(TSHierKitError):
    """Requested window lies outside the available periods."""

    error_code = "E_OUT_OF_RANGE"
    fix_hint = "Window positions are 0-based, inclusive and must satisfy 0 <= start <= end < n_periods"


class EUnsupportedMethod(TSHierKitError):
    """Unknown base forecasting or reconciliation method."""

    error_code = "E_UNSUPPORTED_METHOD"
    fix_hint = "Base methods: arima, ets, rw. Reconciliation methods: bu, tdgsa, tdgsf, comb, wls"


class EDegenerateHierarchy(TSHierKitError):
    """Hierarchy or its history cannot support top-down proportions."""

    error_code = "E_DEGENERATE_HIERARCHY"
    fix_hint = "Top-down methods need a single root whose history is never zero"


class ESingularAggregation(TSHierKitError):
    """Combination matrix cannot be inverted."""

    error_code = "E_SINGULAR_AGGREGATION"
    fix_hint = "Enable allow_pinv or check the summation matrix for duplicate or empty columns"


class EDivisionByZero(TSHierKitError):
    """Percentage error is undefined because every actual is zero."""

    error_code = "E_DIVISION_BY_ZERO"
    fix_hint = "MAPE excludes zero actuals; use a scale-free metric for all-zero series"


class EMissingForecast(TSHierKitError):
    """A reconciliation method is missing base forecasts it needs."""

    error_code = "E_MISSING_FORECAST"
    fix_hint = "Forecast the nodes returned by Reconciler.required_nodes()"


class EModelFailed(TSHierKitError):
    """Base model fitting or prediction failed."""

    error_code = "E_MODEL_FAILED"
    fix_hint = "Check the series length against the method's seasonal period"


class ETimeout(TSHierKitError):
    """Work unit did not finish before the scheduler deadline."""

    error_code = "E_TIMEOUT"
    fix_hint = "Raise ExecutionConfig.timeout or use a cheaper base method"


# Error registry for lookup
ERROR_REGISTRY: dict[str, type[TSHierKitError]] = {
    cls.error_code: cls
    for cls in (
        EContractViolation,
        EInvalidStructure,
        EOutOfRange,
        EUnsupportedMethod,
        EDegenerateHierarchy,
        ESingularAggregation,
        EDivisionByZero,
        EMissingForecast,
        EModelFailed,
        ETimeout,
    )
}


def get_error_class(error_code: str) -> type[TSHierKitError]:
    """Get error class by code."""
    return ERROR_REGISTRY.get(error_code, TSHierKitError)


__all__ = [
    "TSHierKitError",
    "EContractViolation",
    "EInvalidStructure",
    "EOutOfRange",
    "EUnsupportedMethod",
    "EDegenerateHierarchy",
    "ESingularAggregation",
    "EDivisionByZero",
    "EMissingForecast",
    "EModelFailed",
    "ETimeout",
    "ERROR_REGISTRY",
    "get_error_class",
]
