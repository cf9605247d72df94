"""Core errors and configuration specs."""

from tshierkit.core.config import BaseSpec, CVConfig, ExecutionConfig
from tshierkit.core.errors import (
    ERROR_REGISTRY,
    EContractViolation,
    EDegenerateHierarchy,
    EDivisionByZero,
    EInvalidStructure,
    EMissingForecast,
    EModelFailed,
    EOutOfRange,
    ESingularAggregation,
    ETimeout,
    EUnsupportedMethod,
    TSHierKitError,
    get_error_class,
)

__all__ = [
    # Config
    "BaseSpec",
    "CVConfig",
    "ExecutionConfig",
    # Errors
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
