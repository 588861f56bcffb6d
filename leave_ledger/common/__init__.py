"""Common module — shared utilities for the leave ledger."""

from leave_ledger.common.audit import AuditTrail, create_audit_entry
from leave_ledger.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    AccrualMethod,
    AdjustmentSource,
    AdjustmentType,
    FinalizeDecision,
    LeaveStatus,
    PatternType,
    RiskLevel,
    RoundingRule,
    Severity,
    SuspensionType,
)
from leave_ledger.common.exceptions import (
    AppException,
    ConcurrentUpdateException,
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from leave_ledger.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "AccrualMethod",
    "AdjustmentSource",
    "AdjustmentType",
    "FinalizeDecision",
    "LeaveStatus",
    "PatternType",
    "RiskLevel",
    "RoundingRule",
    "Severity",
    "SuspensionType",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConcurrentUpdateException",
    "InsufficientBalanceException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
