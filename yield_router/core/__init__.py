"""
Core module for Yield Router.

Provides logging, exceptions, decimal utilities and atomic transactions.
"""

from .logger import configure_logging, setup_logger, get_logger
from .structured_logging import (
    # Loggers
    StructuredLogger,
    AccountingLogger,
    AuditLogger,
    # Logger factories
    get_accounting_logger,
    get_audit_logger,
    # Types
    LogChannel,
    EventType,
    LogContext,
    # Context management
    get_correlation_id,
    operation_context,
)
from .transaction import (
    Snapshotable,
    Transaction,
    TransactionManager,
    TransactionStatus,
)

__all__ = [
    # Basic logging
    "setup_logger",
    "configure_logging",
    "get_logger",
    # Structured logging
    "StructuredLogger",
    "AccountingLogger",
    "AuditLogger",
    "get_accounting_logger",
    "get_audit_logger",
    "LogChannel",
    "EventType",
    "LogContext",
    "get_correlation_id",
    "operation_context",
    # Transactions
    "Snapshotable",
    "Transaction",
    "TransactionManager",
    "TransactionStatus",
]
