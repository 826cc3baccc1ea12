"""
Structured logging module.

Provides JSON-formatted logging with correlation IDs and separate log
channels for accounting and audit events.
"""

import json
import logging
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

# Context variables for correlation tracking
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)
account_var: ContextVar[Optional[str]] = ContextVar("account", default=None)


class LogChannel(Enum):
    """Log channels for different purposes."""

    ACCOUNTING = "accounting"
    AUDIT = "audit"


class EventType(Enum):
    """Standard event types for structured logging."""

    # Deposit intake
    DEPOSIT_RECEIVED = "deposit.received"
    DEPOSIT_WITHDRAWN = "deposit.withdrawn"

    # Cycle events
    CYCLE_CLOSED = "cycle.closed"
    SHARES_MINTED = "shares.minted"
    FEE_SHARES_MINTED = "fee_shares.minted"
    RECEIPTS_REDEEMED = "receipts.redeemed"

    # Withdrawals
    WITHDRAWAL_EXECUTED = "withdrawal.executed"
    WITHDRAWAL_SCHEDULED = "withdrawal.scheduled"
    WITHDRAWAL_CYCLE_EXECUTED = "withdrawal_cycle.executed"
    WITHDRAWAL_CYCLE_FULFILLED = "withdrawal_cycle.fulfilled"

    # Rebalancing and swaps
    REBALANCE_EXECUTED = "rebalance.executed"
    SWAP_EXECUTED = "swap.executed"
    PRICE_MANIPULATION_BLOCKED = "price_manipulation.blocked"

    # Transactions
    TRANSACTION_ROLLED_BACK = "transaction.rolled_back"

    # Audit events
    CONFIG_CHANGED = "config.changed"
    REGISTRY_CHANGED = "registry.changed"
    ROLE_GRANTED = "role.granted"
    ROLE_REVOKED = "role.revoked"
    AUTHORIZATION_DENIED = "authorization.denied"


@dataclass
class LogContext:
    """Context information for structured logs."""

    correlation_id: Optional[str] = None
    account: Optional[str] = None
    token: Optional[str] = None
    cycle_id: Optional[int] = None
    strategy: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None:
                if key == "extra":
                    result.update(value)
                else:
                    result[key] = value
        return result


@dataclass
class StructuredLogRecord:
    """Structured log record for JSON output."""

    timestamp: str
    level: str
    channel: str
    event_type: str
    message: str
    logger_name: str
    context: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "level": self.level,
            "channel": self.channel,
            "event_type": self.event_type,
            "message": self.message,
            "logger": self.logger_name,
            "context": self.context,
            "data": self.data,
        }

    def to_json(self) -> str:
        # Decimals are serialized as strings to keep full precision
        return json.dumps(self.to_dict(), default=str)


class JSONFormatter(logging.Formatter):
    """Formatter that outputs JSON structured logs."""

    def __init__(self, channel: LogChannel = LogChannel.ACCOUNTING):
        super().__init__()
        self._channel = channel

    def format(self, record: logging.LogRecord) -> str:
        context = {
            "correlation_id": correlation_id_var.get(),
            "operation": operation_var.get(),
            "account": account_var.get(),
        }
        context = {k: v for k, v in context.items() if v is not None}

        if hasattr(record, "context") and isinstance(record.context, dict):
            context.update(record.context)

        event_type = getattr(record, "event_type", "log.message")
        if isinstance(event_type, EventType):
            event_type = event_type.value

        data = getattr(record, "data", {})
        if not isinstance(data, dict):
            data = {"value": data}

        structured = StructuredLogRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=record.levelname,
            channel=self._channel.value,
            event_type=event_type,
            message=record.getMessage(),
            logger_name=record.name,
            context=context,
            data=data,
        )

        return structured.to_json()


class StructuredLogger:
    """
    Structured logger with JSON output and correlation ID support.

    Writes ``<channel>.jsonl`` into ``log_dir`` (or the ``LOG_DIR``
    environment variable). Without a log directory nothing is written to
    disk; set ``LOG_JSON_CONSOLE=true`` to mirror records to stdout.
    """

    def __init__(
        self,
        name: str,
        channel: LogChannel = LogChannel.ACCOUNTING,
        level: int = logging.INFO,
        log_dir: Optional[Path] = None,
    ):
        self._name = name
        self._channel = channel
        self._logger = logging.getLogger(f"structured.{channel.value}.{name}")
        self._logger.setLevel(level)
        self._logger.propagate = False

        if self._logger.handlers:
            return

        if log_dir is None and os.getenv("LOG_DIR"):
            log_dir = Path(os.environ["LOG_DIR"])

        if log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / f"{channel.value}.jsonl",
                maxBytes=50 * 1024 * 1024,  # 50 MB
                backupCount=10,
                encoding="utf-8",
            )
            file_handler.setFormatter(JSONFormatter(channel))
            self._logger.addHandler(file_handler)

        if os.getenv("LOG_JSON_CONSOLE", "false").lower() == "true":
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(JSONFormatter(channel))
            self._logger.addHandler(console_handler)

        if not self._logger.handlers:
            self._logger.addHandler(logging.NullHandler())

    @property
    def channel(self) -> LogChannel:
        return self._channel

    def _log(
        self,
        level: int,
        event_type: Union[str, EventType],
        message: str,
        context: Optional[LogContext] = None,
        **data: Any,
    ) -> None:
        """Internal logging method."""
        extra = {
            "event_type": event_type,
            "data": data,
        }
        if context:
            extra["context"] = context.to_dict()

        self._logger.log(level, message, extra=extra)

    def debug(self, event_type: Union[str, EventType], message: str,
              context: Optional[LogContext] = None, **data: Any) -> None:
        self._log(logging.DEBUG, event_type, message, context, **data)

    def info(self, event_type: Union[str, EventType], message: str,
             context: Optional[LogContext] = None, **data: Any) -> None:
        self._log(logging.INFO, event_type, message, context, **data)

    def warning(self, event_type: Union[str, EventType], message: str,
                context: Optional[LogContext] = None, **data: Any) -> None:
        self._log(logging.WARNING, event_type, message, context, **data)

    def error(self, event_type: Union[str, EventType], message: str,
              context: Optional[LogContext] = None, **data: Any) -> None:
        self._log(logging.ERROR, event_type, message, context, **data)


class AccountingLogger(StructuredLogger):
    """Specialized logger for value-moving events."""

    def __init__(self, name: str, log_dir: Optional[Path] = None):
        super().__init__(name, LogChannel.ACCOUNTING, log_dir=log_dir)

    def deposit_received(
        self,
        receipt_id: int,
        depositor: str,
        token: str,
        amount: Any,
        cycle_id: int,
        fee_paid: Any = None,
        **extra: Any,
    ) -> None:
        """Log a deposit into the batch."""
        ctx = LogContext(account=depositor, token=token, cycle_id=cycle_id)
        self.info(
            EventType.DEPOSIT_RECEIVED,
            f"Deposit received: {amount} {token} (receipt {receipt_id})",
            context=ctx,
            receipt_id=receipt_id,
            amount=amount,
            fee_paid=fee_paid,
            **extra,
        )

    def cycle_closed(
        self,
        cycle_id: int,
        total_deposited_usd: Any,
        received_by_strategies_usd: Any,
        price_per_share: Any,
        new_shares: Any,
        **extra: Any,
    ) -> None:
        """Log an allocation cycle close."""
        ctx = LogContext(cycle_id=cycle_id)
        self.info(
            EventType.CYCLE_CLOSED,
            f"Cycle {cycle_id} closed at pps {price_per_share}",
            context=ctx,
            total_deposited_usd=total_deposited_usd,
            received_by_strategies_usd=received_by_strategies_usd,
            price_per_share=price_per_share,
            new_shares=new_shares,
            **extra,
        )

    def fee_shares_minted(
        self,
        cycle_id: int,
        collector: str,
        shares: Any,
        yield_usd: Any,
        **extra: Any,
    ) -> None:
        """Log protocol fee share mint."""
        ctx = LogContext(account=collector, cycle_id=cycle_id)
        self.info(
            EventType.FEE_SHARES_MINTED,
            f"Protocol fee: {shares} shares on {yield_usd} USD yield",
            context=ctx,
            shares=shares,
            yield_usd=yield_usd,
            **extra,
        )

    def withdrawal_executed(
        self,
        account: str,
        token: str,
        shares: Any,
        amount_out: Any,
        **extra: Any,
    ) -> None:
        """Log a settled withdrawal."""
        ctx = LogContext(account=account, token=token)
        self.info(
            EventType.WITHDRAWAL_EXECUTED,
            f"Withdrawal: {shares} shares -> {amount_out} {token}",
            context=ctx,
            shares=shares,
            amount_out=amount_out,
            **extra,
        )

    def rebalance_executed(self, kind: str, moves: int, **extra: Any) -> None:
        """Log a rebalance."""
        self.info(
            EventType.REBALANCE_EXECUTED,
            f"Rebalance ({kind}): {moves} moves",
            kind=kind,
            moves=moves,
            **extra,
        )

    def swap_executed(
        self,
        token_in: str,
        token_out: str,
        amount_in: Any,
        amount_out: Any,
        plugin: str,
        **extra: Any,
    ) -> None:
        self.debug(
            EventType.SWAP_EXECUTED,
            f"Swap {amount_in} {token_in} -> {amount_out} {token_out} via {plugin}",
            amount_in=amount_in,
            amount_out=amount_out,
            token_in=token_in,
            token_out=token_out,
            plugin=plugin,
            **extra,
        )


class AuditLogger(StructuredLogger):
    """Specialized logger for audit events."""

    def __init__(self, name: str, log_dir: Optional[Path] = None):
        super().__init__(name, LogChannel.AUDIT, log_dir=log_dir)

    def config_changed(
        self,
        config_key: str,
        old_value: Any,
        new_value: Any,
        changed_by: Optional[str] = None,
        **extra: Any,
    ) -> None:
        """Log configuration change."""
        ctx = LogContext(account=changed_by)
        self.info(
            EventType.CONFIG_CHANGED,
            f"Config changed: {config_key}",
            context=ctx,
            config_key=config_key,
            old_value=str(old_value),
            new_value=str(new_value),
            **extra,
        )

    def registry_changed(self, action: str, changed_by: Optional[str] = None, **extra: Any) -> None:
        """Log a strategy or token registry change."""
        ctx = LogContext(account=changed_by)
        self.info(
            EventType.REGISTRY_CHANGED,
            f"Registry: {action}",
            context=ctx,
            action=action,
            **extra,
        )

    def role_changed(
        self,
        role: str,
        account: str,
        granted: bool,
        changed_by: Optional[str] = None,
    ) -> None:
        """Log a role grant or revoke."""
        event = EventType.ROLE_GRANTED if granted else EventType.ROLE_REVOKED
        verb = "granted to" if granted else "revoked from"
        self.info(
            event,
            f"Role {role} {verb} {account}",
            context=LogContext(account=changed_by),
            role=role,
            target=account,
        )

    def authorization_denied(self, account: str, required: list[str], **extra: Any) -> None:
        """Log a rejected privileged call."""
        self.warning(
            EventType.AUTHORIZATION_DENIED,
            f"Authorization denied: {account} lacks {', '.join(required)}",
            context=LogContext(account=account),
            required=required,
            **extra,
        )


# Context management functions
def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return correlation_id_var.get()


@contextmanager
def operation_context(operation: str, account: Optional[str] = None) -> Iterator[str]:
    """
    Tag every record logged inside the block with ``operation``.

    An active correlation ID is joined, otherwise a new one is generated.
    The previous context is restored on exit. Yields the correlation ID.
    """
    cid = correlation_id_var.get() or generate_correlation_id()
    tokens = [correlation_id_var.set(cid), operation_var.set(operation)]
    if account:
        tokens.append(account_var.set(account))
    try:
        yield cid
    finally:
        for token in reversed(tokens):
            token.var.reset(token)


# Logger factory functions
_loggers: Dict[str, StructuredLogger] = {}


def get_accounting_logger(name: str = "accounting") -> AccountingLogger:
    """Get or create an accounting logger."""
    key = f"accounting.{name}"
    if key not in _loggers:
        _loggers[key] = AccountingLogger(name)
    return _loggers[key]  # type: ignore


def get_audit_logger(name: str = "audit") -> AuditLogger:
    """Get or create an audit logger."""
    key = f"audit.{name}"
    if key not in _loggers:
        _loggers[key] = AuditLogger(name)
    return _loggers[key]  # type: ignore
