"""
Structured logging for the dual-lock trader.
Supports JSON logging so the worker output can be shipped to a log store.
"""

import logging
import sys
from typing import Optional
from pythonjsonlogger import jsonlogger

ROOT_LOGGER = "polylock"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['timestamp'] = self.formatTime(record, self.datefmt)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    logger_name: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Whether to emit one JSON object per line
        logger_name: Optional specific logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name or ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        formatter = CustomJsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger with the given name."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class TradeLogger:
    """Specialized logger for simulated trade events."""

    def __init__(self):
        self.logger = get_logger("trades")

    def order_placed(
        self,
        asset: str,
        label: str,
        side: str,
        size: float,
        price: float,
        order_type: str,
        status: str
    ):
        """Log an order submission and its immediate status."""
        self.logger.info(
            f"[{asset}] {label} order {status}",
            extra={
                "event": "order_placed",
                "asset": asset,
                "label": label,
                "side": side,
                "size": size,
                "price": price,
                "order_type": order_type,
                "status": status
            }
        )

    def order_filled(
        self,
        asset: str,
        order_id: str,
        side: str,
        fill_price: float,
        fill_size: float
    ):
        """Log a fill applied to a position."""
        self.logger.info(
            f"[{asset}] Order filled",
            extra={
                "event": "order_filled",
                "asset": asset,
                "order_id": order_id,
                "side": side,
                "fill_price": fill_price,
                "fill_size": fill_size
            }
        )

    def order_blocked(self, asset: str, label: str, reason: str):
        """Log an order the risk limiter refused."""
        self.logger.warning(
            f"[{asset}] {label} blocked: {reason}",
            extra={
                "event": "order_blocked",
                "asset": asset,
                "label": label,
                "reason": reason
            }
        )

    def lock_achieved(
        self,
        asset: str,
        pnl_if_yes_wins: float,
        pnl_if_no_wins: float
    ):
        """Log the first dual-profit lock of a window."""
        self.logger.info(
            f"[{asset}] Dual profit lock achieved",
            extra={
                "event": "lock_achieved",
                "asset": asset,
                "pnl_if_yes_wins": round(pnl_if_yes_wins, 4),
                "pnl_if_no_wins": round(pnl_if_no_wins, 4)
            }
        )

    def window_resolved(
        self,
        asset: str,
        window_id: int,
        winner: str,
        result: str,
        pnl: float
    ):
        """Log the settled outcome of a completed window."""
        self.logger.info(
            f"[{asset}] Window resolved: {result}",
            extra={
                "event": "window_resolved",
                "asset": asset,
                "window_id": window_id,
                "winner": winner,
                "result": result,
                "pnl": round(pnl, 4)
            }
        )
