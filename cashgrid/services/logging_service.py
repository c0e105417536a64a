"""
Structured logging setup.

All modules obtain their logger through ``get_structured_logger().get_logger(__name__)``
and log key/value events, e.g. ``logger.info("Cell edited", operation="commit_cell_edit", row=3)``.
"""

import logging
import os
from typing import Optional

import structlog


class StructuredLogger:
    """Structured logging setup shared by the whole package"""

    def __init__(self, service_name: str = "cashgrid", log_level: Optional[str] = None):
        self.service_name = service_name
        self.environment = os.getenv("APP_ENVIRONMENT", "development")
        self.log_level = (log_level or os.getenv("APP_LOG_LEVEL") or self._default_level()).upper()
        self._setup_logging()

    def _default_level(self) -> str:
        return "INFO" if self.environment == "production" else "DEBUG"

    def _setup_logging(self):
        """Configure structlog on top of the standard library logger"""
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        logging.basicConfig(
            level=getattr(logging, self.log_level, logging.INFO),
            format="%(message)s",
        )
        logging.getLogger(self.service_name).setLevel(self.log_level)

    def set_level(self, log_level: str) -> None:
        self.log_level = log_level.upper()
        logging.getLogger(self.service_name).setLevel(self.log_level)

    def get_logger(self, name: str = None) -> structlog.stdlib.BoundLogger:
        """Get a structured logger instance"""
        logger_name = name or self.service_name
        return structlog.get_logger(logger_name)


_structured_logger: Optional[StructuredLogger] = None


def get_structured_logger() -> StructuredLogger:
    """Get global structured logger instance"""
    global _structured_logger
    if _structured_logger is None:
        _structured_logger = StructuredLogger()
    return _structured_logger


def configure_logging(log_level: Optional[str] = None) -> StructuredLogger:
    """Configure and return the global structured logger."""
    logger_instance = get_structured_logger()
    if log_level:
        logger_instance.set_level(log_level)
    return logger_instance
