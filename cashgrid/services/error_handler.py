"""
Error handling service: turns caught failures into user-visible notices.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .errors import ForecastError, ModelNotFoundError, StoreError
from .logging_service import get_structured_logger

logger = get_structured_logger().get_logger(__name__)


class NoticeLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notice:
    """A message for the UI layer. Transient notices may be dismissed automatically."""

    level: NoticeLevel
    message: str
    detail: Optional[str] = None
    transient: bool = True
    notice_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class ErrorHandler:
    """Centralized error handling service."""

    def __init__(self):
        self.logger = logger

    def handle_store_error(self, exception: StoreError, operation: str) -> Notice:
        """Handle a failed load/save/version call."""
        if isinstance(exception, ModelNotFoundError):
            return self.handle_missing_data(
                "No saved data found.", operation=operation, detail=exception.detail
            )

        notice = Notice(
            level=NoticeLevel.ERROR,
            message=self._get_user_friendly_message(operation),
            detail=exception.detail or str(exception),
        )
        self.logger.error(
            "Store error",
            error_id=notice.notice_id,
            error_type=type(exception).__name__,
            status_code=exception.status_code,
            operation=operation,
        )
        return notice

    def handle_forecast_error(self, exception: ForecastError) -> Notice:
        """Handle forecast generation failure, keeping the collaborator's detail."""
        notice = Notice(
            level=NoticeLevel.ERROR,
            message=f"Forecast failed: {exception.detail}",
            detail=exception.detail,
        )
        self.logger.error(
            "Forecast error",
            error_id=notice.notice_id,
            detail=exception.detail,
            operation="generate_forecast",
        )
        return notice

    def handle_missing_data(
        self, message: str, operation: str, detail: Optional[str] = None
    ) -> Notice:
        """Recoverable missing-data condition; the grid stays usable."""
        notice = Notice(
            level=NoticeLevel.WARNING,
            message=message,
            detail=detail,
            transient=False,
        )
        self.logger.warning(
            "Missing data",
            error_id=notice.notice_id,
            message=message,
            operation=operation,
        )
        return notice

    def handle_exception(self, exception: Exception, operation: str) -> Notice:
        """Dispatch on the exception type."""
        if isinstance(exception, StoreError):
            return self.handle_store_error(exception, operation)
        if isinstance(exception, ForecastError):
            return self.handle_forecast_error(exception)

        notice = Notice(
            level=NoticeLevel.ERROR,
            message=self._get_user_friendly_message(operation),
            detail=f"{type(exception).__name__}: {exception}",
        )
        self.logger.error(
            "Exception occurred",
            error_id=notice.notice_id,
            error_type=type(exception).__name__,
            operation=operation,
        )
        return notice

    @staticmethod
    def _get_user_friendly_message(operation: str) -> str:
        operation_messages = {
            "load": "Failed to load cash flow data.",
            "save": "Failed to save. Your changes are kept locally.",
            "rollback": "Failed to restore the selected version.",
            "list_versions": "Could not fetch saved versions.",
            "load_classification": "Failed to load classification data.",
            "clear_forecast": "Could not clear the saved forecast.",
            "generate_forecast": "Forecast failed.",
        }
        return operation_messages.get(
            operation, "An unexpected error occurred. Please try again."
        )


_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler
