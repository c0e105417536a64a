"""
Exceptions raised by the store, forecast and persistence layers.
"""

from typing import Optional


class CashGridError(Exception):
    """Base class for cashgrid errors"""
    pass


class StoreError(CashGridError):
    """A load, save or version call against a model store failed"""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ModelNotFoundError(StoreError):
    """Nothing is stored for the requested identity or version"""

    def __init__(self, message: str = "Not found", detail: Optional[str] = None):
        super().__init__(message, status_code=404, detail=detail)


class ForecastError(CashGridError):
    """The forecasting collaborator failed or returned an unusable response"""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail or message
