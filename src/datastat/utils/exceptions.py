"""
Custom exception classes for the DataStat engine.
User mistakes (bad arguments, unknown names) carry 4xx codes so the API layer
can tell them apart from failures of the engine itself.
"""
from typing import Iterable, List


class AppException(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

class FileProcessingError(AppException):
    """Raised when file upload or parsing fails."""
    def __init__(self, message: str = "Failed to process the uploaded file."):
        super().__init__(message, status_code=400)

class CommandSyntaxError(AppException):
    """Raised when a recognized command has malformed or missing arguments."""
    def __init__(self, message: str = "Invalid command syntax."):
        super().__init__(message, status_code=400)

class VariableNotFoundError(AppException):
    """Raised when a command references columns the active sheet does not have."""
    def __init__(self, names: Iterable[str], where: str = ""):
        self.names: List[str] = list(names)
        label = "Variable" if len(self.names) == 1 else "Variables"
        suffix = f" in {where}" if where else ""
        message = f"{label} not found{suffix}: {', '.join(self.names)}"
        super().__init__(message, status_code=404)

class VariableExistsError(AppException):
    """Raised when generate would overwrite an existing column."""
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Variable {name} already exists.", status_code=409)

class ExpressionError(AppException):
    """Raised when an expression fails to compile or to evaluate."""
    def __init__(self, message: str = "Invalid expression."):
        super().__init__(message, status_code=400)

class DatasetNotFoundError(AppException):
    """Raised when a command names a dataset that is not loaded."""
    def __init__(self, name: str, available: Iterable[str] = ()):
        self.name = name
        self.available: List[str] = list(available)
        listing = ", ".join(self.available) if self.available else "(none)"
        super().__init__(
            f"Dataset '{name}' not found. Available: {listing}", status_code=404
        )

class NoActiveDatasetError(AppException):
    """Raised when a command arrives before any data has been loaded."""
    def __init__(self, message: str = "No data loaded."):
        super().__init__(message, status_code=400)

class ReasoningResponseError(AppException):
    """Raised when the reasoning service reply cannot be parsed."""
    def __init__(self, message: str = "The reasoning service returned an unreadable response."):
        super().__init__(message, status_code=502)
