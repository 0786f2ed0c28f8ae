"""
Errors
Exception types raised by the Timegate core
"""


class TimegateError(Exception):
    """Base class for Timegate errors"""


class StorePersistenceError(TimegateError):
    """Raised when the state snapshot cannot be written to disk"""

    def __init__(self, path: str, cause: Exception):
        super().__init__(f"Failed to persist state to {path}: {cause}")
        self.path = path
        self.cause = cause


class ConfigError(TimegateError):
    """Raised when the guild configuration is invalid"""
