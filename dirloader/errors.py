# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Error types for the directory loader.

This module provides:
- Custom exception types for each loader failure mode
- Error categories and severities for structured reporting
- An error handler that logs structured error info
"""

from __future__ import annotations

import logging
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Error Categories
# =============================================================================


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    CONFIG_INVALID = "config_invalid"
    DIRECTORY_LISTING = "directory_listing"
    MODULE_RESOLUTION = "module_resolution"
    UNIT_DESTROY = "unit_destroy"
    UNIT_NOT_FOUND = "unit_not_found"
    UNIT_CONFLICT = "unit_conflict"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# =============================================================================
# Custom Exception Types
# =============================================================================


class LoaderError(Exception):
    """Base exception for all loader errors.

    Provides structured error information including:
    - Error category and severity
    - Correlation ID for tracking
    - Recovery suggestions
    - Original exception chain
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "type": type(self).__name__,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "cause": repr(self.cause) if self.cause else None,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        result = f"[{self.correlation_id}] {self.message}"
        if self.recovery_hint:
            result += f"\nRecovery hint: {self.recovery_hint}"
        return result


class ConfigError(LoaderError):
    """Invalid static loader configuration."""

    def __init__(self, message: str = "Bad config, failed to initialize loader", **kwargs: Any):
        super().__init__(
            message,
            category=ErrorCategory.CONFIG_INVALID,
            severity=ErrorSeverity.CRITICAL,
            recovery_hint=kwargs.pop(
                "recovery_hint",
                "Provide a non-empty 'path', and a 'main_file' when 'nested' is enabled.",
            ),
            **kwargs,
        )


class LoadFilesError(LoaderError):
    """Listing a directory for units failed."""

    def __init__(self, cause: BaseException, path: str, **kwargs: Any):
        super().__init__(
            str(cause) or f"Failed to list directory: {path}",
            category=ErrorCategory.DIRECTORY_LISTING,
            recovery_hint="Check that the directory exists and is readable.",
            cause=cause,
            **kwargs,
        )
        self.path = path
        self.details["path"] = path


class FileLoadError(LoaderError):
    """Resolving the module for a single path failed."""

    def __init__(self, cause: BaseException, file_path: str, **kwargs: Any):
        super().__init__(
            str(cause) or f"Failed to load file: {file_path}",
            category=ErrorCategory.MODULE_RESOLUTION,
            cause=cause,
            **kwargs,
        )
        self.file_path = file_path
        self.details["file_path"] = file_path


class DestroyFileError(LoaderError):
    """A destroy hook raised while tearing down a unit.

    The unit stays registered, since its resources were not released.
    """

    def __init__(self, cause: BaseException, file_path: str, instance: Any, **kwargs: Any):
        super().__init__(
            str(cause) or f"Failed to destroy unit loaded from: {file_path}",
            category=ErrorCategory.UNIT_DESTROY,
            recovery_hint="Fix the destroy hook, then unload the unit again.",
            cause=cause,
            **kwargs,
        )
        self.file_path = file_path
        self.instance = instance
        self.details["file_path"] = file_path


class FileNotFoundError(LoaderError):
    """A by-name operation referenced a name that is not registered."""

    def __init__(self, file_name: str, **kwargs: Any):
        super().__init__(
            "File not found",
            category=ErrorCategory.UNIT_NOT_FOUND,
            severity=ErrorSeverity.WARNING,
            **kwargs,
        )
        self.file_name = file_name
        self.details["file_name"] = file_name


class DuplicateUnitError(LoaderError):
    """Two different paths claim the same logical name."""

    def __init__(self, name: str, file_path: str, existing_path: str, **kwargs: Any):
        super().__init__(
            f"Name '{name}' from {file_path} is already registered for {existing_path}",
            category=ErrorCategory.UNIT_CONFLICT,
            recovery_hint="Rename one of the units or add one of them to 'ignored'.",
            **kwargs,
        )
        self.name = name
        self.file_path = file_path
        self.existing_path = existing_path
        self.details.update(name=name, file_path=file_path, existing_path=existing_path)


# =============================================================================
# Error Info
# =============================================================================


@dataclass
class ErrorInfo:
    """Structured error information."""

    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    correlation_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)
    recovery_hint: Optional[str] = None
    traceback: Optional[str] = None
    original_exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
            "recovery_hint": self.recovery_hint,
            "traceback": self.traceback,
            "original_exception": self.original_exception,
        }


# =============================================================================
# Error Handler
# =============================================================================


class ErrorHandler:
    """Logs loader errors with their structured details.

    Usage:
        handler = ErrorHandler()
        error_info = handler.handle(err, context={"event": "error"})
    """

    _LEVELS = {
        ErrorSeverity.DEBUG: logging.DEBUG,
        ErrorSeverity.INFO: logging.INFO,
        ErrorSeverity.WARNING: logging.WARNING,
        ErrorSeverity.ERROR: logging.ERROR,
        ErrorSeverity.CRITICAL: logging.CRITICAL,
    }

    def __init__(
        self,
        logger_name: str = "dirloader",
        include_traceback: bool = True,
    ):
        self.logger = logging.getLogger(logger_name)
        self.include_traceback = include_traceback

    def handle(
        self,
        exception: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorInfo:
        """Log an exception and return structured error info.

        Args:
            exception: The exception to handle.
            context: Additional context about the operation.

        Returns:
            ErrorInfo with structured error details.
        """
        error_info = self._create_error_info(exception, context)
        self._log_error(error_info)
        return error_info

    def _create_error_info(
        self,
        exception: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorInfo:
        tb = None
        if self.include_traceback and exception.__traceback__ is not None:
            tb = "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            )

        if isinstance(exception, LoaderError):
            return ErrorInfo(
                message=exception.message,
                category=exception.category,
                severity=exception.severity,
                correlation_id=exception.correlation_id,
                timestamp=exception.timestamp,
                details={**exception.details, **(context or {})},
                recovery_hint=exception.recovery_hint,
                traceback=tb,
                original_exception=repr(exception.cause) if exception.cause else None,
            )

        return ErrorInfo(
            message=str(exception),
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            correlation_id=str(uuid.uuid4())[:8],
            details=context or {},
            traceback=tb,
            original_exception=type(exception).__name__,
        )

    def _log_error(self, error_info: ErrorInfo) -> None:
        log_level = self._LEVELS.get(error_info.severity, logging.ERROR)

        msg = f"[{error_info.correlation_id}] {error_info.category.value}: {error_info.message}"
        if error_info.details:
            msg += f" | details: {error_info.details}"

        self.logger.log(log_level, msg)

        if error_info.traceback:
            self.logger.debug(
                "[%s] Traceback:\n%s", error_info.correlation_id, error_info.traceback
            )


__all__ = [
    "ErrorCategory",
    "ErrorSeverity",
    "LoaderError",
    "ConfigError",
    "LoadFilesError",
    "FileLoadError",
    "DestroyFileError",
    "FileNotFoundError",
    "DuplicateUnitError",
    "ErrorInfo",
    "ErrorHandler",
]
