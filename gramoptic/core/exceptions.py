# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Gram-Optic Exception Hierarchy

Exception Hierarchy:
    GramOpticError (base)
    ├── ConfigError
    │   ├── ConfigValidationError
    │   └── ConfigFileError
    ├── InvalidSizeError
    ├── CommandError
    │   └── CommandTimeoutError
    ├── ProvisioningError
    │   ├── DependencyMissingError
    │   └── ResourceExhaustedError
    ├── TeardownPartialFailure
    ├── ExternalQueryFailure
    └── ProcessControlError
"""

from enum import Enum
from typing import Any, Dict, List, Optional

# ============================================================================
# Base Exceptions
# ============================================================================


class GramOpticError(Exception):
    """Base exception for all gram-optic errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        result = {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

        if self.cause:
            result["cause"] = {
                "type": self.cause.__class__.__name__,
                "message": str(self.cause),
            }

        return result

    def __str__(self):
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.cause:
            base += f" | Caused by: {self.cause}"
        return base


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigError(GramOpticError):
    """Configuration-related errors"""


class ConfigValidationError(ConfigError):
    """Configuration validation failed"""

    def __init__(
        self, message: str, errors: Optional[List[str]] = None, **kwargs
    ):
        super().__init__(message, **kwargs)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.errors
        return result


class ConfigFileError(ConfigError):
    """Configuration file could not be read or parsed"""


class InvalidSizeError(GramOpticError):
    """Capacity token could not be parsed"""

    def __init__(self, message: str, token: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.token = token


# ============================================================================
# Host Command Errors
# ============================================================================


class CommandError(GramOpticError):
    """External command exited with a non-zero status"""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "command": self.command,
                "returncode": self.returncode,
                "stderr": self.stderr,
            }
        )
        return result


class CommandTimeoutError(CommandError):
    """External command did not finish in time"""

    def __init__(self, message: str, timeout: float, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["timeout"] = self.timeout
        return result


# ============================================================================
# Provisioning Errors
# ============================================================================


class ProvisioningStep(Enum):
    """Step of a tier provisioning sequence"""

    MODULE_LOAD = "module_load"
    DEVICE_ALLOCATION = "device_allocation"
    ALLOCATION = "allocation"
    CONFIGURE = "configure"
    FORMAT = "format"
    ACTIVATION = "activation"


class ProvisioningError(GramOpticError):
    """A tier could not be provisioned"""

    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        step: Optional[ProvisioningStep] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.tier = tier
        self.step = step

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "tier": self.tier,
                "step": self.step.value if self.step else None,
            }
        )
        return result


class DependencyMissingError(ProvisioningError):
    """A required system capability is absent"""

    def __init__(self, message: str, dependency: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.dependency = dependency

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["dependency"] = self.dependency
        return result


class ResourceExhaustedError(ProvisioningError):
    """Not enough disk space or device-pool capacity"""

    def __init__(
        self,
        message: str,
        required: Optional[int] = None,
        available: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.required = required
        self.available = available

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"required": self.required, "available": self.available})
        return result


class TeardownPartialFailure(GramOpticError):
    """A backing store could not be fully released"""

    def __init__(
        self,
        message: str,
        tier: Optional[str] = None,
        identifier: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.tier = tier
        self.identifier = identifier

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({"tier": self.tier, "identifier": self.identifier})
        return result


# ============================================================================
# Runtime Errors
# ============================================================================


class ExternalQueryFailure(GramOpticError):
    """Compositor unreachable or returned malformed data"""


class ProcessControlError(GramOpticError):
    """The daemon process could not be started or stopped"""

    def __init__(self, message: str, pid: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.pid = pid

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["pid"] = self.pid
        return result
