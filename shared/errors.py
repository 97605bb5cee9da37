"""
Shared error handling for the ACL cache subsystem.
"""

from typing import Dict, Any, Optional


class AccessLayerException(Exception):
    """Base exception for the ACL cache subsystem."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a log/serialization friendly dict."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RemoteAclSourceError(AccessLayerException):
    """The remote ACL source could not return ACLs."""

    def __init__(self, message: str = "Remote ACL source error", details: Optional[Dict[str, Any]] = None):
        super().__init__("REMOTE_ACL_SOURCE_ERROR", message, details)


class ConsistencyStoreUnavailableError(AccessLayerException):
    """The shared hash store used for cross-process consistency is unreachable."""

    def __init__(self, message: str = "Consistency store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONSISTENCY_STORE_UNAVAILABLE", message, details)
