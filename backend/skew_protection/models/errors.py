"""Error models"""

from enum import Enum
from typing import Optional
import uuid


class ErrorCode(str, Enum):
    """Error codes"""
    DEPLOYMENT_ID_COLLISION = "DEPLOYMENT_ID_COLLISION"
    ASSET_NOT_FOUND = "ASSET_NOT_FOUND"
    VERSION_NOT_FOUND = "VERSION_NOT_FOUND"
    STORAGE_ERROR = "STORAGE_ERROR"
    INVALID_KEY = "INVALID_KEY"
    REALTIME_UNAVAILABLE = "REALTIME_UNAVAILABLE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class ApplicationError(Exception):
    """Application error carrying a code, a hint and whether a retry can help"""
    def __init__(self, code: ErrorCode, message: str, retryable: bool = False, hint: Optional[str] = None):
        self.error_id = str(uuid.uuid4())
        self.code = code
        self.message = message
        self.retryable = retryable
        self.hint = hint
        super().__init__(self.message)

    def model_dump(self):
        """Return dict representation for API responses"""
        return {
            "error_id": self.error_id,
            "code": self.code.value,
            "message": self.message,
            "hint": self.hint,
            "retryable": self.retryable,
        }

    @property
    def http_status(self) -> int:
        """Map error code to HTTP status"""
        mapping = {
            ErrorCode.DEPLOYMENT_ID_COLLISION: 409,
            ErrorCode.ASSET_NOT_FOUND: 404,
            ErrorCode.VERSION_NOT_FOUND: 404,
            ErrorCode.INVALID_KEY: 400,
            ErrorCode.REALTIME_UNAVAILABLE: 404,
            ErrorCode.STORAGE_ERROR: 500,
            ErrorCode.CONFIGURATION_ERROR: 500,
        }
        return mapping.get(self.code, 500)


class DeploymentIdCollisionError(ApplicationError):
    """A deployment id was reused; the build must abort."""
    def __init__(self, deployment_id: str):
        self.deployment_id = deployment_id
        super().__init__(
            code=ErrorCode.DEPLOYMENT_ID_COLLISION,
            message=f'Deployment ID collision detected: "{deployment_id}" has been used previously.',
            retryable=False,
            hint="Update your build configuration to generate a new unique deployment ID.",
        )


class VersionNotFoundError(ApplicationError):
    """A version id is neither retained nor live."""
    def __init__(self, version_id: str):
        self.version_id = version_id
        super().__init__(
            code=ErrorCode.VERSION_NOT_FOUND,
            message=f"Version '{version_id}' is not a retained version",
            hint="Publish the build before broadcasting it.",
        )


class StorageError(ApplicationError):
    """A storage backend failed to read, write or remove a key."""
    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(
            code=ErrorCode.STORAGE_ERROR,
            message=f"Storage operation failed for '{key}': {message}",
            retryable=True,
        )


class RealtimeUnavailableError(ApplicationError):
    """The active platform cannot hold persistent connections."""
    def __init__(self, platform: str):
        super().__init__(
            code=ErrorCode.REALTIME_UNAVAILABLE,
            message=f"Realtime updates are not available on the {platform} platform",
            hint="Poll GET /_skew/version instead.",
        )
