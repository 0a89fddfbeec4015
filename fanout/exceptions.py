"""Application-level exception types.

Convention:
- ``InternalServerError`` for errors whose details must never reach clients
  (decryption failures, storage faults). The global handler logs the full
  message at ERROR and returns a generic "Internal server error" (500).
- ``ValueError`` for validation errors that are safe to forward to clients.
  ``PostValidationError`` and ``UnsupportedPlatformError`` reject a whole post
  request before any platform is attempted and map to HTTP 400; any other
  ``ValueError`` becomes a 422 with ``str(exc)`` as the detail.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients."""


class PostValidationError(ValueError):
    """The post itself is invalid: empty text, no platforms, too many images."""


class UnsupportedPlatformError(ValueError):
    """One or more requested platform ids are not in the registry."""

    def __init__(self, platform_ids: list[str]) -> None:
        self.platform_ids = platform_ids
        super().__init__(f"Unsupported platforms: {', '.join(platform_ids)}")
