from __future__ import annotations

"""
Error taxonomy shared by every provider.

    ImageryError
      ├─ InvalidCoordinate      (bad lat/lon, pole)
      ├─ ConfigurationError     (missing credential / bad config, raised at construction)
      └─ AvailabilityError      (upstream call failed; carries `reason`)
           ├─ AuthenticationError   (token exchange)
           ├─ UpstreamUnavailable   (non-2xx or transport failure)
           ├─ ParseError            (malformed JSON/XML/image)
           └─ NoImageryFound        (valid response, nothing usable)
"""

from typing import Optional


class ImageryError(Exception):
    """Base class for all engine failures."""

    retryable: bool = False


class InvalidCoordinate(ImageryError, ValueError):
    pass


class ConfigurationError(ImageryError, ValueError):
    pass


class AvailabilityError(ImageryError):
    def __init__(self, reason: str, *, provider: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.provider = provider


class AuthenticationError(AvailabilityError):
    def __init__(self, reason: str, *, status: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(reason, provider=provider)
        self.status = status


class UpstreamUnavailable(AvailabilityError):
    """
    Non-success status or transport failure from a provider.

    `status` is None for transport errors (DNS, reset, timeout).
    """

    def __init__(self, reason: str, *, status: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(reason, provider=provider)
        self.status = status

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status is None or self.status == 429 or self.status >= 500


class ParseError(AvailabilityError):
    pass


class NoImageryFound(AvailabilityError):
    pass
