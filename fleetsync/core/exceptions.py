"""Custom exception types."""

from __future__ import annotations


class FleetSyncError(Exception):
    """Base class for all fleetsync errors."""


class ProviderError(FleetSyncError):
    """Raised when a GPS provider cannot satisfy the request."""

    def __init__(self, provider_id: str, message: str = "Provider error") -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.message = message


class TransientProviderError(ProviderError):
    """Network failure, timeout or HTTP 5xx from a provider."""

    def __init__(self, provider_id: str, message: str = "Provider request failed") -> None:
        super().__init__(provider_id, message=message)


class ProviderAuthError(ProviderError):
    """HTTP 401/403 from a provider. Never retried."""

    def __init__(
        self,
        provider_id: str,
        message: str = "Invalid credentials",
        status_code: int | None = None,
    ) -> None:
        super().__init__(provider_id, message=message)
        self.status_code = status_code


class UnsupportedProviderError(ProviderError):
    """No adapter is registered for the provider's vendor type."""

    def __init__(self, vendor_type: str) -> None:
        super().__init__(vendor_type, message=f"Unsupported GPS provider type: {vendor_type}")
        self.vendor_type = vendor_type


class CredentialError(ProviderError):
    """Stored credentials could not be decrypted or parsed."""

    def __init__(self, provider_id: str, message: str = "Invalid credentials format") -> None:
        super().__init__(provider_id, message=message)


class DataError(FleetSyncError):
    """A provider record carried malformed or missing data."""


class AssetNotFoundError(FleetSyncError):
    """Raised when a location update targets an unknown asset."""

    def __init__(self, asset_id: int) -> None:
        super().__init__(f"Trailer {asset_id} not found")
        self.asset_id = asset_id


class LimiterClearedError(FleetSyncError):
    """Delivered to pending queued operations when their queue is cleared."""


class GeocodingError(FleetSyncError):
    """Reverse geocoding returned no usable address."""


class ProviderNotFoundError(ProviderError):
    def __init__(self, provider_id: str) -> None:
        super().__init__(provider_id, message="GPS provider not found")


class UserNotFoundError(FleetSyncError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id
