from typing import Optional


class AuthenticationRequired(Exception):
    """No usable bearer credential or session."""


class DeviceNotReady(Exception):
    """The playback device has not signalled readiness."""


class ActivationFailed(Exception):
    """The playback device could not be confirmed as the active output."""


class VendorApiError(Exception):
    """Non-success response from the music service API."""

    def __init__(self, status: Optional[int], message: str = "Vendor API error") -> None:
        super().__init__(f"{message} (status={status})")
        self.status = status
        self.message = message


class TemporaryFailure(Exception):
    """Transient provider or network failure. Retrying may succeed."""


class PersistenceFailure(Exception):
    """A storage tier could not be read or written."""


class InvalidAlbumUrl(ValueError):
    """The URL does not contain a recognizable album identifier."""


class InvalidPayload(ValueError):
    """An external payload does not match the expected shape."""


class NotFound(Exception):
    """Requested resource was not found."""
