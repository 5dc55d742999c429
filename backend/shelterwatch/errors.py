"""Exception hierarchy for ShelterWatch."""

from typing import Any


class ShelterWatchError(Exception):
    """Base exception for all ShelterWatch errors."""


class ValidationError(ShelterWatchError):
    """A candidate observation failed validation and was not committed."""

    def __init__(self, field: str, message: str, value: Any = None) -> None:
        self.field = field
        self.value = value
        super().__init__(f"{field}: {message}")


class TransientIOError(ShelterWatchError):
    """Store unreachable or live feed disconnected."""


class LocationUnavailable(ShelterWatchError):
    """The geolocation provider could not produce a coordinate."""
