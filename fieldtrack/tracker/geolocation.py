"""Geolocation providers."""

from abc import ABC, abstractmethod
from typing import Optional

from ..sync.errors import GeolocationError
from .models import Location


class GeolocationProvider(ABC):
    """Source of the device's current position."""

    @abstractmethod
    async def get_current_position(self) -> Location:
        """
        Read the current position.

        Raises:
            GeolocationError: Permission denied or position unavailable
        """


class FixedGeolocation(GeolocationProvider):
    """Position reported by the client device alongside a request."""

    def __init__(self, latitude: Optional[float], longitude: Optional[float]):
        self.latitude = latitude
        self.longitude = longitude

    async def get_current_position(self) -> Location:
        if self.latitude is None or self.longitude is None:
            raise GeolocationError(
                "Failed to get location. Please enable location services and try again."
            )
        if not -90 <= self.latitude <= 90 or not -180 <= self.longitude <= 180:
            raise GeolocationError(f"Invalid coordinates: {self.latitude}, {self.longitude}")
        return Location(latitude=self.latitude, longitude=self.longitude)
