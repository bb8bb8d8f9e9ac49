"""
Platform Collaborator Interfaces for RakshaSetu

Abstract device and backend capabilities consumed by the SOS flow:
location, battery, SMS, haptics, user-facing alerts and the document
store. Concrete adapters live in core.database and services.sos.devices;
tests provide in-memory fakes.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from models.sos import Coordinate


PositionCallback = Callable[[Coordinate], Awaitable[None]]
DocumentCallback = Callable[[Optional[Dict[str, Any]]], None]


class Subscription(ABC):
    """Handle returned by every subscribe/watch call"""

    @abstractmethod
    def unsubscribe(self) -> None:
        """Stop receiving callbacks. Must be safe to call more than once."""
        pass

    @property
    @abstractmethod
    def active(self) -> bool:
        pass


class CallbackSubscription(Subscription):
    """Subscription that runs a cleanup callback exactly once"""

    def __init__(self, cleanup: Callable[[], None]):
        self._cleanup = cleanup
        self._active = True

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cleanup()

    @property
    def active(self) -> bool:
        return self._active


class LocationProvider(ABC):
    """Device location services"""

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask for foreground location permission; True when granted"""
        pass

    @abstractmethod
    async def current_position(self) -> Coordinate:
        """Return the current coordinate or raise on failure"""
        pass

    @abstractmethod
    async def watch_position(
        self,
        callback: PositionCallback,
        time_interval: float,
        distance_interval: float
    ) -> Subscription:
        """
        Start delivering coordinates to callback

        Args:
            callback: Awaited with each new coordinate
            time_interval: Desired seconds between updates
            distance_interval: Desired metres moved between updates

        Returns:
            Subscription that stops the watch
        """
        pass


class BatteryProvider(ABC):
    """Device battery status"""

    @abstractmethod
    async def get_battery_level(self) -> Optional[float]:
        """Return the charge as a fraction 0.0-1.0, or None if unknown"""
        pass


class SmsGateway(ABC):
    """Outgoing SMS capability"""

    @abstractmethod
    async def is_available(self) -> bool:
        pass

    @abstractmethod
    async def send(self, phone_numbers: List[str], body: str) -> None:
        """Send one message body to all numbers in a single batch"""
        pass


class HapticFeedback(ABC):
    """Vibration motor"""

    @abstractmethod
    def vibrate(self, duration_ms: int) -> None:
        pass


class AlertPresenter(ABC):
    """User-visible alerts"""

    @abstractmethod
    def show_alert(self, title: str, message: str) -> None:
        pass


class DocumentStore(ABC):
    """
    Durable document store addressed by collection path and document id.

    Collection paths may be nested, e.g. ``threads/<id>/messages``.
    """

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Create or replace a document"""
        pass

    @abstractmethod
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Create a document with a generated id and return the id"""
        pass

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Merge fields into an existing document; raises if it does not exist"""
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document; deleting a missing document is not an error"""
        pass

    @abstractmethod
    async def query(self, collection: str, field: str, op: str, value: Any) -> List[Dict[str, Any]]:
        """
        Return documents matching a single field condition

        Supported operators are ``==`` and ``array-contains``. Each result
        carries its document id under ``id``.
        """
        pass

    @abstractmethod
    def subscribe(self, collection: str, doc_id: str, callback: DocumentCallback) -> Subscription:
        """
        Receive the document now and after every change

        The callback gets the document data, or None when the document
        does not exist.
        """
        pass
