"""
Live Location Session Management

Creates a shareable liveLocations record, keeps its coordinate current
from the device location watch, and tears it down on stop, on expiry, or
when the owning flow closes.
"""

import asyncio
import math
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Dict, Optional

from core.interfaces import DocumentStore, LocationProvider, Subscription
from core.logging import get_logger
from models.sos import Coordinate, LiveLocationSession
from .exceptions import LocationUnavailable, PermissionDenied, SessionCreateFailed


LIVE_LOCATIONS = "liveLocations"
DEFAULT_SHARE_BASE_URL = "https://rakshasetu-c9e0b.web.app/live"


async def require_location_permission(location: LocationProvider):
    """Raise PermissionDenied unless foreground location access is granted"""
    try:
        granted = await location.request_permission()
    except Exception as e:
        raise PermissionDenied(f"Location permission request failed: {e}") from e

    if not granted:
        raise PermissionDenied("Location permission is required.")


@dataclass
class _ActiveSession:
    session: LiveLocationSession
    watch: Optional[Subscription] = None
    expiry_task: Optional[asyncio.Task] = None


class LiveLocationManager:
    """Owns at most one live location session at a time"""

    def __init__(
        self,
        store: DocumentStore,
        location: LocationProvider,
        user_id: Optional[str] = None,
        update_interval: float = 5.0,
        distance_interval: float = 1.0,
        share_base_url: str = DEFAULT_SHARE_BASE_URL
    ):
        self.logger = get_logger('live_location')
        self.store = store
        self.location = location
        self.user_id = user_id
        self.update_interval = update_interval
        self.distance_interval = distance_interval
        self.share_base_url = share_base_url

        self._sessions: Dict[str, _ActiveSession] = {}
        self._start_lock = asyncio.Lock()

    @property
    def active_session(self) -> Optional[LiveLocationSession]:
        for active in self._sessions.values():
            return active.session
        return None

    def get_session(self, session_id: str) -> Optional[LiveLocationSession]:
        active = self._sessions.get(session_id)
        return active.session if active else None

    def is_active(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def start(self, duration_seconds: float) -> str:
        """
        Start sharing the device location

        Args:
            duration_seconds: How long the share stays live

        Returns:
            The new session id, once its record has been written

        Raises:
            PermissionDenied: location access refused
            LocationUnavailable: no initial fix
            SessionCreateFailed: the record could not be written
        """
        if duration_seconds <= 0:
            raise ValueError(f"Share duration must be positive, got {duration_seconds}")

        # Overlapping starts would each pass stop_all before either registers
        async with self._start_lock:
            return await self._open_session(duration_seconds)

    async def _open_session(self, duration_seconds: float) -> str:
        # One session per flow; never leave an old watch running
        await self.stop_all()

        await require_location_permission(self.location)

        try:
            coordinate = await self.location.current_position()
        except Exception as e:
            raise LocationUnavailable(f"Could not fetch current location: {e}") from e

        session = LiveLocationSession.create(
            session_id=str(uuid.uuid4()),
            location=coordinate,
            duration_seconds=duration_seconds,
            user_id=self.user_id
        )

        try:
            await self.store.set(LIVE_LOCATIONS, session.session_id, session.to_dict())
        except Exception as e:
            self.logger.error(f"Failed to create live location record: {e}")
            raise SessionCreateFailed(f"Could not create live location record: {e}") from e

        active = _ActiveSession(session=session)
        self._sessions[session.session_id] = active

        try:
            watch = await self.location.watch_position(
                partial(self._on_position, session.session_id),
                time_interval=self.update_interval,
                distance_interval=self.distance_interval
            )
        except Exception as e:
            self.logger.error(f"Failed to start location watch: {e}")
            await self.stop(session.session_id)
            raise SessionCreateFailed(f"Could not start location updates: {e}") from e

        if not self.is_active(session.session_id):
            # Stopped while the watch was being set up
            watch.unsubscribe()
            return session.session_id

        active.watch = watch
        active.expiry_task = asyncio.create_task(
            self._expire_after(session.session_id, session.remaining_seconds())
        )

        self.logger.info(
            f"Live location session {session.session_id} started, expires at {session.expires_at.isoformat()}"
        )
        return session.session_id

    async def stop(self, session_id: str) -> bool:
        """
        Stop a session: remove its watch and delete its record

        Safe to call repeatedly and concurrently with expiry.

        Returns:
            True if this call performed the teardown
        """
        active = self._sessions.pop(session_id, None)
        if active is None:
            self.logger.debug(f"Live location session {session_id} already stopped")
            return False

        if active.watch is not None:
            try:
                active.watch.unsubscribe()
            except Exception as e:
                self.logger.warning(f"Error removing location watch for {session_id}: {e}")

        task = active.expiry_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

        try:
            await self.store.delete(LIVE_LOCATIONS, session_id)
        except Exception as e:
            self.logger.error(f"Failed to delete live location record {session_id}: {e}")

        self.logger.info(f"Live location session {session_id} ended")
        return True

    async def stop_all(self):
        for session_id in list(self._sessions):
            await self.stop(session_id)

    def share_link(self, session_id: str) -> str:
        return f"{self.share_base_url}?shareId={session_id}"

    def share_message(self, session_id: str) -> str:
        """Text offered to the OS share sheet"""
        session = self.get_session(session_id)
        minutes = math.ceil(session.duration_seconds / 60) if session else 1
        return f"Track my live location for {minutes} minute(s): {self.share_link(session_id)}"

    async def _on_position(self, session_id: str, coordinate: Coordinate):
        active = self._sessions.get(session_id)
        if active is None:
            return

        active.session.location = coordinate
        try:
            await self.store.update(LIVE_LOCATIONS, session_id, {'location': coordinate.to_dict()})
        except Exception as e:
            # Next fix retries
            self.logger.warning(f"Live location update for {session_id} failed: {e}")

    async def _expire_after(self, session_id: str, delay: float):
        await asyncio.sleep(delay)
        self.logger.info(f"Live location session {session_id} expired")
        await self.stop(session_id)
