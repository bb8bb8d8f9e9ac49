"""
SOS Trigger Service

Coordinates one emergency alert from trigger to settlement:
- Idle -> CountingDown(N) on user action or auto-activation (shake, deep link)
- One haptic pulse per tick; cancel stops the countdown immediately
- Dispatching at zero: location, battery, live location share, fan-out,
  sosAlerts record and the user's lastSOS marker
- Always back to Idle once dispatch settles, whatever the channel outcome
"""

import asyncio
import logging
from typing import Optional, Set

from core.database import SERVER_TIMESTAMP
from core.interfaces import (
    AlertPresenter, BatteryProvider, DocumentStore, HapticFeedback, LocationProvider
)
from core.logging import LogContext, get_structured_logger
from models.sos import (
    ChannelStatus, Coordinate, DispatchResult, SosContext, SosEvent, SosState
)
from .contacts import ContactBook, USERS
from .countdown import CountdownTimer
from .dispatcher import NotificationDispatcher
from .exceptions import (
    BatteryUnavailable, LocationUnavailable, PermissionDenied, SessionCreateFailed
)
from .live_location import LiveLocationManager, require_location_permission


SOS_ALERTS = "sosAlerts"


class SosService:
    """State machine for a single SOS flow instance"""

    def __init__(
        self,
        context: SosContext,
        location: LocationProvider,
        battery: BatteryProvider,
        haptics: HapticFeedback,
        alerts: AlertPresenter,
        store: DocumentStore,
        live_location: LiveLocationManager,
        dispatcher: NotificationDispatcher,
        contacts: ContactBook,
        countdown_seconds: int = 10,
        tick_interval: float = 1.0,
        share_duration_seconds: float = 3600,
        battery_timeout: float = 2.0,
        vibration_ms: int = 500
    ):
        if countdown_seconds < 1:
            raise ValueError(f"Countdown must be at least 1 second, got {countdown_seconds}")

        self.logger = logging.getLogger(__name__)
        self.structured_logger = get_structured_logger('sos')
        self.context = context
        self.location = location
        self.battery = battery
        self.haptics = haptics
        self.alerts = alerts
        self.store = store
        self.live_location = live_location
        self.dispatcher = dispatcher
        self.contacts = contacts

        self.countdown_seconds = countdown_seconds
        self.tick_interval = tick_interval
        self.share_duration_seconds = share_duration_seconds
        self.battery_timeout = battery_timeout
        self.vibration_ms = vibration_ms

        self.last_result: Optional[DispatchResult] = None
        self.last_event: Optional[SosEvent] = None

        self._state = SosState.IDLE
        self._starting = False
        self._timer: Optional[CountdownTimer] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._live_session_id: Optional[str] = None
        self._background: Set[asyncio.Task] = set()
        self._closed = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> SosState:
        return self._state

    @property
    def remaining_seconds(self) -> int:
        if self._state == SosState.COUNTING_DOWN and self._timer is not None:
            return self._timer.remaining
        return self.countdown_seconds

    @property
    def live_session_id(self) -> Optional[str]:
        return self._live_session_id

    async def open(self):
        """Begin listening for closeFriends changes"""
        self._closed = False
        await self.contacts.start()

    async def close(self):
        """Tear the flow down: countdown, in-flight dispatch, live share, listeners"""
        self._closed = True
        self.cancel()

        if self._dispatch_task is not None:
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass

        for task in list(self._background):
            task.cancel()

        if self._live_session_id is not None:
            await self.live_location.stop(self._live_session_id)
            self._live_session_id = None

        self.contacts.stop()
        self.logger.info("SOS flow closed")

    async def start(self, immediate: bool = False) -> bool:
        """
        Trigger an SOS

        Args:
            immediate: Skip the countdown and dispatch straight away

        Returns:
            True if a countdown (or dispatch) was started; False when one is
            already in progress or location permission was refused
        """
        if self._closed or self._state != SosState.IDLE or self._starting:
            self.logger.debug(f"SOS start ignored in state {self._state.value}")
            return False

        self._starting = True
        try:
            try:
                await require_location_permission(self.location)
            except PermissionDenied as e:
                self.logger.warning(f"SOS aborted: {e}")
                self._alert("Permission Denied", "Location permission is required to send an SOS.")
                return False

            if self._closed:
                self.logger.info("SOS flow closed while waiting for permission, not starting")
                return False

            self._idle.clear()
            if immediate:
                self._begin_dispatch()
            else:
                self._state = SosState.COUNTING_DOWN
                self._timer = CountdownTimer(
                    self.countdown_seconds,
                    interval=self.tick_interval,
                    on_tick=self._on_tick,
                    on_expire=self._on_countdown_expired
                )
                self._timer.start()
                self.logger.info(f"SOS countdown started ({self.countdown_seconds}s)")
            return True
        finally:
            self._starting = False

    async def auto_activate(self) -> bool:
        """External activation signal, honoured only when auto-activate is enabled"""
        if not self.context.auto_activate_enabled:
            self.logger.debug("Auto-activation disabled, ignoring signal")
            return False
        return await self.start()

    def handle_shake(self) -> asyncio.Task:
        """Synchronous hook for ShakeDetector; the task resolves to whether the SOS started"""
        task = asyncio.get_running_loop().create_task(self.auto_activate())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def cancel(self) -> bool:
        """Abort a running countdown; no-op in any other state"""
        if self._state != SosState.COUNTING_DOWN:
            return False

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        self._state = SosState.IDLE
        self._idle.set()
        self.logger.info("SOS countdown cancelled by user")
        return True

    async def wait_idle(self, timeout: Optional[float] = None):
        """Wait until the flow has settled back to Idle"""
        await asyncio.wait_for(self._idle.wait(), timeout)

    def _on_tick(self, remaining: int):
        try:
            self.haptics.vibrate(self.vibration_ms)
        except Exception as e:
            self.logger.warning(f"Vibration failed: {e}")
        self.logger.debug(f"SOS countdown: {remaining}")

    def _on_countdown_expired(self):
        self._timer = None
        self._begin_dispatch()

    def _begin_dispatch(self):
        self._state = SosState.DISPATCHING
        self._dispatch_task = asyncio.get_running_loop().create_task(self._run_dispatch())

    async def _run_dispatch(self):
        try:
            with LogContext(self.structured_logger, "sos_dispatch", user_id=self.context.user_id) as log:
                await self._dispatch_sequence(log)
        except Exception as e:
            self.logger.error(f"Unexpected error while sending SOS: {e}", exc_info=True)
            self._alert("Error", "Failed to send SOS. Please try again.")
        finally:
            self._state = SosState.IDLE
            self._dispatch_task = None
            self._idle.set()

    async def _dispatch_sequence(self, log):
        try:
            coordinate = await self._current_coordinate()
        except LocationUnavailable as e:
            log.error("sos_location_unavailable", error=str(e))
            self._alert("Location Unavailable", "Could not get your current location. Please try again.")
            return

        battery_percentage = await self._battery_percentage()
        live_link = await self._open_live_session()
        log.bind(battery_percentage=battery_percentage, live_session_id=self._live_session_id)

        if not self.contacts.listening:
            await self.contacts.refresh()

        result = await self.dispatcher.dispatch(
            coordinate, battery_percentage, live_link, self.contacts.contacts
        )
        self.last_result = result
        log.bind(channels=result.summary(), recipients=len(result.recipients))

        event = SosEvent(
            user_id=self.context.user_id,
            location=coordinate,
            message=result.message,
            street_view_urls=self.dispatcher.composer.street_view_links(coordinate),
            live_share_link=live_link,
            battery_percentage=battery_percentage
        )
        await self._record_event(event)
        self._report(result)

    async def _current_coordinate(self) -> Coordinate:
        try:
            return await self.location.current_position()
        except Exception as e:
            raise LocationUnavailable(f"Could not fetch current location: {e}") from e

    async def _battery_percentage(self) -> int:
        """Battery as 0-100; anything unknown counts as full"""
        try:
            level = await asyncio.wait_for(self.battery.get_battery_level(), self.battery_timeout)
            if level is None:
                raise BatteryUnavailable("Battery level unknown")
        except Exception as e:
            self.logger.debug(f"Battery level unavailable, assuming full: {e}")
            return 100

        return max(0, min(100, round(level * 100)))

    async def _open_live_session(self) -> Optional[str]:
        try:
            session_id = await self.live_location.start(self.share_duration_seconds)
        except (SessionCreateFailed, PermissionDenied, LocationUnavailable) as e:
            self.logger.warning(f"Sending SOS without live location: {e}")
            self._live_session_id = None
            return None

        self._live_session_id = session_id
        return self.live_location.share_link(session_id)

    async def _record_event(self, event: SosEvent):
        record = event.to_dict()
        record['createdAt'] = SERVER_TIMESTAMP

        try:
            alert_id = await self.store.add(SOS_ALERTS, record)
            stored = await self.store.get(SOS_ALERTS, alert_id)
            self.last_event = SosEvent.from_dict(stored) if stored else event
        except Exception as e:
            self.logger.error(f"Failed to record SOS alert: {e}")
            self.last_event = event
            return

        try:
            profile = await self.store.get(USERS, self.context.user_id)
            if profile is None:
                await self.store.set(USERS, self.context.user_id, {'lastSOS': SERVER_TIMESTAMP})
            else:
                await self.store.update(USERS, self.context.user_id, {'lastSOS': SERVER_TIMESTAMP})
        except Exception as e:
            self.logger.error(f"Failed to update lastSOS for {self.context.user_id}: {e}")

    def _report(self, result: DispatchResult):
        if result.sms.status == ChannelStatus.SUCCEEDED:
            self._alert("SOS Sent", "Your emergency contacts have been notified.")
        elif not result.any_delivered:
            self._alert("Error", "Failed to send SOS. Please try again.")
        elif result.sms.status == ChannelStatus.SKIPPED:
            self._alert("SMS Not Available", "SMS is not available on this device. Your SOS was shared in your chats.")
        else:
            self._alert("SOS Partially Sent", "Some of your contacts could not be reached.")

    def _alert(self, title: str, message: str):
        try:
            self.alerts.show_alert(title, message)
        except Exception as e:
            self.logger.error(f"Failed to show alert '{title}': {e}")
