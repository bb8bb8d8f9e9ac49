"""
Device adapters for running the SOS flow outside a phone

Simulated location, battery, haptics and alerts for the command line
runner, a logging SMS gateway, and an HTTP SMS gateway for deployments
that relay texts through a provider API.
"""

import asyncio
import logging
import random
from typing import List, Optional

import aiohttp

from core.interfaces import (
    AlertPresenter, BatteryProvider, CallbackSubscription, HapticFeedback,
    LocationProvider, PositionCallback, SmsGateway, Subscription
)
from models.sos import Coordinate


class SimulatedLocationProvider(LocationProvider):
    """Reports a fixed position that drifts slightly on each watch update"""

    def __init__(self, coordinate: Coordinate, permission_granted: bool = True, drift: float = 0.00005):
        self.logger = logging.getLogger(__name__)
        self.coordinate = coordinate
        self.permission_granted = permission_granted
        self.drift = drift

    async def request_permission(self) -> bool:
        return self.permission_granted

    async def current_position(self) -> Coordinate:
        return self.coordinate

    async def watch_position(
        self,
        callback: PositionCallback,
        time_interval: float,
        distance_interval: float
    ) -> Subscription:
        task = asyncio.get_running_loop().create_task(self._watch(callback, time_interval))
        return CallbackSubscription(task.cancel)

    async def _watch(self, callback: PositionCallback, time_interval: float):
        while True:
            await asyncio.sleep(time_interval)
            self.coordinate = Coordinate(
                latitude=max(-90.0, min(90.0, self.coordinate.latitude + random.uniform(-self.drift, self.drift))),
                longitude=max(-180.0, min(180.0, self.coordinate.longitude + random.uniform(-self.drift, self.drift)))
            )
            try:
                await callback(self.coordinate)
            except Exception as e:
                self.logger.error(f"Error in position callback: {e}")


class StaticBatteryProvider(BatteryProvider):
    def __init__(self, level: Optional[float] = None):
        self.level = level

    async def get_battery_level(self) -> Optional[float]:
        return self.level


class LoggingHaptics(HapticFeedback):
    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def vibrate(self, duration_ms: int) -> None:
        self.logger.info(f"*bzz* ({duration_ms}ms)")


class ConsoleAlertPresenter(AlertPresenter):
    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def show_alert(self, title: str, message: str) -> None:
        self.logger.warning(f"[{title}] {message}")


class LoggingSmsGateway(SmsGateway):
    """Writes outgoing texts to the log instead of sending them"""

    def __init__(self, available: bool = True):
        self.logger = logging.getLogger(__name__)
        self.available = available

    async def is_available(self) -> bool:
        return self.available

    async def send(self, phone_numbers: List[str], body: str) -> None:
        self.logger.info(f"SMS to {', '.join(phone_numbers)}:\n{body}")


class HttpSmsGateway(SmsGateway):
    """Relays texts through an HTTP SMS provider"""

    def __init__(self, gateway_url: str, api_token: str = "", timeout_seconds: float = 10):
        self.logger = logging.getLogger(__name__)
        self.gateway_url = gateway_url
        self.api_token = api_token
        self.timeout_seconds = timeout_seconds
        self.session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self):
        """Ensure HTTP session is available"""
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout)

    async def is_available(self) -> bool:
        return bool(self.gateway_url)

    async def send(self, phone_numbers: List[str], body: str) -> None:
        await self._ensure_session()

        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"

        payload = {"to": phone_numbers, "message": body}

        async with self.session.post(self.gateway_url, headers=headers, json=payload) as response:
            if response.status >= 300:
                error_text = await response.text()
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=error_text
                )

        self.logger.info(f"SMS gateway accepted message for {len(phone_numbers)} number(s)")

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
