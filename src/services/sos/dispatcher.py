"""
SOS Notification Fan-Out

Composes the emergency message and delivers it over two independent
channels: one batched SMS to the resolved contacts, and a new message in
every chat thread the user takes part in. Channel failures are folded
into the returned DispatchResult; nothing here raises to the caller.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from core.database import SERVER_TIMESTAMP
from core.interfaces import DocumentStore, SmsGateway
from models.sos import (
    ChannelResult, ChannelStatus, CloseFriendContact, Coordinate, DispatchResult
)
from .exceptions import ChannelUnavailable, ThreadWriteFailed


STREET_VIEW_HEADINGS = (0, 120, 240)
MAP_SEARCH_URL = "https://www.google.com/maps/search/?api=1&query={latitude},{longitude}"
STREET_VIEW_URL = (
    "https://maps.googleapis.com/maps/api/streetview"
    "?size={size}&location={latitude},{longitude}&fov={fov}&heading={heading}&pitch={pitch}&key={key}"
)

THREADS = "threads"

DEFAULT_FALLBACK_CONTACTS = (
    CloseFriendContact(id="1", name="Fallback Friend", phone="+9112345678910"),
    CloseFriendContact(id="2", name="Police", phone="100"),
)


class MessageComposer:
    """Builds the single human-readable SOS message"""

    def __init__(
        self,
        header: str = "SOS Alert",
        emergency_message: str = "I am in an emergency and need help. Please reach me as soon as possible.",
        imagery: Optional[Dict[str, Any]] = None
    ):
        imagery = imagery or {}
        self.header = header
        self.emergency_message = emergency_message
        self.api_key = imagery.get('api_key', '')
        self.size = imagery.get('size', '400x400')
        self.fov = imagery.get('fov', 90)
        self.pitch = imagery.get('pitch', 10)

    def map_link(self, coordinate: Coordinate) -> str:
        return MAP_SEARCH_URL.format(latitude=coordinate.latitude, longitude=coordinate.longitude)

    def street_view_links(self, coordinate: Coordinate) -> List[str]:
        """One static street-level image per heading in STREET_VIEW_HEADINGS"""
        return [
            STREET_VIEW_URL.format(
                size=self.size,
                latitude=coordinate.latitude,
                longitude=coordinate.longitude,
                fov=self.fov,
                heading=heading,
                pitch=self.pitch,
                key=self.api_key
            )
            for heading in STREET_VIEW_HEADINGS
        ]

    def compose(
        self,
        coordinate: Coordinate,
        battery_percentage: int,
        live_share_link: Optional[str] = None
    ) -> str:
        lines = [
            self.header,
            "",
            self.emergency_message,
            "",
            f"Battery: {battery_percentage}%",
            "",
            f"My location: {self.map_link(coordinate)}",
        ]

        for index, url in enumerate(self.street_view_links(coordinate), start=1):
            lines.append("")
            lines.append(f"Street View {index}: {url}")

        if live_share_link:
            lines.append("")
            lines.append(f"Live location: {live_share_link}")

        return "\n".join(lines)


def resolve_contacts(
    configured: Sequence[CloseFriendContact],
    fallback: Sequence[CloseFriendContact]
) -> List[CloseFriendContact]:
    """
    Pick the SMS recipients

    The user's close friends win when any of them has a phone number;
    otherwise the fixed fallback set is used so an SOS is never sent to
    nobody.
    """
    targets = [c for c in configured if c.is_sms_target()]
    if targets:
        return targets

    targets = [c for c in fallback if c.is_sms_target()]
    if not targets:
        raise ValueError("Fallback contact set has no phone numbers")
    return targets


class SmsChannel:
    """Channel A: one batched SMS"""

    name = "sms"

    def __init__(self, gateway: SmsGateway):
        self.gateway = gateway
        self.logger = logging.getLogger(__name__)

    async def deliver(self, recipients: List[CloseFriendContact], message: str) -> ChannelResult:
        try:
            if not await self.gateway.is_available():
                raise ChannelUnavailable("SMS is not available on this device")
        except ChannelUnavailable as e:
            self.logger.warning(str(e))
            return ChannelResult(self.name, ChannelStatus.SKIPPED, detail=str(e))
        except Exception as e:
            self.logger.warning(f"SMS availability check failed: {e}")
            return ChannelResult(self.name, ChannelStatus.SKIPPED, detail=f"availability check failed: {e}")

        numbers = [c.phone for c in recipients]
        try:
            await self.gateway.send(numbers, message)
        except Exception as e:
            self.logger.error(f"Failed to send SOS SMS: {e}")
            return ChannelResult(self.name, ChannelStatus.FAILED, failed=len(numbers), detail=str(e))

        self.logger.info(f"SOS SMS sent to {len(numbers)} contact(s)")
        return ChannelResult(self.name, ChannelStatus.SUCCEEDED, delivered=len(numbers))


class ChatChannel:
    """Channel B: append the alert to every thread the user participates in"""

    name = "chat"

    def __init__(self, store: DocumentStore, user_id: str):
        self.store = store
        self.user_id = user_id
        self.logger = logging.getLogger(__name__)

    async def deliver(self, message: str) -> ChannelResult:
        try:
            threads = await self.store.query(THREADS, 'participants', 'array-contains', self.user_id)
        except Exception as e:
            self.logger.error(f"Failed to list chat threads: {e}")
            return ChannelResult(self.name, ChannelStatus.FAILED, detail=f"thread lookup failed: {e}")

        if not threads:
            return ChannelResult(self.name, ChannelStatus.SKIPPED, detail="no chat threads")

        outcomes = await asyncio.gather(
            *(self._write_thread(thread['id'], message) for thread in threads),
            return_exceptions=True
        )

        failures = [o for o in outcomes if isinstance(o, BaseException)]
        for failure in failures:
            self.logger.error(str(failure))

        delivered = len(outcomes) - len(failures)
        if not failures:
            status = ChannelStatus.SUCCEEDED
        elif delivered:
            status = ChannelStatus.PARTIAL
        else:
            status = ChannelStatus.FAILED

        self.logger.info(f"SOS chat messages delivered to {delivered}/{len(outcomes)} thread(s)")
        return ChannelResult(
            self.name,
            status,
            delivered=delivered,
            failed=len(failures),
            detail=", ".join(f.thread_id for f in failures if isinstance(f, ThreadWriteFailed))
        )

    async def _write_thread(self, thread_id: str, message: str):
        # Append, then summarise: lastMessage must reflect the appended entry
        try:
            await self.store.add(f"{THREADS}/{thread_id}/messages", {
                'senderId': self.user_id,
                'text': message,
                'media': None,
                'createdAt': SERVER_TIMESTAMP,
                'read': False
            })
            await self.store.update(THREADS, thread_id, {
                'lastMessage': message,
                'lastTimestamp': SERVER_TIMESTAMP
            })
        except Exception as e:
            raise ThreadWriteFailed(thread_id, e) from e


class NotificationDispatcher:
    """Composes the SOS message and fans it out over SMS and chat"""

    def __init__(
        self,
        sms: SmsGateway,
        store: DocumentStore,
        user_id: str,
        composer: Optional[MessageComposer] = None,
        fallback_contacts: Optional[Sequence[CloseFriendContact]] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.composer = composer or MessageComposer()
        self.fallback_contacts = list(fallback_contacts or DEFAULT_FALLBACK_CONTACTS)
        self.sms_channel = SmsChannel(sms)
        self.chat_channel = ChatChannel(store, user_id)

    async def dispatch(
        self,
        coordinate: Coordinate,
        battery_percentage: int,
        live_share_link: Optional[str],
        contacts: Sequence[CloseFriendContact]
    ) -> DispatchResult:
        """
        Send the SOS over both channels

        Both channels run concurrently and both finish before this returns.
        Partial failure is reported, not retried.
        """
        message = self.composer.compose(coordinate, battery_percentage, live_share_link)
        if not any(c.is_sms_target() for c in contacts):
            self.logger.info("No close friends configured, using fallback contacts")
        recipients = resolve_contacts(contacts, self.fallback_contacts)

        sms_result, chat_result = await asyncio.gather(
            self.sms_channel.deliver(recipients, message),
            self.chat_channel.deliver(message),
            return_exceptions=True
        )

        result = DispatchResult(
            message=message,
            recipients=recipients,
            sms=self._as_result(SmsChannel.name, sms_result),
            chat=self._as_result(ChatChannel.name, chat_result)
        )
        self.logger.info(f"SOS dispatch finished: {result.summary()}")
        return result

    def _as_result(self, channel: str, outcome) -> ChannelResult:
        if isinstance(outcome, ChannelResult):
            return outcome
        self.logger.error(f"Unexpected error in {channel} channel: {outcome}")
        return ChannelResult(channel, ChannelStatus.FAILED, detail=str(outcome))
