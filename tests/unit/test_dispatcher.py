"""
Unit tests for message composition and the SMS / chat fan-out
"""

import pytest

from models.sos import ChannelStatus, CloseFriendContact, Coordinate
from services.sos.dispatcher import (
    DEFAULT_FALLBACK_CONTACTS, STREET_VIEW_HEADINGS, THREADS,
    MessageComposer, NotificationDispatcher, resolve_contacts
)


LOCATION = Coordinate(12.9, 77.6)


async def create_thread(store, thread_id, participants):
    await store.set(THREADS, thread_id, {'participants': participants, 'lastMessage': ''})


class TestMessageComposer:
    """Test the composed SOS text"""

    def test_compose_includes_all_parts(self):
        composer = MessageComposer(imagery={'api_key': 'KEY'})
        message = composer.compose(LOCATION, 42, "https://example.test/live?shareId=abc")

        lines = message.split("\n")
        assert lines[0] == "SOS Alert"
        assert "Battery: 42%" in lines
        assert "My location: https://www.google.com/maps/search/?api=1&query=12.9,77.6" in lines
        assert "Live location: https://example.test/live?shareId=abc" in lines
        assert sum(1 for line in lines if line.startswith("Street View ")) == 3

    def test_compose_omits_live_link_when_missing(self):
        message = MessageComposer().compose(LOCATION, 100, None)

        assert "Live location" not in message
        assert "Battery: 100%" in message

    def test_street_view_links_cover_three_headings(self):
        links = MessageComposer(imagery={'api_key': 'KEY', 'size': '640x480'}).street_view_links(LOCATION)

        assert len(links) == len(STREET_VIEW_HEADINGS)
        for heading, link in zip(STREET_VIEW_HEADINGS, links):
            assert f"heading={heading}&" in link
            assert "location=12.9,77.6" in link
            assert "size=640x480" in link
            assert link.endswith("key=KEY")


class TestResolveContacts:
    """Test recipient selection"""

    def test_prefers_close_friends(self, close_friends):
        assert resolve_contacts(close_friends, DEFAULT_FALLBACK_CONTACTS) == close_friends

    def test_falls_back_when_empty(self):
        recipients = resolve_contacts([], DEFAULT_FALLBACK_CONTACTS)

        assert [c.phone for c in recipients] == ["+9112345678910", "100"]

    def test_contacts_without_phone_are_ignored(self):
        no_phone = [CloseFriendContact(id="x", name="No Phone"), CloseFriendContact(id="y", name="Blank", phone="  ")]

        recipients = resolve_contacts(no_phone, DEFAULT_FALLBACK_CONTACTS)

        assert recipients == list(DEFAULT_FALLBACK_CONTACTS)

    def test_fallback_without_phones_is_an_error(self):
        with pytest.raises(ValueError):
            resolve_contacts([], [CloseFriendContact(id="x", name="Nobody")])


class TestNotificationDispatcher:
    """Test channel outcomes"""

    @pytest.mark.asyncio
    async def test_both_channels_succeed(self, store, sms, close_friends):
        await create_thread(store, "t1", ["user-1", "a"])
        await create_thread(store, "t2", ["user-1", "b"])
        await create_thread(store, "t3", ["someone-else"])
        dispatcher = NotificationDispatcher(sms, store, "user-1")

        result = await dispatcher.dispatch(LOCATION, 80, None, close_friends)

        assert result.sms.status == ChannelStatus.SUCCEEDED
        assert result.sms.delivered == 2
        assert sms.sent == [(["+919800000001", "+919800000002"], result.message)]

        assert result.chat.status == ChannelStatus.SUCCEEDED
        assert result.chat.delivered == 2
        assert result.fully_delivered

        for thread_id in ("t1", "t2"):
            thread = await store.get(THREADS, thread_id)
            assert thread['lastMessage'] == result.message
            assert thread['lastTimestamp']
            messages = await store.query(f"{THREADS}/{thread_id}/messages", 'senderId', '==', 'user-1')
            assert len(messages) == 1
            assert messages[0]['text'] == result.message
            assert messages[0]['read'] is False
            assert messages[0]['media'] is None

        assert (await store.get(THREADS, "t3"))['lastMessage'] == ''

    @pytest.mark.asyncio
    async def test_uses_fallback_contacts(self, store, sms):
        dispatcher = NotificationDispatcher(sms, store, "user-1")

        result = await dispatcher.dispatch(LOCATION, 80, None, [])

        assert sms.sent[0][0] == ["+9112345678910", "100"]
        assert [c.name for c in result.recipients] == ["Fallback Friend", "Police"]

    @pytest.mark.asyncio
    async def test_configured_fallback_contacts(self, store, sms):
        fallback = [CloseFriendContact(id="h", name="Helpline", phone="112")]
        dispatcher = NotificationDispatcher(sms, store, "user-1", fallback_contacts=fallback)

        await dispatcher.dispatch(LOCATION, 80, None, [])

        assert sms.sent[0][0] == ["112"]

    @pytest.mark.asyncio
    async def test_sms_unavailable_is_skipped(self, store, sms, close_friends):
        await create_thread(store, "t1", ["user-1"])
        sms.available = False
        dispatcher = NotificationDispatcher(sms, store, "user-1")

        result = await dispatcher.dispatch(LOCATION, 80, None, close_friends)

        assert result.sms.status == ChannelStatus.SKIPPED
        assert sms.sent == []
        assert result.chat.status == ChannelStatus.SUCCEEDED
        assert result.any_delivered

    @pytest.mark.asyncio
    async def test_sms_send_failure_does_not_block_chat(self, store, sms, close_friends):
        await create_thread(store, "t1", ["user-1"])
        sms.error = RuntimeError("carrier down")
        dispatcher = NotificationDispatcher(sms, store, "user-1")

        result = await dispatcher.dispatch(LOCATION, 80, None, close_friends)

        assert result.sms.status == ChannelStatus.FAILED
        assert "carrier down" in result.sms.detail
        assert result.chat.status == ChannelStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_no_threads_is_skipped(self, store, sms, close_friends):
        dispatcher = NotificationDispatcher(sms, store, "user-1")

        result = await dispatcher.dispatch(LOCATION, 80, None, close_friends)

        assert result.chat.status == ChannelStatus.SKIPPED
        assert result.sms.status == ChannelStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_one_thread_failure_is_partial(self, failing_store, store, sms, close_friends):
        await create_thread(store, "t1", ["user-1"])
        await create_thread(store, "t2", ["user-1"])
        failing_store.fail_thread_ids.add("t2")
        dispatcher = NotificationDispatcher(sms, failing_store, "user-1")

        result = await dispatcher.dispatch(LOCATION, 80, None, close_friends)

        assert result.chat.status == ChannelStatus.PARTIAL
        assert result.chat.delivered == 1
        assert result.chat.failed == 1
        assert result.chat.detail == "t2"
        assert (await store.get(THREADS, "t1"))['lastMessage'] == result.message

    @pytest.mark.asyncio
    async def test_thread_lookup_failure(self, failing_store, sms, close_friends):
        failing_store.fail('query', THREADS)
        dispatcher = NotificationDispatcher(sms, failing_store, "user-1")

        result = await dispatcher.dispatch(LOCATION, 80, None, close_friends)

        assert result.chat.status == ChannelStatus.FAILED
        assert result.sms.status == ChannelStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_everything_failing_reports_nothing_delivered(self, failing_store, sms, close_friends):
        sms.available = False
        failing_store.fail('query', THREADS)
        dispatcher = NotificationDispatcher(sms, failing_store, "user-1")

        result = await dispatcher.dispatch(LOCATION, 80, None, close_friends)

        assert not result.any_delivered
        assert result.summary() == "sms=skipped, chat=failed"
