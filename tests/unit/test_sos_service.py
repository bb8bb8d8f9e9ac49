"""
Unit tests for the SOS trigger state machine
"""

import asyncio

import pytest

from models.sos import ChannelStatus, SosContext, SosState
from services.sos.contacts import USERS
from services.sos.dispatcher import THREADS
from services.sos.live_location import LIVE_LOCATIONS
from services.sos.sos_service import SOS_ALERTS


async def sos_alerts(store, user_id="user-1"):
    return await store.query(SOS_ALERTS, 'userId', '==', user_id)


async def live_records(store, user_id="user-1"):
    return await store.query(LIVE_LOCATIONS, 'userId', '==', user_id)


class TestSosCountdown:
    """Test the Idle -> CountingDown transitions"""

    @pytest.mark.asyncio
    async def test_countdown_then_dispatch(self, make_sos_service, store, haptics, alerts):
        service = make_sos_service(countdown_seconds=3)

        assert await service.start() is True
        assert service.state == SosState.COUNTING_DOWN

        await service.wait_idle(timeout=2)

        assert service.state == SosState.IDLE
        assert haptics.pulses == [500, 500, 500]
        assert len(await sos_alerts(store)) == 1
        assert alerts.titles == ["SOS Sent"]

        await service.close()

    @pytest.mark.asyncio
    async def test_remaining_seconds_decreases(self, make_sos_service):
        service = make_sos_service(countdown_seconds=10, tick_interval=0.02)
        assert service.remaining_seconds == 10

        await service.start()
        await asyncio.sleep(0.07)

        assert service.remaining_seconds < 10
        service.cancel()
        await service.close()

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(self, make_sos_service):
        service = make_sos_service()

        assert await service.start() is True
        assert await service.start() is False
        assert await service.start(immediate=True) is False

        service.cancel()
        await service.close()

    @pytest.mark.asyncio
    async def test_cancel_returns_to_idle_without_side_effects(self, make_sos_service, store, location, sms):
        service = make_sos_service(tick_interval=0.02)
        await service.start()
        await asyncio.sleep(0.05)

        assert service.cancel() is True
        assert service.state == SosState.IDLE
        await asyncio.sleep(0.3)

        assert await sos_alerts(store) == []
        assert await live_records(store) == []
        assert sms.sent == []
        assert location.watches == []
        assert service.remaining_seconds == service.countdown_seconds

        await service.close()

    @pytest.mark.asyncio
    async def test_cancel_when_idle_is_noop(self, make_sos_service):
        service = make_sos_service()

        assert service.cancel() is False
        assert service.state == SosState.IDLE

    @pytest.mark.asyncio
    async def test_can_restart_after_cancel(self, make_sos_service, store):
        service = make_sos_service(countdown_seconds=2)
        await service.start()
        service.cancel()

        assert await service.start() is True
        await service.wait_idle(timeout=2)

        assert len(await sos_alerts(store)) == 1
        await service.close()

    @pytest.mark.asyncio
    async def test_permission_denied_stays_idle(self, make_sos_service, location, alerts, store):
        location.permission_granted = False
        service = make_sos_service()

        assert await service.start() is False

        assert service.state == SosState.IDLE
        assert alerts.titles == ["Permission Denied"]
        assert await sos_alerts(store) == []

    @pytest.mark.asyncio
    async def test_rejects_zero_countdown(self, make_sos_service):
        with pytest.raises(ValueError):
            make_sos_service(countdown_seconds=0)


class TestSosActivation:
    """Test the auto-activation entry points"""

    @pytest.mark.asyncio
    async def test_auto_activate_respects_setting(self, make_sos_service):
        service = make_sos_service(context=SosContext(user_id="user-1", auto_activate_enabled=False))

        assert await service.auto_activate() is False
        assert service.state == SosState.IDLE

    @pytest.mark.asyncio
    async def test_shake_starts_countdown(self, make_sos_service, location):
        location.permission_delay = 0.02
        service = make_sos_service()

        assert await service.handle_shake() is True

        assert service.state == SosState.COUNTING_DOWN
        service.cancel()
        await service.close()

    @pytest.mark.asyncio
    async def test_shake_task_reports_disabled_activation(self, make_sos_service):
        service = make_sos_service(context=SosContext(user_id="user-1", auto_activate_enabled=False))

        assert await service.handle_shake() is False
        assert service.state == SosState.IDLE


class TestSosDispatch:
    """Test the dispatch sequence and its failure handling"""

    @pytest.mark.asyncio
    async def test_immediate_dispatch_records_event(self, make_sos_service, store, sms, battery):
        battery.level = 0.437
        service = make_sos_service()

        assert await service.start(immediate=True) is True
        await service.wait_idle(timeout=2)

        records = await sos_alerts(store)
        assert len(records) == 1
        record = records[0]
        assert record['location'] == {'latitude': 12.9, 'longitude': 77.6}
        assert record['batteryPercentage'] == 44
        assert len(record['streetViewUrls']) == 3
        assert record['liveShareLink'].endswith(f"shareId={service.live_session_id}")
        assert record['createdAt']
        assert "Battery: 44%" in record['message']
        assert record['liveShareLink'] in record['message']

        assert service.last_event.battery_percentage == 44
        assert service.last_event.created_at is not None
        assert sms.sent[0][1] == record['message']

        await service.close()

    @pytest.mark.asyncio
    async def test_last_sos_marker(self, make_sos_service, store, close_friends):
        await store.set(USERS, "user-1", {'closeFriends': [c.to_dict() for c in close_friends]})
        service = make_sos_service()
        await service.open()

        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        profile = await store.get(USERS, "user-1")
        assert profile['lastSOS']
        assert len(profile['closeFriends']) == 2
        assert [r.phone for r in service.last_result.recipients] == [c.phone for c in close_friends]

        await service.close()

    @pytest.mark.asyncio
    async def test_last_sos_created_for_new_user(self, make_sos_service, store):
        service = make_sos_service()

        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        assert (await store.get(USERS, "user-1"))['lastSOS']
        await service.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("battery_kwargs", [
        {'level': None},
        {'error': RuntimeError("no battery api")},
        {'level': 0.2, 'delay': 1.0},
    ])
    async def test_unknown_battery_counts_as_full(self, make_sos_service, store, battery, battery_kwargs):
        for name, value in battery_kwargs.items():
            setattr(battery, name, value)
        service = make_sos_service(battery_timeout=0.05)

        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        assert (await sos_alerts(store))[0]['batteryPercentage'] == 100
        await service.close()

    @pytest.mark.asyncio
    async def test_location_failure_aborts_dispatch(self, make_sos_service, store, location, alerts, sms):
        location.fail_current = True
        service = make_sos_service()

        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        assert service.state == SosState.IDLE
        assert alerts.titles == ["Location Unavailable"]
        assert await sos_alerts(store) == []
        assert sms.sent == []

    @pytest.mark.asyncio
    async def test_live_session_failure_still_sends(self, make_sos_service, failing_store, store, sms):
        failing_store.fail('set', LIVE_LOCATIONS)
        service = make_sos_service(store=failing_store)

        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        assert service.live_session_id is None
        assert "Live location" not in sms.sent[0][1]
        record = (await sos_alerts(store))[0]
        assert record['liveShareLink'] is None

        await service.close()

    @pytest.mark.asyncio
    async def test_alert_record_failure_still_settles(self, make_sos_service, failing_store, sms, alerts):
        failing_store.fail('add', SOS_ALERTS)
        service = make_sos_service(store=failing_store)

        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        assert service.state == SosState.IDLE
        assert len(sms.sent) == 1
        assert service.last_event is not None
        assert alerts.titles == ["SOS Sent"]

        await service.close()

    @pytest.mark.asyncio
    async def test_total_failure_reports_error(self, make_sos_service, sms, alerts):
        sms.available = False
        service = make_sos_service()

        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        assert service.state == SosState.IDLE
        assert not service.last_result.any_delivered
        assert alerts.titles == ["Error"]

        await service.close()

    @pytest.mark.asyncio
    async def test_sms_unavailable_with_chat(self, make_sos_service, store, sms, alerts):
        await store.set(THREADS, "t1", {'participants': ["user-1", "a"]})
        sms.available = False
        service = make_sos_service()

        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        assert service.last_result.chat.status == ChannelStatus.SUCCEEDED
        assert alerts.titles == ["SMS Not Available"]

        await service.close()

    @pytest.mark.asyncio
    async def test_sms_failure_with_chat_is_partial(self, make_sos_service, store, sms, alerts):
        await store.set(THREADS, "t1", {'participants': ["user-1"]})
        sms.error = RuntimeError("carrier down")
        service = make_sos_service()

        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        assert alerts.titles == ["SOS Partially Sent"]
        await service.close()


class TestSosTeardown:

    @pytest.mark.asyncio
    async def test_close_stops_live_session(self, make_sos_service, store, location):
        service = make_sos_service()
        await service.open()
        await service.start(immediate=True)
        await service.wait_idle(timeout=2)

        assert len(await live_records(store)) == 1
        assert location.active_watches == 1

        await service.close()

        assert await live_records(store) == []
        assert location.active_watches == 0
        assert store.listener_count(USERS, "user-1") == 0

    @pytest.mark.asyncio
    async def test_close_during_countdown(self, make_sos_service, store):
        service = make_sos_service()
        await service.start()

        await service.close()
        await asyncio.sleep(0.2)

        assert service.state == SosState.IDLE
        assert await sos_alerts(store) == []

    @pytest.mark.asyncio
    async def test_close_while_waiting_for_permission(self, make_sos_service, store, location, haptics):
        location.permission_delay = 0.05
        service = make_sos_service()
        await service.open()

        pending = asyncio.create_task(service.start())
        await asyncio.sleep(0.01)
        await service.close()

        assert await pending is False
        await asyncio.sleep(0.1)

        assert service.state == SosState.IDLE
        assert haptics.pulses == []
        assert await sos_alerts(store) == []
        assert await live_records(store) == []
        assert await service.start() is False
