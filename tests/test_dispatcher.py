from __future__ import annotations

import pytest

from datetime import timedelta

from uniwash.dispatcher import NO_COMMAND_STATUS
from uniwash.modules import errors
from uniwash.modules import events
from uniwash.modules.actors import ActorIdentity, BusinessAgent, EndUser
from uniwash.modules.gateway import Message, SendResult

from .conftest import add_user, set_machine_status


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime
    from mock import Mock
    from uniwash.db.models.device import Command
    from uniwash.db import Devices, ReservationStore
    from uniwash.dispatcher import CommandDispatcher
    from .conftest import FrozenClock


SATURDAY = '2025-03-15'


@pytest.fixture
def reservation(store: ReservationStore, device: int, user: int) -> int:
    return store.reserve(device, 1, user, SATURDAY, '08:30', '10:00')


def test_send_command(
    dispatcher: CommandDispatcher,
    devices: Devices,
    store: ReservationStore,
    clock: FrozenClock,
    gateway: Mock,
    device: int,
    user: int,
    reservation: int
) -> None:

    sent = []
    events.on_command_sent.append(
        lambda ctx, r, d, command: sent.append((r.id, d.id, command)))

    clock.set(2025, 3, 15, 8, 21)

    result = dispatcher.send_command(EndUser(user), device, reservation, 'ON')
    assert result.last_command == 'ON'
    assert result.last_command_time == clock.now
    assert result.last_command_sms_ref == 'ref-1'

    gateway.send.assert_called_once_with(Message(
        template_id=8698,
        mobile='09120000000',
        params=('7', ),
        provider=3
    ))

    status = devices.status(1, device)
    assert status.machine_status == 'ON'
    assert status.last_command == 'ON'
    assert status.last_command_time == clock.now
    assert status.last_command_sms_ref == 'ref-1'

    assert store.get(reservation).last_command == 'ON'
    assert sent == [(reservation, device, 'ON')]


def test_command_tokens(
    dispatcher: CommandDispatcher,
    devices: Devices,
    clock: FrozenClock,
    gateway: Mock,
    device: int,
    user: int,
    reservation: int
) -> None:

    clock.set(2025, 3, 15, 8, 45)
    actor = EndUser(user)

    for command, token, status in (
        ('ON', '7', 'ON'),
        ('MORE_WATER', '3', 'ON'),
        ('OFF', '2', 'OFF'),
        ('MORE_WATER', '3', 'OFF'),
    ):
        dispatcher.send_command(
            actor, device, reservation, command)  # type: ignore[arg-type]

        assert gateway.send.call_args[0][0].params == (token, )
        assert devices.status(1, device).machine_status == status


def test_command_window(
    dispatcher: CommandDispatcher,
    store: ReservationStore,
    clock: FrozenClock,
    device: int,
    user: int
) -> None:

    reservation = store.reserve(device, 1, user, SATURDAY, '10:00', '11:30')
    actor = EndUser(user)

    clock.set(2025, 3, 15, 9, 49)

    with pytest.raises(errors.OutOfWindow) as e:
        dispatcher.send_command(actor, device, reservation, 'ON')

    assert e.value.status_code == 400

    clock.set(2025, 3, 15, 9, 49, 59)

    with pytest.raises(errors.OutOfWindow):
        dispatcher.send_command(actor, device, reservation, 'ON')

    clock.set(2025, 3, 15, 9, 50)
    dispatcher.send_command(actor, device, reservation, 'ON')

    clock.set(2025, 3, 15, 11, 20)
    dispatcher.send_command(actor, device, reservation, 'OFF')

    clock.advance(seconds=1)

    with pytest.raises(errors.OutOfWindow):
        dispatcher.send_command(actor, device, reservation, 'MORE_WATER')

    assert store.get(reservation).last_command == 'OFF'


def test_already_on(
    dispatcher: CommandDispatcher,
    store: ReservationStore,
    clock: FrozenClock,
    gateway: Mock,
    device: int,
    user: int,
    reservation: int
) -> None:

    clock.set(2025, 3, 15, 8, 30)
    actor = EndUser(user)

    def send(command: Command) -> datetime | None:
        r = dispatcher.send_command(actor, device, reservation, command)
        return r.last_command_time

    assert send('ON') == clock.now

    with pytest.raises(errors.AlreadyOn) as e:
        send('ON')

    assert e.value.message == 'device already on'
    assert gateway.send.call_count == 1

    # the clock stands still, yet the commands keep their order
    assert send('OFF') == clock.now + timedelta(microseconds=1)
    assert send('ON') == clock.now + timedelta(microseconds=2)

    assert store.get(reservation).last_command == 'ON'


def test_offline_device(
    dispatcher: CommandDispatcher,
    devices: Devices,
    store: ReservationStore,
    clock: FrozenClock,
    gateway: Mock,
    device: int,
    user: int,
    reservation: int
) -> None:

    clock.set(2025, 3, 15, 8, 30)
    devices.mark_offline(device)

    with pytest.raises(errors.DeviceUnavailable):
        dispatcher.send_command(EndUser(user), device, reservation, 'ON')

    assert not gateway.send.called

    devices.clear_offline(device)
    dispatcher.send_command(EndUser(user), device, reservation, 'ON')

    devices.delete(device)

    with pytest.raises(errors.DeviceUnavailable):
        dispatcher.send_command(EndUser(user), device, reservation, 'OFF')


def test_not_reserved(
    dispatcher: CommandDispatcher,
    devices: Devices,
    store: ReservationStore,
    clock: FrozenClock,
    gateway: Mock,
    device: int,
    user: int,
    reservation: int
) -> None:

    other = add_user(store, 'Reza', 'Karimi', '09122222222')
    other_device = devices.add(1, '09120000001', 'WM-2')
    hold = store.create_hold(device, 1, user, SATURDAY, '10:00', '11:30')
    canceled = store.reserve(device, 1, user, SATURDAY, '11:30', '13:00')
    store.cancel(canceled)
    deleted = store.reserve(device, 1, user, SATURDAY, '13:00', '14:30')
    store.delete(deleted)

    clock.set(2025, 3, 15, 8, 30)

    for actor, device_id, reservation_id in (
        (EndUser(other), device, reservation),
        (EndUser(user), other_device, reservation),
        (EndUser(user), device, reservation + 1000),
        (EndUser(user), device, hold),
        (EndUser(user), device, canceled),
        (EndUser(user), device, deleted),
        (BusinessAgent(user, 2), device, reservation),
    ):
        with pytest.raises(errors.NotReserved):
            dispatcher.send_command(actor, device_id, reservation_id, 'ON')

    assert not gateway.send.called

    with pytest.raises(errors.NotAuthorized):
        dispatcher.send_command(
            object(), device, reservation, 'ON')  # type: ignore[arg-type]


def test_business_agent_ignores_window(
    dispatcher: CommandDispatcher,
    devices: Devices,
    clock: FrozenClock,
    device: int,
    user: int,
    reservation: int
) -> None:

    agent = BusinessAgent(user_id=42, business_id=1)

    # the day before the reservation
    dispatcher.send_command(agent, device, reservation, 'ON')

    # long after it
    clock.set(2025, 3, 16, 12, 0)
    dispatcher.send_command(agent, device, reservation, 'OFF')

    assert devices.status(1, device).machine_status == 'OFF'


def test_unknown_command(
    dispatcher: CommandDispatcher,
    gateway: Mock,
    device: int,
    user: int,
    reservation: int
) -> None:

    with pytest.raises(errors.UnknownCommand):
        dispatcher.send_command(
            EndUser(user), device, reservation, 'DRY')  # type: ignore

    assert not gateway.send.called


def test_gateway_failure(
    dispatcher: CommandDispatcher,
    devices: Devices,
    store: ReservationStore,
    clock: FrozenClock,
    gateway: Mock,
    device: int,
    user: int,
    reservation: int
) -> None:

    sent = []
    events.on_command_sent.append(lambda *args: sent.append(args))

    clock.set(2025, 3, 15, 8, 30)

    for error in (errors.GatewayError, errors.Timeout):
        gateway.send.side_effect = error

        with pytest.raises(error):
            dispatcher.send_command(EndUser(user), device, reservation, 'ON')

    # nothing was recorded
    r = store.get(reservation)
    assert r.last_command is None
    assert r.last_command_time is None
    assert r.last_command_sms_ref is None

    status = devices.status(1, device)
    assert status.machine_status == 'OFF'
    assert status.last_command is None

    assert sent == []

    # the next attempt goes through
    gateway.send.side_effect = None
    gateway.send.return_value = SendResult('ref-2', 'success')

    r = dispatcher.send_command(EndUser(user), device, reservation, 'ON')
    assert r.last_command_sms_ref == 'ref-2'


def test_check_last_command_status(
    dispatcher: CommandDispatcher,
    clock: FrozenClock,
    gateway: Mock,
    device: int,
    user: int,
    reservation: int
) -> None:

    status = dispatcher.check_last_command_status(1, reservation)
    assert status == NO_COMMAND_STATUS
    assert not gateway.status.called

    clock.set(2025, 3, 15, 8, 30)
    dispatcher.send_command(EndUser(user), device, reservation, 'ON')

    status = dispatcher.check_last_command_status(1, reservation)
    assert status == {'status': 'success', 'data': {'OTPStatus': 'delivered'}}
    gateway.status.assert_called_once_with('ref-1')

    with pytest.raises(errors.ReservationNotFound):
        dispatcher.check_last_command_status(2, reservation)


def test_send_device_is_off_message(
    dispatcher: CommandDispatcher,
    gateway: Mock,
    reservation: int
) -> None:

    result = dispatcher.send_device_is_off_message(1, reservation)
    assert result == SendResult('ref-1', 'success')

    gateway.send.assert_called_once_with(Message(
        template_id=16622,
        mobile='09121111111',
        params=('WM-1', ),
        provider=5
    ))

    with pytest.raises(errors.ReservationNotFound):
        dispatcher.send_device_is_off_message(2, reservation)


def test_business_agent_for_business() -> None:
    identity = ActorIdentity(7, {1: frozenset(('operator', ))})

    agent = BusinessAgent.for_business(identity, 1)
    assert agent == BusinessAgent(7, 1)

    with pytest.raises(errors.NotAuthorized) as e:
        BusinessAgent.for_business(identity, 2)

    assert e.value.status_code == 403

    with pytest.raises(errors.NotAuthorized):
        BusinessAgent.for_business(identity, 1, roles=('owner', ))

    assert EndUser.from_identity(identity) == EndUser(7)


def test_machine_status_is_left_alone_by_more_water(
    dispatcher: CommandDispatcher,
    devices: Devices,
    store: ReservationStore,
    clock: FrozenClock,
    device: int,
    user: int,
    reservation: int
) -> None:

    set_machine_status(store, device, 'ON')
    clock.set(2025, 3, 15, 8, 30)

    dispatcher.send_command(EndUser(user), device, reservation, 'MORE_WATER')

    status = devices.status(1, device)
    assert status.machine_status == 'ON'
    assert status.last_command == 'MORE_WATER'


def test_gateway_is_called_outside_of_transactions(
    dispatcher: CommandDispatcher,
    devices: Devices,
    store: ReservationStore,
    clock: FrozenClock,
    gateway: Mock,
    device: int,
    user: int,
    reservation: int
) -> None:

    open_transactions = []

    def send(message: Message) -> SendResult:
        open_transactions.append(dispatcher.session.in_transaction())

        # the reservation changes while the message is on its way
        store.cancel(reservation)

        return SendResult('ref-7', 'success')

    gateway.send.side_effect = send
    clock.set(2025, 3, 15, 8, 30)

    r = dispatcher.send_command(EndUser(user), device, reservation, 'ON')
    assert open_transactions == [False]

    # the message is out, so the command is recorded regardless
    assert r.state == 'canceled'
    assert r.last_command == 'ON'
    assert r.last_command_sms_ref == 'ref-7'

    status = devices.status(1, device)
    assert status.machine_status == 'ON'
    assert status.last_command_sms_ref == 'ref-7'
