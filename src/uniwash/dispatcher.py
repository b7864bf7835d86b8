""" Switches the reserved washing machines on and off.

Each device carries a controller reachable by SMS. A command is sent as a
template message whose single parameter is the token the controller
understands. The gateway is called outside of any transaction. Once it
accepted the message, the command is recorded on the reservation and on the
device, in the same transaction.

"""
from __future__ import annotations

import logging

from datetime import timedelta

from uniwash.context.core import ContextServicesMixin
from uniwash.db.devices import Devices
from uniwash.db.models import Device, Reservation
from uniwash.db.models.device import COMMANDS
from uniwash.db.store import ReservationStore
from uniwash.modules import errors
from uniwash.modules import events
from uniwash.modules.actors import BusinessAgent, EndUser
from uniwash.modules.gateway import DEVICE_PROVIDER, USER_PROVIDER, Message


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime
    from sqlalchemy.orm import Session

    from uniwash.context.core import Context
    from uniwash.db.models.device import Command
    from uniwash.modules.actors import Actor
    from uniwash.modules.gateway import SendResult


log = logging.getLogger('uniwash')


COMMAND_TEMPLATE = 8698
DEVICE_IS_OFF_TEMPLATE = 16622

# recording a sent command is retried this many times on conflicts
RECORD_ATTEMPTS = 3

# what the controllers understand
COMMAND_TOKENS: dict[Command, str] = {
    'ON': '7',
    'OFF': '2',
    'MORE_WATER': '3',
}

NO_COMMAND_STATUS = {'status': 'error', 'OTPStatus': 'دستوری ارسال نشده'}


class CommandDispatcher(ContextServicesMixin):
    """ Sends commands to devices on behalf of end-users and businesses.

    End-users may only command the devices they reserved, and only during
    the command window of their reservation (see
    :ref:`settings.command_window`). Businesses may command the devices of
    any of their reservations at any time.

    """

    def __init__(self, context: Context):
        self.context = context
        self.store = ReservationStore(context)
        self.devices = Devices(context)

    @property
    def command_window(self) -> timedelta:
        return self.context.get_setting('command_window')  # type: ignore[no-any-return]

    def in_window(self, reservation: Reservation, now: datetime) -> bool:
        """ True if an end-user may command the device of the reservation at
        the given instant. Both ends of the window are included.

        """
        window = self.command_window
        return reservation.start - window <= now <= reservation.end - window

    def reservation_for(
        self,
        session: Session,
        actor: Actor,
        device_id: int,
        reservation_id: int
    ) -> Reservation:
        """ Returns the reservation the actor commands the device with. Only
        confirmed reservations of the actor (or the actor's business) count.

        """
        try:
            reservation = self.store.reservation_by_id(session, reservation_id)
        except errors.ReservationNotFound as e:
            raise errors.NotReserved from e

        if reservation.device_id != device_id:
            raise errors.NotReserved

        if not reservation.is_confirmed:
            raise errors.NotReserved

        if isinstance(actor, EndUser):
            if reservation.user_id != actor.user_id:
                raise errors.NotReserved
        elif isinstance(actor, BusinessAgent):
            if reservation.business_id != actor.business_id:
                raise errors.NotReserved
        else:
            raise errors.NotAuthorized

        return reservation

    def send_command(
        self,
        actor: Actor,
        device_id: int,
        reservation_id: int,
        command: Command
    ) -> Reservation:
        """ Sends the given command to the device of the given reservation.

        The preconditions are checked in this order:

        1. The reservation belongs to the actor (or the actor's business),
           otherwise :class:`uniwash.modules.errors.NotReserved` is raised.
        2. End-users must be within the command window, otherwise
           :class:`uniwash.modules.errors.OutOfWindow` is raised.
        3. ON may not follow ON, :class:`uniwash.modules.errors.AlreadyOn`.
        4. The device must not be offline,
           :class:`uniwash.modules.errors.DeviceUnavailable`.

        The message is sent between two transactions, no database lock is
        held while waiting for the gateway. If the gateway fails, nothing is
        recorded. Once the gateway accepted the message, the command is
        recorded even if the reservation changed in the meantime.

        """
        if command not in COMMANDS:
            raise errors.UnknownCommand

        now = self.utcnow()

        with self.transaction() as session:
            mobile_number = self.validate_command(
                session, actor, device_id, reservation_id, command, now)

        result = self.gateway.send(Message(
            template_id=COMMAND_TEMPLATE,
            mobile=mobile_number,
            params=(COMMAND_TOKENS[command], ),
            provider=DEVICE_PROVIDER
        ))

        reservation = self.record_command(
            device_id, reservation_id, command, now, result.reference_id)

        log.info(
            'sent %s to device %s for reservation %s (%s)',
            command, device_id, reservation_id, result.reference_id
        )

        return reservation

    def validate_command(
        self,
        session: Session,
        actor: Actor,
        device_id: int,
        reservation_id: int,
        command: Command,
        now: datetime
    ) -> str:
        """ Checks the preconditions of :meth:`send_command` within a
        running transaction and returns the mobile number of the device.

        """
        reservation = self.reservation_for(
            session, actor, device_id, reservation_id)

        if isinstance(actor, EndUser):
            if not self.in_window(reservation, now):
                raise errors.OutOfWindow

        if command == 'ON' and reservation.last_command == 'ON':
            raise errors.AlreadyOn

        try:
            device = self.devices.device_by_id(session, device_id)
        except errors.DeviceNotFound as e:
            raise errors.DeviceUnavailable from e

        if not device.is_available:
            raise errors.DeviceUnavailable

        return device.mobile_number

    def record_command(
        self,
        device_id: int,
        reservation_id: int,
        command: Command,
        now: datetime,
        reference_id: str
    ) -> Reservation:
        """ Records a command the gateway accepted. The reservation is written
        before the device, like everywhere else. Conflicting writers are
        retried a few times, the message is out already.

        """
        attempt = 1

        while True:
            try:
                with self.transaction(conflict=errors.Conflict) as session:
                    return self._record_command(
                        session, device_id, reservation_id, command, now,
                        reference_id)
            except errors.Conflict:
                if attempt >= RECORD_ATTEMPTS:
                    log.error(
                        'could not record %s (%s) for reservation %s',
                        command, reference_id, reservation_id
                    )
                    raise

                log.warning(
                    'conflict recording %s for reservation %s, retrying',
                    command, reservation_id
                )
                attempt += 1

    def _record_command(
        self,
        session: Session,
        device_id: int,
        reservation_id: int,
        command: Command,
        now: datetime,
        reference_id: str
    ) -> Reservation:

        reservation = session.get(
            Reservation, reservation_id, populate_existing=True)

        if reservation is None:
            raise errors.ReservationNotFound

        # the time of the last command never goes backwards
        sent_at = now
        last = reservation.last_command_time
        if last is not None and sent_at <= last:
            sent_at = last + timedelta(microseconds=1)

        reservation.last_command = command
        reservation.last_command_time = sent_at
        reservation.last_command_sms_ref = reference_id
        session.flush()

        device = session.get(Device, device_id, populate_existing=True)

        if device is not None:
            self.devices.apply_command(device, command, sent_at, reference_id)
            session.flush()

            events.on_command_sent(self.context, reservation, device, command)

        return reservation

    def check_last_command_status(
        self,
        business_id: int,
        reservation_id: int
    ) -> dict[str, Any]:
        """ Asks the gateway whether the last command of the reservation
        reached its device.

        """
        reservation = self.store.get(reservation_id, business_id)

        if not reservation.last_command_sms_ref:
            return dict(NO_COMMAND_STATUS)

        return self.gateway.status(reservation.last_command_sms_ref)

    def send_device_is_off_message(
        self,
        business_id: int,
        reservation_id: int
    ) -> SendResult:
        """ Lets the user of the reservation know that the device is off. """

        reservation = self.store.get(reservation_id, business_id)

        return self.gateway.send(Message(
            template_id=DEVICE_IS_OFF_TEMPLATE,
            mobile=reservation.user.mobile,
            params=(reservation.device.sku, ),
            provider=USER_PROVIDER
        ))
