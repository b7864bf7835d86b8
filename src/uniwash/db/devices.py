from __future__ import annotations

import logging

from uniwash.context.core import ContextServicesMixin
from uniwash.db.models import Device
from uniwash.modules import errors
from uniwash.modules import events


from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime
    from sqlalchemy.orm import Session

    from uniwash.context.core import Context
    from uniwash.db.models.device import Command, MachineStatus


log = logging.getLogger('uniwash')


class DeviceStatus(NamedTuple):
    """ What owners and admins see of a device's controller. """

    device_id: int
    machine_status: MachineStatus
    last_command: Command | None
    last_command_time: datetime | None
    last_command_sms_ref: str | None


class Devices(ContextServicesMixin):
    """ Keeps the state of the devices. The machine status follows the
    commands sent to a device, unless an operator takes the device offline.

    """

    def __init__(self, context: Context):
        self.context = context

    def device_by_id(
        self,
        session: Session,
        device_id: int,
        business_id: int | None = None
    ) -> Device:
        """ Loads the given device within a running transaction. """

        device = session.get(Device, device_id, populate_existing=True)

        if device is None or device.is_deleted:
            raise errors.DeviceNotFound

        if business_id is not None and device.business_id != business_id:
            raise errors.DeviceNotFound

        return device

    def add(
        self,
        business_id: int,
        mobile_number: str,
        sku: str = '',
        post_id: int | None = None
    ) -> int:
        with self.transaction() as session:
            device = Device(
                business_id=business_id,
                mobile_number=mobile_number,
                sku=sku,
                post_id=post_id,
                machine_status='OFF'
            )
            session.add(device)
            session.flush()

            return device.id

    def delete(self, device_id: int) -> None:
        """ Removes the device. Its reservations are kept, but no new ones
        are accepted.

        """
        with self.transaction() as session:
            device = self.device_by_id(session, device_id)
            device.deleted_at = self.utcnow()

    def by_id(self, device_id: int, business_id: int | None = None) -> Device:
        with self.transaction() as session:
            return self.device_by_id(session, device_id, business_id)

    def by_business(self, business_id: int) -> list[Device]:
        with self.transaction() as session:
            query = session.query(Device)
            query = query.filter(Device.business_id == business_id)
            query = query.filter(Device.deleted_at.is_(None))
            query = query.order_by(Device.id)

            return query.all()

    def status(self, business_id: int, device_id: int) -> DeviceStatus:
        with self.transaction() as session:
            device = self.device_by_id(session, device_id, business_id)

            return DeviceStatus(
                device.id,
                device.machine_status,
                device.last_command,
                device.last_command_time,
                device.last_command_sms_ref
            )

    def mark_offline(self, device_id: int) -> Device:
        """ Takes the device offline, it accepts neither reservations nor
        commands until the offline state is cleared. The current status is
        remembered.

        """
        with self.transaction() as session:
            device = self.device_by_id(session, device_id)

            if device.is_offline:
                return device

            previous = device.machine_status
            device.previous_status = previous
            device.machine_status = 'Offline'
            session.flush()

            events.on_device_status_changed(self.context, device, previous)

        log.info('device %s is offline (was %s)', device_id, previous)

        return device

    def clear_offline(self, device_id: int) -> Device:
        """ Returns the device to the status it had before it went offline,
        or OFF if that is not known.

        """
        with self.transaction() as session:
            device = self.device_by_id(session, device_id)

            if not device.is_offline:
                return device

            device.machine_status = device.previous_status or 'OFF'
            device.previous_status = None
            session.flush()

            events.on_device_status_changed(self.context, device, 'Offline')

        log.info('device %s is back (%s)', device_id, device.machine_status)

        return device

    def apply_command(
        self,
        device: Device,
        command: Command,
        sent_at: datetime,
        reference_id: str
    ) -> None:
        """ Records a command that was sent to the device. ON and OFF switch
        the machine status, MORE_WATER leaves it as is.

        Runs within the transaction of the caller.

        """
        device.last_command = command
        device.last_command_time = sent_at
        device.last_command_sms_ref = reference_id

        if command in ('ON', 'OFF') and device.machine_status != command:
            previous = device.machine_status
            device.machine_status = command
            events.on_device_status_changed(self.context, device, previous)
