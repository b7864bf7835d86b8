""" Events are called by the reservation store, the command dispatcher and
the reminder scheduler whenever something interesting occurs.

The implementation is very simple:

To add an event::

    from uniwash.modules import events

    def on_hold_created(context, reservation):
        pass

    events.on_hold_created.append(on_hold_created)

To remove the same event::

    events.on_hold_created.remove(on_hold_created)

Events are called in the order they were added.
"""
from __future__ import annotations


from typing import overload
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from typing_extensions import ParamSpec

    from uniwash.context.core import Context
    from uniwash.db.models import Device, Reservation

    _P = ParamSpec('_P')


class Event(list['Callable[_P, object]']):
    """Event subscription. By http://stackoverflow.com/a/2022629

    A list of callable objects. Calling an instance of this will cause a
    call to each item in the list in ascending order by index.

    """
    @overload
    def __init__(self, f: type[Callable[_P, object]]) -> None: ...
    @overload
    def __init__(self) -> None: ...

    def __init__(self, f: object = None) -> None:
        return

    def __call__(self, *args: _P.args, **kwargs: _P.kwargs) -> None:
        for f in self:
            f(*args, **kwargs)


on_hold_created: Event[Context, Reservation] = Event()
""" Called when a tentative reservation was written, with the following
arguments:

    :context:
        The :class:`uniwash.context.core.Context` used when creating the
        hold.

    :reservation:
        The :class:`uniwash.db.models.Reservation` holding the slot.

"""

on_hold_confirmed: Event[Context, Reservation] = Event()
""" Called when a hold was promoted to a confirmed reservation, with the
following arguments:

    :context:
        The :class:`uniwash.context.core.Context` used when confirming.

    :reservation:
        The confirmed :class:`uniwash.db.models.Reservation`.

"""

on_reservation_canceled: Event[Context, Reservation] = Event()
""" Called when a reservation is canceled, with the context and the
canceled reservation.

"""

on_command_sent: Event[Context, Reservation, Device, str] = Event()
""" Called after a command was handed to the SMS gateway and recorded,
with the following arguments:

    :context:
        The :class:`uniwash.context.core.Context` of the dispatcher.

    :reservation:
        The :class:`uniwash.db.models.Reservation` the command was sent for.

    :device:
        The commanded :class:`uniwash.db.models.Device`.

    :command:
        One of 'ON', 'OFF' or 'MORE_WATER'.

"""

on_reminder_sent: Event[Context, Reservation, str] = Event()
""" Called when a reminder went out, with the context, the reservation and
the kind of reminder ('turn_on' or 'turn_off').

"""

on_device_status_changed: Event[Context, Device, str] = Event()
""" Called when the machine status of a device changes, with the context,
the device (already carrying the new status) and the previous status.

"""
