from __future__ import annotations

import logging

from sqlalchemy.orm import joinedload

from uniwash.context.core import ContextServicesMixin
from uniwash.db.models import ORMBase, Device, Reservation
from uniwash.db.queries import Queries, ReservationFilter
from uniwash.modules import errors
from uniwash.modules import events
from uniwash.modules import utils


from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import date, datetime, time, timedelta
    from sqlalchemy.orm import Session
    from typing_extensions import TypeAlias

    from uniwash.context.core import Context
    from uniwash.db.models.reservation import State
    from uniwash.db.queries import Page

    DateLike: TypeAlias = 'date | str'
    TimeLike: TypeAlias = 'time | str'


log = logging.getLogger('uniwash')

ReminderKind: TypeAlias = Literal['turn_on', 'turn_off']


class ReservationStore(ContextServicesMixin):
    """ The reservation store keeps the reservations of the devices and
    makes sure that no slot of a device is claimed twice.

    A slot is claimed by a hold (a tentative reservation) first, which
    expires after :ref:`settings.hold_ttl` unless it is confirmed. Holds of
    the same slot race each other, the first one to commit wins. The loser
    receives a :class:`uniwash.modules.errors.SlotTaken` error.

    Each operation runs in its own transaction which is committed before
    the operation returns.

    """

    def __init__(self, context: Context):
        """ Initializes a new store.

        :context:
            The :class:`uniwash.context.core.Context` this store should
            operate on. Acquire a context by using
            :func:`uniwash.context.registry.Registry.register_context`.

        """
        self.context = context
        self.queries = Queries(context)

    def setup_database(self) -> None:
        """ Creates the tables and indices required for uniwash. This needs
        to be called once per database. Multiple invocations won't hurt but
        they are unnecessary.

        """
        ORMBase.metadata.create_all(self.session.bind)

    @property
    def hold_ttl(self) -> timedelta:
        return self.context.get_setting('hold_ttl')  # type: ignore[no-any-return]

    def resolve_slot(
        self,
        day: DateLike,
        start: TimeLike,
        end: TimeLike
    ) -> tuple[datetime, datetime]:
        """ Returns the UTC instants of the given slot on the given local
        day. Slots not found in the catalog for that weekday are invalid.

        """
        try:
            day = utils.as_date(day)
        except ValueError as e:
            raise errors.SlotInvalid from e

        slot = self.slot_catalog.find(day.weekday(), start, end)

        if slot is None:
            raise errors.SlotInvalid

        return slot.resolve(day, self.timezone)

    def reservation_by_id(
        self,
        session: Session,
        reservation_id: int,
        business_id: int | None = None
    ) -> Reservation:
        """ Loads the given reservation within a running transaction. The
        state of the row is always read from the database.

        """
        reservation = session.get(
            Reservation, reservation_id, populate_existing=True)

        if reservation is None or reservation.deleted_at is not None:
            raise errors.ReservationNotFound

        if business_id is not None and reservation.business_id != business_id:
            raise errors.ReservationNotFound

        return reservation

    def available_device(
        self,
        session: Session,
        device_id: int,
        business_id: int | None = None
    ) -> Device:
        """ Loads a device that accepts reservations, otherwise
        :class:`uniwash.modules.errors.DeviceUnavailable` is raised.

        """
        device = session.get(Device, device_id, populate_existing=True)

        if device is None or not device.is_available:
            raise errors.DeviceUnavailable

        if business_id is not None and device.business_id != business_id:
            raise errors.DeviceUnavailable

        return device

    def _new_reservation(
        self,
        session: Session,
        device_id: int,
        business_id: int,
        user_id: int,
        start: datetime,
        end: datetime,
        state: State
    ) -> Reservation:

        now = self.utcnow()

        if start <= now:
            raise errors.SlotInvalid

        self.available_device(session, device_id, business_id)

        if self.queries.conflicting(device_id, start, end, now).first():
            raise errors.SlotTaken

        reservation = Reservation(
            device_id=device_id,
            business_id=business_id,
            user_id=user_id,
            state=state,
            start=start,
            end=end,
            expires_at=now + self.hold_ttl if state == 'tentative' else None
        )
        session.add(reservation)
        session.flush()

        return reservation

    def create_hold(
        self,
        device_id: int,
        business_id: int,
        user_id: int,
        day: DateLike,
        start: TimeLike,
        end: TimeLike
    ) -> int:
        """ Claims the given slot of the given day tentatively and returns
        the id of the new reservation.

        The slot is given as local day and local wall-clock times, which
        must match one of the slots of the catalog for the weekday of the
        day. An end of 00:00 denotes the midnight after the given day.

        """
        start_at, end_at = self.resolve_slot(day, start, end)

        with self.transaction(conflict=errors.SlotTaken) as session:
            reservation = self._new_reservation(
                session, device_id, business_id, user_id,
                start_at, end_at, 'tentative'
            )
            reservation_id = reservation.id
            events.on_hold_created(self.context, reservation)

        log.info(
            'hold %s on device %s for %s - %s',
            reservation_id, device_id, start_at, end_at
        )

        return reservation_id

    def reserve(
        self,
        device_id: int,
        business_id: int,
        user_id: int,
        day: DateLike,
        start: TimeLike,
        end: TimeLike
    ) -> int:
        """ Claims the given slot for good, as if a hold was created and
        confirmed right away. Used when no payment has to be awaited.

        """
        start_at, end_at = self.resolve_slot(day, start, end)

        with self.transaction(conflict=errors.SlotTaken) as session:
            reservation = self._new_reservation(
                session, device_id, business_id, user_id,
                start_at, end_at, 'confirmed'
            )
            reservation_id = reservation.id
            events.on_hold_confirmed(self.context, reservation)

        return reservation_id

    def confirm_hold(self, reservation_id: int) -> Reservation:
        """ Confirms the given hold, once its payment was settled. This
        clears the expiry of the hold, the slot is taken for good.

        Confirming a confirmed reservation does nothing. Expired holds raise
        a :class:`uniwash.modules.errors.HoldExpired` error, canceled ones a
        :class:`uniwash.modules.errors.ReservationCanceled` error.

        """
        now = self.utcnow()

        with self.transaction(conflict=errors.SlotTaken) as session:
            reservation = self.reservation_by_id(session, reservation_id)

            if reservation.is_canceled:
                raise errors.ReservationCanceled

            if reservation.is_confirmed:
                return reservation

            if reservation.expires_at is None or reservation.expires_at <= now:
                raise errors.HoldExpired

            reservation.state = 'confirmed'
            reservation.expires_at = None
            session.flush()

            events.on_hold_confirmed(self.context, reservation)

        log.info('hold %s confirmed', reservation_id)

        return reservation

    def cancel(self, reservation_id: int) -> Reservation:
        """ Cancels the given reservation, which frees its slot. Canceled
        reservations stay canceled, canceling them again does nothing.

        """
        with self.transaction() as session:
            reservation = self.reservation_by_id(session, reservation_id)

            if reservation.is_canceled:
                return reservation

            reservation.state = 'canceled'
            session.flush()

            events.on_reservation_canceled(self.context, reservation)

        log.info('reservation %s canceled', reservation_id)

        return reservation

    def delete(self, reservation_id: int) -> None:
        """ Removes the given reservation from all listings. The row is kept
        with the time of its deletion.

        """
        with self.transaction() as session:
            reservation = session.get(
                Reservation, reservation_id, populate_existing=True)

            if reservation is None:
                raise errors.ReservationNotFound

            if reservation.deleted_at is None:
                reservation.deleted_at = self.utcnow()

    def get(
        self,
        reservation_id: int,
        business_id: int | None = None
    ) -> Reservation:
        """ Returns the given reservation, with its device and user loaded.
        If a business is given, reservations of other businesses are not
        found.

        """
        with self.transaction() as session:
            query = session.query(Reservation)
            query = query.options(
                joinedload(Reservation.device),
                joinedload(Reservation.user)
            )
            query = query.filter(Reservation.id == reservation_id)
            query = query.filter(Reservation.deleted_at.is_(None))

            if business_id is not None:
                query = query.filter(Reservation.business_id == business_id)

            reservation = query.populate_existing().first()

        if reservation is None:
            raise errors.ReservationNotFound

        return reservation

    def list(self, filter: ReservationFilter | None = None) -> Page:
        """ Lists the reservations matching the given filter, the latest
        first. See :class:`uniwash.db.queries.ReservationFilter`.

        """
        with self.transaction():
            return self.queries.page(
                filter or ReservationFilter(), self.utcnow())

    def is_reservable(
        self,
        device_id: int,
        day: DateLike,
        start: TimeLike,
        end: TimeLike
    ) -> bool:
        """ Returns True if the device accepts reservations and the given
        slot is not claimed by a live reservation. Nothing is written, so a
        subsequent hold may still lose against a concurrent one.

        """
        start_at, end_at = self.resolve_slot(day, start, end)

        with self.transaction() as session:
            try:
                self.available_device(session, device_id)
            except errors.DeviceUnavailable:
                return False

            conflict = self.queries.conflicting(
                device_id, start_at, end_at, self.utcnow()).first()

        return conflict is None

    def reserved_machines(
        self,
        business_id: int,
        user_id: int,
        day: DateLike | None = None,
        device_id: int | None = None,
        include_tentative: bool = False,
        page: int | None = None,
        page_size: int = 20
    ) -> Page:
        """ Lists the reservations a user has with the given business,
        optionally limited to a local day or a device. With
        ``include_tentative``, the user's pending holds are listed too.

        """
        return self.list(ReservationFilter(
            business_id=business_id,
            user_id=user_id,
            device_id=device_id,
            date=day,
            include_tentative=include_tentative,
            page=page,
            page_size=page_size
        ))

    @property
    def batch_size(self) -> int:
        return self.context.get_setting('scheduler.batch_size')  # type: ignore[no-any-return]

    def due_for_turn_on(
        self,
        now: datetime | None = None
    ) -> tuple[int, ...]:
        """ Returns the ids of the reservations a turn-on reminder should
        be sent for, at most :ref:`settings.scheduler.batch_size`.

        """
        with self.transaction():
            reservations = self.queries.due_for_turn_on(
                now or self.utcnow(), self.batch_size)
            return tuple(r.id for r in reservations)

    def due_for_turn_off(
        self,
        now: datetime | None = None
    ) -> tuple[int, ...]:
        """ Returns the ids of the reservations a turn-off reminder should
        be sent for, at most :ref:`settings.scheduler.batch_size`.

        """
        with self.transaction():
            reservations = self.queries.due_for_turn_off(
                now or self.utcnow(), self.batch_size)
            return tuple(r.id for r in reservations)

    def mark_reminder_sent(
        self,
        reservation_id: int,
        kind: ReminderKind
    ) -> None:

        with self.transaction() as session:
            reservation = self.reservation_by_id(session, reservation_id)

            if kind == 'turn_on':
                reservation.turn_on_reminder_sent = True
            elif kind == 'turn_off':
                reservation.turn_off_reminder_sent = True
            else:
                raise ValueError(f'Unknown reminder kind: {kind}')
