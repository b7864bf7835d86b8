from __future__ import annotations

import sedate

from datetime import datetime
from sqlalchemy import text
from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import ForeignKey
from sqlalchemy.schema import Index

from uniwash.db.models.base import ORMBase
from uniwash.db.models.device import Command, Device, command_type
from uniwash.db.models.timestamp import TimestampMixin
from uniwash.db.models.user import User


from typing import Literal
from typing import TypeAlias
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sedate.types import TzInfoOrName


State: TypeAlias = Literal['tentative', 'confirmed', 'canceled']
Status: TypeAlias = Literal['reserved', 'canceled']

CONFIRMED_AND_NOT_DELETED = text("state = 'confirmed' AND deleted_at IS NULL")


class Reservation(TimestampMixin, ORMBase):
    """ Describes a claim of a user on a device for one slot of a day.

    A reservation starts out tentative (a hold), which blocks the slot
    until ``expires_at``. Once the payment is settled it is confirmed and
    blocks the slot for good, unless it is canceled later. Canceled
    reservations are never reactivated.

    """

    __tablename__ = 'reservations'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    device_id: Mapped[int] = mapped_column(ForeignKey(Device.id))

    device: Mapped[Device] = relationship()

    user_id: Mapped[int] = mapped_column(ForeignKey(User.id))

    user: Mapped[User] = relationship()

    business_id: Mapped[int]

    state: Mapped[State] = mapped_column(
        types.Enum(
            'tentative', 'confirmed', 'canceled',
            name='reservation_state'
        ),
        default='tentative'
    )

    start: Mapped[datetime]

    end: Mapped[datetime]

    # only set for tentative reservations
    expires_at: Mapped[datetime | None]

    last_command: Mapped[Command | None] = mapped_column(command_type)

    last_command_time: Mapped[datetime | None]

    last_command_sms_ref: Mapped[str | None] = mapped_column(
        types.String(100)
    )

    turn_on_reminder_sent: Mapped[bool] = mapped_column(default=False)

    turn_off_reminder_sent: Mapped[bool] = mapped_column(default=False)

    deleted_at: Mapped[datetime | None]

    __table_args__ = (
        Index('reservation_slot_ix', 'device_id', 'start', 'end'),
        Index('reservation_state_start_ix', 'state', 'start'),
        Index('reservation_user_ix', 'user_id', 'business_id'),
        Index(
            'reservation_confirmed_slot_ix',
            'device_id', 'start', 'end',
            unique=True,
            postgresql_where=CONFIRMED_AND_NOT_DELETED,
            sqlite_where=CONFIRMED_AND_NOT_DELETED
        ),
    )

    @property
    def status(self) -> Status:
        return 'canceled' if self.state == 'canceled' else 'reserved'

    @property
    def is_tentative(self) -> bool:
        return self.state == 'tentative'

    @property
    def is_confirmed(self) -> bool:
        return self.state == 'confirmed'

    @property
    def is_canceled(self) -> bool:
        return self.state == 'canceled'

    def is_live(self, now: datetime) -> bool:
        """ True if the reservation blocks its slot at the given instant. """

        if self.deleted_at is not None:
            return False

        if self.is_confirmed:
            return True

        return (
            self.is_tentative
            and self.expires_at is not None
            and self.expires_at > now
        )

    def display_start(self, timezone: TzInfoOrName) -> datetime:
        return sedate.to_timezone(self.start, timezone)

    def display_end(self, timezone: TzInfoOrName) -> datetime:
        return sedate.to_timezone(self.end, timezone)
