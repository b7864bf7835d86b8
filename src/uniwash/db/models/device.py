from __future__ import annotations

from datetime import datetime
from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import ForeignKey

from uniwash.db.models.base import ORMBase
from uniwash.db.models.post import Post
from uniwash.db.models.timestamp import TimestampMixin


from typing import Literal
from typing import TypeAlias


MachineStatus: TypeAlias = Literal['ON', 'OFF', 'Offline']
Command: TypeAlias = Literal['ON', 'OFF', 'MORE_WATER']

COMMANDS: tuple[Command, ...] = ('ON', 'OFF', 'MORE_WATER')

machine_status_type = types.Enum('ON', 'OFF', 'Offline', name='machine_status')
command_type = types.Enum('ON', 'OFF', 'MORE_WATER', name='device_command')


class Device(TimestampMixin, ORMBase):
    """ A washing machine that can be reserved and is switched on and off
    by sending SMS to the controller attached to it.

    The machine status and the last command fields are written by the
    command dispatcher only, the offline state by operators.

    """

    __tablename__ = 'devices'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    business_id: Mapped[int] = mapped_column(index=True)

    post_id: Mapped[int | None] = mapped_column(ForeignKey(Post.id))

    post: Mapped[Post | None] = relationship(lazy='joined')

    sku: Mapped[str] = mapped_column(types.Unicode(40), default='')

    mobile_number: Mapped[str] = mapped_column(types.String(20))

    machine_status: Mapped[MachineStatus] = mapped_column(
        machine_status_type,
        default='OFF'
    )

    # the status to return to once an operator clears the offline state
    previous_status: Mapped[MachineStatus | None] = mapped_column(
        machine_status_type
    )

    last_command: Mapped[Command | None] = mapped_column(command_type)

    last_command_time: Mapped[datetime | None]

    last_command_sms_ref: Mapped[str | None] = mapped_column(
        types.String(100)
    )

    deleted_at: Mapped[datetime | None]

    @property
    def is_offline(self) -> bool:
        return self.machine_status == 'Offline'

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_available(self) -> bool:
        return not self.is_offline and not self.is_deleted

    @property
    def is_published(self) -> bool:
        return self.post is not None and self.post.is_published
