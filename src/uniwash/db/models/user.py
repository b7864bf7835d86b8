from __future__ import annotations

from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import Mapped

from uniwash.db.models.base import ORMBase
from uniwash.db.models.timestamp import TimestampMixin


class User(TimestampMixin, ORMBase):
    """ The part of a user the reservation core needs. Users are managed
    by the surrounding application.

    """

    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    first_name: Mapped[str] = mapped_column(types.Unicode(100), default='')

    last_name: Mapped[str] = mapped_column(types.Unicode(100), default='')

    mobile: Mapped[str] = mapped_column(types.String(20), index=True)

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'.strip()
