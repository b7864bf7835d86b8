from __future__ import annotations

import sedate

from datetime import datetime
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import Mapped


def utcnow() -> datetime:
    return sedate.utcnow()


class TimestampMixin:
    """ Records when a row was written and when it last changed.

    The columns are loaded on access only, they are kept for forensics and
    never read by the reservation core itself.

    """

    created: Mapped[datetime] = mapped_column(default=utcnow, deferred=True)

    modified: Mapped[datetime | None] = mapped_column(
        onupdate=utcnow,
        deferred=True
    )
