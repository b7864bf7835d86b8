from __future__ import annotations

import pytest

from datetime import datetime, timezone
from sqlalchemy.exc import StatementError

from uniwash.db.models import User
from uniwash.db.models.types import UTCDateTime

from .conftest import add_user, local


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from uniwash.db import ReservationStore


def test_utcdatetime_bind() -> None:
    column = UTCDateTime()
    dialect = None

    stored = column.process_bind_param(
        local(2025, 3, 15, 8, 30), dialect)  # type: ignore[arg-type]
    assert stored == datetime(2025, 3, 15, 5, 0)
    assert stored.tzinfo is None  # type: ignore[union-attr]

    assert column.process_bind_param(
        None, dialect) is None  # type: ignore[arg-type]

    with pytest.raises(ValueError):
        column.process_bind_param(
            datetime(2025, 3, 15, 8, 30), dialect)  # type: ignore[arg-type]


def test_utcdatetime_result() -> None:
    column = UTCDateTime()

    value = column.process_result_value(
        datetime(2025, 3, 15, 5, 0), None)  # type: ignore[arg-type]

    assert value == datetime(2025, 3, 15, 5, 0, tzinfo=timezone.utc)
    assert value == local(2025, 3, 15, 8, 30)
    assert value.utcoffset().total_seconds() == 0  # type: ignore[union-attr]

    assert column.process_result_value(
        None, None) is None  # type: ignore[arg-type]


def test_naive_dates_are_refused(store: ReservationStore) -> None:
    with pytest.raises(StatementError):
        with store.transaction() as session:
            user = User(mobile='09121111111')
            session.add(user)
            session.flush()

            user.created = datetime(2025, 3, 15, 8, 30)
            session.flush()


def test_timestamps(store: ReservationStore) -> None:
    user_id = add_user(store)

    with store.transaction() as session:
        user = session.get(User, user_id)
        assert user is not None
        assert user.created.tzinfo is not None
        assert user.modified is None

        user.first_name = 'Sarah'

    with store.transaction() as session:
        user = session.get(User, user_id, populate_existing=True)
        assert user is not None
        assert user.modified is not None
        assert user.modified >= user.created
