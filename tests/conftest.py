from __future__ import annotations

import os
import pytest
import sedate
import uniwash

from datetime import datetime, timedelta
from mock import Mock
# FIXME: Switch to pytest-postgresql, testing.postgresql is unmaintained
from testing.postgresql import Postgresql  # type: ignore[import-untyped]
from uuid import uuid4 as new_uuid

from uniwash.db import Devices, ReservationStore
from uniwash.db.models import ORMBase, Device, Post, Taxonomy, User
from uniwash.dispatcher import CommandDispatcher
from uniwash.modules.gateway import SendResult
from uniwash.reminders import ReminderScheduler


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Generator
    from uniwash.context.core import Context


TIMEZONE = 'Asia/Tehran'


def local(*args: int) -> datetime:
    """ Returns the UTC instant of the given wall-clock time in Tehran. """
    return sedate.standardize_date(datetime(*args), TIMEZONE)


class FrozenClock:
    """ Stands in for the clock service, time only passes when told to. """

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, *args: int) -> None:
        self.now = local(*args)

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def new_test_context(dsn: str, name: str | None = None) -> Context:
    context = uniwash.registry.register_context(
        name or new_uuid().hex, replace=True)
    context.set_setting('dsn', dsn)

    return context


def add_user(
    store: ReservationStore,
    first_name: str = 'Sara',
    last_name: str = 'Ahmadi',
    mobile: str = '09121111111'
) -> int:
    with store.transaction() as session:
        user = User(first_name=first_name, last_name=last_name, mobile=mobile)
        session.add(user)
        session.flush()
        return user.id


def add_post(
    store: ReservationStore,
    business_id: int = 1,
    status: str = 'published',
    taxonomies: tuple[tuple[str, str], ...] = ()
) -> int:
    with store.transaction() as session:
        post = Post(
            business_id=business_id,
            title='Laundry',
            status=status,
            taxonomies=[
                Taxonomy(type=type, title=title) for type, title in taxonomies
            ]
        )
        session.add(post)
        session.flush()
        return post.id


def set_machine_status(
    store: ReservationStore,
    device_id: int,
    status: str
) -> None:
    with store.transaction() as session:
        device = session.get(Device, device_id)
        assert device is not None
        device.machine_status = status


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(local(2025, 3, 14, 12, 0))


@pytest.fixture
def gateway() -> Mock:
    gateway = Mock()
    gateway.send.return_value = SendResult('ref-1', 'success')
    gateway.status.return_value = {
        'status': 'success',
        'data': {'OTPStatus': 'delivered'}
    }
    return gateway


@pytest.fixture
def context(
    dsn: str,
    clock: FrozenClock,
    gateway: Mock
) -> Generator[Context, None, None]:

    # clear the events before each test
    from uniwash.modules import events
    for event in (e for e in dir(events) if e.startswith('on_')):
        del getattr(events, event)[:]

    context = new_test_context(dsn)
    context.set_service('clock', lambda context: clock)
    context.set_service('sms_gateway', lambda context: gateway)

    yield context

    store = ReservationStore(context)
    store.rollback()

    for table in reversed(ORMBase.metadata.sorted_tables):
        store.session.execute(table.delete())

    store.commit()
    store.close()
    store.session_provider.stop_service()


@pytest.fixture
def store(context: Context) -> ReservationStore:
    return ReservationStore(context)


@pytest.fixture
def devices(context: Context) -> Devices:
    return Devices(context)


@pytest.fixture
def dispatcher(context: Context) -> CommandDispatcher:
    return CommandDispatcher(context)


@pytest.fixture
def reminders(context: Context) -> ReminderScheduler:
    return ReminderScheduler(context)


@pytest.fixture
def user(store: ReservationStore) -> int:
    return add_user(store)


@pytest.fixture
def post(store: ReservationStore) -> int:
    return add_post(store, taxonomies=(
        ('city', 'Tehran'),
        ('dormitory', 'Dormitory 3'),
    ))


@pytest.fixture
def device(devices: Devices, post: int) -> int:
    return devices.add(
        business_id=1,
        mobile_number='09120000000',
        sku='WM-1',
        post_id=post
    )


@pytest.fixture(scope='session')
def dsn(
    tmp_path_factory: pytest.TempPathFactory
) -> Generator[str, None, None]:

    postgres = None

    if os.environ.get('UNIWASH_TEST_DSN'):
        dsn = os.environ['UNIWASH_TEST_DSN']
    else:
        try:
            postgres = Postgresql()
        except RuntimeError:
            # no PostgreSQL binaries around
            path = tmp_path_factory.mktemp('uniwash') / 'uniwash.db'
            dsn = f'sqlite:///{path}'
        else:
            dsn = postgres.url()

    store = ReservationStore(new_test_context(dsn))
    store.setup_database()
    store.commit()

    yield dsn

    store.close()
    store.session_provider.stop_service()

    if postgres is not None:
        postgres.stop()
