from __future__ import annotations

import logging
import sedate

from datetime import timedelta
from sqlalchemy import func
from sqlalchemy import select
from sqlalchemy.orm import joinedload
from sqlalchemy.sql import and_, or_

from uniwash.context.core import ContextServicesMixin
from uniwash.db.models import Device, Post, Reservation, Taxonomy, User
from uniwash.db.models import post_taxonomies
from uniwash.modules import utils


from typing import Any
from typing import NamedTuple
from typing import TypeVar
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Collection
    from collections.abc import Iterable
    from datetime import date, datetime
    from sqlalchemy.orm import Query

    from uniwash.context.core import Context
    from uniwash.db.models.post import TaxonomyType
    from uniwash.db.models.reservation import Status

_T = TypeVar('_T')


log = logging.getLogger('uniwash')


class ReservationFilter(NamedTuple):
    """ The criteria of a reservation listing. Criteria left at their
    default are not applied.

    :mobile:
        Matches reservations whose user's mobile contains the given text.

    :full_name:
        Matches reservations whose user's first and last name, separated
        by a space, contain the given text.

    :start:
        Lower bound of the start of the reservations (inclusive).

    :end:
        Upper bound of the end of the reservations (inclusive).

    :date:
        Matches reservations starting on this day in the timezone of the
        context.

    :include_tentative:
        Tentative reservations (holds) are hidden, unless this is set. In
        that case holds which have not yet expired are listed as well.

    :with_usage_count:
        Counts the reservations of each user found in the listing.

    :page:
        The page to return, starting at 1. If None, all reservations are
        returned in one go.

    """

    business_id: int | None = None
    user_id: int | None = None
    device_id: int | None = None
    status: Status | None = None
    mobile: str | None = None
    full_name: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    date: date | str | None = None
    post_ids: Collection[int] = ()
    city_ids: Collection[int] = ()
    workspace_ids: Collection[int] = ()
    dormitory_ids: Collection[int] = ()
    turn_on_reminder_sent: bool | None = None
    turn_off_reminder_sent: bool | None = None
    include_tentative: bool = False
    with_usage_count: bool = False
    page: int | None = None
    page_size: int = 20


class Page(NamedTuple):
    items: list[Reservation]
    total: int | None
    page: int | None
    page_size: int
    usage_counts: dict[int, int]

    def usage_count(self, reservation: Reservation) -> int:
        return self.usage_counts.get(reservation.user_id, 0)


class Queries(ContextServicesMixin):
    """ Contains the queries of the reservation store. Helpers not in need
    of the context are marked as staticmethods.

    """

    def __init__(self, context: Context):
        self.context = context

    @staticmethod
    def live(query: Query[_T], now: datetime) -> Query[_T]:
        """ Limits the given reservation query to the reservations that
        block their slot at the given instant.

        """
        return query.filter(
            Reservation.deleted_at.is_(None),
            or_(
                Reservation.state == 'confirmed',
                and_(
                    Reservation.state == 'tentative',
                    Reservation.expires_at > now
                )
            )
        )

    @staticmethod
    def visible(
        query: Query[_T],
        now: datetime,
        include_tentative: bool = False
    ) -> Query[_T]:
        """ Limits the given reservation query to the reservations shown in
        listings. Deleted reservations and holds are hidden, unexpired holds
        may be included.

        """
        query = query.filter(Reservation.deleted_at.is_(None))

        if include_tentative:
            return query.filter(or_(
                Reservation.state != 'tentative',
                Reservation.expires_at > now
            ))

        return query.filter(Reservation.state != 'tentative')

    @staticmethod
    def with_status(query: Query[_T], status: Status) -> Query[_T]:
        if status == 'canceled':
            return query.filter(Reservation.state == 'canceled')

        return query.filter(Reservation.state != 'canceled')

    @staticmethod
    def posts_with_taxonomies(
        type: TaxonomyType,
        ids: Iterable[int]
    ) -> Any:
        """ Returns a subquery selecting the ids of the posts found at any of
        the given taxonomies of the given type.

        """
        return (
            select(post_taxonomies.c.post_id)
            .join(Taxonomy, Taxonomy.id == post_taxonomies.c.taxonomy_id)
            .where(Taxonomy.type == type)
            .where(Taxonomy.id.in_(tuple(ids)))
        )

    def conflicting(
        self,
        device_id: int,
        start: datetime,
        end: datetime,
        now: datetime
    ) -> Query[Reservation]:
        """ Returns the live reservations of the given device and slot. As
        slots never overlap, an exact match is all there is to check.

        """
        query = self.session.query(Reservation)
        query = query.filter(Reservation.device_id == device_id)
        query = query.filter(Reservation.start == start)
        query = query.filter(Reservation.end == end)

        return self.live(query, now)

    def filtered(
        self,
        filter: ReservationFilter,
        now: datetime
    ) -> Query[Reservation]:
        """ Returns the reservations matching the given filter, the latest
        first.

        """
        query = self.session.query(Reservation)
        query = self.visible(query, now, filter.include_tentative)

        if filter.business_id is not None:
            query = query.filter(Reservation.business_id == filter.business_id)

        if filter.user_id is not None:
            query = query.filter(Reservation.user_id == filter.user_id)

        if filter.device_id is not None:
            query = query.filter(Reservation.device_id == filter.device_id)

        if filter.status is not None:
            query = self.with_status(query, filter.status)

        if filter.mobile or filter.full_name:
            query = query.join(User, Reservation.user_id == User.id)

            if filter.mobile:
                query = query.filter(
                    User.mobile.contains(filter.mobile, autoescape=True))

            if filter.full_name:
                full_name = User.first_name + ' ' + User.last_name
                query = query.filter(
                    full_name.contains(filter.full_name, autoescape=True))

        locations: tuple[tuple[TaxonomyType, Collection[int]], ...] = (
            ('city', filter.city_ids),
            ('workspace', filter.workspace_ids),
            ('dormitory', filter.dormitory_ids),
        )

        if filter.post_ids or any(ids for _, ids in locations):
            query = query.join(Device, Reservation.device_id == Device.id)

            if filter.post_ids:
                query = query.filter(
                    Device.post_id.in_(tuple(filter.post_ids)))

            for type, ids in locations:
                if ids:
                    query = query.filter(Device.post_id.in_(
                        self.posts_with_taxonomies(type, ids)))

        if filter.start is not None:
            start = sedate.standardize_date(filter.start, self.timezone)
            query = query.filter(Reservation.start >= start)

        if filter.end is not None:
            end = sedate.standardize_date(filter.end, self.timezone)
            query = query.filter(Reservation.end <= end)

        if filter.date is not None:
            day_start, day_end = utils.local_day(
                utils.as_date(filter.date), self.timezone)
            query = query.filter(Reservation.start >= day_start)
            query = query.filter(Reservation.start < day_end)

        if filter.turn_on_reminder_sent is not None:
            query = query.filter(
                Reservation.turn_on_reminder_sent
                == filter.turn_on_reminder_sent
            )

        if filter.turn_off_reminder_sent is not None:
            query = query.filter(
                Reservation.turn_off_reminder_sent
                == filter.turn_off_reminder_sent
            )

        return query.order_by(Reservation.start.desc(), Reservation.id.desc())

    def page(self, filter: ReservationFilter, now: datetime) -> Page:
        query = self.filtered(filter, now)

        total = None
        if filter.page is not None:
            page = max(filter.page, 1)
            total = query.order_by(None).count()
            query = query.offset((page - 1) * filter.page_size)
            query = query.limit(filter.page_size)

        query = query.options(
            joinedload(Reservation.device),
            joinedload(Reservation.user)
        )

        items = query.all()

        usage_counts: dict[int, int] = {}
        if filter.with_usage_count and items:
            usage_counts = self.usage_counts(
                {r.user_id for r in items},
                business_id=filter.business_id
            )

        return Page(items, total, filter.page, filter.page_size, usage_counts)

    def usage_counts(
        self,
        user_ids: Collection[int],
        business_id: int | None = None
    ) -> dict[int, int]:
        """ Counts the confirmed reservations of the given users, optionally
        limited to the given business.

        """
        query = self.session.query(Reservation.user_id, func.count())
        query = query.filter(Reservation.user_id.in_(tuple(user_ids)))
        query = query.filter(Reservation.state == 'confirmed')
        query = query.filter(Reservation.deleted_at.is_(None))

        if business_id is not None:
            query = query.filter(Reservation.business_id == business_id)

        query = query.group_by(Reservation.user_id)

        return {user_id: count for user_id, count in query}

    def reminder_candidates(self) -> Query[Reservation]:
        """ Confirmed reservations of devices that can be operated, that is
        devices which are neither offline nor deleted.

        """
        query = self.session.query(Reservation)
        query = query.join(Device, Reservation.device_id == Device.id)
        query = query.filter(Reservation.state == 'confirmed')
        query = query.filter(Reservation.deleted_at.is_(None))
        query = query.filter(Device.deleted_at.is_(None))
        query = query.filter(Device.machine_status != 'Offline')

        return query

    def due_for_turn_on(
        self,
        now: datetime,
        limit: int | None = None
    ) -> list[Reservation]:
        """ Reservations starting in one to two hours, which have not been
        reminded yet and whose device is listed on a published post.

        """
        now = utils.truncate_to_minute(now)

        query = self.reminder_candidates()
        query = query.join(Post, Device.post_id == Post.id)
        query = query.filter(Post.status == 'published')
        query = query.filter(Reservation.turn_on_reminder_sent.is_(False))
        query = query.filter(Reservation.start >= now + timedelta(hours=1))
        query = query.filter(Reservation.start <= now + timedelta(hours=2))
        query = query.order_by(Reservation.start, Reservation.id)

        if limit is not None:
            query = query.limit(limit)

        return query.all()

    def due_for_turn_off(
        self,
        now: datetime,
        limit: int | None = None
    ) -> list[Reservation]:
        """ Reservations ending in twenty minutes (or up to an hour before
        that) whose machine was actually started and which have not been
        reminded yet.

        """
        now = utils.truncate_to_minute(now)
        upper = now + timedelta(minutes=20)
        lower = upper - timedelta(hours=1)

        query = self.reminder_candidates()
        query = query.filter(Reservation.last_command_sms_ref.isnot(None))
        query = query.filter(Reservation.last_command_sms_ref != '')
        query = query.filter(Reservation.turn_off_reminder_sent.is_(False))
        query = query.filter(Reservation.end >= lower)
        query = query.filter(Reservation.end <= upper)
        query = query.order_by(Reservation.end, Reservation.id)

        if limit is not None:
            query = query.limit(limit)

        return query.all()
