""" Reminds users to turn their machine on and to turn it off again.

Two jobs run independently of each other:

* The turn-on job looks for confirmed reservations starting in one to two
  hours on devices which are not offline and listed on a published post.

* The turn-off job looks for confirmed reservations ending within the next
  twenty minutes (or up to an hour before that, in case a run was missed)
  whose machine was actually started.

Each reservation is reminded once, a flag on the reservation is set after
the message went out. Outside of production nothing is sent.

"""
from __future__ import annotations

import logging
import re

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import contextmanager

from uniwash.context.core import ContextServicesMixin
from uniwash.db.store import ReservationStore
from uniwash.modules import events
from uniwash.modules.gateway import USER_PROVIDER, Message


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from apscheduler.schedulers.base import BaseScheduler
    from apscheduler.triggers.base import BaseTrigger
    from collections.abc import Iterator
    from sedate.types import TzInfoOrName

    from uniwash.context.core import Context
    from uniwash.db.store import ReminderKind


log = logging.getLogger('uniwash')


TEMPLATES: dict[ReminderKind, int] = {
    'turn_on': 16620,
    'turn_off': 16621,
}

EVERY = re.compile(r'^@every\s+(\d+)\s*([smh])$')
UNITS = {'s': 'seconds', 'm': 'minutes', 'h': 'hours'}


def parse_trigger(
    spec: str,
    timezone: TzInfoOrName | None = None
) -> BaseTrigger:
    """ Turns a schedule into an APScheduler trigger. Supported are
    intervals (``@every 10s``, ``@every 1m``, ``@every 2h``) and crontab
    lines (``*/5 * * * *``).

    """
    match = EVERY.match(spec.strip())

    if match:
        amount = int(match.group(1))

        if amount < 1:
            raise ValueError(f'Invalid interval: {spec}')

        return IntervalTrigger(**{UNITS[match.group(2)]: amount})

    return CronTrigger.from_crontab(spec, timezone=timezone)


class ReminderScheduler(ContextServicesMixin):
    """ Runs the reminder jobs in the background::

        reminders = ReminderScheduler(context)

        with reminders.running():
            serve_forever()

    The jobs may also be run directly, see :meth:`send_turn_on_reminders`
    and :meth:`send_turn_off_reminders`.

    """

    def __init__(
        self,
        context: Context,
        scheduler: BaseScheduler | None = None
    ):
        self.context = context
        self.store = ReservationStore(context)
        self.scheduler = scheduler or BackgroundScheduler(
            timezone=self.timezone)

    def add_jobs(self) -> None:
        for kind, job in (
            ('turn_on', self.send_turn_on_reminders),
            ('turn_off', self.send_turn_off_reminders),
        ):
            spec = self.context.get_setting(f'scheduler.{kind}_spec')
            self.scheduler.add_job(
                job,
                trigger=parse_trigger(spec, self.timezone),
                id=f'uniwash-{kind}-reminders',
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )

    def start(self) -> None:
        self.add_jobs()
        self.scheduler.start()
        log.info('reminder jobs started')

    def shutdown(self) -> None:
        """ Stops the jobs, waiting for a running job to finish. """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            log.info('reminder jobs stopped')

    @contextmanager
    def running(self) -> Iterator[ReminderScheduler]:
        self.start()
        try:
            yield self
        finally:
            self.shutdown()

    def send_turn_on_reminders(self) -> int:
        """ Sends the due turn-on reminders, returning how many were sent. """
        return self.send_reminders('turn_on')

    def send_turn_off_reminders(self) -> int:
        """ Sends the due turn-off reminders, returning how many were sent. """
        return self.send_reminders('turn_off')

    def send_reminders(self, kind: ReminderKind) -> int:
        try:
            if kind == 'turn_on':
                due = self.store.due_for_turn_on(self.utcnow())
            else:
                due = self.store.due_for_turn_off(self.utcnow())

            log.debug('%d reservations due for a %s reminder', len(due), kind)

            sent = 0
            for reservation_id in due:
                try:
                    if self.remind(reservation_id, kind):
                        sent += 1
                except Exception:
                    log.exception(
                        'failed to send the %s reminder of reservation %s',
                        kind, reservation_id
                    )

            return sent
        finally:
            # the jobs run on the scheduler's worker threads
            self.release_session()

    def remind(self, reservation_id: int, kind: ReminderKind) -> bool:
        """ Sends the reminder of the given kind to the user of the given
        reservation and marks it as sent. Returns False if nothing was sent.

        """
        reservation = self.store.get(reservation_id)

        if not self.is_production:
            log.info(
                'not in production, skipping the %s reminder of '
                'reservation %s', kind, reservation_id
            )
            return False

        self.gateway.send(Message(
            template_id=TEMPLATES[kind],
            mobile=reservation.user.mobile,
            provider=USER_PROVIDER
        ))

        self.store.mark_reminder_sent(reservation_id, kind)
        events.on_reminder_sent(self.context, reservation, kind)

        log.info(
            'sent the %s reminder of reservation %s', kind, reservation_id)

        return True
