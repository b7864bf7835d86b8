from __future__ import annotations

from psycopg2 import errorcodes
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.exc import OperationalError


__all__ = ('DBAPIError', 'translate')


class UniWashError(Exception):
    """ Base class of all uniwash errors.

    Errors raised by the core operations carry the http status code and the
    message the web layer should show to the user.

    """

    status_code = 500
    message = 'خطای داخلی'

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ContextAlreadyExists(UniWashError):
    pass


class UnknownContext(UniWashError):
    pass


class ContextIsLocked(UniWashError):
    pass


class UnknownService(UniWashError):
    pass


class MissingSetting(UniWashError):
    pass


class SlotInvalid(UniWashError):
    status_code = 400
    message = 'invalid reservation'


class SlotTaken(UniWashError):
    status_code = 400
    message = 'این ساعت دستگاه رزرو شده است'


class HoldExpired(UniWashError):
    status_code = 400
    message = 'مهلت پرداخت رزرو به پایان رسیده است، دوباره رزرو کنید'


class ReservationCanceled(UniWashError):
    status_code = 400
    message = 'این رزرو لغو شده است'


class ReservationNotFound(UniWashError):
    status_code = 404
    message = 'رزرو پیدا نشد'


class DeviceNotFound(UniWashError):
    status_code = 404
    message = 'دستگاه پیدا نشد'


class NotReserved(UniWashError):
    status_code = 400
    message = 'شما این دستگاه را رزرو نکرده اید'


class NotAuthorized(UniWashError):
    status_code = 403
    message = 'شما به این کسب و کار دسترسی ندارید'


class OutOfWindow(UniWashError):
    status_code = 400
    message = 'در بازه زمانی که رزرو کرده اید، دوباره تلاش کنید'


class AlreadyOn(UniWashError):
    status_code = 400
    message = 'device already on'


class DeviceUnavailable(UniWashError):
    status_code = 400
    message = 'device not available'


class UnknownCommand(UniWashError):
    status_code = 400
    message = 'دستور نامعتبر است'


class GatewayError(UniWashError):
    status_code = 502
    message = 'ارسال دستور با خطا مواجه شد، دوباره امتحان کنید.'


class Timeout(UniWashError):
    status_code = 504
    message = 'زمان پاسخگویی به پایان رسید، دوباره امتحان کنید.'


class Conflict(UniWashError):
    status_code = 409
    message = 'تداخل در ثبت اطلاعات، دوباره امتحان کنید.'


class Internal(UniWashError):
    pass


_conflicts = frozenset((
    errorcodes.SERIALIZATION_FAILURE,
    errorcodes.DEADLOCK_DETECTED,
    errorcodes.UNIQUE_VIOLATION,
))


def is_unique_failure(error: DBAPIError) -> bool:
    """ SQLite reports unique violations without an error code. """
    return (
        isinstance(error, IntegrityError)
        and 'UNIQUE constraint failed' in str(error.orig)
    )


def translate(
    error: DBAPIError,
    conflict: type[UniWashError] | None = None
) -> UniWashError:
    """ Turns a database error into the matching uniwash error.

    Serialization failures, deadlocks and unique violations mean that a
    concurrent transaction won, they become the given conflict error if
    there is one. Other integrity errors (a missing user for example) are
    internal errors.

    Cancelled statements and locked (SQLite) databases become timeouts.

    """
    code = getattr(error.orig, 'pgcode', None)

    if conflict is not None:
        if code in _conflicts or is_unique_failure(error):
            return conflict()

    if code == errorcodes.QUERY_CANCELED:
        return Timeout()

    if isinstance(error, OperationalError) and 'locked' in str(error.orig):
        return Timeout()

    return Internal()
