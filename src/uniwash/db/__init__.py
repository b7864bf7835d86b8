from __future__ import annotations

from uniwash.db.devices import Devices
from uniwash.db.queries import Page, Queries, ReservationFilter
from uniwash.db.store import ReservationStore


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from uniwash.context.core import Context


def new_store(
    context: Context | str | None = None,
    settings: dict[str, Any] | None = None
) -> ReservationStore:
    """ Returns a reservation store operating on the given context (see
    :meth:`uniwash.context.registry.Registry.resolve`).

    """
    from uniwash import registry
    return ReservationStore(registry.resolve(context, settings))


def new_devices(
    context: Context | str | None = None,
    settings: dict[str, Any] | None = None
) -> Devices:
    from uniwash import registry
    return Devices(registry.resolve(context, settings))


__all__ = (
    'Devices',
    'Page',
    'Queries',
    'ReservationFilter',
    'ReservationStore',
    'new_devices',
    'new_store',
)
