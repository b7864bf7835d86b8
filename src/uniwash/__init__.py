from __future__ import annotations

from uniwash.context.registry import create_default_registry
from uniwash.db import new_devices, new_store

registry = create_default_registry()


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from uniwash.context.core import Context
    from uniwash.dispatcher import CommandDispatcher
    from uniwash.reminders import ReminderScheduler


def new_dispatcher(
    context: Context | str | None = None,
    settings: dict[str, Any] | None = None
) -> CommandDispatcher:
    from uniwash.dispatcher import CommandDispatcher
    return CommandDispatcher(registry.resolve(context, settings))


def new_reminder_scheduler(
    context: Context | str | None = None,
    settings: dict[str, Any] | None = None
) -> ReminderScheduler:
    from uniwash.reminders import ReminderScheduler
    return ReminderScheduler(registry.resolve(context, settings))


__version__ = '1.0.0'
__all__ = (
    'new_devices',
    'new_dispatcher',
    'new_reminder_scheduler',
    'new_store',
    'registry'
)
