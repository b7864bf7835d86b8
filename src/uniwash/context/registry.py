from __future__ import annotations

import threading

from contextlib import contextmanager

from uniwash.modules import errors
from uniwash.context.core import Context


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from collections.abc import Iterator
    from datetime import datetime

    from uniwash.context.session import SessionProvider
    from uniwash.modules.gateway import Gateway
    from uniwash.modules.slots import SlotCatalog


def create_default_registry() -> Registry:
    """ Creates the default registry for uniwash. """

    import sedate

    from uniwash.context.session import SessionProvider
    from uniwash.context.settings import set_default_settings
    from uniwash.modules.gateway import new_gateway
    from uniwash.modules.slots import DEFAULT_CATALOG

    registry = Registry()

    def session_provider(context: Context) -> SessionProvider:
        return SessionProvider(
            context.get_setting('dsn'),
            timeout=context.get_setting('db_timeout')
        )

    def sms_gateway(context: Context) -> Gateway:
        return new_gateway(context)

    def slot_catalog(context: Context) -> SlotCatalog:
        return DEFAULT_CATALOG

    def clock(context: Context) -> Callable[[], datetime]:
        return sedate.utcnow

    master = registry.master_context
    assert master is not None
    master.set_service('session_provider', session_provider, cache=True)
    master.set_service('sms_gateway', sms_gateway, cache=True)
    master.set_service('slot_catalog', slot_catalog)
    master.set_service('clock', clock)

    set_default_settings(master)

    master.lock()

    return registry


class Registry:
    """ Holds a number of contexts, managing their creation and defining
    the currently active context.

    A global registry instance is found in uniwash::

        from uniwash import registry

    Though if global state is something you need to avoid, you can create
    your own version of the registry::

        from uniwash.context.registry import create_default_registry
        registry = create_default_registry()

    """

    contexts: dict[str, Context]
    master_context: Context | None = None

    def __init__(self) -> None:
        self.thread_lock = threading.RLock()

        with self.thread_lock:
            self.contexts = {}
            self.local = threading.local()

        self.master_context = self.register_context('master')

    @property
    def current_context(self) -> Context:
        if not hasattr(self.local, 'current_context'):
            self.local.current_context = self.master_context

        return self.local.current_context  # type: ignore[no-any-return]

    def is_existing_context(self, name: str) -> bool:
        return name in self.contexts

    def assert_not_locked(self, name: str) -> None:
        if self.get_context(name).locked:
            raise errors.ContextIsLocked

    def assert_exists(self, name: str) -> None:
        if not self.is_existing_context(name):
            raise errors.UnknownContext

    def assert_does_not_exist(self, name: str) -> None:
        if self.is_existing_context(name):
            raise errors.ContextAlreadyExists

    def register_context(self, name: str, replace: bool = False) -> Context:
        """ Registers a new context with the given name and returns it.

        """
        with self.thread_lock:
            if replace:
                if self.is_existing_context(name):
                    self.assert_not_locked(name)
            else:
                self.assert_does_not_exist(name)

            self.contexts[name] = Context(
                name,
                registry=self,
                parent=self.master_context,
                locked=False
            )

            return self.contexts[name]

    def resolve(
        self,
        context: Context | str | None = None,
        settings: dict[str, Any] | None = None
    ) -> Context:
        """ Returns the context the factories in :mod:`uniwash` operate on.

        :context:
            A context, the name of a context (created if it doesn't exist
            yet) or None for the current context.

        :settings:
            Settings applied to the resolved context, e.g.
            ``{'dsn': 'postgresql+psycopg2://...', 'production': True}``.

        """
        if context is None:
            context = self.current_context
        elif isinstance(context, str):
            context = self.get_context(context, autocreate=True)

        if settings:
            context.update_settings(settings)

        return context

    def switch_context(self, name: str) -> None:
        with self.thread_lock:
            self.assert_exists(name)
            self.local.current_context = self.get_context(name)

    @contextmanager
    def context(self, name: str) -> Iterator[Context]:
        previous = self.current_context.name
        self.switch_context(name)
        yield self.current_context
        self.switch_context(previous)

    def get_current_context(self) -> Context:
        return self.current_context

    def get_context(self, name: str, autocreate: bool = False) -> Context:
        if not autocreate:
            self.assert_exists(name)
        elif not self.is_existing_context(name):
            self.register_context(name)

        return self.contexts[name]
