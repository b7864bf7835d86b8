from __future__ import annotations

import enum
import uniwash
import threading
from contextlib import contextmanager
from functools import cached_property

from uniwash.modules import errors


from typing import Any
from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from collections.abc import Iterator
    from datetime import datetime
    from sqlalchemy.orm import Session
    from typing_extensions import TypeAlias

    from uniwash.context.registry import Registry
    from uniwash.context.session import SessionProvider
    from uniwash.modules.gateway import Gateway
    from uniwash.modules.slots import SlotCatalog


class _Marker(enum.Enum):
    missing = enum.auto()
    required = enum.auto()


missing_t: TypeAlias = Literal[_Marker.missing]  # noqa: PYI042
required_t: TypeAlias = Literal[_Marker.required]  # noqa: PYI042
missing: missing_t = _Marker.missing
required: required_t = _Marker.required


class StoppableService:
    """ Services inheriting from this class have their stop_service method
    called when the service is discarded.

    Note that this only happens when a service is replaced with a new one
    and not when the process is stopped (i.e. this is *not* a deconstructor).

    """

    def stop_service(self) -> None:
        pass


class ContextServicesMixin:
    """ Provides access methods to the context's services. Expects
    the class that uses the mixin to provide self.context.

    The results are cached for performance.

    """

    context: Context

    @cached_property
    def utcnow(self) -> Callable[[], datetime]:
        return self.context.get_service('clock')  # type: ignore[no-any-return]

    @cached_property
    def slot_catalog(self) -> SlotCatalog:
        return self.context.get_service('slot_catalog')  # type: ignore[no-any-return]

    @cached_property
    def timezone(self) -> str:
        return self.context.get_setting('timezone')  # type: ignore[no-any-return]

    def clear_cache(self) -> None:
        """ Clears the cache of the mixin. """

        for name in ('utcnow', 'slot_catalog', 'timezone'):
            try:
                delattr(self, name)
            except AttributeError:
                pass

    @property
    def is_production(self) -> bool:
        return bool(self.context.get_setting('production'))

    @property
    def gateway(self) -> Gateway:
        return self.context.get_service('sms_gateway')  # type: ignore[no-any-return]

    @property
    def session_provider(self) -> SessionProvider:
        return self.context.get_service('session_provider')  # type: ignore[no-any-return]

    @property
    def session(self) -> Session:
        """ Returns the current session. """
        return self.session_provider.session()  # type: ignore[no-any-return]

    def close(self) -> None:
        """ Closes the current session. """
        self.session.close()

    def release_session(self) -> None:
        """ Discards the session bound to the current thread. Worker threads
        call this once they are done so the connection returns to the pool.

        """
        self.session_provider.session.remove()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @contextmanager
    def transaction(
        self,
        conflict: type[errors.UniWashError] | None = None
    ) -> Iterator[Session]:
        """ Runs the block as one unit of work which is committed at the end.
        Reads go through here as well, so no snapshot (or SQLite lock) is
        held once an operation returns.

        Database errors are rolled back and translated, see
        :func:`uniwash.modules.errors.translate`. If a conflict error is
        given, serialization failures and unique violations raise it.

        """
        session = self.session

        try:
            yield session
            session.commit()
        except errors.DBAPIError as e:
            session.rollback()
            raise errors.translate(e, conflict) from e
        except Exception:
            session.rollback()
            raise


class Context:
    """ Used throughout uniwash, the context holds settings like the database
    connection string and services like the SMS gateway that should be used.

    Contexts allow applications to override these settings / services as
    they wish. It also makes sure that multiple applications can co-exist
    in a single process, as each application must operate on its own
    context.

    uniwash holds all contexts in uniwash.registry and provides a
    master_context. When an application registers its own context, all
    lookups happen on the custom context. If that context can provide a
    service or a setting, it is used.

    If the custom context can't provide a service or a setting, the
    master_context is used instead. In other words, the custom context
    inherits from the master context.

    A context may be registered as follows::

        from uniwash import registry
        my_context = registry.register_context('my_app')
        my_context.set_setting('dsn', 'postgresql+psycopg2://...')

    See also :class:`~uniwash.context.registry.Registry`

    """

    def __init__(
        self,
        name: str,
        registry: Registry | None = None,
        parent: Context | None = None,
        locked: bool = False
    ):
        self.name = name
        self.registry = registry or uniwash.registry
        self.values: dict[str, Any] = {}
        self.parent = parent
        self.locked = False
        self.thread_lock = threading.RLock()

    def __repr__(self) -> str:
        return f"<UniWash Context(name='{self.name}')>"

    @contextmanager
    def as_current_context(self) -> Iterator[None]:
        with self.registry.context(self.name):
            yield

    def switch_to(self) -> None:
        self.registry.switch_context(self.name)

    def lock(self) -> None:
        with self.thread_lock:
            self.locked = True

    def unlock(self) -> None:
        with self.thread_lock:
            self.locked = False

    def get(self, key: str) -> Any | missing_t:
        if key in self.values:
            return self.values[key]
        elif self.parent:
            return self.parent.get(key)
        else:
            return missing

    def set(self, key: str, value: Any) -> None:
        if self.locked:
            raise errors.ContextIsLocked

        with self.thread_lock:

            # Stoppable services are stopped before they are replaced so
            # they can release connections without waiting for the GC.
            if isinstance(self.values.get(key), StoppableService):
                self.values[key].stop_service()

            self.values[key] = value

    def get_setting(self, name: str) -> Any:
        value = self.get(f'settings.{name}')
        return None if value is missing else value

    def set_setting(self, name: str, value: Any) -> None:
        with self.thread_lock:
            self.set(f'settings.{name}', value)

    def update_settings(self, settings: dict[str, Any]) -> None:
        """ Sets multiple settings at once. Keys may carry the ``settings.``
        prefix or not.

        """
        with self.thread_lock:
            for key, value in settings.items():
                self.set_setting(key.removeprefix('settings.'), value)

    def get_service(self, name: str) -> Any:
        service_id = f'service/{name}'
        service = self.get(service_id)

        if service is missing:
            raise errors.UnknownService(service_id)

        cache_id = f'service/{name}/cache'
        cache = self.get(cache_id)

        # no cache
        if cache is missing:
            return service(self)
        else:
            # first call, cache it!
            if cache is required:
                self.set(cache_id, service(self))

            # nth call, use cached value
            return self.get(cache_id)

    def set_service(
        self,
        name: str,
        factory: Callable[..., Any],
        cache: bool = False
    ) -> None:
        with self.thread_lock:
            service_id = f'service/{name}'
            self.set(service_id, factory)

            if cache:
                cache_id = f'service/{name}/cache'
                self.set(cache_id, required)
