import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Union

from cc_switch.services.app_types import AppType, list_app_types, parse_app_type
from cc_switch.services.provider_store import ProviderStore


class ReadWriteLock:
    """
    Many readers or one writer. Waiting writers block new readers so a stream
    of reads cannot starve a switch. Not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class SharedContext:
    """The process-wide provider store plus one lock per application."""

    def __init__(self, store: Optional[ProviderStore] = None):
        self.store = store if store is not None else ProviderStore()
        self._locks: Dict[AppType, ReadWriteLock] = {app: ReadWriteLock() for app in list_app_types()}

    def lock_for(self, app: Union[AppType, str]) -> ReadWriteLock:
        return self._locks[parse_app_type(app)]

    def read_lock(self, app: Union[AppType, str]):
        return self.lock_for(app).read()

    def write_lock(self, app: Union[AppType, str]):
        return self.lock_for(app).write()
