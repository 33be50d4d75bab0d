"""Reader/writer lock guarding wallet balances and the wallet list."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class ReadWriteLock:
    """
    Many concurrent readers or one writer.

    Writers are preferred: once a writer is waiting, new readers queue behind
    it so balance updates are not starved by GUI polling. The write side is
    re-entrant for the owning thread, and the owning writer may also take the
    read side. Reads nest too: a thread already holding the read side is not
    queued behind a waiting writer. Read-to-write upgrades are not supported.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._read_depths: Dict[int, int] = {}
        self._writers_waiting = 0
        self._writer: int | None = None
        self._write_depth = 0

    def acquire_read(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._write_depth += 1
                return
            if me not in self._read_depths:
                while self._writer is not None or self._writers_waiting:
                    self._cond.wait()
            self._readers += 1
            self._read_depths[me] = self._read_depths.get(me, 0) + 1

    def release_read(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._write_depth -= 1
                return
            if self._read_depths.get(me, 0) <= 0:
                raise RuntimeError("release_read called without a matching acquire_read")
            self._readers -= 1
            self._read_depths[me] -= 1
            if not self._read_depths[me]:
                del self._read_depths[me]
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._write_depth += 1
                return
            self._writers_waiting += 1
            try:
                while self._writer is not None or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = me
            self._write_depth = 1

    def release_write(self) -> None:
        with self._cond:
            if self._writer != threading.get_ident():
                raise RuntimeError("release_write called by a thread that does not hold the lock")
            self._write_depth -= 1
            if self._write_depth == 0:
                self._writer = None
                self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
