#!/usr/bin/env python3
"""
Utilization store shared between the traffic collectors and the display loop.
Counters accumulate bytes per process, per connection and per remote address
until the display loop renders a frame and resets them.
"""

import logging
import threading
from collections import namedtuple
from contextlib import contextmanager

log = logging.getLogger(__name__)


class StoreLockError(RuntimeError):
    """Raised when the utilization store could not be locked in time"""


class Address(namedtuple('Address', ['ip', 'port'])):
    __slots__ = ()

    def __str__(self):
        if ':' in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


class Connection(namedtuple('Connection', ['local_address', 'remote_address', 'protocol'])):
    """A socket as seen from this host, labelled by its remote end"""
    __slots__ = ()

    def __str__(self):
        return str(self.remote_address)


# One entry of the current connection list: the socket and its owners
ConnectionInfo = namedtuple('ConnectionInfo', ['connection', 'processes'])


class Counters:
    """Byte totals since the last reset"""

    __slots__ = ('total_bytes_uploaded', 'total_bytes_downloaded', 'connection_count')

    def __init__(self, total_bytes_uploaded=0, total_bytes_downloaded=0, connection_count=0):
        self.total_bytes_uploaded = total_bytes_uploaded
        self.total_bytes_downloaded = total_bytes_downloaded
        self.connection_count = connection_count

    def reset(self):
        self.total_bytes_uploaded = 0
        self.total_bytes_downloaded = 0
        self.connection_count = 0

    def copy(self):
        return Counters(self.total_bytes_uploaded, self.total_bytes_downloaded, self.connection_count)

    def __eq__(self, other):
        if not isinstance(other, Counters):
            return NotImplemented
        return (self.total_bytes_uploaded, self.total_bytes_downloaded, self.connection_count) == \
            (other.total_bytes_uploaded, other.total_bytes_downloaded, other.connection_count)

    def __repr__(self):
        return (f"Counters(up={self.total_bytes_uploaded}, down={self.total_bytes_downloaded}, "
                f"count={self.connection_count})")


class UtilizationStore:
    def __init__(self):
        self.processes = {}
        self.connections = {}
        self.remote_addresses = {}
        # connections already counted towards a process / remote address this interval
        self._seen = set()
        self._lock = threading.Lock()

    @contextmanager
    def locked(self, timeout=-1):
        """Hold the store lock for the duration of the block"""
        if not self._lock.acquire(timeout=timeout):
            log.warning("utilization store still locked after %.2fs", timeout)
            raise StoreLockError(f"could not lock utilization store within {timeout}s")
        try:
            yield self
        finally:
            self._lock.release()

    def record(self, connection, process_name=None, uploaded=0, downloaded=0):
        """Account traffic seen on a connection (called by collectors)"""
        remote_ip = connection.remote_address.ip
        with self.locked():
            conn_counters = self.connections.setdefault(connection, Counters())
            conn_counters.total_bytes_uploaded += uploaded
            conn_counters.total_bytes_downloaded += downloaded

            targets = [(self.remote_addresses, remote_ip)]
            if process_name:
                targets.append((self.processes, process_name))
            for table, key in targets:
                counters = table.setdefault(key, Counters())
                counters.total_bytes_uploaded += uploaded
                counters.total_bytes_downloaded += downloaded
                if (key, connection) not in self._seen:
                    self._seen.add((key, connection))
                    counters.connection_count += 1

    def reset(self):
        """Zero every counter in place, keeping all keys"""
        for table in (self.processes, self.connections, self.remote_addresses):
            for counters in table.values():
                counters.reset()
        self._seen.clear()
