#!/usr/bin/env python3
"""Default source of the current connection list, read with psutil"""

import logging
import socket

import psutil

from netusage_store import Address, Connection, ConnectionInfo

log = logging.getLogger(__name__)


def _protocol_name(conn):
    if conn.type == socket.SOCK_DGRAM:
        return 'udp'
    return 'tcp'


def to_connection(conn):
    """Build a Connection from a psutil connection, None if it has no peer"""
    if not conn.raddr or not conn.laddr:
        return None
    return Connection(
        Address(conn.laddr.ip, conn.laddr.port),
        Address(conn.raddr.ip, conn.raddr.port),
        _protocol_name(conn),
    )


def get_current_connections(kind='inet'):
    """Get all connections that have a remote end, with their owning processes"""
    owners = {}
    for proc in psutil.process_iter(['pid', 'name']):
        try:
            conns = proc.net_connections(kind=kind)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        for conn in conns:
            connection = to_connection(conn)
            if connection is None:
                continue
            name = proc.info['name'] or str(proc.info['pid'])
            names = owners.setdefault(connection, [])
            if name not in names:
                names.append(name)

    log.debug("discovered %d connections", len(owners))
    return [ConnectionInfo(connection, tuple(names)) for connection, names in owners.items()]
