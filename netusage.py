#!/usr/bin/env python3
"""
Network Utilization Dashboard
Shows bandwidth used since the last refresh, broken down by connection,
by process name and by remote address, then resets the counters so every
frame only reflects newly observed traffic.

Byte totals come from whatever collector calls UtilizationStore.record();
the command line tool only lists connections, so without a collector every
byte and count cell shows zero.
"""

import argparse
import curses
import logging
import os
import sys
import time

from netusage_store import Counters, StoreLockError, UtilizationStore
from netusage_term import HORIZONTAL, VERTICAL, Terminal, TerminalError, split
import netusage_collector

VERSION = "0.1.0"

log = logging.getLogger(__name__)


def format_bandwidth(bytes_per_second):
    """Format a byte rate using decimal units"""
    if bytes_per_second > 999999999:
        return f"{bytes_per_second / 1000000000:.2f}GBps"
    elif bytes_per_second > 999999:
        return f"{bytes_per_second / 1000000:.2f}MBps"
    elif bytes_per_second > 999:
        return f"{bytes_per_second / 1000:.2f}KBps"
    else:
        if isinstance(bytes_per_second, float) and bytes_per_second.is_integer():
            bytes_per_second = int(bytes_per_second)
        return f"{bytes_per_second}Bps"


def format_row_data(first_cell, second_cell, bandwidth):
    """Build a table row ending in the upload/download totals"""
    return [
        first_cell,
        second_cell,
        "{}/{}".format(
            format_bandwidth(bandwidth.total_bytes_uploaded),
            format_bandwidth(bandwidth.total_bytes_downloaded),
        ),
    ]


class Table:
    """Bordered, titled table of string rows"""

    column_spacing = 1

    def __init__(self, title, column_names, rows, widths):
        assert len(column_names) == 3, "tables have exactly three columns"
        assert len(widths) == 3, "one width percentage per column"
        assert sum(widths) <= 100, "column widths exceed 100%"
        self.title = title
        self.column_names = tuple(column_names)
        self.rows = tuple(rows)
        self.widths = tuple(widths)

    def column_widths(self, inner_width):
        """Cells per column for the space inside the border"""
        return [inner_width * percentage // 100 for percentage in self.widths]

    def _draw_row(self, frame, y, x, cells, column_widths, style):
        assert len(cells) == 3, f"row has {len(cells)} cells: {cells!r}"
        cx = x
        for cell, width in zip(cells, column_widths):
            frame.draw_text(y, cx, cell, width, style)
            cx += width + self.column_spacing

    def render(self, frame, rect):
        """Paint the table into a region, dropping rows that do not fit"""
        if rect.width < 2 or rect.height < 2:
            return
        frame.draw_box(rect, self.title)

        x = rect.x + 1
        top = rect.y + 1
        bottom = rect.y + rect.height - 1
        column_widths = self.column_widths(rect.width - 2)

        if top >= bottom:
            return
        self._draw_row(frame, top, x, self.column_names, column_widths, 'header')
        for y, row in zip(range(top + 1, bottom), self.rows):
            self._draw_row(frame, y, x, row, column_widths, 'body')


def create_table(title, column_names, rows, widths):
    """Build a three column table"""
    return Table(title, column_names, rows, widths)


class ProcessData(Counters):
    __slots__ = ()


class RemoteAddressData(Counters):
    __slots__ = ()


class ConnectionData(Counters):
    __slots__ = ('processes',)

    def __init__(self, counters, processes):
        super().__init__(counters.total_bytes_uploaded, counters.total_bytes_downloaded,
                         counters.connection_count)
        self.processes = processes


def _copy_counters(cls, counters):
    if counters is None:
        return cls()
    return cls(counters.total_bytes_uploaded, counters.total_bytes_downloaded,
               counters.connection_count)


class UIState:
    """Read-only view of the utilization store for one frame.

    Must be built while the store is locked. Every key listed in
    ``process_names``, ``connections`` and ``remote_ips`` has an entry in
    the matching ``*_data`` mapping.
    """

    def __init__(self, current_connections, network_utilization):
        owners = {}
        for info in current_connections:
            names = owners.setdefault(info.connection, [])
            for name in info.processes:
                if name not in names:
                    names.append(name)

        self.connections = list(owners)
        self.connections += [c for c in network_utilization.connections if c not in owners]
        self.connection_data = {
            connection: ConnectionData(
                _copy_counters(Counters, network_utilization.connections.get(connection)),
                sorted(owners.get(connection, [])),
            )
            for connection in self.connections
        }

        self.process_names = list(network_utilization.processes)
        for names in owners.values():
            for name in names:
                if name not in network_utilization.processes and name not in self.process_names:
                    self.process_names.append(name)
        self.process_data = {
            name: _copy_counters(ProcessData, network_utilization.processes.get(name))
            for name in self.process_names
        }

        self.remote_ips = list(network_utilization.remote_addresses)
        for connection in owners:
            remote_ip = connection.remote_address.ip
            if remote_ip not in network_utilization.remote_addresses and remote_ip not in self.remote_ips:
                self.remote_ips.append(remote_ip)
        self.remote_ip_data = {
            remote_ip: _copy_counters(RemoteAddressData, network_utilization.remote_addresses.get(remote_ip))
            for remote_ip in self.remote_ips
        }


def render_process_table(state, frame, rect):
    """Draw the per process table"""
    rows = [
        format_row_data(name, str(state.process_data[name].connection_count), state.process_data[name])
        for name in state.process_names
    ]
    table = create_table(
        "Utilization by process name",
        ["Process", "Connection Count", "Total Bytes"],
        rows,
        [30, 30, 30],
    )
    table.render(frame, rect)


def render_connections_table(state, frame, rect):
    """Draw the per connection table"""
    rows = []
    for connection in state.connections:
        connection_data = state.connection_data[connection]
        rows.append(format_row_data(str(connection), ", ".join(connection_data.processes), connection_data))
    table = create_table(
        "Utilization by connection",
        ["Connection", "Processes", "Total Bytes Up/Down"],
        rows,
        [50, 20, 20],
    )
    table.render(frame, rect)


def render_remote_ip_table(state, frame, rect):
    """Draw the per remote address table"""
    rows = []
    for remote_ip in state.remote_ips:
        data_for_remote_ip = state.remote_ip_data[remote_ip]
        rows.append(format_row_data(str(remote_ip), str(data_for_remote_ip.connection_count), data_for_remote_ip))
    table = create_table(
        "Utilization by remote ip",
        ["Remote Address", "Connection Count", "Total Bytes"],
        rows,
        [50, 20, 20],
    )
    table.render(frame, rect)


def display_loop(network_utilization, terminal, current_connections, lock_timeout=-1):
    """Render one frame and reset the counters once it is on screen"""
    with network_utilization.locked(lock_timeout):
        state = UIState(current_connections, network_utilization)

        def layout(frame):
            screen_horizontal_halves = split(HORIZONTAL, frame.size())
            right_side_vertical_halves = split(VERTICAL, screen_horizontal_halves[1])
            render_connections_table(state, frame, screen_horizontal_halves[0])
            render_process_table(state, frame, right_side_vertical_halves[0])
            render_remote_ip_table(state, frame, right_side_vertical_halves[1])

        terminal.draw(layout)
        network_utilization.reset()
    log.debug("frame: %d connections, %d processes, %d remote ips",
              len(state.connections), len(state.process_names), len(state.remote_ips))


def run(stdscr, network_utilization, interval, kind, lock_timeout=-1):
    terminal = Terminal(stdscr)
    stdscr.nodelay(1)   # Non-blocking input
    stdscr.timeout(100)

    last_frame = 0.0
    while True:
        key = stdscr.getch()
        if key == ord('q') or key == ord('Q'):
            break

        now = time.monotonic()
        if now - last_frame < interval:
            continue
        last_frame = now

        current_connections = netusage_collector.get_current_connections(kind)
        try:
            display_loop(network_utilization, terminal, current_connections, lock_timeout)
        except (TerminalError, StoreLockError):
            # the counters were kept, next tick retries with the same data
            log.exception("frame failed")
        log.debug("frame took %.3fs", time.monotonic() - now)


def configure_logging(log_file=None, level="WARNING"):
    if log_file:
        logging.basicConfig(
            filename=log_file,
            level=level.upper(),
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )
    else:
        logging.getLogger().addHandler(logging.NullHandler())


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=f"netusage {VERSION}")
    parser.add_argument("-d", "--interval", type=float,
                        default=float(os.environ.get("NETUSAGE_INTERVAL", 1.0)),
                        help="Seconds between refreshes (default 1)")
    parser.add_argument("--kind", default=os.environ.get("NETUSAGE_CONN_KIND", "inet"),
                        help="psutil connection kind to list (default inet)")
    parser.add_argument("--lock-timeout", type=float, default=-1,
                        help="Give up on a frame if the store stays locked this long")
    parser.add_argument("--log-file", default=None, help="Write log records to this file")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default WARNING)")
    parser.add_argument("-v", "--version", action="version", version=f"netusage {VERSION}")
    args = parser.parse_args(argv)
    args.interval = max(0.1, args.interval)
    return args


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.log_file, args.log_level)
    network_utilization = UtilizationStore()
    try:
        curses.wrapper(run, network_utilization, args.interval, args.kind, args.lock_timeout)
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
