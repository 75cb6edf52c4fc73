#!/usr/bin/env python3
"""
Test suite for the utilization store
Run with: python3 -m pytest netusage_store_test.py
"""

import unittest
import sys
import threading

from netusage_store import Address, Connection, Counters, StoreLockError, UtilizationStore


class TestAddresses(unittest.TestCase):

    def test_ipv4(self):
        self.assertEqual(str(Address('10.0.0.1', 443)), "10.0.0.1:443")

    def test_ipv6(self):
        self.assertEqual(str(Address('2001:db8::1', 443)), "[2001:db8::1]:443")

    def test_connection_labelled_by_remote_end(self):
        conn = Connection(Address('192.168.1.10', 50000), Address('10.0.0.1', 443), 'tcp')
        self.assertEqual(str(conn), "10.0.0.1:443")

    def test_connection_is_hashable(self):
        a = Connection(Address('192.168.1.10', 50000), Address('10.0.0.1', 443), 'tcp')
        b = Connection(Address('192.168.1.10', 50000), Address('10.0.0.1', 443), 'tcp')
        self.assertEqual({a: 1}[b], 1)


class TestUtilizationStore(unittest.TestCase):
    """Test counter accumulation and reset"""

    def setUp(self):
        self.store = UtilizationStore()
        self.conn = Connection(Address('192.168.1.10', 50000), Address('10.0.0.1', 443), 'tcp')
        self.other = Connection(Address('192.168.1.10', 50001), Address('10.0.0.1', 443), 'tcp')

    def test_record_accumulates(self):
        self.store.record(self.conn, 'chrome', uploaded=100, downloaded=200)
        self.store.record(self.conn, 'chrome', uploaded=50)
        self.assertEqual(self.store.connections[self.conn], Counters(150, 200, 0))
        self.assertEqual(self.store.processes['chrome'], Counters(150, 200, 1))
        self.assertEqual(self.store.remote_addresses['10.0.0.1'], Counters(150, 200, 1))

    def test_connection_count_counts_distinct_connections(self):
        self.store.record(self.conn, 'chrome', uploaded=1)
        self.store.record(self.other, 'chrome', uploaded=1)
        self.store.record(self.other, 'chrome', uploaded=1)
        self.assertEqual(self.store.processes['chrome'].connection_count, 2)
        self.assertEqual(self.store.remote_addresses['10.0.0.1'].connection_count, 2)

    def test_record_without_process(self):
        self.store.record(self.conn, downloaded=10)
        self.assertEqual(self.store.processes, {})
        self.assertEqual(self.store.remote_addresses['10.0.0.1'].total_bytes_downloaded, 10)

    def test_reset_keeps_keys(self):
        self.store.record(self.conn, 'chrome', uploaded=100, downloaded=200)
        self.store.reset()
        self.assertEqual(list(self.store.processes), ['chrome'])
        self.assertEqual(self.store.processes['chrome'], Counters())
        self.assertEqual(self.store.connections[self.conn], Counters())
        self.assertEqual(self.store.remote_addresses['10.0.0.1'], Counters())

    def test_reset_is_idempotent(self):
        self.store.record(self.conn, 'chrome', uploaded=100, downloaded=200)
        self.store.reset()
        self.store.reset()
        for table in (self.store.processes, self.store.connections, self.store.remote_addresses):
            for counters in table.values():
                self.assertEqual(counters, Counters(0, 0, 0))

    def test_connection_count_restarts_after_reset(self):
        self.store.record(self.conn, 'chrome', uploaded=1)
        self.store.reset()
        self.store.record(self.conn, 'chrome', uploaded=1)
        self.assertEqual(self.store.processes['chrome'].connection_count, 1)

    def test_locked_timeout(self):
        with self.store.locked():
            with self.assertRaises(StoreLockError):
                with self.store.locked(timeout=0.01):
                    pass

    def test_locked_released_on_error(self):
        with self.assertRaises(ValueError):
            with self.store.locked():
                raise ValueError("render failed")
        with self.store.locked(timeout=0.01):
            pass

    def test_writer_blocks_while_locked(self):
        """Test a collector cannot write in the middle of a frame"""
        started = threading.Event()

        def writer():
            started.set()
            self.store.record(self.conn, 'chrome', uploaded=100)

        with self.store.locked():
            thread = threading.Thread(target=writer)
            thread.start()
            started.wait(1)
            thread.join(0.05)
            self.assertTrue(thread.is_alive())
            self.assertEqual(self.store.processes, {})
        thread.join(1)
        self.assertEqual(self.store.processes['chrome'].total_bytes_uploaded, 100)


class TestCounters(unittest.TestCase):

    def test_copy_is_independent(self):
        counters = Counters(1, 2, 3)
        copied = counters.copy()
        counters.reset()
        self.assertEqual(copied, Counters(1, 2, 3))
        self.assertEqual(counters, Counters(0, 0, 0))


def run_tests():
    """Run all tests"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestAddresses))
    suite.addTests(loader.loadTestsFromTestCase(TestUtilizationStore))
    suite.addTests(loader.loadTestsFromTestCase(TestCounters))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return 0 if result.wasSuccessful() else 1


if __name__ == '__main__':
    sys.exit(run_tests())
