# metrics_utils.py
import csv
import threading
import time
from collections import Counter, deque

import psutil

import protocol_constants


def log_message(msg):
    print(msg)


def log_verbose(msg):
    if protocol_constants.VERBOSE:
        print(msg)


# Performance metrics
class PerformanceMetrics:
    """Counters shared between a sender and/or a receive loop. Thread-safe."""

    def __init__(self, max_latency_samples=1000):
        self.lock = threading.Lock()
        self.start_time = time.time()
        self.packets_sent = 0
        self.packets_received = 0
        self.bytes_sent = 0
        self.bytes_received = 0
        self.send_failures = 0
        self.handler_errors = 0
        self.drops = Counter()        # ProtocolError class name -> count
        self.latency_samples = deque(maxlen=max_latency_samples)
        self.cpu_samples = []

    def log_packet_sent(self, nbytes):
        with self.lock:
            self.packets_sent += 1
            self.bytes_sent += nbytes

    def log_send_failure(self):
        with self.lock:
            self.send_failures += 1

    def log_packet_recv(self, nbytes, latency_ms=None):
        with self.lock:
            self.packets_received += 1
            self.bytes_received += nbytes
            if latency_ms is not None:
                self.latency_samples.append(latency_ms)

    def log_drop(self, reason):
        with self.lock:
            self.drops[reason] += 1

    def log_handler_error(self):
        with self.lock:
            self.handler_errors += 1

    def sample_cpu(self):
        cpu = psutil.cpu_percent(interval=None)
        with self.lock:
            self.cpu_samples.append(cpu)
        return cpu

    def get_stats(self):
        with self.lock:
            elapsed = time.time() - self.start_time
            latencies = list(self.latency_samples)
            return {
                'uptime_seconds': elapsed,
                'packets_sent': self.packets_sent,
                'packets_received': self.packets_received,
                'bytes_sent': self.bytes_sent,
                'bytes_received': self.bytes_received,
                'send_failures': self.send_failures,
                'packets_dropped': sum(self.drops.values()),
                'handler_errors': self.handler_errors,
                'throughput_msg_per_sec': self.packets_received / elapsed if elapsed > 0 else 0,
                'throughput_mb_per_sec': (self.bytes_received / elapsed) / (1024 * 1024) if elapsed > 0 else 0,
                'avg_latency_ms': sum(latencies) / len(latencies) if latencies else 0,
                'avg_cpu': sum(self.cpu_samples) / len(self.cpu_samples) if self.cpu_samples else 0,
                'max_cpu': max(self.cpu_samples) if self.cpu_samples else 0,
            }


class SequenceTracker:
    """
    Consumer-side loss detection from the 16-bit sequence field.

    A sequence ahead of the expected one (mod 65536, within half the space)
    counts the skipped numbers as missed; anything behind counts as a
    duplicate or reordered arrival.
    """

    HALF_SPACE = protocol_constants.MAX_SEQUENCE // 2

    def __init__(self):
        self.expected = {}        # sender_id -> next expected sequence
        self.received = Counter()
        self.missed = Counter()
        self.late = Counter()

    def observe(self, sender_id, sequence):
        """Record one arrival and return the number of sequences it revealed as missed."""
        self.received[sender_id] += 1
        if sender_id not in self.expected:
            self.expected[sender_id] = (sequence + 1) % protocol_constants.MAX_SEQUENCE
            return 0

        gap = (sequence - self.expected[sender_id]) % protocol_constants.MAX_SEQUENCE
        if gap >= self.HALF_SPACE:
            self.late[sender_id] += 1
            return 0
        self.missed[sender_id] += gap
        self.expected[sender_id] = (sequence + 1) % protocol_constants.MAX_SEQUENCE
        return gap

    def loss_rate(self, sender_id):
        total = self.received[sender_id] + self.missed[sender_id]
        return self.missed[sender_id] / total if total else 0.0


def save_logs(path, rows, fieldnames=None):
    """Write a list of dict rows to CSV. An empty list still produces a header row."""
    if fieldnames is None:
        if not rows:
            raise ValueError("fieldnames are required when there are no rows")
        fieldnames = list(rows[0].keys())
    with open(path, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)
    return len(rows)
