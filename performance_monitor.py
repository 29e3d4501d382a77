#!/usr/bin/env python3
"""
Phased load run over loopback multicast.

Sends a mix of heartbeat/data/control messages at increasing rates while a
receive loop in the same process records per-message latency, jitter and CPU.
Writes three CSVs into --output-dir:
  perf_messages.csv  one row per received message
  perf_phases.csv    one row per load phase
  perf_summary.csv   one row for the whole run
"""

import argparse
import os
import sys
import threading
import time

import numpy as np

from protocol_constants import HEADER_SIZE
from protocol_codec import current_time_ms
from protocol_errors import TransportError
from sender_utils import FleetSender
from receiver_utils import FleetReceiver
from metrics_utils import log_message, PerformanceMetrics, SequenceTracker, save_logs

DEFAULT_GROUP = "239.1.1.10"
DEFAULT_PORT = 12350

# (name, message_count, interval_seconds)
TEST_PHASES = [
    ("warmup", 100, 0.010),
    ("low_load", 500, 0.005),
    ("medium_load", 1000, 0.002),
    ("high_load", 2000, 0.001),
    ("burst_load", 5000, 0.0005),
]

MESSAGE_FIELDS = [
    'phase', 'sender_id', 'seq_num', 'msg_type', 'sender_timestamp_ms',
    'recv_time_ms', 'latency_ms', 'jitter_ms', 'payload_size', 'missed_before',
]


class MessageRecorder:
    """Receive handler that turns each delivered message into a metrics row."""

    def __init__(self):
        self.lock = threading.Lock()
        self.rows = []
        self.phase = "idle"
        self.tracker = SequenceTracker()
        self.last_latency = None

    def __call__(self, header, payload, addr):
        recv_ts = current_time_ms()
        latency = max(0, recv_ts - header.timestamp)
        with self.lock:
            jitter = abs(latency - self.last_latency) if self.last_latency is not None else 0
            self.last_latency = latency
            missed = self.tracker.observe(header.sender_id, header.sequence)
            self.rows.append({
                'phase': self.phase,
                'sender_id': header.sender_id,
                'seq_num': header.sequence,
                'msg_type': header.type_name,
                'sender_timestamp_ms': header.timestamp,
                'recv_time_ms': recv_ts,
                'latency_ms': latency,
                'jitter_ms': jitter,
                'payload_size': len(payload),
                'missed_before': missed,
            })


def send_phase_message(sender, i):
    """Vary message types and sizes: heartbeat, short data, 512-byte data, control."""
    kind = i % 4
    if kind == 0:
        sender.send_heartbeat()
    elif kind == 1:
        sender.send_data(f"Performance test data #{i}".encode())
    elif kind == 2:
        sender.send_data(bytes(512))
    else:
        sender.send_control("PERF_TEST")


def run_phases(sender, recorder, metrics, phases, pause=0.5):
    phase_rows = []
    for name, count, interval in phases:
        log_message(f"[MONITOR] Phase: {name} ({count} messages)")
        recorder.phase = name
        start = time.time()
        failures = 0
        for i in range(count):
            try:
                send_phase_message(sender, i)
            except TransportError as e:
                failures += 1
                log_message(f"[MONITOR] Send failed: {e}")
            if i % 100 == 0:
                metrics.sample_cpu()
            time.sleep(interval)
        duration = max(time.time() - start, 0.001)
        phase_rows.append({
            'phase': name,
            'messages_sent': count - failures,
            'send_failures': failures,
            'duration_s': round(duration, 3),
            'send_rate_hz': round((count - failures) / duration, 1),
        })
        time.sleep(pause)
    return phase_rows


def summarize(message_rows, metrics):
    stats = metrics.get_stats()
    latencies = np.array([r['latency_ms'] for r in message_rows], dtype=float)
    jitters = np.array([r['jitter_ms'] for r in message_rows], dtype=float)
    missed = sum(r['missed_before'] for r in message_rows)
    received = len(message_rows)
    summary = {
        'messages_sent': stats['packets_sent'],
        'messages_received': received,
        'messages_missed': missed,
        'loss_rate': missed / (received + missed) if received + missed else 0.0,
        'datagrams_dropped': stats['packets_dropped'],
        'bytes_received': stats['bytes_received'],
        'throughput_msg_per_sec': round(stats['throughput_msg_per_sec'], 1),
        'throughput_mb_per_sec': round(stats['throughput_mb_per_sec'], 4),
        'avg_cpu': round(stats['avg_cpu'], 1),
        'max_cpu': round(stats['max_cpu'], 1),
    }
    if received:
        summary.update({
            'latency_mean_ms': float(np.mean(latencies)),
            'latency_median_ms': float(np.median(latencies)),
            'latency_p95_ms': float(np.percentile(latencies, 95)),
            'jitter_mean_ms': float(np.mean(jitters)),
            'jitter_p95_ms': float(np.percentile(jitters, 95)),
        })
    return summary


def scale_phases(phases, scale):
    return [(name, max(1, int(count * scale)), interval) for name, count, interval in phases]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Fleet transport performance monitor")
    parser.add_argument("--group", type=str, default=DEFAULT_GROUP)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--sender-id", type=int, default=99999)
    parser.add_argument("--output-dir", type=str, default="results")
    parser.add_argument("--scale", type=float, default=1.0, help="Multiply every phase's message count")
    args = parser.parse_args(argv)

    os.makedirs(args.output_dir, exist_ok=True)
    phases = scale_phases(TEST_PHASES, args.scale)

    print("FleetLink Transport Performance Monitor")
    print("=" * 40)

    metrics = PerformanceMetrics()
    metrics.sample_cpu()
    recorder = MessageRecorder()
    receiver = FleetReceiver(args.group, args.port, recorder, metrics=metrics)
    receiver.start()
    error = receiver.wait_ready(timeout=2.0)
    if error:
        log_message(f"[MONITOR] Receiver failed to start: {error}")
        return 1

    try:
        with FleetSender(args.group, args.port, args.sender_id, metrics=metrics) as sender:
            phase_rows = run_phases(sender, recorder, metrics, phases)
    except TransportError as e:
        log_message(f"[MONITOR] Sender failed: {e}")
        receiver.stop(timeout=2.0)
        return 1

    error = receiver.stop(timeout=2.0)
    if error:
        log_message(f"[MONITOR] Receiver terminated with error: {error}")

    with recorder.lock:
        message_rows = list(recorder.rows)
    summary = summarize(message_rows, metrics)

    save_logs(os.path.join(args.output_dir, "perf_messages.csv"), message_rows, MESSAGE_FIELDS)
    save_logs(os.path.join(args.output_dir, "perf_phases.csv"), phase_rows)
    save_logs(os.path.join(args.output_dir, "perf_summary.csv"), [summary])

    print("\nFINAL PERFORMANCE SUMMARY")
    print("=" * 28)
    print(f"Messages Sent:      {summary['messages_sent']}")
    print(f"Messages Received:  {summary['messages_received']}")
    print(f"Messages Missed:    {summary['messages_missed']} ({summary['loss_rate'] * 100:.2f}%)")
    print(f"Throughput:         {summary['throughput_msg_per_sec']:.1f} msg/sec")
    if 'latency_mean_ms' in summary:
        print(f"Average Latency:    {summary['latency_mean_ms']:.2f} ms (p95 {summary['latency_p95_ms']:.2f} ms)")
    print(f"Total Data:         {summary['bytes_received'] / (1024 * 1024):.2f} MB "
          f"(header {HEADER_SIZE} bytes/message)")
    print(f"Results saved to {args.output_dir}/")
    return 0


if __name__ == "__main__":
    sys.exit(main())
