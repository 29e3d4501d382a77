#!/usr/bin/env python3
import argparse
import signal
import sys
import threading
import time
from datetime import datetime

from protocol_constants import DEFAULT_GROUP, DEFAULT_PORT
from protocol_errors import TransportError
from sender_utils import FleetSender
from receiver_utils import FleetReceiver
from metrics_utils import log_message, PerformanceMetrics, SequenceTracker

stop_event = threading.Event()


def signal_handler(sig, frame):
    log_message(f"[DEMO] Received signal {sig}, shutting down...")
    stop_event.set()


def make_printer(tag, tracker=None):
    def on_message(header, payload, addr):
        text = payload.decode('utf-8', errors='replace')
        missed = tracker.observe(header.sender_id, header.sequence) if tracker else 0
        note = f" [{missed} missed]" if missed else ""
        now = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        print(f"[{now}] {tag} {header.type_name} from {addr[0]}:{addr[1]} "
              f"(sender={header.sender_id} seq={header.sequence}, {len(payload)} bytes): {text}{note}")
    return on_message


def run_sender(group, port, sender_id, count, interval):
    log_message("[DEMO] Starting sender mode...")
    with FleetSender(group, port, sender_id) as sender:
        for i in range(count):
            if stop_event.is_set():
                break
            if i % 3 == 0:
                sender.send_heartbeat()
            sender.send_data(f"Data message #{i}".encode())
            if i % 5 == 0:
                sender.send_control(f"CONTROL_CMD_{i}")
            stop_event.wait(interval)
    log_message("[DEMO] Sender finished")


def run_receiver(group, port):
    log_message("[DEMO] Starting receiver mode...")
    log_message(f"[DEMO] Listening for multicast messages on {group}:{port}...")
    log_message("[DEMO] Press Ctrl+C to stop")
    metrics = PerformanceMetrics()
    receiver = FleetReceiver(group, port, make_printer("RX", SequenceTracker()), metrics=metrics)
    receiver.run(stop_event)
    stats = metrics.get_stats()
    log_message(f"[DEMO] Received {stats['packets_received']} messages, dropped {stats['packets_dropped']}")


def run_both(group, port, sender_id, count, interval):
    log_message("[DEMO] Starting both sender and receiver...")
    receiver = FleetReceiver(group, port, make_printer("RX", SequenceTracker()))
    receiver.start()
    error = receiver.wait_ready(timeout=2.0)
    if error:
        raise error

    log_message("[DEMO] Sending test messages...")
    with FleetSender(group, port, sender_id) as sender:
        for i in range(count):
            if stop_event.is_set():
                break
            sender.send_heartbeat()
            time.sleep(interval)
            sender.send_data(f"Test data #{i}".encode())
            time.sleep(interval)
            if i % 2 == 0:
                sender.send_control("TEST_COMMAND")
                time.sleep(interval)

    log_message("[DEMO] Demo completed. Receiver will continue running...")
    log_message("[DEMO] Press Ctrl+C to stop")
    stop_event.wait()
    error = receiver.stop(timeout=2.0)
    if error:
        raise error


def main(argv=None):
    parser = argparse.ArgumentParser(description="Fleet multicast transport demo")
    parser.add_argument("mode", nargs="?", choices=["sender", "receiver", "both"], default="both")
    parser.add_argument("--group", type=str, default=DEFAULT_GROUP)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--sender-id", type=int, default=12345)
    parser.add_argument("--count", type=int, default=10, help="Number of send rounds")
    parser.add_argument("--interval", type=float, default=1.0, help="Seconds between sends")
    args = parser.parse_args(argv)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    print("FleetLink Multicast Transport Demo")
    print("=" * 34)
    try:
        if args.mode == "sender":
            run_sender(args.group, args.port, args.sender_id, args.count, args.interval)
        elif args.mode == "receiver":
            run_receiver(args.group, args.port)
        else:
            run_both(args.group, args.port, args.sender_id, args.count, args.interval / 2)
    except TransportError as e:
        log_message(f"[DEMO] Transport error: {type(e).__name__}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
