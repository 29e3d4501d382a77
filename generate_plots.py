#!/usr/bin/env python3
import argparse
import csv
import os
import sys
from collections import defaultdict

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def load_messages(path):
    """Load perf_messages.csv into a list of dictionaries."""
    rows = []
    with open(path) as f:
        reader = csv.DictReader(f)
        for row in reader:
            rows.append({
                "phase": row["phase"],
                "seq_num": int(row["seq_num"]),
                "msg_type": row["msg_type"],
                "recv_time_ms": int(row["recv_time_ms"]),
                "latency_ms": float(row["latency_ms"]),
                "jitter_ms": float(row["jitter_ms"]),
                "payload_size": int(row["payload_size"]),
            })
    return rows


def load_phases(path):
    with open(path) as f:
        return [
            {"phase": row["phase"], "send_rate_hz": float(row["send_rate_hz"]),
             "messages_sent": int(row["messages_sent"])}
            for row in csv.DictReader(f)
        ]


def group_by_phase(rows):
    grouped = defaultdict(list)
    for row in rows:
        grouped[row["phase"]].append(row)
    return grouped


def compute_receive_rate(rows):
    """Compute delivered message rate in Hz."""
    if len(rows) < 2:
        return 0
    duration = max(0.001, (rows[-1]["recv_time_ms"] - rows[0]["recv_time_ms"]) / 1000.0)
    return len(rows) / duration

# -------------------------------------------------------------------
# Plotting functions
# -------------------------------------------------------------------

def plot_latency_over_time(rows, plot_dir):
    if not rows:
        return None
    t0 = rows[0]["recv_time_ms"]
    plt.figure(figsize=(10, 6))
    for phase, phase_rows in group_by_phase(rows).items():
        xs = [(r["recv_time_ms"] - t0) / 1000.0 for r in phase_rows]
        ys = [r["latency_ms"] for r in phase_rows]
        plt.scatter(xs, ys, s=4, label=phase)
    plt.title("Latency over Time")
    plt.xlabel("Time since first message (s)")
    plt.ylabel("Latency (ms)")
    plt.grid(True)
    plt.legend()
    plt.tight_layout()
    path = os.path.join(plot_dir, "latency_over_time.png")
    plt.savefig(path)
    plt.close()
    print("Saved: latency_over_time.png")
    return path


def plot_rate_per_phase(rows, phases, plot_dir):
    """Send rate vs delivered rate per phase."""
    grouped = group_by_phase(rows)
    names = [p["phase"] for p in phases]
    sent = [p["send_rate_hz"] for p in phases]
    delivered = [compute_receive_rate(grouped.get(name, [])) for name in names]

    x = range(len(names))
    plt.figure(figsize=(9, 5))
    plt.bar([i - 0.2 for i in x], sent, width=0.4, label="sent (Hz)", color="purple")
    plt.bar([i + 0.2 for i in x], delivered, width=0.4, label="delivered (Hz)", color="green")
    plt.xticks(list(x), names)
    plt.title("Message Rate per Phase")
    plt.xlabel("Phase")
    plt.ylabel("Messages / second")
    plt.grid(axis="y")
    plt.legend()
    plt.tight_layout()
    path = os.path.join(plot_dir, "rate_per_phase.png")
    plt.savefig(path)
    plt.close()
    print("Saved: rate_per_phase.png")
    return path


def plot_jitter_per_phase(rows, plot_dir):
    grouped = group_by_phase(rows)
    names = list(grouped.keys())
    jitters = [sum(r["jitter_ms"] for r in grouped[n]) / len(grouped[n]) for n in names]

    plt.figure(figsize=(8, 5))
    plt.bar(names, jitters, color="orange")
    plt.title("Mean Jitter per Phase")
    plt.xlabel("Phase")
    plt.ylabel("Jitter (ms)")
    plt.grid(axis="y")
    plt.tight_layout()
    path = os.path.join(plot_dir, "jitter_per_phase.png")
    plt.savefig(path)
    plt.close()
    print("Saved: jitter_per_phase.png")
    return path

# -------------------------------------------------------------------
# Main entry point
# -------------------------------------------------------------------

def generate_all_plots(results_dir="results"):
    print("\n=== FleetLink Plot Generation ===")
    messages_csv = os.path.join(results_dir, "perf_messages.csv")
    if not os.path.exists(messages_csv):
        print(f"Error: File not found: {messages_csv}")
        return []

    plot_dir = os.path.join(results_dir, "plots")
    os.makedirs(plot_dir, exist_ok=True)

    rows = load_messages(messages_csv)
    phases_path = os.path.join(results_dir, "perf_phases.csv")
    phases = load_phases(phases_path) if os.path.exists(phases_path) else []
    print(f"Loaded {len(rows)} message rows, {len(phases)} phases")

    saved = [plot_latency_over_time(rows, plot_dir)]
    if rows:
        saved.append(plot_jitter_per_phase(rows, plot_dir))
    if phases:
        saved.append(plot_rate_per_phase(rows, phases, plot_dir))

    print(f"\nAll plots saved to: {plot_dir}/\n")
    return [p for p in saved if p]


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Plot performance_monitor results")
    parser.add_argument("--results-dir", type=str, default="results")
    args = parser.parse_args()
    sys.exit(0 if generate_all_plots(args.results_dir) else 1)
