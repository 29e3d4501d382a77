#!/usr/bin/env python3
"""
Statistics report for a performance_monitor run.
Reports mean, median and 95th percentile for latency and jitter per phase,
plus per-sender loss detected from sequence gaps.
"""

import argparse
import os
import sys

import numpy as np
import pandas as pd


def calculate_statistics(data):
    """Calculate mean, median, 95th percentile"""
    if len(data) == 0:
        return {'mean': 0, 'median': 0, 'p95': 0}

    return {
        'mean': float(np.mean(data)),
        'median': float(np.median(data)),
        'p95': float(np.percentile(data, 95)),
    }


def load_messages(csv_file):
    df = pd.read_csv(csv_file)
    required = {'phase', 'sender_id', 'seq_num', 'latency_ms', 'jitter_ms', 'missed_before'}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"{csv_file} is missing columns: {sorted(missing)}")
    return df


def phase_statistics(df):
    """One row per phase, in first-seen order."""
    rows = []
    for phase, group in df.groupby('phase', sort=False):
        latency = calculate_statistics(group['latency_ms'])
        jitter = calculate_statistics(group['jitter_ms'])
        received = len(group)
        missed = int(group['missed_before'].sum())
        rows.append({
            'phase': phase,
            'samples': received,
            'latency_mean': latency['mean'],
            'latency_median': latency['median'],
            'latency_p95': latency['p95'],
            'jitter_mean': jitter['mean'],
            'jitter_median': jitter['median'],
            'jitter_p95': jitter['p95'],
            'missed': missed,
            'loss_pct': 100.0 * missed / (received + missed) if received + missed else 0.0,
        })
    return pd.DataFrame(rows)


def sender_loss(df):
    grouped = df.groupby('sender_id').agg(received=('seq_num', 'size'), missed=('missed_before', 'sum'))
    grouped['loss_pct'] = 100.0 * grouped['missed'] / (grouped['received'] + grouped['missed'])
    return grouped.reset_index()


def print_report(stats, losses):
    print("\n" + "=" * 80)
    print("FLEET TRANSPORT PERFORMANCE REPORT")
    print("=" * 80)
    for _, row in stats.iterrows():
        print(f"\nPhase: {row['phase']}  ({int(row['samples'])} samples)")
        print(f"  Latency (ms):  mean {row['latency_mean']:.2f}  median {row['latency_median']:.2f}  p95 {row['latency_p95']:.2f}")
        print(f"  Jitter (ms):   mean {row['jitter_mean']:.2f}  median {row['jitter_median']:.2f}  p95 {row['jitter_p95']:.2f}")
        print(f"  Loss:          {int(row['missed'])} missed ({row['loss_pct']:.2f}%)")

    print("\nPer-sender loss:")
    for _, row in losses.iterrows():
        print(f"  sender {int(row['sender_id'])}: {int(row['received'])} received, "
              f"{int(row['missed'])} missed ({row['loss_pct']:.2f}%)")
    print("=" * 80)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Summarize performance_monitor results")
    parser.add_argument("--results-dir", type=str, default="results")
    args = parser.parse_args(argv)

    messages_csv = os.path.join(args.results_dir, "perf_messages.csv")
    if not os.path.exists(messages_csv):
        print(f"Error: File not found: {messages_csv}")
        return 1

    df = load_messages(messages_csv)
    if df.empty:
        print(f"No data found in {messages_csv}")
        return 1

    stats = phase_statistics(df)
    losses = sender_loss(df)
    print_report(stats, losses)

    out = os.path.join(args.results_dir, "perf_statistics.csv")
    stats.to_csv(out, index=False)
    print(f"\nStatistics saved to: {out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
