"""
Analysis and visualization of session metrics.
Generates plots for RPC latency, retries, poll failures and server handler times.
"""

import json
import os


def load_metrics(filepath: str) -> dict:
    """Load a metrics JSON file."""
    with open(filepath) as f:
        return json.load(f)


def latency_by_method(data: dict) -> dict:
    """method -> list of (t, latency_ms) for successful calls."""
    series = {}
    for r in data.get('rpc', []):
        if r.get('ok'):
            series.setdefault(r['method'], []).append((r['t'], r['latency_ms']))
    return series


def plot_latency_analysis(data: dict, output_dir: str = 'analysis'):
    """Generate latency timeline and distribution plots."""
    try:
        import matplotlib.pyplot as plt
        import numpy as np
    except ImportError:
        print("[ANALYSIS] matplotlib/numpy not available. Skipping plots.")
        return

    os.makedirs(output_dir, exist_ok=True)
    series = latency_by_method(data)

    fig, axes = plt.subplots(1, 2, figsize=(14, 5))
    fig.suptitle('Grid Sync RPC Latency', fontsize=14, fontweight='bold')

    # ── 1. Latency over time, one line per procedure ──
    ax = axes[0]
    for method, points in sorted(series.items()):
        times = [p[0] for p in points]
        values = [p[1] for p in points]
        ax.plot(times, values, linewidth=0.8,
                label=method.split('.')[-1])
    if series:
        ax.legend(fontsize=9)
    ax.set_title('Call Latency')
    ax.set_xlabel('Time (s)')
    ax.set_ylabel('Latency (ms)')
    ax.grid(True, alpha=0.3)

    # ── 2. Distribution across all calls ──
    ax = axes[1]
    values = [p[1] for points in series.values() for p in points]
    if values:
        ax.hist(values, bins=50, edgecolor='black', alpha=0.7, color='#4CAF50')
        arr = np.array(values)
        stats_text = (f'Mean: {np.mean(arr):.2f} ms\n'
                      f'P50:  {np.percentile(arr, 50):.2f} ms\n'
                      f'P95:  {np.percentile(arr, 95):.2f} ms\n'
                      f'P99:  {np.percentile(arr, 99):.2f} ms')
        ax.text(0.95, 0.95, stats_text, transform=ax.transAxes,
                verticalalignment='top', horizontalalignment='right',
                fontsize=9, family='monospace',
                bbox=dict(boxstyle='round', facecolor='wheat', alpha=0.8))
    ax.set_title('Latency Distribution')
    ax.set_xlabel('Latency (ms)')
    ax.set_ylabel('Calls')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    path = os.path.join(output_dir, 'latency_analysis.png')
    plt.savefig(path, dpi=150)
    print(f"[ANALYSIS] Saved: {path}")
    plt.close()


def plot_reliability(data: dict, output_dir: str = 'analysis'):
    """Plot retries, duplicates, dropped moves and poll failures over time."""
    try:
        import matplotlib.pyplot as plt
        import numpy as np
    except ImportError:
        return

    os.makedirs(output_dir, exist_ok=True)
    events = {
        'Retries': data.get('retries', []),
        'Duplicates': data.get('duplicates', []),
        'Dropped moves': data.get('dropped_moves', []),
        'Poll failures': data.get('poll_failures', []),
    }
    if not any(events.values()):
        print("[ANALYSIS] No reliability events recorded.")
        return

    fig, ax = plt.subplots(figsize=(10, 4))
    for label, rows in events.items():
        if not rows:
            continue
        times = np.sort(np.array([r['t'] for r in rows]))
        ax.step(times, np.arange(1, len(times) + 1), where='post', label=label)
    ax.set_title('Cumulative Reliability Events')
    ax.set_xlabel('Time (s)')
    ax.set_ylabel('Count')
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    path = os.path.join(output_dir, 'reliability_analysis.png')
    plt.savefig(path, dpi=150)
    print(f"[ANALYSIS] Saved: {path}")
    plt.close()


def plot_handler_times(data: dict, output_dir: str = 'analysis'):
    """Plot server request handling times per procedure."""
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        return

    os.makedirs(output_dir, exist_ok=True)
    handlers = data.get('handler_times', [])
    if not handlers:
        return

    by_method = {}
    for h in handlers:
        by_method.setdefault(h['method'].split('.')[-1], []).append(h['duration_ms'])

    fig, ax = plt.subplots(figsize=(10, 4))
    labels = sorted(by_method)
    ax.boxplot([by_method[k] for k in labels], showfliers=False)
    ax.set_xticks(range(1, len(labels) + 1))
    ax.set_xticklabels(labels)
    ax.set_title('Server Handler Time')
    ax.set_ylabel('Duration (ms)')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    path = os.path.join(output_dir, 'handler_time_analysis.png')
    plt.savefig(path, dpi=150)
    print(f"[ANALYSIS] Saved: {path}")
    plt.close()


def analyze_all(filepath: str, output_dir: str = 'analysis'):
    """Run all analysis on a metrics file."""
    import numpy as np

    print(f"[ANALYSIS] Loading {filepath}...")
    data = load_metrics(filepath)

    plot_latency_analysis(data, output_dir)
    plot_reliability(data, output_dir)
    plot_handler_times(data, output_dir)

    # Print summary
    print("\n=== Metrics Summary ===")
    for method, points in sorted(latency_by_method(data).items()):
        arr = np.array([p[1] for p in points])
        print(f"  {method.split('.')[-1]:<18} n={len(arr):<6} "
              f"mean={np.mean(arr):.2f} ms, "
              f"P95={np.percentile(arr, 95):.2f} ms")

    failed = sum(1 for r in data.get('rpc', []) if not r.get('ok'))
    if failed:
        print(f"  Failed calls: {failed}")
    for key in ('retries', 'duplicates', 'dropped_moves', 'poll_failures'):
        if data.get(key):
            print(f"  {key.replace('_', ' ').capitalize()}: {len(data[key])}")

    handler_ms = [h['duration_ms'] for h in data.get('handler_times', [])]
    if handler_ms:
        print(f"  Handler time: mean={np.mean(handler_ms):.3f} ms, "
              f"max={np.max(handler_ms):.3f} ms")


def main():
    import argparse
    parser = argparse.ArgumentParser(description='Analyze grid sync metrics')
    parser.add_argument('file', help='Metrics JSON file to analyze')
    parser.add_argument('--output', default='analysis', help='Output directory')
    args = parser.parse_args()
    analyze_all(args.file, args.output)


if __name__ == '__main__':
    main()
