"""
Metrics logging for performance analysis.
Logs RPC latency, retries, duplicates, dropped moves, poll failures
and server handler times.
"""

import json
import os
import time
from collections import deque


class MetricsLogger:
    """
    Collects and persists RPC/session performance metrics.

    With *max_samples* set, each series keeps only its most recent samples,
    which bounds memory on a long-running server.
    """

    SERIES = ('rpc', 'retries', 'duplicates', 'dropped_moves',
              'poll_failures', 'handler_times')

    def __init__(self, log_dir: str = 'analysis/logs', max_samples: int = None):
        self.log_dir = log_dir
        self.max_samples = max_samples
        self.start_time = time.time()
        self.data = {name: deque(maxlen=max_samples) for name in self.SERIES}

    def _now(self) -> float:
        return round(time.time() - self.start_time, 4)

    def log_rpc(self, method: str, latency_ms: float, ok: bool = True):
        """Log one completed (or failed) client call."""
        self.data['rpc'].append({
            't': self._now(), 'method': method,
            'latency_ms': round(latency_ms, 3), 'ok': ok
        })

    def log_retry(self, method: str, attempt: int):
        self.data['retries'].append({
            't': self._now(), 'method': method, 'attempt': attempt
        })

    def log_duplicate(self, seq: int):
        self.data['duplicates'].append({'t': self._now(), 'seq': seq})

    def log_dropped_move(self, seq: int):
        self.data['dropped_moves'].append({'t': self._now(), 'seq': seq})

    def log_poll_failure(self, consecutive: int):
        self.data['poll_failures'].append({
            't': self._now(), 'consecutive': consecutive
        })

    def log_handler_time(self, method: str, duration_ms: float):
        self.data['handler_times'].append({
            'method': method, 'duration_ms': round(duration_ms, 4)
        })

    def save(self, filename: str = 'metrics.json'):
        os.makedirs(self.log_dir, exist_ok=True)
        path = os.path.join(self.log_dir, filename)
        with open(path, 'w') as f:
            json.dump({k: list(v) for k, v in self.data.items()}, f, indent=2)
        print(f"[METRICS] Saved to {path}", flush=True)
        return path

    def get_summary(self) -> dict:
        """Compute summary statistics."""
        summary = {}
        latencies = [r['latency_ms'] for r in self.data['rpc'] if r['ok']]
        if latencies:
            ordered = sorted(latencies)
            summary['rpc_calls'] = len(self.data['rpc'])
            summary['rpc_mean_ms'] = sum(latencies) / len(latencies)
            summary['rpc_p50_ms'] = ordered[len(ordered) // 2]
            summary['rpc_p95_ms'] = ordered[int(len(ordered) * 0.95)]
            summary['rpc_max_ms'] = ordered[-1]

        failed = sum(1 for r in self.data['rpc'] if not r['ok'])
        if failed:
            summary['rpc_failed'] = failed
        if self.data['retries']:
            summary['retries'] = len(self.data['retries'])
        if self.data['duplicates']:
            summary['duplicates'] = len(self.data['duplicates'])
        if self.data['dropped_moves']:
            summary['dropped_moves'] = len(self.data['dropped_moves'])
        if self.data['poll_failures']:
            summary['poll_failures'] = len(self.data['poll_failures'])

        handlers = [h['duration_ms'] for h in self.data['handler_times']]
        if handlers:
            summary['handler_time_mean'] = sum(handlers) / len(handlers)
            summary['handler_time_max'] = max(handlers)

        return summary
