"""
Stress test: measure RPC latency and store consistency with increasing
numbers of concurrent sessions.
"""

import os
import sys
import time
import threading
import random
import json

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.errors import GridSyncError
from common.metrics_logger import MetricsLogger
from client.client import SessionClient
from client.rpc_client import RpcConnection


class StressBot:
    """A session that wanders around the grid as fast as it can."""

    def __init__(self, player_id: str, port: int, loss_tolerant: bool = False):
        self.metrics = MetricsLogger()
        conn = RpcConnection.open(('127.0.0.1', port), call_timeout=0.5 if loss_tolerant else 2.0,
                                  metrics=self.metrics)
        self.session = SessionClient(
            player_id, conn, register_interval=0.05, move_interval=0.0,
            move_retries=10 if loss_tolerant else 3, poll_interval=0.05,
            metrics=self.metrics, verbose=False
        )
        self.player_id = player_id
        self.last_position = None
        self.moves_sent = 0
        self.moves_lost = 0

    def run(self, stop: threading.Event):
        rng = random.Random(self.player_id)
        row, col = 0, 0
        while not stop.is_set():
            row = max(0, min(29, row + rng.choice((-1, 0, 1))))
            col = max(0, min(29, col + rng.choice((-1, 0, 1))))
            self.moves_sent += 1
            if self.session.update_state(row, col):
                self.last_position = (row, col)
            else:
                self.moves_lost += 1


def run_stress_test(num_clients: int, duration: float = 3.0,
                    loss: float = 0.0) -> dict:
    """Run a stress test with N sessions for a given duration."""
    from server.server import GameServer

    server = GameServer(host='127.0.0.1', port=0, loss_sim=loss, verbose=False)
    server.start()
    time.sleep(0.2)

    bots = []
    for i in range(num_clients):
        bot = StressBot(f'bot{i:03d}', server.port, loss_tolerant=loss > 0)
        try:
            bot.session.register()
        except GridSyncError as e:
            print(f"  bot{i:03d} failed to register: {e}")
            bot.session.close()
            continue
        bot.session.start_polling()
        bots.append(bot)
    print(f"  Registered: {len(bots)}/{num_clients}")

    stop = threading.Event()
    threads = [threading.Thread(target=bot.run, args=(stop,), daemon=True)
               for bot in bots]
    start = time.perf_counter()
    for t in threads:
        t.start()
    time.sleep(duration)
    stop.set()
    for t in threads:
        t.join()
    elapsed = time.perf_counter() - start

    # Every confirmed final move must be what the store holds
    snapshot = server.store.get_game_state()
    mismatches = 0
    for bot in bots:
        if bot.last_position is None or bot.moves_lost:
            continue
        p = snapshot.get(bot.player_id)
        if p is None or (p.row, p.col) != bot.last_position:
            mismatches += 1

    latencies = []
    for bot in bots:
        latencies.extend(r['latency_ms'] for r in bot.metrics.data['rpc'] if r['ok'])
    latencies.sort()

    total_moves = sum(b.moves_sent for b in bots)
    result = {
        'clients': num_clients,
        'registered': len(bots),
        'duration_s': round(elapsed, 2),
        'total_moves': total_moves,
        'moves_per_sec': round(total_moves / max(elapsed, 1e-9), 1),
        'moves_lost': sum(b.moves_lost for b in bots),
        'duplicates': sum(len(b.metrics.data['duplicates']) for b in bots),
        'retries': sum(len(b.metrics.data['retries']) for b in bots),
        'mismatches': mismatches,
        'server_requests': server.total_requests,
        'server_bytes_sent_kb': round(server.total_bytes_sent / 1024, 1),
    }
    if latencies:
        result['avg_rpc_ms'] = round(sum(latencies) / len(latencies), 3)
        result['p99_rpc_ms'] = round(latencies[int(len(latencies) * 0.99) - 1], 3)

    handler_times = [h['duration_ms'] for h in server.metrics.data['handler_times']]
    if handler_times:
        result['avg_handler_ms'] = round(sum(handler_times) / len(handler_times), 4)
        result['max_handler_ms'] = round(max(handler_times), 4)

    # Cleanup
    for bot in bots:
        bot.session.close()
    server.stop()

    return result


def main():
    """Run stress tests with increasing session counts."""
    import argparse
    parser = argparse.ArgumentParser(description='Stress test')
    parser.add_argument('--bots', type=int, default=0,
                        help='Single bot count (overrides sweep)')
    parser.add_argument('--duration', type=float, default=3.0,
                        help='Duration per test in seconds')
    parser.add_argument('--loss', type=float, default=0.0,
                        help='Simulated reply loss rate on the server')
    args = parser.parse_args()

    CLIENT_COUNTS = [args.bots] if args.bots > 0 else [2, 4, 8, 16, 32]

    print("=" * 70)
    print("  Stress Test: Grid Sync Server")
    print(f"  Duration: {args.duration}s per test | Reply loss: {args.loss:.0%}")
    print("=" * 70)

    results = []
    for n in CLIENT_COUNTS:
        print(f"\n--- Testing with {n} sessions ---")
        result = run_stress_test(n, duration=args.duration, loss=args.loss)
        results.append(result)
        print(f"  Moves/sec:         {result['moves_per_sec']}")
        print(f"  Lost moves:        {result['moves_lost']}")
        print(f"  Duplicates:        {result['duplicates']}")
        print(f"  Avg RPC:           {result.get('avg_rpc_ms', 'N/A')} ms")
        print(f"  p99 RPC:           {result.get('p99_rpc_ms', 'N/A')} ms")
        print(f"  Mismatches:        {result['mismatches']}")

    # Save results
    output_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
                               'analysis', 'logs', 'stress_test_results.json')
    os.makedirs(os.path.dirname(output_path), exist_ok=True)
    with open(output_path, 'w') as f:
        json.dump(results, f, indent=2)
    print(f"\n[STRESS] Results saved to {output_path}")

    # Summary table
    print("\n" + "=" * 70)
    print(f"{'Sessions':<10} {'Moves/s':<10} {'Lost':<8} "
          f"{'Dups':<8} {'Avg ms':<10} {'p99 ms':<10} {'Bad':<6}")
    print("-" * 70)
    for r in results:
        print(f"{r['clients']:<10} {r['moves_per_sec']:<10} "
              f"{r['moves_lost']:<8} {r['duplicates']:<8} "
              f"{r.get('avg_rpc_ms', 'N/A'):<10} "
              f"{r.get('p99_rpc_ms', 'N/A'):<10} {r['mismatches']:<6}")
    print("=" * 70)

    if any(r['mismatches'] for r in results):
        sys.exit(1)


if __name__ == '__main__':
    main()
