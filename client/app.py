"""
Client entry point: load the map, join the server, and run the
input/render loop until the player quits.
"""

import argparse
import sys
import time

from common.config import DEFAULT_MAP_FILE, FRAME_RATE
from common.errors import (
    InvalidArgumentError, RegistrationError, ServerUnavailableError
)
from common.metrics_logger import MetricsLogger
from common.net import parse_address
from client.connection import ConnectionManager
from client.game_map import load_map, MapLoadError
from client.renderer import GameRenderer

USAGE = "Usage: grid-sync-client <server[:port]> <player_name> [--map FILE] [--headless]"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Grid Sync Client',
                                     usage=USAGE)
    parser.add_argument('positional', nargs='*')
    parser.add_argument('--map', default=DEFAULT_MAP_FILE, help='Map file')
    parser.add_argument('--headless', action='store_true',
                        help='Run without a window (bots/testing)')
    parser.add_argument('--metrics', action='store_true',
                        help='Save client metrics on exit')
    return parser


def status_line(session, row: int, col: int) -> dict:
    status = {
        'Pos': f"({row},{col})",
        'Seq': str(session.sequence),
        'Players': str(len(session.get_remote_players()) + 1),
    }
    if session.desynchronized:
        status['Sync'] = "LOST"
    elif session.poll_failures:
        status['Sync'] = f"retrying ({session.poll_failures})"
    else:
        status['Sync'] = "ok"
    return status


def run_loop(session, game_map, renderer, headless: bool):
    """Read input, submit moves, redraw. Returns when the player quits."""
    row, col = game_map.start_row, game_map.start_col
    session.update_state(row, col)

    while True:
        quit_requested, moves = renderer.process_events()
        if quit_requested:
            break

        for d_row, d_col in moves:
            new_row, new_col = game_map.clamp(row + d_row, col + d_col)
            if (new_row, new_col) == (row, col) or game_map.is_wall(new_row, new_col):
                continue
            row, col = new_row, new_col
            session.update_state(row, col)

        renderer.render((row, col), session.get_remote_players(),
                        session.player_id, status_line(session, row, col))
        if headless:
            time.sleep(1.0 / FRAME_RATE)


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    if len(args.positional) != 2:
        print(USAGE)
        return 0

    server, player_name = args.positional
    try:
        address = parse_address(server)
    except ValueError as e:
        print(f"[CLIENT] {e}")
        return 1

    try:
        game_map = load_map(args.map)
    except MapLoadError as e:
        print(f"[CLIENT] Fatal: {e}")
        return 1

    metrics = MetricsLogger() if args.metrics else None
    renderer = GameRenderer(game_map, headless=args.headless)
    manager = ConnectionManager(address, player_name, metrics=metrics)
    try:
        session = manager.start_session()
    except (ServerUnavailableError, RegistrationError, InvalidArgumentError) as e:
        renderer.close()
        print(f"[CLIENT] Fatal: {e.message}")
        return 1

    try:
        run_loop(session, game_map, renderer, args.headless)
    except KeyboardInterrupt:
        print("\n[CLIENT] Interrupted")
    finally:
        manager.close()
        renderer.close()
        if metrics is not None:
            metrics.save(f'client_{player_name}_metrics.json')
            summary = metrics.get_summary()
            if summary:
                print(f"[CLIENT] Metrics summary: {summary}")

    print("[CLIENT] Game over")
    return 0


if __name__ == '__main__':
    sys.exit(main())
