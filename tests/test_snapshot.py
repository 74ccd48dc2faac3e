"""
Unit tests for snapshots and the authoritative store.
"""

import random
import threading
import unittest

from common.errors import InvalidArgumentError
from common.snapshot import GameSnapshot, PlayerState
from server.game_state import AuthoritativeStore


class TestSnapshot(unittest.TestCase):
    """Test snapshot wire dictionaries."""

    def test_player_wire_fields(self):
        self.assertEqual(PlayerState('alice', 3, 4).to_dict(),
                         {'ID': 'alice', 'Linha': 3, 'Col': 4})

    def test_from_dict(self):
        snap = GameSnapshot.from_dict({'Players': {
            'alice': {'ID': 'alice', 'Linha': 3, 'Col': 4},
            'bob': {'ID': 'bob', 'Linha': -1, 'Col': 99},
        }})
        self.assertEqual(len(snap), 2)
        self.assertEqual(snap.get('bob'), PlayerState('bob', -1, 99))

    def test_empty_players(self):
        self.assertEqual(len(GameSnapshot.from_dict({'Players': None})), 0)
        self.assertEqual(len(GameSnapshot.from_dict({})), 0)

    def test_malformed_player(self):
        with self.assertRaises(ValueError):
            GameSnapshot.from_dict({'Players': {'x': {'ID': 'x'}}})
        with self.assertRaises(ValueError):
            GameSnapshot.from_dict(['not', 'a', 'mapping'])

    def test_copy_is_independent(self):
        snap = GameSnapshot({'alice': PlayerState('alice', 1, 1)})
        dup = snap.copy()
        dup.players['alice'].row = 50
        self.assertEqual(snap.get('alice').row, 1)


class TestAuthoritativeStore(unittest.TestCase):
    """Test registration, exactly-once moves and snapshot isolation."""

    def setUp(self):
        self.store = AuthoritativeStore()

    def position(self, player_id):
        p = self.store.get_game_state().get(player_id)
        return None if p is None else (p.row, p.col)

    def test_register_places_player_at_origin(self):
        self.assertTrue(self.store.register_player('alice'))
        self.assertEqual(self.position('alice'), (0, 0))

    def test_register_empty_id_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            self.store.register_player('')
        self.assertEqual(len(self.store.get_game_state()), 0)

    def test_reregister_keeps_position(self):
        """Registering twice never duplicates or resets a moved player."""
        self.store.register_player('alice')
        self.store.update_player_state('alice', 7, 8, 1)
        self.assertTrue(self.store.register_player('alice'))
        snap = self.store.get_game_state()
        self.assertEqual(len(snap), 1)
        self.assertEqual(self.position('alice'), (7, 8))

    def test_duplicate_move_not_applied(self):
        self.store.register_player('alice')
        self.assertTrue(self.store.update_player_state('alice', 3, 4, 1))
        before = self.store.get_game_state().to_dict()
        self.assertFalse(self.store.update_player_state('alice', 3, 4, 1))
        self.assertEqual(self.store.get_game_state().to_dict(), before)

    def test_stale_seq_cannot_resurrect_old_position(self):
        self.store.update_player_state('alice', 1, 1, 5)
        self.assertFalse(self.store.update_player_state('alice', 9, 9, 4))
        self.assertFalse(self.store.update_player_state('alice', 9, 9, 5))
        self.assertEqual(self.position('alice'), (1, 1))

    def test_update_empty_id_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            self.store.update_player_state('', 1, 1, 1)

    def test_seq_zero_never_applied(self):
        """Absent watermark counts as 0, so seq must be at least 1."""
        self.assertFalse(self.store.update_player_state('alice', 1, 1, 0))
        self.assertIsNone(self.position('alice'))

    def test_move_for_unregistered_player_creates_entry(self):
        self.assertTrue(self.store.update_player_state('carol', 2, 3, 1))
        self.assertEqual(self.position('carol'), (2, 3))

    def test_coordinates_accepted_verbatim(self):
        self.assertTrue(self.store.update_player_state('alice', -40, 10 ** 6, 1))
        self.assertEqual(self.position('alice'), (-40, 10 ** 6))

    def test_largest_seq_wins_regardless_of_order(self):
        """The stored position is the one from the largest accepted seq."""
        rng = random.Random(1234)
        moves = [(seq, seq * 10, seq * 10 + 1) for seq in range(1, 60)]
        deliveries = moves * 3
        rng.shuffle(deliveries)
        for seq, row, col in deliveries:
            self.store.update_player_state('alice', row, col, seq)
        max_seq = max(m[0] for m in moves)
        applied_last = self.store.update_player_state('alice', 0, 0, max_seq)
        self.assertFalse(applied_last)
        self.assertEqual(self.position('alice'), (max_seq * 10, max_seq * 10 + 1))

    def test_unregister_unknown_is_noop(self):
        self.store.register_player('alice')
        before = self.store.get_game_state().to_dict()
        self.store.unregister_player('nobody')
        self.assertEqual(self.store.get_game_state().to_dict(), before)

    def test_unregister_keeps_sequence_watermark(self):
        """A stale retransmission after leaving is still deduplicated."""
        self.store.update_player_state('alice', 3, 4, 2)
        self.store.unregister_player('alice')
        self.assertIsNone(self.position('alice'))
        self.assertFalse(self.store.update_player_state('alice', 3, 4, 2))
        self.assertIsNone(self.position('alice'))
        self.assertTrue(self.store.update_player_state('alice', 5, 5, 3))

    def test_snapshot_is_a_copy(self):
        self.store.update_player_state('alice', 3, 4, 1)
        snap = self.store.get_game_state()
        snap.players['alice'].row = 100
        snap.players['mallory'] = PlayerState('mallory', 0, 0)
        again = self.store.get_game_state()
        self.assertEqual(self.position('alice'), (3, 4))
        self.assertNotIn('mallory', again)


class TestStoreConcurrency(unittest.TestCase):
    """The store stays consistent under concurrent callers."""

    def test_same_move_applied_exactly_once(self):
        store = AuthoritativeStore()
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(16)

        def deliver():
            barrier.wait()
            applied = store.update_player_state('alice', 3, 4, 1)
            with lock:
                results.append(applied)

        threads = [threading.Thread(target=deliver) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results.count(True), 1)
        self.assertEqual(results.count(False), 15)

    def test_many_players_many_duplicates(self):
        store = AuthoritativeStore()
        players = [f'p{i}' for i in range(8)]

        def hammer(pid, seed):
            rng = random.Random(seed)
            deliveries = [(seq, seq, -seq) for seq in range(1, 101)] * 2
            rng.shuffle(deliveries)
            for seq, row, col in deliveries:
                store.update_player_state(pid, row, col, seq)

        threads = [threading.Thread(target=hammer, args=(pid, i))
                   for i, pid in enumerate(players)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = store.get_game_state()
        for pid in players:
            self.assertEqual((snap.get(pid).row, snap.get(pid).col), (100, -100))


if __name__ == '__main__':
    unittest.main()
