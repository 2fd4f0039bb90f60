"""Tests for the play queue: invariants, shuffle, repeat and durations."""

import random

import pytest

from tapedeck.errors import PlaybackFailed
from tapedeck.play_queue import FALLBACK_SONG_DURATION, QueueManager, RepeatMode

from conftest import make_song


def ids(queue):
    return [s.id for s in queue.active]


@pytest.fixture
def queue(songs):
    q = QueueManager(rng=random.Random(7))
    q.set_queue(songs)
    return q


class TestSetQueue:
    def test_starts_at_index(self, songs):
        q = QueueManager()
        assert q.set_queue(songs, 2).id == "s3"
        assert q.index == 2

    def test_start_clamped(self, songs):
        q = QueueManager()
        q.set_queue(songs, 99)
        assert q.index == len(songs) - 1

    def test_empty_raises(self):
        with pytest.raises(PlaybackFailed):
            QueueManager().set_queue([])

    def test_nothing_playable_raises_and_keeps_old_queue(self, queue):
        before = ids(queue)
        with pytest.raises(PlaybackFailed):
            queue.set_queue([make_song(10, playable=False), make_song(11, playable=False)])
        assert ids(queue) == before

    def test_unplayable_start_moves_to_playable(self):
        q = QueueManager()
        q.set_queue([make_song(1, playable=False), make_song(2)], 0)
        assert q.current.id == "s2"

    def test_set_queue_while_shuffled_keeps_start_first(self, songs):
        q = QueueManager(rng=random.Random(1))
        q.toggle_shuffle(True)
        q.set_queue(songs, 3)
        assert q.index == 0
        assert q.current.id == "s4"
        assert [s.id for s in q.original] == [s.id for s in songs]


class TestEndToEnd:
    """[A, B, C] walked through with each repeat mode."""

    def test_repeat_off_stops_at_end(self):
        q = QueueManager()
        q.set_queue([make_song(1), make_song(2), make_song(3)], 0)
        assert q.advance() and q.index == 1
        assert q.advance() and q.index == 2
        assert q.advance() is False
        assert q.index == 2

    def test_repeat_all_wraps(self):
        q = QueueManager()
        q.set_queue([make_song(1), make_song(2), make_song(3)], 2)
        q.set_repeat_mode(RepeatMode.ALL)
        assert q.advance() is True
        assert q.index == 0

    def test_repeat_one_never_moves(self):
        q = QueueManager()
        q.set_queue([make_song(1), make_song(2), make_song(3)], 1)
        q.set_repeat_mode("one")
        for _ in range(5):
            assert q.advance() is True
            assert q.index == 1

    def test_skip_next_at_end_uses_end_policy(self):
        q = QueueManager()
        q.set_queue([make_song(1), make_song(2)], 1)
        assert q.skip_next() is False
        q.set_repeat_mode("all")
        assert q.skip_next() is True
        assert q.index == 0

    def test_skip_previous_at_start_is_noop(self, queue):
        assert queue.skip_previous() is False
        assert queue.index == 0


class TestShuffle:
    def test_round_trip_restores_order(self, queue, songs):
        queue.jump_to(2)
        playing = queue.current.id
        queue.toggle_shuffle(True)
        assert queue.index == 0
        assert queue.current.id == playing
        assert sorted(ids(queue)) == sorted(s.id for s in songs)
        queue.toggle_shuffle(False)
        assert ids(queue) == [s.id for s in songs]
        assert queue.current.id == playing

    def test_round_trip_after_moving(self, queue, songs):
        queue.toggle_shuffle(True)
        queue.skip_next()
        playing = queue.current.id
        queue.toggle_shuffle(False)
        assert ids(queue) == [s.id for s in songs]
        assert queue.current.id == playing

    def test_toggle_same_state_is_noop(self, queue):
        before = ids(queue)
        queue.toggle_shuffle(False)
        assert ids(queue) == before


class TestInvariants:
    """Index stays in range across a random command sequence."""

    def test_random_sequence(self):
        rng = random.Random(1234)
        q = QueueManager(rng=random.Random(99))
        q.set_queue([make_song(i, playable=rng.random() > 0.2 or i == 0) for i in range(8)])
        ops = [
            lambda: q.advance(),
            lambda: q.skip_next(),
            lambda: q.skip_previous(),
            lambda: q.toggle_shuffle(not q.shuffle),
            lambda: q.set_repeat_mode(rng.choice(list(RepeatMode))),
            lambda: q.jump_to(rng.randrange(-1, 10)),
            lambda: q.set_queue([make_song(100 + j) for j in range(rng.randrange(1, 6))],
                                rng.randrange(0, 6)),
        ]
        for _ in range(500):
            rng.choice(ops)()
            assert 0 <= q.index < len(q.active)
            assert q.current.playable
            if not q.shuffle:
                assert q.active == q.original


class TestDurations:
    def test_total_and_elapsed(self):
        q = QueueManager()
        q.set_queue([make_song(1, duration=60), make_song(2, duration=120), make_song(3, duration=30)], 2)
        assert q.total_duration() == 210
        assert q.elapsed_duration(10) == 190

    def test_unknown_durations_fall_back(self):
        q = QueueManager()
        q.set_queue([make_song(1, duration=0), make_song(2, duration=0)])
        assert q.total_duration() == 2 * FALLBACK_SONG_DURATION

    def test_empty_queue(self):
        q = QueueManager()
        assert q.total_duration() == 0
        assert q.elapsed_duration(5) == 0.0
        assert q.current is None


class TestReplaceCurrent:
    def test_swaps_stream(self, queue):
        song = queue.current
        queue.replace_current(song.with_stream("http://transcoded"))
        assert queue.current.stream_url == "http://transcoded"
        assert queue.original[0].stream_url == "http://transcoded"

    def test_rejects_other_song(self, queue):
        with pytest.raises(ValueError):
            queue.replace_current(make_song(42))
