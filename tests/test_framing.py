from __future__ import annotations

from collections import deque
import pathlib
import sys
import unittest

ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from picolink.errors import ResponseTimeout, ResponseTooLarge, TransportFailure
from picolink.framing import DeadlinePolicy, FrameAssembler, collect
from picolink.transport import TransportError, TransportTimeout

SENTINEL = b"_--EOT--_"


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class _ScriptedTransport:
    """Replays chunks; ``None`` entries and an empty queue behave as read timeouts."""

    def __init__(self, chunks: list, clock: _FakeClock | None = None) -> None:
        self.chunks = deque(chunks)
        self.clock = clock or _FakeClock()
        self.reads = 0
        self.timeouts: list[float] = []

    def name(self) -> str:
        return "scripted"

    def write(self, data: bytes) -> None:
        return

    def read(self, max_len: int, timeout: float) -> bytes:
        self.reads += 1
        if not self.chunks or self.chunks[0] is None:
            if self.chunks:
                self.chunks.popleft()
            self.timeouts.append(timeout)
            self.clock.now += timeout
            raise TransportTimeout("no data")

        item = self.chunks.popleft()
        if isinstance(item, Exception):
            raise item
        if len(item) > max_len:
            self.chunks.appendleft(item[max_len:])
            item = item[:max_len]
        return item

    def presence_required(self) -> bool:
        return False

    def set_presence(self, asserted: bool) -> None:
        return

    def close(self) -> None:
        return


def _chunked(data: bytes, size: int) -> list[bytes]:
    return [data[offset : offset + size] for offset in range(0, len(data), size)]


class FrameAssemblerTests(unittest.TestCase):
    def test_feed_returns_none_until_sentinel(self) -> None:
        frames = FrameAssembler(SENTINEL)

        self.assertIsNone(frames.feed(b"hello "))
        self.assertIsNone(frames.feed(b"world_--E"))
        self.assertEqual(frames.feed(b"OT--_trailing"), b"hello world")
        self.assertEqual(len(frames), 0)

    def test_first_sentinel_wins_and_rest_is_discarded(self) -> None:
        frames = FrameAssembler(SENTINEL)
        self.assertEqual(frames.feed(b"one" + SENTINEL + b"two" + SENTINEL), b"one")
        self.assertIsNone(frames.feed(b"next"))
        self.assertEqual(len(frames), 4)

    def test_sentinel_split_into_single_bytes(self) -> None:
        frames = FrameAssembler(SENTINEL)
        result = None
        for value in b"ab" + SENTINEL:
            result = frames.feed(bytes([value]))
        self.assertEqual(result, b"ab")

    def test_empty_chunk_is_ignored(self) -> None:
        frames = FrameAssembler(SENTINEL)
        self.assertIsNone(frames.feed(b""))
        self.assertEqual(len(frames), 0)

    def test_rejects_empty_sentinel(self) -> None:
        with self.assertRaises(ValueError):
            FrameAssembler(b"")

    def test_size_ceiling(self) -> None:
        frames = FrameAssembler(SENTINEL, max_bytes=8)
        self.assertIsNone(frames.feed(b"01234567"))
        with self.assertRaises(ResponseTooLarge):
            frames.feed(b"8")
        self.assertEqual(len(frames), 0)


class CollectTests(unittest.TestCase):
    def test_chunking_does_not_change_the_frame(self) -> None:
        body = b"garbage>>> alpha.txt,beta.py"
        stream = body + SENTINEL + b"\x04\x04>"

        for size in (1, 2, 3, 5, 8, 13, len(stream)):
            with self.subTest(size=size):
                transport = _ScriptedTransport(_chunked(stream, size))
                frame = collect(transport, SENTINEL, DeadlinePolicy(), clock=transport.clock)
                self.assertEqual(frame, body)

    def test_read_size_bounds_each_read(self) -> None:
        body = b"x" * 50
        transport = _ScriptedTransport([body + SENTINEL])
        frame = collect(transport, SENTINEL, DeadlinePolicy(read_size=7), clock=transport.clock)

        self.assertEqual(frame, body)
        self.assertEqual(transport.reads, -(-(len(body) + len(SENTINEL)) // 7))

    def test_read_timeouts_do_not_end_collection(self) -> None:
        transport = _ScriptedTransport([None, None, b"ab", None, b"c" + SENTINEL])
        frame = collect(transport, SENTINEL, DeadlinePolicy(read_timeout=0.5), clock=transport.clock)

        self.assertEqual(frame, b"abc")
        self.assertEqual(transport.reads, 5)
        self.assertEqual(len(transport.timeouts), 3)

    def test_empty_read_is_treated_as_no_data(self) -> None:
        transport = _ScriptedTransport([b"", b"ok" + SENTINEL])
        self.assertEqual(collect(transport, SENTINEL, DeadlinePolicy(), clock=transport.clock), b"ok")

    def test_deadline_without_sentinel_raises_timeout(self) -> None:
        transport = _ScriptedTransport([b"partial output"])
        policy = DeadlinePolicy(read_timeout=0.25, response_timeout=2.0)

        with self.assertRaises(ResponseTimeout):
            collect(transport, SENTINEL, policy, clock=transport.clock)
        self.assertGreaterEqual(transport.clock.now, 2.0)

    def test_last_read_timeout_is_clamped_to_deadline(self) -> None:
        transport = _ScriptedTransport([])
        policy = DeadlinePolicy(read_timeout=0.5, response_timeout=1.25)

        with self.assertRaises(ResponseTimeout):
            collect(transport, SENTINEL, policy, clock=transport.clock)
        self.assertEqual(transport.timeouts, [0.5, 0.5, 0.25])

    def test_transport_error_aborts_immediately(self) -> None:
        cause = TransportError("device unplugged")
        transport = _ScriptedTransport([b"half", cause, b"rest" + SENTINEL])

        with self.assertRaises(TransportFailure) as ctx:
            collect(transport, SENTINEL, DeadlinePolicy(), clock=transport.clock)
        self.assertIs(ctx.exception.__cause__, cause)
        self.assertEqual(transport.reads, 2)

    def test_response_ceiling_is_enforced(self) -> None:
        transport = _ScriptedTransport([b"0123456789" * 4])
        policy = DeadlinePolicy(read_size=16, max_response_bytes=20)

        with self.assertRaises(ResponseTooLarge):
            collect(transport, SENTINEL, policy, clock=transport.clock)


if __name__ == "__main__":
    unittest.main()
