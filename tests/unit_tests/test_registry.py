"""
Session registry tests: ack semantics, per-recipient isolation, cleanup
after disconnect, duplicate names.
"""

import asyncio
import os

from relaychat.crypto.cipher import decrypt
from relaychat.server.registry import Session, SessionRegistry


def _session(name, writer, key=None):
    return Session(display_name=name, key=key or os.urandom(32), writer=writer, peer=f"{name}-peer")


def test_ack_then_copy_for_sender_single_copy_for_others(recording_writer):
    async def scenario():
        registry = SessionRegistry()
        alice = _session("alice", recording_writer())
        bob = _session("bob", recording_writer())
        await registry.register(alice)
        await registry.register(bob)

        delivered = await registry.broadcast("alice", b"[10:00:00] alice: M")
        return (
            delivered,
            await alice.writer.plaintexts(alice.key),
            await bob.writer.plaintexts(bob.key),
        )

    delivered, alice_got, bob_got = asyncio.run(scenario())
    assert delivered == 2
    assert alice_got == [b"", b"[10:00:00] alice: M"]
    assert bob_got == [b"[10:00:00] alice: M"]


def test_each_recipient_gets_its_own_encryption(recording_writer):
    async def scenario():
        registry = SessionRegistry()
        a = _session("a", recording_writer())
        b = _session("b", recording_writer())
        await registry.register(a)
        await registry.register(b)
        await registry.broadcast("nobody", b"hello")
        return a, b, (await a.writer.frames())[0], (await b.writer.frames())[0]

    a, b, a_blob, b_blob = asyncio.run(scenario())
    assert a_blob != b_blob
    assert decrypt(a.key, a_blob) == b"hello"
    assert decrypt(b.key, b_blob) == b"hello"


def test_failed_recipient_does_not_block_others(recording_writer, failing_writer):
    async def scenario():
        registry = SessionRegistry()
        a = _session("A", recording_writer())
        b = _session("B", failing_writer())
        c = _session("C", recording_writer())
        for s in (a, b, c):
            await registry.register(s)

        delivered = await registry.broadcast("A", b"M")
        return delivered, await a.writer.plaintexts(a.key), await c.writer.plaintexts(c.key)

    delivered, a_got, c_got = asyncio.run(scenario())
    assert delivered == 2
    assert a_got == [b"", b"M"]
    assert c_got == [b"M"]


def test_deregistered_session_is_not_written(recording_writer):
    async def scenario():
        registry = SessionRegistry()
        a = _session("A", recording_writer())
        b = _session("B", recording_writer())
        await registry.register(a)
        await registry.register(b)

        assert await registry.deregister("B") == 1
        snapshot = await registry.snapshot()
        await registry.broadcast("A", b"after")
        return snapshot, b.writer.buffer

    snapshot, b_buffer = asyncio.run(scenario())
    assert [s.display_name for s in snapshot] == ["A"]
    assert b_buffer == bytearray()


def test_duplicate_names_allowed_and_removed_together(recording_writer):
    async def scenario():
        registry = SessionRegistry()
        for name in ("x", "y", "x"):
            await registry.register(_session(name, recording_writer()))
        assert len(registry) == 3
        removed = await registry.deregister("x")
        return removed, [s.display_name for s in await registry.snapshot()]

    removed, remaining = asyncio.run(scenario())
    assert removed == 2
    assert remaining == ["y"]


def test_deregister_unknown_name_is_noop(recording_writer):
    async def scenario():
        registry = SessionRegistry()
        await registry.register(_session("a", recording_writer()))
        return await registry.deregister("ghost"), len(registry)

    assert asyncio.run(scenario()) == (0, 1)


def test_snapshot_is_a_copy(recording_writer):
    async def scenario():
        registry = SessionRegistry()
        await registry.register(_session("a", recording_writer()))
        snapshot = await registry.snapshot()
        snapshot.clear()
        return len(registry)

    assert asyncio.run(scenario()) == 1


def test_get_by_name(recording_writer):
    async def scenario():
        registry = SessionRegistry()
        alice = _session("alice", recording_writer())
        await registry.register(alice)
        return await registry.get("alice") is alice, await registry.get("bob")

    assert asyncio.run(scenario()) == (True, None)


def test_broadcast_to_empty_registry():
    assert asyncio.run(SessionRegistry().broadcast("a", b"x")) == 0


def test_concurrent_sends_keep_frames_whole(recording_writer):
    messages = [f"message {i}".encode() * (i + 1) for i in range(30)]

    async def scenario():
        session = _session("s", recording_writer())
        await asyncio.gather(*(session.send(m) for m in messages))
        return await session.writer.plaintexts(session.key)

    assert sorted(asyncio.run(scenario())) == sorted(messages)


def test_concurrent_broadcasts_keep_ack_adjacent(recording_writer):
    async def scenario():
        registry = SessionRegistry()
        alice = _session("alice", recording_writer())
        bob = _session("bob", recording_writer())
        await registry.register(alice)
        await registry.register(bob)
        await asyncio.gather(
            registry.broadcast("alice", b"from alice"),
            registry.broadcast("bob", b"from bob"),
        )
        return await alice.writer.plaintexts(alice.key)

    alice_got = asyncio.run(scenario())
    assert len(alice_got) == 3
    ack_index = alice_got.index(b"")
    assert alice_got[ack_index + 1] == b"from alice"


def test_session_repr_hides_key(recording_writer):
    key = b"\xab" * 32
    session = Session(display_name="alice", key=key, writer=recording_writer())
    assert key.hex() not in repr(session)
    assert repr(key) not in repr(session)
