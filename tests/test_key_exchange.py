"""
Courier - Key exchange tests.

Tests for the initiator and responder sides of session key
establishment, including both sides initiating at once.
"""

import pytest

from courier import crypto
from courier.crypto import b64decode
from courier.errors import CryptoError, ErrorCode, SessionError, UnwrapFailed
from courier.key_exchange import KeyExchangeProtocol
from courier.protocol import MessageType, Protocol
from courier.session import PeerKeyState

from conftest import FrameRecorder


@pytest.mark.asyncio
async def test_initiator_sends_wrapped_key(alice, bob, introduce, recorder):
    """Test initiate installs a key and emits one keyExchange frame."""
    introduce(alice, bob)
    exchange = KeyExchangeProtocol(alice, recorder)

    key = await exchange.initiate(bob.uid, alice.peers[bob.uid].public_key)

    assert alice.keys.get(bob.uid) == key
    assert alice.keys.state(bob.uid) == PeerKeyState.ESTABLISHED

    [frame] = recorder.frames
    assert frame.type == MessageType.KEY_EXCHANGE
    assert frame.from_id == alice.uid
    assert frame.to_id == bob.uid
    assert key.export() not in b64decode(frame.content)


@pytest.mark.asyncio
async def test_responder_installs_same_key(alice, bob, introduce, recorder):
    """Test both sides end up with one shared key."""
    introduce(alice, bob)
    KeyExchangeProtocol(alice, recorder)
    responder = KeyExchangeProtocol(bob, FrameRecorder())

    key = await alice.keys.ensure(bob.uid, alice.peers[bob.uid].public_key)
    installed = responder.respond(recorder.frames[0])

    assert installed == key
    assert bob.keys.inbound(alice.uid) == key
    assert bob.keys.get(alice.uid) == key


@pytest.mark.asyncio
async def test_ensure_wired_to_initiator(alice, bob, introduce, recorder):
    """Test the store's ensure runs the handshake only once."""
    introduce(alice, bob)
    KeyExchangeProtocol(alice, recorder)
    public_key = alice.peers[bob.uid].public_key

    await alice.keys.ensure(bob.uid, public_key)
    await alice.keys.ensure(bob.uid, public_key)

    assert len(recorder.frames) == 1


class UnwrappableKey:
    """Public key stand-in whose wrap always fails."""

    def wrap(self, session_key):
        raise CryptoError(ErrorCode.E105_WRAP_FAILED, "Failed to wrap session key")


@pytest.mark.asyncio
async def test_wrap_failure_installs_nothing(alice, bob, introduce, recorder):
    """Test a key that cannot be wrapped is never installed or sent."""
    introduce(alice, bob)
    KeyExchangeProtocol(alice, recorder)

    with pytest.raises(CryptoError) as exc_info:
        await alice.keys.ensure(bob.uid, UnwrappableKey())

    assert exc_info.value.code == ErrorCode.E105_WRAP_FAILED
    assert alice.keys.get(bob.uid) is None
    assert recorder.frames == []

    # A later exchange with the real key still runs
    key = await alice.keys.ensure(bob.uid, alice.peers[bob.uid].public_key)
    assert alice.keys.get(bob.uid) == key
    assert len(recorder.frames) == 1


@pytest.mark.asyncio
async def test_simultaneous_initiation(alice, bob, introduce):
    """Test both directions stay decryptable when both sides initiate."""
    introduce(alice, bob)
    alice_out, bob_out = FrameRecorder(), FrameRecorder()
    alice_exchange = KeyExchangeProtocol(alice, alice_out)
    bob_exchange = KeyExchangeProtocol(bob, bob_out)

    alice_key = await alice.keys.ensure(bob.uid, alice.peers[bob.uid].public_key)
    bob_key = await bob.keys.ensure(alice.uid, bob.peers[alice.uid].public_key)
    assert alice_key != bob_key

    # Frames cross in the relay
    bob_exchange.respond(alice_out.frames[0])
    alice_exchange.respond(bob_out.frames[0])

    to_bob = crypto.encrypt("hi bob", alice.keys.get(bob.uid)).encode()
    to_alice = crypto.encrypt("hi alice", bob.keys.get(alice.uid)).encode()

    assert crypto.decrypt(to_bob, bob.keys.inbound(alice.uid)) == "hi bob"
    assert crypto.decrypt(to_alice, alice.keys.inbound(bob.uid)) == "hi alice"


@pytest.mark.asyncio
async def test_rekey_replaces_inbound(alice, bob, introduce):
    """Test a second keyExchange from the same peer wins."""
    introduce(alice, bob)
    out = FrameRecorder()
    initiator = KeyExchangeProtocol(alice, out)
    responder = KeyExchangeProtocol(bob, FrameRecorder())
    public_key = alice.peers[bob.uid].public_key

    await initiator.initiate(bob.uid, public_key)
    second = await initiator.initiate(bob.uid, public_key)

    for frame in out.frames:
        responder.respond(frame)

    assert bob.keys.inbound(alice.uid) == second


def test_respond_rejects_misaddressed_frame(alice, bob):
    """Test a keyExchange for someone else is refused."""
    responder = KeyExchangeProtocol(bob, FrameRecorder())
    frame = Protocol.create_key_exchange(alice.uid, "f" * 32, "AAAA")

    with pytest.raises(SessionError):
        responder.respond(frame)


def test_respond_rejects_other_frame_types(alice, bob):
    responder = KeyExchangeProtocol(bob, FrameRecorder())
    frame = Protocol.create_chat(alice.uid, bob.uid, "AAAA")

    with pytest.raises(SessionError):
        responder.respond(frame)


@pytest.mark.asyncio
async def test_respond_wrong_recipient_key(alice, bob, eve_identity, introduce, session_key):
    """Test a key wrapped for another identity fails to unwrap and installs nothing."""
    introduce(alice, bob)
    responder = KeyExchangeProtocol(bob, FrameRecorder())
    wrapped = crypto.b64encode(eve_identity.public_key().wrap(session_key))
    frame = Protocol.create_key_exchange(alice.uid, bob.uid, wrapped)

    with pytest.raises(UnwrapFailed):
        responder.respond(frame)

    assert bob.keys.inbound(alice.uid) is None
