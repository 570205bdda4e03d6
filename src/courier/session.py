"""
Courier - Session key store and per-connection session context.

The SessionKeyStore maps a peer id to the symmetric keys used with that
peer. Keys are directional:

- outbound: the key this participant generated and sent to the peer
- inbound:  the key the peer generated and sent to us

Encryption prefers outbound and falls back to inbound; decryption prefers
inbound and falls back to outbound. With a single initiator both sides
therefore use one shared key. When both sides initiate at once each
direction keeps its own key and stays decryptable by its reader.

Nothing here is ever persisted. SessionContext.destroy() drops every key
when the relay connection ends.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from .crypto import SessionKey
from .errors import ErrorCode, MalformedKey, SessionError
from .identity import IdentityKeyManager, PublicKey, import_public_key
from .protocol import PeerIdentity
from .utils import short_id

logger = logging.getLogger(__name__)

Initiator = Callable[[str, PublicKey], Awaitable[SessionKey]]


class PeerKeyState(Enum):
    """Key establishment state for one peer."""

    NO_KEY = auto()
    KEY_PENDING = auto()  # generated locally, wrapped copy in flight
    ESTABLISHED = auto()


@dataclass
class _PeerKeys:
    outbound: Optional[SessionKey] = None
    inbound: Optional[SessionKey] = None
    state: PeerKeyState = PeerKeyState.NO_KEY


class SessionKeyStore:
    """Per-peer session keys for one connection.

    Attributes:
        initiator: Coroutine function run by ensure() when a peer has no
            key yet; wired by KeyExchangeProtocol
    """

    def __init__(self):
        self._keys: Dict[str, _PeerKeys] = {}
        self.initiator: Optional[Initiator] = None

    def __contains__(self, peer_id: str) -> bool:
        return self.get(peer_id) is not None

    def __len__(self) -> int:
        return sum(1 for entry in self._keys.values() if entry.outbound or entry.inbound)

    def get(self, peer_id: str) -> Optional[SessionKey]:
        """Key to encrypt messages for the peer, or None."""
        entry = self._keys.get(peer_id)
        if entry is None:
            return None
        return entry.outbound or entry.inbound

    def inbound(self, peer_id: str) -> Optional[SessionKey]:
        """Key to decrypt messages from the peer, or None."""
        entry = self._keys.get(peer_id)
        if entry is None:
            return None
        return entry.inbound or entry.outbound

    def state(self, peer_id: str) -> PeerKeyState:
        entry = self._keys.get(peer_id)
        return entry.state if entry else PeerKeyState.NO_KEY

    def install(self, peer_id: str, key: SessionKey) -> None:
        """Store the key a peer sent us. Last write wins."""
        entry = self._keys.setdefault(peer_id, _PeerKeys())
        if entry.inbound is not None and entry.inbound != key:
            logger.info(f"Replacing session key from {short_id(peer_id)}")
        entry.inbound = key
        entry.state = PeerKeyState.ESTABLISHED

    def begin_outbound(self, peer_id: str, key: SessionKey) -> None:
        """Store a key we generated; usable at once, before the peer has it."""
        entry = self._keys.setdefault(peer_id, _PeerKeys())
        entry.outbound = key
        if entry.state != PeerKeyState.ESTABLISHED:
            entry.state = PeerKeyState.KEY_PENDING

    def mark_established(self, peer_id: str) -> None:
        entry = self._keys.get(peer_id)
        if entry is not None:
            entry.state = PeerKeyState.ESTABLISHED

    async def ensure(self, peer_id: str, peer_public_key: PublicKey) -> SessionKey:
        """
        Return the encryption key for a peer, creating one if needed.

        A missing key triggers the initiator path of the key exchange and
        the new key is returned without waiting for the peer.

        Raises:
            SessionError: If no initiator has been wired
        """
        key = self.get(peer_id)
        if key is not None:
            return key

        if self.initiator is None:
            raise SessionError(message="No key exchange initiator configured")

        return await self.initiator(peer_id, peer_public_key)

    def forget(self, peer_id: str) -> None:
        self._keys.pop(peer_id, None)

    def clear(self) -> None:
        self._keys.clear()


@dataclass
class KnownPeer:
    """A presence entry plus its imported key, if it parsed."""

    identity: PeerIdentity
    public_key: Optional[PublicKey] = None

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def username(self) -> str:
        return self.identity.username

    @property
    def messaging_enabled(self) -> bool:
        return self.public_key is not None


class SessionContext:
    """
    All mutable state of one relay connection.

    Owned by the connection lifecycle and handed to the key exchange and
    the router; destroy() is called on disconnect.
    """

    def __init__(self, username: str, uid: str, identity: IdentityKeyManager):
        self.username = username
        self.uid = uid
        self.identity = identity
        self.keys = SessionKeyStore()
        self.peers: Dict[str, KnownPeer] = {}
        self.selected_peer_id: Optional[str] = None
        self.connected = False

    def replace_peers(self, users: Iterable[PeerIdentity]) -> List[KnownPeer]:
        """
        Replace the known peer set with a new presence snapshot.

        Each public key is imported up front; a malformed key leaves that
        peer listed but with messaging disabled. Session keys of a peer
        whose public key changed are dropped.

        Returns:
            The new peer list in snapshot order, self excluded
        """
        previous = self.peers
        peers: Dict[str, KnownPeer] = {}

        for user in users:
            if user.id == self.uid:
                continue

            peer = KnownPeer(identity=user)
            try:
                peer.public_key = import_public_key(user.public_key)
            except MalformedKey as e:
                logger.warning(
                    f"Disabling messaging to {user.username} ({short_id(user.id)}): {e.message}"
                )

            old = previous.get(user.id)
            if old is not None and old.identity.public_key != user.public_key:
                logger.info(f"Public key of {short_id(user.id)} changed, dropping session keys")
                self.keys.forget(user.id)

            peers[user.id] = peer

        self.peers = peers

        if self.selected_peer_id is not None and self.selected_peer_id not in peers:
            logger.info(f"Selected peer {short_id(self.selected_peer_id)} left")
            self.selected_peer_id = None

        return list(peers.values())

    def get_peer(self, peer_id: str) -> KnownPeer:
        """
        Look up a peer that can be messaged.

        Raises:
            SessionError: If the peer is unknown or its key was rejected
        """
        peer = self.peers.get(peer_id)
        if peer is None:
            raise SessionError(
                ErrorCode.E301_UNKNOWN_PEER, f"Unknown peer: {peer_id}", {"peer_id": peer_id}
            )
        if not peer.messaging_enabled:
            raise SessionError(
                ErrorCode.E302_PEER_DISABLED,
                f"Messaging to {peer.username} is disabled (malformed public key)",
                {"peer_id": peer_id},
            )
        return peer

    def find_peer(self, name_or_id: str) -> Optional[KnownPeer]:
        """Resolve a peer by exact id, id prefix, or username."""
        if name_or_id in self.peers:
            return self.peers[name_or_id]

        by_name = [p for p in self.peers.values() if p.username == name_or_id]
        if len(by_name) == 1:
            return by_name[0]

        by_prefix = [p for p in self.peers.values() if p.id.startswith(name_or_id)]
        if len(by_prefix) == 1:
            return by_prefix[0]

        return None

    def display_name(self, peer_id: Optional[str]) -> str:
        if peer_id == self.uid:
            return self.username
        peer = self.peers.get(peer_id) if peer_id else None
        if peer is not None:
            return peer.username
        return short_id(peer_id) if peer_id else "unknown"

    def destroy(self) -> None:
        """Discard every key and all peer state of this connection."""
        self.keys.clear()
        self.peers = {}
        self.selected_peer_id = None
        self.connected = False
        self.identity.discard()
        logger.info("Session context destroyed, all keys discarded")
