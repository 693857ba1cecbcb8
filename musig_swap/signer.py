"""
Two-party MuSig over Ed25519.

The group arithmetic comes from libsodium through PyNaCl's low-level
bindings; this module only wires those primitives into the signing rounds:

    precommit -> commit -> partial sign -> combine -> verify

One ThresholdSigner holds N independent slot sessions, one per transaction
that will be co-signed. Combined signatures are plain Ed25519 signatures
under the aggregate key, so any Ed25519 verifier accepts them.
"""

import hashlib
import secrets
from enum import IntEnum

from nacl import bindings
from nacl.exceptions import CryptoError
from nacl.signing import SigningKey, VerifyKey

from .errors import ProtocolSequenceError, VerificationError

PUBKEY_HASH_PREFIX = "sync:"


def _reduce(wide: bytes) -> bytes:
    return bindings.crypto_core_ed25519_scalar_reduce(wide)


def _hash_to_scalar(*parts: bytes) -> bytes:
    return _reduce(hashlib.sha512(b"".join(parts)).digest())


def _precommit(commitment: bytes) -> bytes:
    return hashlib.sha256(commitment).digest()


def message_hash(message: bytes) -> bytes:
    """Digest that is actually signed for a serialized transaction."""
    return hashlib.blake2b(message, digest_size=32).digest()


def secret_scalar(signing_key: SigningKey) -> bytes:
    """The Ed25519 secret scalar behind a signing key, reduced mod L."""
    h = bytearray(hashlib.sha512(bytes(signing_key)).digest()[:32])
    h[0] &= 248
    h[31] &= 127
    h[31] |= 64
    return _reduce(bytes(h) + bytes(32))


def public_key(signing_key: SigningKey) -> bytes:
    return bytes(signing_key.verify_key)


def pubkey_hash(pubkey: bytes) -> str:
    """20-byte key hash as stored in a ledger account."""
    return PUBKEY_HASH_PREFIX + hashlib.blake2b(pubkey, digest_size=20).hexdigest()


def sign_single(signing_key: SigningKey, message: bytes) -> bytes:
    """Ordinary single-party signature over a serialized transaction."""
    return signing_key.sign(message_hash(message)).signature


def verify_signature(pubkey: bytes, message: bytes, signature: bytes) -> bool:
    """Check a single-party or combined signature over a serialized transaction."""
    try:
        VerifyKey(pubkey).verify(message_hash(message), signature)
    except CryptoError:
        return False
    return True


def key_coefficients(pubkeys: list[bytes]) -> list[bytes]:
    ell = hashlib.sha512(b"".join(pubkeys)).digest()
    return [_hash_to_scalar(ell, pk) for pk in pubkeys]


def aggregate_pubkey(pubkeys: list[bytes]) -> bytes:
    """Aggregate key of an ordered key list; the same for every caller."""
    points = [
        bindings.crypto_scalarmult_ed25519_noclamp(a, pk)
        for a, pk in zip(key_coefficients(pubkeys), pubkeys)
    ]
    return bindings.crypto_core_ed25519_add(points[0], points[1])


class _Round(IntEnum):
    NEW = 0
    PRECOMMITTED = 1
    COMMITTED = 2
    READY = 3
    SIGNED = 4


class _SlotSession:
    """Signing state of one message."""

    def __init__(self):
        self.round = _Round.NEW
        self.nonce: bytes | None = None
        self.commitment: bytes | None = None
        self.precommitments: list[bytes] = []
        self.aggregate_nonce: bytes | None = None


class ThresholdSigner:
    """
    N parallel two-party MuSig sessions over one ordered key pair.

    Nonces are drawn fresh for every session and erased once used, so a
    session is never reusable: start a new signer for every swap attempt.
    """

    def __init__(self, pubkeys: list[bytes], position: int, n: int = 1):
        if len(pubkeys) != 2:
            raise ValueError("exactly two public keys are required")
        if position not in (0, 1):
            raise ValueError("position must be 0 or 1")
        if n < 1:
            raise ValueError("at least one slot is required")
        self.pubkeys = [bytes(pk) for pk in pubkeys]
        self.position = position
        self.n = n
        self._coefficients = key_coefficients(self.pubkeys)
        self._aggregate = aggregate_pubkey(self.pubkeys)
        self._slots = [_SlotSession() for _ in range(n)]

    @property
    def peer_position(self) -> int:
        return 1 - self.position

    def aggregate_pubkey(self) -> bytes:
        return self._aggregate

    def compute_precommitments(self) -> list[bytes]:
        """Round 1: commit to a fresh nonce for every slot."""
        self._require_all(_Round.NEW, "precommitments were already computed")
        nonces = [_reduce(secrets.token_bytes(64)) for _ in self._slots]
        commitments = [bindings.crypto_scalarmult_ed25519_base_noclamp(r) for r in nonces]
        for slot, r, big_r in zip(self._slots, nonces, commitments):
            slot.nonce = r
            slot.commitment = big_r
            slot.round = _Round.PRECOMMITTED
        return [_precommit(big_r) for big_r in commitments]

    def receive_precommitments(
        self, ours: list[bytes], theirs: list[bytes]
    ) -> list[bytes]:
        """Store both parties' precommitments and reveal our commitments."""
        self._require_all(_Round.PRECOMMITTED, "precommitments not computed yet")
        self._check_aligned(ours, theirs)
        for slot, mine in zip(self._slots, ours):
            if bytes(mine) != _precommit(slot.commitment):
                raise ProtocolSequenceError("precommitments belong to another session")

        for slot, mine, peer in zip(self._slots, ours, theirs):
            ordered = [bytes(mine), bytes(peer)]
            if self.position == 1:
                ordered.reverse()
            slot.precommitments = ordered
            slot.round = _Round.COMMITTED
        return [slot.commitment for slot in self._slots]

    def receive_commitments(self, ours: list[bytes], theirs: list[bytes]):
        """Check the peer's commitments and fix the aggregate nonce per slot."""
        self._require_all(_Round.COMMITTED, "precommitments not received yet")
        self._check_aligned(ours, theirs)

        aggregates = []
        for index, (slot, mine, peer) in enumerate(zip(self._slots, ours, theirs)):
            if bytes(mine) != slot.commitment:
                raise ProtocolSequenceError("commitments belong to another session")
            if _precommit(bytes(peer)) != slot.precommitments[self.peer_position]:
                raise VerificationError(
                    f"commitment for slot {index} does not match its precommitment"
                )
            try:
                aggregates.append(
                    bindings.crypto_core_ed25519_add(slot.commitment, bytes(peer))
                )
            except CryptoError as e:
                raise VerificationError(f"invalid commitment for slot {index}") from e

        for slot, big_r in zip(self._slots, aggregates):
            slot.aggregate_nonce = big_r
            slot.round = _Round.READY

    def sign(self, private_key: bytes, message: bytes, slot: int) -> bytes:
        """Partial signature of `message` in `slot`; each slot signs once."""
        session = self._slot(slot)
        if session.round == _Round.SIGNED:
            raise ProtocolSequenceError(f"slot {slot} has already been signed")
        if session.round != _Round.READY:
            raise ProtocolSequenceError(f"slot {slot} has not completed round 2")
        own_key = self.pubkeys[self.position]
        if bindings.crypto_scalarmult_ed25519_base_noclamp(private_key) != own_key:
            raise ValueError("private key does not match this party's public key")

        challenge = _hash_to_scalar(
            session.aggregate_nonce, self._aggregate, message_hash(message)
        )
        weighted_key = bindings.crypto_core_ed25519_scalar_mul(
            self._coefficients[self.position], private_key
        )
        share = bindings.crypto_core_ed25519_scalar_add(
            session.nonce,
            bindings.crypto_core_ed25519_scalar_mul(challenge, weighted_key),
        )
        session.nonce = None
        session.round = _Round.SIGNED
        return share

    def combine(self, shares: list[bytes], slot: int) -> bytes:
        """Full signature from both shares, ordered by position."""
        session = self._slot(slot)
        if session.round != _Round.SIGNED:
            raise ProtocolSequenceError(f"slot {slot} has no own share yet")
        if len(shares) != 2 or any(len(bytes(s)) != 32 for s in shares):
            raise VerificationError(f"malformed signature shares for slot {slot}")
        total = bindings.crypto_core_ed25519_scalar_add(bytes(shares[0]), bytes(shares[1]))
        return session.aggregate_nonce + total

    def verify(self, message: bytes, signature: bytes) -> bool:
        return verify_signature(self._aggregate, message, signature)

    def _slot(self, index: int) -> _SlotSession:
        if not 0 <= index < self.n:
            raise IndexError(f"slot {index} out of range")
        return self._slots[index]

    def _require_all(self, expected: _Round, message: str):
        if any(slot.round != expected for slot in self._slots):
            raise ProtocolSequenceError(message)

    def _check_aligned(self, ours: list[bytes], theirs: list[bytes]):
        if len(ours) != self.n or len(theirs) != self.n:
            raise ProtocolSequenceError(
                f"expected {self.n} values per party, got {len(ours)} and {len(theirs)}"
            )
