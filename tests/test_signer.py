"""Tests for the two-party MuSig signer."""

import pytest
from nacl.signing import SigningKey, VerifyKey

from musig_swap.errors import ProtocolSequenceError, VerificationError
from musig_swap.signer import (
    ThresholdSigner,
    message_hash,
    pubkey_hash,
    public_key,
    secret_scalar,
    sign_single,
    verify_signature,
)


def make_signers(n: int = 1):
    """Two signers that have completed both nonce rounds."""
    keys = [SigningKey(bytes([i + 1]) * 32) for i in range(2)]
    pubkeys = [public_key(k) for k in keys]
    signers = [ThresholdSigner(pubkeys, position, n) for position in (0, 1)]

    pre = [s.compute_precommitments() for s in signers]
    commitments = [
        signers[0].receive_precommitments(pre[0], pre[1]),
        signers[1].receive_precommitments(pre[1], pre[0]),
    ]
    signers[0].receive_commitments(commitments[0], commitments[1])
    signers[1].receive_commitments(commitments[1], commitments[0])
    return keys, signers


def sign_both(keys, signers, message: bytes, slot: int) -> list[bytes]:
    return [
        signer.sign(secret_scalar(key), message, slot)
        for key, signer in zip(keys, signers)
    ]


class TestThresholdSigner:
    """Test the signing rounds."""

    def test_aggregate_key_is_shared(self):
        keys, signers = make_signers()
        assert signers[0].aggregate_pubkey() == signers[1].aggregate_pubkey()

    def test_aggregate_key_depends_on_key_order(self):
        pubkeys = [public_key(SigningKey(bytes([i + 1]) * 32)) for i in range(2)]
        forward = ThresholdSigner(pubkeys, 0).aggregate_pubkey()
        backward = ThresholdSigner(list(reversed(pubkeys)), 0).aggregate_pubkey()
        assert forward != backward

    def test_combined_signature_verifies(self):
        keys, signers = make_signers()
        message = b"transfer 1 ETH"

        shares = sign_both(keys, signers, message, 0)
        signature = signers[0].combine(shares, 0)

        assert signers[0].verify(message, signature)
        assert signers[1].combine(shares, 0) == signature
        # Plain Ed25519 under the aggregate key
        VerifyKey(signers[0].aggregate_pubkey()).verify(message_hash(message), signature)

    def test_share_from_another_slot_fails(self):
        keys, signers = make_signers(n=2)
        first, second = b"first message", b"second message"

        slot0 = sign_both(keys, signers, first, 0)
        slot1 = sign_both(keys, signers, second, 1)

        assert signers[0].verify(first, signers[0].combine(slot0, 0))
        assert signers[0].verify(second, signers[0].combine(slot1, 1))
        mixed = signers[0].combine([slot0[0], slot1[1]], 0)
        assert not signers[0].verify(first, mixed)

    def test_signature_for_other_message_fails(self):
        keys, signers = make_signers()
        signature = signers[0].combine(sign_both(keys, signers, b"pay alice", 0), 0)
        assert not signers[0].verify(b"pay mallory", signature)

    def test_tampered_share_fails(self):
        keys, signers = make_signers()
        message = b"swap"
        shares = sign_both(keys, signers, message, 0)

        tampered = bytearray(shares[1])
        tampered[0] ^= 0x01
        signature = signers[0].combine([shares[0], bytes(tampered)], 0)

        assert not signers[0].verify(message, signature)

    def test_precommitments_only_once(self):
        pubkeys = [public_key(SigningKey.generate()) for _ in range(2)]
        signer = ThresholdSigner(pubkeys, 0)
        signer.compute_precommitments()

        with pytest.raises(ProtocolSequenceError):
            signer.compute_precommitments()

    def test_sign_before_round_two(self):
        key = SigningKey.generate()
        pubkeys = [public_key(key), public_key(SigningKey.generate())]
        signer = ThresholdSigner(pubkeys, 0)
        signer.compute_precommitments()

        with pytest.raises(ProtocolSequenceError):
            signer.sign(secret_scalar(key), b"too early", 0)

    def test_slot_signs_once(self):
        keys, signers = make_signers()
        signers[0].sign(secret_scalar(keys[0]), b"once", 0)

        with pytest.raises(ProtocolSequenceError):
            signers[0].sign(secret_scalar(keys[0]), b"twice", 0)

    def test_combine_before_signing(self):
        keys, signers = make_signers()
        with pytest.raises(ProtocolSequenceError):
            signers[0].combine([bytes(32), bytes(32)], 0)

    def test_wrong_private_key(self):
        keys, signers = make_signers()
        with pytest.raises(ValueError):
            signers[0].sign(secret_scalar(keys[1]), b"message", 0)

    def test_commitment_must_match_precommitment(self):
        keys = [SigningKey.generate() for _ in range(2)]
        pubkeys = [public_key(k) for k in keys]
        signers = [ThresholdSigner(pubkeys, position) for position in (0, 1)]
        pre = [s.compute_precommitments() for s in signers]
        ours = signers[0].receive_precommitments(pre[0], pre[1])
        theirs = signers[1].receive_precommitments(pre[1], pre[0])

        forged = [public_key(SigningKey.generate())]
        with pytest.raises(VerificationError):
            signers[0].receive_commitments(ours, forged)
        # Still waiting for the genuine commitment
        signers[0].receive_commitments(ours, theirs)

    def test_commitments_out_of_order(self):
        pubkeys = [public_key(SigningKey.generate()) for _ in range(2)]
        signer = ThresholdSigner(pubkeys, 0)
        signer.compute_precommitments()

        with pytest.raises(ProtocolSequenceError):
            signer.receive_commitments([bytes(32)], [bytes(32)])

    def test_misaligned_values(self):
        pubkeys = [public_key(SigningKey.generate()) for _ in range(2)]
        signer = ThresholdSigner(pubkeys, 0, n=2)
        ours = signer.compute_precommitments()

        with pytest.raises(ProtocolSequenceError):
            signer.receive_precommitments(ours, ours[:1])

    @pytest.mark.parametrize(
        "count, position, n",
        [(1, 0, 1), (3, 0, 1), (2, 2, 1), (2, -1, 1), (2, 0, 0)],
    )
    def test_invalid_arguments(self, count, position, n):
        pubkeys = [public_key(SigningKey.generate()) for _ in range(count)]
        with pytest.raises(ValueError):
            ThresholdSigner(pubkeys, position, n)


class TestKeyHelpers:
    """Test single-key helpers."""

    def test_pubkey_hash_format(self):
        key_hash = pubkey_hash(public_key(SigningKey.generate()))
        assert key_hash.startswith("sync:")
        assert len(key_hash) == len("sync:") + 40

    def test_single_signature(self):
        key = SigningKey.generate()
        signature = sign_single(key, b"hello")

        assert verify_signature(public_key(key), b"hello", signature)
        assert not verify_signature(public_key(key), b"goodbye", signature)
