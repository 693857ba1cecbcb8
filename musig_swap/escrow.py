"""
Escrow account address derivation.

The escrow address is a CREATE2 address: the ledger accepts a ChangePubKey
for it only if recomputing the address from (creator, salt, code hash,
new key hash) lands on the same account. The same inputs are what the
recovery factory would deploy with, so the contract would end up at the
escrow address too.
"""

from Crypto.Hash import keccak

from .models import Create2Data, EscrowDescriptor
from .signer import PUBKEY_HASH_PREFIX


def keccak256(data: bytes) -> bytes:
    """Keccak256 hash."""
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def _address_bytes(address: str) -> bytes:
    raw = bytes.fromhex(address.removeprefix("0x"))
    if len(raw) != 20:
        raise ValueError(f"invalid address: {address}")
    return raw


def to_checksum_address(address: str | bytes) -> str:
    """EIP-55 mixed-case rendering of an address."""
    if isinstance(address, bytes):
        address = address.hex()
    lowered = _address_bytes(address).hex()
    digest = keccak256(lowered.encode("ascii")).hex()
    return "0x" + "".join(
        ch.upper() if int(digest[i], 16) >= 8 else ch for i, ch in enumerate(lowered)
    )


def address_from_pubkey(pubkey: bytes) -> str:
    """Account address of a party key: last 20 bytes of its keccak hash."""
    return to_checksum_address(keccak256(pubkey)[-20:])


def create2_address(creator_address: str, salt: bytes, code_hash: bytes) -> str:
    """keccak(0xff ++ creator ++ salt ++ code_hash)[12:]"""
    if len(salt) != 32 or len(code_hash) != 32:
        raise ValueError("salt and code hash must be 32 bytes")
    preimage = b"\xff" + _address_bytes(creator_address) + salt + code_hash
    return to_checksum_address(keccak256(preimage)[12:])


def _pubkey_hash_bytes(pubkey_hash: str | bytes) -> bytes:
    if isinstance(pubkey_hash, bytes):
        return pubkey_hash
    raw = bytes.fromhex(pubkey_hash.removeprefix(PUBKEY_HASH_PREFIX).removeprefix("0x"))
    if len(raw) != 20:
        raise ValueError(f"invalid pubkey hash: {pubkey_hash}")
    return raw


def derive_escrow(pubkey_hash: str | bytes, create2: Create2Data) -> EscrowDescriptor:
    """
    Salt and address of the escrow account controlled by `pubkey_hash`.

    The salt argument is mixed with the key hash, so the address commits to
    the signing key that will be bound to it.
    """
    salt = keccak256(create2.salt + _pubkey_hash_bytes(pubkey_hash))
    return EscrowDescriptor(
        salt="0x" + salt.hex(),
        address=create2_address(create2.creator_address, salt, create2.code_hash),
    )


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()
