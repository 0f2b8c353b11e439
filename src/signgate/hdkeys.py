"""
BIP-32 extended key helpers (syntax checks + non-hardened derivation).

Extended keys are validated here before they are accepted into a cosigner
setup: Base58Check framing via ``base58`` and curve validity via ``coincurve``.
Child derivation only covers what the wallet view needs, namely public
derivation along ``<branch>/<index>`` and the matching private derivation
for signing.
"""
from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable

import base58

SECP256K1_ORDER = int(
    "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16
)
HARDENED = 0x80000000
PAYLOAD_LEN = 78

# version bytes -> key prefix; SLIP-132 Z/V variants are what
# BlueWallet writes for P2WSH multisig
PUBLIC_VERSIONS: Dict[bytes, str] = {
    bytes.fromhex("0488b21e"): "xpub",
    bytes.fromhex("043587cf"): "tpub",
    bytes.fromhex("02aa7ed3"): "Zpub",
    bytes.fromhex("02575483"): "Vpub",
}
PRIVATE_VERSIONS: Dict[bytes, str] = {
    bytes.fromhex("0488ade4"): "xprv",
    bytes.fromhex("04358394"): "tprv",
    bytes.fromhex("02aa7a99"): "Zprv",
    bytes.fromhex("02575048"): "Vprv",
}
PRIVATE_TO_PUBLIC: Dict[bytes, bytes] = {
    bytes.fromhex("0488ade4"): bytes.fromhex("0488b21e"),
    bytes.fromhex("04358394"): bytes.fromhex("043587cf"),
    bytes.fromhex("02aa7a99"): bytes.fromhex("02aa7ed3"),
    bytes.fromhex("02575048"): bytes.fromhex("02575483"),
}

# SLIP-132 multisig versions -> the BIP-32 versions descriptors accept
SLIP132_TO_STANDARD: Dict[bytes, bytes] = {
    bytes.fromhex("02aa7ed3"): bytes.fromhex("0488b21e"),
    bytes.fromhex("02575483"): bytes.fromhex("043587cf"),
    bytes.fromhex("02aa7a99"): bytes.fromhex("0488ade4"),
    bytes.fromhex("02575048"): bytes.fromhex("04358394"),
}


def _imp_coincurve():
    import importlib
    return importlib.import_module('coincurve')


def _hmac_sha512(key: bytes, data: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha512).digest()


def ckd_pub(pubkey: bytes, chain_code: bytes, index: int):
    """Public parent -> public child (non-hardened only). Returns (pubkey, chain_code)."""
    if index >= HARDENED:
        raise ValueError("cannot derive a hardened child from a public key")
    digest = _hmac_sha512(chain_code, pubkey + index.to_bytes(4, 'big'))
    tweak, child_chain = digest[:32], digest[32:]
    PublicKey = _imp_coincurve().PublicKey
    child = PublicKey(pubkey).add(tweak)
    return child.format(compressed=True), child_chain


def ckd_priv(secret: bytes, chain_code: bytes, index: int):
    """Private parent -> private child. Returns (secret, chain_code)."""
    PrivateKey = _imp_coincurve().PrivateKey
    parent = PrivateKey(secret)
    if index >= HARDENED:
        data = b"\x00" + secret + index.to_bytes(4, 'big')
    else:
        data = parent.public_key.format(compressed=True) + index.to_bytes(4, 'big')
    digest = _hmac_sha512(chain_code, data)
    tweak, child_chain = digest[:32], digest[32:]
    return parent.add(tweak).secret, child_chain


@dataclass(frozen=True)
class ExtendedKey:
    """Decoded BIP-32 extended key.

    Attributes:
        version: 4 version bytes (xpub/xprv/tpub/...).
        depth: derivation depth.
        parent_fingerprint: 4 bytes.
        child_number: index this key was derived at.
        chain_code: 32 bytes.
        key_data: 33 bytes; 0x00||secret for private keys, compressed point otherwise.
    """
    version: bytes
    depth: int
    parent_fingerprint: bytes
    child_number: int
    chain_code: bytes
    key_data: bytes

    @property
    def is_private(self) -> bool:
        return self.version in PRIVATE_VERSIONS

    @property
    def public_key(self) -> bytes:
        if not self.is_private:
            return self.key_data
        PrivateKey = _imp_coincurve().PrivateKey
        return PrivateKey(self.key_data[1:]).public_key.format(compressed=True)

    @property
    def secret(self) -> bytes:
        if not self.is_private:
            raise ValueError("public extended key has no secret")
        return self.key_data[1:]

    def neuter(self) -> "ExtendedKey":
        if not self.is_private:
            return self
        return ExtendedKey(
            version=PRIVATE_TO_PUBLIC[self.version],
            depth=self.depth,
            parent_fingerprint=self.parent_fingerprint,
            child_number=self.child_number,
            chain_code=self.chain_code,
            key_data=self.public_key,
        )

    def canonical(self) -> "ExtendedKey":
        """Same key re-encoded with its xpub/xprv/tpub/tprv version."""
        version = SLIP132_TO_STANDARD.get(self.version)
        if version is None:
            return self
        return replace(self, version=version)

    def matches(self, other: "ExtendedKey") -> bool:
        """True when both keys are the same node, whatever their private/public form."""
        a, b = self.neuter(), other.neuter()
        return (
            a.depth == b.depth
            and a.parent_fingerprint == b.parent_fingerprint
            and a.child_number == b.child_number
            and a.chain_code == b.chain_code
            and a.key_data == b.key_data
        )

    def derive_pubkey(self, indices: Iterable[int]) -> bytes:
        """Compressed public key at the given non-hardened relative path."""
        pub, chain = self.public_key, self.chain_code
        for index in indices:
            pub, chain = ckd_pub(pub, chain, index)
        return pub

    def derive_secret(self, indices: Iterable[int]) -> bytes:
        """32-byte secret at the given relative path (private keys only)."""
        secret, chain = self.secret, self.chain_code
        for index in indices:
            secret, chain = ckd_priv(secret, chain, index)
        return secret

    def serialize(self) -> bytes:
        return (
            self.version
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.child_number.to_bytes(4, 'big')
            + self.chain_code
            + self.key_data
        )

    def to_base58(self) -> str:
        return base58.b58encode_check(self.serialize()).decode('ascii')

    def __str__(self) -> str:
        return self.to_base58()


def decode_extended_key(text: str) -> ExtendedKey:
    """Decode and validate an extended key string.

    Raises:
        ValueError with a short reason when the string is not a well-formed
        extended key (bad Base58Check, wrong length, unknown version,
        off-curve point or out-of-range secret).
    """
    if not text or text != text.strip():
        raise ValueError("extended key must be a non-empty string without surrounding whitespace")
    try:
        raw = base58.b58decode_check(text)
    except ValueError as exc:
        raise ValueError(f"extended key is not valid Base58Check: {exc}") from exc
    if len(raw) != PAYLOAD_LEN:
        raise ValueError(f"extended key payload must be {PAYLOAD_LEN} bytes (got {len(raw)})")
    key = ExtendedKey(
        version=raw[0:4],
        depth=raw[4],
        parent_fingerprint=raw[5:9],
        child_number=int.from_bytes(raw[9:13], 'big'),
        chain_code=raw[13:45],
        key_data=raw[45:78],
    )
    _validate(key)
    return key


def _validate(key: ExtendedKey) -> None:
    if key.version not in PUBLIC_VERSIONS and key.version not in PRIVATE_VERSIONS:
        raise ValueError(f"unknown extended key version {key.version.hex()}")
    if key.depth == 0 and (key.parent_fingerprint != b"\x00" * 4 or key.child_number != 0):
        raise ValueError("master key must have zero parent fingerprint and child number")
    cc: Any = _imp_coincurve()
    if key.is_private:
        if key.key_data[0] != 0:
            raise ValueError("private key data must start with 0x00")
        secret = int.from_bytes(key.key_data[1:], 'big')
        if not 0 < secret < SECP256K1_ORDER:
            raise ValueError("private key is out of range")
    else:
        if key.key_data[0] not in (2, 3):
            raise ValueError("public key must be a compressed point")
        try:
            cc.PublicKey(key.key_data)
        except ValueError as exc:
            raise ValueError(f"public key is not on secp256k1: {exc}") from exc
