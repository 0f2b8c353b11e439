import hashlib
from dataclasses import replace
from typing import Dict, List, NamedTuple, Optional, Sequence, Set

from signgate.descriptor import CosignerSetup, DerivationPath
from signgate.errors import MalformedTransactionError
from signgate.hdkeys import HARDENED, ExtendedKey, decode_extended_key
from signgate.psbtio import TxOutput
from signgate.storage import KeyRecord

XPRV_VERSION = bytes.fromhex('0488ade4')
ZPUB_VERSION = bytes.fromhex('02aa7ed3')
TPUB_VERSION = bytes.fromhex('043587cf')

# Real BlueWallet export (public keys only)
BLUEWALLET_SETUP = """# BlueWallet Multisig setup file
# this file contains only public keys and is safe to
# distribute among cosigners
#
Name: test5678
Policy: 2 of 3
Derivation: m/48'/0'/0'/2'
Format: P2WSH

EAB239AA: xpub6E2HG1bNB69EfRnM8vX2vCktifqLHnQH9Har7ZwWegwkss43rEa5EkJnCjiUKMnV5DRKQJUMCaiysNTq12RZ6cffhJbJtXp4atScMDF83SC

F843467D: xpub6EzLSnj1J7ZVK2o4HuU9pwyDfY6uF1wTpSH2g2dZy13oxqyXEJRb44PbeRrcXDaVLFhHq3MVxuzEfiRZBuCcETuNY7z2rNrNudBY7gZrWYu

16EFEC75: xpub6EFHgaRm1rd3AE8DmxXVncR4RcBsirn4ncDc2mW1oCThkQosh7Rdu6SdyugwWBZV97usQf5WwUn89UaH7bVRoZ5NY8sdwpt8H7Zi9ayhLk5

"""


class KeyPair(NamedTuple):
    fingerprint: str
    xprv: str
    xpub: str
    key: ExtendedKey

    def record(self, path: str = "48'/0'/0'/2'") -> KeyRecord:
        """Seed record as create-key stores it (origin prefix, lowercase fingerprint)."""
        origin = f"[{self.fingerprint.lower()}/{path}]"
        return KeyRecord(
            fingerprint=self.fingerprint.lower(),
            mnemonic='abandon ' * 23 + 'art',
            xprv=origin + self.xprv + '/*',
            xpub=origin + self.xpub,
        )


def make_keypair(label: str) -> KeyPair:
    seed = label.encode()
    key = ExtendedKey(
        version=XPRV_VERSION,
        depth=4,
        parent_fingerprint=hashlib.sha256(b'parent' + seed).digest()[:4],
        child_number=HARDENED + 2,
        chain_code=hashlib.sha256(b'chain' + seed).digest(),
        key_data=b'\x00' + hashlib.sha256(b'secret' + seed).digest(),
    )
    fingerprint = hashlib.sha256(b'fp' + seed).hexdigest()[:8].upper()
    return KeyPair(fingerprint, key.to_base58(), key.neuter().to_base58(), key)


def reencode(key_text: str, version: bytes) -> str:
    """Same extended key under another version prefix (Zpub, tpub, ...)."""
    return replace(decode_extended_key(key_text), version=version).to_base58()


def slip132_setup_text(pairs: Sequence[KeyPair], threshold: int = 2) -> str:
    """Setup as BlueWallet writes it for P2WSH multisig, with Zpub keys."""
    text = setup_text(pairs, threshold)
    for p in pairs:
        text = text.replace(p.xpub, reencode(p.xpub, ZPUB_VERSION))
    return text


def setup_text(pairs: Sequence[KeyPair], threshold: int = 2, declared: Optional[int] = None) -> str:
    n = len(pairs) if declared is None else declared
    lines = [
        '# test multisig setup',
        'Name: vault',
        f'Policy: {threshold} of {n}',
        "Derivation: m/48'/0'/0'/2'",
        'Format: P2WSH',
        '',
    ]
    lines += [f'{p.fingerprint}: {p.xpub}' for p in pairs]
    return '\n'.join(lines) + '\n'


class FakeTx:
    def __init__(self, name: str, outputs: Sequence[TxOutput]) -> None:
        self.name = name
        self.outputs = list(outputs)


class FakeView:
    def __init__(self, setup: CosignerSetup, mine: Set[bytes]) -> None:
        self.setup = setup
        self.mine = mine
        self.sign_calls: List[FakeTx] = []

    def is_mine(self, script: bytes) -> bool:
        return bytes(script) in self.mine

    def sign(self, tx: FakeTx) -> FakeTx:
        self.sign_calls.append(tx)
        return tx

    def receive_address(self, index: int = 0) -> str:
        return f'bc1qfake{index}'


class FakeBackend:
    """In-memory stand-in for the PSBT/crypto layer."""

    def __init__(self, generated: Optional[KeyRecord] = None) -> None:
        self.generated = generated
        self.mine: Set[bytes] = {b'\x00\x20' + b'\xcc' * 32}
        self.transactions: Dict[str, FakeTx] = {}
        self.views: List[FakeView] = []
        self.generate_calls: List[bytes] = []

    def add_tx(self, name: str, outputs: Sequence[TxOutput]) -> str:
        self.transactions[name] = FakeTx(name, outputs)
        return name

    def wallet_view(self, setup: CosignerSetup) -> FakeView:
        view = FakeView(setup, self.mine)
        self.views.append(view)
        return view

    def decode_transaction(self, text: str) -> FakeTx:
        try:
            return self.transactions[text]
        except KeyError:
            raise MalformedTransactionError('Could not decode psbt')

    def encode_transaction(self, tx: FakeTx) -> str:
        return f'signed:{tx.name}'

    def generate_key(self, entropy: bytes, derivation_path: DerivationPath) -> KeyRecord:
        self.generate_calls.append(entropy)
        assert self.generated is not None
        return self.generated

    @property
    def sign_calls(self) -> int:
        return sum(len(v.sign_calls) for v in self.views)


CHANGE_SCRIPT = b'\x00\x20' + b'\xcc' * 32
FOREIGN_SCRIPT = b'\x00\x14' + b'\xdd' * 20


class FixedEntropy:
    def random_bytes(self, n: int) -> bytes:
        return b'\x42' * n





