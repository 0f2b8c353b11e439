"""
Wallet capability: script ownership, signing and key generation.

``MultisigWalletView`` answers "is this output script ours" by deriving the
sortedmulti P2WSH scripts for the first ``lookahead`` indices of both
branches (BIP-32 public derivation over coincurve). PSBT signing, address
rendering and seed generation are delegated to python-bitcointx and
mnemonic, imported lazily like the PSBT helpers.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .descriptor import Branch, CosignerSetup, DerivationPath
from .errors import ConfigurationError, MalformedTransactionError, SigningError
from .hdkeys import ExtendedKey, decode_extended_key
from .psbtio import CandidateTransaction, PsbtTransaction, decode_psbt, encode_psbt
from .script import p2wsh_script_pubkey, sortedmulti_witness_script
from .storage import KeyRecord

logger = logging.getLogger(__name__)

DEFAULT_LOOKAHEAD = 100
ENTROPY_BYTES = 32

CHAIN_NAMES: Dict[str, str] = {
    'bitcoin': 'bitcoin',
    'testnet': 'bitcoin/testnet',
    'signet': 'bitcoin/signet',
    'regtest': 'bitcoin/regtest',
}


def _imp_bitcointx():
    import importlib
    return importlib.import_module('bitcointx')


def _imp_core_module():
    import importlib
    return importlib.import_module('bitcointx.core')


def _imp_script_module():
    import importlib
    return importlib.import_module('bitcointx.core.script')


def _imp_key_module():
    import importlib
    return importlib.import_module('bitcointx.core.key')


def _imp_wallet_module():
    import importlib
    return importlib.import_module('bitcointx.wallet')


def _imp_mnemonic():
    import importlib
    return importlib.import_module('mnemonic').Mnemonic


def chain_name(network: str) -> str:
    try:
        return CHAIN_NAMES[network]
    except KeyError:
        raise ConfigurationError(f"unsupported network {network!r} (choose from {', '.join(CHAIN_NAMES)})")


class WalletView(Protocol):
    def is_mine(self, script: bytes) -> bool:
        ...

    def sign(self, tx: Any) -> Any:
        ...

    def receive_address(self, index: int = 0) -> str:
        ...


class WalletBackend(Protocol):
    def wallet_view(self, setup: CosignerSetup) -> WalletView:
        ...

    def decode_transaction(self, text: str) -> CandidateTransaction:
        ...

    def encode_transaction(self, tx: Any) -> str:
        ...

    def generate_key(self, entropy: bytes, derivation_path: DerivationPath) -> KeyRecord:
        ...


class MultisigWalletView:
    """Offline view of a sortedmulti P2WSH wallet built from a CosignerSetup."""

    def __init__(self, setup: CosignerSetup, network: str = 'bitcoin', lookahead: int = DEFAULT_LOOKAHEAD) -> None:
        if lookahead <= 0:
            raise ConfigurationError("lookahead must be positive")
        self.setup = setup
        self.network = network
        self.lookahead = lookahead
        self._keys: List[ExtendedKey] = [decode_extended_key(c.key_material) for c in setup.cosigners]
        self._owned: Optional[Dict[bytes, Tuple[Branch, int]]] = None

    def witness_script(self, branch: int, index: int) -> bytes:
        pubkeys = [k.derive_pubkey([int(branch), index]) for k in self._keys]
        return sortedmulti_witness_script(self.setup.threshold, pubkeys)

    def script_pubkey(self, branch: int, index: int) -> bytes:
        return p2wsh_script_pubkey(self.witness_script(branch, index))

    def _owned_scripts(self) -> Dict[bytes, Tuple[Branch, int]]:
        if self._owned is None:
            owned: Dict[bytes, Tuple[Branch, int]] = {}
            for branch in Branch:
                for index in range(self.lookahead):
                    owned[self.script_pubkey(branch, index)] = (branch, index)
            self._owned = owned
        return self._owned

    def is_mine(self, script: bytes) -> bool:
        return bytes(script) in self._owned_scripts()

    def signing_secrets(self) -> List[bytes]:
        """Child secrets of every private cosigner key across the lookahead window."""
        out: List[bytes] = []
        for key in self._keys:
            if not key.is_private:
                continue
            for branch in Branch:
                for index in range(self.lookahead):
                    out.append(key.derive_secret([int(branch), index]))
        return out

    def sign(self, tx: Any) -> Any:
        secrets = self.signing_secrets()
        if not secrets:
            raise SigningError("wallet holds no private key material")
        key_mod = _imp_key_module()
        keystore = key_mod.KeyStore(*[key_mod.CKey(s) for s in secrets])
        with _imp_bitcointx().ChainParams(chain_name(self.network)):
            result = tx.psbt.sign(keystore)
        if not result.num_inputs_signed:
            raise SigningError("no PSBT input could be signed with this wallet's keys")
        logger.info("signed %d PSBT inputs", result.num_inputs_signed)
        return tx

    def receive_address(self, index: int = 0) -> str:
        spk = self.script_pubkey(Branch.RECEIVE, index)
        script_mod = _imp_script_module()
        with _imp_bitcointx().ChainParams(chain_name(self.network)):
            return str(_imp_wallet_module().CCoinAddress.from_scriptPubKey(script_mod.CScript(spk)))


class BitcoinWalletBackend:
    """WalletBackend over coincurve (ownership) and python-bitcointx (PSBT, keys)."""

    def __init__(self, network: str = 'bitcoin', lookahead: int = DEFAULT_LOOKAHEAD) -> None:
        chain_name(network)
        self.network = network
        self.lookahead = lookahead

    def wallet_view(self, setup: CosignerSetup) -> MultisigWalletView:
        return MultisigWalletView(setup, self.network, self.lookahead)

    def decode_transaction(self, text: str) -> PsbtTransaction:
        try:
            with _imp_bitcointx().ChainParams(chain_name(self.network)):
                return PsbtTransaction(decode_psbt(text))
        except ImportError:
            raise
        except Exception as exc:
            logger.error("Could not decode psbt: %s", exc)
            raise MalformedTransactionError("Could not decode psbt") from exc

    def encode_transaction(self, tx: Any) -> str:
        return encode_psbt(tx.psbt)

    def generate_key(self, entropy: bytes, derivation_path: DerivationPath) -> KeyRecord:
        """Seed record for fresh ``entropy``: BIP-39 mnemonic, master fingerprint, account keys."""
        Mnemonic = _imp_mnemonic()
        words = Mnemonic('english').to_mnemonic(entropy)
        seed = Mnemonic.to_seed(words, passphrase='')
        with _imp_bitcointx().ChainParams(chain_name(self.network)):
            master = _imp_wallet_module().CCoinExtKey.from_seed(seed)
            fingerprint = _imp_core_module().Hash160(master.pub)[:4].hex()
            account = master.derive_path(str(derivation_path))
            xprv, xpub = str(account), str(account.neuter())
        origin = f"[{fingerprint}/{derivation_path.without_root()}]"
        return KeyRecord(
            fingerprint=fingerprint,
            mnemonic=words,
            xprv=origin + xprv,
            xpub=origin + xpub,
        )
