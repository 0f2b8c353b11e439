"""
Request surfaces: create-key, create-wallet, sign, plus the administrative
halt/reset/limit writes. Each call is an independent unit of work; nothing
is cached between calls.
"""
from __future__ import annotations

import logging
import secrets
from typing import Optional, Protocol

from .config import Settings
from .descriptor import (
    DEFAULT_DERIVATION,
    DerivationPath,
    add_checksum,
    parse_setup,
    render_descriptors,
    wallet_identity,
)
from .errors import KeyExistsError, StorageError
from .hexutil import decode_text_payload
from .orchestrator import SignResult, SigningOrchestrator, load_signing_setup
from .policy import PolicyConfig
from .storage import (
    BlobStore,
    ConfigStore,
    FileBlobStore,
    FileConfigStore,
    KeyRecord,
    WalletExport,
    validate_key_name,
    wallet_export_key,
)
from .substitution import substitute_key
from .wallet import ENTROPY_BYTES, BitcoinWalletBackend, WalletBackend

logger = logging.getLogger(__name__)


class EntropySource(Protocol):
    def random_bytes(self, n: int) -> bytes:
        ...


class OsEntropy:
    def random_bytes(self, n: int) -> bytes:
        return secrets.token_bytes(n)


class GatekeeperService:
    def __init__(
        self,
        blob_store: BlobStore,
        config_store: ConfigStore,
        backend: WalletBackend,
        entropy: Optional[EntropySource] = None,
        derivation_path: str = DEFAULT_DERIVATION,
    ) -> None:
        self.blob_store = blob_store
        self.config_store = config_store
        self.backend = backend
        self.entropy = entropy or OsEntropy()
        self.derivation_path = DerivationPath.parse(derivation_path)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatekeeperService":
        return cls(
            blob_store=FileBlobStore(settings.blob_dir),
            config_store=FileConfigStore(settings.policy_file),
            backend=BitcoinWalletBackend(settings.network, settings.lookahead),
            derivation_path=settings.derivation_path,
        )

    def _load_key_record(self, key_name: str) -> KeyRecord:
        data = self.blob_store.get(key_name)
        if data is None:
            logger.error("No seed stored for %s", key_name)
            raise StorageError("Could not get seed from storage")
        return KeyRecord.from_json(data)

    def create_key(self, key_name: str) -> str:
        """Generate and store a fresh seed; return its origin-annotated xpub."""
        validate_key_name(key_name)
        if self.blob_store.get(key_name) is not None:
            raise KeyExistsError(f"a key named {key_name!r} already exists")
        entropy = self.entropy.random_bytes(ENTROPY_BYTES)
        if len(entropy) != ENTROPY_BYTES:
            raise StorageError("Could not get entropy to generate seed")
        record = self.backend.generate_key(entropy, self.derivation_path)
        self.blob_store.put(key_name, record.to_json())
        logger.info("The master fingerprint is %s", record.fingerprint)
        return record.xpub

    def create_wallet(self, key_name: str, encoded_setup: str) -> str:
        """Assemble the multisig wallet around our key; return its first receive address."""
        validate_key_name(key_name)
        setup = parse_setup(decode_text_payload(encoded_setup))
        record = self._load_key_record(key_name)
        signing_setup = substitute_key(setup, record.fingerprint, record.xprv)

        identity = wallet_identity(setup)
        receive, change = render_descriptors(signing_setup)
        wallet = self.backend.wallet_view(signing_setup)
        address = wallet.receive_address(0)

        export = WalletExport(
            descriptor=add_checksum(receive),
            change_descriptor=add_checksum(change),
            label=key_name,
            wallet_identity=identity,
        )
        self.blob_store.put(wallet_export_key(key_name), export.to_json())
        logger.info("Created wallet %s for %s; first address %s", identity, key_name, address)
        return address

    def sign(self, key_name: str, encoded_transaction: str) -> SignResult:
        validate_key_name(key_name)
        orchestrator = SigningOrchestrator(key_name, self.blob_store, self.config_store, self.backend)
        return orchestrator.run(encoded_transaction)

    def wallet_identity(self, key_name: str) -> str:
        validate_key_name(key_name)
        _setup, identity = load_signing_setup(self.blob_store, key_name)
        return identity

    def policy_config(self, key_name: str) -> PolicyConfig:
        identity = self.wallet_identity(key_name)
        return self.config_store.get_policy_config(identity) or PolicyConfig.locked(identity)

    def halt_wallet(self, key_name: str) -> PolicyConfig:
        """Pull the andon cord: every later signing request for this wallet is rejected."""
        identity = self.wallet_identity(key_name)
        config = self.config_store.set_halted(identity, True)
        logger.warning("Andon cord pulled for wallet %s (%s)", identity, key_name)
        return config

    def reset_wallet(self, key_name: str) -> PolicyConfig:
        identity = self.wallet_identity(key_name)
        config = self.config_store.set_halted(identity, False)
        logger.warning("Andon cord reset for wallet %s (%s)", identity, key_name)
        return config

    def set_spend_limit(self, key_name: str, max_spend_per_tx: int) -> PolicyConfig:
        current = self.policy_config(key_name)
        config = PolicyConfig(current.wallet_identity, max_spend_per_tx, current.halted)
        self.config_store.put_policy_config(config)
        logger.info("Spend limit for wallet %s set to %d", config.wallet_identity, config.max_spend_per_tx)
        return config
