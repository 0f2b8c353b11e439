"""
Per-request signing flow: lookup wallet -> decode tx -> fresh policy config
-> evaluate every policy -> sign once, or reject without signing.

States
  IDLE -> POLICY_CHECKED -> SIGNED
                         -> REJECTED
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from .andonpolicy import AndonPolicy
from .descriptor import Branch, CosignerSetup, parse_descriptor, wallet_identity
from .errors import MalformedSetupError, StorageError
from .policy import Policy, PolicyConfig, PolicyEngine, PolicyRejection, PolicyViolation
from .storage import BlobStore, ConfigStore, WalletExport, wallet_export_key
from .valuepolicy import ValuePolicy
from .wallet import WalletBackend, WalletView

logger = logging.getLogger(__name__)


class SigningState(Enum):
    IDLE = "idle"
    POLICY_CHECKED = "policy_checked"
    SIGNED = "signed"
    REJECTED = "rejected"


class SignResult(NamedTuple):
    ok: bool
    signed_transaction: Optional[str]
    violations: Tuple[PolicyViolation, ...]

    @property
    def reasons(self) -> Tuple[str, ...]:
        return tuple(v.message for v in self.violations)

    def to_response(self) -> Dict[str, Any]:
        if self.ok:
            return {'ok': True, 'signed_transaction': self.signed_transaction}
        return {
            'ok': False,
            'reasons': list(self.reasons),
            'violations': [v.to_dict() for v in self.violations],
        }


def build_policies(config: PolicyConfig, wallet: WalletView) -> List[Policy]:
    """Policy set applied to every signing request, in evaluation order."""
    return [
        ValuePolicy.from_config(config, wallet),
        AndonPolicy.from_config(config),
    ]


def load_signing_setup(blob_store: BlobStore, key_name: str) -> Tuple[CosignerSetup, str]:
    """Signing-capable setup and wallet identity from the stored wallet export."""
    data = blob_store.get(wallet_export_key(key_name))
    if data is None:
        logger.error("No wallet export stored for %s", key_name)
        raise StorageError("Could not get wallet from storage")
    export = WalletExport.from_json(data)
    try:
        setup, branch = parse_descriptor(export.descriptor)
    except MalformedSetupError as exc:
        logger.error("Could not parse stored wallet export for %s: %s", key_name, exc)
        raise StorageError("Could not read saved wallet") from exc
    if branch is not Branch.RECEIVE:
        logger.error("Stored descriptor for %s is not a receive descriptor", key_name)
        raise StorageError("Could not read saved wallet")
    identity = wallet_identity(setup)
    if identity != export.wallet_identity:
        logger.error(
            "Wallet identity mismatch for %s: stored %s, derived %s",
            key_name, export.wallet_identity, identity,
        )
        raise StorageError("Could not read saved wallet")
    return setup, identity


class SigningOrchestrator:
    """Single-use signing request. ``run`` may be called once."""

    def __init__(self, key_name: str, blob_store: BlobStore, config_store: ConfigStore, backend: WalletBackend) -> None:
        self.key_name = key_name
        self.blob_store = blob_store
        self.config_store = config_store
        self.backend = backend
        self._state = SigningState.IDLE

    @property
    def state(self) -> SigningState:
        return self._state

    def _fetch_config(self, identity: str) -> PolicyConfig:
        config = self.config_store.get_policy_config(identity)
        if config is None:
            logger.warning("No policy config for wallet %s; applying locked config", identity)
            return PolicyConfig.locked(identity)
        return config

    def run(self, encoded_transaction: str) -> SignResult:
        if self._state is not SigningState.IDLE:
            raise RuntimeError(f"signing request already ran (state={self._state.value})")

        setup, identity = load_signing_setup(self.blob_store, self.key_name)
        wallet = self.backend.wallet_view(setup)
        tx = self.backend.decode_transaction(encoded_transaction)
        config = self._fetch_config(identity)

        engine = PolicyEngine(build_policies(config, wallet), config)
        verdict = engine.evaluate_all(tx)
        self._state = SigningState.POLICY_CHECKED

        if isinstance(verdict, PolicyRejection):
            self._state = SigningState.REJECTED
            logger.warning("Transaction failed policy checks for %s: %s", self.key_name, list(verdict.reasons))
            return SignResult(False, None, verdict.violations)

        logger.info("Passed policy checks for %s; signing", self.key_name)
        signed = wallet.sign(tx)
        self._state = SigningState.SIGNED
        return SignResult(True, self.backend.encode_transaction(signed), ())
