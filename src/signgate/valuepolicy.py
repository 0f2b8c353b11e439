"""Per-transaction ceiling on value leaving custody."""
from __future__ import annotations

import logging
from typing import Optional

from .policy import PolicyConfig, PolicyViolation, ViolationKind, normalize_spend_limit
from .psbtio import CandidateTransaction
from .wallet import WalletView

logger = logging.getLogger(__name__)


class ValuePolicy:
    """Rejects a transaction whose outputs to foreign scripts sum above ``max_spend_per_tx``.

    Outputs paying our own scripts (change) are not counted, whatever their value.
    """

    name = "value"

    def __init__(self, max_spend_per_tx: int, wallet: WalletView) -> None:
        self.max_spend_per_tx = normalize_spend_limit(max_spend_per_tx)
        self.wallet = wallet

    @classmethod
    def from_config(cls, config: PolicyConfig, wallet: WalletView) -> "ValuePolicy":
        return cls(config.max_spend_per_tx, wallet)

    def spend_total(self, tx: CandidateTransaction) -> int:
        external = [out for out in tx.outputs if not self.wallet.is_mine(out.script)]
        logger.debug("%d of %d outputs leave the wallet", len(external), len(tx.outputs))
        return sum(out.value for out in external)

    def evaluate(self, tx: CandidateTransaction) -> Optional[PolicyViolation]:
        total = self.spend_total(tx)
        logger.info("Total spend detected: %d", total)
        if total <= self.max_spend_per_tx:
            return None
        logger.warning(
            "Value policy check failed: output total of %d is higher than configured policy limit of %d",
            total, self.max_spend_per_tx,
        )
        return PolicyViolation(
            self.name,
            ViolationKind.SPEND_LIMIT_EXCEEDED,
            {'total': total, 'limit': self.max_spend_per_tx},
        )
