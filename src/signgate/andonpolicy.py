"""
Andon-cord policy: one flag that, while set, refuses every transaction.

The flag is loaded from the freshly fetched PolicyConfig on each request;
the persistent "pull the cord" / "reset" path writes the configuration
store (see ``GatekeeperService.halt_wallet``).
"""
from __future__ import annotations

import logging
from typing import Optional

from .policy import PolicyConfig, PolicyViolation, ViolationKind
from .psbtio import CandidateTransaction

logger = logging.getLogger(__name__)


class AndonPolicy:
    name = "andon"

    def __init__(self, halted: bool = False) -> None:
        self._halted = bool(halted)

    @classmethod
    def from_config(cls, config: PolicyConfig) -> "AndonPolicy":
        return cls(config.halted)

    @property
    def halted(self) -> bool:
        return self._halted

    def halt(self) -> None:
        self._halted = True

    def reset(self) -> None:
        self._halted = False

    def evaluate(self, tx: CandidateTransaction) -> Optional[PolicyViolation]:
        if self._halted:
            logger.warning("Transaction signing blocked because andon cord has been pulled")
            return PolicyViolation(self.name, ViolationKind.HALTED)
        return None
