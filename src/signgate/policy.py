"""
Authorization policy model.

A policy looks at a candidate transaction and either approves it (returns
None) or returns a structured ``PolicyViolation``. ``PolicyEngine`` runs
every policy, never stopping at the first failure, so a rejection always
lists every violated constraint. Reason text is rendered only when a
violation is shown to a caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, Tuple, Union

from .errors import ConfigurationError
from .psbtio import CandidateTransaction

logger = logging.getLogger(__name__)

MAX_SPEND_PER_TX = 2**64 - 1  # amounts are unsigned 64-bit satoshis


class ViolationKind(Enum):
    SPEND_LIMIT_EXCEEDED = "spend_limit_exceeded"
    HALTED = "halted"
    POLICY_ERROR = "policy_error"


_MESSAGES: Dict[ViolationKind, str] = {
    ViolationKind.SPEND_LIMIT_EXCEEDED: "Transaction spend total of {total} exceeds policy limit",
    ViolationKind.HALTED: "All transactions have been halted",
    ViolationKind.POLICY_ERROR: "Policy {policy} could not evaluate the transaction",
}


@dataclass(frozen=True)
class PolicyViolation:
    policy: str
    kind: ViolationKind
    params: Mapping[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return _MESSAGES[self.kind].format(policy=self.policy, **self.params)

    def to_dict(self) -> Dict[str, Any]:
        return {'policy': self.policy, 'kind': self.kind.value, 'params': dict(self.params), 'reason': self.message}


class Policy(Protocol):
    """Single read-only authorization check."""

    name: str

    def evaluate(self, tx: CandidateTransaction) -> Optional[PolicyViolation]:
        ...


@dataclass(frozen=True)
class Approved:
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class PolicyRejection:
    """Expected, non-fault outcome listing every violated policy in evaluation order."""
    violations: Tuple[PolicyViolation, ...]
    ok: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if not self.violations:
            raise ValueError("a rejection needs at least one violation")

    @property
    def reasons(self) -> Tuple[str, ...]:
        return tuple(v.message for v in self.violations)


PolicyVerdict = Union[Approved, PolicyRejection]


def normalize_spend_limit(value: Any) -> int:
    """Coerce a spend limit to int and enforce the unsigned 64-bit range."""
    if isinstance(value, bool):
        raise ConfigurationError("max_spend_per_tx must be an integer")
    try:
        n = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("max_spend_per_tx must be an integer") from exc
    if n != value and not isinstance(value, str):
        raise ConfigurationError("max_spend_per_tx must be a whole number of satoshis")
    if n < 0 or n > MAX_SPEND_PER_TX:
        raise ConfigurationError(f"max_spend_per_tx must be between 0 and {MAX_SPEND_PER_TX}")
    return n


@dataclass(frozen=True)
class PolicyConfig:
    """Authorization parameters for one wallet identity.

    Attributes:
        wallet_identity: name derived from the wallet's public descriptors.
        max_spend_per_tx: satoshis allowed to leave custody per transaction.
        halted: andon cord state; when set nothing is signed.
    """
    wallet_identity: str
    max_spend_per_tx: int
    halted: bool

    def __post_init__(self) -> None:
        object.__setattr__(self, 'max_spend_per_tx', normalize_spend_limit(self.max_spend_per_tx))
        if not isinstance(self.halted, bool):
            raise ConfigurationError("halted must be a boolean")

    @classmethod
    def locked(cls, wallet_identity: str) -> "PolicyConfig":
        """Most restrictive config: nothing may leave custody and signing is halted."""
        return cls(wallet_identity, 0, True)

    @classmethod
    def from_record(cls, wallet_identity: str, record: Mapping[str, Any]) -> "PolicyConfig":
        """Build from a stored record, filling absent fields with the restrictive default."""
        if 'max_spend_per_tx' not in record:
            logger.warning("policy config for %s has no max_spend_per_tx; denying all spends", wallet_identity)
        if 'halted' not in record:
            logger.warning("policy config for %s has no halted flag; treating wallet as halted", wallet_identity)
        return cls(
            wallet_identity=wallet_identity,
            max_spend_per_tx=record.get('max_spend_per_tx', 0),
            halted=record.get('halted', True),
        )

    def to_record(self) -> Dict[str, Any]:
        return {'max_spend_per_tx': self.max_spend_per_tx, 'halted': self.halted}


class PolicyEngine:
    """Evaluates an ordered, non-empty set of policies against one transaction."""

    def __init__(self, policies: Sequence[Policy], config: PolicyConfig) -> None:
        if not policies:
            raise ValueError("PolicyEngine needs at least one policy")
        self.policies: Tuple[Policy, ...] = tuple(policies)
        self.config = config

    def evaluate_all(self, tx: CandidateTransaction) -> PolicyVerdict:
        violations = []
        for policy in self.policies:
            name = getattr(policy, 'name', type(policy).__name__)
            try:
                violation = policy.evaluate(tx)
            except Exception:
                # a broken policy must deny, not approve
                logger.exception("policy %s raised while evaluating a transaction", name)
                violation = PolicyViolation(name, ViolationKind.POLICY_ERROR)
            if violation is not None:
                violations.append(violation)
        if violations:
            logger.warning(
                "wallet %s: transaction rejected by %d policies: %s",
                self.config.wallet_identity,
                len(violations),
                "; ".join(v.message for v in violations),
            )
            return PolicyRejection(tuple(violations))
        logger.info("wallet %s: transaction passed %d policies", self.config.wallet_identity, len(self.policies))
        return Approved()
