"""
PSBT IO helpers (thin wrappers around python-bitcointx via dynamic import).

Provides functions to decode PSBTs from request text (auto-detect hex vs
base64), encode them back to base64, and read the unsigned transaction's
outputs as plain (script, value) pairs for policy checks.
"""
from __future__ import annotations

import base64
from typing import Any, List, NamedTuple, Optional, Protocol, Sequence

from .hexutil import is_hex_str, parse_hex


class TxOutput(NamedTuple):
    script: bytes
    value: int


class CandidateTransaction(Protocol):
    """Decoded proposed spend as seen by the policies."""

    @property
    def outputs(self) -> Sequence[TxOutput]:
        ...


class PsbtTransaction:
    """CandidateTransaction backed by a python-bitcointx PSBT."""

    def __init__(self, psbt: Any) -> None:
        self.psbt = psbt
        self._outputs = psbt_outputs(psbt)

    @property
    def outputs(self) -> Sequence[TxOutput]:
        return self._outputs


def _imp_psbt():
    import importlib
    return importlib.import_module('bitcointx.core.psbt').PartiallySignedTransaction


def decode_psbt(text: str) -> Any:
    """Decode a PSBT from text which may be hex or base64.

    Returns:
        A bitcointx.core.psbt.PSBT object.
    Raises:
        ImportError if python-bitcointx is not installed.
    """
    PSBT = _imp_psbt()
    s = ''.join(text.split())
    if is_hex_str(s):
        raw = parse_hex('psbt', s)
        s = base64.b64encode(raw).decode()
    return PSBT.from_base64(s)


def encode_psbt(psbt: Any) -> str:
    """Encode PSBT as base64."""
    return psbt.to_base64()


def _tx_from_psbt(psbt: Any) -> Any:
    return getattr(psbt, 'unsigned_tx', None) or getattr(psbt, 'tx', None)


def _get_vout_list(tx: Any) -> List[Any]:
    vout = getattr(tx, 'vout', None)
    if vout is None:
        raise ValueError('Transaction has no outputs list (vout)')
    return list(vout)


def _get_out_value(out: Any) -> Optional[int]:
    v = getattr(out, 'nValue', None)
    if v is None:
        v = getattr(out, 'value', None)
    return None if v is None else int(v)


def psbt_outputs(psbt: Any) -> List[TxOutput]:
    """Outputs of the PSBT's unsigned transaction, in order."""
    tx = _tx_from_psbt(psbt)
    if tx is None:
        raise ValueError('PSBT does not expose unsigned transaction (tx)')
    outputs: List[TxOutput] = []
    for i, out_obj in enumerate(_get_vout_list(tx)):
        value = _get_out_value(out_obj)
        if value is None or value < 0:
            raise ValueError(f'Could not read value of output {i}')
        outputs.append(TxOutput(bytes(out_obj.scriptPubKey), value))
    return outputs
