import importlib

import pytest

from signgate.psbtio import PsbtTransaction, TxOutput, psbt_outputs


def _psbt_available() -> bool:
    try:
        m = importlib.import_module('bitcointx.core.psbt')
        return hasattr(m, 'PartiallySignedTransaction')
    except Exception:
        return False


class _Out:
    def __init__(self, script: bytes, value: int) -> None:
        self.scriptPubKey = script
        self.nValue = value


class _Tx:
    def __init__(self, vout) -> None:
        self.vout = vout


class _Psbt:
    def __init__(self, tx) -> None:
        self.unsigned_tx = tx


def test_psbt_outputs_reads_scripts_and_values():
    psbt = _Psbt(_Tx([_Out(b'\x00\x14' + b'\x01' * 20, 1500), _Out(b'\x51', 0)]))
    assert psbt_outputs(psbt) == [TxOutput(b'\x00\x14' + b'\x01' * 20, 1500), TxOutput(b'\x51', 0)]
    assert PsbtTransaction(psbt).outputs[0].value == 1500


def test_psbt_outputs_errors():
    with pytest.raises(ValueError):
        psbt_outputs(_Psbt(None))
    with pytest.raises(ValueError):
        psbt_outputs(_Psbt(object()))
    with pytest.raises(ValueError):
        psbt_outputs(_Psbt(_Tx([_Out(b'\x51', -1)])))


@pytest.mark.skipif(not _psbt_available(), reason='python-bitcointx PSBT API not available')
def test_decode_psbt_base64_and_hex():
    from signgate.psbtio import decode_psbt, encode_psbt
    core = importlib.import_module('bitcointx.core')
    PSBT = importlib.import_module('bitcointx.core.psbt').PartiallySignedTransaction
    CScript = importlib.import_module('bitcointx.core.script').CScript
    spk = bytes.fromhex('0014') + b'\x22' * 20
    tx = core.CTransaction(
        [core.CTxIn(core.COutPoint(core.lx('00' * 32), 0))],
        [core.CTxOut(4321, CScript(spk))],
        2,
    )
    psbt = PSBT(unsigned_tx=tx)
    b64 = encode_psbt(psbt)
    for text in (b64, core.b2x(psbt.serialize())):
        decoded = decode_psbt(text)
        assert PsbtTransaction(decoded).outputs == [TxOutput(spk, 4321)]
