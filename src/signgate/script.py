"""
Multisig script utilities (lean)

Witness script for ``sortedmulti(K, key_1, ..., key_N)``
  OP_K <key_a> <key_b> ... OP_N OP_CHECKMULTISIG
where the keys are the compressed child pubkeys sorted lexicographically.

scriptPubKey (P2WSH)
  OP_0 <sha256(witness_script)>
"""
from __future__ import annotations

import hashlib
from typing import Dict, Iterable

# Opcodes
OP_0 = 0x00
OP_1 = 0x51
OP_16 = 0x60
OP_CHECKMULTISIG = 0xae

MAX_PUBKEYS_PER_MULTISIG = 20


def pushdata(data: bytes) -> bytes:
    n = len(data)
    if n < 0x4c:
        return bytes([n]) + data
    elif n <= 0xff:
        return b"\x4c" + bytes([n]) + data
    elif n <= 0xffff:
        return b"\x4d" + n.to_bytes(2, "little") + data
    else:
        return b"\x4e" + n.to_bytes(4, "little") + data


def small_int(n: int) -> int:
    if not 1 <= n <= 16:
        raise ValueError("small integer opcode must encode 1..16")
    return OP_1 + n - 1


def sortedmulti_witness_script(threshold: int, pubkeys: Iterable[bytes]) -> bytes:
    """Build the bare multisig witness script with keys in sorted order."""
    keys = sorted(pubkeys)
    if not keys:
        raise ValueError("multisig needs at least one key")
    if len(keys) > MAX_PUBKEYS_PER_MULTISIG:
        raise ValueError(f"multisig supports at most {MAX_PUBKEYS_PER_MULTISIG} keys")
    if not 1 <= threshold <= len(keys):
        raise ValueError("threshold must be between 1 and the number of keys")
    for k in keys:
        if len(k) != 33:
            raise ValueError("multisig keys must be 33-byte compressed pubkeys")
    # 17..20 keys still fit sortedmulti, encoded as a data push
    def _num(n: int) -> bytes:
        return bytes([small_int(n)]) if n <= 16 else pushdata(bytes([n]))

    script = bytearray()
    script += _num(threshold)
    for k in keys:
        script += pushdata(k)
    script += _num(len(keys))
    script += bytes([OP_CHECKMULTISIG])
    return bytes(script)


def p2wsh_script_pubkey(witness_script: bytes) -> bytes:
    return bytes([OP_0]) + pushdata(hashlib.sha256(witness_script).digest())


def disasm(script: bytes) -> str:
    names: Dict[int, str] = {
        OP_0: 'OP_0',
        OP_CHECKMULTISIG: 'OP_CHECKMULTISIG',
    }
    out: list[str] = []
    i = 0
    while i < len(script):
        op = script[i]; i += 1
        if op in names:
            out.append(names[op])
        elif OP_1 <= op <= OP_16:
            out.append(f'OP_{op - OP_1 + 1}')
        elif op < 0x4c:
            out.append(script[i:i+op].hex()); i += op
        else:
            raise ValueError("Unexpected opcode/push")
    return ' '.join(out)
