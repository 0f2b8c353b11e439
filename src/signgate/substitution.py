"""
Swap one cosigner's public key for the custodial private key.

The stored seed record carries the key with its origin and a trailing path,
e.g. ``[d34db33f/48'/0'/0'/2']xprv.../*``; the descriptor template supplies
both itself, so only the bare extended key is kept.
"""
from __future__ import annotations

import logging
from dataclasses import replace

from .descriptor import Cosigner, CosignerSetup
from .errors import MalformedSetupError, UnknownCosignerError
from .hdkeys import decode_extended_key

logger = logging.getLogger(__name__)


def trim_private_key_record(private_key_record: str) -> str:
    """Drop the ``[fingerprint/path]`` origin and any ``/...`` suffix."""
    return private_key_record.split(']')[-1].split('/')[0].strip()


def substitute_key(setup: CosignerSetup, fingerprint: str, private_key_record: str) -> CosignerSetup:
    """Return a copy of ``setup`` whose ``fingerprint`` entry holds the private key.

    Raises:
        UnknownCosignerError: no cosigner carries ``fingerprint``.
        MalformedSetupError: the record is not an extended private key, or
            it is not the private half of the key it replaces, or it is
            encoded for a different network or version.
    """
    index = setup.find(fingerprint)
    if index is None:
        raise UnknownCosignerError(fingerprint)

    trimmed = trim_private_key_record(private_key_record)
    try:
        xprv = decode_extended_key(trimmed).canonical()
    except ValueError as exc:
        raise MalformedSetupError(f"private key record for {fingerprint}: {exc}") from exc
    if not xprv.is_private:
        raise MalformedSetupError(f"private key record for {fingerprint} holds a public key")

    current = setup.cosigners[index]
    public = decode_extended_key(current.key_material)
    if xprv.neuter().version != public.version:
        raise MalformedSetupError(
            f"private key record for {fingerprint} has a different network version than the cosigner's key"
        )
    if not xprv.matches(public):
        raise MalformedSetupError(
            f"private key record for {fingerprint} does not match the cosigner's public key"
        )

    cosigners = list(setup.cosigners)
    cosigners[index] = Cosigner(current.fingerprint, str(xprv))
    logger.info("substituted private key material for cosigner %s", current.fingerprint)
    return replace(setup, cosigners=tuple(cosigners))
