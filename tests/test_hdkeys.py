import base58
import pytest

from helpers import BLUEWALLET_SETUP, make_keypair
from signgate.hdkeys import HARDENED, ExtendedKey, ckd_pub, decode_extended_key

# BIP-32 test vector 1, master key
MASTER_XPRV = 'xprv9s21ZrQH143K3QTDL4LXw2F7HEK3wJUD2nW2nRk4stbPy6cq3jPPqjiChkVvvNKmPGJxWUtg6LnF5kejMRNNU3TGtRBeJgk33yuGBxrMPHi'
MASTER_XPUB = 'xpub661MyMwAqRbcFtXgS5sYJABqqG9YLmC4Q1Rdap9gSE8NqtwybGhePY2gZ29ESFjqJoCu1Rupje8YtGqsefD265TMg7usUDFdp6W1EGMcet8'


def _bluewallet_xpubs():
    return [line.split(': ')[1] for line in BLUEWALLET_SETUP.splitlines() if line[:8].isalnum() and ': xpub' in line]


def test_decode_bluewallet_xpubs():
    xpubs = _bluewallet_xpubs()
    assert len(xpubs) == 3
    for text in xpubs:
        key = decode_extended_key(text)
        assert not key.is_private
        assert key.depth == 4
        assert key.child_number == HARDENED + 2
        assert key.to_base58() == text


def test_master_xprv_neuters_to_xpub():
    xprv = decode_extended_key(MASTER_XPRV)
    assert xprv.is_private
    assert xprv.depth == 0
    assert xprv.neuter().to_base58() == MASTER_XPUB
    assert xprv.matches(decode_extended_key(MASTER_XPUB))


def test_private_and_public_derivation_agree():
    coincurve = pytest.importorskip('coincurve')
    pair = make_keypair('alice')
    xpub = decode_extended_key(pair.xpub)
    for path in ([0, 0], [0, 7], [1, 3]):
        secret = pair.key.derive_secret(path)
        assert coincurve.PrivateKey(secret).public_key.format(compressed=True) == xpub.derive_pubkey(path)


def test_matches_rejects_other_key():
    a, b = make_keypair('alice'), make_keypair('bob')
    assert a.key.matches(decode_extended_key(a.xpub))
    assert not a.key.matches(decode_extended_key(b.xpub))


def test_public_key_has_no_secret_and_no_hardened_child():
    xpub = decode_extended_key(MASTER_XPUB)
    with pytest.raises(ValueError):
        _ = xpub.secret
    with pytest.raises(ValueError):
        ckd_pub(xpub.public_key, xpub.chain_code, HARDENED)


def _encode(key: ExtendedKey) -> str:
    return base58.b58encode_check(key.serialize()).decode()


@pytest.mark.parametrize('mutate', [
    lambda k: ExtendedKey(b'\x01\x02\x03\x04', k.depth, k.parent_fingerprint, k.child_number, k.chain_code, k.key_data),
    lambda k: ExtendedKey(k.version, 0, b'\x01\x02\x03\x04', k.child_number, k.chain_code, k.key_data),
    lambda k: ExtendedKey(k.version, k.depth, k.parent_fingerprint, k.child_number, k.chain_code, b'\x04' + k.key_data[1:]),
    lambda k: ExtendedKey(k.version, k.depth, k.parent_fingerprint, k.child_number, k.chain_code, b'\x02' + b'\xff' * 32),
])
def test_decode_rejects_bad_public_keys(mutate) -> None:
    key = decode_extended_key(_bluewallet_xpubs()[0])
    with pytest.raises(ValueError):
        decode_extended_key(_encode(mutate(key)))


def test_decode_rejects_out_of_range_secret():
    key = make_keypair('alice').key
    zero = ExtendedKey(key.version, key.depth, key.parent_fingerprint, key.child_number, key.chain_code, b'\x00' * 33)
    with pytest.raises(ValueError):
        decode_extended_key(_encode(zero))


@pytest.mark.parametrize('text', [
    '',
    ' ' + MASTER_XPUB,
    MASTER_XPUB[:-1] + ('1' if MASTER_XPUB[-1] != '1' else '2'),
    base58.b58encode_check(b'\x04\x88\xb2\x1e' + b'\x00' * 10).decode(),
])
def test_decode_rejects_malformed_text(text: str) -> None:
    with pytest.raises(ValueError):
        decode_extended_key(text)
