import base64
import os
import tempfile

import pytest

from signgate.hexutil import decode_text_payload, file_or_text, is_fingerprint, parse_hex


def test_parse_hex_valid_and_length():
    b = parse_hex('x', '00ff', length=2)
    assert b == bytes.fromhex('00ff')


def test_parse_hex_invalid_raises():
    with pytest.raises(ValueError):
        parse_hex('x', 'zz')
    with pytest.raises(ValueError):
        parse_hex('x', 'abc')
    with pytest.raises(ValueError):
        parse_hex('x', '00ff', length=4)


@pytest.mark.parametrize('fp,ok', [
    ('EAB239AA', True),
    ('eab239aa', True),
    ('EAB239A', False),
    ('EAB239AAB', False),
    ('GAB239AA', False),
    ('', False),
])
def test_is_fingerprint(fp: str, ok: bool) -> None:
    assert is_fingerprint(fp) is ok


def test_decode_text_payload_base64_and_plain():
    text = 'Policy: 2 of 3\nEAB239AA: xpub...\n'
    encoded = base64.b64encode(text.encode()).decode()
    assert decode_text_payload(encoded) == text
    # base64 split over several lines is still accepted
    wrapped = '\n'.join(encoded[i:i + 16] for i in range(0, len(encoded), 16))
    assert decode_text_payload(wrapped) == text
    assert decode_text_payload(text) == text


def test_file_or_text_precedence_and_file_reading():
    with tempfile.TemporaryDirectory() as td:
        p = os.path.join(td, 'setup.txt')
        with open(p, 'wt') as f:
            f.write('from file')
        assert file_or_text('x', 'inline', p) == 'inline'
        assert file_or_text('x', None, p) == 'from file'
    with pytest.raises(ValueError):
        file_or_text('x', None, None)
