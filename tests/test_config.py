import os

import pytest

from signgate.config import DEFAULT_DATA_DIR, Settings
from signgate.errors import ConfigurationError


def test_settings_defaults():
    s = Settings.from_env({})
    assert s.data_dir == DEFAULT_DATA_DIR
    assert s.derivation_path == "m/48'/0'/0'/2'"
    assert s.network == 'bitcoin'
    assert s.lookahead == 100
    assert s.log_level == 'INFO'
    assert s.blob_dir == os.path.join(DEFAULT_DATA_DIR, 'blobs')
    assert s.policy_file == os.path.join(DEFAULT_DATA_DIR, 'policies.json')


def test_settings_from_env_and_override():
    s = Settings.from_env({
        'SIGNGATE_DATA_DIR': '/srv/signgate',
        'SIGNGATE_NETWORK': 'testnet',
        'SIGNGATE_LOOKAHEAD': '20',
        'SIGNGATE_DERIVATION_PATH': "m/48'/1'/0'/2'",
        'SIGNGATE_LOG_LEVEL': 'debug',
    })
    assert (s.data_dir, s.network, s.lookahead) == ('/srv/signgate', 'testnet', 20)
    o = s.override(network='regtest', data_dir=None)
    assert o.network == 'regtest'
    assert o.data_dir == '/srv/signgate'


@pytest.mark.parametrize('env', [
    {'SIGNGATE_NETWORK': 'litecoin'},
    {'SIGNGATE_LOOKAHEAD': 'many'},
    {'SIGNGATE_LOOKAHEAD': '0'},
    {'SIGNGATE_DERIVATION_PATH': '48/0'},
    {'SIGNGATE_LOG_LEVEL': 'chatty'},
])
def test_settings_rejects_bad_values(env) -> None:
    with pytest.raises(ConfigurationError):
        Settings.from_env(env)
