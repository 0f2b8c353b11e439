from typing import List

import pytest

from helpers import FakeBackend, FixedEntropy, KeyPair, make_keypair, setup_text
from signgate.service import GatekeeperService
from signgate.storage import MemoryBlobStore, MemoryConfigStore


@pytest.fixture
def keypairs() -> List[KeyPair]:
    return [make_keypair(label) for label in ('alice', 'bob', 'carol')]


@pytest.fixture
def ours(keypairs: List[KeyPair]) -> KeyPair:
    return keypairs[0]


@pytest.fixture
def backend(ours: KeyPair) -> FakeBackend:
    return FakeBackend(generated=ours.record())


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def config_store() -> MemoryConfigStore:
    return MemoryConfigStore()


@pytest.fixture
def service(blob_store, config_store, backend) -> GatekeeperService:
    return GatekeeperService(blob_store, config_store, backend, entropy=FixedEntropy())


@pytest.fixture
def identity(service: GatekeeperService, keypairs: List[KeyPair]) -> str:
    """Wallet identity of a registered 2-of-3 wallet stored under 'vault'."""
    service.create_key('vault')
    service.create_wallet('vault', setup_text(keypairs))
    return service.wallet_identity('vault')
