import pytest
from eth_account import Account

from xchain_relayer.config import parse_config
from xchain_relayer.core import ChainProviderRegistry

from tests.fakes import CONFIG, TEST_PRIVATE_KEY, FakeWeb3


@pytest.fixture
def config():
    return parse_config(CONFIG)


@pytest.fixture
def chains():
    return {"http://eth.test": FakeWeb3(1337), "http://bsc.test": FakeWeb3(1397)}


@pytest.fixture
def eth(chains):
    return chains["http://eth.test"].eth


@pytest.fixture
def bsc(chains):
    return chains["http://bsc.test"].eth


@pytest.fixture
def registry(config, chains):
    return ChainProviderRegistry(config, web3_factory=lambda url: chains[url])


@pytest.fixture
def signer():
    return Account.from_key(TEST_PRIVATE_KEY)
