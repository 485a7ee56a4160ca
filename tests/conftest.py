"""Shared fixtures: regtest network, deterministic keys and addresses."""

import pytest
from bitcoinutils.keys import PrivateKey
from bitcoinutils.setup import setup

from simple_ctv.addresses import PAY_TO_ANCHOR_SCRIPT
from simple_ctv.template import Output


@pytest.fixture(autouse=True)
def regtest():
    setup("regtest")


def fixed_randomness(byte):
    """Randomness source returning the same byte repeated."""
    return lambda n: bytes([byte]) * n


def wallet_address(index):
    """Deterministic regtest P2TR address."""
    return PrivateKey(secret_exponent=1000 + index).get_public_key().get_taproot_address().to_string()


@pytest.fixture
def payout_address():
    return wallet_address(0)


@pytest.fixture
def ctv_outputs(payout_address):
    return [
        Output.from_address(1337, payout_address),
        Output(240, PAY_TO_ANCHOR_SCRIPT),
    ]
