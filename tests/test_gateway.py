"""
tests/test_gateway.py

Web3ChainGateway against a stubbed web3 instance: ABI results are mapped
to typed structs and every failure surfaces as ChainError / ClaimError.
"""

from unittest.mock import MagicMock

import pytest
from eth_account import Account

from drainpay.chain.gateway import Web3ChainGateway
from drainpay.core.config import DRAIN_ADDRESSES
from drainpay.core.exceptions import ChainError, ClaimError


CID = "0x" + "ab" * 32
CONSUMER = "0x" + "11" * 20


@pytest.fixture
def provider():
    return Account.create()


@pytest.fixture
def web3():
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 3
    w3.eth.send_raw_transaction.return_value = bytes.fromhex("cd" * 32)
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    return w3


@pytest.fixture
def contract(web3):
    return web3.eth.contract.return_value


@pytest.fixture
def gateway(provider, web3):
    return Web3ChainGateway(
        rpc_url=          "http://localhost:8545",
        contract_address= DRAIN_ADDRESSES[80002].lower(),
        chain_id=         80002,
        private_key=      provider.key,
        web3=             web3,
    )


def test_domain_uses_checksum_address(gateway, provider):
    assert gateway.domain.verifying_contract == DRAIN_ADDRESSES[80002]
    assert gateway.domain.chain_id == 80002
    assert gateway.provider_address == provider.address


def test_get_channel_maps_struct(gateway, contract, provider):
    contract.functions.getChannel.return_value.call.return_value = (
        CONSUMER, provider.address, 1_000_000, 250_000, 1_900_000_000,
    )

    channel = gateway.get_channel(CID)

    assert channel.exists
    assert channel.consumer == CONSUMER
    assert channel.deposit == 1_000_000
    assert channel.claimed == 250_000
    assert channel.expiry == 1_900_000_000
    contract.functions.getChannel.assert_called_with(bytes.fromhex("ab" * 32))


def test_get_channel_unknown_is_zero(gateway, contract):
    zero = "0x" + "00" * 20
    contract.functions.getChannel.return_value.call.return_value = (zero, zero, 0, 0, 0)

    assert not gateway.get_channel(CID).exists


def test_read_failure_is_chain_error(gateway, contract):
    contract.functions.getChannel.return_value.call.side_effect = ConnectionError("rpc down")

    with pytest.raises(ChainError, match="getChannel failed"):
        gateway.get_channel(CID)


def test_get_balance(gateway, contract):
    contract.functions.getBalance.return_value.call.return_value = 750_000
    assert gateway.get_balance(CID) == 750_000


def test_claim_returns_tx_hash(gateway, contract, web3):
    contract.functions.claim.return_value.build_transaction.return_value = {
        "to":       DRAIN_ADDRESSES[80002],
        "data":     "0x",
        "value":    0,
        "gas":      100_000,
        "gasPrice": 30_000_000_000,
        "nonce":    3,
        "chainId":  80002,
    }

    tx_hash = gateway.claim(CID, 500_000, 4, "0x" + "ee" * 65)

    assert tx_hash == "0x" + "cd" * 32
    contract.functions.claim.assert_called_with(
        bytes.fromhex("ab" * 32), 500_000, 4, bytes.fromhex("ee" * 65),
    )
    web3.eth.send_raw_transaction.assert_called_once()


def test_reverted_claim_is_claim_error(gateway, contract, web3):
    contract.functions.claim.return_value.build_transaction.return_value = {
        "to": DRAIN_ADDRESSES[80002], "data": "0x", "value": 0,
        "gas": 100_000, "gasPrice": 1, "nonce": 3, "chainId": 80002,
    }
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 0}

    with pytest.raises(ClaimError, match="reverted"):
        gateway.claim(CID, 500_000, 4, "0x" + "ee" * 65)


def test_send_failure_is_claim_error(gateway, contract):
    contract.functions.claim.return_value.build_transaction.side_effect = ValueError("execution reverted")

    with pytest.raises(ClaimError):
        gateway.claim(CID, 500_000, 4, "0x" + "ee" * 65)
