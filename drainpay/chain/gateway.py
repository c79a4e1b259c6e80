"""
drainpay/chain/gateway.py

ChainGateway: the only component that talks to the settlement contract.

Public surface:
    gateway.provider_address                      → this service's address
    gateway.domain                                → EIP-712 VoucherDomain
    gateway.get_channel(channel_id)               → OnChainChannel
    gateway.get_balance(channel_id)               → int
    gateway.claim(channel_id, amount, nonce, sig) → "0x…" tx hash
    gateway.verify_voucher_signature(voucher, consumer) → bool

Every RPC/ABI failure surfaces as ChainError (ClaimError for writes).
ABI decoding stays inside Web3ChainGateway; callers only see typed structs.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from eth_account import Account
from web3 import Web3

from drainpay.chain.abi import DRAIN_CHANNEL_ABI
from drainpay.chain.typed_data import VoucherDomain, verify_voucher_signature
from drainpay.core.exceptions import ChainError, ClaimError
from drainpay.core.models import OnChainChannel, VoucherHeader


logger = logging.getLogger(__name__)


def _to_bytes(hex_str: str) -> bytes:
    return bytes.fromhex(hex_str[2:] if hex_str.startswith(("0x", "0X")) else hex_str)


class ChainGateway(ABC):
    """Typed interface to the DrainChannel contract."""

    def __init__(self, domain: VoucherDomain) -> None:
        self.domain = domain

    @property
    @abstractmethod
    def provider_address(self) -> str:
        ...

    @abstractmethod
    def get_channel(self, channel_id: str) -> OnChainChannel:
        ...

    @abstractmethod
    def get_balance(self, channel_id: str) -> int:
        ...

    @abstractmethod
    def claim(self, channel_id: str, amount: int, nonce: int, signature: str) -> str:
        ...

    def verify_voucher_signature(self, voucher: VoucherHeader, consumer: str) -> bool:
        return verify_voucher_signature(self.domain, voucher, consumer)


class Web3ChainGateway(ChainGateway):
    """
    ChainGateway over a JSON-RPC endpoint.

    Reads are eth_call. Claims are signed locally with the provider key and
    sent raw. If `wait_for_receipt` is set, a reverted claim raises
    ClaimError so the channel stays unclaimed in the ledger.
    """

    def __init__(
        self,
        rpc_url:          str,
        contract_address: str,
        chain_id:         int,
        private_key:      str,
        wait_for_receipt: bool = True,
        receipt_timeout:  int = 120,
        web3:             Optional[Web3] = None,
    ) -> None:
        super().__init__(VoucherDomain(
            chain_id=           chain_id,
            verifying_contract= Web3.to_checksum_address(contract_address),
        ))
        self.web3 = web3 or Web3(Web3.HTTPProvider(rpc_url))
        self.chain_id = chain_id
        self.wait_for_receipt = wait_for_receipt
        self.receipt_timeout = receipt_timeout
        self._account = Account.from_key(private_key)
        self._contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=DRAIN_CHANNEL_ABI,
        )

    @property
    def provider_address(self) -> str:
        return self._account.address

    # ── Reads ─────────────────────────────────────────────────

    def get_channel(self, channel_id: str) -> OnChainChannel:
        try:
            consumer, provider, deposit, claimed, expiry = (
                self._contract.functions.getChannel(_to_bytes(channel_id)).call()
            )
        except Exception as exc:
            raise ChainError(
                f"getChannel failed: {exc}", {"channel_id": channel_id},
            ) from exc
        return OnChainChannel(
            consumer= consumer,
            provider= provider,
            deposit=  int(deposit),
            claimed=  int(claimed),
            expiry=   int(expiry),
        )

    def get_balance(self, channel_id: str) -> int:
        try:
            return int(self._contract.functions.getBalance(_to_bytes(channel_id)).call())
        except Exception as exc:
            raise ChainError(
                f"getBalance failed: {exc}", {"channel_id": channel_id},
            ) from exc

    # ── Writes ────────────────────────────────────────────────

    def claim(self, channel_id: str, amount: int, nonce: int, signature: str) -> str:
        try:
            tx = self._contract.functions.claim(
                _to_bytes(channel_id), amount, nonce, _to_bytes(signature),
            ).build_transaction({
                "from":    self._account.address,
                "nonce":   self.web3.eth.get_transaction_count(self._account.address, "pending"),
                "chainId": self.chain_id,
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            raise ClaimError(
                f"claim transaction failed: {exc}", {"channel_id": channel_id},
            ) from exc

        tx_hex = Web3.to_hex(tx_hash)
        logger.debug("claim sent for %s: %s", channel_id, tx_hex)

        if self.wait_for_receipt:
            try:
                receipt = self.web3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self.receipt_timeout,
                )
            except Exception as exc:
                raise ClaimError(
                    f"no receipt for claim: {exc}",
                    {"channel_id": channel_id, "tx_hash": tx_hex},
                ) from exc
            if receipt.get("status") != 1:
                raise ClaimError(
                    "claim transaction reverted",
                    {"channel_id": channel_id, "tx_hash": tx_hex},
                )
        return tx_hex

    def __repr__(self) -> str:
        return (
            f"Web3ChainGateway(chain_id={self.chain_id}, "
            f"provider={self.provider_address})"
        )
