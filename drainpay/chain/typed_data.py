"""
drainpay/chain/typed_data.py

EIP-712 voucher signatures.

A consumer signs:

    Voucher { bytes32 channelId; uint256 amount; uint256 nonce; }

under the domain

    { name: "DrainChannel", version: "1", chainId, verifyingContract }

The domain binds a signature to one chain and one contract deployment.
A voucher signed for another chain id, another contract or another
channel id recovers to a different address and fails verification.
"""

from dataclasses import dataclass
from typing import Any, Dict

from eth_account import Account
from eth_account.messages import encode_typed_data

from drainpay.core.config import EIP712_NAME, EIP712_VERSION
from drainpay.core.models import VoucherHeader


VOUCHER_TYPES = {
    "EIP712Domain": [
        {"name": "name",              "type": "string"},
        {"name": "version",           "type": "string"},
        {"name": "chainId",           "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Voucher": [
        {"name": "channelId", "type": "bytes32"},
        {"name": "amount",    "type": "uint256"},
        {"name": "nonce",     "type": "uint256"},
    ],
}


@dataclass(frozen=True)
class VoucherDomain:
    """The EIP-712 domain fixed per deployment."""

    chain_id:           int
    verifying_contract: str
    name:               str = EIP712_NAME
    version:            str = EIP712_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name":              self.name,
            "version":           self.version,
            "chainId":           self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


def _hex_to_bytes(value: str) -> bytes:
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return bytes.fromhex(value)


def voucher_typed_data(
    domain:     VoucherDomain,
    channel_id: str,
    amount:     int,
    nonce:      int,
) -> Dict[str, Any]:
    """Full EIP-712 message for one voucher."""
    return {
        "types":       VOUCHER_TYPES,
        "primaryType": "Voucher",
        "domain":      domain.to_dict(),
        "message": {
            "channelId": _hex_to_bytes(channel_id),
            "amount":    amount,
            "nonce":     nonce,
        },
    }


def recover_voucher_signer(domain: VoucherDomain, voucher: VoucherHeader) -> str:
    """
    Recover the checksummed address that signed `voucher`.

    Raises on malformed signatures. Use verify_voucher_signature() for a
    boolean answer.
    """
    signable = encode_typed_data(
        full_message=voucher_typed_data(
            domain, voucher.channel_id, voucher.amount, voucher.nonce,
        )
    )
    return Account.recover_message(signable, signature=_hex_to_bytes(voucher.signature))


def verify_voucher_signature(
    domain:   VoucherDomain,
    voucher:  VoucherHeader,
    expected: str,
) -> bool:
    """
    True iff `voucher` was signed by `expected` under `domain`.

    False for any failure, including malformed signatures.
    Never raises.
    """
    try:
        signer = recover_voucher_signer(domain, voucher)
    except Exception:
        return False
    return signer.lower() == expected.lower()


def sign_voucher(
    domain:      VoucherDomain,
    private_key: str,
    channel_id:  str,
    amount:      int,
    nonce:       int,
) -> VoucherHeader:
    """Consumer side: produce a signed voucher ready to send as a header."""
    signable = encode_typed_data(
        full_message=voucher_typed_data(domain, channel_id, amount, nonce)
    )
    signed = Account.sign_message(signable, private_key=private_key)
    return VoucherHeader(
        channel_id= channel_id.lower(),
        amount=     amount,
        nonce=      nonce,
        signature=  "0x" + bytes(signed.signature).hex(),
    )
