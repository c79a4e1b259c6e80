"""
drainpay Chain Layer - settlement contract access and voucher signatures.
"""

from drainpay.chain.gateway import ChainGateway, Web3ChainGateway
from drainpay.chain.typed_data import (
    VoucherDomain,
    recover_voucher_signer,
    sign_voucher,
    verify_voucher_signature,
)

__all__ = [
    "ChainGateway",
    "Web3ChainGateway",
    "VoucherDomain",
    "recover_voucher_signer",
    "sign_voucher",
    "verify_voucher_signature",
]
