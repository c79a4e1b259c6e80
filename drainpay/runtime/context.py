"""
Runtime context for a drainpay provider instance.

Constructed once at startup and passed to whatever serves requests.
There are no module-level singletons: two contexts in one process are
fully independent.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from drainpay.chain.gateway import ChainGateway, Web3ChainGateway
from drainpay.core.config import ProviderConfig
from drainpay.core.locks import ChannelLocks
from drainpay.ledger.ledger import ChannelLedger, RetentionPolicy
from drainpay.settlement.scheduler import ClaimScheduler
from drainpay.validation.validator import VoucherValidator


@dataclass
class ProviderContext:
    """Every payment component of one provider, wired together."""

    config:    ProviderConfig
    gateway:   ChainGateway
    ledger:    ChannelLedger
    locks:     ChannelLocks
    validator: VoucherValidator
    scheduler: ClaimScheduler

    @classmethod
    def from_config(
        cls,
        config:  ProviderConfig,
        gateway: Optional[ChainGateway] = None,
    ) -> "ProviderContext":
        """Build all components. `gateway` overrides the web3 default."""
        if gateway is None:
            gateway = Web3ChainGateway(
                rpc_url=          config.rpc_url,
                contract_address= config.contract_address,
                chain_id=         config.chain_id,
                private_key=      config.provider_private_key,
            )

        ledger = ChannelLedger(config.storage_path, RetentionPolicy(config.retention))
        locks = ChannelLocks()

        return cls(
            config=    config,
            gateway=   gateway,
            ledger=    ledger,
            locks=     locks,
            validator= VoucherValidator(gateway, ledger, locks),
            scheduler= ClaimScheduler(gateway, ledger, config.claim_threshold, locks),
        )

    @classmethod
    def from_files(
        cls,
        config_file: Optional[Path] = None,
        gateway:     Optional[ChainGateway] = None,
    ) -> "ProviderContext":
        """YAML config if given, environment otherwise (env always overrides)."""
        if config_file is not None:
            config = ProviderConfig.from_yaml(config_file)
        else:
            config = ProviderConfig.from_env()
        return cls.from_config(config, gateway)

    def start_auto_claim(self) -> bool:
        return self.scheduler.start(
            self.config.auto_claim_interval, self.config.auto_claim_buffer,
        )

    def shutdown(self) -> None:
        self.scheduler.stop()

    def __repr__(self) -> str:
        return (
            f"ProviderContext("
            f"provider={self.gateway.provider_address!r}, "
            f"chain_id={self.config.chain_id}, "
            f"channels={self.ledger.stats().active_channels})"
        )
