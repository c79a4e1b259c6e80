"""
drainpay Runtime - wiring of one provider instance.
"""

from drainpay.runtime.context import ProviderContext

__all__ = ["ProviderContext"]
