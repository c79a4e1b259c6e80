"""Minimal DrainChannel ABI: the three functions the provider uses."""

DRAIN_CHANNEL_ABI = [
    {
        "inputs": [{"name": "channelId", "type": "bytes32"}],
        "name": "getChannel",
        "outputs": [
            {
                "components": [
                    {"name": "consumer", "type": "address"},
                    {"name": "provider", "type": "address"},
                    {"name": "deposit",  "type": "uint256"},
                    {"name": "claimed",  "type": "uint256"},
                    {"name": "expiry",   "type": "uint256"},
                ],
                "name": "",
                "type": "tuple",
            },
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "channelId", "type": "bytes32"}],
        "name": "getBalance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "channelId", "type": "bytes32"},
            {"name": "amount",    "type": "uint256"},
            {"name": "nonce",     "type": "uint256"},
            {"name": "signature", "type": "bytes"},
        ],
        "name": "claim",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]
