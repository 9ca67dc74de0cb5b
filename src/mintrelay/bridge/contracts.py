"""Contract ABIs the relayer consumes.

Only the fragments the relayer touches are listed.
"""

from web3 import Web3

BRIDGE_REQUEST_SIGNATURE = (
    "BridgeRequest(address,address,address,uint256,uint256,uint256,uint256,uint256)"
)

BRIDGE_REQUEST_TOPIC = Web3.to_hex(Web3.keccak(text=BRIDGE_REQUEST_SIGNATURE))

SOURCE_BRIDGE_ABI = [
    {
        "anonymous": False,
        "name": "BridgeRequest",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": True, "name": "token", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "srcChainId", "type": "uint256"},
            {"indexed": False, "name": "dstChainId", "type": "uint256"},
            {"indexed": False, "name": "nonce", "type": "uint256"},
            {"indexed": False, "name": "timestamp", "type": "uint256"},
        ],
    }
]

DEST_BRIDGE_ABI = [
    {
        "name": "executeMint",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "srcChainId", "type": "uint256"},
            {"name": "srcBridgeAddress", "type": "address"},
            {"name": "nonce", "type": "uint256"},
            {"name": "token", "type": "address"},
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "name": "processed",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "sourceBridgeForChain",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
]
