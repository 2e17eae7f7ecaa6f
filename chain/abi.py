"""Minimal ABI fragments for the contracts the bot touches."""
from __future__ import annotations

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

ERC20_ABI = [
    {
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

CL_POOL_ABI = [
    {
        "inputs": [],
        "name": "slot0",
        "outputs": [
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "tick", "type": "int24"},
            {"name": "observationIndex", "type": "uint16"},
            {"name": "observationCardinality", "type": "uint16"},
            {"name": "observationCardinalityNext", "type": "uint16"},
            {"name": "feeProtocol", "type": "uint8"},
            {"name": "unlocked", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "liquidity",
        "outputs": [{"name": "", "type": "uint128"}],
        "stateMutability": "view",
        "type": "function",
    },
    {"inputs": [], "name": "token0", "outputs": [{"name": "", "type": "address"}], "stateMutability": "view", "type": "function"},
    {"inputs": [], "name": "token1", "outputs": [{"name": "", "type": "address"}], "stateMutability": "view", "type": "function"},
    {"inputs": [], "name": "fee", "outputs": [{"name": "", "type": "uint24"}], "stateMutability": "view", "type": "function"},
]

SWAP_ROUTER_ABI = [
    {
        "inputs": [{"name": "swapData", "type": "bytes"}],
        "name": "swapWithUserSignature",
        "outputs": [{"name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    },
]

_CCIP_MESSAGE = {
    "name": "message",
    "type": "tuple",
    "components": [
        {"name": "receiver", "type": "bytes"},
        {"name": "data", "type": "bytes"},
        {
            "name": "tokenAmounts",
            "type": "tuple[]",
            "components": [{"name": "token", "type": "address"}, {"name": "amount", "type": "uint256"}],
        },
        {"name": "feeToken", "type": "address"},
        {"name": "extraArgs", "type": "bytes"},
    ],
}

CCIP_ROUTER_ABI = [
    {
        "inputs": [{"name": "destinationChainSelector", "type": "uint64"}, _CCIP_MESSAGE],
        "name": "getFee",
        "outputs": [{"name": "fee", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "destinationChainSelector", "type": "uint64"}, _CCIP_MESSAGE],
        "name": "ccipSend",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [{"name": "chainSelector", "type": "uint64"}],
        "name": "isChainSupported",
        "outputs": [{"name": "supported", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]

__all__ = ["ZERO_ADDRESS", "ERC20_ABI", "CL_POOL_ABI", "SWAP_ROUTER_ABI", "CCIP_ROUTER_ABI"]
