"""
Pneuma - On-chain interaction layer for Somnus.

Proxy pool, JSON-RPC client, gas pricing, nonce tracking, transaction
submission and the retry policy wrapped around them.

Uses httpx + eth-account + eth-abi instead of the heavyweight web3.py.
"""
