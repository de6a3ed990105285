"""
Theurgy - Operations run for each wallet.

- faucet:   Claim testnet funds through the proxy pool
- transfer: Batches of small native or ERC-20 transfers
- runner:   Engine context, the wallet loop and the ``run``/``faucet`` commands
"""
