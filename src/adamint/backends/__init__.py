"""
Ledger toolchain backends.

Available backends:
- CardanoCliBackend: cardano-cli subprocess against a local cardano-node
"""

from adamint.backends.base import LedgerBackend, SignedTx, ToolchainError, TxBody
from adamint.backends.cardano_cli import CardanoCliBackend, WalletNotFoundError

__all__ = [
    "CardanoCliBackend",
    "LedgerBackend",
    "SignedTx",
    "ToolchainError",
    "TxBody",
    "WalletNotFoundError",
]
