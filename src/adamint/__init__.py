"""
adamint - Cardano multi-asset transaction drafting and balancing

Builds, fee-balances, signs and submits lovelace and native token
transactions through a pluggable ledger toolchain.
"""

__version__ = "0.3.0"

from adamint.metadata import chunk_message, message_metadata
from adamint.models import (
    CreatedWallet,
    MintAction,
    OperationResult,
    TxDraft,
    TxOut,
    Utxo,
    WalletBalance,
    WalletHandle,
)
from adamint.operations import WalletOperations
from adamint.policy import build_mint_script, derive_policy_id, parse_mint_script
from adamint.tx_builder import (
    DraftValidationError,
    InsufficientFundsError,
    TxDraftBuilder,
    ValueBalanceError,
    rebalance,
)
from adamint.value import LOVELACE_ASSET, AssetId, Value

__all__ = [
    "AssetId",
    "CreatedWallet",
    "DraftValidationError",
    "InsufficientFundsError",
    "LOVELACE_ASSET",
    "MintAction",
    "OperationResult",
    "TxDraft",
    "TxDraftBuilder",
    "TxOut",
    "Utxo",
    "Value",
    "ValueBalanceError",
    "WalletBalance",
    "WalletHandle",
    "WalletOperations",
    "build_mint_script",
    "chunk_message",
    "derive_policy_id",
    "message_metadata",
    "parse_mint_script",
    "rebalance",
]
