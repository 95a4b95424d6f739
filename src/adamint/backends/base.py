"""
Base ledger toolchain interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from adamint.models import TxDraft, Utxo, WalletBalance, WalletHandle
from adamint.policy import MintScript
from adamint.value import Value


class ToolchainError(Exception):
    """Raised when the ledger toolchain fails to query, build, sign or submit."""

    kind = "toolchain"


@dataclass
class TxBody:
    """Unsigned transaction body. ``payload`` is backend specific."""

    fee: int
    payload: Any = None


@dataclass
class SignedTx:
    body: TxBody
    payload: Any = None


class LedgerBackend(ABC):
    """
    Abstract ledger toolchain.

    Covers the network queries, wallet key material, body construction,
    fee and minimum-UTxO computation, signing and submission that the
    draft builder relies on.
    """

    @abstractmethod
    def query_tip(self) -> dict[str, Any]:
        """Get the current chain tip"""

    @abstractmethod
    def query_stake_address_info(self, address: str) -> list[dict[str, Any]]:
        """Get delegation and reward info for a stake address"""

    @abstractmethod
    def query_utxo(self, address: str) -> list[Utxo]:
        """Get the UTxOs sitting at an address"""

    @abstractmethod
    def create_wallet(self, name: str, with_stake_key: bool = False) -> WalletHandle:
        """Generate keys and address for a new wallet"""

    @abstractmethod
    def wallet(self, name: str) -> WalletHandle:
        """Look up an existing wallet by name"""

    def wallet_balance(self, wallet: WalletHandle) -> WalletBalance:
        """UTxOs of the wallet's payment address and their aggregate value"""
        return WalletBalance.from_utxos(self.query_utxo(wallet.payment_address))

    @abstractmethod
    def build_raw(self, draft: TxDraft) -> TxBody:
        """Build an unsigned transaction body from a draft"""

    @abstractmethod
    def calculate_min_fee(self, draft: TxDraft, body: TxBody) -> int:
        """Minimum fee in lovelace for a body and the draft's witness count"""

    @abstractmethod
    def min_required_utxo(self, address: str, value: Value) -> int:
        """Minimum lovelace an output to ``address`` carrying ``value`` must hold"""

    @abstractmethod
    def policy_id(self, script: MintScript) -> str:
        """Policy id (script hash) of a native script"""

    @abstractmethod
    def sign(self, body: TxBody, signing_keys: list[Path]) -> SignedTx:
        """Witness a body with the given signing keys"""

    @abstractmethod
    def submit(self, signed: SignedTx) -> str:
        """Submit a signed transaction, returns the transaction id"""

    def release(self, *items: TxBody | SignedTx) -> None:
        """Drop whatever backs built bodies and signed transactions once they are spent"""
        pass

    def close(self) -> None:
        """Release backend resources"""
        pass
