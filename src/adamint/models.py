"""
Ledger and transaction draft data models.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from adamint.policy import MintScript, script_to_json
from adamint.value import AssetId, Value, total


@dataclass(frozen=True)
class Utxo:
    """Unspent transaction output owned by a wallet."""

    tx_hash: str
    output_index: int
    value: Value
    address: str = ""

    @property
    def ref(self) -> str:
        return f"{self.tx_hash}#{self.output_index}"


@dataclass
class WalletHandle:
    """
    A wallet known to the ledger toolchain.

    The signing key paths are passed to the toolchain as-is; key material
    is never read by adamint.
    """

    name: str
    payment_address: str
    payment_skey: Path
    payment_key_hash: str = ""
    stake_address: str | None = None
    stake_skey: Path | None = None


@dataclass
class WalletBalance:
    utxos: list[Utxo]
    value: Value

    @classmethod
    def from_utxos(cls, utxos: list[Utxo]) -> WalletBalance:
        return cls(utxos=list(utxos), value=total(u.value for u in utxos))

    def to_dict(self) -> dict[str, Any]:
        return {
            "utxo": [
                {"txHash": u.tx_hash, "txId": u.output_index, "value": u.value.to_dict()}
                for u in self.utxos
            ],
            "value": self.value.to_dict(),
        }


@dataclass
class TxOut:
    """
    Transaction output.

    ``min_lovelace`` records the minimum-UTxO oracle result the output was
    sized with; outputs carrying a caller-chosen amount leave it unset.
    """

    address: str
    value: Value
    min_lovelace: int | None = None


@dataclass
class MintAction:
    """Mint (positive quantity) or burn (negative quantity) of one asset."""

    quantity: int
    asset: AssetId
    script: MintScript

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": "mint",
            "quantity": self.quantity,
            "asset": str(self.asset),
            "script": script_to_json(self.script),
        }


@dataclass
class TxDraft:
    """
    Work object for a single transaction.

    Built fee-free, costed by the ledger toolchain, then rebalanced into a
    new draft carrying the final fee.
    """

    tx_in: list[Utxo] = field(default_factory=list)
    tx_out: list[TxOut] = field(default_factory=list)
    mint: list[MintAction] = field(default_factory=list)
    metadata: dict[str, Any] | None = None
    witness_count: int = 1
    invalid_after: int | None = None
    fee: int = 0

    def copy(self) -> TxDraft:
        return copy.deepcopy(self)

    def input_value(self) -> Value:
        return total(u.value for u in self.tx_in)

    def output_value(self) -> Value:
        return total(o.value for o in self.tx_out)

    def mint_value(self) -> Value:
        return total(Value({m.asset: m.quantity}) for m in self.mint)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "txIn": [u.ref for u in self.tx_in],
            "txOut": [{"address": o.address, "value": o.value.to_dict()} for o in self.tx_out],
            "witnessCount": self.witness_count,
            "fee": self.fee,
        }
        if self.mint:
            result["mint"] = [m.to_dict() for m in self.mint]
        if self.metadata is not None:
            result["metadata"] = self.metadata
        if self.invalid_after is not None:
            result["invalidAfter"] = self.invalid_after
        return result


ErrorKind = Literal["validation", "arithmetic", "toolchain", "internal"]


class OperationResult(BaseModel):
    """Outcome of a wallet operation; failures never raise."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    transaction: str | None = None
    network_fee: int | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


class CreatedWallet(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    address: str
    key_hash: str
    stake_address: str | None = None
    mint_script: dict[str, Any] | None = None
    policy_id: str | None = None
