"""
Multi-asset value arithmetic.

A Value maps asset identifiers to exact integer quantities. Lovelace is the
distinguished base unit; every other asset is identified by its policy id
and asset name, written ``policyId.assetName`` on the wire (the same form
cardano-cli uses for ``--tx-out`` and ``--mint``).

Zero quantities are never stored: an entry that reaches zero is removed,
because the ledger toolchain rejects outputs that mention an asset with a
zero quantity.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field

from adamint.constants import LOVELACE


@dataclass(frozen=True, order=True)
class AssetId:
    """Identifier of a single asset class."""

    policy_id: str
    asset_name: str = ""

    @classmethod
    def parse(cls, unit: str | AssetId) -> AssetId:
        """Parse ``lovelace``, ``policyId`` or ``policyId.assetName``."""
        if isinstance(unit, AssetId):
            return unit
        if not isinstance(unit, str) or not unit:
            raise ValueError(f"Invalid asset id: {unit!r}")
        if unit == LOVELACE:
            return LOVELACE_ASSET
        policy_id, _, asset_name = unit.partition(".")
        if not policy_id:
            raise ValueError(f"Invalid asset id: {unit!r}")
        return cls(policy_id=policy_id, asset_name=asset_name)

    @property
    def is_lovelace(self) -> bool:
        return self == LOVELACE_ASSET

    def __str__(self) -> str:
        if self.asset_name:
            return f"{self.policy_id}.{self.asset_name}"
        return self.policy_id


LOVELACE_ASSET = AssetId(policy_id=LOVELACE)


def _check_quantity(quantity: object) -> int:
    # bool is an int subclass but never a valid quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise TypeError(f"Asset quantity must be an integer, got {quantity!r}")
    return quantity


@dataclass
class Value:
    """Mapping of AssetId to signed integer quantity."""

    quantities: dict[AssetId, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        cleaned: dict[AssetId, int] = {}
        for asset, quantity in self.quantities.items():
            if _check_quantity(quantity) != 0:
                cleaned[AssetId.parse(asset)] = quantity
        self.quantities = cleaned

    @classmethod
    def from_lovelace(cls, lovelace: int) -> Value:
        return cls({LOVELACE_ASSET: lovelace})

    @classmethod
    def from_dict(cls, data: Mapping[str, int]) -> Value:
        """Build a Value from the wire form ``{"lovelace": n, "policy.asset": q}``."""
        return cls({AssetId.parse(unit): quantity for unit, quantity in data.items()})

    def to_dict(self) -> dict[str, int]:
        """Wire form; lovelace is always present and listed first."""
        result = {LOVELACE: self.lovelace}
        for asset, quantity in sorted(self.native_assets().items()):
            result[str(asset)] = quantity
        return result

    @property
    def lovelace(self) -> int:
        return self.quantities.get(LOVELACE_ASSET, 0)

    def quantity(self, asset: AssetId | str) -> int:
        return self.quantities.get(AssetId.parse(asset), 0)

    def set(self, asset: AssetId | str, quantity: int) -> None:
        """Overwrite the quantity of an asset, removing it when zero."""
        key = AssetId.parse(asset)
        if _check_quantity(quantity) == 0:
            self.quantities.pop(key, None)
        else:
            self.quantities[key] = quantity

    def add(self, asset: AssetId | str, quantity: int) -> None:
        key = AssetId.parse(asset)
        self.set(key, self.quantities.get(key, 0) + _check_quantity(quantity))

    def native_assets(self) -> dict[AssetId, int]:
        return {a: q for a, q in self.quantities.items() if not a.is_lovelace}

    def without_lovelace(self) -> Value:
        return Value(self.native_assets())

    def copy(self) -> Value:
        return Value(dict(self.quantities))

    def is_positive(self) -> bool:
        """True when every entry is strictly positive."""
        return all(quantity > 0 for quantity in self.quantities.values())

    def __iter__(self) -> Iterator[AssetId]:
        return iter(self.quantities)

    def __len__(self) -> int:
        return len(self.quantities)

    def __contains__(self, asset: object) -> bool:
        if isinstance(asset, str | AssetId):
            return AssetId.parse(asset) in self.quantities
        return False

    def items(self) -> Iterable[tuple[AssetId, int]]:
        return self.quantities.items()


def merge(into: Value, from_: Value) -> Value:
    """Add every entry of ``from_`` into ``into`` (in place) and return ``into``."""
    for asset, quantity in from_.items():
        into.add(asset, quantity)
    return into


def subtract(value: Value, asset: AssetId | str, quantity: int) -> Value:
    """
    Decrement ``asset`` by ``quantity`` in place.

    The key is removed once it reaches exactly zero. A result below zero is
    kept as is; draft validation reports it before anything reaches the
    ledger toolchain.
    """
    value.add(asset, -_check_quantity(quantity))
    return value


def total(values: Iterable[Value]) -> Value:
    """Fold values into a new Value."""
    result = Value()
    for value in values:
        merge(result, value)
    return result
