"""
Native minting policy scripts.

Two script shapes are supported:
- a single signer: ``{"type": "sig", "keyHash": ...}``
- a signer plus a time lock:
  ``{"type": "all", "scripts": [{"type": "sig", ...}, {"type": "before", "slot": n}]}``

The policy id of a script is a hash computed by the ledger toolchain.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from adamint.constants import NO_POLICY_LOCK, SHELLEY_REFERENCE_TIME

if TYPE_CHECKING:
    from adamint.backends.base import LedgerBackend


class SigScript(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["sig"] = "sig"
    key_hash: str = Field(..., alias="keyHash", min_length=1)


class BeforeScript(BaseModel):
    type: Literal["before"] = "before"
    slot: int = Field(..., ge=0)


class AllScript(BaseModel):
    type: Literal["all"] = "all"
    scripts: list[Annotated[SigScript | BeforeScript, Field(discriminator="type")]] = Field(
        ..., min_length=1
    )

    @model_validator(mode="after")
    def single_time_lock(self) -> AllScript:
        locks = [s for s in self.scripts if isinstance(s, BeforeScript)]
        if len(locks) > 1:
            raise ValueError("A mint script may carry at most one time lock")
        return self


MintScript = SigScript | AllScript

_mint_script_adapter: TypeAdapter[MintScript] = TypeAdapter(
    Annotated[SigScript | AllScript, Field(discriminator="type")]
)


def parse_mint_script(data: dict[str, Any] | MintScript) -> MintScript:
    """Validate a mint script given in its JSON form."""
    if isinstance(data, SigScript | AllScript):
        return data
    return _mint_script_adapter.validate_python(data)


def script_to_json(script: MintScript) -> dict[str, Any]:
    """JSON form accepted by cardano-cli (``--mint-script-file``)."""
    return script.model_dump(by_alias=True)


def build_mint_script(key_hash: str, lock_slot: int | str | None = None) -> MintScript:
    """
    Build a minting policy script for a payment key hash.

    Args:
        key_hash: Payment key hash of the policy wallet
        lock_slot: Optional slot after which minting and burning are no
            longer possible. ``None``, ``-1`` and ``"-1"`` mean no lock.

    Returns:
        A ``sig`` script, or an ``all`` script with a ``before`` clause
    """
    if lock_slot is None or str(lock_slot).strip() == NO_POLICY_LOCK:
        return SigScript(key_hash=key_hash)
    try:
        slot = int(lock_slot)
    except ValueError as e:
        raise ValueError(f"Invalid policy lock slot: {lock_slot!r}") from e
    return AllScript(scripts=[SigScript(key_hash=key_hash), BeforeScript(slot=slot)])


def script_lock_slot(script: MintScript) -> int | None:
    """Return the ``before`` slot of a time-locked script, if any."""
    if isinstance(script, AllScript):
        for clause in script.scripts:
            if isinstance(clause, BeforeScript):
                return clause.slot
    return None


def derive_policy_id(backend: LedgerBackend, script: MintScript) -> str:
    return backend.policy_id(script)


def slot_from_date(date: datetime) -> int:
    """Slot number for a given date (one slot per second)."""
    return int(date.timestamp()) - SHELLEY_REFERENCE_TIME


def date_from_slot(slot: int) -> datetime:
    return datetime.fromtimestamp(SHELLEY_REFERENCE_TIME + slot, tz=UTC)
