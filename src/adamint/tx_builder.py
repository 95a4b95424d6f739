"""
Transaction draft builder.

Turns a fee-free draft into a submitted transaction with the two-pass fee
procedure:

1. Build an unsigned body from the fee-free draft
2. Ask the toolchain for the minimum fee of that body
3. Rebalance: subtract the fee from the designated output
4. Validate and rebuild the body with the fee (and validity end) baked in
5. Sign and submit

The fee is taken from the first body and never iterated. The second body
differs from the first only in the fee and output amounts, so its size
(and thus its minimum fee) can only differ by the few bytes a longer
integer encoding needs.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

from loguru import logger

from adamint.backends.base import LedgerBackend, TxBody
from adamint.metadata import oversized_strings
from adamint.models import TxDraft, TxOut
from adamint.value import LOVELACE_ASSET, subtract, total


class DraftValidationError(Exception):
    """Raised when a request or draft is malformed."""

    kind = "validation"


class ValueBalanceError(DraftValidationError):
    """Raised when draft arithmetic does not add up."""

    kind = "arithmetic"


class InsufficientFundsError(ValueBalanceError):
    """Raised when an output would be left with a negative quantity."""


@dataclass
class BalancedTx:
    """A fee-corrected draft and its final unsigned body."""

    draft: TxDraft
    body: TxBody

    @property
    def fee(self) -> int:
        return self.draft.fee


def rebalance(draft: TxDraft, fee: int, payer: int = 0) -> TxDraft:
    """
    Return a new draft with ``fee`` recorded and paid by output ``payer``.

    The input draft is left untouched.
    """
    if fee < 0:
        raise ValueBalanceError(f"Fee must not be negative, got {fee}")
    if not 0 <= payer < len(draft.tx_out):
        raise DraftValidationError(
            f"Fee payer output {payer} out of range ({len(draft.tx_out)} outputs)"
        )

    result = draft.copy()
    result.fee = fee
    subtract(result.tx_out[payer].value, LOVELACE_ASSET, fee)
    return result


def drop_empty_output(draft: TxDraft, index: int = 0) -> TxDraft:
    """Return a draft without output ``index`` if it is left with nothing."""
    out = draft.tx_out[index]
    if out.value.lovelace == 0 and not out.value.native_assets():
        return replace(draft, tx_out=[o for i, o in enumerate(draft.tx_out) if i != index])
    return draft


def check_balance(draft: TxDraft) -> None:
    """
    Verify inputs + mint == outputs + fee for every asset.

    Raises:
        ValueBalanceError: If any asset is created or lost
    """
    produced = draft.output_value()
    produced.add(LOVELACE_ASSET, draft.fee)
    consumed = total([draft.input_value(), draft.mint_value()])

    assets = set(produced) | set(consumed)
    diff = {
        str(a): consumed.quantity(a) - produced.quantity(a)
        for a in sorted(assets)
        if consumed.quantity(a) != produced.quantity(a)
    }
    if diff:
        raise ValueBalanceError(f"Draft does not balance, inputs + mint - outputs - fee = {diff}")


def _check_output(index: int, out: TxOut) -> None:
    for asset, quantity in out.value.items():
        if quantity < 0:
            raise InsufficientFundsError(
                f"Output {index} to {out.address} would hold {quantity} of {asset}"
            )
    if out.value.lovelace <= 0:
        raise InsufficientFundsError(f"Output {index} to {out.address} holds no lovelace")
    if out.min_lovelace is not None and out.value.lovelace < out.min_lovelace:
        raise ValueBalanceError(
            f"Output {index} to {out.address} holds {out.value.lovelace} lovelace, "
            f"below the minimum of {out.min_lovelace}"
        )


def validate_draft(draft: TxDraft) -> None:
    """
    Check a fee-corrected draft before it is built for signing.

    Raises:
        DraftValidationError: On structural problems
        ValueBalanceError: On negative entries, minimum-UTxO violations or
            an unbalanced draft
    """
    if not draft.tx_in:
        raise DraftValidationError("Draft has no inputs")
    if not draft.tx_out:
        raise DraftValidationError("Draft has no outputs")
    if draft.witness_count < 1:
        raise DraftValidationError("Draft must declare at least one witness")

    for index, out in enumerate(draft.tx_out):
        _check_output(index, out)

    for action in draft.mint:
        if action.quantity == 0:
            raise DraftValidationError(f"Mint action for {action.asset} has zero quantity")

    if draft.metadata is not None:
        oversized = oversized_strings(draft.metadata)
        if oversized:
            raise DraftValidationError(
                f"Metadata string exceeds 64 UTF-8 bytes: {oversized[0][:70]!r}"
            )

    check_balance(draft)


class TxDraftBuilder:
    """
    Drives the two-pass fee procedure against a ledger backend.
    """

    def __init__(self, backend: LedgerBackend):
        self.backend = backend

    def balance(
        self, draft: TxDraft, fee_payer: int = 0, drop_empty_change: bool = False
    ) -> BalancedTx:
        """
        Cost a fee-free draft and return the final, validated body.

        Args:
            draft: Fee-free draft (all value allocated to outputs)
            fee_payer: Index of the output the fee is taken from
            drop_empty_change: Remove output 0 if the fee leaves it empty

        Returns:
            BalancedTx with the rebalanced draft and its body
        """
        if draft.fee != 0:
            raise DraftValidationError("Fee must be computed from a fee-free draft")

        draft_body = self.backend.build_raw(draft)
        try:
            fee = self.backend.calculate_min_fee(draft, draft_body)
        finally:
            self.backend.release(draft_body)
        logger.debug(
            f"Draft with {len(draft.tx_in)} inputs, {len(draft.tx_out)} outputs, "
            f"{draft.witness_count} witnesses: min fee {fee}"
        )

        final = rebalance(draft, fee, fee_payer)
        if drop_empty_change:
            final = drop_empty_output(final, 0)

        validate_draft(final)
        body = self.backend.build_raw(final)
        return BalancedTx(draft=final, body=body)

    def sign_and_submit(self, balanced: BalancedTx, signing_keys: list[Path]) -> str:
        """Sign and submit a balanced body. The body is released either way."""
        try:
            signed = self.backend.sign(balanced.body, signing_keys)
            try:
                tx_id = self.backend.submit(signed)
            finally:
                self.backend.release(signed)
        finally:
            self.backend.release(balanced.body)
        logger.debug(f"Submitted {tx_id} with fee {balanced.fee}")
        return tx_id

    def execute(
        self,
        draft: TxDraft,
        signing_keys: list[Path],
        fee_payer: int = 0,
        drop_empty_change: bool = False,
    ) -> tuple[str, BalancedTx]:
        """Balance, sign and submit a draft. Returns (tx_id, balanced)."""
        balanced = self.balance(draft, fee_payer=fee_payer, drop_empty_change=drop_empty_change)
        return self.sign_and_submit(balanced, signing_keys), balanced
