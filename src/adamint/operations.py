"""
Wallet operations.

Each spending operation queries the wallet balance, assembles a fee-free
draft for its specific shape, and hands it to the TxDraftBuilder for fee
balancing, signing and submission.

Spending operations never raise: every failure is logged and returned
as an OperationResult with ``success=False``. Queries raise.
"""

from __future__ import annotations

import random
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from loguru import logger

from adamint.backends.base import LedgerBackend
from adamint.constants import (
    LOVELACE,
    LOVELACE_PER_ADA,
    POLICY_WITNESSES,
    SINGLE_WITNESS,
    TOKEN_OUTPUT_LOVELACE,
)
from adamint.metadata import message_metadata
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
from adamint.policy import (
    MintScript,
    build_mint_script,
    derive_policy_id,
    parse_mint_script,
    script_lock_slot,
    script_to_json,
)
from adamint.tx_builder import BalancedTx, DraftValidationError, TxDraftBuilder
from adamint.value import LOVELACE_ASSET, AssetId, Value, subtract, total


def _positive(quantity: Any, what: str) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise DraftValidationError(f"{what} must be a positive integer, got {quantity!r}")
    return quantity


def ada_to_lovelace(amount: int | str | Decimal) -> int:
    """Convert an ADA amount to lovelace without going through floats."""
    try:
        lovelace = Decimal(str(amount)) * LOVELACE_PER_ADA
    except InvalidOperation as e:
        raise DraftValidationError(f"Invalid ADA amount: {amount!r}") from e
    if lovelace != lovelace.to_integral_value():
        raise DraftValidationError(f"ADA amount {amount} is not a whole number of lovelace")
    return int(lovelace)


def _failure(operation: str, error: Exception) -> OperationResult:
    kind = getattr(error, "kind", None)
    if kind is None:
        # malformed asset ids, quantities and scripts
        kind = "validation" if isinstance(error, ValueError | TypeError) else "internal"
    logger.error(f"{operation} failed ({kind}): {error}")
    return OperationResult(success=False, error=str(error), error_kind=kind)


class WalletOperations:
    """
    Named wallet operations built on the TxDraftBuilder.

    Args:
        backend: Ledger toolchain used for queries, costing and submission
        rng: Random source for random asset distribution. Seed it to make
            distributions reproducible; production use is non-deterministic.
    """

    def __init__(self, backend: LedgerBackend, rng: random.Random | None = None):
        self.backend = backend
        self.builder = TxDraftBuilder(backend)
        self.rng = rng or random.Random()

    # Queries and wallet management

    def query_tip(self) -> dict[str, Any]:
        return self.backend.query_tip()

    def query_utxo(self, address: str) -> list[Utxo]:
        return self.backend.query_utxo(address)

    def query_stake_address_info(self, address: str) -> list[dict[str, Any]]:
        return self.backend.query_stake_address_info(address)

    def wallet_balance(self, name: str) -> WalletBalance:
        return self.backend.wallet_balance(self.backend.wallet(name))

    def mint_script(self, key_hash: str, lock_slot: int | str | None = None) -> MintScript:
        return build_mint_script(key_hash, lock_slot)

    def policy_id(self, script: MintScript | dict[str, Any]) -> str:
        return derive_policy_id(self.backend, parse_mint_script(script))

    def create_wallet(
        self,
        name: str,
        policy_lock_slot: int | str | None = None,
        with_stake_key: bool = False,
    ) -> CreatedWallet:
        """
        Create a wallet and, when a lock slot is given, its minting policy.

        The wallet keys live wherever the backend keeps them; back them up.
        """
        wallet = self.backend.create_wallet(name, with_stake_key=with_stake_key)
        logger.info(f"Created wallet {name}{' with stake key' if with_stake_key else ''}")

        created = CreatedWallet(
            name=name,
            address=wallet.payment_address,
            key_hash=wallet.payment_key_hash,
            stake_address=wallet.stake_address,
        )
        if policy_lock_slot is not None:
            script = build_mint_script(wallet.payment_key_hash, policy_lock_slot)
            created.mint_script = script_to_json(script)
            created.policy_id = derive_policy_id(self.backend, script)
        return created

    # Spending operations

    def _submitted(self, message: str, tx_id: str, balanced: BalancedTx) -> OperationResult:
        logger.info(f"{message} in transaction {tx_id}")
        return OperationResult(success=True, transaction=tx_id, network_fee=balanced.fee)

    def transfer_lovelace(
        self,
        wallet_name: str,
        address: str,
        amount: int,
        message: str | None = None,
        minus_tx_fee: bool = False,
        input_tx_hash: str | None = None,
    ) -> OperationResult:
        """
        Send lovelace to a single address.

        Args:
            wallet_name: Sending wallet
            address: Recipient address
            amount: Lovelace to send
            message: Optional transaction message
            minus_tx_fee: Deduct the fee from the sent amount instead of the change
            input_tx_hash: Spend only the first UTxO created by this transaction
        """
        try:
            wallet = self.backend.wallet(wallet_name)
            balance = self.backend.wallet_balance(wallet)

            tx_in = balance.utxos
            if input_tx_hash is not None:
                tx_in = [u for u in balance.utxos if u.tx_hash == input_tx_hash][:1]
                if not tx_in:
                    error = f"Could not find specified transaction input hash {input_tx_hash}"
                    logger.error(error)
                    return OperationResult(success=False, error=error, error_kind="validation")

            amount = _positive(amount, "Amount")
            change = total(u.value for u in tx_in)
            subtract(change, LOVELACE_ASSET, amount)

            draft = TxDraft(
                tx_in=tx_in,
                tx_out=[
                    TxOut(wallet.payment_address, change),
                    TxOut(address, Value.from_lovelace(amount)),
                ],
                metadata=message_metadata(message),
                witness_count=SINGLE_WITNESS,
            )
            tx_id, balanced = self.builder.execute(
                draft,
                [wallet.payment_skey],
                fee_payer=1 if minus_tx_fee else 0,
                drop_empty_change=True,
            )
            return self._submitted(f"Sending lovelace from wallet {wallet_name}", tx_id, balanced)
        except Exception as e:
            return _failure("transfer_lovelace", e)

    def transfer_ada(
        self,
        wallet_name: str,
        address: str,
        amount: int | str | Decimal,
        message: str | None = None,
        minus_tx_fee: bool = False,
        input_tx_hash: str | None = None,
    ) -> OperationResult:
        try:
            lovelace = ada_to_lovelace(amount)
        except DraftValidationError as e:
            return _failure("transfer_ada", e)
        return self.transfer_lovelace(
            wallet_name, address, lovelace, message, minus_tx_fee, input_tx_hash
        )

    def transfer_token(
        self, wallet_name: str, address: str, asset: str, amount: int
    ) -> OperationResult:
        """Send ``amount`` of one native token, with the minimum lovelace alongside."""
        try:
            wallet = self.backend.wallet(wallet_name)
            balance = self.backend.wallet_balance(wallet)
            asset_id = AssetId.parse(asset)
            amount = _positive(amount, "Token amount")

            change = balance.value.copy()
            subtract(change, asset_id, amount)

            sent = Value({LOVELACE_ASSET: TOKEN_OUTPUT_LOVELACE, asset_id: amount})
            min_lovelace = self.backend.min_required_utxo(address, sent)
            sent.set(LOVELACE_ASSET, min_lovelace)
            subtract(change, LOVELACE_ASSET, min_lovelace)

            draft = TxDraft(
                tx_in=balance.utxos,
                tx_out=[
                    TxOut(wallet.payment_address, change),
                    TxOut(address, sent, min_lovelace=min_lovelace),
                ],
                witness_count=SINGLE_WITNESS,
            )
            tx_id, balanced = self.builder.execute(draft, [wallet.payment_skey])
            return self._submitted(f"Sending token from wallet {wallet_name}", tx_id, balanced)
        except Exception as e:
            return _failure("transfer_token", e)

    def transfer_all_native_tokens(self, wallet_name: str, address: str) -> OperationResult:
        """Send every native token of the wallet to one address."""
        try:
            wallet = self.backend.wallet(wallet_name)
            balance = self.backend.wallet_balance(wallet)

            sent = balance.value.without_lovelace()
            if not len(sent):
                raise DraftValidationError(f"Wallet {wallet_name} holds no native tokens")
            sent.set(LOVELACE_ASSET, TOKEN_OUTPUT_LOVELACE)
            min_lovelace = self.backend.min_required_utxo(address, sent)
            sent.set(LOVELACE_ASSET, min_lovelace)

            change = Value.from_lovelace(balance.value.lovelace)
            subtract(change, LOVELACE_ASSET, min_lovelace)

            draft = TxDraft(
                tx_in=balance.utxos,
                tx_out=[
                    TxOut(wallet.payment_address, change),
                    TxOut(address, sent, min_lovelace=min_lovelace),
                ],
                witness_count=SINGLE_WITNESS,
            )
            tx_id, balanced = self.builder.execute(draft, [wallet.payment_skey])
            return self._submitted(
                f"Sending all native tokens of wallet {wallet_name}", tx_id, balanced
            )
        except Exception as e:
            return _failure("transfer_all_native_tokens", e)

    def wipe_wallet(self, wallet_name: str, address: str) -> OperationResult:
        """Move the entire wallet value, minus the fee, to ``address``."""
        try:
            wallet = self.backend.wallet(wallet_name)
            balance = self.backend.wallet_balance(wallet)
            if not balance.utxos:
                raise DraftValidationError(f"Wallet {wallet_name} has no UTxOs")

            draft = TxDraft(
                tx_in=balance.utxos,
                tx_out=[TxOut(address, balance.value.copy())],
                witness_count=SINGLE_WITNESS,
            )
            tx_id, balanced = self.builder.execute(draft, [wallet.payment_skey])
            return self._submitted(f"Wiping wallet {wallet_name}", tx_id, balanced)
        except Exception as e:
            return _failure("wipe_wallet", e)

    def refund_transaction(
        self,
        wallet_name: str,
        transaction_hash: str,
        address: str,
        message: str | None = None,
    ) -> OperationResult:
        """Return everything a transaction paid into the wallet, minus the fee."""
        try:
            wallet = self.backend.wallet(wallet_name)
            balance = self.backend.wallet_balance(wallet)

            tx_in = [u for u in balance.utxos if u.tx_hash == transaction_hash]
            if not tx_in:
                raise DraftValidationError(
                    f"No unspent output of transaction {transaction_hash} in wallet {wallet_name}"
                )

            draft = TxDraft(
                tx_in=tx_in,
                tx_out=[TxOut(address, total(u.value for u in tx_in))],
                metadata=message_metadata(message),
                witness_count=SINGLE_WITNESS,
            )
            tx_id, balanced = self.builder.execute(draft, [wallet.payment_skey])
            return self._submitted(
                f"Refunding transaction {transaction_hash} for wallet {wallet_name}",
                tx_id,
                balanced,
            )
        except Exception as e:
            return _failure("refund_transaction", e)

    def _policy_signing_keys(
        self, payment_wallet_name: str, policy_wallet_name: str
    ) -> tuple[WalletHandle, list[Path]]:
        payment_wallet = self.backend.wallet(payment_wallet_name)
        if policy_wallet_name == payment_wallet_name:
            return payment_wallet, [payment_wallet.payment_skey]
        policy_wallet = self.backend.wallet(policy_wallet_name)
        return payment_wallet, [payment_wallet.payment_skey, policy_wallet.payment_skey]

    def burn_tokens(
        self,
        payment_wallet_name: str,
        policy_wallet_name: str,
        burn: Mapping[str, int],
        mint_script: MintScript | dict[str, Any],
        input_transactions: list[str] | None = None,
        payout_lovelace: int | None = None,
        revenue_address: str | None = None,
    ) -> OperationResult:
        """
        Burn native tokens held by the payment wallet.

        Args:
            payment_wallet_name: Wallet holding the tokens
            policy_wallet_name: Wallet whose key signs the policy script
            burn: Quantities to burn in the format {policyId.assetName: quantity}
            mint_script: Policy script of the burned assets
            input_transactions: Only spend UTxOs created by these transactions
            payout_lovelace: Lovelace for the payout output; defaults to the
                lovelace of the spent inputs
            revenue_address: Payout address; defaults to the payment wallet
        """
        try:
            script = parse_mint_script(mint_script)
            payment_wallet = self.backend.wallet(payment_wallet_name)
            policy_wallet = self.backend.wallet(policy_wallet_name)
            balance = self.backend.wallet_balance(payment_wallet)

            tx_in = balance.utxos
            if input_transactions is not None:
                tx_in = [u for u in balance.utxos if u.tx_hash in input_transactions]
                if not tx_in:
                    raise DraftValidationError("None of the input transactions are in the wallet")

            payout = total(u.value for u in tx_in)
            if payout_lovelace is not None:
                payout.set(LOVELACE_ASSET, payout_lovelace)

            mint: list[MintAction] = []
            for unit, quantity in burn.items():
                asset_id = AssetId.parse(unit)
                quantity = _positive(quantity, f"Burn quantity of {unit}")
                mint.append(MintAction(quantity=-quantity, asset=asset_id, script=script))
            for action in mint:
                subtract(payout, action.asset, -action.quantity)

            draft = TxDraft(
                tx_in=tx_in,
                tx_out=[TxOut(revenue_address or payment_wallet.payment_address, payout)],
                mint=mint,
                witness_count=POLICY_WITNESSES,
                invalid_after=script_lock_slot(script),
            )
            tx_id, balanced = self.builder.execute(
                draft, [payment_wallet.payment_skey, policy_wallet.payment_skey]
            )
            return self._submitted(
                f"Burning assets of wallet {payment_wallet_name}", tx_id, balanced
            )
        except Exception as e:
            return _failure("burn_tokens", e)

    def mint_tokens(
        self,
        payment_wallet_name: str,
        policy_wallet_name: str,
        assets: Mapping[str, int],
        mint_script: MintScript | dict[str, Any],
        address: str | None = None,
        message: str | None = None,
    ) -> OperationResult:
        """
        Mint native tokens under a policy script.

        Minted tokens stay in the payment wallet unless ``address`` is given,
        in which case they are sent there with the minimum lovelace.
        """
        try:
            script = parse_mint_script(mint_script)
            payment_wallet, signing_keys = self._policy_signing_keys(
                payment_wallet_name, policy_wallet_name
            )
            balance = self.backend.wallet_balance(payment_wallet)

            minted = Value()
            mint: list[MintAction] = []
            for unit, quantity in assets.items():
                asset_id = AssetId.parse(unit)
                if asset_id.is_lovelace:
                    raise DraftValidationError("Lovelace cannot be minted")
                quantity = _positive(quantity, f"Mint quantity of {unit}")
                mint.append(MintAction(quantity=quantity, asset=asset_id, script=script))
                minted.add(asset_id, quantity)

            change = balance.value.copy()
            tx_out = [TxOut(payment_wallet.payment_address, change)]
            if address is None:
                for asset_id, quantity in minted.items():
                    change.add(asset_id, quantity)
            else:
                minted.set(LOVELACE_ASSET, TOKEN_OUTPUT_LOVELACE)
                min_lovelace = self.backend.min_required_utxo(address, minted)
                minted.set(LOVELACE_ASSET, min_lovelace)
                subtract(change, LOVELACE_ASSET, min_lovelace)
                tx_out.append(TxOut(address, minted, min_lovelace=min_lovelace))

            draft = TxDraft(
                tx_in=balance.utxos,
                tx_out=tx_out,
                mint=mint,
                metadata=message_metadata(message),
                witness_count=len(signing_keys),
                invalid_after=script_lock_slot(script),
            )
            tx_id, balanced = self.builder.execute(draft, signing_keys)
            return self._submitted(
                f"Minting assets for wallet {payment_wallet_name}", tx_id, balanced
            )
        except Exception as e:
            return _failure("mint_tokens", e)

    def transfer_tokens_to_recipients(
        self,
        wallet_name: str,
        asset: str,
        recipients: Mapping[str, int],
        recipients_lovelace: Mapping[str, int] | None = None,
        message: str | None = None,
    ) -> OperationResult:
        """
        Send amounts of one fungible token to many recipients.

        Args:
            wallet_name: Sending wallet
            asset: policyId.assetName of the token
            recipients: {address: token quantity}
            recipients_lovelace: Optional {address: lovelace}; a missing or
                zero entry uses the minimum-UTxO value
            message: Optional transaction message
        """
        try:
            wallet = self.backend.wallet(wallet_name)
            balance = self.backend.wallet_balance(wallet)
            asset_id = AssetId.parse(asset)
            lovelace_overrides = recipients_lovelace or {}

            change = balance.value.copy()
            tx_out = [TxOut(wallet.payment_address, change)]
            for address, amount in recipients.items():
                amount = _positive(amount, f"Token amount for {address}")
                min_lovelace = None
                lovelace = lovelace_overrides.get(address)
                if not lovelace:
                    lovelace = min_lovelace = self.backend.min_required_utxo(
                        address, Value({LOVELACE_ASSET: TOKEN_OUTPUT_LOVELACE, asset_id: amount})
                    )
                subtract(change, asset_id, amount)
                subtract(change, LOVELACE_ASSET, lovelace)
                tx_out.append(
                    TxOut(
                        address,
                        Value({LOVELACE_ASSET: lovelace, asset_id: amount}),
                        min_lovelace=min_lovelace,
                    )
                )

            draft = TxDraft(
                tx_in=balance.utxos,
                tx_out=tx_out,
                metadata=message_metadata(message),
                witness_count=SINGLE_WITNESS,
            )
            tx_id, balanced = self.builder.execute(draft, [wallet.payment_skey])
            return self._submitted(f"Sending tokens from wallet {wallet_name}", tx_id, balanced)
        except Exception as e:
            return _failure("transfer_tokens_to_recipients", e)

    def transfer_multiple_assets_to_recipients(
        self,
        wallet_name: str,
        recipients: Mapping[str, Mapping[str, int]],
        input_transactions: list[str] | None = None,
        message: str | None = None,
    ) -> OperationResult:
        """
        Send an arbitrary asset bundle to each recipient.

        Args:
            wallet_name: Sending wallet
            recipients: {address: {policyId.assetName: quantity}}. A
                "lovelace" entry sets the recipient's lovelace explicitly.
            input_transactions: Spend UTxOs of these transactions plus every
                UTxO holding native tokens; all UTxOs when omitted
            message: Optional transaction message
        """
        try:
            wallet = self.backend.wallet(wallet_name)
            balance = self.backend.wallet_balance(wallet)

            tx_in = balance.utxos
            if input_transactions is not None:
                tx_in = [
                    u
                    for u in balance.utxos
                    if u.tx_hash in input_transactions or u.value.native_assets()
                ]

            change = total(u.value for u in tx_in)
            tx_out = [TxOut(wallet.payment_address, change)]
            for address, assets in recipients.items():
                sent = Value.from_lovelace(TOKEN_OUTPUT_LOVELACE)
                custom_lovelace = None
                for unit, quantity in assets.items():
                    if unit == LOVELACE:
                        custom_lovelace = _positive(quantity, f"Lovelace for {address}")
                        continue
                    asset_id = AssetId.parse(unit)
                    quantity = _positive(quantity, f"Quantity of {unit} for {address}")
                    sent.add(asset_id, quantity)
                    subtract(change, asset_id, quantity)

                min_lovelace = None
                if custom_lovelace is None:
                    custom_lovelace = min_lovelace = self.backend.min_required_utxo(address, sent)
                sent.set(LOVELACE_ASSET, custom_lovelace)
                subtract(change, LOVELACE_ASSET, custom_lovelace)
                tx_out.append(TxOut(address, sent, min_lovelace=min_lovelace))

            draft = TxDraft(
                tx_in=tx_in,
                tx_out=tx_out,
                metadata=message_metadata(message),
                witness_count=SINGLE_WITNESS,
            )
            tx_id, balanced = self.builder.execute(draft, [wallet.payment_skey])
            return self._submitted(
                f"Sending multiple tokens from wallet {wallet_name}", tx_id, balanced
            )
        except Exception as e:
            return _failure("transfer_multiple_assets_to_recipients", e)

    def transfer_random_assets_to_recipients(
        self,
        wallet_name: str,
        recipients: Mapping[str, int],
        message: str | None = None,
    ) -> OperationResult:
        """
        Send each recipient a number of randomly picked, distinct wallet assets (1 unit each).

        Args:
            wallet_name: Sending wallet
            recipients: {address: number of assets}
            message: Optional transaction message
        """
        try:
            wallet = self.backend.wallet(wallet_name)
            balance = self.backend.wallet_balance(wallet)

            change = balance.value.copy()
            tx_out = [TxOut(wallet.payment_address, change)]
            for address, count in recipients.items():
                count = _positive(count, f"Asset count for {address}")
                available = sorted(change.native_assets())
                if count > len(available):
                    raise DraftValidationError(
                        f"Cannot pick {count} distinct assets for {address}, "
                        f"{len(available)} left in wallet {wallet_name}"
                    )

                sent = Value.from_lovelace(TOKEN_OUTPUT_LOVELACE)
                for asset_id in self.rng.sample(available, count):
                    subtract(change, asset_id, 1)
                    sent.add(asset_id, 1)

                min_lovelace = self.backend.min_required_utxo(address, sent)
                sent.set(LOVELACE_ASSET, min_lovelace)
                subtract(change, LOVELACE_ASSET, min_lovelace)
                tx_out.append(TxOut(address, sent, min_lovelace=min_lovelace))

            draft = TxDraft(
                tx_in=balance.utxos,
                tx_out=tx_out,
                metadata=message_metadata(message),
                witness_count=SINGLE_WITNESS,
            )
            tx_id, balanced = self.builder.execute(draft, [wallet.payment_skey])
            return self._submitted(
                f"Sending random tokens from wallet {wallet_name}", tx_id, balanced
            )
        except Exception as e:
            return _failure("transfer_random_assets_to_recipients", e)
