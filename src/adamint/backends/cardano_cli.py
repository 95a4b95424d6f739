"""
cardano-cli ledger backend.

Runs cardano-cli as a subprocess for every query, body build, fee and
minimum-UTxO computation, signature and submission. Signing keys never
leave the wallet directory; only their paths are handed to cardano-cli.

Wallet layout::

    <wallet_dir>/<name>/<name>.payment.vkey
    <wallet_dir>/<name>/<name>.payment.skey
    <wallet_dir>/<name>/<name>.payment.addr
    <wallet_dir>/<name>/<name>.stake.{vkey,skey,addr}   (optional)
"""

from __future__ import annotations

import json
import os
import re
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Any

from loguru import logger

from adamint.backends.base import LedgerBackend, SignedTx, ToolchainError, TxBody
from adamint.config import Settings
from adamint.models import TxDraft, TxOut, Utxo, WalletHandle
from adamint.policy import MintScript, script_to_json
from adamint.value import LOVELACE_ASSET, AssetId, Value

_INT_RE = re.compile(r"\d+")


class WalletNotFoundError(ToolchainError):
    """Raised when no key material exists for a wallet name."""

    kind = "validation"


def _first_int(output: str) -> int:
    """Parse outputs like ``170000 Lovelace`` or ``Coin 1000000``."""
    match = _INT_RE.search(output)
    if not match:
        raise ToolchainError(f"Unexpected cardano-cli output: {output.strip()!r}")
    return int(match.group())


def parse_utxo_value(raw: Any) -> Value:
    """
    Parse the value of a ``query utxo`` entry.

    Multi-asset values are nested as ``{"lovelace": n, policy: {name: q}}``;
    pure-lovelace values may be a bare integer.
    """
    if isinstance(raw, int):
        return Value.from_lovelace(raw)
    value = Value()
    for policy_id, entry in raw.items():
        if policy_id == LOVELACE_ASSET.policy_id:
            value.add(LOVELACE_ASSET, entry)
            continue
        for asset_name, quantity in entry.items():
            value.add(AssetId(policy_id, asset_name), quantity)
    return value


def format_value(value: Value) -> str:
    """Render a value as cardano-cli multi-asset syntax: ``L+q policy.name+...``."""
    parts = [str(value.lovelace)]
    for asset, quantity in sorted(value.native_assets().items()):
        parts.append(f"{quantity} {asset}")
    return "+".join(parts)


def format_tx_out(out: TxOut) -> str:
    return f"{out.address}+{format_value(out.value)}"


class CardanoCliBackend(LedgerBackend):
    """
    LedgerBackend on top of the cardano-cli executable.

    Args:
        settings: Toolchain path, network, wallet and working directories
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.wallet_dir = settings.wallet_dir
        self.work_dir = settings.work_dir
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self._network_args = settings.network_args()
        self._protocol_params: Path | None = None
        # operations for different wallets run in parallel worker threads
        self._protocol_params_lock = threading.Lock()
        self._key_hashes: dict[str, str] = {}

    def _run(self, *args: str | Path, network: bool = False) -> str:
        cmd = [self.settings.cardano_cli]
        if self.settings.era:
            cmd.append(self.settings.era)
        cmd.extend(str(a) for a in args)
        if network:
            cmd.extend(self._network_args)

        env = dict(os.environ)
        if self.settings.node_socket_path is not None:
            env["CARDANO_NODE_SOCKET_PATH"] = str(self.settings.node_socket_path)

        logger.debug(f"Running {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                env=env,
                timeout=self.settings.cli_timeout,
            )
        except subprocess.CalledProcessError as e:
            raise ToolchainError(
                f"cardano-cli {args[0]} {args[1] if len(args) > 1 else ''} failed: "
                f"{(e.stderr or '').strip()}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ToolchainError(f"cardano-cli timed out after {e.timeout}s") from e
        except OSError as e:
            raise ToolchainError(f"Could not run {self.settings.cardano_cli}: {e}") from e
        return result.stdout

    def _run_json(self, *args: str | Path, network: bool = False) -> Any:
        output = self._run(*args, network=network)
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise ToolchainError(f"cardano-cli returned invalid JSON: {output[:200]!r}") from e

    def _temp_file(self, suffix: str, content: str | None = None) -> Path:
        fd, name = tempfile.mkstemp(suffix=suffix, dir=self.work_dir)
        with os.fdopen(fd, "w") as f:
            if content is not None:
                f.write(content)
        return Path(name)

    def _run_with_files(
        self, args: list[str | Path], inputs: list[Path], output: Path, network: bool = False
    ) -> None:
        """
        Run a command reading ``inputs`` and writing ``output``.

        The inputs are always removed afterwards, the output only on failure.
        """
        try:
            self._run(*args, network=network)
        except ToolchainError:
            output.unlink(missing_ok=True)
            raise
        finally:
            for path in inputs:
                path.unlink(missing_ok=True)

    def release(self, *items: TxBody | SignedTx) -> None:
        for item in items:
            if isinstance(item.payload, Path):
                item.payload.unlink(missing_ok=True)

    def protocol_params_file(self) -> Path:
        """Query protocol parameters once and reuse the file."""
        with self._protocol_params_lock:
            if self._protocol_params is None:
                path = self.work_dir / "protocol.json"
                self._run("query", "protocol-parameters", "--out-file", path, network=True)
                self._protocol_params = path
        return self._protocol_params

    # Queries

    def query_tip(self) -> dict[str, Any]:
        return self._run_json("query", "tip", network=True)

    def query_stake_address_info(self, address: str) -> list[dict[str, Any]]:
        return self._run_json(
            "query", "stake-address-info", "--address", address, network=True
        )

    def query_utxo(self, address: str) -> list[Utxo]:
        raw = self._run_json(
            "query", "utxo", "--address", address, "--out-file", "/dev/stdout", network=True
        )
        utxos = []
        for ref, entry in raw.items():
            tx_hash, _, index = ref.partition("#")
            utxos.append(
                Utxo(
                    tx_hash=tx_hash,
                    output_index=int(index),
                    value=parse_utxo_value(entry["value"]),
                    address=entry.get("address", address),
                )
            )
        return utxos

    # Wallets

    def _wallet_file(self, name: str, kind: str) -> Path:
        return self.wallet_dir / name / f"{name}.{kind}"

    def create_wallet(self, name: str, with_stake_key: bool = False) -> WalletHandle:
        wallet_path = self.wallet_dir / name
        if wallet_path.exists():
            raise ToolchainError(f"Wallet {name} already exists")
        wallet_path.mkdir(parents=True)

        payment_vkey = self._wallet_file(name, "payment.vkey")
        self._run(
            "address",
            "key-gen",
            "--verification-key-file",
            payment_vkey,
            "--signing-key-file",
            self._wallet_file(name, "payment.skey"),
        )

        address_args: list[str | Path] = ["--payment-verification-key-file", payment_vkey]
        if with_stake_key:
            stake_vkey = self._wallet_file(name, "stake.vkey")
            self._run(
                "stake-address",
                "key-gen",
                "--verification-key-file",
                stake_vkey,
                "--signing-key-file",
                self._wallet_file(name, "stake.skey"),
            )
            self._run(
                "stake-address",
                "build",
                "--stake-verification-key-file",
                stake_vkey,
                "--out-file",
                self._wallet_file(name, "stake.addr"),
                network=True,
            )
            address_args += ["--stake-verification-key-file", stake_vkey]

        self._run(
            "address",
            "build",
            *address_args,
            "--out-file",
            self._wallet_file(name, "payment.addr"),
            network=True,
        )
        return self.wallet(name)

    def _payment_key_hash(self, name: str) -> str:
        if name not in self._key_hashes:
            self._key_hashes[name] = self._run(
                "address",
                "key-hash",
                "--payment-verification-key-file",
                self._wallet_file(name, "payment.vkey"),
            ).strip()
        return self._key_hashes[name]

    def wallet(self, name: str) -> WalletHandle:
        address_file = self._wallet_file(name, "payment.addr")
        if not address_file.exists():
            raise WalletNotFoundError(f"Wallet {name} not found in {self.wallet_dir}")

        stake_address = None
        stake_skey = None
        stake_address_file = self._wallet_file(name, "stake.addr")
        if stake_address_file.exists():
            stake_address = stake_address_file.read_text().strip()
            stake_skey = self._wallet_file(name, "stake.skey")

        return WalletHandle(
            name=name,
            payment_address=address_file.read_text().strip(),
            payment_skey=self._wallet_file(name, "payment.skey"),
            payment_key_hash=self._payment_key_hash(name),
            stake_address=stake_address,
            stake_skey=stake_skey,
        )

    # Transactions

    def build_raw(self, draft: TxDraft) -> TxBody:
        args: list[str | Path] = ["transaction", "build-raw"]
        inputs: list[Path] = []
        for utxo in draft.tx_in:
            args += ["--tx-in", utxo.ref]
        for out in draft.tx_out:
            args += ["--tx-out", format_tx_out(out)]

        if draft.mint:
            args += [
                "--mint",
                "+".join(f"{action.quantity} {action.asset}" for action in draft.mint),
            ]
            scripts: list[MintScript] = []
            for action in draft.mint:
                if action.script not in scripts:
                    scripts.append(action.script)
            for script in scripts:
                script_file = self._temp_file(".script", json.dumps(script_to_json(script)))
                inputs.append(script_file)
                args += ["--mint-script-file", script_file]

        if draft.metadata is not None:
            metadata_file = self._temp_file(".metadata.json", json.dumps(draft.metadata))
            inputs.append(metadata_file)
            args += ["--metadata-json-file", metadata_file]
        if draft.invalid_after is not None:
            args += ["--invalid-hereafter", str(draft.invalid_after)]

        body_file = self._temp_file(".raw")
        args += ["--fee", str(draft.fee), "--out-file", body_file]
        self._run_with_files(args, inputs, body_file)
        return TxBody(fee=draft.fee, payload=body_file)

    def calculate_min_fee(self, draft: TxDraft, body: TxBody) -> int:
        output = self._run(
            "transaction",
            "calculate-min-fee",
            "--tx-body-file",
            body.payload,
            "--tx-in-count",
            str(len(draft.tx_in)),
            "--tx-out-count",
            str(len(draft.tx_out)),
            "--witness-count",
            str(draft.witness_count),
            "--protocol-params-file",
            self.protocol_params_file(),
            network=True,
        )
        return _first_int(output)

    def min_required_utxo(self, address: str, value: Value) -> int:
        output = self._run(
            "transaction",
            "calculate-min-required-utxo",
            "--protocol-params-file",
            self.protocol_params_file(),
            "--tx-out",
            format_tx_out(TxOut(address, value)),
        )
        return _first_int(output)

    def policy_id(self, script: MintScript) -> str:
        script_file = self._temp_file(".script", json.dumps(script_to_json(script)))
        try:
            return self._run("transaction", "policyid", "--script-file", script_file).strip()
        finally:
            script_file.unlink(missing_ok=True)

    def sign(self, body: TxBody, signing_keys: list[Path]) -> SignedTx:
        args: list[str | Path] = ["transaction", "sign", "--tx-body-file", body.payload]
        for key in signing_keys:
            args += ["--signing-key-file", key]
        signed_file = self._temp_file(".signed")
        args += ["--out-file", signed_file]
        self._run_with_files(args, [], signed_file, network=True)
        return SignedTx(body=body, payload=signed_file)

    def submit(self, signed: SignedTx) -> str:
        self._run("transaction", "submit", "--tx-file", signed.payload, network=True)
        output = self._run("transaction", "txid", "--tx-file", signed.payload).strip()
        # newer cardano-cli releases print {"txhash": ...}
        if output.startswith("{"):
            return str(json.loads(output)["txhash"])
        return output
