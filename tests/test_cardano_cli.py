"""
Tests for the cardano-cli backend (subprocess mocked).
"""

from __future__ import annotations

import json
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from adamint.backends.base import ToolchainError, TxBody
from adamint.backends.cardano_cli import (
    CardanoCliBackend,
    WalletNotFoundError,
    format_value,
    parse_utxo_value,
)
from adamint.config import Settings
from adamint.models import MintAction, TxDraft, TxOut, Utxo
from adamint.policy import build_mint_script
from adamint.tx_builder import TxDraftBuilder
from adamint.value import AssetId, Value


class FakeCli:
    """Stand-in for subprocess.run recording every cardano-cli invocation."""

    def __init__(self, outputs: dict[str, str] | None = None) -> None:
        self.outputs = outputs or {}
        self.calls: list[list[str]] = []
        self.envs: list[dict[str, str]] = []
        self.files: dict[str, str] = {}

    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        self.calls.append(cmd)
        self.envs.append(kwargs["env"])
        args = [a for a in cmd[1:] if a != "conway"]
        key = " ".join(args[:2])

        if "--out-file" in cmd and key != "query utxo":
            out_file = Path(cmd[cmd.index("--out-file") + 1])
            out_file.write_text(self.outputs.get(f"{key} file", "addr_test1generated"))
        if "key-gen" in args:
            for flag in ("--verification-key-file", "--signing-key-file"):
                Path(cmd[cmd.index(flag) + 1]).write_text("{}")
        for flag in ("--mint-script-file", "--metadata-json-file", "--script-file"):
            for i, arg in enumerate(cmd):
                if arg == flag:
                    self.files[cmd[i + 1]] = Path(cmd[i + 1]).read_text()

        return subprocess.CompletedProcess(cmd, 0, stdout=self.outputs.get(key, ""), stderr="")

    def find(self, *prefix: str) -> list[str]:
        for call in self.calls:
            if " ".join(call).find(" ".join(prefix)) != -1:
                return call
        raise AssertionError(f"No call matching {prefix}")

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if " ".join(prefix) in " ".join(call))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        network="preprod",
        wallet_dir=tmp_path / "wallet",
        work_dir=tmp_path / "tmp",
        node_socket_path=tmp_path / "node.socket",
    )


def _backend(settings: Settings) -> CardanoCliBackend:
    return CardanoCliBackend(settings)


def test_parse_utxo_value() -> None:
    value = parse_utxo_value({"lovelace": 5_000_000, "policy1": {"tokenA": 3, "tokenB": 1}})
    assert value.to_dict() == {"lovelace": 5_000_000, "policy1.tokenA": 3, "policy1.tokenB": 1}
    assert parse_utxo_value(2_000_000).to_dict() == {"lovelace": 2_000_000}


def test_format_value() -> None:
    value = Value.from_dict({"lovelace": 1_500_000, "policy1.b": 2, "policy1.a": 1})
    assert format_value(value) == "1500000+1 policy1.a+2 policy1.b"


class TestQueries:
    def test_query_utxo(self, settings: Settings) -> None:
        raw = {
            f"{'ab' * 32}#1": {
                "address": "addr_test1wallet",
                "value": {"lovelace": 5_000_000, "policy1": {"tokenA": 3}},
            }
        }
        cli = FakeCli({"query utxo": json.dumps(raw)})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            utxos = _backend(settings).query_utxo("addr_test1wallet")

        assert utxos == [
            Utxo(
                "ab" * 32,
                1,
                Value.from_dict({"lovelace": 5_000_000, "policy1.tokenA": 3}),
                "addr_test1wallet",
            )
        ]
        cmd = cli.find("query", "utxo")
        assert cmd[-2:] == ["--testnet-magic", "1"]
        assert "/dev/stdout" in cmd
        assert cli.envs[0]["CARDANO_NODE_SOCKET_PATH"] == str(settings.node_socket_path)

    def test_query_tip(self, settings: Settings) -> None:
        cli = FakeCli({"query tip": '{"slot": 100, "epoch": 3}'})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            assert _backend(settings).query_tip() == {"slot": 100, "epoch": 3}

    def test_invalid_json(self, settings: Settings) -> None:
        cli = FakeCli({"query tip": "not json"})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            with pytest.raises(ToolchainError, match="invalid JSON"):
                _backend(settings).query_tip()

    def test_mainnet_args(self, tmp_path: Path) -> None:
        settings = Settings(network="mainnet", work_dir=tmp_path)
        cli = FakeCli({"query tip": "{}"})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            _backend(settings).query_tip()
        assert cli.calls[0][-1] == "--mainnet"


class TestTransactions:
    def _draft(self) -> TxDraft:
        script = build_mint_script("policykeyhash", 12345678)
        return TxDraft(
            tx_in=[Utxo("ab" * 32, 0, Value.from_dict({"lovelace": 3_000_000, "p.a": 10}))],
            tx_out=[TxOut("addr_test1change", Value.from_dict({"lovelace": 3_000_000, "p.a": 5}))],
            mint=[MintAction(quantity=-5, asset=AssetId.parse("p.a"), script=script)],
            metadata={"674": {"msg": ["hello"]}},
            witness_count=2,
            invalid_after=12345678,
        )

    def test_build_raw(self, settings: Settings) -> None:
        cli = FakeCli()
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            body = _backend(settings).build_raw(self._draft())

        cmd = cli.find("transaction", "build-raw")
        assert cmd[cmd.index("--tx-in") + 1] == f"{'ab' * 32}#0"
        assert cmd[cmd.index("--tx-out") + 1] == "addr_test1change+3000000+5 p.a"
        assert cmd[cmd.index("--mint") + 1] == "-5 p.a"
        assert cmd[cmd.index("--invalid-hereafter") + 1] == "12345678"
        assert cmd[cmd.index("--fee") + 1] == "0"

        script_file = cmd[cmd.index("--mint-script-file") + 1]
        assert json.loads(cli.files[script_file])["scripts"][1] == {
            "type": "before",
            "slot": 12345678,
        }
        metadata_file = cmd[cmd.index("--metadata-json-file") + 1]
        assert json.loads(cli.files[metadata_file]) == {"674": {"msg": ["hello"]}}
        assert not Path(script_file).exists()
        assert not Path(metadata_file).exists()
        assert body.fee == 0
        assert body.payload == Path(cmd[cmd.index("--out-file") + 1])

    def test_calculate_min_fee(self, settings: Settings) -> None:
        cli = FakeCli({"transaction calculate-min-fee": "170000 Lovelace\n"})
        draft = self._draft()
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            backend = _backend(settings)
            body = TxBody(fee=0, payload=settings.work_dir / "tx.raw")
            assert backend.calculate_min_fee(draft, body) == 170_000
            assert backend.calculate_min_fee(draft, body) == 170_000

        cmd = cli.find("transaction", "calculate-min-fee")
        assert cmd[cmd.index("--witness-count") + 1] == "2"
        assert cmd[cmd.index("--tx-in-count") + 1] == "1"
        assert cli.count("query", "protocol-parameters") == 1

    @pytest.mark.parametrize("output", ["Lovelace 1310316\n", "Coin 1310316\n"])
    def test_min_required_utxo(self, settings: Settings, output: str) -> None:
        cli = FakeCli({"transaction calculate-min-required-utxo": output})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            minimum = _backend(settings).min_required_utxo(
                "addr_test1x", Value.from_dict({"lovelace": 1_500_000, "p.a": 1})
            )
        assert minimum == 1_310_316
        cmd = cli.find("calculate-min-required-utxo")
        assert cmd[cmd.index("--tx-out") + 1] == "addr_test1x+1500000+1 p.a"

    def test_policy_id(self, settings: Settings) -> None:
        cli = FakeCli({"transaction policyid": "deadbeef\n"})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            assert _backend(settings).policy_id(build_mint_script("abc")) == "deadbeef"

        cmd = cli.find("transaction", "policyid")
        assert not Path(cmd[cmd.index("--script-file") + 1]).exists()

    def test_sign_and_submit(self, settings: Settings, tmp_path: Path) -> None:
        cli = FakeCli({"transaction txid": '{"txhash": "abc123"}\n'})
        keys = [tmp_path / "a.skey", tmp_path / "b.skey"]
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            backend = _backend(settings)
            signed = backend.sign(TxBody(fee=1, payload=Path("tx.raw")), keys)
            assert backend.submit(signed) == "abc123"

        sign_cmd = cli.find("transaction", "sign")
        assert sign_cmd.count("--signing-key-file") == 2
        submit_cmd = cli.find("transaction", "submit")
        assert submit_cmd[submit_cmd.index("--tx-file") + 1] == str(signed.payload)

    def test_plain_txid(self, settings: Settings) -> None:
        cli = FakeCli({"transaction txid": "abc123\n"})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            backend = _backend(settings)
            assert backend.submit(backend.sign(TxBody(fee=1, payload=Path("tx.raw")), [])) == (
                "abc123"
            )

    def test_era_prefix(self, settings: Settings) -> None:
        settings.era = "conway"
        cli = FakeCli({"transaction policyid": "deadbeef"})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            _backend(settings).policy_id(build_mint_script("abc"))
        assert cli.calls[0][1:3] == ["conway", "transaction"]


class TestErrors:
    def test_called_process_error(self, settings: Settings) -> None:
        error = subprocess.CalledProcessError(1, ["cardano-cli"], stderr="BadInputsUTxO\n")
        with patch("adamint.backends.cardano_cli.subprocess.run", side_effect=error):
            with pytest.raises(ToolchainError, match="BadInputsUTxO") as exc_info:
                _backend(settings).query_tip()
        assert exc_info.value.kind == "toolchain"
        assert exc_info.value.__cause__ is error

    def test_timeout(self, settings: Settings) -> None:
        error = subprocess.TimeoutExpired(["cardano-cli"], 60)
        with patch("adamint.backends.cardano_cli.subprocess.run", side_effect=error):
            with pytest.raises(ToolchainError, match="timed out"):
                _backend(settings).query_tip()

    def test_missing_executable(self, settings: Settings) -> None:
        with patch(
            "adamint.backends.cardano_cli.subprocess.run", side_effect=FileNotFoundError("nope")
        ):
            with pytest.raises(ToolchainError, match="Could not run"):
                _backend(settings).query_tip()

    def test_unexpected_fee_output(self, settings: Settings) -> None:
        cli = FakeCli({"transaction calculate-min-fee": "error"})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            with pytest.raises(ToolchainError, match="Unexpected"):
                _backend(settings).calculate_min_fee(TxDraft(), TxBody(fee=0))


class TestWallets:
    def test_create_wallet(self, settings: Settings) -> None:
        cli = FakeCli({"address key-hash": "abc123keyhash\n"})
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            handle = _backend(settings).create_wallet("alice", with_stake_key=True)

        wallet_dir = settings.wallet_dir / "alice"
        assert handle.payment_address == "addr_test1generated"
        assert handle.payment_key_hash == "abc123keyhash"
        assert handle.payment_skey == wallet_dir / "alice.payment.skey"
        assert handle.stake_skey == wallet_dir / "alice.stake.skey"
        assert handle.stake_address is not None
        build = cli.find("address", "build")
        assert "--stake-verification-key-file" in build

    def test_create_existing_wallet(self, settings: Settings) -> None:
        (settings.wallet_dir / "alice").mkdir(parents=True)
        with patch("adamint.backends.cardano_cli.subprocess.run", FakeCli()):
            with pytest.raises(ToolchainError, match="already exists"):
                _backend(settings).create_wallet("alice")

    def test_existing_wallet_key_hash_cached(self, settings: Settings) -> None:
        wallet_dir = settings.wallet_dir / "bob"
        wallet_dir.mkdir(parents=True)
        (wallet_dir / "bob.payment.addr").write_text("addr_test1bob\n")
        cli = FakeCli({"address key-hash": "bobhash\n"})

        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            backend = _backend(settings)
            handle = backend.wallet("bob")
            backend.wallet("bob")

        assert handle.payment_address == "addr_test1bob"
        assert handle.stake_address is None
        assert cli.count("address", "key-hash") == 1

    def test_unknown_wallet(self, settings: Settings) -> None:
        with pytest.raises(WalletNotFoundError) as exc_info:
            _backend(settings).wallet("ghost")
        assert exc_info.value.kind == "validation"


class SlowProtocolParamsCli(FakeCli):
    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        if "protocol-parameters" in cmd:
            time.sleep(0.05)
        return super().__call__(cmd, **kwargs)


class TestWorkDir:
    def _draft(self) -> TxDraft:
        return TxDraft(
            tx_in=[Utxo("ab" * 32, 0, Value.from_lovelace(5_000_000))],
            tx_out=[
                TxOut("addr_test1change", Value.from_dict({"lovelace": 4_000_000, "p.a": 1})),
                TxOut("addr_test1recipient", Value.from_lovelace(1_000_000)),
            ],
            mint=[
                MintAction(quantity=1, asset=AssetId.parse("p.a"), script=build_mint_script("h"))
            ],
            metadata={"674": {"msg": ["hello"]}},
        )

    def test_execute_leaves_only_protocol_params(self, settings: Settings, tmp_path: Path) -> None:
        cli = FakeCli(
            {
                "transaction calculate-min-fee": "170000 Lovelace\n",
                "transaction txid": "abc123\n",
            }
        )
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            builder = TxDraftBuilder(_backend(settings))
            for _ in range(5):
                tx_id, _ = builder.execute(self._draft(), [tmp_path / "payment.skey"])
                assert tx_id == "abc123"

        assert cli.count("transaction", "submit") == 5
        assert [p.name for p in settings.work_dir.iterdir()] == ["protocol.json"]

    def test_failed_submit_removes_body_and_signed_tx(
        self, settings: Settings, tmp_path: Path
    ) -> None:
        cli = FakeCli({"transaction calculate-min-fee": "170000 Lovelace\n"})

        def run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            if "submit" in cmd:
                raise subprocess.CalledProcessError(1, cmd, stderr="BadInputsUTxO")
            return cli(cmd, **kwargs)

        draft = self._draft()
        with patch("adamint.backends.cardano_cli.subprocess.run", run):
            with pytest.raises(ToolchainError, match="BadInputsUTxO"):
                TxDraftBuilder(_backend(settings)).execute(draft, [tmp_path / "payment.skey"])

        assert [p.name for p in settings.work_dir.iterdir()] == ["protocol.json"]

    def test_failed_build_removes_temp_files(self, settings: Settings) -> None:
        error = subprocess.CalledProcessError(1, ["cardano-cli"], stderr="bad tx-out")
        with patch("adamint.backends.cardano_cli.subprocess.run", side_effect=error):
            with pytest.raises(ToolchainError):
                _backend(settings).build_raw(self._draft())

        assert list(settings.work_dir.iterdir()) == []

    def test_failed_sign_removes_signed_file(self, settings: Settings, tmp_path: Path) -> None:
        error = subprocess.CalledProcessError(1, ["cardano-cli"], stderr="missing key")
        with patch("adamint.backends.cardano_cli.subprocess.run", side_effect=error):
            with pytest.raises(ToolchainError):
                _backend(settings).sign(TxBody(fee=1, payload=Path("tx.raw")), [tmp_path / "k"])

        assert list(settings.work_dir.iterdir()) == []

    def test_protocol_params_queried_once_across_threads(self, settings: Settings) -> None:
        cli = SlowProtocolParamsCli({"transaction calculate-min-required-utxo": "Coin 1000000"})
        value = Value.from_lovelace(1_500_000)
        with patch("adamint.backends.cardano_cli.subprocess.run", cli):
            backend = _backend(settings)
            with ThreadPoolExecutor(max_workers=4) as pool:
                minimums = list(
                    pool.map(lambda _: backend.min_required_utxo("addr_test1x", value), range(4))
                )

        assert minimums == [1_000_000] * 4
        assert cli.count("query", "protocol-parameters") == 1
