"""
Configuration management for adamint.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Network magic of the public test networks
DEFAULT_TESTNET_MAGIC = {
    "testnet": 1097911063,
    "preprod": 1,
    "preview": 2,
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: Literal["mainnet", "testnet", "preprod", "preview"] = "mainnet"
    testnet_magic: int | None = None

    cardano_cli: str = "cardano-cli"
    node_socket_path: Path | None = None
    shelley_genesis_path: Path | None = None
    era: str | None = None  # e.g. "conway", prefixed to every cardano-cli command

    wallet_dir: Path = Path("priv/wallet")
    work_dir: Path = Path("priv/tmp")
    cli_timeout: float = Field(default=60.0, gt=0)

    api_key: str | None = None
    http_host: str = "0.0.0.0"
    http_port: int = 3001

    log_level: str = "INFO"
    log_dir: Path | None = None

    def network_magic(self) -> int | None:
        """
        Network magic for testnets, None on mainnet.

        An explicit ``testnet_magic`` wins over the genesis file, which wins
        over the well-known magic of the named network.
        """
        if self.network == "mainnet":
            return None
        if self.testnet_magic is not None:
            return self.testnet_magic
        if self.shelley_genesis_path is not None:
            genesis = json.loads(self.shelley_genesis_path.read_text())
            return int(genesis["networkMagic"])
        return DEFAULT_TESTNET_MAGIC[self.network]

    def network_args(self) -> list[str]:
        magic = self.network_magic()
        if magic is None:
            return ["--mainnet"]
        return ["--testnet-magic", str(magic)]


def get_settings() -> Settings:
    return Settings()
