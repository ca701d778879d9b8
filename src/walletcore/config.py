"""
Configuration management using pydantic-settings.

Every field can be set through a WALLETCORE_-prefixed environment variable
or a .env file, e.g. WALLETCORE_NETWORK=signet.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from walletcore.backends import BitcoinCoreClient
from walletcore.backup import DEFAULT_KDF_ITERATIONS, BackupRecord, encrypt_backup
from walletcore.bip32 import ExtendedKey
from walletcore.builder import TransactionBuilder
from walletcore.coin_selection import (
    DEFAULT_BNB_MAX_TRIES,
    CoinSelection,
    CoinSelector,
    SelectionStrategy,
)
from walletcore.constants import DEFAULT_DUST_RELAY_FEE
from walletcore.models import Network, Utxo


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WALLETCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    network: Network = Network.MAINNET

    # Node client
    rpc_url: str = "http://127.0.0.1:8332"
    rpc_user: str = "rpcuser"
    rpc_password: str = "rpcpassword"
    rpc_timeout: float = Field(default=30.0, gt=0)

    # Fees and coin selection
    fee_rate: Decimal = Field(default=Decimal("2"), ge=0, description="Fallback fee rate in sat/vB")
    dust_relay_fee: Decimal = Field(default=Decimal(DEFAULT_DUST_RELAY_FEE), ge=0)
    min_change: int = Field(default=0, ge=0, description="Change below this is added to the fee")
    coin_selection_strategy: SelectionStrategy = SelectionStrategy.BRANCH_AND_BOUND
    bnb_max_tries: int = Field(default=DEFAULT_BNB_MAX_TRIES, ge=1)
    enable_rbf: bool = False

    # Encrypted backups
    backup_kdf_iterations: int = Field(default=DEFAULT_KDF_ITERATIONS, ge=1)

    log_level: str = "INFO"

    @model_validator(mode="after")
    def set_rpc_port_default(self) -> Settings:
        """Point the default RPC URL at the network's default port."""
        if "rpc_url" not in self.model_fields_set:
            port = {
                Network.MAINNET: 8332,
                Network.TESTNET: 18332,
                Network.SIGNET: 38332,
                Network.REGTEST: 18443,
            }[self.network]
            object.__setattr__(self, "rpc_url", f"http://127.0.0.1:{port}")
        return self

    def node_client(self) -> BitcoinCoreClient:
        """Bitcoin Core client for the configured RPC endpoint."""
        return BitcoinCoreClient(
            rpc_url=self.rpc_url,
            rpc_user=self.rpc_user,
            rpc_password=self.rpc_password,
            timeout=self.rpc_timeout,
        )

    def select_coins(
        self,
        utxos: Sequence[Utxo],
        target_amount: int,
        fee_rate: Decimal | None = None,
        **kwargs,
    ) -> CoinSelection:
        """Coin selection with the configured strategy; fee_rate defaults to the configured one."""
        kwargs.setdefault("dust_relay_fee", self.dust_relay_fee)
        kwargs.setdefault("min_change", self.min_change)
        kwargs.setdefault("max_tries", self.bnb_max_tries)
        rate = self.fee_rate if fee_rate is None else fee_rate
        return CoinSelector(**kwargs).select(
            utxos, target_amount, rate, self.coin_selection_strategy
        )

    def transaction_builder(self, **kwargs) -> TransactionBuilder:
        kwargs.setdefault("network", self.network)
        kwargs.setdefault("dust_relay_fee", self.dust_relay_fee)
        kwargs.setdefault("enable_rbf", self.enable_rbf)
        return TransactionBuilder(**kwargs)

    def backup(self, key: ExtendedKey, password: str) -> BackupRecord:
        """Encrypt an extended private key with the configured KDF cost."""
        return encrypt_backup(key, password, iterations=self.backup_kdf_iterations)


def get_settings() -> Settings:
    return Settings()
