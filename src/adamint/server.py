"""
HTTP API for wallet operations.

Every route is a POST returning JSON. Spending operations run in a worker
thread, one at a time per wallet.
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from aiohttp import web
from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from adamint.config import Settings
from adamint.models import OperationResult
from adamint.operations import WalletOperations

INVALID_REQUEST = {"success": False, "error": "Invalid Request"}

RequestT = TypeVar("RequestT", bound="ApiRequest")


class ApiRequest(BaseModel, ABC):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @property
    @abstractmethod
    def lock_name(self) -> str:
        """Wallet whose operations must not overlap with this one"""


class WalletRequest(ApiRequest):
    wallet: str

    @property
    def lock_name(self) -> str:
        return self.wallet


class LovelaceTransferRequest(WalletRequest):
    address: str
    amount: int
    message: str | None = None
    minus_tx_fee: bool = False
    input_tx: str | None = None


class TokenTransferRequest(WalletRequest):
    address: str
    asset_id: str
    amount: int


class AddressRequest(WalletRequest):
    address: str


class TokensToRecipientsRequest(WalletRequest):
    asset_id: str
    recipients: dict[str, int]
    recipients_lovelace: dict[str, int] | None = None
    message: str | None = None


class RefundRequest(WalletRequest):
    transaction_hash: str
    address: str
    message: str | None = None


class RandomAssetsRequest(WalletRequest):
    recipients: dict[str, int]
    message: str | None = None


class MultipleAssetsRequest(WalletRequest):
    recipients: dict[str, dict[str, int]]
    input_transactions: list[str] | None = None
    message: str | None = None


class PolicyRequest(ApiRequest):
    payment_wallet_name: str
    policy_wallet_name: str
    mint_script: dict[str, Any]

    @property
    def lock_name(self) -> str:
        return self.payment_wallet_name


class BurnRequest(PolicyRequest):
    burn_objects: dict[str, int]
    input_transactions: list[str] | None = None
    input_transactions_value: int | None = None
    revenue_address: str | None = None


class MintRequest(PolicyRequest):
    assets: dict[str, int]
    address: str | None = None
    message: str | None = None


class ApiServer:
    def __init__(self, settings: Settings, operations: WalletOperations) -> None:
        self.settings = settings
        self.operations = operations
        self.app = web.Application(middlewares=[self._auth_middleware])
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._wallet_locks: dict[str, asyncio.Lock] = {}
        self._stopping = False
        self._setup_routes()

    def _setup_routes(self) -> None:
        routes: dict[str, Callable[[web.Request], Awaitable[web.Response]]] = {
            "/api/status": self._handle_status,
            "/api/queryUtxo": self._handle_query_utxo,
            "/api/wallet/create": self._handle_create_wallet,
            "/api/wallet/balance": self._handle_wallet_balance,
            "/api/burn": self._handle_burn,
            "/api/mint": self._handle_mint,
            "/api/transfer/lovelace": self._handle_transfer_lovelace,
            "/api/transfer/token": self._handle_transfer_token,
            "/api/transfer/allTokens": self._handle_transfer_all_tokens,
            "/api/transfer/tokensToRecipients": self._handle_tokens_to_recipients,
            "/api/transfer/wipeWallet": self._handle_wipe_wallet,
            "/api/refund": self._handle_refund,
            "/api/transfer/randomWalletAssetsToRecipients": self._handle_random_assets,
            "/api/transfer/multipleAssetsToRecipients": self._handle_multiple_assets,
        }
        for path, handler in routes.items():
            self.app.router.add_post(path, handler)
        self.app.router.add_get("/health", self._handle_health)

    @web.middleware
    async def _auth_middleware(
        self,
        request: web.Request,
        handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
    ) -> web.StreamResponse:
        api_key = self.settings.api_key
        if api_key and request.path != "/health" and request.headers.get("secret") != api_key:
            logger.warning(f"Rejected request to {request.path}: bad API key")
            raise web.HTTPForbidden()
        return await handler(request)

    def _wallet_lock(self, name: str) -> asyncio.Lock:
        return self._wallet_locks.setdefault(name, asyncio.Lock())

    async def _parse(self, request: web.Request, model: type[RequestT]) -> RequestT | None:
        try:
            return model.model_validate(await request.json())
        except (ValidationError, ValueError) as e:
            logger.warning(f"Invalid request to {request.path}: {e}")
            return None

    async def _run_operation(
        self,
        request: web.Request,
        model: type[RequestT],
        operation: Callable[[RequestT], OperationResult],
    ) -> web.Response:
        body = await self._parse(request, model)
        if body is None:
            return web.json_response(INVALID_REQUEST)
        async with self._wallet_lock(body.lock_name):
            result = await asyncio.to_thread(operation, body)
        return web.json_response(result.model_dump(by_alias=True, exclude_none=True))

    async def _run_query(self, call: Callable[[], dict[str, Any]]) -> web.Response:
        try:
            data = await asyncio.to_thread(call)
        except Exception as e:
            logger.error(f"Query failed: {e}")
            return web.json_response({"success": False, "error": str(e)})
        return web.json_response(data)

    # Queries

    async def _handle_health(self, _request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy", "network": self.settings.network})

    async def _handle_status(self, _request: web.Request) -> web.Response:
        return await self._run_query(self.operations.query_tip)

    async def _handle_query_utxo(self, request: web.Request) -> web.Response:
        address = request.query.get("address")
        if address is None:
            return web.json_response({"success": False})

        def query() -> dict[str, Any]:
            utxos = self.operations.query_utxo(address)
            return {
                "success": True,
                "utxo": [
                    {"txHash": u.tx_hash, "txId": u.output_index, "value": u.value.to_dict()}
                    for u in utxos
                ],
            }

        return await self._run_query(query)

    async def _handle_create_wallet(self, request: web.Request) -> web.Response:
        name = request.query.get("name")
        if name is None:
            return web.json_response({"success": False})
        lock_slot = request.query.get("policyLockSlot")

        def create() -> dict[str, Any]:
            created = self.operations.create_wallet(name, policy_lock_slot=lock_slot)
            return {"success": True, **created.model_dump(by_alias=True, exclude_none=True)}

        async with self._wallet_lock(name):
            return await self._run_query(create)

    async def _handle_wallet_balance(self, request: web.Request) -> web.Response:
        name = request.query.get("name")
        if name is None:
            return web.json_response({"success": False})

        def balance() -> dict[str, Any]:
            return {"success": True, "balance": self.operations.wallet_balance(name).to_dict()}

        return await self._run_query(balance)

    # Spending operations

    async def _handle_transfer_lovelace(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request,
            LovelaceTransferRequest,
            lambda r: ops.transfer_lovelace(
                r.wallet, r.address, r.amount, r.message, r.minus_tx_fee, r.input_tx
            ),
        )

    async def _handle_transfer_token(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request,
            TokenTransferRequest,
            lambda r: ops.transfer_token(r.wallet, r.address, r.asset_id, r.amount),
        )

    async def _handle_transfer_all_tokens(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request,
            AddressRequest,
            lambda r: ops.transfer_all_native_tokens(r.wallet, r.address),
        )

    async def _handle_tokens_to_recipients(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request,
            TokensToRecipientsRequest,
            lambda r: ops.transfer_tokens_to_recipients(
                r.wallet, r.asset_id, r.recipients, r.recipients_lovelace, r.message
            ),
        )

    async def _handle_wipe_wallet(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request, AddressRequest, lambda r: ops.wipe_wallet(r.wallet, r.address)
        )

    async def _handle_refund(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request,
            RefundRequest,
            lambda r: ops.refund_transaction(r.wallet, r.transaction_hash, r.address, r.message),
        )

    async def _handle_random_assets(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request,
            RandomAssetsRequest,
            lambda r: ops.transfer_random_assets_to_recipients(r.wallet, r.recipients, r.message),
        )

    async def _handle_multiple_assets(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request,
            MultipleAssetsRequest,
            lambda r: ops.transfer_multiple_assets_to_recipients(
                r.wallet, r.recipients, r.input_transactions, r.message
            ),
        )

    async def _handle_burn(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request,
            BurnRequest,
            lambda r: ops.burn_tokens(
                r.payment_wallet_name,
                r.policy_wallet_name,
                r.burn_objects,
                r.mint_script,
                input_transactions=r.input_transactions,
                payout_lovelace=r.input_transactions_value,
                revenue_address=r.revenue_address,
            ),
        )

    async def _handle_mint(self, request: web.Request) -> web.Response:
        ops = self.operations
        return await self._run_operation(
            request,
            MintRequest,
            lambda r: ops.mint_tokens(
                r.payment_wallet_name,
                r.policy_wallet_name,
                r.assets,
                r.mint_script,
                address=r.address,
                message=r.message,
            ),
        )

    async def start(self) -> None:
        logger.info(f"Starting API server on {self.settings.http_host}:{self.settings.http_port}")

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.settings.http_host, self.settings.http_port)
        await self.site.start()

        if not self.settings.api_key:
            logger.warning("API_KEY is not set, the API accepts unauthenticated requests")
        logger.info(
            f"API server running at http://{self.settings.http_host}:{self.settings.http_port}"
        )

    async def stop(self) -> None:
        if self._stopping:
            return
        self._stopping = True

        logger.info("Stopping API server...")

        if self.site:
            with contextlib.suppress(RuntimeError):
                await self.site.stop()
            self.site = None

        if self.runner:
            with contextlib.suppress(RuntimeError):
                await self.runner.cleanup()
            self.runner = None

        self.operations.backend.close()
        logger.info("API server stopped")
