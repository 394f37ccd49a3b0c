"""
Submission channels.

Three interchangeable ways to get an ExecutionRequest executed:

- PublicMempoolChannel: sign and broadcast through the node
- PrivateRelayChannel: sign and hand the raw transaction to a private
  relay (eth_sendPrivateTransaction) to keep it out of the public pool
- SimulatedChannel: run it against a fork seeded from the pool snapshot

Each `submit` returns a PendingExecution whose `result()` resolves to an
ExecutionOutcome.
"""

import asyncio
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from eth_abi import decode
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TimeExhausted

from .amm import from_raw
from .codec import split_execute_call
from .config_loader import BotConfig
from .exceptions import ExecutionRevertedError, SubmissionRejectedError
from .fork import SimulatedFork
from .types import ExecutionOutcome, ExecutionRequest, PoolSnapshot
from .utils import get_logger

logger = get_logger(__name__)

PROFIT_SUMMARY_TOPIC = Web3.keccak(text="ProfitSummary(address,uint256,uint256,uint256)")
RELAY_MAX_BLOCKS = 25


class PendingExecution:
    """Handle for a submitted request."""

    def __init__(
        self,
        request: ExecutionRequest,
        channel: str,
        resolver: Callable[[], Awaitable[ExecutionOutcome]],
        tx_hash: Optional[str] = None,
    ):
        self.request = request
        self.channel = channel
        self.tx_hash = tx_hash
        self._resolver = resolver
        self._outcome: Optional[ExecutionOutcome] = None

    async def result(self) -> ExecutionOutcome:
        if self._outcome is None:
            self._outcome = await self._resolver()
        return self._outcome


class SubmissionChannel:
    """Base class; subclasses implement `submit`."""

    name = "base"

    async def submit(self, request: ExecutionRequest) -> PendingExecution:
        raise NotImplementedError


class TransactionSigner:
    """Builds and signs the EIP-1559 transaction calling the execution contract."""

    def __init__(self, private_key: str, executor_address: str, chain_id: int):
        self.account: LocalAccount = Account.from_key(private_key)
        self.executor_address = Web3.to_checksum_address(executor_address)
        self.chain_id = chain_id
        logger.info(f"Loaded account: {self.account.address}")

    @property
    def address(self) -> str:
        return self.account.address

    def build_tx(self, request: ExecutionRequest, nonce: int) -> Dict[str, Any]:
        tx = {
            "type": 2,
            "chainId": self.chain_id,
            "from": self.account.address,
            "to": self.executor_address,
            "value": 0,
            "nonce": nonce,
            "data": request.calldata,
        }
        tx.update(request.fee.to_tx_fields())
        return tx

    def sign(self, request: ExecutionRequest, nonce: int) -> bytes:
        signed = self.account.sign_transaction(self.build_tx(request, nonce))
        return bytes(signed.raw_transaction)


def realized_profit_from_receipt(receipt, request: ExecutionRequest) -> Optional[Decimal]:
    """Profit from the ProfitSummary log, in funding-token units."""
    for log in receipt.get("logs", []):
        topics = log.get("topics", [])
        if topics and bytes(topics[0]) == bytes(PROFIT_SUMMARY_TOPIC):
            _, _, profit = decode(["uint256", "uint256", "uint256"], bytes(log["data"]))
            return from_raw(profit, request.asset.decimals)
    return None


class _Web3Channel(SubmissionChannel):
    """Shared signing and receipt handling for channels that reach the chain."""

    def __init__(self, web3: Web3, signer: TransactionSigner, timeout_s: float = 60.0):
        self.web3 = web3
        self.signer = signer
        self.timeout_s = timeout_s

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def _signed(self, request: ExecutionRequest) -> bytes:
        nonce = await self._run(
            self.web3.eth.get_transaction_count, self.signer.address, "pending"
        )
        return self.signer.sign(request, nonce)

    def _pending(self, request: ExecutionRequest, tx_hash: str) -> PendingExecution:
        started = time.time()

        async def resolve() -> ExecutionOutcome:
            try:
                receipt = await self._run(
                    lambda: self.web3.eth.wait_for_transaction_receipt(
                        tx_hash, timeout=self.timeout_s
                    )
                )
            except TimeExhausted:
                logger.warning(f"Transaction {tx_hash} not mined within {self.timeout_s}s")
                return ExecutionOutcome.timed_out(request, tx_hash=tx_hash, channel=self.name)

            common = {
                "tx_hash": tx_hash,
                "block_number": receipt.get("blockNumber"),
                "gas_used": receipt.get("gasUsed"),
                "channel": self.name,
                "extra": {"latency_ms": f"{(time.time() - started) * 1000:.0f}"},
            }
            if receipt.get("status") == 1:
                profit = realized_profit_from_receipt(receipt, request)
                return ExecutionOutcome.committed(
                    request, profit if profit is not None else Decimal(0), **common
                )
            return ExecutionOutcome.reverted(request, "reverted on-chain", **common)

        return PendingExecution(request, self.name, resolve, tx_hash)


class PublicMempoolChannel(_Web3Channel):
    name = "public"

    async def submit(self, request: ExecutionRequest) -> PendingExecution:
        raw = await self._signed(request)
        try:
            tx_hash = await self._run(self.web3.eth.send_raw_transaction, raw)
        except (ValueError, ConnectionError) as e:
            raise SubmissionRejectedError(
                f"Node rejected transaction: {e}", channel=self.name
            ) from e
        tx_hash = Web3.to_hex(tx_hash)
        logger.info(f"Broadcast {request.request_id} as {tx_hash}")
        return self._pending(request, tx_hash)


class PrivateRelayChannel(_Web3Channel):
    """Sends the signed transaction to a private relay over JSON-RPC."""

    name = "private"

    def __init__(
        self,
        web3: Web3,
        signer: TransactionSigner,
        relay_url: str,
        timeout_s: float = 60.0,
        http_timeout_s: float = 10.0,
    ):
        super().__init__(web3, signer, timeout_s)
        self.relay_url = relay_url
        self.http_timeout_s = http_timeout_s

    async def submit(self, request: ExecutionRequest) -> PendingExecution:
        raw = await self._signed(request)
        current_block = await self._run(lambda: self.web3.eth.block_number)
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_sendPrivateTransaction",
            "params": [
                {
                    "tx": Web3.to_hex(raw),
                    "maxBlockNumber": hex(current_block + RELAY_MAX_BLOCKS),
                    "preferences": {"fast": True},
                }
            ],
        }

        timeout = aiohttp.ClientTimeout(total=self.http_timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.relay_url, json=payload) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise SubmissionRejectedError(
                            f"Relay returned HTTP {response.status}: {text[:200]}",
                            channel=self.name,
                        )
                    body = await response.json()
        except aiohttp.ClientError as e:
            raise SubmissionRejectedError(f"Relay unreachable: {e}", channel=self.name) from e

        if "error" in body:
            raise SubmissionRejectedError(
                f"Relay rejected transaction: {body['error']}", channel=self.name
            )
        tx_hash = body.get("result")
        if not tx_hash:
            raise SubmissionRejectedError("Relay returned no transaction hash", channel=self.name)

        logger.info(f"Sent {request.request_id} to private relay as {tx_hash}")
        return self._pending(request, tx_hash)


class SimulatedChannel(SubmissionChannel):
    """
    Executes requests on a SimulatedFork of the latest snapshot.

    Used for dry runs and for the pre-submission check; the real chain is
    never touched.
    """

    name = "simulated"

    def __init__(
        self,
        config: BotConfig,
        snapshot_provider: Callable[[], PoolSnapshot],
        sender: str,
    ):
        self.config = config
        self.snapshot_provider = snapshot_provider
        self.sender = sender
        self.last_fork: Optional[SimulatedFork] = None

    async def submit(self, request: ExecutionRequest) -> PendingExecution:
        fork = SimulatedFork.from_snapshot(
            self.config,
            self.snapshot_provider(),
            self.sender,
            timestamp=request.deadline - 1,
        )
        self.last_fork = fork
        asset, amount, params = split_execute_call(request.calldata)

        try:
            profit_raw = fork.executor.execute_arbitrage(self.sender, asset, amount, params)
            outcome = ExecutionOutcome.committed(
                request, from_raw(profit_raw, request.asset.decimals), channel=self.name
            )
        except ExecutionRevertedError as e:
            outcome = ExecutionOutcome.reverted(
                request, e.reason.value, channel=self.name, extra={"detail": str(e)}
            )

        async def resolve() -> ExecutionOutcome:
            return outcome

        return PendingExecution(request, self.name, resolve)
