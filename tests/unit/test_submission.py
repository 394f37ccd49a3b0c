"""Tests for the submission channels."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import aiohttp
import pytest
from eth_abi import encode
from web3.exceptions import TimeExhausted

from conftest import SENDER, make_snapshot, make_state, scenario_states
from flash_arbitrage.builder import TransactionBuilder
from flash_arbitrage.exceptions import SubmissionRejectedError
from flash_arbitrage.strategy import StrategyEngine
from flash_arbitrage.submission import (
    PROFIT_SUMMARY_TOPIC,
    PrivateRelayChannel,
    PublicMempoolChannel,
    SimulatedChannel,
    TransactionSigner,
    realized_profit_from_receipt,
)
from flash_arbitrage.types import Candidate, FeeParams, OutcomeStatus
from flash_arbitrage.validator import SecurityValidator, collect_price_sources

PRIVATE_KEY = "0x" + "4c" * 32
EXECUTOR = "0x" + "ab" * 20
FEE = FeeParams("base_fee_multiplied", 26 * 10**9, 2 * 10**9, 500_000, 20 * 10**9)
TX_HASH = "0x" + "12" * 32


async def build_request(config, snapshot, clock, first="sushiswap", second="uniswap"):
    weth, usdc = config.token("WETH"), config.token("USDC")
    candidate = Candidate((weth, usdc, weth), (config.venue(first), config.venue(second)))
    evaluation = await StrategyEngine(config).evaluate(candidate, snapshot)
    validated = SecurityValidator(config).validate(
        evaluation, collect_price_sources(snapshot, evaluation)
    )
    return TransactionBuilder(config, clock).build(validated, FEE)


def mock_web3(receipt=None, send_error=None):
    web3 = Mock()
    web3.eth.get_transaction_count.return_value = 7
    web3.eth.block_number = 100
    if send_error is not None:
        web3.eth.send_raw_transaction.side_effect = send_error
    else:
        web3.eth.send_raw_transaction.return_value = bytes.fromhex("12" * 32)
    if isinstance(receipt, Exception):
        web3.eth.wait_for_transaction_receipt.side_effect = receipt
    else:
        web3.eth.wait_for_transaction_receipt.return_value = receipt
    return web3


def profit_receipt(profit_raw, status=1):
    data = encode(["uint256", "uint256", "uint256"], [10**18, 9 * 10**14, profit_raw])
    return {
        "status": status,
        "blockNumber": 101,
        "gasUsed": 310_000,
        "logs": [{"topics": [PROFIT_SUMMARY_TOPIC], "data": data}],
    }


@pytest.fixture
def signer():
    return TransactionSigner(PRIVATE_KEY, EXECUTOR, chain_id=1)


# === SIGNER ===


@pytest.mark.asyncio
async def test_signer_builds_eip1559_call(config, scenario_snapshot, clock, signer):
    request = await build_request(config, scenario_snapshot, clock)
    tx = signer.build_tx(request, nonce=3)

    assert tx["type"] == 2
    assert tx["nonce"] == 3
    assert tx["chainId"] == 1
    assert tx["data"] == request.calldata
    assert tx["maxFeePerGas"] == FEE.max_fee_per_gas
    assert tx["gas"] == 500_000
    assert tx["to"].lower() == EXECUTOR
    assert isinstance(signer.sign(request, 3), bytes)


def test_realized_profit_from_receipt(config):
    request = Mock()
    request.asset = config.token("WETH")
    assert realized_profit_from_receipt(profit_receipt(2 * 10**15), request) == Decimal("0.002")
    assert realized_profit_from_receipt({"logs": []}, request) is None


# === PUBLIC MEMPOOL ===


@pytest.mark.asyncio
async def test_public_channel_commits(config, scenario_snapshot, clock, signer):
    request = await build_request(config, scenario_snapshot, clock)
    web3 = mock_web3(receipt=profit_receipt(2 * 10**15))
    channel = PublicMempoolChannel(web3, signer, timeout_s=5)

    pending = await channel.submit(request)
    outcome = await pending.result()

    assert pending.tx_hash == TX_HASH
    assert outcome.status is OutcomeStatus.COMMITTED
    assert outcome.realized_profit == Decimal("0.002")
    assert outcome.gas_used == 310_000
    assert outcome.channel == "public"
    web3.eth.get_transaction_count.assert_called_once_with(signer.address, "pending")


@pytest.mark.asyncio
async def test_public_channel_reverted_receipt(config, scenario_snapshot, clock, signer):
    request = await build_request(config, scenario_snapshot, clock)
    channel = PublicMempoolChannel(mock_web3(receipt={"status": 0, "logs": []}), signer)

    outcome = await (await channel.submit(request)).result()

    assert outcome.status is OutcomeStatus.REVERTED
    assert outcome.realized_profit is None


@pytest.mark.asyncio
async def test_public_channel_timeout(config, scenario_snapshot, clock, signer):
    request = await build_request(config, scenario_snapshot, clock)
    channel = PublicMempoolChannel(mock_web3(receipt=TimeExhausted("slow")), signer, timeout_s=1)

    outcome = await (await channel.submit(request)).result()

    assert outcome.status is OutcomeStatus.TIMED_OUT
    assert outcome.tx_hash == TX_HASH


@pytest.mark.asyncio
async def test_public_channel_rejection(config, scenario_snapshot, clock, signer):
    request = await build_request(config, scenario_snapshot, clock)
    channel = PublicMempoolChannel(mock_web3(send_error=ValueError("nonce too low")), signer)

    with pytest.raises(SubmissionRejectedError) as exc_info:
        await channel.submit(request)
    assert exc_info.value.channel == "public"


# === PRIVATE RELAY ===


def relay_session(status=200, body=None, error=None):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=body)
    response.text = AsyncMock(return_value="bad gateway")

    post_ctx = MagicMock()
    post_ctx.__aenter__ = AsyncMock(return_value=response)
    post_ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    if error is not None:
        session.post = Mock(side_effect=error)
    else:
        session.post = Mock(return_value=post_ctx)

    session_ctx = MagicMock()
    session_ctx.__aenter__ = AsyncMock(return_value=session)
    session_ctx.__aexit__ = AsyncMock(return_value=False)
    return session_ctx, session


@pytest.mark.asyncio
async def test_relay_channel_sends_private_transaction(config, scenario_snapshot, clock, signer):
    request = await build_request(config, scenario_snapshot, clock)
    web3 = mock_web3(receipt=profit_receipt(10**15))
    session_ctx, session = relay_session(body={"jsonrpc": "2.0", "id": 1, "result": TX_HASH})
    channel = PrivateRelayChannel(web3, signer, "https://relay.example", timeout_s=5)

    with patch("flash_arbitrage.submission.aiohttp.ClientSession", return_value=session_ctx):
        pending = await channel.submit(request)
    outcome = await pending.result()

    url = session.post.call_args.args[0]
    payload = session.post.call_args.kwargs["json"]
    assert url == "https://relay.example"
    assert payload["method"] == "eth_sendPrivateTransaction"
    assert payload["params"][0]["maxBlockNumber"] == hex(125)
    assert outcome.status is OutcomeStatus.COMMITTED
    assert outcome.channel == "private"
    web3.eth.send_raw_transaction.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, error, match",
    [
        (502, None, None, "HTTP 502"),
        (200, {"error": {"message": "bundle rejected"}}, None, "bundle rejected"),
        (200, {"result": None}, None, "no transaction hash"),
        (200, None, aiohttp.ClientConnectionError("refused"), "unreachable"),
    ],
)
async def test_relay_channel_rejections(config, scenario_snapshot, clock, signer, status, body, error, match):
    request = await build_request(config, scenario_snapshot, clock)
    session_ctx, _ = relay_session(status, body, error)
    channel = PrivateRelayChannel(mock_web3(), signer, "https://relay.example")

    with patch("flash_arbitrage.submission.aiohttp.ClientSession", return_value=session_ctx):
        with pytest.raises(SubmissionRejectedError, match=match) as exc_info:
            await channel.submit(request)
    assert exc_info.value.channel == "private"


# === SIMULATED ===


@pytest.mark.asyncio
async def test_simulated_channel_commits_profitable_request(config, scenario_snapshot, clock):
    request = await build_request(config, scenario_snapshot, clock)
    channel = SimulatedChannel(config, lambda: scenario_snapshot, SENDER)

    outcome = await (await channel.submit(request)).result()

    assert outcome.status is OutcomeStatus.COMMITTED
    assert abs(outcome.realized_profit - request.evaluation.net_profit) < Decimal("0.000001")
    fork = channel.last_fork
    assert fork.balance_of(config.token("WETH").address, fork.executor.address) > 0


@pytest.mark.asyncio
async def test_simulated_channel_reports_revert_reason(config, scenario_snapshot, clock):
    request = await build_request(config, scenario_snapshot, clock)
    uniswap, _ = scenario_states(config)
    # sushiswap has since moved back to parity with uniswap
    moved = make_snapshot(
        uniswap, make_state(config, "sushiswap", "WETH", "USDC", 10_000, 20_000_000)
    )
    channel = SimulatedChannel(config, lambda: moved, SENDER)

    outcome = await (await channel.submit(request)).result()

    assert outcome.status is OutcomeStatus.REVERTED
    assert outcome.reason == "InsufficientRepayment"
    assert outcome.channel == "simulated"
