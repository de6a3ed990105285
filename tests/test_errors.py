"""Tests for error classification."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from somnus.pneuma.errors import (
    RETRYABLE_KINDS,
    ChainError,
    ErrorKind,
    classify,
    classify_rpc_error,
    short_reason,
)


@pytest.mark.parametrize(
    "message, kind",
    [
        ("insufficient funds for gas * price + value", ErrorKind.FUNDS),
        ("nonce too low", ErrorKind.NONCE),
        ("already known", ErrorKind.UNCONFIRMED),
        ("known transaction: 0xabc", ErrorKind.UNCONFIRMED),
        ("replacement transaction underpriced", ErrorKind.UNDERPRICED),
        ("transaction fee too low", ErrorKind.UNDERPRICED),
        ("execution reverted: paused", ErrorKind.GAS_ESTIMATION),
        ("too many requests", ErrorKind.CONNECTION),
        ("something odd", ErrorKind.UNCLASSIFIED),
    ],
)
def test_classify_rpc_error_messages(message: str, kind: ErrorKind) -> None:
    assert classify_rpc_error("eth_sendRawTransaction", {"code": -32000, "message": message}) is kind


def test_estimate_gas_failures_are_gas_estimation() -> None:
    error = {"code": -32000, "message": "out of gas"}
    assert classify_rpc_error("eth_estimateGas", error) is ErrorKind.GAS_ESTIMATION


def test_funds_wins_over_estimate_method() -> None:
    error = {"code": -32000, "message": "insufficient funds for transfer"}
    assert classify_rpc_error("eth_estimateGas", error) is ErrorKind.FUNDS


def test_rate_limit_code_rotates() -> None:
    assert classify_rpc_error("eth_gasPrice", {"code": -32005, "message": "limit"}) is ErrorKind.CONNECTION


class TestClassify:
    def test_chain_error_keeps_kind(self) -> None:
        assert classify(ChainError("x", ErrorKind.NONCE)) is ErrorKind.NONCE

    def test_transport_errors_are_connection(self) -> None:
        assert classify(httpx.ConnectError("refused")) is ErrorKind.CONNECTION
        assert classify(httpx.ReadTimeout("slow")) is ErrorKind.CONNECTION
        assert classify(asyncio.TimeoutError()) is ErrorKind.CONNECTION
        assert classify(ConnectionResetError()) is ErrorKind.CONNECTION

    def test_everything_else_is_unclassified(self) -> None:
        assert classify(KeyError("x")) is ErrorKind.UNCLASSIFIED


def test_retryable_set() -> None:
    assert RETRYABLE_KINDS == {
        ErrorKind.CONNECTION,
        ErrorKind.NONCE,
        ErrorKind.UNDERPRICED,
        ErrorKind.GAS_ESTIMATION,
    }
    assert not ChainError("x", ErrorKind.FUNDS).retryable
    assert ChainError("x", ErrorKind.UNDERPRICED).retryable


def test_short_reason() -> None:
    assert short_reason(ErrorKind.FUNDS) == "Insufficient funds for transaction"
    assert short_reason(ErrorKind.UNCLASSIFIED, "RPC error: boom") == "RPC error"
    assert short_reason(ErrorKind.UNCLASSIFIED) == "Unknown error"
