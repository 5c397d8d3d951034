"""ERC-1155 transfer-log queries over Polygon JSON-RPC."""

from __future__ import annotations

import itertools
from typing import Any

from loguru import logger

from tracker.core.config import settings
from tracker.domain import TransferEvent

from .dispatcher import RequestDispatcher
from .errors import MalformedResponse, UpstreamError


# keccak256("TransferSingle(address,address,address,uint256,uint256)")
TRANSFER_SINGLE_TOPIC = "0xc3d58168c5ae7397731d063d5bbf3d657854427343f4c083240f7aacaa2d0f62"
# keccak256("TransferBatch(address,address,address,uint256[],uint256[])")
TRANSFER_BATCH_TOPIC = "0x4a39dc06d4c0dbc64b70af90fd698a233a518aa5d07e595d983b8c0526c8f7fb"

_WORD = 64


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"cannot decode integer from {value!r}")


def parse_position_id(position_id: str) -> int:
    """Accept a decimal or ``0x``-prefixed ERC-1155 position id."""

    text = str(position_id).strip()
    try:
        return int(text, 16) if text.lower().startswith("0x") else int(text, 10)
    except ValueError:
        raise ValueError(f"invalid position id {position_id!r}") from None


def _topic_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def _data_words(data: str) -> list[int]:
    payload = data[2:] if data.startswith("0x") else data
    if len(payload) % _WORD:
        raise ValueError("log data is not word aligned")
    return [int(payload[index : index + _WORD], 16) for index in range(0, len(payload), _WORD)]


def _decode_array(words: list[int], byte_offset: int) -> list[int]:
    start = byte_offset // 32
    if start >= len(words):
        raise ValueError(f"array offset {byte_offset} points past the log data")
    length = words[start]
    values = words[start + 1 : start + 1 + length]
    if len(values) != length:
        raise ValueError("log data truncated")
    return values


def decode_transfer_log(log: dict[str, Any]) -> list[tuple[int, int]]:
    """Return ``(token_id, amount)`` pairs carried by a TransferSingle/Batch log."""

    topics = log.get("topics") or []
    if len(topics) < 4:
        raise ValueError("transfer log is missing indexed topics")
    words = _data_words(log.get("data") or "0x")
    signature = topics[0].lower()
    if signature == TRANSFER_SINGLE_TOPIC:
        if len(words) < 2:
            raise ValueError("TransferSingle data must hold id and value")
        return [(words[0], words[1])]
    if signature == TRANSFER_BATCH_TOPIC:
        if len(words) < 2:
            raise ValueError("TransferBatch data must hold array offsets")
        ids = _decode_array(words, words[0])
        amounts = _decode_array(words, words[1])
        if len(ids) != len(amounts):
            raise ValueError("TransferBatch ids and values differ in length")
        return list(zip(ids, amounts))
    raise ValueError(f"unexpected log signature {signature}")


def parse_transfer_logs(logs: list[dict[str, Any]], position_id: str) -> list[TransferEvent]:
    """Keep the movements of ``position_id`` ordered by (block, log index)."""

    wanted = parse_position_id(position_id)
    events: list[TransferEvent] = []
    for log in logs:
        try:
            pairs = decode_transfer_log(log)
            topics = log["topics"]
            sender = _topic_address(topics[2])
            recipient = _topic_address(topics[3])
            block_number = _hex_to_int(log.get("blockNumber"))
            log_index = _hex_to_int(log.get("logIndex", 0))
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedResponse(
                f"undecodable transfer log ({exc})", target="eth_getLogs"
            ) from exc
        for token_id, amount in pairs:
            if token_id != wanted:
                continue
            events.append(
                TransferEvent(
                    position_id=position_id,
                    sender=sender,
                    recipient=recipient,
                    amount=amount,
                    sequence_number=block_number,
                    log_index=log_index,
                    transaction_hash=log.get("transactionHash"),
                )
            )
    events.sort(key=lambda event: (event.sequence_number, event.log_index))
    return events


class TransferLogClient:
    """Query outcome token transfers; every call goes through the dispatcher."""

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        *,
        rpc_url: str | None = None,
        contract_address: str | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self.rpc_url = rpc_url or str(settings.polygon_rpc_url)
        self.contract_address = (contract_address or settings.ctf_contract_address).lower()
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        response = await self._dispatcher.post(self.rpc_url, json=payload)
        target = f"{method} {self.rpc_url}"
        if not isinstance(response, dict):
            raise MalformedResponse("JSON-RPC response is not an object", target=target)
        error = response.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise UpstreamError(f"JSON-RPC error: {message}", target=target)
        if "result" not in response:
            raise MalformedResponse("JSON-RPC response has no result", target=target)
        return response["result"]

    async def latest_sequence_number(self) -> int:
        result = await self._call("eth_blockNumber", [])
        try:
            return _hex_to_int(result)
        except ValueError as exc:
            raise MalformedResponse(
                f"invalid block number {result!r}", target="eth_blockNumber"
            ) from exc

    async def query_transfers(self, position_id: str, start: int, end: int) -> list[TransferEvent]:
        parse_position_id(position_id)
        logger.info(
            "Querying transfers for position {}, blocks {}-{}", position_id, start, end
        )
        log_filter = {
            "address": self.contract_address,
            "fromBlock": hex(start),
            "toBlock": hex(end),
            "topics": [[TRANSFER_SINGLE_TOPIC, TRANSFER_BATCH_TOPIC]],
        }
        logs = await self._call("eth_getLogs", [log_filter])
        if not isinstance(logs, list):
            raise MalformedResponse("eth_getLogs result is not a list", target="eth_getLogs")
        return parse_transfer_logs(logs, position_id)


__all__ = [
    "TRANSFER_BATCH_TOPIC",
    "TRANSFER_SINGLE_TOPIC",
    "TransferLogClient",
    "decode_transfer_log",
    "parse_position_id",
    "parse_transfer_logs",
]
