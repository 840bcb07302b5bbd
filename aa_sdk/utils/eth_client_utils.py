import asyncio
import json
import logging
import traceback
from typing import Any

from aiohttp import ClientSession, ClientTimeout

DEFAULT_REQUEST_TIMEOUT = 30
NUMBER_OF_RETRY_ATTEMPTS = 3


def _build_request(method: str, params=None) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": 1,
        "method": method,
        "params": params if params is not None else [],
    }


async def send_rpc_request_to_eth_client(
    nodes_urls: str | list[str],
    method: str,
    params=None,
    expected_key: str | None = None,
    retry_attempts: int = NUMBER_OF_RETRY_ATTEMPTS,
) -> Any:
    """Read-only node call, retried over the given nodes.

    Never use this for eth_sendUserOperation: a resubmitted operation that
    was in fact accepted the first time would reuse its nonce.
    """
    if isinstance(nodes_urls, str):
        nodes_urls = [nodes_urls]
    json_request = _build_request(method, params)
    headers = {
        "content-type": "application/json",
        "connection": "keep-alive"
    }
    nodes_len = len(nodes_urls)
    last_exception: Exception | None = None
    for i in range(retry_attempts):
        node_index = i % nodes_len
        if nodes_len > 1 and i > 0:
            logging.info(f'retrying with node no: {node_index + 1}.')
        chosen_node_url = nodes_urls[node_index]
        try:
            async with ClientSession(
                timeout=ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT)
            ) as session:
                async with session.post(
                    chosen_node_url,
                    json=json_request,
                    headers=headers
                ) as response:
                    resp = await response.read()
                    json_result = json.loads(resp)
        except json.decoder.JSONDecodeError as excp:
            logging.error(
                f"Attempt No. {i+1} to call node rpc failed."
                "Invalid json response from eth client."
            )
            last_exception = excp
            await asyncio.sleep(1)
        except Exception as excp:
            logging.error(
                f"Attempt No. {i+1} to call node rpc failed."
                f"error: {str(excp)}"
            )
            logging.debug(f"traceback: {str(traceback.format_exc())}")
            last_exception = excp
            await asyncio.sleep(1)
        else:
            if expected_key is not None and expected_key not in json_result:
                logging.error(
                    f"Attempt No. {i+1} to call node rpc failed."
                    f"the request: {str(json_request)}"
                    f"as the key {expected_key} is not in the result: {str(json_result)}"
                )
                continue
            return json_result
    raise ValueError(
        f"Failed rpc request {method} to rpc node client") from last_exception


async def send_rpc_request_to_eth_client_no_retry(
    ethereum_node_url: str,
    method: str,
    params=None,
) -> Any:
    json_request = _build_request(method, params)
    headers = {
        "content-type": "application/json",
        "connection": "keep-alive"
    }
    async with ClientSession(
        timeout=ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT)
    ) as session:
        async with session.post(
            ethereum_node_url,
            json=json_request,
            headers=headers
        ) as response:
            resp = await response.read()
            try:
                return json.loads(resp)
            except json.decoder.JSONDecodeError:
                logging.critical("Invalid json response from rpc client")
                raise ValueError("Invalid json response from rpc client")


async def get_code(ethereum_node_urls: str | list[str], address: str) -> str:
    res: Any = await send_rpc_request_to_eth_client(
        ethereum_node_urls,
        "eth_getCode",
        [address, "latest"],
        "result"
    )
    return res["result"]


async def eth_call(
    ethereum_node_urls: str | list[str],
    to: str,
    call_data: str,
    from_address: str | None = None,
) -> dict:
    """Return the raw rpc response so callers can inspect revert data."""
    call: dict[str, str] = {"to": to, "data": call_data}
    if from_address is not None:
        call["from"] = from_address
    return await send_rpc_request_to_eth_client(
        ethereum_node_urls, "eth_call", [call, "latest"]
    )


async def estimate_gas(
    ethereum_node_urls: str | list[str], to: str, call_data: str
) -> int:
    res: Any = await send_rpc_request_to_eth_client(
        ethereum_node_urls,
        "eth_estimateGas",
        [{"to": to, "data": call_data}],
    )
    if "result" not in res:
        error = str(res.get("error"))
        raise ValueError(f"eth_estimateGas failed - {error}")
    return int(res["result"], 16)


async def get_fee_data(
    ethereum_node_urls: str | list[str], is_legacy_mode: bool = False
) -> tuple[int, int]:
    block_max_fee_per_gas_op = send_rpc_request_to_eth_client(
        ethereum_node_urls, "eth_gasPrice", None, "result"
    )
    tasks_arr = [block_max_fee_per_gas_op]

    if not is_legacy_mode:
        block_max_priority_fee_per_gas_op = send_rpc_request_to_eth_client(
            ethereum_node_urls, "eth_maxPriorityFeePerGas", None, "result"
        )
        tasks_arr.append(block_max_priority_fee_per_gas_op)

    tasks: Any = await asyncio.gather(*tasks_arr)

    max_fee_per_gas = int(tasks[0]["result"], 16)
    if is_legacy_mode:
        max_priority_fee_per_gas = max_fee_per_gas
    else:
        max_priority_fee_per_gas = int(tasks[1]["result"], 16)
        # max priority fee per gas can't be higher than max fee per gas
        if max_priority_fee_per_gas > max_fee_per_gas:
            max_priority_fee_per_gas = max_fee_per_gas

    return max_fee_per_gas, max_priority_fee_per_gas
