from typing import Any, Callable

import pytest
from eth_abi import decode, encode
from eth_account import Account

from aa_sdk.utils.decode import SENDER_ADDRESS_RESULT_SELECTOR
from aa_sdk.utils.encode import function_selector

OWNER_PRIVATE_KEY = (
    "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318")
ENTRYPOINT = "0x5ff137d4b0fdcd49dca30c7cf57e578a026d2789"
FACTORY = "0x9406cc6185a346906296840746125a0e44976454"
ACCOUNT = "0xeed01c4ffa9f88096b77d2f16c2e143a94d71298"
DEPLOYER = "0x4e59b44847b379578588920ca78fbf26c0b4956c"
PAYMASTER = "0x7c6abd8e4b5e2c4a5e3d4e0df51f2a1f0a5e6db3"
BUNDLER_URL = "http://bundler.test/rpc"
NODE_URL = "http://node.test:8545"
CHAIN_ID = 1337

GET_NONCE_SELECTOR = "0x" + function_selector("getNonce()").hex()
GET_SENDER_ADDRESS_SELECTOR = (
    "0x" + function_selector("getSenderAddress(bytes)").hex())
COMPUTE_ADDRESS_SELECTOR = (
    "0x" + function_selector("computeAddress(bytes32,bytes32,address)").hex())


def rpc_result(value: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": 1, "result": value}


def rpc_error(message: str, data: Any = None, code: int = -32500) -> dict:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": 1, "error": error}


class FakeRpc:
    """In-process stand-in for both the node and the bundler endpoints.

    Handlers are registered per method and receive the request params. Every
    request is recorded as (url, method, params).
    """

    def __init__(self):
        self.handlers: dict[str, Callable[[list], dict]] = {}
        self.calls: list[tuple[str, str, list]] = []

    def on(self, method: str, handler: Callable[[list], dict] | dict) -> None:
        if isinstance(handler, dict):
            response = handler
            self.handlers[method] = lambda params: response
        else:
            self.handlers[method] = handler

    def methods(self) -> list[str]:
        return [method for _, method, _ in self.calls]

    def count(self, method: str) -> int:
        return self.methods().count(method)

    def params_of(self, method: str) -> list[list]:
        return [params for _, m, params in self.calls if m == method]

    async def send(self, url, method, params=None, *args, **kwargs) -> dict:
        if isinstance(url, list):
            url = url[0]
        params = params if params is not None else []
        self.calls.append((url, method, params))
        if method not in self.handlers:
            raise AssertionError(f"unexpected rpc call {method}")
        return self.handlers[method](params)


@pytest.fixture
def fake_rpc(monkeypatch) -> FakeRpc:
    rpc = FakeRpc()
    monkeypatch.setattr(
        "aa_sdk.utils.eth_client_utils.send_rpc_request_to_eth_client",
        rpc.send,
    )
    monkeypatch.setattr(
        "aa_sdk.utils.eth_client_utils.send_rpc_request_to_eth_client_no_retry",
        rpc.send,
    )
    monkeypatch.setattr(
        "aa_sdk.bundler.bundler_client.send_rpc_request_to_eth_client_no_retry",
        rpc.send,
    )
    monkeypatch.setattr(
        "aa_sdk.cli_manager.send_rpc_request_to_eth_client",
        rpc.send,
    )
    return rpc


@pytest.fixture
def owner_account():
    return Account.from_key(OWNER_PRIVATE_KEY)


def sender_address_revert(sender: str) -> dict:
    data = SENDER_ADDRESS_RESULT_SELECTOR + encode(["address"], [sender]).hex()
    return rpc_error("execution reverted", data=data, code=3)


def make_eth_call_handler(
    nonce: int = 0,
    sender: str = ACCOUNT,
    compute_address: Callable[[bytes, bytes, str], str] | None = None,
) -> Callable[[list], dict]:
    def handler(params: list) -> dict:
        call = params[0]
        selector = call["data"][:10]
        if selector == GET_NONCE_SELECTOR:
            return rpc_result("0x" + encode(["uint256"], [nonce]).hex())
        if selector == GET_SENDER_ADDRESS_SELECTOR:
            return sender_address_revert(sender)
        if selector == COMPUTE_ADDRESS_SELECTOR and compute_address is not None:
            bytecode_hash, salt, deployer = decode(
                ["bytes32", "bytes32", "address"],
                bytes.fromhex(call["data"][10:]),
            )
            return rpc_result(
                "0x" + encode(
                    ["address"],
                    [compute_address(bytecode_hash, salt, deployer)],
                ).hex()
            )
        return rpc_error("execution reverted", code=3)
    return handler


@pytest.fixture
def deployed_account_rpc(fake_rpc) -> FakeRpc:
    fake_rpc.on("eth_chainId", rpc_result(hex(CHAIN_ID)))
    fake_rpc.on("eth_getCode", rpc_result("0x6080604052"))
    fake_rpc.on("eth_call", make_eth_call_handler(nonce=5))
    fake_rpc.on("eth_gasPrice", rpc_result(hex(2_000_000_000)))
    fake_rpc.on("eth_maxPriorityFeePerGas", rpc_result(hex(100_000_000)))
    return fake_rpc
