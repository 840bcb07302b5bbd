from functools import cache
from typing import Any

from eth_abi import encode
from eth_utils import keccak


@cache
def function_selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def encode_function_call(
    signature: str, types: list[str], values: list[Any]
) -> bytes:
    return function_selector(signature) + encode(types, values)


def encode_function_call_hex(
    signature: str, types: list[str], values: list[Any]
) -> str:
    return "0x" + encode_function_call(signature, types, values).hex()
