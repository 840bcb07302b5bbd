from functools import cache

from eth_abi import decode
from eth_utils import to_checksum_address

from aa_sdk.utils.encode import function_selector

FAILED_OP_SELECTOR = "0x" + function_selector("FailedOp(uint256,string)").hex()
SENDER_ADDRESS_RESULT_SELECTOR = (
    "0x" + function_selector("SenderAddressResult(address)").hex())


def hex_to_bytes(value: str) -> bytes:
    if value[:2] == "0x":
        value = value[2:]
    return bytes.fromhex(value)


@cache
def decode_failed_op_event(solidity_error_params: str) -> tuple[int, str]:
    FAILED_OP_PARAMS_API = ["uint256", "string"]
    failed_op_params_res = decode(
        FAILED_OP_PARAMS_API, hex_to_bytes(solidity_error_params)
    )
    operation_index = failed_op_params_res[0]
    reason = failed_op_params_res[1]

    return operation_index, reason


def decode_sender_address_result(solidity_error_params: str) -> str:
    (sender,) = decode(["address"], hex_to_bytes(solidity_error_params))
    return to_checksum_address(sender)


def decode_address_result(raw_result: str) -> str:
    (address,) = decode(["address"], hex_to_bytes(raw_result))
    return to_checksum_address(address)


def decode_uint_result(raw_result: str) -> int:
    (value,) = decode(["uint256"], hex_to_bytes(raw_result))
    return value
