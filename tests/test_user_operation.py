import pytest
from eth_abi import encode
from eth_utils import keccak

from conftest import ACCOUNT, CHAIN_ID, ENTRYPOINT, PAYMASTER

from aa_sdk.exceptions import ValidationError, ValidationExceptionCode
from aa_sdk.user_operation.user_operation import (UserOperation,
                                                  get_user_operation_hash,
                                                  is_user_operation_hash,
                                                  pack_user_operation,
                                                  verify_and_get_uint)

USER_OPERATION_JSON = {
    "sender": "0xEed01c4FfA9f88096b77d2f16c2e143a94D71298",
    "nonce": "0x1",
    "initCode": "0x",
    "callData": "0xb61d27f6",
    "callGasLimit": "0x44",
    "verificationGasLimit": "0xffffff",
    "preVerificationGas": "0x18d08",
    "maxFeePerGas": "0x2b8f4e",
    "maxPriorityFeePerGas": "0x2b8f4e",
    "paymasterAndData": "0x",
    "signature": "0x" + "22" * 65,
}


def test_json_conversion():
    user_operation = UserOperation.from_json(USER_OPERATION_JSON)
    assert user_operation.nonce == 1
    assert user_operation.verification_gas_limit == 0xffffff
    assert user_operation.call_data == bytes.fromhex("b61d27f6")
    assert user_operation.get_user_operation_json() == USER_OPERATION_JSON


def test_missing_field():
    user_operation_json = dict(USER_OPERATION_JSON)
    del user_operation_json["paymasterAndData"]
    with pytest.raises(ValidationError) as excinfo:
        UserOperation.from_json(user_operation_json)
    assert excinfo.value.exception_code == ValidationExceptionCode.InvalidFields
    assert "paymasterAndData" in excinfo.value.message


@pytest.mark.parametrize("value", ["12", "0xzz", -1, None, True])
def test_invalid_uint(value):
    with pytest.raises(ValidationError):
        verify_and_get_uint("nonce", value)


def test_user_operation_hash():
    """
    Test the hash commits to the packed operation, entrypoint and chain id,
    and ignores the signature
    """
    user_operation = UserOperation.from_json(USER_OPERATION_JSON)
    user_operation_hash = get_user_operation_hash(
        user_operation.to_list(), ENTRYPOINT, CHAIN_ID)

    expected = keccak(encode(
        ["bytes32", "address", "uint256"],
        [keccak(pack_user_operation(user_operation.to_list())),
         ENTRYPOINT, CHAIN_ID],
    ))
    assert user_operation_hash == "0x" + expected.hex()
    assert is_user_operation_hash(user_operation_hash)

    user_operation.signature = b"\x33" * 65
    assert get_user_operation_hash(
        user_operation.to_list(), ENTRYPOINT, CHAIN_ID) == user_operation_hash
    assert get_user_operation_hash(
        user_operation.to_list(), ENTRYPOINT, 1) != user_operation_hash

    user_operation.nonce = 2
    assert get_user_operation_hash(
        user_operation.to_list(), ENTRYPOINT, CHAIN_ID) != user_operation_hash


def test_packing_for_gas_keeps_dynamic_fields():
    user_operation = UserOperation.from_json(USER_OPERATION_JSON)
    packed = pack_user_operation(user_operation.to_list(), False)
    packed_for_signature = pack_user_operation(user_operation.to_list())
    assert len(packed_for_signature) == 10 * 32
    assert b"\x22" * 65 in packed
    assert len(packed) % 32 == 0


def test_paymaster_and_factory_addresses():
    user_operation = UserOperation.from_json(USER_OPERATION_JSON)
    assert user_operation.paymaster_address is None
    assert user_operation.factory_address is None

    user_operation.paymaster_and_data = bytes.fromhex(PAYMASTER[2:]) + b"\x01"
    user_operation.init_code = bytes.fromhex(ACCOUNT[2:]) + b"\x02"
    assert user_operation.paymaster_address == PAYMASTER
    assert user_operation.factory_address == ACCOUNT


def test_is_user_operation_hash():
    assert not is_user_operation_hash("0x1234")
    assert not is_user_operation_hash(None)
