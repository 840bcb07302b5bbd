import re
from dataclasses import dataclass

from eth_abi import encode
from eth_utils import keccak

from aa_sdk.exceptions import ValidationError, ValidationExceptionCode
from aa_sdk.typing import Address


@dataclass()
class UserOperation:
    sender_address: Address
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: bytes
    signature: bytes

    @classmethod
    def from_json(cls, jsonRequestDict: dict[str, str]) -> "UserOperation":
        cls.verify_fields_exist(jsonRequestDict)

        return cls(
            sender_address=verify_and_get_address(
                "sender", jsonRequestDict["sender"]),
            nonce=verify_and_get_uint(
                "nonce", jsonRequestDict["nonce"]),
            init_code=verify_and_get_bytes(
                "initCode", jsonRequestDict["initCode"]),
            call_data=verify_and_get_bytes(
                "callData", jsonRequestDict["callData"]),
            call_gas_limit=verify_and_get_uint(
                "callGasLimit", jsonRequestDict["callGasLimit"]),
            verification_gas_limit=verify_and_get_uint(
                "verificationGasLimit",
                jsonRequestDict["verificationGasLimit"]),
            pre_verification_gas=verify_and_get_uint(
                "preVerificationGas", jsonRequestDict["preVerificationGas"]),
            max_fee_per_gas=verify_and_get_uint(
                "maxFeePerGas", jsonRequestDict["maxFeePerGas"]),
            max_priority_fee_per_gas=verify_and_get_uint(
                "maxPriorityFeePerGas",
                jsonRequestDict["maxPriorityFeePerGas"]),
            paymaster_and_data=verify_and_get_bytes(
                "paymasterAndData", jsonRequestDict["paymasterAndData"]),
            signature=verify_and_get_bytes(
                "signature", jsonRequestDict["signature"]),
        )

    @staticmethod
    def verify_fields_exist(jsonRequestDict: dict[str, str]) -> None:
        field_list = [
            "sender",
            "nonce",
            "initCode",
            "callData",
            "callGasLimit",
            "verificationGasLimit",
            "preVerificationGas",
            "maxFeePerGas",
            "maxPriorityFeePerGas",
            "paymasterAndData",
            "signature",
        ]

        for field in field_list:
            if field not in jsonRequestDict:
                raise ValidationError(
                    ValidationExceptionCode.InvalidFields,
                    f"UserOperation missing {field} field",
                )

    def get_user_operation_json(self) -> dict[str, str]:
        return {
            "sender": self.sender_address,
            "nonce": hex(self.nonce),
            "initCode": "0x" + self.init_code.hex(),
            "callData": "0x" + self.call_data.hex(),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }

    def to_list(self) -> list[Address | int | bytes]:
        return [
            self.sender_address,
            self.nonce,
            self.init_code,
            self.call_data,
            self.call_gas_limit,
            self.verification_gas_limit,
            self.pre_verification_gas,
            self.max_fee_per_gas,
            self.max_priority_fee_per_gas,
            self.paymaster_and_data,
            self.signature,
        ]

    @property
    def paymaster_address(self) -> Address | None:
        if len(self.paymaster_and_data) >= 20:
            return Address("0x" + self.paymaster_and_data[:20].hex())
        return None

    @property
    def factory_address(self) -> Address | None:
        if len(self.init_code) >= 20:
            return Address("0x" + self.init_code[:20].hex())
        return None


def verify_and_get_address(field_name: str, value: str | None) -> Address:
    address_pattern = "^0x[0-9a-fA-F]{40}$"
    if isinstance(value, str) and re.match(address_pattern, value) is not None:
        return Address(value)
    else:
        raise ValidationError(
            ValidationExceptionCode.InvalidFields,
            f"Invalid address value : {value} in field {field_name}",
        )


def verify_and_get_uint(field_name: str, value: str | int | None) -> int:
    if value is None:
        raise ValidationError(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint hex value in field {field_name}",
        )

    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    elif value == "0x":
        return 0
    elif isinstance(value, str) and value[:2] == "0x":
        try:
            return int(value, 16)
        except ValueError:
            raise ValidationError(
                ValidationExceptionCode.InvalidFields,
                f"Invalid uint hex value : {value} in field {field_name}",
            )
    else:
        raise ValidationError(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint hex value : {value} in field {field_name}",
        )


def verify_and_get_bytes(field_name: str, value: str | bytes | None) -> bytes:
    if value is None:
        raise ValidationError(
            ValidationExceptionCode.InvalidFields,
            f"Invalid bytes hex value in field {field_name}",
        )

    if isinstance(value, bytes):
        return value
    elif isinstance(value, str) and value[:2] == "0x":
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            raise ValidationError(
                ValidationExceptionCode.InvalidFields,
                f"Invalid bytes hex value : {value} in field {field_name}",
            )
    else:
        raise ValidationError(
            ValidationExceptionCode.InvalidFields,
            f"Invalid bytes hex value : {value} in field {field_name}",
        )


def is_user_operation_hash(user_operation_hash: str) -> bool:
    hash_pattern = "^0x[0-9a-fA-F]{64}$"
    return (
        isinstance(user_operation_hash, str)
        and re.match(hash_pattern, user_operation_hash) is not None
    )


def get_user_operation_hash(
    user_operation_list: list, entrypoint_addr: str, chain_id: int
) -> str:
    packed_user_operation = keccak(
        pack_user_operation(user_operation_list)
    )

    encoded_user_operation_hash = encode(
        ["(bytes32,address,uint256)"],
        [[packed_user_operation, entrypoint_addr, chain_id]],
    )
    user_operation_hash = "0x" + keccak(encoded_user_operation_hash).hex()
    return user_operation_hash


def pack_user_operation(
    user_operation_list: list, for_signature: bool = True
) -> bytes:
    user_operation_list = list(user_operation_list)
    if for_signature:
        user_operation_list[2] = keccak(user_operation_list[2])
        user_operation_list[3] = keccak(user_operation_list[3])
        user_operation_list[9] = keccak(user_operation_list[9])
        user_operation_list_without_signature = user_operation_list[:-1]

        packed_user_operation = encode(
            [
                "address",
                "uint256",
                "bytes32",
                "bytes32",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "bytes32",
            ],
            user_operation_list_without_signature,
        )
    else:
        packed_user_operation = encode(
            [
                "address",
                "uint256",
                "bytes",
                "bytes",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "uint256",
                "bytes",
                "bytes",
            ],
            user_operation_list,
        )
    return packed_user_operation
