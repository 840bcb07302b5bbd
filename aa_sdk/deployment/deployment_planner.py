import logging
import re
from dataclasses import dataclass, field
from typing import Any

from eth_abi import encode
from eth_utils import keccak

from aa_sdk.exceptions import DeploymentError, DeploymentExceptionCode
from aa_sdk.typing import Address, Salt, UserOperationHash
from aa_sdk.user_operation.models import TransactionDetails
from aa_sdk.user_operation.user_operation_builder import UserOperationBuilder
from aa_sdk.utils.decode import decode_address_result, hex_to_bytes
from aa_sdk.utils.encode import encode_function_call_hex
from aa_sdk.utils.eth_client_utils import eth_call, get_code

DEFAULT_SALT = Salt("0x" + "00" * 31 + "01")

DEPLOY_SIGNATURE = "deploy(bytes,bytes32)"
COMPUTE_ADDRESS_SIGNATURE = "computeAddress(bytes32,bytes32,address)"

# trivial bytecode used to check the deployer answers computeAddress
SMOKE_TEST_BYTECODE = "0x1234"

BYTECODE_PATTERN = "^0x([0-9a-fA-F]{2})+$"
SALT_PATTERN = "^0x[0-9a-fA-F]{64}$"
ADDRESS_PATTERN = "^0x[0-9a-fA-F]{40}$"


@dataclass
class DeploymentDescriptor:
    bytecode: str
    constructor_arg_types: list[str] = field(default_factory=list)
    constructor_args: list[Any] = field(default_factory=list)
    salt: Salt = DEFAULT_SALT

    def get_deployment_bytecode(self) -> str:
        validate_bytecode(self.bytecode)
        if len(self.constructor_args) == 0:
            return self.bytecode

        if len(self.constructor_arg_types) != len(self.constructor_args):
            raise DeploymentError(
                DeploymentExceptionCode.InvalidBytecode,
                "Constructor argument types and values don't match",
            )
        try:
            encoded_args = encode(
                self.constructor_arg_types, self.constructor_args)
        except Exception as excp:
            raise DeploymentError(
                DeploymentExceptionCode.InvalidBytecode,
                f"Failed to encode constructor arguments: {excp}",
            ) from excp
        return self.bytecode + encoded_args.hex()


def validate_bytecode(bytecode: str) -> None:
    if (
        not isinstance(bytecode, str) or
        re.match(BYTECODE_PATTERN, bytecode) is None
    ):
        raise DeploymentError(
            DeploymentExceptionCode.InvalidBytecode,
            "Invalid bytecode format",
        )


def validate_salt(salt: Salt) -> None:
    if not isinstance(salt, str) or re.match(SALT_PATTERN, salt) is None:
        raise DeploymentError(
            DeploymentExceptionCode.InvalidSalt,
            f"Invalid salt {salt}, expected 32 bytes hex",
        )


def validate_deployer_address(deployer_address: Address) -> None:
    if (
        not isinstance(deployer_address, str) or
        re.match(ADDRESS_PATTERN, deployer_address) is None
    ):
        raise DeploymentError(
            DeploymentExceptionCode.InvalidDeployer,
            f"Invalid deployer address {deployer_address}",
        )


class DeploymentPlanner:
    """CREATE2 deployments through a deployer contract.

    Deployments are ordinary account calls to the deployer and go through
    the UserOperationBuilder like any other call.
    """

    deployer_address: Address
    ethereum_node_urls: list[str]
    builder: UserOperationBuilder

    def __init__(
        self,
        deployer_address: Address,
        ethereum_node_urls: str | list[str],
        builder: UserOperationBuilder,
    ):
        if isinstance(ethereum_node_urls, str):
            ethereum_node_urls = [ethereum_node_urls]
        self.deployer_address = deployer_address
        self.ethereum_node_urls = ethereum_node_urls
        self.builder = builder

    def _encode_deploy_call(self, bytecode: str, salt: Salt) -> str:
        return encode_function_call_hex(
            DEPLOY_SIGNATURE,
            ["bytes", "bytes32"],
            [hex_to_bytes(bytecode), hex_to_bytes(salt)],
        )

    def _encode_compute_address_call(self, bytecode: str, salt: Salt) -> str:
        return encode_function_call_hex(
            COMPUTE_ADDRESS_SIGNATURE,
            ["bytes32", "bytes32", "address"],
            [
                keccak(hex_to_bytes(bytecode)),
                hex_to_bytes(salt),
                self.deployer_address,
            ],
        )

    async def _compute_address(self, bytecode: str, salt: Salt) -> Address:
        result = await eth_call(
            self.ethereum_node_urls,
            self.deployer_address,
            self._encode_compute_address_call(bytecode, salt),
        )
        if "result" not in result:
            raise ValueError(f"computeAddress failed - {result.get('error')}")
        return Address(decode_address_result(result["result"]))

    async def verify_deployer(self) -> None:
        validate_deployer_address(self.deployer_address)
        code = await get_code(self.ethereum_node_urls, self.deployer_address)
        logging.debug(
            f"Verifying deployer contract {self.deployer_address}, "
            f"code length: {len(code) if code else 0}"
        )
        if code is None or code == "0x":
            raise DeploymentError(
                DeploymentExceptionCode.InvalidDeployer,
                f"No contract found at address {self.deployer_address}",
            )

        try:
            await self._compute_address(SMOKE_TEST_BYTECODE, DEFAULT_SALT)
        except Exception as excp:
            logging.debug(f"Deployer interface verification failed: {excp}")
            raise DeploymentError(
                DeploymentExceptionCode.InvalidDeployer,
                f"Contract at {self.deployer_address} does not match "
                "expected interface",
            ) from excp

    async def predict_address(
        self,
        descriptor: DeploymentDescriptor,
        salt: Salt | None = None,
    ) -> Address:
        salt = salt if salt is not None else descriptor.salt
        bytecode = descriptor.get_deployment_bytecode()
        validate_salt(salt)

        await self.verify_deployer()

        logging.info(
            f"Predicting deployment address with salt {salt} "
            f"and deployer {self.deployer_address}"
        )
        return await self._compute_address(bytecode, salt)

    def _get_deploy_transaction_details(
        self,
        descriptor: DeploymentDescriptor,
        salt: Salt | None,
        gas_limit: int | None = None,
    ) -> TransactionDetails:
        salt = salt if salt is not None else descriptor.salt
        bytecode = descriptor.get_deployment_bytecode()
        validate_salt(salt)
        validate_deployer_address(self.deployer_address)
        deploy_call_data = self._encode_deploy_call(bytecode, salt)
        logging.debug(
            f"Creating UserOperation for deployment to {self.deployer_address}"
            f" with call data length {len(deploy_call_data)}"
        )
        return TransactionDetails(
            target=self.deployer_address,
            data=deploy_call_data,
            value=0,
            gas_limit=gas_limit,
        )

    async def deploy(
        self,
        descriptor: DeploymentDescriptor,
        salt: Salt | None = None,
        gas_limit: int | None = None,
    ) -> UserOperationHash:
        details = self._get_deploy_transaction_details(
            descriptor, salt, gas_limit)
        user_operation_hash = await self.builder.send_user_operation(details)
        logging.info(f"Deployment submitted with hash {user_operation_hash}")
        return user_operation_hash

    async def estimate_gas(
        self,
        descriptor: DeploymentDescriptor,
        salt: Salt | None = None,
    ) -> int:
        details = self._get_deploy_transaction_details(descriptor, salt)
        limits = await self.builder.encode_user_op_call_data_and_gas_limit(
            details)
        logging.debug(f"Deployment call gas limit: {limits.call_gas_limit}")
        return limits.call_gas_limit
