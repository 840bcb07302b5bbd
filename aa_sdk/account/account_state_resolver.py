import logging

from eth_utils import to_checksum_address

from aa_sdk.account.identity import (AccountIdentity, ConventionalKey,
                                     PasskeyKey)
from aa_sdk.exceptions import ConfigurationError, ConfigurationExceptionCode
from aa_sdk.signature.signature_mode import SignatureMode
from aa_sdk.typing import Address
from aa_sdk.utils.decode import (SENDER_ADDRESS_RESULT_SELECTOR,
                                 decode_sender_address_result,
                                 decode_uint_result, hex_to_bytes)
from aa_sdk.utils.encode import encode_function_call, encode_function_call_hex
from aa_sdk.utils.eth_client_utils import estimate_gas, eth_call, get_code

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_BYTES32 = b"\x00" * 32

CREATE_ACCOUNT_SIGNATURE = "createAccount(address,bytes32[2],uint256)"
GET_SENDER_ADDRESS_SIGNATURE = "getSenderAddress(bytes)"
GET_NONCE_SIGNATURE = "getNonce()"
EXECUTE_SIGNATURE = "execute(address,uint256,bytes)"
EXECUTE_BATCH_SIGNATURE = "executeBatch(address[],uint256[],bytes[])"


class AccountStateResolver:
    """Smart wallet state as seen from the client.

    The sender address is resolved once and cached. The phantom flag only
    ever goes from phantom to deployed: once code is seen at the sender
    address it is never checked again.
    """

    ethereum_node_urls: list[str]
    entrypoint: Address
    identity: AccountIdentity
    factory_address: Address | None
    account_address: Address | None
    index: int
    _sender_address: Address | None
    _is_phantom: bool

    def __init__(
        self,
        ethereum_node_urls: str | list[str],
        entrypoint: Address,
        identity: AccountIdentity,
        factory_address: Address | None = None,
        account_address: Address | None = None,
        index: int = 0,
    ):
        if isinstance(ethereum_node_urls, str):
            ethereum_node_urls = [ethereum_node_urls]
        self.ethereum_node_urls = ethereum_node_urls
        self.entrypoint = entrypoint
        self.identity = identity
        self.factory_address = factory_address
        self.account_address = account_address
        self.index = index
        self._sender_address = None
        self._is_phantom = True

    @property
    def signature_mode(self) -> SignatureMode:
        return self.identity.signature_mode

    async def check_entrypoint_deployed(self) -> None:
        code = await get_code(self.ethereum_node_urls, self.entrypoint)
        if code is None or code == "0x":
            raise ConfigurationError(
                ConfigurationExceptionCode.MissingEntryPoint,
                f"entryPoint not deployed at {self.entrypoint}",
            )

    async def get_account_address(self) -> Address:
        if self._sender_address is None:
            if self.account_address is not None:
                self._sender_address = self.account_address
            else:
                self._sender_address = await self.get_counterfactual_address()
        return self._sender_address

    async def get_counterfactual_address(self) -> Address:
        init_code = self.get_account_init_code()
        call_data = encode_function_call_hex(
            GET_SENDER_ADDRESS_SIGNATURE, ["bytes"], [init_code])

        # getSenderAddress always reverts, the address is in the revert data
        result = await eth_call(
            self.ethereum_node_urls,
            self.entrypoint,
            call_data,
            ZERO_ADDRESS,
        )
        if "error" not in result:
            raise ConfigurationError(
                ConfigurationExceptionCode.InvalidSenderAddress,
                "getSenderAddress didn't revert",
            )

        error = result["error"]
        solidity_error = error.get("data") if isinstance(error, dict) else None
        if (
            not isinstance(solidity_error, str) or
            solidity_error[:10] != SENDER_ADDRESS_RESULT_SELECTOR
        ):
            raise ConfigurationError(
                ConfigurationExceptionCode.InvalidSenderAddress,
                f"getSenderAddress failed with unexpected error: {error}",
            )

        sender_address = decode_sender_address_result(solidity_error[10:])
        logging.info(f"Counterfactual account address: {sender_address}")
        return Address(sender_address)

    async def is_phantom(self) -> bool:
        if not self._is_phantom:
            return False

        sender_address = await self.get_account_address()
        code = await get_code(self.ethereum_node_urls, sender_address)
        if code is not None and len(code) > 2:
            logging.info(f"Account is deployed at {sender_address}")
            self._is_phantom = False
        else:
            logging.debug(
                f"Account is not deployed yet at {sender_address}, "
                "working in phantom mode"
            )
        return self._is_phantom

    def get_account_init_code(self) -> bytes:
        if self.factory_address is None:
            raise ConfigurationError(
                ConfigurationExceptionCode.MissingFactory,
                "No factory to get initCode",
            )

        if isinstance(self.identity, PasskeyKey):
            owner = ZERO_ADDRESS
            public_key = [self.identity.public_key.x,
                          self.identity.public_key.y]
        elif isinstance(self.identity, ConventionalKey):
            owner = self.identity.owner_address
            public_key = [ZERO_BYTES32, ZERO_BYTES32]
        else:
            raise TypeError(f"Unsupported account identity {self.identity!r}")

        create_account_call = encode_function_call(
            CREATE_ACCOUNT_SIGNATURE,
            ["address", "bytes32[2]", "uint256"],
            [owner, public_key, self.index],
        )
        return hex_to_bytes(self.factory_address) + create_account_call

    async def get_init_code(self) -> bytes:
        if await self.is_phantom():
            return self.get_account_init_code()
        return b""

    async def get_nonce(self) -> int:
        if await self.is_phantom():
            return 0

        sender_address = await self.get_account_address()
        result = await eth_call(
            self.ethereum_node_urls,
            sender_address,
            encode_function_call_hex(GET_NONCE_SIGNATURE, [], []),
        )
        if "result" not in result:
            raise ValueError(f"getNonce failed - {result.get('error')}")
        return decode_uint_result(result["result"])

    async def estimate_creation_gas(self, init_code: bytes) -> int:
        if len(init_code) == 0:
            return 0
        factory = to_checksum_address(init_code[:20])
        factory_call_data = "0x" + init_code[20:].hex()
        return await estimate_gas(
            self.ethereum_node_urls, factory, factory_call_data)

    def encode_execute(self, target: Address, value: int, data: bytes) -> bytes:
        return encode_function_call(
            EXECUTE_SIGNATURE,
            ["address", "uint256", "bytes"],
            [target, value, data],
        )

    def encode_execute_batch(
        self,
        targets: list[Address],
        values: list[int],
        datas: list[bytes],
    ) -> bytes:
        return encode_function_call(
            EXECUTE_BATCH_SIGNATURE,
            ["address[]", "uint256[]", "bytes[]"],
            [targets, values, datas],
        )
