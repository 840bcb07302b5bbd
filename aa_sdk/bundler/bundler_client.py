import asyncio
import logging
from dataclasses import replace
from typing import Any

from aiohttp import ClientError

from aa_sdk.exceptions import (ConfigurationError, ConfigurationExceptionCode,
                               SubmissionError, ValidationError)
from aa_sdk.signature.signature_mode import SignatureMode, get_dummy_signature
from aa_sdk.typing import Address, UserOperationHash
from aa_sdk.user_operation.models import (EstimationFailureKind,
                                          GasEstimationResult,
                                          UserOperationReceipt)
from aa_sdk.user_operation.user_operation import (UserOperation,
                                                  is_user_operation_hash,
                                                  verify_and_get_uint)
from aa_sdk.utils.eth_client_utils import \
    send_rpc_request_to_eth_client_no_retry

TRANSPORT_ERRORS = (ClientError, asyncio.TimeoutError, OSError, ValueError)


class BundlerClient:
    bundler_url: str
    entrypoint: Address
    chain_id: int
    _initializing: asyncio.Future | None

    def __init__(self, bundler_url: str, entrypoint: Address, chain_id: int):
        self.bundler_url = bundler_url
        self.entrypoint = entrypoint
        self.chain_id = chain_id
        self._initializing = None

    async def validate_chain_id(self) -> None:
        response = await send_rpc_request_to_eth_client_no_retry(
            self.bundler_url, "eth_chainId")
        if not isinstance(response, dict) or "result" not in response:
            error = response.get("error") if isinstance(response, dict) else None
            raise ConfigurationError(
                ConfigurationExceptionCode.ChainIdMismatch,
                f"bundler {self.bundler_url} failed to return its chainId: "
                f"{error}",
            )
        try:
            bundler_chain_id = int(response["result"], 16)
        except (TypeError, ValueError) as excp:
            raise ConfigurationError(
                ConfigurationExceptionCode.ChainIdMismatch,
                f"bundler {self.bundler_url} returned an invalid chainId: "
                f"{response['result']}",
            ) from excp
        if bundler_chain_id != self.chain_id:
            raise ConfigurationError(
                ConfigurationExceptionCode.ChainIdMismatch,
                f"bundler {self.bundler_url} is on chainId {bundler_chain_id}, "
                f"but provider is on chainId {self.chain_id}",
            )
        logging.debug(f"bundler {self.bundler_url} is on chainId {self.chain_id}")

    async def initialize(self) -> None:
        # a single check shared by every request, a chainId mismatch is kept
        if self._initializing is None:
            self._initializing = asyncio.ensure_future(self.validate_chain_id())
        initializing = self._initializing
        try:
            await asyncio.shield(initializing)
        except TRANSPORT_ERRORS:
            # bundler unreachable, the next request checks again
            if self._initializing is initializing:
                self._initializing = None
            raise

    async def estimate_user_operation_gas(
        self,
        user_operation: UserOperation,
        signature_mode: SignatureMode,
    ) -> GasEstimationResult:
        try:
            await self.initialize()
        except ConfigurationError as excp:
            return GasEstimationResult.failure(
                str(excp), EstimationFailureKind.REJECTED)
        except TRANSPORT_ERRORS as excp:
            return GasEstimationResult.failure(
                f"bundler unreachable: {excp}",
                EstimationFailureKind.UNREACHABLE,
            )

        user_operation_for_estimation = replace(
            user_operation,
            call_gas_limit=0,
            pre_verification_gas=0,
            max_fee_per_gas=0,
            max_priority_fee_per_gas=0,
            signature=get_dummy_signature(signature_mode),
        )
        user_operation_json = (
            user_operation_for_estimation.get_user_operation_json())
        logging.debug(
            f"Sending estimation request for sender "
            f"{user_operation_json['sender']} nonce {user_operation_json['nonce']}"
        )

        try:
            response = await send_rpc_request_to_eth_client_no_retry(
                self.bundler_url,
                "eth_estimateUserOperationGas",
                [user_operation_json, self.entrypoint],
            )
        except TRANSPORT_ERRORS as excp:
            logging.warning(f"Estimation request failed: {excp}")
            return GasEstimationResult.failure(
                f"bundler unreachable: {excp}",
                EstimationFailureKind.UNREACHABLE,
            )

        if not isinstance(response, dict) or "result" not in response:
            error = (
                response.get("error", {}) if isinstance(response, dict)
                else response
            )
            message = (
                error.get("message", str(error))
                if isinstance(error, dict) else str(error)
            )
            logging.warning(f"Estimation rejected by bundler: {message}")
            return GasEstimationResult.failure(
                message, EstimationFailureKind.REJECTED)

        result = response["result"]
        logging.debug(f"Estimation response: {result}")
        if not isinstance(result, dict):
            return GasEstimationResult.failure(
                f"invalid estimation response: {result}",
                EstimationFailureKind.REJECTED,
            )
        try:
            return parse_gas_estimation(result)
        except (ValidationError, TypeError, AttributeError) as excp:
            return GasEstimationResult.failure(
                f"invalid estimation response: {excp}",
                EstimationFailureKind.REJECTED,
            )

    async def send_user_operation(
        self, user_operation: UserOperation
    ) -> UserOperationHash:
        await self.initialize()

        user_operation_json = user_operation.get_user_operation_json()
        logging.debug(
            f"sending eth_sendUserOperation {user_operation_json} "
            f"to entrypoint {self.entrypoint}"
        )
        try:
            response = await send_rpc_request_to_eth_client_no_retry(
                self.bundler_url,
                "eth_sendUserOperation",
                [user_operation_json, self.entrypoint],
            )
        except TRANSPORT_ERRORS as excp:
            raise SubmissionError(
                f"eth_sendUserOperation failed: {excp}") from excp

        if "error" in response or "result" not in response:
            error = response.get("error", {})
            if isinstance(error, dict):
                message = error.get("message", str(error))
                data = error.get("data")
            else:
                message = str(error)
                data = None
            logging.error(f"Bundler rejected the UserOperation: {message}")
            raise SubmissionError(
                message, data=data if isinstance(data, str) else None)

        user_operation_hash = response["result"]
        if not is_user_operation_hash(user_operation_hash):
            raise SubmissionError(
                f"Invalid userOpHash returned by the bundler: "
                f"{user_operation_hash}"
            )
        logging.info(f"UserOperation submitted with hash {user_operation_hash}")
        return UserOperationHash(user_operation_hash)

    async def get_user_operation_receipt(
        self, user_operation_hash: UserOperationHash
    ) -> UserOperationReceipt | None:
        await self.initialize()

        response = await send_rpc_request_to_eth_client_no_retry(
            self.bundler_url,
            "eth_getUserOperationReceipt",
            [user_operation_hash],
        )
        if "result" not in response:
            raise ValueError(
                f"eth_getUserOperationReceipt failed - {response.get('error')}")

        result = response["result"]
        if result is None:
            return None
        return parse_user_operation_receipt(result)


def parse_gas_estimation(result: dict[str, Any]) -> GasEstimationResult:
    # older bundlers still return verificationGas
    verification_gas = result.get(
        "verificationGasLimit", result.get("verificationGas"))
    return GasEstimationResult(
        success=True,
        call_gas_limit=verify_and_get_uint(
            "callGasLimit", result.get("callGasLimit")),
        verification_gas=verify_and_get_uint(
            "verificationGasLimit", verification_gas),
        pre_verification_gas=verify_and_get_uint(
            "preVerificationGas", result.get("preVerificationGas")),
        max_fee_per_gas=verify_and_get_uint(
            "maxFeePerGas", result.get("maxFeePerGas", 0)),
        max_priority_fee_per_gas=verify_and_get_uint(
            "maxPriorityFeePerGas", result.get("maxPriorityFeePerGas", 0)),
    )


def parse_user_operation_receipt(result: dict[str, Any]) -> UserOperationReceipt:
    receipt = result.get("receipt") or {}
    return UserOperationReceipt(
        user_operation_hash=result["userOpHash"],
        sender=Address(result["sender"]),
        success=bool(result["success"]),
        actual_gas_cost=verify_and_get_uint(
            "actualGasCost", result["actualGasCost"]),
        actual_gas_used=verify_and_get_uint(
            "actualGasUsed", result["actualGasUsed"]),
        transaction_hash=receipt.get("transactionHash"),
        raw=result,
    )
