"""Assembles, signs and submits UserOperations for one smart account.

Every operation goes through the same stages:
Unbuilt -> GasEstimated -> Signed -> Submitted. Single calls and batches
only differ in how the account call data is encoded.
"""
import logging
import re
from dataclasses import replace

from eth_abi.exceptions import DecodingError

from aa_sdk.account.account_state_resolver import AccountStateResolver
from aa_sdk.bundler.bundler_client import BundlerClient
from aa_sdk.exceptions import (EstimationError, SubmissionError,
                               ValidationError, ValidationExceptionCode)
from aa_sdk.gas.gas_accountant import (DEFAULT_GAS_OVERHEADS, GasOverheads,
                                       calc_preverification_gas,
                                       get_verification_gas_limit)
from aa_sdk.signature.signature_codec import SignatureCodec
from aa_sdk.typing import Address, UserOperationHash
from aa_sdk.user_operation.models import (BatchTransactionDetails,
                                          CallDataAndGasLimits,
                                          GasEstimationResult,
                                          TransactionDetails,
                                          UserOperationStage)
from aa_sdk.user_operation.paymaster import PaymasterAPI
from aa_sdk.user_operation.user_operation import (UserOperation,
                                                  get_user_operation_hash,
                                                  verify_and_get_address,
                                                  verify_and_get_bytes,
                                                  verify_and_get_uint)
from aa_sdk.utils.decode import (FAILED_OP_SELECTOR, decode_failed_op_event,
                                 hex_to_bytes)
from aa_sdk.utils.eth_client_utils import get_fee_data

ADDRESS_PATTERN = "^0x[0-9a-fA-F]{40}$"


class UserOperationBuilder:
    resolver: AccountStateResolver
    bundler_client: BundlerClient
    signature_codec: SignatureCodec
    ethereum_node_urls: list[str]
    chain_id: int
    overheads: GasOverheads
    paymaster_api: PaymasterAPI | None
    is_legacy_mode: bool
    stage: UserOperationStage

    def __init__(
        self,
        resolver: AccountStateResolver,
        bundler_client: BundlerClient,
        signature_codec: SignatureCodec,
        ethereum_node_urls: str | list[str],
        chain_id: int,
        overheads: GasOverheads | None = None,
        paymaster_api: PaymasterAPI | None = None,
        is_legacy_mode: bool = False,
    ):
        if isinstance(ethereum_node_urls, str):
            ethereum_node_urls = [ethereum_node_urls]
        self.resolver = resolver
        self.bundler_client = bundler_client
        self.signature_codec = signature_codec
        self.ethereum_node_urls = ethereum_node_urls
        self.chain_id = chain_id
        self.overheads = replace(
            overheads if overheads is not None else DEFAULT_GAS_OVERHEADS,
            signature_mode=signature_codec.signature_mode,
        )
        self.paymaster_api = paymaster_api
        self.is_legacy_mode = is_legacy_mode
        self.stage = UserOperationStage.UNBUILT

    @property
    def entrypoint(self) -> Address:
        return self.resolver.entrypoint

    async def init(self) -> "UserOperationBuilder":
        await self.resolver.check_entrypoint_deployed()
        await self.resolver.get_account_address()
        return self

    def _set_stage(self, stage: UserOperationStage) -> None:
        logging.info(
            f"UserOperation stage {self.stage.value} -> {stage.value}")
        self.stage = stage

    async def get_account_address(self) -> Address:
        return await self.resolver.get_account_address()

    def encode_call_data(self, details: TransactionDetails) -> bytes:
        validate_transaction_details(details)
        data = verify_and_get_bytes(
            "data", details.data if details.data is not None else b"")
        value = (
            verify_and_get_uint("value", details.value)
            if details.value is not None else 0
        )
        logging.debug(
            f"Encoding {'contract interaction' if data else 'simple transfer'}"
            f" to {details.target} with value {value}"
        )
        return self.resolver.encode_execute(details.target, value, data)

    def encode_batch_call_data(
        self, details: BatchTransactionDetails
    ) -> bytes:
        validate_batch_transaction_details(details)
        datas = [
            verify_and_get_bytes("datas", data if data is not None else b"")
            for data in details.datas
        ]
        values = [
            verify_and_get_uint("values", value) if value is not None else 0
            for value in details.values
        ]
        logging.debug(f"Encoding batch of {len(details.targets)} calls")
        return self.resolver.encode_execute_batch(
            details.targets, values, datas)

    async def encode_user_op_call_data_and_gas_limit(
        self, details: TransactionDetails
    ) -> CallDataAndGasLimits:
        call_data = self.encode_call_data(details)
        return await self._get_call_data_and_gas_limits(
            call_data, details.gas_limit)

    async def encode_batch_user_op_call_data_and_gas_limit(
        self, details: BatchTransactionDetails
    ) -> CallDataAndGasLimits:
        call_data = self.encode_batch_call_data(details)
        return await self._get_call_data_and_gas_limits(
            call_data, details.gas_limit)

    async def _get_call_data_and_gas_limits(
        self, call_data: bytes, gas_limit: int | None
    ) -> CallDataAndGasLimits:
        if gas_limit:
            logging.debug(f"Using provided gas limit: {gas_limit}")
            return CallDataAndGasLimits(
                call_data=call_data,
                call_gas_limit=verify_and_get_uint("gasLimit", gas_limit),
            )

        estimation = await self._estimate_call_data_gas(call_data)
        if not estimation.success:
            logging.error(f"Bundler gas estimation failed: {estimation.error}")
            raise EstimationError(
                estimation.error or "Bundler gas estimation failed")

        verification_gas_limit = get_verification_gas_limit(
            self.signature_codec.signature_mode)
        limits = CallDataAndGasLimits(
            call_data=call_data,
            call_gas_limit=estimation.call_gas_limit,
            verification_gas=estimation.verification_gas,
            verification_gas_limit=verification_gas_limit,
            pre_verification_gas=estimation.pre_verification_gas,
            max_fee_per_gas=estimation.max_fee_per_gas,
            max_priority_fee_per_gas=estimation.max_priority_fee_per_gas,
        )
        logging.debug(f"Bundler estimation details: {limits}")
        return limits

    async def _estimate_call_data_gas(
        self, call_data: bytes
    ) -> GasEstimationResult:
        init_code = await self.resolver.get_init_code()
        partial_user_operation = UserOperation(
            sender_address=await self.resolver.get_account_address(),
            nonce=await self.resolver.get_nonce(),
            init_code=init_code,
            call_data=call_data,
            call_gas_limit=0,
            verification_gas_limit=get_verification_gas_limit(
                self.signature_codec.signature_mode),
            pre_verification_gas=0,
            max_fee_per_gas=0,
            max_priority_fee_per_gas=0,
            paymaster_and_data=b"",
            signature=b"",
        )
        if self.paymaster_api is not None:
            paymaster_and_data = await self.paymaster_api.get_paymaster_and_data(
                partial_user_operation)
            partial_user_operation.paymaster_and_data = (
                paymaster_and_data or b"")

        return await self.bundler_client.estimate_user_operation_gas(
            partial_user_operation, self.signature_codec.signature_mode)

    async def estimate_user_operation_gas(
        self, details: TransactionDetails
    ) -> GasEstimationResult:
        call_data = self.encode_call_data(details)
        return await self._estimate_call_data_gas(call_data)

    async def estimate_batch_user_operation_gas(
        self, details: BatchTransactionDetails
    ) -> GasEstimationResult:
        call_data = self.encode_batch_call_data(details)
        return await self._estimate_call_data_gas(call_data)

    async def _resolve_fees(
        self,
        max_fee_per_gas: int | None,
        max_priority_fee_per_gas: int | None,
        limits: CallDataAndGasLimits,
    ) -> tuple[int, int]:
        if max_fee_per_gas is None and limits.max_fee_per_gas > 0:
            max_fee_per_gas = limits.max_fee_per_gas
        if (
            max_priority_fee_per_gas is None and
            limits.max_priority_fee_per_gas > 0
        ):
            max_priority_fee_per_gas = limits.max_priority_fee_per_gas

        if max_fee_per_gas is None or max_priority_fee_per_gas is None:
            node_max_fee, node_max_priority_fee = await get_fee_data(
                self.ethereum_node_urls, self.is_legacy_mode)
            if max_fee_per_gas is None:
                max_fee_per_gas = node_max_fee
            if max_priority_fee_per_gas is None:
                max_priority_fee_per_gas = node_max_priority_fee
        return max_fee_per_gas, max_priority_fee_per_gas

    async def _create_unsigned_user_op(
        self,
        limits: CallDataAndGasLimits,
        nonce: int | None,
        max_fee_per_gas: int | None,
        max_priority_fee_per_gas: int | None,
    ) -> UserOperation:
        init_code = await self.resolver.get_init_code()
        init_gas = await self.resolver.estimate_creation_gas(init_code)
        verification_gas_limit = get_verification_gas_limit(
            self.signature_codec.signature_mode) + init_gas

        max_fee_per_gas, max_priority_fee_per_gas = await self._resolve_fees(
            max_fee_per_gas, max_priority_fee_per_gas, limits)

        user_operation = UserOperation(
            sender_address=await self.resolver.get_account_address(),
            nonce=nonce if nonce is not None else await self.resolver.get_nonce(),
            init_code=init_code,
            call_data=limits.call_data,
            call_gas_limit=limits.call_gas_limit,
            verification_gas_limit=verification_gas_limit,
            pre_verification_gas=0,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
            paymaster_and_data=b"",
            signature=b"",
        )

        if self.paymaster_api is not None:
            # partial preVerificationGas, without the paymasterAndData cost
            user_operation.pre_verification_gas = calc_preverification_gas(
                user_operation, self.overheads)
            paymaster_and_data = await self.paymaster_api.get_paymaster_and_data(
                user_operation)
            user_operation.paymaster_and_data = paymaster_and_data or b""

        user_operation.pre_verification_gas = calc_preverification_gas(
            replace(user_operation, pre_verification_gas=0), self.overheads)

        self._set_stage(UserOperationStage.GAS_ESTIMATED)
        return user_operation

    async def create_unsigned_user_op(
        self, details: TransactionDetails
    ) -> UserOperation:
        self.stage = UserOperationStage.UNBUILT
        limits = await self.encode_user_op_call_data_and_gas_limit(details)
        return await self._create_unsigned_user_op(
            limits,
            details.nonce,
            details.max_fee_per_gas,
            details.max_priority_fee_per_gas,
        )

    async def create_unsigned_batch_user_op(
        self, details: BatchTransactionDetails
    ) -> UserOperation:
        self.stage = UserOperationStage.UNBUILT
        limits = await self.encode_batch_user_op_call_data_and_gas_limit(
            details)
        return await self._create_unsigned_user_op(
            limits,
            details.nonce,
            details.max_fee_per_gas,
            details.max_priority_fee_per_gas,
        )

    def get_user_op_hash(self, user_operation: UserOperation) -> str:
        return get_user_operation_hash(
            user_operation.to_list(), self.entrypoint, self.chain_id)

    async def sign_user_op(self, user_operation: UserOperation) -> UserOperation:
        user_operation_hash = self.get_user_op_hash(user_operation)
        signature = await self.signature_codec.sign(
            hex_to_bytes(user_operation_hash))
        signed_user_operation = replace(user_operation, signature=signature)
        self._set_stage(UserOperationStage.SIGNED)
        return signed_user_operation

    async def create_signed_user_op(
        self, details: TransactionDetails
    ) -> UserOperation:
        return await self.sign_user_op(
            await self.create_unsigned_user_op(details))

    async def create_signed_batch_user_op(
        self, details: BatchTransactionDetails
    ) -> UserOperation:
        return await self.sign_user_op(
            await self.create_unsigned_batch_user_op(details))

    async def submit_user_operation(
        self, user_operation: UserOperation
    ) -> UserOperationHash:
        try:
            user_operation_hash = await self.bundler_client.send_user_operation(
                user_operation)
        except SubmissionError as excp:
            raise unwrap_submission_error(excp, user_operation) from excp
        self._set_stage(UserOperationStage.SUBMITTED)
        return user_operation_hash

    async def send_user_operation(
        self, details: TransactionDetails
    ) -> UserOperationHash:
        user_operation = await self.create_signed_user_op(details)
        return await self.submit_user_operation(user_operation)

    async def send_batch_user_operation(
        self, details: BatchTransactionDetails
    ) -> UserOperationHash:
        user_operation = await self.create_signed_batch_user_op(details)
        return await self.submit_user_operation(user_operation)


def _validate_optional_uints(
    details: TransactionDetails | BatchTransactionDetails,
) -> None:
    for field_name, value in (
        ("gasLimit", details.gas_limit),
        ("maxFeePerGas", details.max_fee_per_gas),
        ("maxPriorityFeePerGas", details.max_priority_fee_per_gas),
        ("nonce", details.nonce),
    ):
        if value is not None:
            verify_and_get_uint(field_name, value)


def validate_transaction_details(details: TransactionDetails) -> None:
    if details.target is None or details.target == "":
        raise ValidationError(
            ValidationExceptionCode.MissingTarget, "Missing call target")
    verify_and_get_address("target", details.target)
    if details.data is None and details.value is None:
        raise ValidationError(
            ValidationExceptionCode.MissingCallData,
            "Missing call data or value",
        )
    if details.value is not None:
        verify_and_get_uint("value", details.value)
    _validate_optional_uints(details)


def validate_batch_transaction_details(
    details: BatchTransactionDetails,
) -> None:
    if len(details.targets) == 0:
        raise ValidationError(
            ValidationExceptionCode.InvalidBatch, "Empty batch request")
    if (
        len(details.targets) != len(details.datas) or
        len(details.targets) != len(details.values)
    ):
        raise ValidationError(
            ValidationExceptionCode.InvalidBatch,
            "Batch arrays must have the same length",
        )
    for index, target in enumerate(details.targets):
        if target is None or target == "":
            raise ValidationError(
                ValidationExceptionCode.MissingTarget,
                f"Missing call target in batch at index {index}",
            )
        verify_and_get_address(f"targets[{index}]", target)
    for index, value in enumerate(details.values):
        if value is not None:
            verify_and_get_uint(f"values[{index}]", value)
    _validate_optional_uints(details)


def unwrap_submission_error(
    excp: SubmissionError, user_operation: UserOperation
) -> SubmissionError:
    """Extract a FailedOp(index, paymaster, reason) from a relay error.

    Errors without a FailedOp shape are returned unchanged.
    """
    op_index = None
    paymaster = None
    reason = None

    matched = re.search(r"FailedOp\((.*)\)", excp.message)
    if matched is not None:
        parts = [part.strip().strip("\"'") for part in
                 matched.group(1).split(",", 2)]
        if len(parts) == 3 and re.match(ADDRESS_PATTERN, parts[1]):
            op_index_str, paymaster, reason = parts
        elif len(parts) >= 2:
            op_index_str = parts[0]
            reason = ", ".join(parts[1:])
        else:
            return excp
        if op_index_str.isdigit():
            op_index = int(op_index_str)
    elif excp.data is not None and excp.data[:10] == FAILED_OP_SELECTOR:
        try:
            op_index, reason = decode_failed_op_event(excp.data[10:])
        except (DecodingError, ValueError):
            return excp
    else:
        return excp

    # AA3x codes are paymaster failures
    if paymaster is None and reason is not None and reason[:3] == "AA3":
        paymaster = user_operation.paymaster_address

    message = (
        "The bundler has failed to include UserOperation in a batch: "
        f"{reason}"
    )
    if paymaster is not None:
        message += f" (paymaster address: {paymaster})"
    logging.error(message)
    return SubmissionError(
        message,
        op_index=op_index,
        paymaster=Address(paymaster) if paymaster is not None else None,
        reason=reason,
        data=excp.data,
    )
