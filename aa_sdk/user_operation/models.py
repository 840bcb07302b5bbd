from dataclasses import dataclass, field
from enum import Enum

from aa_sdk.typing import Address


class UserOperationStage(Enum):
    UNBUILT = "Unbuilt"
    GAS_ESTIMATED = "GasEstimated"
    SIGNED = "Signed"
    SUBMITTED = "Submitted"


@dataclass
class TransactionDetails:
    target: Address | None
    data: str | None = None
    value: int | None = None
    gas_limit: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None
    nonce: int | None = None


@dataclass
class BatchTransactionDetails:
    targets: list[Address | None]
    datas: list[str | None]
    values: list[int | None]
    gas_limit: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None
    nonce: int | None = None


class EstimationFailureKind(Enum):
    REJECTED = "Rejected"
    UNREACHABLE = "Unreachable"


@dataclass
class GasEstimationResult:
    success: bool
    call_gas_limit: int = 0
    verification_gas: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    error: str | None = None
    failure_kind: EstimationFailureKind | None = None

    @classmethod
    def failure(
        cls, error: str, failure_kind: EstimationFailureKind
    ) -> "GasEstimationResult":
        return cls(success=False, error=error, failure_kind=failure_kind)


@dataclass
class CallDataAndGasLimits:
    call_data: bytes
    call_gas_limit: int
    verification_gas: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0


@dataclass
class UserOperationReceipt:
    user_operation_hash: str
    sender: Address
    success: bool
    actual_gas_cost: int
    actual_gas_used: int
    transaction_hash: str | None
    raw: dict = field(default_factory=dict, repr=False)
