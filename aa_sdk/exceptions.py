from dataclasses import dataclass, field
from enum import Enum

from aa_sdk.typing import Address


class ConfigurationExceptionCode(Enum):
    MissingFactory = "MissingFactory"
    MissingEntryPoint = "MissingEntryPoint"
    ChainIdMismatch = "ChainIdMismatch"
    InvalidSenderAddress = "InvalidSenderAddress"


@dataclass
class ConfigurationError(Exception):
    exception_code: ConfigurationExceptionCode
    message: str

    def __str__(self) -> str:
        return self.message


class ValidationExceptionCode(Enum):
    InvalidFields = "InvalidFields"
    InvalidBatch = "InvalidBatch"
    MissingTarget = "MissingTarget"
    MissingCallData = "MissingCallData"


@dataclass
class ValidationError(Exception):
    exception_code: ValidationExceptionCode
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class EstimationError(Exception):
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class SubmissionError(Exception):
    message: str
    op_index: int | None = None
    paymaster: Address | None = None
    reason: str | None = None
    data: str | None = field(default=None, repr=False)

    def __str__(self) -> str:
        return self.message


class SigningExceptionCode(Enum):
    CredentialRejected = "CredentialRejected"
    MalformedSignature = "MalformedSignature"
    MissingClientDataField = "MissingClientDataField"
    InvalidAttestation = "InvalidAttestation"


@dataclass
class SigningError(Exception):
    exception_code: SigningExceptionCode
    message: str

    def __str__(self) -> str:
        return self.message


class DeploymentExceptionCode(Enum):
    InvalidBytecode = "InvalidBytecode"
    InvalidDeployer = "InvalidDeployer"
    InvalidSalt = "InvalidSalt"


@dataclass
class DeploymentError(Exception):
    exception_code: DeploymentExceptionCode
    message: str

    def __str__(self) -> str:
        return self.message
