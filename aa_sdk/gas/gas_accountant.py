"""Client side gas accounting for UserOperations.

preVerificationGas is the part of an operation's cost that the EntryPoint
can't measure on-chain: the calldata of the bundle transaction and the fixed
per-transaction overhead, split between the operations of a bundle. All of it
is computed from the operation bytes alone, no rpc calls are made here.
"""
import logging
import math
from dataclasses import dataclass, replace

from aa_sdk.signature.signature_mode import SignatureMode, get_dummy_signature
from aa_sdk.user_operation.user_operation import (UserOperation,
                                                  pack_user_operation)

# bundlers reject operations priced below this regardless of computed cost
MIN_PRE_VERIFICATION_GAS = 49_024
DEFAULT_PRE_VERIFICATION_GAS = 21_000

EOA_VERIFICATION_GAS_LIMIT = 100_000
PASSKEY_VERIFICATION_GAS_LIMIT = 500_000


@dataclass(frozen=True)
class GasOverheads:
    # fixed overhead for the entire handleOps bundle
    fixed: int = 21_000
    # per userOp overhead, on top of the fixed per-bundle overhead
    per_user_operation: int = 18_300
    # overhead per 32 bytes word of the packed userOp
    per_user_operation_word: int = 4
    zero_byte: int = 4
    non_zero_byte: int = 16
    # expected bundle size, the fixed overhead is split between all ops
    bundle_size: int = 1
    signature_mode: SignatureMode = SignatureMode.EOA


DEFAULT_GAS_OVERHEADS = GasOverheads()


def calc_preverification_gas(
    user_operation: UserOperation,
    overheads: GasOverheads | None = None,
) -> int:
    ov = overheads if overheads is not None else DEFAULT_GAS_OVERHEADS

    pre_verification_gas = user_operation.pre_verification_gas
    if pre_verification_gas == 0:
        pre_verification_gas = DEFAULT_PRE_VERIFICATION_GAS

    user_operation_for_packing = replace(
        user_operation,
        pre_verification_gas=pre_verification_gas,
        signature=get_dummy_signature(ov.signature_mode),
    )

    packed = pack_user_operation(
        user_operation_for_packing.to_list(), False)
    packed_length = len(packed)
    zero_byte_count = packed.count(b"\x00")
    non_zero_byte_count = packed_length - zero_byte_count
    call_data_cost = (
        zero_byte_count * ov.zero_byte +
        non_zero_byte_count * ov.non_zero_byte
    )

    length_in_words = math.ceil(packed_length / 32)

    base_gas = ov.fixed / ov.bundle_size
    word_gas = ov.per_user_operation_word * length_in_words

    total = math.floor(
        call_data_cost
        + base_gas
        + ov.per_user_operation
        + word_gas
        + 0.5
    )

    logging.debug(
        f"preVerificationGas with signature mode {ov.signature_mode.value}: "
        f"call data cost {call_data_cost}, base gas {base_gas}, "
        f"word gas {word_gas}, total {total}"
    )

    return max(total, MIN_PRE_VERIFICATION_GAS)


def get_verification_gas_limit(signature_mode: SignatureMode) -> int:
    if signature_mode == SignatureMode.PASSKEY:
        return PASSKEY_VERIFICATION_GAS_LIMIT
    return EOA_VERIFICATION_GAS_LIMIT
