import pytest
from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address

from conftest import (ACCOUNT, BUNDLER_URL, CHAIN_ID, DEPLOYER, ENTRYPOINT,
                      FACTORY, NODE_URL, make_eth_call_handler, rpc_result)

from aa_sdk.account.account_state_resolver import AccountStateResolver
from aa_sdk.account.identity import ConventionalKey
from aa_sdk.bundler.bundler_client import BundlerClient
from aa_sdk.deployment.deployment_planner import (DEFAULT_SALT,
                                                  DeploymentDescriptor,
                                                  DeploymentPlanner)
from aa_sdk.exceptions import (DeploymentError, DeploymentExceptionCode,
                               ValidationError)
from aa_sdk.signature.signature_codec import EoaSignatureCodec
from aa_sdk.user_operation.user_operation import UserOperation
from aa_sdk.user_operation.user_operation_builder import UserOperationBuilder
from aa_sdk.utils.decode import hex_to_bytes
from aa_sdk.utils.encode import function_selector

BYTECODE = "0x6080604052348015600f57600080fd5b50603f80601d6000396000f3fe"
SALT = "0x" + "42" * 32
USER_OPERATION_HASH = "0x" + "ab" * 32


def create2_address(bytecode_hash: bytes, salt: bytes, deployer: str) -> str:
    return to_checksum_address(keccak(
        b"\xff" + hex_to_bytes(deployer) + salt + bytecode_hash)[12:])


def make_planner(owner_account, deployer=DEPLOYER) -> DeploymentPlanner:
    resolver = AccountStateResolver(
        NODE_URL,
        ENTRYPOINT,
        ConventionalKey(owner_account),
        factory_address=FACTORY,
        account_address=ACCOUNT,
    )
    builder = UserOperationBuilder(
        resolver,
        BundlerClient(BUNDLER_URL, ENTRYPOINT, CHAIN_ID),
        EoaSignatureCodec(owner_account),
        NODE_URL,
        CHAIN_ID,
    )
    return DeploymentPlanner(deployer, NODE_URL, builder)


@pytest.fixture
def deployer_rpc(deployed_account_rpc):
    deployed_account_rpc.on(
        "eth_call",
        make_eth_call_handler(nonce=5, compute_address=create2_address),
    )
    return deployed_account_rpc


@pytest.mark.asyncio
async def test_predict_address(deployer_rpc, owner_account):
    planner = make_planner(owner_account)

    address = await planner.predict_address(DeploymentDescriptor(BYTECODE), SALT)

    assert address == create2_address(
        keccak(hex_to_bytes(BYTECODE)), hex_to_bytes(SALT), DEPLOYER)
    assert deployer_rpc.count("eth_sendUserOperation") == 0


@pytest.mark.asyncio
async def test_predict_address_is_stable(deployer_rpc, owner_account):
    planner = make_planner(owner_account)
    descriptor = DeploymentDescriptor(BYTECODE, salt=SALT)

    first = await planner.predict_address(descriptor)
    second = await planner.predict_address(descriptor)
    other_salt = await planner.predict_address(descriptor, DEFAULT_SALT)

    assert first == second
    assert first != other_salt


@pytest.mark.parametrize("bytecode", ["0x", "6080", "0x608", "0xzz", None])
@pytest.mark.asyncio
async def test_invalid_bytecode_fails_before_any_rpc(
    fake_rpc, owner_account, bytecode
):
    planner = make_planner(owner_account)
    with pytest.raises(DeploymentError) as excinfo:
        await planner.predict_address(DeploymentDescriptor(bytecode))
    assert excinfo.value.exception_code == DeploymentExceptionCode.InvalidBytecode
    assert fake_rpc.calls == []


@pytest.mark.asyncio
async def test_invalid_salt_fails_before_any_rpc(fake_rpc, owner_account):
    planner = make_planner(owner_account)
    with pytest.raises(DeploymentError) as excinfo:
        await planner.deploy(DeploymentDescriptor(BYTECODE), salt="0x01")
    assert excinfo.value.exception_code == DeploymentExceptionCode.InvalidSalt
    assert fake_rpc.calls == []


@pytest.mark.asyncio
async def test_deployer_without_code(fake_rpc, owner_account):
    fake_rpc.on("eth_getCode", rpc_result("0x"))
    planner = make_planner(owner_account)

    with pytest.raises(DeploymentError) as excinfo:
        await planner.predict_address(DeploymentDescriptor(BYTECODE))

    assert excinfo.value.exception_code == DeploymentExceptionCode.InvalidDeployer
    assert fake_rpc.count("eth_call") == 0


@pytest.mark.asyncio
async def test_deployer_with_unexpected_interface(
    deployed_account_rpc, owner_account
):
    planner = make_planner(owner_account)

    with pytest.raises(DeploymentError) as excinfo:
        await planner.predict_address(DeploymentDescriptor(BYTECODE))

    assert excinfo.value.exception_code == DeploymentExceptionCode.InvalidDeployer
    assert deployed_account_rpc.count("eth_call") == 1


@pytest.mark.asyncio
async def test_deploy_goes_through_the_account(deployer_rpc, owner_account):
    deployer_rpc.on("eth_sendUserOperation", rpc_result(USER_OPERATION_HASH))
    planner = make_planner(owner_account)

    user_operation_hash = await planner.deploy(
        DeploymentDescriptor(BYTECODE), SALT, gas_limit=1_500_000)

    assert user_operation_hash == USER_OPERATION_HASH
    [[user_operation_json, _]] = deployer_rpc.params_of("eth_sendUserOperation")
    user_operation = UserOperation.from_json(user_operation_json)
    assert user_operation.call_gas_limit == 1_500_000

    target, value, data = decode(
        ["address", "uint256", "bytes"], user_operation.call_data[4:])
    assert to_checksum_address(target) == to_checksum_address(DEPLOYER)
    assert value == 0
    assert data[:4] == function_selector("deploy(bytes,bytes32)")
    bytecode, salt = decode(["bytes", "bytes32"], data[4:])
    assert bytecode == hex_to_bytes(BYTECODE)
    assert salt == hex_to_bytes(SALT)


@pytest.mark.asyncio
async def test_deploy_with_invalid_deployer_address(fake_rpc, owner_account):
    planner = make_planner(owner_account, deployer="0x1234")
    with pytest.raises(DeploymentError) as excinfo:
        await planner.deploy(DeploymentDescriptor(BYTECODE))
    assert excinfo.value.exception_code == DeploymentExceptionCode.InvalidDeployer
    assert fake_rpc.calls == []


@pytest.mark.asyncio
async def test_predict_with_invalid_deployer_address(fake_rpc, owner_account):
    planner = make_planner(owner_account, deployer="0x1234")
    with pytest.raises(DeploymentError) as excinfo:
        await planner.predict_address(DeploymentDescriptor(BYTECODE))
    assert excinfo.value.exception_code == DeploymentExceptionCode.InvalidDeployer
    assert fake_rpc.calls == []


@pytest.mark.asyncio
async def test_deploy_keeps_builder_validation_errors(fake_rpc, owner_account):
    planner = make_planner(owner_account)
    with pytest.raises(ValidationError):
        await planner.deploy(DeploymentDescriptor(BYTECODE), gas_limit=-1)
    assert fake_rpc.calls == []


@pytest.mark.asyncio
async def test_estimate_gas(deployer_rpc, owner_account):
    deployer_rpc.on(
        "eth_estimateUserOperationGas",
        rpc_result({
            "callGasLimit": hex(1_200_000),
            "verificationGasLimit": hex(80_000),
            "preVerificationGas": hex(50_000),
        }),
    )
    planner = make_planner(owner_account)

    assert await planner.estimate_gas(DeploymentDescriptor(BYTECODE)) == 1_200_000
    assert deployer_rpc.count("eth_sendUserOperation") == 0


def test_constructor_args_are_appended():
    descriptor = DeploymentDescriptor(
        BYTECODE, ["uint256", "address"], [7, ACCOUNT])
    assert descriptor.get_deployment_bytecode() == (
        BYTECODE + encode(["uint256", "address"], [7, ACCOUNT]).hex())


def test_constructor_args_must_match_types():
    descriptor = DeploymentDescriptor(BYTECODE, ["uint256"], [7, 8])
    with pytest.raises(DeploymentError):
        descriptor.get_deployment_bytecode()
