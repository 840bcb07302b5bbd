import json

import pytest
from eth_account import Account
from eth_utils import to_checksum_address

from conftest import (ACCOUNT, BUNDLER_URL, CHAIN_ID, DEPLOYER, FACTORY,
                      NODE_URL, OWNER_PRIVATE_KEY, make_eth_call_handler,
                      rpc_error, rpc_result)

from aa_sdk.cli_manager import parse_args
from aa_sdk.main import main

BASE_ARGS = [
    "--owner_secret", OWNER_PRIVATE_KEY,
    "--bundler_url", BUNDLER_URL,
    "--ethereum_node_url", NODE_URL,
    "--factory", FACTORY,
]


@pytest.fixture
def node_rpc(fake_rpc):
    fake_rpc.on("eth_chainId", rpc_result(hex(CHAIN_ID)))
    return fake_rpc


@pytest.mark.asyncio
async def test_parse_send(node_rpc, owner_account):
    init_data = await parse_args(BASE_ARGS + [
        "--pvg_per_user_operation", "20000",
        "send", "--target", ACCOUNT, "--value", "0x10", "--gas_limit", "90000",
    ])

    assert init_data.command == "send"
    assert init_data.owner_account.address == owner_account.address
    assert init_data.bundler_url == BUNDLER_URL
    assert init_data.factory_address == FACTORY
    assert init_data.chain_id == CHAIN_ID
    assert init_data.target == ACCOUNT
    assert init_data.value == 16
    assert init_data.gas_limit == 90_000
    assert init_data.data is None
    assert init_data.overheads.per_user_operation == 20_000
    assert init_data.overheads.fixed == 21_000
    assert node_rpc.params_of("eth_chainId") == [[]]


@pytest.mark.asyncio
async def test_environment_defaults(node_rpc, monkeypatch):
    monkeypatch.setenv("AA_SDK_DEPLOYER", DEPLOYER)
    monkeypatch.setenv("AA_SDK_WALLET_ID", "7")
    monkeypatch.setenv("AA_SDK_LEGACY_MODE", "true")

    init_data = await parse_args(BASE_ARGS + [
        "predict-address", "--bytecode", "0x6080",
    ])

    assert init_data.deployer_address == DEPLOYER
    assert init_data.wallet_id == 7
    assert init_data.is_legacy_mode
    assert init_data.bytecode == "0x6080"
    assert init_data.salt is None


@pytest.mark.asyncio
async def test_keystore_owner(node_rpc, owner_account, tmp_path):
    keystore_file = tmp_path / "owner.json"
    keystore_file.write_text(
        json.dumps(Account.encrypt(OWNER_PRIVATE_KEY, "secret")))

    init_data = await parse_args([
        "--keystore_file_path", str(keystore_file),
        "--keystore_file_password", "secret",
        "--account_address", ACCOUNT,
        "address",
    ])

    assert init_data.owner_account.address == owner_account.address
    assert init_data.account_address == ACCOUNT
    assert init_data.factory_address is None


@pytest.mark.asyncio
async def test_chain_id_mismatch_exits(fake_rpc):
    fake_rpc.on("eth_chainId", rpc_result(hex(5)))
    with pytest.raises(SystemExit):
        await parse_args(BASE_ARGS + ["address"])


@pytest.mark.asyncio
async def test_invalid_node_exits(fake_rpc):
    fake_rpc.on("eth_chainId", rpc_error("method not found", code=-32601))
    with pytest.raises(SystemExit):
        await parse_args(BASE_ARGS + ["address"])


@pytest.mark.parametrize(
    "cmd_args",
    [
        # no owner secret
        ["--factory", FACTORY, "address"],
        # both owner secret and keystore
        BASE_ARGS + ["--keystore_file_path", "owner.json", "address"],
        # neither account address nor factory
        ["--owner_secret", OWNER_PRIVATE_KEY, "address"],
        # no deployer
        BASE_ARGS + ["deploy", "--bytecode", "0x6080"],
        # nothing to send
        BASE_ARGS + ["send", "--target", ACCOUNT],
        # malformed address
        BASE_ARGS + ["send", "--target", "0x1234", "--value", "1"],
        # odd length hex
        BASE_ARGS + ["send", "--target", ACCOUNT, "--data", "0x123"],
        # no command
        BASE_ARGS,
    ],
)
@pytest.mark.asyncio
async def test_invalid_arguments_exit(fake_rpc, cmd_args):
    with pytest.raises(SystemExit):
        await parse_args(cmd_args)
    assert fake_rpc.calls == []


@pytest.mark.asyncio
async def test_main_prints_account_address(node_rpc, capsys):
    node_rpc.on("eth_getCode", rpc_result("0x6080604052"))
    node_rpc.on("eth_call", make_eth_call_handler())

    await main(BASE_ARGS + ["address"])

    assert capsys.readouterr().out.strip() == to_checksum_address(ACCOUNT)


@pytest.mark.asyncio
async def test_main_exits_on_missing_entrypoint(node_rpc):
    node_rpc.on("eth_getCode", rpc_result("0x"))

    with pytest.raises(SystemExit) as excinfo:
        await main(BASE_ARGS + ["address"])

    assert excinfo.value.code == 1
    assert node_rpc.count("eth_call") == 0


@pytest.mark.asyncio
async def test_main_exits_on_rejected_user_operation(deployed_account_rpc):
    deployed_account_rpc.on(
        "eth_sendUserOperation",
        rpc_error("FailedOp(0, AA25 invalid account nonce)"),
    )

    with pytest.raises(SystemExit) as excinfo:
        await main(BASE_ARGS + [
            "--account_address", ACCOUNT,
            "send", "--target", DEPLOYER, "--value", "1",
            "--gas_limit", "50000",
        ])

    assert excinfo.value.code == 1
    assert deployed_account_rpc.count("eth_sendUserOperation") == 1
