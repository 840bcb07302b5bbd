import os
import logging
import re
import sys
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version

import aiohttp
from eth_account.signers.local import LocalAccount

from aa_sdk.gas.gas_accountant import DEFAULT_GAS_OVERHEADS, GasOverheads
from aa_sdk.typing import Address
from aa_sdk.utils.eth_client_utils import send_rpc_request_to_eth_client
from aa_sdk.utils.import_key import (import_owner_account,
                                     owner_account_from_private_key)

ENTRYPOINT_V6 = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"


@dataclass()
class InitData:
    command: str
    bundler_url: str
    ethereum_node_url: str
    entrypoint: Address
    factory_address: Address | None
    account_address: Address | None
    account_index: int
    chain_id: int
    deployer_address: Address | None
    owner_account: LocalAccount
    wallet_id: int | None
    is_legacy_mode: bool
    overheads: GasOverheads
    target: Address | None
    data: str | None
    value: int | None
    gas_limit: int | None
    bytecode: str | None
    salt: str | None


def address(ep: str):
    address_pattern = "^0x[0-9,a-f,A-F]{40}$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return ep


def unsigned_int(value):
    ivalue = int(value, 0) if isinstance(value, str) else int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def hex_bytes(value: str):
    if not isinstance(value, str) or re.match(
        "^0x([0-9a-fA-F]{2})*$", value
    ) is None:
        raise ArgumentTypeError(f"Wrong hex bytes format : {value}")
    return value


def bytes32(value: str):
    if not isinstance(value, str) or re.match(
        "^0x[0-9a-fA-F]{64}$", value
    ) is None:
        raise ArgumentTypeError(f"Wrong bytes32 format : {value}")
    return value


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return the default value.
    """
    value = os.getenv(env_var, None)
    if value is not None:
        return value_type(value)
    return default


def _add_gas_overheads_arguments(parser: ArgumentParser) -> None:
    parser.add_argument(
        "--pvg_fixed",
        type=unsigned_int,
        help="preVerificationGas fixed overhead of the bundle - defaults to 21000",
        nargs="?",
        const=DEFAULT_GAS_OVERHEADS.fixed,
        default=_get_env_or_default(
            "AA_SDK_PVG_FIXED", DEFAULT_GAS_OVERHEADS.fixed, unsigned_int),
    )

    parser.add_argument(
        "--pvg_per_user_operation",
        type=unsigned_int,
        help="preVerificationGas overhead per UserOperation - defaults to 18300",
        nargs="?",
        const=DEFAULT_GAS_OVERHEADS.per_user_operation,
        default=_get_env_or_default(
            "AA_SDK_PVG_PER_USER_OPERATION",
            DEFAULT_GAS_OVERHEADS.per_user_operation,
            unsigned_int,
        ),
    )

    parser.add_argument(
        "--pvg_per_user_operation_word",
        type=unsigned_int,
        help="preVerificationGas overhead per 32 bytes word - defaults to 4",
        nargs="?",
        const=DEFAULT_GAS_OVERHEADS.per_user_operation_word,
        default=_get_env_or_default(
            "AA_SDK_PVG_PER_USER_OPERATION_WORD",
            DEFAULT_GAS_OVERHEADS.per_user_operation_word,
            unsigned_int,
        ),
    )

    parser.add_argument(
        "--bundle_size",
        type=unsigned_int,
        help="expected number of UserOperations per bundle - defaults to 1",
        nargs="?",
        const=DEFAULT_GAS_OVERHEADS.bundle_size,
        default=_get_env_or_default(
            "AA_SDK_BUNDLE_SIZE", DEFAULT_GAS_OVERHEADS.bundle_size,
            unsigned_int),
    )


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="aa-sdk",
        description="EIP-4337 UserOperation client",
    )

    group = parser.add_mutually_exclusive_group(required=False)

    group.add_argument(
        "--owner_secret",
        type=str,
        help="Account owner private key",
        nargs="?",
        default=_get_env_or_default("AA_SDK_OWNER_SECRET", None, str),
    )

    group.add_argument(
        "--keystore_file_path",
        type=str,
        help=(
            "Account owner Keystore file path - "
            "defaults to first file in keystore folder"
        ),
        nargs="?",
        default=_get_env_or_default("AA_SDK_KEYSTORE_FILE_PATH", None, str),
    )

    parser.add_argument(
        "--keystore_file_password",
        type=str,
        help="Account owner Keystore file password - defaults to no password",
        nargs="?",
        const="",
        default=_get_env_or_default("AA_SDK_KEYSTORE_FILE_PASSWORD", "", str),
    )

    parser.add_argument(
        "--bundler_url",
        type=str,
        help="Bundler rpc url - defaults to http://localhost:3000/rpc",
        nargs="?",
        const="http://localhost:3000/rpc",
        default=_get_env_or_default(
            "AA_SDK_BUNDLER_URL", "http://localhost:3000/rpc", str),
    )

    parser.add_argument(
        "--ethereum_node_url",
        type=str,
        help="Eth Client JSON-RPC Url - defaults to http://0.0.0.0:8545",
        nargs="?",
        const="http://0.0.0.0:8545",
        default=_get_env_or_default(
            "AA_SDK_ETHEREUM_NODE_URL", "http://0.0.0.0:8545", str),
    )

    parser.add_argument(
        "--entrypoint",
        type=address,
        help=f"EntryPoint address - defaults to {ENTRYPOINT_V6}",
        nargs="?",
        const=ENTRYPOINT_V6,
        default=_get_env_or_default("AA_SDK_ENTRYPOINT", ENTRYPOINT_V6, address),
    )

    parser.add_argument(
        "--factory",
        type=address,
        help="Account factory address, needed while the account isn't deployed",
        nargs="?",
        default=_get_env_or_default("AA_SDK_FACTORY", None, address),
    )

    parser.add_argument(
        "--account_address",
        type=address,
        help="Already known account address, skips the counterfactual lookup",
        nargs="?",
        default=_get_env_or_default("AA_SDK_ACCOUNT_ADDRESS", None, address),
    )

    parser.add_argument(
        "--account_index",
        type=unsigned_int,
        help="Account salt used by the factory - defaults to 0",
        nargs="?",
        const=0,
        default=_get_env_or_default("AA_SDK_ACCOUNT_INDEX", 0, unsigned_int),
    )

    parser.add_argument(
        "--chain_id",
        type=unsigned_int,
        help="Chain id - defaults to 1337",
        nargs="?",
        const=1337,
        default=_get_env_or_default("AA_SDK_CHAIN_ID", 1337, unsigned_int),
    )

    parser.add_argument(
        "--deployer",
        type=address,
        help="CREATE2 deployer contract address",
        nargs="?",
        default=_get_env_or_default("AA_SDK_DEPLOYER", None, address),
    )

    parser.add_argument(
        "--wallet_id",
        type=unsigned_int,
        help="Logical wallet id prefixed to EOA signatures",
        nargs="?",
        default=_get_env_or_default("AA_SDK_WALLET_ID", None, unsigned_int),
    )

    parser.add_argument(
        "--legacy_mode",
        help="for networks that doesn't support EIP-1559",
        nargs="?",
        const=True,
        default=_get_env_or_default(
            "AA_SDK_LEGACY_MODE", False, lambda v: v.lower() == "true"),
    )

    parser.add_argument(
        "--verbose",
        help="show debug log",
        nargs="?",
        const=True,
        default=_get_env_or_default(
            "AA_SDK_VERBOSE", False, lambda v: v.lower() == "true"),
    )

    _add_gas_overheads_arguments(parser)

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("address", help="print the account address")

    send_parser = subparsers.add_parser(
        "send", help="send a call through the account")
    send_parser.add_argument("--target", type=address, required=True)
    send_parser.add_argument("--data", type=hex_bytes, default=None)
    send_parser.add_argument("--value", type=unsigned_int, default=None)
    send_parser.add_argument("--gas_limit", type=unsigned_int, default=None)

    predict_parser = subparsers.add_parser(
        "predict-address", help="predict a CREATE2 deployment address")
    predict_parser.add_argument("--bytecode", type=hex_bytes, required=True)
    predict_parser.add_argument("--salt", type=bytes32, default=None)

    deploy_parser = subparsers.add_parser(
        "deploy", help="deploy a contract through the CREATE2 deployer")
    deploy_parser.add_argument("--bytecode", type=hex_bytes, required=True)
    deploy_parser.add_argument("--salt", type=bytes32, default=None)
    deploy_parser.add_argument("--gas_limit", type=unsigned_int, default=None)

    return parser


def init_logging(args: Namespace):
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )

    logging.getLogger("aa_sdk")


def init_owner_account(args: Namespace) -> LocalAccount:
    if args.keystore_file_path is not None:
        return import_owner_account(
            args.keystore_file_password, args.keystore_file_path
        )
    return owner_account_from_private_key(args.owner_secret)


async def check_valid_ethereum_rpc_and_get_chain_id(ethereum_node_url) -> str:
    try:
        chain_id_hex = await send_rpc_request_to_eth_client(
            ethereum_node_url,
            "eth_chainId",
            [],
        )
        if "result" not in chain_id_hex:
            logging.critical(f"Invalid Eth node {ethereum_node_url}")
            sys.exit(1)
        else:
            return chain_id_hex["result"]
    except aiohttp.client_exceptions.ClientConnectorError:
        logging.critical(f"Connection refused for Eth node {ethereum_node_url}")
        sys.exit(1)
    except Exception:
        logging.critical(f"Error when connecting to Eth node {ethereum_node_url}")
        sys.exit(1)


def get_version() -> str:
    try:
        return version("aa-sdk")
    except PackageNotFoundError:
        return "unknown"


async def get_init_data(args: Namespace) -> InitData:
    init_logging(args)

    ethereum_node_chain_id_hex = await check_valid_ethereum_rpc_and_get_chain_id(
        args.ethereum_node_url
    )

    if hex(args.chain_id) != ethereum_node_chain_id_hex.lower():
        logging.critical(
            f"Invalid chain id {args.chain_id} with Eth node {args.ethereum_node_url}"
        )
        sys.exit(1)

    owner_account = init_owner_account(args)

    overheads = GasOverheads(
        fixed=args.pvg_fixed,
        per_user_operation=args.pvg_per_user_operation,
        per_user_operation_word=args.pvg_per_user_operation_word,
        bundle_size=args.bundle_size,
    )

    ret = InitData(
        command=args.command,
        bundler_url=args.bundler_url,
        ethereum_node_url=args.ethereum_node_url,
        entrypoint=Address(args.entrypoint),
        factory_address=args.factory,
        account_address=args.account_address,
        account_index=args.account_index,
        chain_id=args.chain_id,
        deployer_address=args.deployer,
        owner_account=owner_account,
        wallet_id=args.wallet_id,
        is_legacy_mode=bool(args.legacy_mode),
        overheads=overheads,
        target=getattr(args, "target", None),
        data=getattr(args, "data", None),
        value=getattr(args, "value", None),
        gas_limit=getattr(args, "gas_limit", None),
        bytecode=getattr(args, "bytecode", None),
        salt=getattr(args, "salt", None),
    )

    logging.info(f"Starting aa-sdk {get_version()} - command {args.command}")

    return ret


async def parse_args(cmd_args: list[str]) -> InitData:
    argument_parser: ArgumentParser = initialize_argument_parser()
    args = argument_parser.parse_args(cmd_args)
    # Required mutually exclusive arguments
    if not args.owner_secret and not args.keystore_file_path:
        argument_parser.error("You must specify either --owner_secret or --keystore_file_path, or set AA_SDK_OWNER_SECRET or AA_SDK_KEYSTORE_FILE_PATH environment variables.")
    if args.owner_secret and args.keystore_file_path:
        argument_parser.error("You can only specify either --owner_secret or --keystore_file_path but not both at the same time")
    if args.command in ("predict-address", "deploy") and args.deployer is None:
        argument_parser.error(f"{args.command} requires --deployer or AA_SDK_DEPLOYER")
    if args.command == "send" and args.data is None and args.value is None:
        argument_parser.error("send requires --data or --value")
    if args.account_address is None and args.factory is None:
        argument_parser.error("You must specify either --account_address or --factory")
    init_data = await get_init_data(args)
    return init_data
