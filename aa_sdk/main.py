import asyncio
import logging
import sys

import uvloop

from aa_sdk.account.account_state_resolver import AccountStateResolver
from aa_sdk.account.identity import ConventionalKey
from aa_sdk.bundler.bundler_client import BundlerClient
from aa_sdk.deployment.deployment_planner import (DeploymentDescriptor,
                                                  DeploymentPlanner)
from aa_sdk.exceptions import (ConfigurationError, DeploymentError,
                               EstimationError, SigningError, SubmissionError,
                               ValidationError)
from aa_sdk.signature.signature_codec import create_signature_codec
from aa_sdk.user_operation.models import TransactionDetails
from aa_sdk.user_operation.user_operation_builder import UserOperationBuilder

from .cli_manager import InitData, parse_args

SDK_ERRORS = (
    ConfigurationError,
    ValidationError,
    EstimationError,
    SubmissionError,
    SigningError,
    DeploymentError,
)


def build_user_operation_builder(init_data: InitData) -> UserOperationBuilder:
    identity = ConventionalKey(init_data.owner_account)
    resolver = AccountStateResolver(
        init_data.ethereum_node_url,
        init_data.entrypoint,
        identity,
        init_data.factory_address,
        init_data.account_address,
        init_data.account_index,
    )
    bundler_client = BundlerClient(
        init_data.bundler_url,
        init_data.entrypoint,
        init_data.chain_id,
    )
    signature_codec = create_signature_codec(
        identity, wallet_id=init_data.wallet_id)
    return UserOperationBuilder(
        resolver,
        bundler_client,
        signature_codec,
        init_data.ethereum_node_url,
        init_data.chain_id,
        init_data.overheads,
        is_legacy_mode=init_data.is_legacy_mode,
    )


async def execute_command(init_data: InitData) -> str:
    builder = await build_user_operation_builder(init_data).init()

    if init_data.command == "address":
        return await builder.get_account_address()

    if init_data.command == "send":
        return await builder.send_user_operation(
            TransactionDetails(
                target=init_data.target,
                data=init_data.data,
                value=init_data.value,
                gas_limit=init_data.gas_limit,
            )
        )

    planner = DeploymentPlanner(
        init_data.deployer_address,
        init_data.ethereum_node_url,
        builder,
    )
    descriptor = DeploymentDescriptor(init_data.bytecode)
    if init_data.command == "predict-address":
        return await planner.predict_address(descriptor, init_data.salt)
    if init_data.command == "deploy":
        return await planner.deploy(
            descriptor, init_data.salt, init_data.gas_limit)

    raise ValueError(f"Unknown command {init_data.command}")


async def main(cmd_args=sys.argv[1:]) -> None:
    init_data = await parse_args(cmd_args)
    try:
        result = await execute_command(init_data)
    except SDK_ERRORS as excp:
        logging.critical(f"{type(excp).__name__}: {excp}")
        sys.exit(1)
    print(result)


def run() -> None:
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
    asyncio.run(main())


if __name__ == "__main__":
    run()
