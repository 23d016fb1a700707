#!/usr/bin/python3

from pathlib import Path

import click
from ape.cli import ConnectedProviderCommand, account_option, network_option

from orchestrator.artifacts import ArtifactRef, load_artifact
from orchestrator.chain import ApeChainClient
from orchestrator.options import (
    autosign_option,
    caller_option,
    implementation_option,
    manifest_option,
    proxy_name_option,
    timeout_option,
)
from orchestrator.upgrade import upgrade_proxy


@click.command(cls=ConnectedProviderCommand, name="upgrade-token-factory")
@account_option()
@network_option(required=True)
@manifest_option
@proxy_name_option
@implementation_option
@click.option(
    "--storage-layout",
    help="solc storage layout JSON of the new implementation.",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
)
@caller_option
@timeout_option
@autosign_option
def cli(
    account,
    network,
    manifest,
    proxy_name,
    implementation,
    storage_layout,
    caller,
    timeout,
    auto,
):
    """
    Upgrades a proxy recorded in a deployment manifest to a new implementation.

    ape run upgrade_token_factory --network ethereum:sepolia:infura \
        --manifest orchestrator/artifacts/token-factory.json \
        --implementation TokenFactoryUpgradeableV2 --storage-layout layout.json
    """
    click.echo(f"Connected to {network.name} network.")
    client = ApeChainClient(account=account, autosign=auto, confirmation_timeout=timeout)
    new_implementation = load_artifact(
        ArtifactRef(contract_type=implementation, storage_layout_path=Path(storage_layout))
    )
    record = upgrade_proxy(
        manifest_filepath=Path(manifest),
        proxy_name=proxy_name,
        new_implementation=new_implementation,
        caller=caller or client.address,
        client=client,
        autosign=auto,
    )
    click.echo(f"'{record.name}' at {record.proxy_address} upgraded to {record.implementation}")


if __name__ == "__main__":
    cli()
