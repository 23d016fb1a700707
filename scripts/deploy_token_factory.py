#!/usr/bin/python3

from pathlib import Path

import click
from ape.cli import ConnectedProviderCommand, account_option, network_option

from orchestrator.chain import ApeChainClient
from orchestrator.options import autosign_option, plan_option, timeout_option
from orchestrator.pipeline import run_deployment_plan
from orchestrator.plan import DeploymentPlan


@click.command(cls=ConnectedProviderCommand, name="deploy-token-factory")
@account_option()
@network_option(required=True)
@plan_option
@timeout_option
@autosign_option
def cli(account, network, plan, timeout, auto):
    """
    Deploys the Token implementation, the bonding curve, the position manager and the
    TokenFactoryUpgradeable proxy described by a plan file, then writes the manifest.

    ape run deploy_token_factory --network ethereum:sepolia:infura
    """
    click.echo(f"Connected to {network.name} network.")
    deployment_plan = DeploymentPlan.from_yaml(Path(plan))
    client = ApeChainClient(account=account, autosign=auto, confirmation_timeout=timeout)
    manifest = run_deployment_plan(plan=deployment_plan, client=client, autosign=auto)

    for step_id, deployed in manifest.artifacts.items():
        click.echo(f"'{step_id}' deployed to: {deployed.address}")


if __name__ == "__main__":
    cli()
