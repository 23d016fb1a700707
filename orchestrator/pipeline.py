from collections import OrderedDict
from pathlib import Path
from typing import Callable, Dict, List, Optional

from orchestrator.artifacts import (
    ArtifactRef,
    ContractArtifact,
    load_artifact,
    validate_constructor_arguments,
    validate_method_arguments,
)
from orchestrator.chain import ChainClient
from orchestrator.confirm import _confirm_resolution, _continue
from orchestrator.errors import (
    ChainMismatchError,
    ConfigurationError,
    InitializationFailedAfterDeploy,
    InsufficientFundsError,
    InvalidArgumentsError,
    StepFailedError,
)
from orchestrator.graph import deployment_order
from orchestrator.manifest import (
    DeployedArtifact,
    DeploymentManifest,
    StepFailure,
    write_manifest,
)
from orchestrator.plan import (
    DeploymentPlan,
    DeploymentStep,
    ResolutionContext,
    _resolve_param,
    placeholder_params,
    resolve_params,
)
from orchestrator.proxy import ProxyProvisioner
from orchestrator.registry import registry_from_manifest

ArtifactLoader = Callable[[ArtifactRef], ContractArtifact]


class DeploymentPipeline:
    """
    Executes a deployment plan one step at a time with the deployer account of a
    chain client, recording every result in a manifest. The first failure halts the
    run; the manifest is then persisted as partial. Nothing is retried or rolled back.
    """

    def __init__(
        self,
        client: ChainClient,
        plan: DeploymentPlan,
        manifest_filepath: Optional[Path] = None,
        artifact_loader: ArtifactLoader = load_artifact,
        autosign: bool = False,
    ):
        self.client = client
        self.plan = plan
        self.manifest_filepath = manifest_filepath or plan.manifest_filepath
        if self.manifest_filepath is None:
            raise ConfigurationError(f"No manifest filepath set for plan '{plan.name}'.")
        self.manifest_filepath = Path(self.manifest_filepath)
        self.artifact_loader = artifact_loader
        self.autosign = autosign
        self._artifacts: Dict[str, ContractArtifact] = dict()
        self._proxy_artifacts: Dict[str, ContractArtifact] = dict()

    def prepare(self) -> List[DeploymentStep]:
        """
        Orders the plan, loads its artifacts and checks every argument against the
        artifact ABIs. Runs without touching the chain.
        """
        order = deployment_order(self.plan.steps)
        steps = [self.plan.get(step_id) for step_id in order]

        for step in steps:
            artifact = self.artifact_loader(step.artifact)
            self._artifacts[step.id] = artifact
            if step.is_proxy:
                self._proxy_artifacts[step.id] = self.artifact_loader(step.proxy_artifact)
            self._validate_step(step)

        if self.manifest_filepath.exists():
            raise FileExistsError(f"Manifest file already exists at {self.manifest_filepath}")
        return steps

    def _validate_step(self, step: DeploymentStep) -> None:
        artifact = self._artifacts[step.id]
        if not step.is_proxy:
            validate_constructor_arguments(artifact, placeholder_params(step.arguments))
            return

        validate_constructor_arguments(
            artifact, placeholder_params(step.implementation_arguments)
        )
        validate_method_arguments(
            artifact, step.initializer, placeholder_params(step.arguments)
        )
        proxy_artifact = self._proxy_artifacts[step.id]
        if len(proxy_artifact.constructor_inputs) != 3:
            raise InvalidArgumentsError(
                f"{proxy_artifact.name} must take (logic, initialOwner, data) constructor "
                f"parameters to proxy {step.id}"
            )

    def _preflight(self) -> None:
        if self.plan.chain_id is not None and self.plan.chain_id != self.client.chain_id:
            raise ChainMismatchError(
                f"chain_id in plan ({self.plan.chain_id}) does not match "
                f"chain_id of current network ({self.client.chain_id})."
            )
        if self.client.get_balance(self.client.address) == 0:
            raise InsufficientFundsError(f"Deployer {self.client.address} has no funds.")

    def run(self) -> DeploymentManifest:
        steps = self.prepare()
        self._preflight()
        self._print_deployment_info(steps)
        if not self.autosign:
            # Confirms the start of the deployment.
            _continue()

        manifest = DeploymentManifest(
            name=self.plan.name,
            network=self.client.network_name,
            chain_id=self.client.chain_id,
            deployer=self.client.address,
        )
        for step in steps:
            try:
                self._execute(step, manifest)
            except Exception as error:
                self._halt(step, error, manifest)
                raise StepFailedError(step.id, error, self.manifest_filepath) from error

        manifest.mark_complete()
        write_manifest(manifest, self.manifest_filepath)
        if self.plan.registry_filepath:
            registry_from_manifest(
                manifest=manifest,
                artifacts=self._artifacts,
                output_filepath=self.plan.registry_filepath,
            )
        return manifest

    def _halt(self, step: DeploymentStep, error: Exception, manifest: DeploymentManifest) -> None:
        proxy_address = None
        if isinstance(error, InitializationFailedAfterDeploy):
            proxy_address = error.proxy_address
            if error.record is not None:
                manifest.add_proxy(error.record)
            print(
                f"\n! {step.id} proxy at {proxy_address} is deployed but NOT initialized. "
                "Abandon it or complete initialization manually."
            )
        failure = StepFailure(
            step_id=step.id,
            error=type(error).__name__,
            message=str(error),
            proxy_address=proxy_address,
        )
        manifest.mark_partial(failure)
        print(f"\n! Deployment halted at step '{step.id}': {error}")
        write_manifest(manifest, self.manifest_filepath)

    def _execute(self, step: DeploymentStep, manifest: DeploymentManifest) -> DeployedArtifact:
        context = ResolutionContext(
            step_id=step.id, deployer=self.client.address, artifacts=manifest.artifacts
        )
        artifact = self._artifacts[step.id]
        resolved_params = resolve_params(step.arguments, context)

        if not step.is_proxy:
            if not self.autosign:
                _confirm_resolution(resolved_params, step.id)
            print(f"\nDeploying {step.id} ({artifact.name}).")
            receipt = self.client.deploy(artifact, list(resolved_params.values()))
            deployed = DeployedArtifact(
                step_id=step.id,
                contract_type=artifact.name,
                address=receipt.address,
                tx_hash=receipt.tx_hash,
                block_number=receipt.block_number,
                outputs=dict(),
            )
            print(f"(i) {step.id} deployed to {receipt.address}")
            manifest.add(deployed)
            return deployed

        implementation_params = resolve_params(step.implementation_arguments, context)
        owner = _resolve_param(step.owner, context)
        if not self.autosign:
            _confirm_resolution(implementation_params, step.id)
            _confirm_resolution(
                OrderedDict(initialOwner=owner, **resolved_params), step.id, label="Initializer"
            )

        print(f"\nDeploying {artifact.name} implementation for {step.id}.")
        implementation = self.client.deploy(artifact, list(implementation_params.values()))
        print(f"(i) {artifact.name} implementation deployed to {implementation.address}")

        provisioner = ProxyProvisioner(self.client, self._proxy_artifacts[step.id])
        record = provisioner.provision_proxy(
            implementation_address=implementation.address,
            initializer_args=list(resolved_params.values()),
            implementation_artifact=artifact,
            initializer=step.initializer,
            owner=owner,
            name=step.id,
        )
        deployed = DeployedArtifact(
            step_id=step.id,
            contract_type=artifact.name,
            address=record.proxy_address,
            tx_hash=record.tx_hash,
            block_number=record.block_number,
            outputs={
                "implementation": implementation.address,
                "implementation_tx_hash": implementation.tx_hash,
                "proxy_admin": record.proxy_admin,
            },
        )
        manifest.add_proxy(record)
        manifest.add(deployed)
        return deployed

    def _print_deployment_info(self, steps: List[DeploymentStep]):
        print(
            f"Plan: {self.plan.name}",
            f"Account: {self.client.address}",
            f"Manifest: {self.manifest_filepath}",
            f"Network: {self.client.network_name}",
            f"Chain ID: {self.client.chain_id}",
            f"Order: {' -> '.join(step.id for step in steps)}",
            sep="\n",
        )


def run_deployment_plan(
    plan: DeploymentPlan,
    client: ChainClient,
    manifest_filepath: Optional[Path] = None,
    artifact_loader: ArtifactLoader = load_artifact,
    autosign: bool = False,
) -> DeploymentManifest:
    """Deploys every step of a plan and returns the completed manifest."""
    pipeline = DeploymentPipeline(
        client=client,
        plan=plan,
        manifest_filepath=manifest_filepath,
        artifact_loader=artifact_loader,
        autosign=autosign,
    )
    return pipeline.run()
