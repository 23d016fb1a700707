import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Sequence

from eth_typing import ChecksumAddress

from orchestrator.artifacts import ContractArtifact, validate_constructor_arguments
from orchestrator.chain import ChainClient
from orchestrator.confirm import _confirm_upgrade
from orchestrator.constants import EIP1967_IMPLEMENTATION_SLOT, PROXY_ADMIN_ABI
from orchestrator.errors import (
    InvalidArgumentsError,
    ProxyNotInitializedError,
    StorageLayoutConflictError,
    UnauthorizedUpgradeError,
    UpgradeVerificationFailedError,
)
from orchestrator.layout import check_compatibility
from orchestrator.manifest import (
    DeploymentManifest,
    ProxyRecord,
    UpgradeLogEntry,
    read_manifest,
    write_manifest,
)
from orchestrator.utils import address_from_storage, same_address


class UpgradeController:
    """
    Swaps the implementation behind a recorded proxy. Every precondition is checked
    before anything is submitted; the manifest is only updated once the proxy
    reports the new implementation.
    """

    def __init__(self, client: ChainClient, manifest: DeploymentManifest, autosign: bool = False):
        self.client = client
        self.manifest = manifest
        self.autosign = autosign

    def check_preconditions(
        self, record: ProxyRecord, new_implementation: ContractArtifact, caller: ChecksumAddress
    ) -> None:
        if not same_address(caller, record.admin):
            raise UnauthorizedUpgradeError(
                f"{caller} is not the recorded admin ({record.admin}) of proxy {record.name}"
            )
        if not same_address(caller, self.client.address):
            raise UnauthorizedUpgradeError(
                f"Upgrade requested by {caller} but transactions would be sent "
                f"from {self.client.address}"
            )

        if record.storage_layout.fingerprint != record.storage_layout_fingerprint:
            raise StorageLayoutConflictError(
                slot=None,
                reason=f"recorded layout of {record.name} does not match its fingerprint",
            )
        check_compatibility(record.storage_layout, new_implementation.storage_layout)

        if not record.is_initialized:
            raise ProxyNotInitializedError(
                f"Proxy {record.name} at {record.proxy_address} is {record.state.value}"
            )

    def upgrade(
        self,
        proxy_address: ChecksumAddress,
        new_implementation: ContractArtifact,
        caller: ChecksumAddress,
        constructor_args: Sequence[Any] = (),
    ) -> ProxyRecord:
        record = self.manifest.find_proxy(proxy_address)
        self.check_preconditions(record, new_implementation, caller)
        constructor_args = list(constructor_args)
        constructor_inputs = new_implementation.constructor_inputs
        if len(constructor_inputs) != len(constructor_args):
            raise InvalidArgumentsError(
                f"{new_implementation.name} constructor requires {len(constructor_inputs)} "
                f"argument(s), got {len(constructor_args)}"
            )
        validate_constructor_arguments(
            new_implementation,
            OrderedDict(
                (abi_input["name"], value)
                for abi_input, value in zip(constructor_inputs, constructor_args)
            ),
        )

        if not self.autosign:
            _confirm_upgrade(record.name, record.implementation, new_implementation.name)

        print(f"\nDeploying {new_implementation.name} implementation for {record.name}.")
        deployed = self.client.deploy(new_implementation, constructor_args)
        print(f"(i) {new_implementation.name} implementation deployed to {deployed.address}")

        receipt = self.client.call(
            record.proxy_admin,
            PROXY_ADMIN_ABI,
            "upgradeAndCall",
            [record.proxy_address, deployed.address, b""],
        )

        observed = address_from_storage(
            self.client.get_storage_at(record.proxy_address, EIP1967_IMPLEMENTATION_SLOT)
        )
        if not same_address(observed, deployed.address):
            raise UpgradeVerificationFailedError(
                proxy_address=record.proxy_address,
                expected=deployed.address,
                observed=observed,
            )

        layout = new_implementation.storage_layout
        upgraded = record._replace(
            implementation=deployed.address,
            storage_layout=layout,
            storage_layout_fingerprint=layout.fingerprint,
        )
        entry = UpgradeLogEntry(
            proxy=record.name,
            previous_implementation=record.implementation,
            new_implementation=deployed.address,
            requested_by=caller,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            timestamp=int(time.time()),
        )
        self.manifest.replace_proxy(upgraded, entry)
        print(f"(i) {record.name} at {record.proxy_address} now uses {deployed.address}")
        return upgraded


def upgrade_proxy(
    manifest_filepath: Path,
    proxy_name: str,
    new_implementation: ContractArtifact,
    caller: ChecksumAddress,
    client: ChainClient,
    constructor_args: Sequence[Any] = (),
    autosign: bool = False,
) -> ProxyRecord:
    """Upgrades a proxy recorded in a manifest file and rewrites the manifest."""
    manifest_filepath = Path(manifest_filepath)
    manifest = read_manifest(manifest_filepath)
    record = manifest.get_proxy(proxy_name)
    controller = UpgradeController(client=client, manifest=manifest, autosign=autosign)
    upgraded = controller.upgrade(
        proxy_address=record.proxy_address,
        new_implementation=new_implementation,
        caller=caller,
        constructor_args=constructor_args,
    )
    write_manifest(manifest, manifest_filepath)
    return upgraded
