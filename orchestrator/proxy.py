from typing import Any, Optional, Sequence

from eth_typing import ChecksumAddress

from orchestrator.artifacts import ContractArtifact
from orchestrator.chain import ChainClient
from orchestrator.constants import DEFAULT_INITIALIZER, EIP1967_ADMIN_SLOT
from orchestrator.errors import InitializationFailedAfterDeploy, UnresolvedArgumentError
from orchestrator.manifest import ProxyRecord, ProxyState
from orchestrator.plan import is_resolved
from orchestrator.utils import address_from_storage


class ProxyProvisioner:
    """
    Deploys a transparent upgradeable proxy and initializes it through the proxy,
    treating both transactions as one provisioning operation.
    """

    def __init__(self, client: ChainClient, proxy_artifact: ContractArtifact):
        self.client = client
        self.proxy_artifact = proxy_artifact

    def provision_proxy(
        self,
        implementation_address: ChecksumAddress,
        initializer_args: Sequence[Any],
        implementation_artifact: ContractArtifact,
        initializer: str = DEFAULT_INITIALIZER,
        owner: Optional[ChecksumAddress] = None,
        name: Optional[str] = None,
    ) -> ProxyRecord:
        """
        Returns the record of an initialized proxy. A failed proxy deployment propagates
        the chain error unchanged; any failure once the proxy exists raises
        InitializationFailedAfterDeploy carrying the proxy address.
        """
        initializer_args = list(initializer_args)
        for position, arg in enumerate(initializer_args):
            if not is_resolved(arg):
                raise UnresolvedArgumentError(
                    f"Initializer argument at position {position} is unresolved: {arg!r}"
                )

        owner = owner or self.client.address
        name = name or implementation_artifact.name
        print(
            f"\nDeploying {self.proxy_artifact.name} "
            f"contract to proxy {name} at {implementation_address}."
        )
        receipt = self.client.deploy(
            self.proxy_artifact, [implementation_address, owner, b""]
        )

        layout = implementation_artifact.storage_layout
        record = ProxyRecord(
            name=name,
            proxy_address=receipt.address,
            implementation=implementation_address,
            admin=owner,
            proxy_admin=None,
            state=ProxyState.UNINITIALIZED,
            storage_layout=layout,
            storage_layout_fingerprint=layout.fingerprint,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )

        try:
            admin_slot = self.client.get_storage_at(receipt.address, EIP1967_ADMIN_SLOT)
            record = record._replace(proxy_admin=address_from_storage(admin_slot))
            print(f"\nInitializing {name} at {receipt.address} with {initializer}.")
            self.client.call(
                receipt.address,
                implementation_artifact.abi,
                initializer,
                initializer_args,
            )
        except Exception as error:
            raise InitializationFailedAfterDeploy(
                proxy_address=receipt.address, error=error, record=record
            ) from error

        print(f"(i) {name} proxy deployed to {receipt.address}")
        return record._replace(state=ProxyState.INITIALIZED)
