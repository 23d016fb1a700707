import json
import time
from collections import OrderedDict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from eth_typing import ChecksumAddress

from orchestrator.constants import ORCHESTRATOR_VERSION
from orchestrator.errors import UnknownProxyError
from orchestrator.layout import StorageLayout
from orchestrator.utils import _load_json, same_address

STANDARD_MANIFEST_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


class ManifestStatus(Enum):
    PARTIAL = "partial"
    COMPLETE = "complete"


class ProxyState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


class DeployedArtifact(NamedTuple):
    """The on-chain result of one successful deployment step."""

    step_id: str
    contract_type: str
    address: ChecksumAddress
    tx_hash: str
    block_number: int
    outputs: Dict[str, Any]

    def get_field(self, name: str) -> Any:
        if name in ("address", "tx_hash", "block_number", "contract_type"):
            return getattr(self, name)
        return self.outputs[name]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contract_type": self.contract_type,
            "address": self.address,
            "tx_hash": self.tx_hash,
            "block_number": int(self.block_number),
            "outputs": dict(self.outputs),
        }

    @classmethod
    def from_dict(cls, step_id: str, data: Dict[str, Any]) -> "DeployedArtifact":
        return cls(
            step_id=step_id,
            contract_type=data["contract_type"],
            address=data["address"],
            tx_hash=data["tx_hash"],
            block_number=int(data["block_number"]),
            outputs=dict(data.get("outputs", {})),
        )


class ProxyRecord(NamedTuple):
    """What is known about an upgradeable proxy; replaced wholesale on each upgrade."""

    name: str
    proxy_address: ChecksumAddress
    implementation: ChecksumAddress
    admin: ChecksumAddress
    proxy_admin: Optional[ChecksumAddress]
    state: ProxyState
    storage_layout: StorageLayout
    storage_layout_fingerprint: str
    tx_hash: str
    block_number: int

    @property
    def is_initialized(self) -> bool:
        return self.state == ProxyState.INITIALIZED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proxy_address": self.proxy_address,
            "implementation": self.implementation,
            "admin": self.admin,
            "proxy_admin": self.proxy_admin,
            "state": self.state.value,
            "storage_layout_fingerprint": self.storage_layout_fingerprint,
            "storage_layout": self.storage_layout.to_list(),
            "tx_hash": self.tx_hash,
            "block_number": int(self.block_number),
        }

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ProxyRecord":
        return cls(
            name=name,
            proxy_address=data["proxy_address"],
            implementation=data["implementation"],
            admin=data["admin"],
            proxy_admin=data.get("proxy_admin"),
            state=ProxyState(data["state"]),
            storage_layout=StorageLayout.from_list(data.get("storage_layout", [])),
            storage_layout_fingerprint=data["storage_layout_fingerprint"],
            tx_hash=data["tx_hash"],
            block_number=int(data["block_number"]),
        )


class StepFailure(NamedTuple):
    """The step that halted a run; 'proxy_address' is set when a proxy was left behind."""

    step_id: str
    error: str
    message: str
    proxy_address: Optional[ChecksumAddress] = None

    def to_dict(self) -> Dict[str, Any]:
        return self._asdict()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepFailure":
        return cls(**data)


class UpgradeLogEntry(NamedTuple):
    proxy: str
    previous_implementation: ChecksumAddress
    new_implementation: ChecksumAddress
    requested_by: ChecksumAddress
    tx_hash: str
    block_number: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return self._asdict()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpgradeLogEntry":
        return cls(**data)


class DeploymentManifest:
    """
    Ordered record of what a deployment run put on chain. Entries are only ever
    appended while a run is in progress; the status stays 'partial' until the run
    completes.
    """

    def __init__(
        self,
        name: str,
        network: str,
        chain_id: int,
        deployer: ChecksumAddress,
        status: ManifestStatus = ManifestStatus.PARTIAL,
        timestamp: Optional[int] = None,
        orchestrator_version: str = ORCHESTRATOR_VERSION,
        artifacts: Optional["OrderedDict[str, DeployedArtifact]"] = None,
        proxies: Optional["OrderedDict[str, ProxyRecord]"] = None,
        failure: Optional[StepFailure] = None,
        upgrades: Optional[List[UpgradeLogEntry]] = None,
    ):
        self.name = name
        self.network = network
        self.chain_id = int(chain_id)
        self.deployer = deployer
        self.status = status
        self.timestamp = int(time.time()) if timestamp is None else int(timestamp)
        self.orchestrator_version = orchestrator_version
        self.artifacts = OrderedDict(artifacts or {})
        self.proxies = OrderedDict(proxies or {})
        self.failure = failure
        self.upgrades = list(upgrades or [])

    @property
    def is_complete(self) -> bool:
        return self.status == ManifestStatus.COMPLETE

    @property
    def step_ids(self) -> List[str]:
        """Every step the run attempted, in order, including a failed one."""
        step_ids = list(self.artifacts)
        if self.failure is not None:
            step_ids.append(self.failure.step_id)
        return step_ids

    def add(self, artifact: DeployedArtifact) -> None:
        if artifact.step_id in self.artifacts:
            raise ValueError(f"Step '{artifact.step_id}' is already recorded in the manifest.")
        self.artifacts[artifact.step_id] = artifact

    def add_proxy(self, record: ProxyRecord) -> None:
        if record.name in self.proxies:
            raise ValueError(f"Proxy '{record.name}' is already recorded in the manifest.")
        self.proxies[record.name] = record

    def replace_proxy(self, record: ProxyRecord, entry: UpgradeLogEntry) -> None:
        """Swaps in an upgraded proxy record and appends the audit entry for it."""
        if record.name not in self.proxies:
            raise UnknownProxyError(f"Proxy '{record.name}' is not recorded in the manifest.")
        self.proxies[record.name] = record
        self.upgrades.append(entry)

    def mark_complete(self) -> None:
        self.status = ManifestStatus.COMPLETE

    def mark_partial(self, failure: StepFailure) -> None:
        self.status = ManifestStatus.PARTIAL
        self.failure = failure

    def get_proxy(self, name: str) -> ProxyRecord:
        try:
            return self.proxies[name]
        except KeyError:
            raise UnknownProxyError(
                f"No proxy named '{name}' in manifest '{self.name}' "
                f"(known proxies: {', '.join(self.proxies) or 'none'})"
            )

    def find_proxy(self, proxy_address: str) -> ProxyRecord:
        for record in self.proxies.values():
            if same_address(record.proxy_address, proxy_address):
                return record
        raise UnknownProxyError(f"No proxy at {proxy_address} in manifest '{self.name}'")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "network": self.network,
            "chain_id": self.chain_id,
            "deployer": self.deployer,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "orchestrator_version": self.orchestrator_version,
            "artifacts": {
                step_id: artifact.to_dict() for step_id, artifact in self.artifacts.items()
            },
            "proxies": {name: record.to_dict() for name, record in self.proxies.items()},
            "failure": self.failure.to_dict() if self.failure else None,
            "upgrades": [entry.to_dict() for entry in self.upgrades],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentManifest":
        artifacts = OrderedDict(
            (step_id, DeployedArtifact.from_dict(step_id, entry))
            for step_id, entry in data.get("artifacts", {}).items()
        )
        proxies = OrderedDict(
            (name, ProxyRecord.from_dict(name, entry))
            for name, entry in data.get("proxies", {}).items()
        )
        failure = data.get("failure")
        return cls(
            name=data["name"],
            network=data["network"],
            chain_id=data["chain_id"],
            deployer=data["deployer"],
            status=ManifestStatus(data["status"]),
            timestamp=data["timestamp"],
            orchestrator_version=data["orchestrator_version"],
            artifacts=artifacts,
            proxies=proxies,
            failure=StepFailure.from_dict(failure) if failure else None,
            upgrades=[UpgradeLogEntry.from_dict(entry) for entry in data.get("upgrades", [])],
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, DeploymentManifest):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"DeploymentManifest({self.name}, chain_id={self.chain_id}, "
            f"status={self.status.value}, steps={len(self.artifacts)})"
        )


def read_manifest(filepath: Path) -> DeploymentManifest:
    return DeploymentManifest.from_dict(_load_json(filepath))


def write_manifest(manifest: DeploymentManifest, filepath: Path) -> Path:
    """Writes a manifest, replacing any previous version of the same file in one step."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    temp_filepath = filepath.with_suffix(".temp.json")
    with open(temp_filepath, "w") as file:
        json.dump(manifest.to_dict(), file, **STANDARD_MANIFEST_JSON_FORMAT)
    temp_filepath.replace(filepath)
    print(f"(i) Manifest ({manifest.status.value}) written to {filepath}")
    return filepath

