import json
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, NamedTuple

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address
from eth_typing import ABI

from orchestrator.artifacts import ContractArtifact
from orchestrator.manifest import DeploymentManifest
from orchestrator.utils import _load_json

ChainId = int
ContractName = str


STANDARD_REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


class RegistryEntry(NamedTuple):
    """Represents a single entry in a contract registry."""

    chain_id: ChainId
    name: ContractName
    address: ChecksumAddress
    abi: ABI
    tx_hash: str
    block_number: int
    deployer: str


def _get_entries(
    manifest: DeploymentManifest, artifacts: Dict[str, ContractArtifact]
) -> List[RegistryEntry]:
    """
    Returns one entry per deployed step. Proxied steps are registered at the proxy
    address with the ABI of their implementation.
    """
    entries = list()
    for step_id, deployed in manifest.artifacts.items():
        entry = RegistryEntry(
            chain_id=manifest.chain_id,
            name=step_id,
            address=to_checksum_address(deployed.address),
            abi=list(artifacts[step_id].abi),
            tx_hash=deployed.tx_hash,
            block_number=deployed.block_number,
            deployer=manifest.deployer,
        )
        entries.append(entry)
    return entries


def read_registry(filepath: Path) -> List[RegistryEntry]:
    data = _load_json(filepath)
    registry_entries = list()
    for chain_id, entries in data.items():
        for contract_name, artifacts in entries.items():
            registry_entry = RegistryEntry(
                chain_id=int(chain_id),
                name=contract_name,
                address=artifacts["address"],
                abi=artifacts["abi"],
                tx_hash=artifacts["tx_hash"],
                block_number=artifacts["block_number"],
                deployer=artifacts["deployer"],
            )
            registry_entries.append(registry_entry)
    return registry_entries


def write_registry(entries: List[RegistryEntry], filepath: Path, silent: bool = False) -> Path:
    """Writes a contract registry to a file."""

    if not entries:
        print("No entries provided.")
        return filepath

    # common order regardless of deployment order
    entries.sort(key=lambda entry: (str(entry.chain_id), entry.name))

    data = defaultdict(dict)
    for entry in entries:
        entry_abi = list(entry.abi)
        entry_abi.sort(key=lambda d: (d["type"], d.get("name", "")))

        data[str(entry.chain_id)][entry.name] = {
            "address": entry.address,
            "abi": entry_abi,
            "tx_hash": entry.tx_hash,
            "block_number": int(entry.block_number),
            "deployer": entry.deployer,
        }

    filepath.parent.mkdir(parents=True, exist_ok=True)

    # If the file already exists, attempt to merge the data, if not create a new file
    if filepath.exists():
        if not silent:
            print(f"Updating existing registry at {filepath}.")
        existing_data = _load_json(filepath)

        if any(chain_id in existing_data for chain_id in data):
            filepath = filepath.with_suffix(".unmerged.json")
            if not silent:
                print(
                    "Cannot merge registries with overlapping chain IDs.\n"
                    f"Writing to {filepath} to avoid overwriting existing data."
                )
        else:
            existing_data.update(data)
            data = existing_data
    elif not silent:
        print(f"Creating new registry at {filepath}.")

    with open(filepath, "w") as file:
        json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)

    return filepath


def registry_from_manifest(
    manifest: DeploymentManifest,
    artifacts: Dict[str, ContractArtifact],
    output_filepath: Path,
) -> Path:
    """Exports the deployed contracts of a manifest as a contract registry."""
    entries = _get_entries(manifest=manifest, artifacts=artifacts)
    output_filepath = write_registry(entries=entries, filepath=Path(output_filepath))
    print(f"(i) Registry written to {output_filepath}!")
    return output_filepath
