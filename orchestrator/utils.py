import json
from pathlib import Path
from typing import Dict, Optional

import yaml
from eth_utils import to_checksum_address

from orchestrator.errors import ConfigurationError


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> dict:
    """Loads a JSON file."""
    with open(filepath, "r") as file:
        return json.load(file)


def get_manifest_filepath(config: Dict, default_dir: Path) -> Path:
    """Returns the filepath of the deployment manifest."""
    artifact_config = config.get("artifacts", {})
    artifact_dir = Path(artifact_config.get("dir", default_dir))
    filename = artifact_config.get("filename")
    if not filename:
        raise ConfigurationError("artifact filename is not set in plan file.")
    return artifact_dir / filename


def get_registry_filepath(config: Dict, default_dir: Path) -> Optional[Path]:
    """Returns the filepath of the optional contract registry export."""
    artifact_config = config.get("artifacts", {})
    filename = artifact_config.get("registry")
    if not filename:
        return None
    return Path(artifact_config.get("dir", default_dir)) / filename


def validate_config(config: Dict) -> int:
    """Checks the structure of a plan file and returns its target chain id."""
    print("Validating plan YAML...")

    if not isinstance(config, dict):
        raise ConfigurationError("Malformed plan YAML.")

    deployment = config.get("deployment")
    if not deployment:
        raise ConfigurationError("deployment is not set in plan file.")

    config_chain_id = deployment.get("chain_id")
    if not config_chain_id:
        raise ConfigurationError("chain_id is not set in plan file.")

    contracts = config.get("contracts")
    if not contracts:
        raise ConfigurationError("Plan file missing 'contracts' field.")

    return int(config_chain_id)


def same_address(address_1: Optional[str], address_2: Optional[str]) -> bool:
    """Case-insensitive address comparison; None never matches."""
    if not address_1 or not address_2:
        return False
    return to_checksum_address(address_1) == to_checksum_address(address_2)


def address_from_storage(value: bytes) -> str:
    """Extracts the address held in the low 20 bytes of a storage word."""
    return to_checksum_address(bytes(value)[-20:].rjust(20, b"\x00"))
