import typing
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from ape import project
from ape.contracts import ContractContainer
from eth_utils import add_0x_prefix
from ethpm_types import ContractType
from web3 import Web3

from orchestrator.errors import ArtifactNotFoundError, InvalidArgumentsError
from orchestrator.layout import StorageLayout
from orchestrator.utils import _load_json

w3 = Web3()


class ArtifactRef(NamedTuple):
    """Points at a compiled contract: either an ape project contract or a JSON artifact."""

    contract_type: str
    path: Optional[Path] = None
    storage_layout_path: Optional[Path] = None


class ContractArtifact:
    """Bytecode, ABI and storage layout of a compiled contract."""

    def __init__(
        self,
        name: str,
        abi: List[Dict[str, Any]],
        bytecode: Optional[str] = None,
        storage_layout: Optional[StorageLayout] = None,
    ):
        self.name = name
        self.abi = abi
        self.bytecode = bytecode
        self.storage_layout = storage_layout or StorageLayout()
        self._contract_type = None

    @classmethod
    def from_json(cls, filepath: Path, name: Optional[str] = None) -> "ContractArtifact":
        """
        Loads a hardhat, foundry or solc standard-json contract artifact.
        The storage layout is read from a 'storageLayout' entry when present.
        """
        data = _load_json(filepath)
        bytecode = data.get("bytecode")
        if bytecode is None and "evm" in data:
            bytecode = data["evm"]["bytecode"]["object"]
        if isinstance(bytecode, dict):
            bytecode = bytecode["object"]
        if bytecode:
            bytecode = add_0x_prefix(bytecode)

        return cls(
            name=name or data.get("contractName") or filepath.stem,
            abi=data["abi"],
            bytecode=bytecode,
            storage_layout=StorageLayout.from_solc(data.get("storageLayout")),
        )

    @classmethod
    def from_container(
        cls, container: ContractContainer, storage_layout: Optional[StorageLayout] = None
    ) -> "ContractArtifact":
        contract_type = container.contract_type
        abi = [
            entry.model_dump(mode="json", by_alias=True, exclude_none=True)
            for entry in contract_type.abi
        ]
        bytecode = None
        if contract_type.deployment_bytecode:
            bytecode = contract_type.deployment_bytecode.bytecode
        artifact = cls(
            name=contract_type.name,
            abi=abi,
            bytecode=bytecode,
            storage_layout=storage_layout,
        )
        artifact._contract_type = contract_type
        return artifact

    @property
    def contract_type(self) -> ContractType:
        if self._contract_type is None:
            self._contract_type = ContractType.model_validate(
                {
                    "contractName": self.name,
                    "abi": self.abi,
                    "deploymentBytecode": {"bytecode": self.bytecode},
                }
            )
        return self._contract_type

    @property
    def constructor_inputs(self) -> List[Dict[str, Any]]:
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return entry.get("inputs", [])
        return []

    def method_abis(self, method_name: str) -> List[Dict[str, Any]]:
        return [
            entry
            for entry in self.abi
            if entry.get("type") == "function" and entry.get("name") == method_name
        ]

    def __repr__(self) -> str:
        return f"ContractArtifact({self.name})"


#
# Loading
#


def _get_dependency_contract_container(contract: str) -> ContractContainer:
    for dependency_name, dependency_versions in project.dependencies.items():
        if len(dependency_versions) > 1:
            raise ArtifactNotFoundError(f"Ambiguous {dependency_name} dependency for {contract}")
        try:
            dependency_api = list(dependency_versions.values())[0]
            contract_container = getattr(dependency_api, contract)
            return contract_container
        except AttributeError:
            continue
    raise ArtifactNotFoundError(f"No contract found with name '{contract}'.")


def get_contract_container(contract: str) -> ContractContainer:
    try:
        contract_container = getattr(project, contract)
    except AttributeError:
        # not in root project; check dependencies
        contract_container = _get_dependency_contract_container(contract)

    return contract_container


def load_artifact(ref: ArtifactRef) -> ContractArtifact:
    """Resolves an artifact reference to a compiled contract."""
    if ref.path is not None:
        if not Path(ref.path).exists():
            raise ArtifactNotFoundError(f"No artifact found at {ref.path}")
        artifact = ContractArtifact.from_json(Path(ref.path), name=ref.contract_type)
    else:
        container = get_contract_container(ref.contract_type)
        artifact = ContractArtifact.from_container(container)

    if ref.storage_layout_path is not None:
        layout_data = _load_json(Path(ref.storage_layout_path))
        # accept either the bare layout or a wrapping artifact
        layout_data = layout_data.get("storageLayout", layout_data)
        artifact.storage_layout = StorageLayout.from_solc(layout_data)

    return artifact


#
# ABI validation
#


def _canonical_type(abi_input: Dict[str, Any]) -> str:
    abi_type = abi_input["type"]
    if not abi_type.startswith("tuple"):
        return abi_type
    components = ",".join(_canonical_type(c) for c in abi_input.get("components", []))
    return f"({components}){abi_type[len('tuple'):]}"


def _validate_method_args(
    method_abis: List[Dict[str, Any]], args: typing.Sequence[Any]
) -> typing.Dict[str, Any]:
    """Validates the transaction arguments against the function ABI."""
    if len(method_abis) == 0:
        raise InvalidArgumentsError("No method abis provided for validation of args")

    abis_matching_args_length = [abi for abi in method_abis if len(abi["inputs"]) == len(args)]
    for abi in abis_matching_args_length:
        named_args = {}
        for arg, abi_input in zip(args, abi["inputs"]):
            if not w3.is_encodable(_canonical_type(abi_input), arg):
                break
            named_args[abi_input["name"]] = arg
        else:
            return named_args
    raise InvalidArgumentsError(
        f"Could not find ABI for '{method_abis[0]['name']}' with {len(args)} arg(s) "
        "and given type(s)"
    )


def _validate_abi_inputs(
    label: str,
    abi_inputs: List[Dict[str, Any]],
    parameters: OrderedDict,
) -> None:
    """Validates named parameters against ABI inputs by position, name and type."""
    if len(parameters) != len(abi_inputs):
        raise InvalidArgumentsError(
            f"Parameters length mismatch - "
            f"{label} ABI requires {len(abi_inputs)}, Got {len(parameters)}."
        )

    codex = enumerate(zip(abi_inputs, parameters.items()), start=0)
    for position, (abi_input, (name, value)) in codex:
        if abi_input["name"] != name:
            raise InvalidArgumentsError(
                f"{label} parameter '{name}' at position {position} does not "
                f"match the expected ABI name '{abi_input['name']}'."
            )

        abi_type = _canonical_type(abi_input)
        if not w3.is_encodable(abi_type, value):
            raise InvalidArgumentsError(
                f"{label} param name '{name}' at position {position} has a value '{value}' "
                f"whose type does not match expected ABI type '{abi_type}'"
            )


def validate_constructor_arguments(artifact: ContractArtifact, parameters: OrderedDict) -> None:
    _validate_abi_inputs(
        label=f"{artifact.name} constructor",
        abi_inputs=artifact.constructor_inputs,
        parameters=parameters,
    )


def validate_method_arguments(
    artifact: ContractArtifact, method_name: str, parameters: OrderedDict
) -> None:
    method_abis = artifact.method_abis(method_name)
    if not method_abis:
        raise InvalidArgumentsError(f"{artifact.name} has no method named '{method_name}'")
    for abi in method_abis:
        if len(abi["inputs"]) == len(parameters):
            _validate_abi_inputs(
                label=f"{artifact.name}.{method_name}",
                abi_inputs=abi["inputs"],
                parameters=parameters,
            )
            return
    raise InvalidArgumentsError(
        f"{artifact.name}.{method_name} does not accept {len(parameters)} argument(s)"
    )
