import typing
from abc import ABC, abstractmethod
from collections import OrderedDict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Set

from ape.utils import EMPTY_BYTES32, ZERO_ADDRESS
from eth_typing import ChecksumAddress
from eth_utils import to_hex

from orchestrator.artifacts import ArtifactRef
from orchestrator.constants import (
    ARTIFACTS_DIR,
    DEFAULT_INITIALIZER,
    PROXY_CONTRACT_TYPE,
    SPECIAL_VALUE_VARIABLES,
)
from orchestrator.errors import (
    ConfigurationError,
    UndeclaredDependencyError,
    UnknownReferenceError,
    UnresolvedReferenceError,
)
from orchestrator.utils import (
    _load_yaml,
    get_manifest_filepath,
    get_registry_filepath,
    validate_config,
)

CONTRACT_CONSTRUCTOR_PARAMETER_KEY = "constructor"
CONTRACT_PROXY_PARAMETER_KEY = "proxy"


class StepKind(Enum):
    DEPLOY = "deploy"
    PROXY_DEPLOY = "proxy"


class ResolutionContext(NamedTuple):
    """What a binding may resolve against while a plan is running."""

    step_id: str
    deployer: ChecksumAddress
    artifacts: typing.Mapping[str, Any]  # step id -> DeployedArtifact


class VariableContext:
    def __init__(
        self,
        step_ids: List[str],
        step_id: str,
        constants: typing.Dict[str, Any] = None,
    ):
        self.step_ids = step_ids or list()
        self.step_id = step_id
        self.constants = constants or dict()


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self, context: ResolutionContext) -> Any:
        raise NotImplementedError

    @abstractmethod
    def placeholder(self) -> Any:
        """A value of the right ABI type used for validation before deployment."""
        raise NotImplementedError

    def references(self) -> Set[str]:
        return set()

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        result = isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)
        return result


class DeployerAddress(Variable):
    DEPLOYER_INDICATOR = "deployer"

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        """Returns True if the variable is a special deployer variable."""
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self, context: ResolutionContext) -> Any:
        return context.deployer

    def placeholder(self) -> Any:
        return ZERO_ADDRESS

    def __eq__(self, other):
        return isinstance(other, DeployerAddress)

    def __hash__(self):
        return hash(self.DEPLOYER_INDICATOR)

    def __repr__(self):
        return f"{self.VARIABLE_PREFIX}{self.DEPLOYER_INDICATOR}"


class Reference(Variable):
    """The output of another step; its address unless another field is named."""

    FIELD_DELIMITER = "."

    def __init__(self, step_id: str, field: str = "address"):
        self.step_id = step_id
        self.field = field

    @classmethod
    def parse(cls, variable: str) -> "Reference":
        step_id, _, field = variable.partition(cls.FIELD_DELIMITER)
        return cls(step_id, field or "address")

    def references(self) -> Set[str]:
        return {self.step_id}

    def resolve(self, context: ResolutionContext) -> Any:
        artifact = context.artifacts.get(self.step_id)
        if artifact is None:
            raise UnresolvedReferenceError(context.step_id, self.step_id, self.field)
        try:
            return artifact.get_field(self.field)
        except KeyError:
            raise UnresolvedReferenceError(context.step_id, self.step_id, self.field)

    def placeholder(self) -> Any:
        if self.field == "block_number":
            return 0
        if self.field == "tx_hash":
            return to_hex(EMPTY_BYTES32)
        return ZERO_ADDRESS  # eager validation

    def __eq__(self, other):
        if not isinstance(other, Reference):
            return NotImplemented
        return (self.step_id, self.field) == (other.step_id, other.field)

    def __hash__(self):
        return hash((self.step_id, self.field))

    def __repr__(self):
        if self.field == "address":
            return f"{self.VARIABLE_PREFIX}{self.step_id}"
        return f"{self.VARIABLE_PREFIX}{self.step_id}{self.FIELD_DELIMITER}{self.field}"


def _references(value: Any) -> Set[str]:
    if isinstance(value, list):
        return set().union(*(_references(v) for v in value))
    if isinstance(value, Variable):
        return value.references()
    return set()


def _resolve_param(value: Any, context: ResolutionContext) -> Any:
    """Resolves a single parameter value or a list of parameter values."""
    if isinstance(value, list):
        return [_resolve_param(v, context) for v in value]

    if isinstance(value, Variable):
        return value.resolve(context)

    return value  # literally a value


def resolve_params(parameters: OrderedDict, context: ResolutionContext) -> OrderedDict:
    resolved_parameters = OrderedDict()
    for name, value in parameters.items():
        resolved_parameters[name] = _resolve_param(value, context)

    return resolved_parameters


def _placeholder_param(value: Any) -> Any:
    if isinstance(value, list):
        return [_placeholder_param(v) for v in value]
    if isinstance(value, Variable):
        return value.placeholder()
    return value


def placeholder_params(parameters: OrderedDict) -> OrderedDict:
    """Replaces bindings with placeholders so parameters can be checked against an ABI."""
    return OrderedDict((name, _placeholder_param(value)) for name, value in parameters.items())


def is_resolved(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return all(is_resolved(v) for v in value)
    return not isinstance(value, Variable)


def _variable_from_value(variable: str, context: VariableContext) -> Any:
    variable = variable[len(Variable.VARIABLE_PREFIX):]
    if DeployerAddress.is_deployer(variable):
        return DeployerAddress()
    if variable in SPECIAL_VALUE_VARIABLES:
        return SPECIAL_VALUE_VARIABLES[variable]

    reference = Reference.parse(variable)
    if reference.step_id in context.step_ids:
        return reference
    if variable.isupper():
        try:
            return context.constants[variable]
        except KeyError:
            raise ConfigurationError(f"Constant '{variable}' not found in plan file.")
    raise UnknownReferenceError(context.step_id, reference.step_id)


def _process_raw_value(value: Any, variable_context: VariableContext) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, variable_context) for v in value]

    if Variable.is_variable(value):
        value = _variable_from_value(value, variable_context)

    return value


def _process_raw_values(values: Optional[Dict], variable_context: VariableContext) -> OrderedDict:
    processed_parameters = OrderedDict()
    for name, value in (values or {}).items():
        processed_parameters[name] = _process_raw_value(value, variable_context)

    return processed_parameters


class DeploymentStep:
    """
    One unit of a deployment plan. A PROXY_DEPLOY step deploys its artifact as an
    implementation (with 'implementation_arguments'), then a proxy in front of it which
    is initialized with 'arguments'. Any step referenced by a binding must be listed in
    'depends_on'.
    """

    def __init__(
        self,
        id: str,
        kind: StepKind = StepKind.DEPLOY,
        artifact: Optional[ArtifactRef] = None,
        arguments: Optional[typing.Mapping[str, Any]] = None,
        depends_on: Iterable[str] = (),
        implementation_arguments: Optional[typing.Mapping[str, Any]] = None,
        initializer: str = DEFAULT_INITIALIZER,
        owner: Any = None,
        proxy_artifact: Optional[ArtifactRef] = None,
    ):
        self.id = id
        self.kind = kind
        self.artifact = artifact or ArtifactRef(contract_type=id)
        self.arguments = OrderedDict(arguments or {})
        self.depends_on = frozenset(depends_on)
        self.implementation_arguments = OrderedDict(implementation_arguments or {})
        self.initializer = initializer
        self.owner = owner if owner is not None else DeployerAddress()
        self.proxy_artifact = proxy_artifact or ArtifactRef(contract_type=PROXY_CONTRACT_TYPE)

    @property
    def is_proxy(self) -> bool:
        return self.kind == StepKind.PROXY_DEPLOY

    def references(self) -> Set[str]:
        """Ids of every step whose output this step consumes."""
        referenced = set()
        for value in self.arguments.values():
            referenced |= _references(value)
        for value in self.implementation_arguments.values():
            referenced |= _references(value)
        referenced |= _references(self.owner)
        return referenced

    def __repr__(self) -> str:
        return f"DeploymentStep({self.id}, {self.kind.value}, {self.artifact.contract_type})"


class DeploymentPlan:
    """An ordered, declarative set of deployment steps."""

    def __init__(
        self,
        steps: Iterable[DeploymentStep],
        name: str = "deployment",
        chain_id: Optional[int] = None,
        manifest_filepath: Optional[Path] = None,
        registry_filepath: Optional[Path] = None,
        constants: Optional[Dict[str, Any]] = None,
    ):
        self.steps = list(steps)
        self.name = name
        self.chain_id = chain_id
        self.manifest_filepath = manifest_filepath
        self.registry_filepath = registry_filepath
        self.constants = constants or dict()
        self._validate()

    def _validate(self) -> None:
        seen = set()
        for step in self.steps:
            if step.id in seen:
                raise ConfigurationError(f"Duplicate step id '{step.id}' in plan.")
            seen.add(step.id)

        for step in self.steps:
            references = step.references()
            for reference in sorted(references | set(step.depends_on)):
                if reference not in seen:
                    raise UnknownReferenceError(step.id, reference)
            for reference in sorted(references):
                if reference not in step.depends_on:
                    raise UndeclaredDependencyError(step.id, reference)

    def get(self, step_id: str) -> DeploymentStep:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

    @property
    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def __iter__(self):
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @classmethod
    def from_yaml(cls, filepath: Path) -> "DeploymentPlan":
        config = _load_yaml(filepath)
        return cls.from_config(config, base_dir=Path(filepath).parent)

    @classmethod
    def from_config(cls, config: typing.Dict, base_dir: Optional[Path] = None) -> "DeploymentPlan":
        """Builds a plan from a parsed plan file."""
        chain_id = validate_config(config)
        print("Processing deployment steps...")
        base_dir = base_dir or Path.cwd()
        step_ids = _get_step_ids(config)
        constants = config.get("constants")

        steps = list()
        for contract_info in config["contracts"]:
            if isinstance(contract_info, str):
                steps.append(DeploymentStep(id=contract_info))
                continue

            step_id = list(contract_info.keys())[0]  # only one entry
            step_data = contract_info[step_id] or dict()
            context = VariableContext(step_ids=step_ids, step_id=step_id, constants=constants)
            steps.append(cls._process_step(step_id, step_data, context, base_dir))

        deployment = config["deployment"]
        return cls(
            steps=steps,
            name=deployment.get("name", "deployment"),
            chain_id=chain_id,
            manifest_filepath=get_manifest_filepath(config, default_dir=ARTIFACTS_DIR),
            registry_filepath=get_registry_filepath(config, default_dir=ARTIFACTS_DIR),
            constants=constants,
        )

    @classmethod
    def _process_step(
        cls, step_id: str, step_data: Dict, context: VariableContext, base_dir: Path
    ) -> DeploymentStep:
        artifact = _artifact_ref(step_data.get("contract_type", step_id), step_data, base_dir)
        constructor_values = _process_raw_values(
            step_data.get(CONTRACT_CONSTRUCTOR_PARAMETER_KEY), context
        )
        explicit_dependencies = step_data.get("depends_on", [])
        for dependency in explicit_dependencies:
            if dependency not in context.step_ids:
                raise UnknownReferenceError(step_id, dependency)

        if CONTRACT_PROXY_PARAMETER_KEY not in step_data:
            step = DeploymentStep(
                id=step_id,
                artifact=artifact,
                arguments=constructor_values,
            )
        else:
            proxy_data = step_data[CONTRACT_PROXY_PARAMETER_KEY] or dict()
            if "_logic" in (proxy_data.get("arguments") or {}):
                raise ConfigurationError(
                    "'_logic' parameter cannot be specified: it is implicitly "
                    "the contract being proxied"
                )
            owner = _process_raw_value(proxy_data.get("owner", "$deployer"), context)
            proxy_artifact = _artifact_ref(
                proxy_data.get("contract_type", PROXY_CONTRACT_TYPE), proxy_data, base_dir
            )
            step = DeploymentStep(
                id=step_id,
                kind=StepKind.PROXY_DEPLOY,
                artifact=artifact,
                arguments=_process_raw_values(proxy_data.get("arguments"), context),
                implementation_arguments=constructor_values,
                initializer=proxy_data.get("initializer", DEFAULT_INITIALIZER),
                owner=owner,
                proxy_artifact=proxy_artifact,
            )

        # dependencies are implied by the variables a step uses
        step.depends_on = frozenset(explicit_dependencies) | step.references()
        return step


def _artifact_ref(contract_type: str, data: Dict, base_dir: Path) -> ArtifactRef:
    path = data.get("artifact")
    layout_path = data.get("storage_layout")
    return ArtifactRef(
        contract_type=contract_type,
        path=base_dir / path if path else None,
        storage_layout_path=base_dir / layout_path if layout_path else None,
    )


def _get_step_ids(config: typing.Dict) -> List[str]:
    step_ids = list()
    for contract_info in config["contracts"]:
        if isinstance(contract_info, str):
            step_ids.append(contract_info)
        elif isinstance(contract_info, dict) and len(contract_info) == 1:
            step_ids.extend(list(contract_info.keys()))
        else:
            raise ConfigurationError("Malformed plan YAML.")

    return step_ids
