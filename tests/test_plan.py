import pytest
import yaml
from ape.utils import ZERO_ADDRESS

from orchestrator.constants import PROXY_CONTRACT_TYPE
from orchestrator.errors import (
    ConfigurationError,
    CyclicDependencyError,
    UndeclaredDependencyError,
    UnknownReferenceError,
    UnresolvedReferenceError,
)
from orchestrator.graph import deployment_order
from orchestrator.manifest import DeployedArtifact
from orchestrator.plan import (
    DeployerAddress,
    DeploymentPlan,
    DeploymentStep,
    Reference,
    ResolutionContext,
    StepKind,
    placeholder_params,
    resolve_params,
)

WETH = "0xcF664087a5bB0237a0BAd6742852ec6c8d69A27a"
DEPLOYER = "0x000000000000000000000000000000000000dE91"


def deployed(step_id, address, **outputs):
    return DeployedArtifact(
        step_id=step_id,
        contract_type=step_id,
        address=address,
        tx_hash="0x" + "ab" * 32,
        block_number=7,
        outputs=outputs,
    )


def test_plan_from_config(token_factory_plan, tmp_path):
    assert "token-factory" == token_factory_plan.name
    assert 11155111 == token_factory_plan.chain_id
    assert tmp_path / "token-factory.json" == token_factory_plan.manifest_filepath
    assert token_factory_plan.registry_filepath is None
    assert [
        "Token",
        "BancorBondingCurve",
        "NonfungiblePositionManager",
        "TokenFactoryUpgradeable",
    ] == token_factory_plan.step_ids

    curve = token_factory_plan.get("BancorBondingCurve")
    assert StepKind.DEPLOY == curve.kind
    assert [1000000, 1000000] == list(curve.arguments.values())
    assert frozenset() == curve.depends_on


def test_constants_and_special_values(token_factory_plan):
    position_manager = token_factory_plan.get("NonfungiblePositionManager")
    assert WETH == position_manager.arguments["_WETH9"]
    assert ZERO_ADDRESS == position_manager.arguments["_tokenDescriptor_"]
    assert frozenset() == position_manager.depends_on


def test_proxy_step_from_config(token_factory_plan):
    factory = token_factory_plan.get("TokenFactoryUpgradeable")
    assert factory.is_proxy
    assert "initialize" == factory.initializer
    assert DeployerAddress() == factory.owner
    assert PROXY_CONTRACT_TYPE == factory.proxy_artifact.contract_type
    assert "TokenFactoryUpgradeable" == factory.artifact.contract_type
    assert 0 == len(factory.implementation_arguments)

    # dependencies are derived from the variables the step uses
    assert {"Token", "NonfungiblePositionManager", "BancorBondingCurve"} == factory.depends_on
    assert Reference("Token") == factory.arguments["_tokenImplementation"]
    assert 100 == factory.arguments["_feePercent"]


def test_plan_from_yaml(tmp_path, token_factory_config):
    filepath = tmp_path / "plan.yml"
    with open(filepath, "w") as file:
        yaml.safe_dump(token_factory_config, file)

    plan = DeploymentPlan.from_yaml(filepath)
    assert 4 == len(plan)
    assert "Token" == deployment_order(plan.steps)[0]
    assert "TokenFactoryUpgradeable" == deployment_order(plan.steps)[-1]


def test_artifact_paths_are_relative_to_plan(tmp_path, token_factory_config):
    token_factory_config["contracts"][2]["NonfungiblePositionManager"]["artifact"] = (
        "artifacts/NonfungiblePositionManager.json"
    )
    plan = DeploymentPlan.from_config(token_factory_config, base_dir=tmp_path)
    ref = plan.get("NonfungiblePositionManager").artifact
    assert tmp_path / "artifacts" / "NonfungiblePositionManager.json" == ref.path


def test_explicit_depends_on(token_factory_config, tmp_path):
    token_factory_config["contracts"][1] = {
        "BancorBondingCurve": {
            "constructor": {"_reserveWeight": 1000000, "_slope": 1000000},
            "depends_on": ["Token"],
        }
    }
    plan = DeploymentPlan.from_config(token_factory_config, base_dir=tmp_path)
    assert frozenset({"Token"}) == plan.get("BancorBondingCurve").depends_on


def test_unknown_step_reference(token_factory_config, tmp_path):
    arguments = token_factory_config["contracts"][3]["TokenFactoryUpgradeable"]["proxy"]["arguments"]
    arguments["_bondingCurve"] = "$BondingCurve"
    with pytest.raises(UnknownReferenceError) as excinfo:
        DeploymentPlan.from_config(token_factory_config, base_dir=tmp_path)
    assert "BondingCurve" == excinfo.value.reference


def test_unknown_constant(token_factory_config, tmp_path):
    del token_factory_config["constants"]["WETH"]
    with pytest.raises(ConfigurationError, match="WETH"):
        DeploymentPlan.from_config(token_factory_config, base_dir=tmp_path)


def test_logic_argument_is_rejected(token_factory_config, tmp_path):
    proxy = token_factory_config["contracts"][3]["TokenFactoryUpgradeable"]["proxy"]
    proxy["arguments"]["_logic"] = "$Token"
    with pytest.raises(ConfigurationError, match="_logic"):
        DeploymentPlan.from_config(token_factory_config, base_dir=tmp_path)


@pytest.mark.parametrize("missing", ["deployment", "contracts"])
def test_malformed_config(token_factory_config, tmp_path, missing):
    del token_factory_config[missing]
    with pytest.raises(ConfigurationError):
        DeploymentPlan.from_config(token_factory_config, base_dir=tmp_path)


def test_cyclic_plan_from_config(tmp_path):
    config = {
        "deployment": {"name": "cycle", "chain_id": 1},
        "artifacts": {"dir": str(tmp_path), "filename": "cycle.json"},
        "contracts": [
            {"A": {"constructor": {"_b": "$B"}}},
            {"B": {"constructor": {"_a": "$A"}}},
        ],
    }
    plan = DeploymentPlan.from_config(config, base_dir=tmp_path)
    with pytest.raises(CyclicDependencyError):
        deployment_order(plan.steps)


def test_duplicate_step_ids():
    with pytest.raises(ConfigurationError, match="Duplicate"):
        DeploymentPlan([DeploymentStep("Token"), DeploymentStep("Token")])


def test_references_must_be_declared():
    step = DeploymentStep("TokenFactory", arguments={"_token": Reference("Token")})
    with pytest.raises(UndeclaredDependencyError) as excinfo:
        DeploymentPlan([DeploymentStep("Token"), step])
    assert "TokenFactory" == excinfo.value.step_id
    assert "Token" == excinfo.value.reference


@pytest.mark.parametrize("depends_on", [(), ("BondingCurve",)])
def test_references_to_missing_steps(depends_on):
    step = DeploymentStep(
        "TokenFactory", arguments={"_bondingCurve": Reference("BondingCurve")}, depends_on=depends_on
    )
    with pytest.raises(UnknownReferenceError) as excinfo:
        DeploymentPlan([DeploymentStep("Token"), step])
    assert "TokenFactory" == excinfo.value.step_id
    assert "BondingCurve" == excinfo.value.reference


def test_resolve_params():
    token = "0x0000000000000000000000000000000000001001"
    curve = "0x0000000000000000000000000000000000001002"
    context = ResolutionContext(
        step_id="TokenFactory",
        deployer=DEPLOYER,
        artifacts={
            "Token": deployed("Token", token),
            "BondingCurve": deployed("BondingCurve", curve, implementation=token),
        },
    )
    params = {
        "_token": Reference("Token"),
        "_curves": [Reference("BondingCurve"), Reference("BondingCurve", "implementation")],
        "_owner": DeployerAddress(),
        "_block": Reference("Token", "block_number"),
        "_feePercent": 100,
    }
    resolved = resolve_params(params, context)
    assert token == resolved["_token"]
    assert [curve, token] == resolved["_curves"]
    assert DEPLOYER == resolved["_owner"]
    assert 7 == resolved["_block"]
    assert 100 == resolved["_feePercent"]
    assert list(params) == list(resolved)


def test_unresolved_reference():
    context = ResolutionContext(step_id="TokenFactory", deployer=DEPLOYER, artifacts={})
    with pytest.raises(UnresolvedReferenceError):
        resolve_params({"_token": Reference("Token")}, context)

    context = context._replace(artifacts={"Token": deployed("Token", DEPLOYER)})
    with pytest.raises(UnresolvedReferenceError) as excinfo:
        resolve_params({"_token": Reference("Token", "implementation")}, context)
    assert "implementation" == excinfo.value.field


def test_placeholder_params():
    params = {
        "_token": Reference("Token"),
        "_owner": DeployerAddress(),
        "_hash": Reference("Token", "tx_hash"),
        "_feePercent": 100,
    }
    placeholders = placeholder_params(params)
    assert ZERO_ADDRESS == placeholders["_token"]
    assert ZERO_ADDRESS == placeholders["_owner"]
    assert placeholders["_hash"].startswith("0x")
    assert 100 == placeholders["_feePercent"]
