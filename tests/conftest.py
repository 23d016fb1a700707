from collections import defaultdict
from typing import Any, Dict, List

import pytest
from eth_utils import to_canonical_address, to_checksum_address

from orchestrator.artifacts import ArtifactRef, ContractArtifact
from orchestrator.chain import CallReceipt, ChainClient, DeployReceipt
from orchestrator.constants import (
    EIP1967_ADMIN_SLOT,
    EIP1967_IMPLEMENTATION_SLOT,
    PROXY_CONTRACT_TYPE,
)
from orchestrator.errors import ArtifactNotFoundError
from orchestrator.layout import StorageLayout, StorageSlot
from orchestrator.pipeline import run_deployment_plan
from orchestrator.plan import DeploymentPlan

# Common constants
CHAIN_ID = 11155111
UNISWAP_V3_FACTORY = "0x12d21f5d0ab768c312e19653bf3f89917866b8e8"
WETH = "0xcF664087a5bB0237a0BAd6742852ec6c8d69A27a"
FEE_PERCENT = 100


# Utility functions
def make_address(seed: int) -> str:
    return to_checksum_address(f"0x{seed:040x}")


def constructor(*inputs):
    return {
        "type": "constructor",
        "stateMutability": "nonpayable",
        "inputs": [{"name": name, "type": abi_type} for name, abi_type in inputs],
    }


def function(name, *inputs, state_mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": state_mutability,
        "inputs": [{"name": input_name, "type": abi_type} for input_name, abi_type in inputs],
        "outputs": [],
    }


FACTORY_SLOTS = (
    StorageSlot("tokenImplementation", 0, 0, "t_address"),
    StorageSlot("uniswapV3Factory", 1, 0, "t_address"),
    StorageSlot("positionManager", 2, 0, "t_address"),
    StorageSlot("bondingCurve", 3, 0, "t_address"),
    StorageSlot("weth", 4, 0, "t_address"),
    StorageSlot("feePercent", 5, 0, "t_uint256"),
    StorageSlot("tokens", 6, 0, "t_mapping(t_address,t_struct(TokenInfo)1234_storage)"),
)

INITIALIZE_INPUTS = (
    ("_tokenImplementation", "address"),
    ("_uniswapV3Factory", "address"),
    ("_positionManager", "address"),
    ("_bondingCurve", "address"),
    ("_weth", "address"),
    ("_feePercent", "uint256"),
)


def factory_artifact(name="TokenFactoryUpgradeable", slots=FACTORY_SLOTS):
    return ContractArtifact(
        name=name,
        abi=[function("initialize", *INITIALIZE_INPUTS)],
        bytecode="0x6080",
        storage_layout=StorageLayout(slots),
    )


class FakeChainClient(ChainClient):
    """
    In-memory chain. Every submission is recorded in 'transactions' so tests can
    assert on ordering and on the absence of chain interaction.
    """

    def __init__(self, address=None, chain_id=CHAIN_ID, balance=10**18):
        self._address = address or make_address(0xDE91)
        self._chain_id = chain_id
        self.balance = balance
        self.transactions: List[tuple] = list()
        self.deployments: Dict[str, str] = dict()  # address -> contract name
        self.storage: Dict[str, Dict[int, bytes]] = defaultdict(dict)
        self.deploy_failures: Dict[str, Exception] = dict()  # contract name -> error
        self.call_failures: Dict[str, Exception] = dict()  # method -> error
        self.ignore_upgrades = False
        self._nonce = 0x1000
        self._block = 100

    @property
    def address(self):
        return self._address

    @property
    def chain_id(self):
        return self._chain_id

    @property
    def network_name(self):
        return "ethereum:sepolia"

    def _next(self):
        self._nonce += 1
        self._block += 1
        return make_address(self._nonce), f"0x{self._nonce:064x}", self._block

    def _store_address(self, address: str, slot: int, value: str) -> None:
        self.storage[address][slot] = bytes(12) + to_canonical_address(value)

    def deploy(self, artifact: ContractArtifact, constructor_args: List[Any]) -> DeployReceipt:
        self.transactions.append(("deploy", artifact.name, list(constructor_args)))
        if artifact.name in self.deploy_failures:
            raise self.deploy_failures[artifact.name]

        address, tx_hash, block_number = self._next()
        self.deployments[address] = artifact.name
        if artifact.name == PROXY_CONTRACT_TYPE:
            proxy_admin, _, _ = self._next()
            self._store_address(address, EIP1967_ADMIN_SLOT, proxy_admin)
            self._store_address(address, EIP1967_IMPLEMENTATION_SLOT, constructor_args[0])
        return DeployReceipt(address=address, tx_hash=tx_hash, block_number=block_number)

    def call(self, address, abi, method, args) -> CallReceipt:
        self.transactions.append(("call", address, method, list(args)))
        if method in self.call_failures:
            raise self.call_failures[method]

        _, tx_hash, block_number = self._next()
        if method == "upgradeAndCall" and not self.ignore_upgrades:
            proxy, implementation, _data = args
            self._store_address(proxy, EIP1967_IMPLEMENTATION_SLOT, implementation)
        return CallReceipt(return_value=None, tx_hash=tx_hash, block_number=block_number)

    def get_storage_at(self, address, slot) -> bytes:
        return self.storage[address].get(slot, bytes(32))

    def get_balance(self, address) -> int:
        return self.balance

    def wait_for_confirmation(self, tx_hash, timeout=None) -> int:
        return self._block

    @property
    def deployed_names(self) -> List[str]:
        return [tx[1] for tx in self.transactions if tx[0] == "deploy"]


# Fixtures
@pytest.fixture
def client():
    return FakeChainClient()


@pytest.fixture
def token_artifact():
    return ContractArtifact(name="Token", abi=[], bytecode="0x6080")


@pytest.fixture
def bonding_curve_artifact():
    return ContractArtifact(
        name="BancorBondingCurve",
        abi=[constructor(("_reserveWeight", "uint32"), ("_slope", "uint256"))],
        bytecode="0x6080",
    )


@pytest.fixture
def position_manager_artifact():
    return ContractArtifact(
        name="NonfungiblePositionManager",
        abi=[
            constructor(
                ("_factory", "address"), ("_WETH9", "address"), ("_tokenDescriptor_", "address")
            )
        ],
        bytecode="0x6080",
    )


@pytest.fixture
def factory_implementation_artifact():
    return factory_artifact()


@pytest.fixture
def proxy_artifact():
    return ContractArtifact(
        name=PROXY_CONTRACT_TYPE,
        abi=[constructor(("_logic", "address"), ("initialOwner", "address"), ("_data", "bytes"))],
        bytecode="0x6080",
    )


@pytest.fixture
def artifacts(
    token_artifact,
    bonding_curve_artifact,
    position_manager_artifact,
    factory_implementation_artifact,
    proxy_artifact,
):
    artifacts = {
        artifact.name: artifact
        for artifact in (
            token_artifact,
            bonding_curve_artifact,
            position_manager_artifact,
            factory_implementation_artifact,
            proxy_artifact,
        )
    }
    # generic three step plans
    artifacts["A"] = ContractArtifact(name="A", abi=[], bytecode="0x6080")
    artifacts["B"] = ContractArtifact(name="B", abi=[], bytecode="0x6080")
    artifacts["C"] = ContractArtifact(
        name="C",
        abi=[constructor(("_first", "address"), ("_second", "address"))],
        bytecode="0x6080",
    )
    return artifacts


@pytest.fixture
def artifact_loader(artifacts):
    def loader(ref: ArtifactRef) -> ContractArtifact:
        try:
            return artifacts[ref.contract_type]
        except KeyError:
            raise ArtifactNotFoundError(f"No contract found with name '{ref.contract_type}'.")

    return loader


@pytest.fixture
def token_factory_config(tmp_path):
    return {
        "deployment": {"name": "token-factory", "chain_id": CHAIN_ID},
        "artifacts": {"dir": str(tmp_path), "filename": "token-factory.json"},
        "constants": {
            "UNISWAP_V3_FACTORY": UNISWAP_V3_FACTORY,
            "WETH": WETH,
            "FEE_PERCENT": FEE_PERCENT,
        },
        "contracts": [
            "Token",
            {"BancorBondingCurve": {"constructor": {"_reserveWeight": 1000000, "_slope": 1000000}}},
            {
                "NonfungiblePositionManager": {
                    "constructor": {
                        "_factory": "$UNISWAP_V3_FACTORY",
                        "_WETH9": "$WETH",
                        "_tokenDescriptor_": "$ZERO_ADDRESS",
                    }
                }
            },
            {
                "TokenFactoryUpgradeable": {
                    "proxy": {
                        "initializer": "initialize",
                        "owner": "$deployer",
                        "arguments": {
                            "_tokenImplementation": "$Token",
                            "_uniswapV3Factory": "$UNISWAP_V3_FACTORY",
                            "_positionManager": "$NonfungiblePositionManager",
                            "_bondingCurve": "$BancorBondingCurve",
                            "_weth": "$WETH",
                            "_feePercent": "$FEE_PERCENT",
                        },
                    }
                }
            },
        ],
    }


@pytest.fixture
def token_factory_plan(token_factory_config, tmp_path):
    return DeploymentPlan.from_config(token_factory_config, base_dir=tmp_path)


@pytest.fixture
def deployed_manifest(client, token_factory_plan, artifact_loader):
    return run_deployment_plan(
        plan=token_factory_plan,
        client=client,
        artifact_loader=artifact_loader,
        autosign=True,
    )


@pytest.fixture
def make_factory_artifact():
    return factory_artifact


@pytest.fixture
def stranger():
    return make_address(0xBAD)


@pytest.fixture
def stranger_client(stranger):
    return FakeChainClient(address=stranger)


@pytest.fixture
def make_client():
    return FakeChainClient
