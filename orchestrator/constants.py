from pathlib import Path

from ape.utils import ZERO_ADDRESS

import orchestrator

ORCHESTRATOR_VERSION = "0.1.0"

#
# Filesystem
#

ORCHESTRATOR_DIR = Path(orchestrator.__file__).parent
PLANS_DIR = ORCHESTRATOR_DIR / "plans"
ARTIFACTS_DIR = ORCHESTRATOR_DIR / "artifacts"

#
# Confirmations
#

REQUIRED_CONFIRMATIONS = 1
MIN_CONFIRMATION_TIMEOUT = 12  # seconds; one mainnet block
DEFAULT_CONFIRMATION_TIMEOUT = 120

#
# Contracts
#


PROXY_CONTRACT_TYPE = "TransparentUpgradeableProxy"
DEFAULT_INITIALIZER = "initialize"

# EIP1967 slots - https://eips.ethereum.org/EIPS/eip-1967
EIP1967_ADMIN_SLOT = 0xB53127684A568B3173AE13B9F8A6016E243E63B6E8EE1178D6A717850B5D6103
EIP1967_IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC

# ProxyAdmin (OpenZeppelin 5.x) entries used for upgrades
PROXY_ADMIN_ABI = [
    {
        "type": "function",
        "name": "upgradeAndCall",
        "stateMutability": "payable",
        "inputs": [
            {"name": "proxy", "type": "address", "internalType": "contract ITransparentUpgradeableProxy"},
            {"name": "implementation", "type": "address", "internalType": "address"},
            {"name": "data", "type": "bytes", "internalType": "bytes"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "owner",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address", "internalType": "address"}],
    },
]

#
# Plan variables
#

SPECIAL_VALUE_VARIABLES = {
    "ZERO_ADDRESS": ZERO_ADDRESS,
    "EMPTY_BYTES": b"",
}
