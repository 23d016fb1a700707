from typing import List, Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator failures."""


#
# Configuration
#


class ConfigurationError(OrchestratorError, ValueError):
    """Raised for a bad plan; always detected before any chain interaction."""


class CyclicDependencyError(ConfigurationError):
    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic dependency between steps: {' -> '.join(cycle)}")


class UnknownReferenceError(ConfigurationError):
    def __init__(self, step_id: str, reference: str):
        self.step_id = step_id
        self.reference = reference
        super().__init__(f"Step '{step_id}' references unknown step '{reference}'")


class UndeclaredDependencyError(ConfigurationError):
    def __init__(self, step_id: str, reference: str):
        self.step_id = step_id
        self.reference = reference
        super().__init__(
            f"Step '{step_id}' references '{reference}' without declaring it as a dependency"
        )


class UnresolvedReferenceError(ConfigurationError):
    def __init__(self, step_id: str, reference: str, field: str = "address"):
        self.step_id = step_id
        self.reference = reference
        self.field = field
        super().__init__(
            f"Step '{step_id}' references '{reference}.{field}' which has not been produced"
        )


class UnresolvedArgumentError(ConfigurationError):
    """Raised when an argument still holds a binding where a concrete value is required."""


class InvalidArgumentsError(ConfigurationError):
    """Raised when arguments do not match the artifact ABI."""


class ArtifactNotFoundError(ConfigurationError):
    """Raised when a contract artifact cannot be located."""


class ChainMismatchError(ConfigurationError):
    """Raised when the connected chain is not the one the plan targets."""


class UnknownProxyError(ConfigurationError):
    """Raised when a proxy cannot be found in a deployment manifest."""


#
# Chain interaction
#


class ChainClientError(OrchestratorError):
    """Base class for failures reported by a chain client."""


class NetworkUnreachableError(ChainClientError):
    pass


class TransactionError(ChainClientError):
    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class TransactionRevertedError(TransactionError):
    def __init__(self, revert_reason: Optional[str] = None, tx_hash: Optional[str] = None):
        self.revert_reason = revert_reason
        message = "Transaction reverted"
        if revert_reason:
            message = f"{message}: {revert_reason}"
        super().__init__(message, tx_hash=tx_hash)


class OutOfGasError(TransactionError):
    pass


class TransactionDroppedError(TransactionError):
    """Raised when a transaction was dropped from the mempool or replaced."""


class InsufficientFundsError(TransactionError):
    pass


class ConfirmationTimeoutError(ChainClientError):
    """
    The transaction was submitted but not confirmed in time. The outcome is
    unknown; the transaction may still confirm later and must not be resubmitted.
    """

    def __init__(self, tx_hash: Optional[str], timeout: Optional[float] = None):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(
            f"Transaction {tx_hash or '<unknown>'} was not confirmed within {timeout} seconds; "
            "query the chain before taking further action"
        )


#
# Pipeline
#


class OperatorAbortedError(OrchestratorError):
    """The operator declined a confirmation prompt."""

    def __init__(self, prompt: str):
        self.prompt = prompt
        super().__init__(f"Aborted by operator at prompt '{prompt}'")


class StepFailedError(OrchestratorError):
    def __init__(self, step_id: str, error: Exception, manifest_filepath=None):
        self.step_id = step_id
        self.error = error
        self.manifest_filepath = manifest_filepath
        super().__init__(f"Deployment halted at step '{step_id}': {error}")


#
# Proxy provisioning
#


class ProvisionError(OrchestratorError):
    pass


class InitializationFailedAfterDeploy(ProvisionError):
    """
    The proxy was deployed but its initializer did not complete.
    The proxy exists on-chain in an uninitialized state; an operator must
    decide whether to abandon it or finish initialization manually.
    """

    def __init__(self, proxy_address: str, error: Exception, record=None):
        self.proxy_address = proxy_address
        self.error = error
        self.record = record
        super().__init__(
            f"Proxy deployed at {proxy_address} but initialization failed: {error}"
        )


#
# Upgrades
#


class UpgradeError(OrchestratorError):
    pass


class AuthorizationError(UpgradeError):
    pass


class UnauthorizedUpgradeError(AuthorizationError):
    pass


class StorageLayoutConflictError(UpgradeError):
    def __init__(self, slot: Optional[str], reason: str):
        self.slot = slot
        self.reason = reason
        if slot:
            message = f"Storage layout conflict at '{slot}': {reason}"
        else:
            message = f"Storage layout conflict: {reason}"
        super().__init__(message)


class ProxyNotInitializedError(UpgradeError):
    pass


class UpgradeVerificationFailedError(UpgradeError):
    def __init__(self, proxy_address: str, expected: str, observed: str):
        self.proxy_address = proxy_address
        self.expected = expected
        self.observed = observed
        super().__init__(
            f"Proxy {proxy_address} reports implementation {observed}, expected {expected}"
        )
