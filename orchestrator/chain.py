import threading
import typing
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, NamedTuple, Optional

from ape import networks
from ape.api import AccountAPI, ReceiptAPI
from ape.cli.choices import select_account
from ape.contracts import ContractContainer, ContractInstance
from ape.exceptions import ContractLogicError, ProviderNotConnectedError
from ape.exceptions import OutOfGasError as ApeOutOfGasError
from ape.exceptions import TransactionError as ApeTransactionError
from ape.exceptions import TransactionNotFoundError
from ape_accounts import KeyfileAccount
from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address, to_hex
from ethpm_types import ContractType
from hexbytes import HexBytes
from requests.exceptions import ConnectionError as RequestsConnectionError
from web3.exceptions import TimeExhausted

from orchestrator.artifacts import ContractArtifact, _validate_method_args
from orchestrator.confirm import _continue
from orchestrator.constants import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    MIN_CONFIRMATION_TIMEOUT,
    REQUIRED_CONFIRMATIONS,
)
from orchestrator.errors import (
    ChainClientError,
    ConfirmationTimeoutError,
    InsufficientFundsError,
    NetworkUnreachableError,
    OutOfGasError,
    TransactionDroppedError,
    TransactionError,
    TransactionRevertedError,
)


class DeployReceipt(NamedTuple):
    address: ChecksumAddress
    tx_hash: str
    block_number: int


class CallReceipt(NamedTuple):
    return_value: Any
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None


class ChainClient(ABC):
    """
    The orchestrator's only view of the chain: deploy bytecode, call methods and
    read state on behalf of a single sending account. Submissions block until the
    transaction is confirmed. Failures are raised as ChainClientError subclasses
    and are never retried.
    """

    @property
    @abstractmethod
    def address(self) -> ChecksumAddress:
        """Address of the sending account."""
        raise NotImplementedError

    @property
    @abstractmethod
    def chain_id(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def network_name(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def deploy(self, artifact: ContractArtifact, constructor_args: List[Any]) -> DeployReceipt:
        raise NotImplementedError

    @abstractmethod
    def call(
        self, address: ChecksumAddress, abi: List[Dict], method: str, args: List[Any]
    ) -> CallReceipt:
        raise NotImplementedError

    @abstractmethod
    def get_storage_at(self, address: ChecksumAddress, slot: int) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def get_balance(self, address: ChecksumAddress) -> int:
        raise NotImplementedError

    @abstractmethod
    def wait_for_confirmation(self, tx_hash: str, timeout: Optional[float] = None) -> int:
        """Blocks until the transaction is confirmed; returns its block number."""
        raise NotImplementedError


# Submissions from one account must respect nonce order.
_ACCOUNT_LOCKS: typing.DefaultDict[str, threading.Lock] = defaultdict(threading.Lock)


def _tx_hash(receipt: ReceiptAPI) -> str:
    return to_hex(HexBytes(receipt.txn_hash))


def _translate_error(
    error: Exception, timeout: Optional[float] = None, tx_hash: Optional[str] = None
) -> ChainClientError:
    """Maps ape / web3 / requests failures onto the orchestrator's error taxonomy."""
    if tx_hash is None:
        tx_hash = getattr(getattr(error, "txn", None), "txn_hash", None)
    if isinstance(tx_hash, bytes):
        tx_hash = to_hex(tx_hash)

    if isinstance(error, TimeExhausted):
        return ConfirmationTimeoutError(tx_hash=tx_hash, timeout=timeout)
    if isinstance(error, TransactionNotFoundError):
        if isinstance(error.__cause__, TimeExhausted):
            return ConfirmationTimeoutError(tx_hash=tx_hash, timeout=timeout)
        return TransactionDroppedError(str(error), tx_hash=tx_hash)
    if isinstance(error, (ProviderNotConnectedError, RequestsConnectionError, ConnectionError)):
        return NetworkUnreachableError(str(error))
    if "insufficient funds" in str(error).lower():
        return InsufficientFundsError(str(error), tx_hash=tx_hash)
    if isinstance(error, ApeOutOfGasError):
        return OutOfGasError(str(error), tx_hash=tx_hash)
    if isinstance(error, ContractLogicError):
        return TransactionRevertedError(revert_reason=str(error) or None, tx_hash=tx_hash)
    if isinstance(error, ApeTransactionError):
        return TransactionError(str(error), tx_hash=tx_hash)
    return ChainClientError(str(error))


class ApeChainClient(ChainClient):
    """
    Represents an ape account plus confirmed, annotated transaction execution.
    """

    def __init__(
        self,
        account: Optional[AccountAPI] = None,
        autosign: bool = False,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        required_confirmations: int = REQUIRED_CONFIRMATIONS,
    ):
        if confirmation_timeout < MIN_CONFIRMATION_TIMEOUT:
            raise ValueError(
                f"Confirmation timeout must be at least {MIN_CONFIRMATION_TIMEOUT} seconds"
            )
        if account is None:
            self._account = select_account()
        else:
            self._account = account
        if autosign:
            print("WARNING: Autosign is enabled. Transactions will be signed automatically.")
        self._autosign = autosign
        if isinstance(self._account, KeyfileAccount):
            self._account.set_autosign(autosign)
        self.confirmation_timeout = confirmation_timeout
        self.required_confirmations = required_confirmations

    @property
    def address(self) -> ChecksumAddress:
        return to_checksum_address(self._account.address)

    @property
    def chain_id(self) -> int:
        return networks.provider.chain_id

    @property
    def network_name(self) -> str:
        network = networks.provider.network
        return f"{network.ecosystem.name}:{network.name}"

    def deploy(self, artifact: ContractArtifact, constructor_args: List[Any]) -> DeployReceipt:
        container = ContractContainer(artifact.contract_type)
        with _ACCOUNT_LOCKS[self.address]:
            try:
                instance = self._account.deploy(
                    container,
                    *constructor_args,
                    required_confirmations=self.required_confirmations,
                )
            except Exception as error:
                raise _translate_error(error, self.confirmation_timeout) from error
            tx_hash = _tx_hash(instance.receipt)
            block_number = self.wait_for_confirmation(tx_hash, self.confirmation_timeout)

        return DeployReceipt(
            address=to_checksum_address(instance.address),
            tx_hash=tx_hash,
            block_number=block_number,
        )

    def call(
        self, address: ChecksumAddress, abi: List[Dict], method: str, args: List[Any]
    ) -> CallReceipt:
        contract_type = ContractType.model_validate({"contractName": method, "abi": abi})
        instance = ContractInstance(to_checksum_address(address), contract_type)
        handler = getattr(instance, method)

        method_abis = [entry for entry in abi if entry.get("name") == method]
        read_only = all(entry.get("stateMutability") in ("view", "pure") for entry in method_abis)
        if read_only:
            try:
                return CallReceipt(return_value=handler(*args))
            except Exception as error:
                raise _translate_error(error) from error

        named_args = _validate_method_args(method_abis=method_abis, args=args)
        base_message = f"\nTransacting [{address[:10]}].{method}"
        if named_args:
            pretty_args = "\n\t".join(f"{k}={v}" for k, v in named_args.items())
            message = f"{base_message} with arguments:\n\t{pretty_args}"
        else:
            message = f"{base_message} with no arguments"
        print(message)
        if not self._autosign:
            _continue()

        with _ACCOUNT_LOCKS[self.address]:
            try:
                receipt = handler(
                    *args,
                    sender=self._account,
                    required_confirmations=self.required_confirmations,
                )
            except Exception as error:
                raise _translate_error(error, self.confirmation_timeout) from error
            tx_hash = _tx_hash(receipt)
            block_number = self.wait_for_confirmation(tx_hash, self.confirmation_timeout)

        return CallReceipt(return_value=None, tx_hash=tx_hash, block_number=block_number)

    def get_storage_at(self, address: ChecksumAddress, slot: int) -> bytes:
        try:
            return bytes(HexBytes(networks.provider.get_storage(address, slot)))
        except Exception as error:
            raise _translate_error(error) from error

    def get_balance(self, address: ChecksumAddress) -> int:
        try:
            return networks.provider.get_balance(address)
        except Exception as error:
            raise _translate_error(error) from error

    def wait_for_confirmation(self, tx_hash: str, timeout: Optional[float] = None) -> int:
        timeout = timeout or self.confirmation_timeout
        try:
            receipt = networks.provider.get_receipt(
                tx_hash, required_confirmations=self.required_confirmations, timeout=timeout
            )
        except Exception as error:
            raise _translate_error(error, timeout, tx_hash=tx_hash) from error
        return receipt.block_number
