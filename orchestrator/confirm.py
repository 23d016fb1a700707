from collections import OrderedDict

from ape.utils import ZERO_ADDRESS

from orchestrator.errors import OperatorAbortedError


def _ask(prompt: str) -> None:
    answer = input(prompt)
    if answer.lower().strip() == "n":
        print("Aborting deployment!")
        raise OperatorAbortedError(prompt.strip())


def _confirm_deployment(step_id: str) -> None:
    """Asks the user to confirm the deployment of a single step."""
    _ask(f"Deploy {step_id} Y/N? ")


def _continue() -> None:
    """Asks the user to continue."""
    _ask("Continue Y/N? ")


def _confirm_zero_address() -> None:
    _ask("Zero Address detected for deployment parameter; Continue? Y/N? ")


def _confirm_resolution(resolved_params: OrderedDict, step_id: str, label: str = "Constructor") -> None:
    """Asks the user to confirm the resolved parameters for a single step."""
    if len(resolved_params) == 0:
        print(f"\n(i) No {label.lower()} parameters for {step_id}")
        _confirm_deployment(step_id)
        return

    print(f"\n{label} parameters for {step_id}")
    contains_zero_address = False
    for name, resolved_value in resolved_params.items():
        print(f"\t{name}={resolved_value}")
        if not contains_zero_address:
            contains_zero_address = resolved_value == ZERO_ADDRESS
    _confirm_deployment(step_id)
    if contains_zero_address:
        _confirm_zero_address()


def _confirm_upgrade(proxy_name: str, current_implementation: str, contract_type: str) -> None:
    """Asks the user to confirm an implementation swap."""
    print(
        f"\nUpgrading {proxy_name} from implementation {current_implementation} "
        f"to a new {contract_type} implementation."
    )
    _continue()
