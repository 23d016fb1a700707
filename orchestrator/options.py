import click
from eth_utils import is_address, to_checksum_address

from orchestrator.constants import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    MIN_CONFIRMATION_TIMEOUT,
    PLANS_DIR,
)


class ConfirmationTimeout(click.ParamType):
    """Seconds to wait for a receipt; never shorter than one block."""

    name = "seconds"

    def __init__(self, floor: int = MIN_CONFIRMATION_TIMEOUT):
        self.floor = floor

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            seconds = value
        else:
            try:
                seconds = int(str(value).strip())
            except ValueError:
                self.fail(f"timeout must be a whole number of seconds, got {value!r}", param, ctx)
        if seconds < self.floor:
            self.fail(
                f"a {seconds}s timeout would expire before a block is produced "
                f"(minimum {self.floor}s)",
                param,
                ctx,
            )
        return seconds


class AdminAddress(click.ParamType):
    """An account address, normalized to its checksum form."""

    name = "address"

    def convert(self, value, param, ctx):
        if not is_address(value):
            self.fail(f"{value!r} is not an account address", param, ctx)
        return to_checksum_address(value)


plan_option = click.option(
    "--plan",
    "-p",
    help="Deployment plan YAML file.",
    type=click.Path(exists=True, dir_okay=False),
    default=str(PLANS_DIR / "token-factory.yml"),
    show_default=True,
)

manifest_option = click.option(
    "--manifest",
    "-m",
    help="Deployment manifest JSON file.",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
)

proxy_name_option = click.option(
    "--proxy",
    "proxy_name",
    help="Logical name of the proxy in the manifest.",
    default="TokenFactoryUpgradeable",
    show_default=True,
)

implementation_option = click.option(
    "--implementation",
    "-i",
    help="Contract type of the new implementation.",
    required=True,
)

caller_option = click.option(
    "--caller",
    help="Account expected to be the proxy admin; defaults to the selected account.",
    type=AdminAddress(),
    default=None,
)

timeout_option = click.option(
    "--timeout",
    help="Seconds to wait for each transaction to confirm.",
    type=ConfirmationTimeout(),
    default=DEFAULT_CONFIRMATION_TIMEOUT,
    show_default=True,
)

autosign_option = click.option(
    "--auto",
    help="Automatically sign transactions.",
    is_flag=True,
)
