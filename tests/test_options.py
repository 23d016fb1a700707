import click
import pytest
from eth_utils import to_checksum_address

from orchestrator.constants import DEFAULT_CONFIRMATION_TIMEOUT, MIN_CONFIRMATION_TIMEOUT
from orchestrator.options import AdminAddress, ConfirmationTimeout


@pytest.mark.parametrize(
    "value,expected",
    [
        (DEFAULT_CONFIRMATION_TIMEOUT, DEFAULT_CONFIRMATION_TIMEOUT),
        (str(MIN_CONFIRMATION_TIMEOUT), MIN_CONFIRMATION_TIMEOUT),
        (" 300 ", 300),
    ],
)
def test_confirmation_timeout(value, expected):
    assert expected == ConfirmationTimeout().convert(value, None, None)


@pytest.mark.parametrize("value", ["soon", "1.5", str(MIN_CONFIRMATION_TIMEOUT - 1), 0])
def test_confirmation_timeout_rejects_bad_values(value):
    with pytest.raises(click.BadParameter):
        ConfirmationTimeout().convert(value, None, None)


def test_admin_address_is_checksummed():
    address = "0xcf664087a5bb0237a0bad6742852ec6c8d69a27a"
    assert to_checksum_address(address) == AdminAddress().convert(address, None, None)


@pytest.mark.parametrize("value", ["deployer", "0x1234", ""])
def test_admin_address_rejects_non_addresses(value):
    with pytest.raises(click.BadParameter):
        AdminAddress().convert(value, None, None)
