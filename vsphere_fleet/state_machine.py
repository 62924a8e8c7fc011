import ipaddress
from collections.abc import Iterable

from vsphere_fleet.models import POWERED_ON, GuestNic, InstanceState


def _is_ipv4(value: str) -> bool:
    try:
        return ipaddress.ip_address(value.strip()).version == 4
    except ValueError:
        return False


def first_ipv4(nics: Iterable[GuestNic]) -> str | None:
    """Return the first IPv4 address reported by the guest, in adapter order.

    Adapters without a MAC address or without an IP configuration are skipped.
    The first adapter holding an IPv4 address wins.
    """
    for nic in nics:
        if not nic.mac_address:
            continue
        if not nic.has_ip_config:
            continue
        for address in nic.ip_addresses:
            if _is_ipv4(address):
                return address
    return None


def classify(power_state: str | None, nics: Iterable[GuestNic]) -> InstanceState:
    if power_state != POWERED_ON:
        return InstanceState.DELETING
    if first_ipv4(nics) is None:
        return InstanceState.CREATING
    return InstanceState.RUNNING
