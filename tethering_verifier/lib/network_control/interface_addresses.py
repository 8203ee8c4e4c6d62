import logging
import time
from ipaddress import ip_interface
from typing import Any, List, Optional

from pyroute2 import IPRoute

from tethering_verifier.constants import INFINITE_LIFETIME
from tethering_verifier.exceptions import InterfaceNotFoundError
from tethering_verifier.lib.tethering.domain import LinkAddress


def _cacheinfo_field(cacheinfo: Any, name: str) -> Optional[int]:
    if cacheinfo is None:
        return None
    try:
        value = cacheinfo[name]
    except (KeyError, TypeError):
        value = getattr(cacheinfo, name, None)
    if value is None or value == INFINITE_LIFETIME:
        return None
    return int(value)


class IPRouteAddressInspector:
    """Reads interface addresses and MTU over netlink"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def _lookup_index(self, ipr: IPRoute, interface: str) -> int:
        indexes = ipr.link_lookup(ifname=interface)
        if not indexes:
            raise InterfaceNotFoundError(f"No such interface: {interface}")
        return indexes[0]

    def get_interface_addresses(self, interface: str) -> List[LinkAddress]:
        addresses: List[LinkAddress] = []
        with IPRoute() as ipr:
            index = self._lookup_index(ipr, interface)
            for msg in ipr.get_addr(index=index):
                addresses.append(self._to_link_address(msg))
        self.logger.debug(f"Addresses on {interface}: {[str(a) for a in addresses]}")
        return addresses

    def get_mtu(self, interface: str) -> int:
        with IPRoute() as ipr:
            index = self._lookup_index(ipr, interface)
            links = list(ipr.get_links(index))
        if not links:
            raise InterfaceNotFoundError(f"No link info for interface: {interface}")
        attrs = dict(links[0].get("attrs", []))
        return int(attrs["IFLA_MTU"])

    @staticmethod
    def _to_link_address(msg) -> LinkAddress:
        attrs = dict(msg.get("attrs", []))
        # On point-to-point links IFA_ADDRESS is the peer and IFA_LOCAL is ours
        address = attrs.get("IFA_LOCAL") or attrs["IFA_ADDRESS"]
        cacheinfo = attrs.get("IFA_CACHEINFO")
        valid = _cacheinfo_field(cacheinfo, "ifa_valid")
        return LinkAddress(
            address=ip_interface(f"{address}/{msg['prefixlen']}"),
            flags=attrs.get("IFA_FLAGS", msg.get("flags", 0)),
            scope=msg.get("scope", 0),
            preferred_lifetime=_cacheinfo_field(cacheinfo, "ifa_preferred"),
            valid_lifetime=valid,
            expiration_time=None if valid is None else time.monotonic() + valid,
        )
