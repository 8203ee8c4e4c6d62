from .interface_addresses import IPRouteAddressInspector

__all__ = ["IPRouteAddressInspector"]
