from .ethernet_tethering import EthernetTetheringScenario, TetheringContext

__all__ = ["EthernetTetheringScenario", "TetheringContext"]
