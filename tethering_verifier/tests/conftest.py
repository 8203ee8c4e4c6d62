"""
Pytest configuration and shared fixtures for tethering-verifier tests
"""
import logging

import pytest

from tethering_verifier.lib.configuration.schemas import HarnessConfig, HarnessTimeouts
from tethering_verifier.lib.handler_thread import HandlerThread
from tethering_verifier.lib.logging_utils import setup_logging
from tethering_verifier.tests.fakes import (
    FakeAddressInspector,
    FakeEthernetManager,
    FakeLinkProvisioner,
    FakeTapLink,
    FakeTetheringService,
)


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Setup logging for tests with appropriate levels"""
    setup_logging(level=logging.INFO)

    # Reduce noise from common libraries
    logging.getLogger("pyroute2.netlink.core").setLevel(logging.WARNING)
    logging.getLogger("scapy.runtime").setLevel(logging.ERROR)


@pytest.fixture
def fast_config() -> HarnessConfig:
    """Short timeouts so timeout paths do not slow the suite down"""
    return HarnessConfig(
        Timeouts=HarnessTimeouts(
            event_timeout_ms=2000,
            dhcp_timeout_ms=1000,
            router_advertisement_timeout_ms=1000,
        )
    )


@pytest.fixture
def handler():
    thread = HandlerThread("TestHandler")
    thread.start()
    yield thread
    thread.quit_safely(2000)


@pytest.fixture
def tap_link():
    link = FakeTapLink()
    yield link
    link.close()


@pytest.fixture
def ethernet_manager() -> FakeEthernetManager:
    return FakeEthernetManager()


@pytest.fixture
def address_inspector() -> FakeAddressInspector:
    return FakeAddressInspector()


@pytest.fixture
def link_provisioner(ethernet_manager) -> FakeLinkProvisioner:
    provisioner = FakeLinkProvisioner(ethernet_manager)
    yield provisioner
    for link in provisioner.links:
        link.close()


@pytest.fixture
def tethering_service(ethernet_manager, address_inspector) -> FakeTetheringService:
    service = FakeTetheringService(ethernet_manager, address_inspector)
    yield service
    if service.dhcp_server is not None:
        service.dhcp_server.stop()
