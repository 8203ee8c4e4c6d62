"""
Test package for tethering-verifier

Unit tests cover each harness component against in-process fakes: the
downstream link is a socketpair, the DHCP server and tethering service are
threads driven by scapy frames. None of them need privileges or a real tap
interface.
"""
