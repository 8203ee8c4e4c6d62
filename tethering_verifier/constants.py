import os

RUNTIME_ENV = os.environ.get("RUNTIME_ENV", "production")
IS_DEV = RUNTIME_ENV == "development"

CONFIG_DIR = os.environ.get("TETHERING_VERIFIER_CONFIG_DIR", "/etc/tethering-verifier")

# Default timeouts, in milliseconds unless noted
TIMEOUT_MS = 5000
ROUTER_ADVERTISEMENT_TIMEOUT_MS = 2000
LEASE_TOLERANCE_S = 10

# Link layer
ETHER_TYPE_IPV4 = 0x0800
ETHER_TYPE_IPV6 = 0x86DD
ETHER_BROADCAST = "ff:ff:ff:ff:ff:ff"
IPPROTO_ICMPV6 = 58
ICMPV6_ROUTER_SOLICITATION = 133
ICMPV6_ROUTER_ADVERTISEMENT = 134

# DHCP
DHCP_SERVER_PORT = 67
DHCP_CLIENT_PORT = 68
DHCP_HOSTNAME = "testhostname"
DHCP_REQUESTED_OPTIONS = [1, 3, 6, 15, 26, 28, 51, 58, 59, 43]

# Kernel address flags and scopes (linux/if_addr.h, linux/rtnetlink.h)
IFA_F_OPTIMISTIC = 0x04
IFA_F_DADFAILED = 0x08
IFA_F_DEPRECATED = 0x20
IFA_F_TENTATIVE = 0x40
IFA_F_PERMANENT = 0x80
RT_SCOPE_UNIVERSE = 0
RT_SCOPE_LINK = 253
INFINITE_LIFETIME = 0xFFFFFFFF
