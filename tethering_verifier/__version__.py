#  _       _   _               _                           _  __ _
# | |_ ___| |_| |__   ___ _ __(_)_ __   __ _  __   _____ _ __(_)/ _(_) ___ _ __
# | __/ _ \ __| '_ \ / _ \ '__| | '_ \ / _` | \ \ / / _ \ '__| | |_| |/ _ \ '__|
# | ||  __/ |_| | | |  __/ |  | | | | | (_| |  \ V /  __/ |  | |  _| |  __/ |
#  \__\___|\__|_| |_|\___|_|  |_|_| |_|\__, |   \_/ \___|_|  |_|_| |_|\___|_|
#                                      |___/

__title__ = "tethering_verifier"
__description__ = (
    "Harness that drives a tethering subsystem over a raw downstream link and"
    " verifies its interface state, DHCP and router advertisement behavior."
)
__version__ = "0.3.0"
__status__ = "alpha"
__license__ = "BSD-3-Clause"
__license_url__ = "https://opensource.org/licenses/BSD-3-Clause"
