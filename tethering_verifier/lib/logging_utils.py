import logging
import os
import sys

from tethering_verifier.constants import IS_DEV


def supports_color():
    """
    Returns True if the running system's terminal supports color, and False otherwise.
    """
    # Check for explicit override
    if os.environ.get("FORCE_COLOR", "").lower() in ("1", "true", "yes"):
        return True
    if os.environ.get("NO_COLOR", "").lower() in ("1", "true", "yes"):
        return False

    plat = sys.platform
    supported_platform = plat != "Pocket PC" and (
        plat != "win32" or "ANSICON" in os.environ
    )

    is_a_tty = hasattr(sys.stdout, "isatty") and sys.stdout.isatty()

    # IDE consoles render color even when they are not a TTY
    ide_support = any(
        env in os.environ for env in ["PYCHARM_HOSTED", "VSCODE_PID", "TERM_PROGRAM"]
    )

    return supported_platform and (is_a_tty or ide_support)


USE_COLOR = supports_color()


# https://talyian.github.io/ansicolors/
class CustomFormatter(logging.Formatter):
    """Colored logging formatter that also shows the emitting thread"""

    red = "\x1b[31;20m"
    white = "\x1b[38;5;255m"
    dark_grey = "\x1b[38;5;244m"
    orange = "\x1b[38;5;208m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    # Scenario code and the handler thread interleave, so the thread name matters
    fmt = "%(asctime)s | %(levelname)8s | %(threadName)s | %(name)s: %(message)s (%(filename)s:%(lineno)d)"

    USE_COLOR = USE_COLOR

    FORMATS = {
        logging.DEBUG: dark_grey + fmt + reset,
        logging.INFO: white + fmt + reset,
        logging.WARNING: orange + fmt + reset,
        logging.ERROR: red + fmt + reset,
        logging.CRITICAL: bold_red + fmt + reset,
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno) if self.USE_COLOR else self.fmt
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


def create_console_handler(level=logging.DEBUG):
    """Create a console handler with the CustomFormatter"""
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(CustomFormatter())
    return handler


def _env_level(name: str, default: str = "INFO") -> int:
    levels = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warn": logging.WARN,
        "warning": logging.WARN,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }
    return levels.get(os.environ.get(name, default).strip().lower(), logging.INFO)


def setup_logging(level=logging.INFO, handlers=None):
    """Setup logging with custom formatter"""

    if IS_DEV:
        level = logging.DEBUG

    level = _env_level("TETHERING_VERIFIER_LOG_LEVEL", logging.getLevelName(level))

    if handlers is None:
        handlers = [create_console_handler(level)]

    logging.basicConfig(encoding="utf-8", level=level, handlers=handlers, force=True)

    # Set common library log levels
    logging.getLogger("pyroute2.netlink.core").setLevel(logging.WARNING)
    logging.getLogger("pyroute2.ndb").setLevel(logging.WARNING)
    logging.getLogger("scapy.runtime").setLevel(logging.ERROR)
    logging.getLogger("scapy.loading").setLevel(logging.ERROR)

    # Per-packet logging is only useful while debugging the driver itself
    packet_level = _env_level(
        "TETHERING_VERIFIER_PACKET_LOG_LEVEL",
        "DEBUG" if IS_DEV else logging.getLevelName(max(level, logging.INFO)),
    )
    logging.getLogger("tethering_verifier.lib.packets.packet_reader").setLevel(packet_level)
    logging.getLogger("tethering_verifier.lib.packets.tethering_tester").setLevel(packet_level)
    logging.getLogger("tethering_verifier.lib.tethering.event_tracker").setLevel(level)
    logging.getLogger("tethering_verifier.lib.scenario.ethernet_tethering").setLevel(level)
