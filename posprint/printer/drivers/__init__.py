"""Per-model printer drivers."""
from posprint.printer.drivers.base import LanConfig, PrinterDriver, build_set_ip_command, match_identity
from posprint.printer.drivers.hprt_tp80k import HPRTTP80KDriver
from posprint.printer.drivers.registry import DriverRegistry
from posprint.printer.drivers.xprinter_xp_v330l import XprinterXPV330LDriver

DRIVER_CLASSES = (HPRTTP80KDriver, XprinterXPV330LDriver)


def default_registry(accept_silent: bool = True, width: int = 32) -> DriverRegistry:
    """Registry of all built-in drivers in matching order."""
    return DriverRegistry((cls(width=width) for cls in DRIVER_CLASSES), accept_silent=accept_silent)


__all__ = [
    "DRIVER_CLASSES",
    "DriverRegistry",
    "HPRTTP80KDriver",
    "LanConfig",
    "PrinterDriver",
    "XprinterXPV330LDriver",
    "build_set_ip_command",
    "default_registry",
    "match_identity",
]
