"""Ordered registry of printer drivers."""
import logging
from typing import Iterable, Optional, Tuple

from posprint.printer.connection import PrinterPort, create_transport
from posprint.printer.drivers.base import PrinterDriver
from posprint.printer.errors import ProtocolMismatch
from posprint.printer.identification import (
    IDENTIFY_TIMEOUT_MS,
    IdentificationResult,
    TransportFactory,
    identify_device,
)

logger = logging.getLogger(__name__)


class DriverRegistry:
    """Immutable, ordered collection of drivers.

    Order matters: a silent device is accepted by every driver when
    accept_silent is set, so the first registered driver wins.
    """

    def __init__(self, drivers: Iterable[PrinterDriver], accept_silent: bool = True):
        self._drivers: Tuple[PrinterDriver, ...] = tuple(drivers)
        if not self._drivers:
            raise ValueError("A driver registry needs at least one driver")
        self.accept_silent = accept_silent

    @property
    def drivers(self) -> Tuple[PrinterDriver, ...]:
        return self._drivers

    @property
    def default(self) -> PrinterDriver:
        return self._drivers[0]

    def __iter__(self):
        return iter(self._drivers)

    def __len__(self):
        return len(self._drivers)

    def get(self, model_name: str) -> PrinterDriver:
        """Look up a driver by model name, case-insensitively."""
        wanted = str(model_name).strip().lower()
        for driver in self._drivers:
            if driver.model_name.lower() == wanted:
                return driver
        raise ProtocolMismatch(f"Unknown printer model: {model_name!r}")

    def match(self, result: IdentificationResult) -> Optional[PrinterDriver]:
        """First driver accepting an identification result, or None."""
        for driver in self._drivers:
            if driver.matches(result, self.accept_silent):
                return driver
        return None

    def select(self, port: PrinterPort, timeout_ms: int = IDENTIFY_TIMEOUT_MS,
               transport_factory: TransportFactory = create_transport
               ) -> Tuple[PrinterDriver, IdentificationResult]:
        """Identify a device once and bind it to the first accepting driver.

        Raises:
            ProtocolMismatch: No driver accepts the device; the result is attached.
        """
        result = identify_device(port, timeout_ms, transport_factory)
        driver = self.match(result)
        if driver is None:
            logger.info("No driver accepts %s (%s)", port, result.status.value)
            raise ProtocolMismatch(f"No driver accepts device at {port}: {result.status.value}",
                                   result=result)
        logger.info("Selected %s for %s (%s)", driver.model_name, port, result.status.value)
        return driver, result

    def find(self, port: PrinterPort, timeout_ms: int = IDENTIFY_TIMEOUT_MS,
             transport_factory: TransportFactory = create_transport) -> Optional[PrinterDriver]:
        """Like select() but returns None instead of raising."""
        try:
            driver, _ = self.select(port, timeout_ms, transport_factory)
        except ProtocolMismatch:
            return None
        return driver

    def to_list(self) -> list:
        return [driver.to_dict() for driver in self._drivers]
