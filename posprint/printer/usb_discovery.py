"""USB printer detection and network setup over USB."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import usb.core

from posprint.printer.connection import PrinterPort, create_transport
from posprint.printer.drivers import DriverRegistry, PrinterDriver
from posprint.printer.errors import PrinterError
from posprint.printer.identification import IDENTIFY_TIMEOUT_MS, TransportFactory

logger = logging.getLogger(__name__)

DEFAULT_TARGET_IP = "192.168.1.250"


@dataclass(frozen=True)
class KnownPrinterSignature:
    vendor_id: int
    product_id: int
    model_name: str

    def matches(self, device) -> bool:
        return device.idVendor == self.vendor_id and device.idProduct == self.product_id

    def to_dict(self) -> dict:
        return {
            "vendor_id": f"{self.vendor_id:04x}",
            "product_id": f"{self.product_id:04x}",
            "model_name": self.model_name,
        }


KNOWN_USB_PRINTERS = (
    KnownPrinterSignature(0x04B8, 0x0202, "Epson TM-T20"),
    KnownPrinterSignature(0x04B8, 0x0E15, "Epson TM-T88V"),
    KnownPrinterSignature(0x154F, 0x154F, "Xprinter XP-58/80 Series"),
    KnownPrinterSignature(0x0525, 0xA700, "HPRT TP Series"),
    KnownPrinterSignature(0x20D1, 0x7008, "Generic Thermal Printer"),
)


@dataclass(frozen=True)
class DetectedUSBPrinter:
    """A connected USB device matching a known printer signature."""

    signature: KnownPrinterSignature
    port: PrinterPort

    def to_dict(self) -> dict:
        result = self.signature.to_dict()
        bus = getattr(self.port.device, "bus", None)
        if bus is not None:
            result.update(bus=bus, address=getattr(self.port.device, "address", None))
        return result


@dataclass
class ConfiguredPrinter:
    """A printer bound to a driver by auto-configuration."""

    driver: PrinterDriver
    port: PrinterPort
    configured_via_usb: bool = False
    network_verified: bool = False
    usb_info: Optional[KnownPrinterSignature] = None

    def to_dict(self) -> dict:
        return {
            "model": self.driver.model_name,
            "manufacturer": self.driver.manufacturer,
            "port": self.port.to_dict(),
            "configured_via_usb": self.configured_via_usb,
            "network_verified": self.network_verified,
            "usb_info": self.usb_info.to_dict() if self.usb_info else None,
        }


def signature_for(device) -> Optional[KnownPrinterSignature]:
    for signature in KNOWN_USB_PRINTERS:
        if signature.matches(device):
            return signature
    return None


def find_known_devices() -> List[DetectedUSBPrinter]:
    """Scan the USB bus for devices in the known printer table."""
    try:
        devices = list(usb.core.find(find_all=True))
    except (usb.core.USBError, usb.core.NoBackendError) as e:
        logger.error("USB enumeration failed: %s", e)
        return []
    logger.info("Found %d USB devices", len(devices))

    found = []
    for device in devices:
        signature = signature_for(device)
        if signature is None:
            continue
        logger.info("Found %s at %04x:%04x", signature.model_name, device.idVendor, device.idProduct)
        found.append(DetectedUSBPrinter(signature, PrinterPort.usb(device.idVendor, device.idProduct, device)))
    return found


def configure_usb_printer(registry: DriverRegistry,
                          test_print: Callable[[PrinterPort, PrinterDriver], bool],
                          target_ip: str = DEFAULT_TARGET_IP,
                          timeout_ms: int = IDENTIFY_TIMEOUT_MS,
                          transport_factory: TransportFactory = create_transport,
                          sleep: Callable[[float], None] = time.sleep,
                          devices: Optional[List[DetectedUSBPrinter]] = None) -> Optional[ConfiguredPrinter]:
    """Find a supported USB printer and move it onto the network.

    Each known device is offered to the drivers in registry order. The first
    accepting driver's set-IP command is sent over USB, the printer is given
    its restart delay, then a test page is printed at the new LAN address.

    Args:
        registry: Drivers to try
        test_print: Prints a test page at a LAN port, returning success
        target_ip: Address to assign to the printer
        timeout_ms: Identification window per query
        transport_factory: Builds transports for USB ports
        sleep: Waits out the restart delay, in seconds
        devices: Pre-detected devices; scanned from the bus when None

    Returns:
        ConfiguredPrinter with network_verified set when the LAN test print
        succeeded, or None if no device could be configured.
    """
    devices = find_known_devices() if devices is None else devices
    if not devices:
        logger.info("No known USB printers found")
        return None

    for detected in devices:
        port = detected.port
        logger.info("Identifying %s on %s", detected.signature.model_name, port)
        for driver in registry:
            try:
                accepted = driver.identify(port, timeout_ms, transport_factory, registry.accept_silent)
            except PrinterError as e:
                logger.warning("Identification of %s with %s failed: %s", port, driver.model_name, e)
                continue
            if not accepted:
                continue

            logger.info("Configuring %s for network address %s via USB", driver.model_name, target_ip)
            try:
                transport_factory(port, timeout_ms).send(driver.get_set_ip_command(target_ip), grace_ms=0)
            except PrinterError as e:
                logger.error("Sending network configuration to %s failed: %s", port, e)
                break

            delay_ms = driver.get_restart_delay()
            logger.info("Waiting %dms for printer restart", delay_ms)
            sleep(delay_ms / 1000)

            lan_port = PrinterPort.lan(target_ip)
            verified = test_print(lan_port, driver)
            if verified:
                logger.info("USB printer configured for network access at %s", target_ip)
            else:
                logger.warning("Network test at %s failed, printer may still be configured", target_ip)
            return ConfiguredPrinter(driver, lan_port, configured_via_usb=True,
                                     network_verified=verified, usb_info=detected.signature)

        logger.info("Could not configure %s with available drivers", detected.signature.model_name)

    logger.info("No USB printers could be configured")
    return None
