"""Printer auto-configuration and print job orchestration.

Auto-configuration walks a ladder of discovery methods and stops at the first
printer a driver accepts:

1. Scan the local networks for port 9100 and identify each candidate.
2. Probe each driver's factory-default LAN address.
3. Fall back to USB, moving the printer onto the network over the cable.

A printer that was not found through DHCP is then given the target address,
allowed to restart, and a test page is printed there. Nothing is persisted.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from posprint.config import PrinterSettings
from posprint.printer.connection import PortKind, PrinterPort, create_transport
from posprint.printer.discovery import discover_printers, probe_addresses
from posprint.printer.drivers import DriverRegistry, PrinterDriver, default_registry
from posprint.printer.errors import PrinterError, ProtocolMismatch
from posprint.printer.identification import TransportFactory
from posprint.printer.usb_discovery import ConfiguredPrinter, configure_usb_printer

logger = logging.getLogger(__name__)

TEST_PRINT_TEMPLATE = {
    "header": [{"type": "test_print"}],
    "body": [
        {"type": "text", "content": "Test Print Success!", "alignment": "center", "style": "bold"},
        {"type": "text", "content": "{{ port }}", "alignment": "center"},
    ],
    "footer": [{"type": "cut_paper", "cut_type": "partial"}],
}


@dataclass
class PrintResult:
    """Outcome of a print job. Failures are reported here, never raised."""

    success: bool
    message: str
    bytes_sent: int = 0
    response: bytes = b""
    model: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "bytes_sent": self.bytes_sent,
            "response": self.response.hex() if self.response else None,
            "model": self.model,
        }


def send_commands(port: PrinterPort, data: bytes, settings: Optional[PrinterSettings] = None,
                  transport_factory: TransportFactory = create_transport,
                  model: Optional[str] = None) -> PrintResult:
    """Transmit a finished command buffer to a printer."""
    settings = settings or PrinterSettings()
    try:
        transport = transport_factory(port, settings.transport_timeout_ms)
        grace_ms = settings.lan_ack_grace_ms if port.kind is PortKind.LAN else 0
        response = transport.send(data, grace_ms=grace_ms)
    except PrinterError as e:
        logger.error("Print job to %s failed: %s", port, e)
        return PrintResult(False, str(e), model=model)
    return PrintResult(True, f"Sent {len(data)} bytes to {port}", len(data), response, model)


class PrinterController:
    """Binds devices to drivers and sends jobs to them."""

    def __init__(self, registry: Optional[DriverRegistry] = None,
                 settings: Optional[PrinterSettings] = None,
                 transport_factory: TransportFactory = create_transport):
        self.settings = settings or PrinterSettings()
        self.registry = registry or default_registry(self.settings.accept_silent, self.settings.width)
        self.transport_factory = transport_factory

    def resolve_driver(self, port: PrinterPort, model: Optional[str] = None) -> PrinterDriver:
        """Driver for a job: the named model, the identified one, or blind transmission.

        Raises:
            ProtocolMismatch: An explicitly named model is unknown.
        """
        if model:
            return self.registry.get(model)
        try:
            driver, _ = self.registry.select(port, self.settings.identify_timeout_ms,
                                             self.transport_factory)
        except ProtocolMismatch as e:
            driver = self.registry.default
            logger.warning("%s; sending blind with the %s dialect", e, driver.model_name)
        return driver

    def print_receipt(self, port: PrinterPort, template: Any, receipt_data: Optional[Mapping] = None,
                      driver: Optional[PrinterDriver] = None, model: Optional[str] = None) -> PrintResult:
        """Render a receipt with the device's driver and send it."""
        try:
            driver = driver or self.resolve_driver(port, model)
            data = driver.generate_print_commands(receipt_data, template)
        except PrinterError as e:
            logger.error("Could not prepare print job for %s: %s", port, e)
            return PrintResult(False, str(e), model=driver.model_name if driver else None)
        return send_commands(port, data, self.settings, self.transport_factory, driver.model_name)

    def test_print(self, port: PrinterPort, driver: Optional[PrinterDriver] = None) -> PrintResult:
        return self.print_receipt(port, TEST_PRINT_TEMPLATE, {"port": str(port)}, driver=driver)

    def open_drawer(self, port: PrinterPort, pin: int = 0, on_time: int = 50,
                    off_time: int = 200) -> PrintResult:
        encoder = self.registry.default.encoder()
        try:
            data = encoder.drawer_pulse(pin, on_time, off_time)
        except PrinterError as e:
            return PrintResult(False, str(e))
        return send_commands(port, data, self.settings, self.transport_factory)

    def sound_buzzer(self, port: PrinterPort, times: int = 2, duration: int = 2) -> PrintResult:
        encoder = self.registry.default.encoder()
        try:
            data = encoder.buzzer(times, duration)
        except PrinterError as e:
            return PrintResult(False, str(e))
        return send_commands(port, data, self.settings, self.transport_factory)


class AutoConfigurator:
    """Finds a supported printer using the discovery ladder and prepares it for use."""

    def __init__(self, controller: Optional[PrinterController] = None,
                 network_range: Optional[str] = None,
                 discover: Callable = discover_printers,
                 probe: Callable = probe_addresses,
                 configure_usb: Callable = configure_usb_printer,
                 sleep: Callable[[float], None] = time.sleep):
        self.controller = controller or PrinterController()
        self.network_range = network_range
        self._discover = discover
        self._probe = probe
        self._configure_usb = configure_usb
        self._sleep = sleep
        self.found: Optional[ConfiguredPrinter] = None

    @property
    def registry(self) -> DriverRegistry:
        return self.controller.registry

    @property
    def settings(self) -> PrinterSettings:
        return self.controller.settings

    def run(self) -> Optional[ConfiguredPrinter]:
        """Run the whole ladder; returns the configured printer or None."""
        logger.info("Starting printer auto-configuration")

        printer = self.find_in_local_lan()
        if printer:
            logger.info("Printer found via DHCP: %s at %s", printer.driver.model_name, printer.port)
            return self.finalize(printer)

        printer = self.find_by_default_lan()
        if printer:
            logger.info("Printer found at factory default address: %s at %s",
                        printer.driver.model_name, printer.port)
            return self.finalize(printer)

        logger.info("Attempting USB printer discovery and configuration")
        printer = self._configure_usb(
            self.registry,
            self._verify_test_print,
            target_ip=self.settings.usb_target_ip,
            timeout_ms=self.settings.identify_timeout_ms,
            transport_factory=self.controller.transport_factory,
            sleep=self._sleep,
        )
        if printer:
            logger.info("Printer configured via USB: %s", printer.driver.model_name)
            return self.finalize(printer)

        logger.warning("Could not find a supported printer using automatic methods")
        return None

    def find_in_local_lan(self) -> Optional[ConfiguredPrinter]:
        """Identify every device answering on the printing port in the local networks."""
        candidates = self._discover(
            self.network_range,
            port=self.settings.tcp_port,
            timeout_ms=self.settings.discovery_timeout_ms,
            scan_window_prefix=self.settings.scan_window_prefix,
        )
        for ip in candidates:
            port = PrinterPort.lan(ip, self.settings.tcp_port)
            driver = self._select(port)
            if driver:
                return ConfiguredPrinter(driver, port)
        return None

    def find_by_default_lan(self) -> Optional[ConfiguredPrinter]:
        """Probe each driver's factory-default address.

        The host must already be reachable on the printer's default subnet;
        changing the host's own address is left to the operator.
        """
        for driver in self.registry:
            lan = driver.get_default_lan_config()
            if lan is None:
                continue
            logger.info("Probing %s factory default %s", driver.model_name, lan.ip)
            if not self._probe([lan.ip], self.settings.tcp_port, self.settings.discovery_timeout_ms):
                continue
            port = PrinterPort.lan(lan.ip, self.settings.tcp_port)
            if driver.identify(port, self.settings.identify_timeout_ms,
                               self.controller.transport_factory, self.registry.accept_silent):
                return ConfiguredPrinter(driver, port)
        return None

    def _select(self, port: PrinterPort) -> Optional[PrinterDriver]:
        return self.registry.find(port, self.settings.identify_timeout_ms,
                                  self.controller.transport_factory)

    def _found_via_dhcp(self, printer: ConfiguredPrinter) -> bool:
        if printer.configured_via_usb:
            return False
        defaults = {d.get_default_lan_config().ip for d in self.registry if d.get_default_lan_config()}
        return printer.port.address not in defaults

    def _verify_test_print(self, port: PrinterPort, driver: PrinterDriver) -> bool:
        return self.controller.test_print(port, driver).success

    def finalize(self, printer: ConfiguredPrinter) -> ConfiguredPrinter:
        """Move a printer to the target address if needed and print a test page."""
        if printer.configured_via_usb:
            # Already re-addressed and test-printed over USB
            self.found = printer
            return printer

        driver = printer.driver
        if not self._found_via_dhcp(printer):
            target_ip = self.settings.usb_target_ip
            logger.info("Configuring %s to new address %s", driver.model_name, target_ip)
            result = send_commands(printer.port, driver.get_set_ip_command(target_ip),
                                   self.settings, self.controller.transport_factory, driver.model_name)
            if not result.success:
                logger.error("Could not change address of %s: %s", printer.port, result.message)
                self.found = printer
                return printer
            delay_ms = driver.get_restart_delay()
            logger.info("Waiting %dms for printer restart", delay_ms)
            self._sleep(delay_ms / 1000)
            printer = ConfiguredPrinter(driver, PrinterPort.lan(target_ip, self.settings.tcp_port))
        else:
            logger.info("Using existing DHCP address %s", printer.port.address)

        printer.network_verified = self._verify_test_print(printer.port, driver)
        logger.info("Configuration of %s at %s complete (verified: %s)",
                    driver.model_name, printer.port, printer.network_verified)
        self.found = printer
        return printer
