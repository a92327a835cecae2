"""Tests for USB printer detection and USB network setup."""
from unittest.mock import MagicMock, patch

import usb.core

from posprint.printer.connection import PortKind, PrinterPort
from posprint.printer.drivers import default_registry
from posprint.printer.usb_discovery import (
    KNOWN_USB_PRINTERS,
    DetectedUSBPrinter,
    configure_usb_printer,
    find_known_devices,
    signature_for,
)
from tests.conftest import make_usb_device


class TestKnownPrinters:
    """Tests for the known printer table."""

    def test_table(self):
        ids = {(s.vendor_id, s.product_id): s.model_name for s in KNOWN_USB_PRINTERS}
        assert ids[(0x04B8, 0x0202)] == "Epson TM-T20"
        assert ids[(0x04B8, 0x0E15)] == "Epson TM-T88V"
        assert ids[(0x154F, 0x154F)] == "Xprinter XP-58/80 Series"
        assert ids[(0x0525, 0xA700)] == "HPRT TP Series"
        assert ids[(0x20D1, 0x7008)] == "Generic Thermal Printer"

    def test_signature_lookup(self):
        assert signature_for(make_usb_device(0x154F, 0x154F)).model_name == "Xprinter XP-58/80 Series"
        assert signature_for(make_usb_device(0x046D, 0xC52B)) is None


class TestFindKnownDevices:
    """Tests for USB bus scanning."""

    def test_filters_unknown_devices(self):
        devices = [make_usb_device(0x046D, 0xC52B), make_usb_device(0x0525, 0xA700)]
        with patch("usb.core.find", return_value=iter(devices)):
            found = find_known_devices()
        assert len(found) == 1
        assert found[0].port.kind is PortKind.USB
        assert found[0].port.device is devices[1]
        assert found[0].to_dict()["model_name"] == "HPRT TP Series"

    def test_no_backend(self):
        with patch("usb.core.find", side_effect=usb.core.NoBackendError("No backend available")):
            assert find_known_devices() == []


class TestConfigureUSBPrinter:
    """Tests for moving a USB printer onto the network."""

    def detected(self, vendor_id=0x0525, product_id=0xA700):
        device = make_usb_device(vendor_id, product_id)
        return DetectedUSBPrinter(signature_for(device),
                                  PrinterPort.usb(vendor_id, product_id, device))

    def test_configures_first_accepting_driver(self):
        transport = MagicMock()
        registry = default_registry()
        test_print = MagicMock(return_value=True)
        sleep = MagicMock()

        with patch.object(registry.drivers[0], "identify", return_value=False), \
                patch.object(registry.drivers[1], "identify", return_value=True):
            printer = configure_usb_printer(
                registry, test_print, target_ip="192.168.1.250",
                transport_factory=lambda port, timeout: transport,
                sleep=sleep, devices=[self.detected(0x154F, 0x154F)],
            )

        assert printer.driver is registry.drivers[1]
        assert printer.configured_via_usb
        assert printer.network_verified
        assert printer.port.address == "192.168.1.250"
        assert printer.usb_info.model_name == "Xprinter XP-58/80 Series"
        transport.send.assert_called_once_with(registry.drivers[1].get_set_ip_command("192.168.1.250"),
                                               grace_ms=0)
        sleep.assert_called_once_with(15.0)
        test_print.assert_called_once_with(printer.port, registry.drivers[1])

    def test_failed_network_test_still_returns_printer(self):
        registry = default_registry()
        with patch.object(registry.drivers[0], "identify", return_value=True):
            printer = configure_usb_printer(
                registry, MagicMock(return_value=False),
                transport_factory=lambda port, timeout: MagicMock(),
                sleep=MagicMock(), devices=[self.detected()],
            )
        assert printer.configured_via_usb
        assert not printer.network_verified
        assert printer.to_dict()["model"] == "HPRT TP80K"

    def test_no_driver_accepts(self):
        registry = default_registry()
        test_print = MagicMock()
        with patch.object(registry.drivers[0], "identify", return_value=False), \
                patch.object(registry.drivers[1], "identify", return_value=False):
            printer = configure_usb_printer(registry, test_print, sleep=MagicMock(),
                                            devices=[self.detected()])
        assert printer is None
        test_print.assert_not_called()

    def test_no_devices(self):
        with patch("usb.core.find", return_value=iter([])):
            assert configure_usb_printer(default_registry(), MagicMock()) is None

