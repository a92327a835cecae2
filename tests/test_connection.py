"""Tests for printer transports."""
import socket
import threading
from unittest.mock import MagicMock, patch

import pytest
import serial
import usb.core

from posprint.printer.connection import (
    NetworkTransport,
    PortKind,
    PrinterPort,
    SerialTransport,
    USBTransport,
    create_transport,
)
from posprint.printer.errors import Timeout, TransportError, UnsupportedPortType
from tests.conftest import make_usb_device


class TestPrinterPort:
    """Tests for PrinterPort."""

    def test_lan_defaults(self):
        port = PrinterPort.lan("192.168.1.50")
        assert port.kind is PortKind.LAN
        assert port.tcp_port == 9100
        assert port.key == "lan:192.168.1.50:9100"

    def test_kind_normalized_from_string(self):
        assert PrinterPort("network", address="10.0.0.2").kind is PortKind.LAN
        assert PrinterPort("serial", address="COM3").kind is PortKind.COM

    def test_unknown_kind(self):
        with pytest.raises(UnsupportedPortType):
            PrinterPort("bluetooth", address="aa:bb")

    def test_from_dict_usb_hex_ids(self):
        port = PrinterPort.from_dict({"kind": "USB", "vendor_id": "04b8", "product_id": "0e15"})
        assert (port.vendor_id, port.product_id) == (0x04B8, 0x0E15)
        assert port.to_dict() == {"kind": "USB", "vendor_id": "04b8", "product_id": "0e15"}

    def test_from_dict_legacy_keys(self):
        port = PrinterPort.from_dict({"type": "network", "ip": "10.0.0.9", "port": 9101})
        assert port == PrinterPort.lan("10.0.0.9", 9101)

    def test_from_dict_missing_address(self):
        with pytest.raises(UnsupportedPortType):
            PrinterPort.from_dict({"kind": "LAN"})

    def test_usb_key_ignores_attached_device(self):
        port = PrinterPort.usb(0x0525, 0xA700, make_usb_device(bus=2, address=7))
        assert port.key == "usb:0525:a700"

    def test_device_not_part_of_equality(self):
        assert PrinterPort.usb(1, 2, object()) == PrinterPort.usb(1, 2, object())


class TestCreateTransport:
    """Tests for the transport factory."""

    @pytest.mark.parametrize("port,cls", [
        (PrinterPort.lan("10.0.0.1"), NetworkTransport),
        (PrinterPort.usb(1, 2), USBTransport),
        (PrinterPort.serial("/dev/ttyUSB0"), SerialTransport),
    ])
    def test_kind_selects_transport(self, port, cls):
        assert isinstance(create_transport(port), cls)


class TestNetworkTransport:
    """Tests for the TCP transport against a fake printer."""

    def test_send_returns_after_grace_window(self, make_fake_printer):
        printer = make_fake_printer(identity=None)
        response = create_transport(printer.port, 1000).send(b"\x1b@hello", grace_ms=50)
        assert response == b""
        assert printer.wait_for(7) == b"\x1b@hello"

    def test_send_collects_response(self, fake_printer):
        response = create_transport(fake_printer.port, 1000).send(b"\x1d\x49\x01", grace_ms=300)
        assert response == b"HPRT TP80K\x00"

    def test_connection_refused(self, closed_port):
        transport = create_transport(PrinterPort.lan("127.0.0.1", closed_port), 500)
        with pytest.raises(TransportError):
            transport.send(b"x")
        assert not transport.is_connected()

    def test_read_timeout(self, make_fake_printer):
        printer = make_fake_printer(identity=None)
        with create_transport(printer.port, 1000) as transport:
            with pytest.raises(Timeout):
                transport.read(16, 50)

    def test_connect_timeout(self):
        transport = NetworkTransport(PrinterPort.lan("10.255.255.1"), 100)
        with patch("socket.create_connection", side_effect=socket.timeout):
            with pytest.raises(Timeout):
                transport.connect()

    def test_write_when_closed(self):
        with pytest.raises(TransportError):
            NetworkTransport(PrinterPort.lan("10.0.0.1")).write(b"x")


class TestPortLock:
    """Tests for one open connection per port."""

    def test_second_transport_waits_for_first(self, fake_printer):
        first = create_transport(fake_printer.port, 1000).connect()
        second = create_transport(fake_printer.port, 100)
        try:
            with pytest.raises(Timeout, match="busy"):
                second.connect()
        finally:
            first.close()
        second.connect()
        second.close()

    def test_lock_released_after_failed_open(self, closed_port):
        port = PrinterPort.lan("127.0.0.1", closed_port)
        for _ in range(2):
            with pytest.raises(TransportError):
                create_transport(port, 200).connect()

    def test_usb_ports_share_lock_across_sources(self, usb_device):
        detected = PrinterPort.usb(0x0525, 0xA700, usb_device)
        requested = PrinterPort.from_dict({"kind": "USB", "vendor_id": "0525", "product_id": "a700"})
        assert create_transport(detected)._lock is create_transport(requested)._lock

    def test_waiting_transport_proceeds_after_release(self, fake_printer):
        first = create_transport(fake_printer.port, 1000).connect()
        timer = threading.Timer(0.1, first.close)
        timer.start()
        second = create_transport(fake_printer.port, 2000).connect()
        assert second.is_connected()
        second.close()
        timer.join()


class TestUSBTransport:
    """Tests for the USB transport with a mocked pyusb device."""

    @pytest.fixture
    def endpoints(self):
        out_ep, in_ep = MagicMock(), MagicMock()
        out_ep.write.return_value = 3
        in_ep.read.return_value = [0x48, 0x50, 0x52, 0x54, 0x00]
        return out_ep, in_ep

    def test_open_write_read(self, usb_device, endpoints):
        out_ep, in_ep = endpoints
        usb_device.is_kernel_driver_active.return_value = True
        port = PrinterPort.usb(0x0525, 0xA700, usb_device)
        with patch("usb.util.find_descriptor", side_effect=[out_ep, in_ep]), \
                patch("usb.util.dispose_resources") as dispose:
            with create_transport(port, 1000) as transport:
                assert transport.write(b"abc") == 3
                assert transport.read(16, 100) == b"HPRT\x00"
            dispose.assert_called_once_with(usb_device)
        usb_device.detach_kernel_driver.assert_called_once_with(0)
        out_ep.write.assert_called_once_with(b"abc", timeout=1000)

    def test_device_not_found(self):
        with patch("usb.core.find", return_value=None):
            with pytest.raises(TransportError, match="not found"):
                USBTransport(PrinterPort.usb(1, 2)).connect()

    def test_missing_backend(self):
        with patch("usb.core.find", side_effect=usb.core.NoBackendError("No backend available")):
            with pytest.raises(TransportError, match="backend"):
                USBTransport(PrinterPort.usb(0x0525, 0xA700)).connect()

    def test_write_uses_given_timeout(self, usb_device, endpoints):
        out_ep, in_ep = endpoints
        port = PrinterPort.usb(0x0525, 0xA700, usb_device)
        with patch("usb.util.find_descriptor", side_effect=[out_ep, in_ep]), \
                patch("usb.util.dispose_resources"):
            with create_transport(port, 1000) as transport:
                transport.write(b"abc", timeout_ms=40)
        out_ep.write.assert_called_once_with(b"abc", timeout=40)

    def test_read_timeout(self, usb_device, endpoints):
        out_ep, in_ep = endpoints
        in_ep.read.side_effect = usb.core.USBTimeoutError("timeout")
        port = PrinterPort.usb(0x0525, 0xA700, usb_device)
        with patch("usb.util.find_descriptor", side_effect=[out_ep, in_ep]), \
                patch("usb.util.dispose_resources"):
            with create_transport(port, 1000) as transport:
                with pytest.raises(Timeout):
                    transport.read(8, 50)

    def test_missing_out_endpoint(self, usb_device):
        with patch("usb.util.find_descriptor", return_value=None), \
                patch("usb.util.dispose_resources"):
            with pytest.raises(TransportError, match="OUT endpoint"):
                USBTransport(PrinterPort.usb(1, 2, usb_device)).connect()


class TestSerialTransport:
    """Tests for the serial transport with a mocked pyserial port."""

    def test_send(self):
        fake = MagicMock()
        fake.write.return_value = 2
        with patch("serial.Serial", return_value=fake) as serial_cls:
            create_transport(PrinterPort.serial("/dev/ttyUSB0", 115200), 1000).send(b"hi", grace_ms=0)
        args, kwargs = serial_cls.call_args
        assert args == ("/dev/ttyUSB0", 115200)
        assert kwargs["write_timeout"] == 1.0
        fake.write.assert_called_once_with(b"hi")
        fake.close.assert_called_once()

    def test_open_failure(self):
        with patch("serial.Serial", side_effect=serial.SerialException("no such port")):
            with pytest.raises(TransportError):
                create_transport(PrinterPort.serial("/dev/nope")).connect()

    def test_empty_read_is_timeout(self):
        fake = MagicMock()
        fake.read.return_value = b""
        with patch("serial.Serial", return_value=fake):
            with create_transport(PrinterPort.serial("COM3"), 1000) as transport:
                with pytest.raises(Timeout):
                    transport.read(1, 10)

    def test_invalid_baudrate(self):
        with patch("serial.Serial", side_effect=ValueError("Not a valid baudrate: -1")):
            with pytest.raises(TransportError, match="baudrate"):
                create_transport(PrinterPort.serial("/dev/ttyUSB0", -1)).connect()
