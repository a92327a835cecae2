"""Pytest configuration and fixtures."""
import socket
import threading
import time
from unittest.mock import MagicMock

import pytest

from posprint import create_app, db
from posprint.config import PrinterSettings
from posprint.printer.connection import PrinterPort
from posprint.printer.escpos import CommandEncoder

FAST_SETTINGS = PrinterSettings(
    discovery_timeout_ms=200,
    identify_timeout_ms=200,
    lan_ack_grace_ms=50,
    transport_timeout_ms=1000,
)


class FakePrinter:
    """Threaded TCP server speaking just enough ESC/POS to be identified.

    Replies to GS I 1 with ``identity`` and to DLE EOT 1 with ``status``;
    None keeps the printer silent. Everything received is recorded.
    """

    def __init__(self, identity=b"HPRT TP80K\x00", status=None):
        self.identity = identity
        self.status = status
        self.received = bytearray()
        self.connections = 0
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self._sock.settimeout(0.1)
        self.tcp_port = self._sock.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def port(self) -> PrinterPort:
        return PrinterPort.lan("127.0.0.1", self.tcp_port)

    def start(self):
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()
        self._thread.join(timeout=2)
        self._sock.close()

    def wait_for(self, n_bytes: int, timeout: float = 2.0) -> bytes:
        """Wait until at least n_bytes were received and return them all."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                if len(self.received) >= n_bytes:
                    break
            time.sleep(0.01)
        with self._lock:
            return bytes(self.received)

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            with self._lock:
                self.connections += 1
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn):
        conn.settimeout(0.1)
        with conn:
            while not self._stop.is_set():
                try:
                    chunk = conn.recv(4096)
                except socket.timeout:
                    continue
                except OSError:
                    break
                if not chunk:
                    break
                with self._lock:
                    self.received += chunk
                if CommandEncoder.IDENTITY_QUERY in chunk and self.identity is not None:
                    conn.sendall(self.identity)
                elif CommandEncoder.STATUS_QUERY in chunk and self.status is not None:
                    conn.sendall(self.status)


@pytest.fixture
def fake_printer():
    """A fake HPRT printer on an ephemeral localhost port."""
    printer = FakePrinter().start()
    yield printer
    printer.stop()


@pytest.fixture
def make_fake_printer():
    """Factory for fake printers with custom replies."""
    printers = []

    def factory(**kwargs):
        printer = FakePrinter(**kwargs).start()
        printers.append(printer)
        return printer

    yield factory
    for printer in printers:
        printer.stop()


@pytest.fixture
def closed_port():
    """A localhost TCP port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return port


def make_usb_device(vendor_id=0x0525, product_id=0xA700, bus=1, address=4):
    """MagicMock standing in for a pyusb device."""
    device = MagicMock()
    device.idVendor = vendor_id
    device.idProduct = product_id
    device.bus = bus
    device.address = address
    device.is_kernel_driver_active.return_value = False
    return device


@pytest.fixture
def usb_device():
    return make_usb_device()


@pytest.fixture
def settings():
    return FAST_SETTINGS


@pytest.fixture
def app():
    """Flask application in testing configuration."""
    app = create_app("testing")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
