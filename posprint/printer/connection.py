"""Printer transports for Network, USB, and Serial interfaces."""
import enum
import logging
import socket
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import serial
import usb.core
import usb.util

from posprint.printer.errors import Timeout, TransportError, UnsupportedPortType

logger = logging.getLogger(__name__)

RAW_PRINT_PORT = 9100
DEFAULT_TIMEOUT_MS = 5000
LAN_ACK_GRACE_MS = 1000


class PortKind(str, enum.Enum):
    """Physical attachment of a printer."""

    LAN = "LAN"
    USB = "USB"
    COM = "COM"

    @classmethod
    def parse(cls, value: Any) -> "PortKind":
        if isinstance(value, cls):
            return value
        name = str(value or "").strip().upper()
        name = {"NETWORK": "LAN", "TCP": "LAN", "SERIAL": "COM"}.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedPortType(f"Unknown printer port type: {value!r}") from None


def _parse_id(value: Any) -> Optional[int]:
    """Parse a USB vendor/product ID given as int or hex string."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    return int(str(value), 16)


@dataclass(frozen=True)
class PrinterPort:
    """Identifies one physical printer and how to reach it."""

    kind: PortKind
    address: Optional[str] = None  # IP for LAN, device path for COM
    tcp_port: int = RAW_PRINT_PORT
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None
    baudrate: int = 9600
    device: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "kind", PortKind.parse(self.kind))

    @classmethod
    def lan(cls, ip: str, tcp_port: int = RAW_PRINT_PORT) -> "PrinterPort":
        return cls(PortKind.LAN, address=ip, tcp_port=tcp_port)

    @classmethod
    def usb(cls, vendor_id: int, product_id: int, device: Any = None) -> "PrinterPort":
        return cls(PortKind.USB, vendor_id=vendor_id, product_id=product_id, device=device)

    @classmethod
    def serial(cls, path: str, baudrate: int = 9600) -> "PrinterPort":
        return cls(PortKind.COM, address=path, baudrate=baudrate)

    @classmethod
    def from_dict(cls, config: dict) -> "PrinterPort":
        """Build a port from a config dict.

        Args:
            config: Dictionary with 'kind' (or 'type') and connection parameters.
                - LAN: {"kind": "LAN", "address": "192.168.1.100", "tcp_port": 9100}
                - USB: {"kind": "USB", "vendor_id": "04b8", "product_id": "0202"}
                - COM: {"kind": "COM", "address": "/dev/ttyUSB0", "baudrate": 9600}

        Returns:
            PrinterPort instance.
        """
        if not isinstance(config, dict):
            raise UnsupportedPortType("Port configuration must be an object")
        kind = PortKind.parse(config.get("kind") or config.get("type"))
        address = config.get("address") or config.get("ip") or config.get("path")

        if kind is PortKind.LAN:
            if not address:
                raise UnsupportedPortType("LAN port requires an address")
            return cls.lan(address, int(config.get("tcp_port") or config.get("port") or RAW_PRINT_PORT))
        if kind is PortKind.USB:
            vendor_id = _parse_id(config.get("vendor_id"))
            product_id = _parse_id(config.get("product_id"))
            if vendor_id is None or product_id is None:
                raise UnsupportedPortType("USB port requires vendor_id and product_id")
            return cls.usb(vendor_id, product_id)
        if not address:
            raise UnsupportedPortType("COM port requires a device path")
        return cls.serial(address, int(config.get("baudrate", 9600)))

    @property
    def key(self) -> str:
        """Stable identity used to serialize access to the device."""
        if self.kind is PortKind.LAN:
            return f"lan:{self.address}:{self.tcp_port}"
        if self.kind is PortKind.USB:
            # vid:pid only; a port built from a dict opens the first match by ID
            return f"usb:{self.vendor_id or 0:04x}:{self.product_id or 0:04x}"
        return f"com:{self.address}"

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        result = {"kind": self.kind.value}
        if self.kind is PortKind.LAN:
            result.update(address=self.address, tcp_port=self.tcp_port)
        elif self.kind is PortKind.USB:
            result.update(
                vendor_id=f"{self.vendor_id or 0:04x}",
                product_id=f"{self.product_id or 0:04x}",
            )
        else:
            result.update(address=self.address, baudrate=self.baudrate)
        return result

    def __str__(self):
        return self.key


# One lock per physical device; a transport holds it while open.
_registry_lock = threading.Lock()
_port_locks: dict = {}


def _port_lock(key: str) -> threading.Lock:
    with _registry_lock:
        return _port_locks.setdefault(key, threading.Lock())


class Transport(ABC):
    """Abstract base class for printer transports.

    A transport is bound to one PrinterPort. At most one transport per port
    may be open at a time: connect() waits for the port's lock within the
    connect deadline and raises Timeout if another job still holds it.
    """

    def __init__(self, port: PrinterPort, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.port = port
        self.timeout_ms = timeout_ms
        self._lock = _port_lock(port.key)
        self._holding = False

    def connect(self, timeout_ms: Optional[int] = None) -> "Transport":
        """Acquire the device and open the connection."""
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        started = time.monotonic()
        if not self._lock.acquire(timeout=max(timeout_ms, 0) / 1000):
            raise Timeout(f"{self.port} is busy with another job")
        self._holding = True
        remaining = timeout_ms - int((time.monotonic() - started) * 1000)
        try:
            self._open(max(remaining, 1))
        except BaseException:
            self._release()
            raise
        logger.debug("Opened %s", self.port)
        return self

    def close(self) -> None:
        """Close the connection and release the device."""
        try:
            self._close()
        finally:
            self._release()

    def _release(self) -> None:
        if self._holding:
            self._holding = False
            self._lock.release()

    @abstractmethod
    def _open(self, timeout_ms: int) -> None:
        """Open the underlying connection."""

    @abstractmethod
    def _close(self) -> None:
        """Close the underlying connection."""

    @abstractmethod
    def write(self, data: bytes, timeout_ms: Optional[int] = None) -> int:
        """Send data to the printer; timeout_ms overrides the transport timeout."""

    @abstractmethod
    def read(self, max_bytes: int = 256, timeout_ms: Optional[int] = None) -> bytes:
        """Read up to max_bytes; raises Timeout when nothing arrives in time."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the transport is open."""

    def await_response(self, grace_ms: int) -> bytes:
        """Collect whatever the device sends back after a job."""
        return b""

    def send(self, data: bytes, grace_ms: int = LAN_ACK_GRACE_MS) -> bytes:
        """Connect, send data, wait for the acknowledgement window, and disconnect.

        Returns any bytes the device sent back (usually none).
        """
        with self:
            self.write(data)
            logger.info("Sent %d bytes to %s", len(data), self.port)
            return self.await_response(grace_ms)

    def __enter__(self) -> "Transport":
        if not self.is_connected():
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class NetworkTransport(Transport):
    """TCP/IP raw printing port connection."""

    def __init__(self, port: PrinterPort, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        super().__init__(port, timeout_ms)
        self._socket: Optional[socket.socket] = None

    def _open(self, timeout_ms: int) -> None:
        address = (self.port.address, self.port.tcp_port)
        try:
            self._socket = socket.create_connection(address, timeout=timeout_ms / 1000)
        except socket.timeout:
            raise Timeout(f"Connection to {self.port.address}:{self.port.tcp_port} timed out "
                          f"after {timeout_ms}ms") from None
        except OSError as e:
            raise TransportError(f"Failed to connect to {self.port.address}:{self.port.tcp_port}: {e}") from e

    def _close(self) -> None:
        if self._socket:
            try:
                self._socket.close()
            except OSError as e:
                logger.debug("Error closing socket to %s: %s", self.port, e)
            self._socket = None

    def write(self, data: bytes, timeout_ms: Optional[int] = None) -> int:
        if not self._socket:
            raise TransportError("Not connected")
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        try:
            self._socket.settimeout(max(timeout_ms, 1) / 1000)
            self._socket.sendall(data)
        except socket.timeout:
            raise Timeout(f"Write to {self.port} timed out") from None
        except OSError as e:
            raise TransportError(f"Failed to send data: {e}") from e
        return len(data)

    def read(self, max_bytes: int = 256, timeout_ms: Optional[int] = None) -> bytes:
        if not self._socket:
            raise TransportError("Not connected")
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        try:
            self._socket.settimeout(max(timeout_ms, 1) / 1000)
            return self._socket.recv(max_bytes)
        except socket.timeout:
            raise Timeout(f"No data from {self.port} within {timeout_ms}ms") from None
        except OSError as e:
            raise TransportError(f"Failed to read data: {e}") from e

    def is_connected(self) -> bool:
        return self._socket is not None

    def await_response(self, grace_ms: int) -> bytes:
        """Wait out the grace window after a write.

        Most firmwares never acknowledge a print job, so silence for the
        whole window counts as success. Any bytes received are returned.
        """
        deadline = time.monotonic() + grace_ms / 1000
        received = bytearray()
        while True:
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                break
            try:
                chunk = self.read(1024, remaining_ms)
            except Timeout:
                break
            if not chunk:  # peer closed
                break
            received += chunk
        if received:
            logger.debug("Received %d bytes from %s after write", len(received), self.port)
        return bytes(received)

    def __repr__(self):
        return f"NetworkTransport({self.port.address}:{self.port.tcp_port})"


class USBTransport(Transport):
    """USB bulk endpoint connection."""

    def __init__(self, port: PrinterPort, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        super().__init__(port, timeout_ms)
        self._device = None
        self._endpoint_out = None
        self._endpoint_in = None

    def _open(self, timeout_ms: int) -> None:
        try:
            self._device = self.port.device or usb.core.find(
                idVendor=self.port.vendor_id, idProduct=self.port.product_id
            )
        except usb.core.NoBackendError as e:
            raise TransportError(f"No USB backend available: {e}") from e
        except usb.core.USBError as e:
            raise TransportError(f"USB enumeration failed: {e}") from e
        if not self._device:
            raise TransportError(
                f"USB device {self.port.vendor_id or 0:04x}:{self.port.product_id or 0:04x} not found"
            )

        # Detach kernel driver if active
        try:
            if self._device.is_kernel_driver_active(0):
                self._device.detach_kernel_driver(0)
        except (usb.core.USBError, NotImplementedError):
            logger.debug("Could not detach kernel driver from %s", self.port)

        # May already be configured
        try:
            self._device.set_configuration()
        except usb.core.USBError:
            logger.debug("set_configuration failed for %s, assuming configured", self.port)

        try:
            cfg = self._device.get_active_configuration()
            intf = cfg[(0, 0)]
            self._endpoint_out = usb.util.find_descriptor(
                intf,
                custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress) == usb.util.ENDPOINT_OUT
            )
            self._endpoint_in = usb.util.find_descriptor(
                intf,
                custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress) == usb.util.ENDPOINT_IN
            )
        except usb.core.USBError as e:
            self._dispose()
            raise TransportError(f"Failed to read USB configuration: {e}") from e

        if not self._endpoint_out:
            self._dispose()
            raise TransportError("Could not find USB OUT endpoint")

    def _dispose(self) -> None:
        if self._device is not None:
            try:
                usb.util.dispose_resources(self._device)
            except usb.core.USBError as e:
                logger.debug("Error releasing %s: %s", self.port, e)
        self._device = None
        self._endpoint_out = None
        self._endpoint_in = None

    def _close(self) -> None:
        self._dispose()

    def write(self, data: bytes, timeout_ms: Optional[int] = None) -> int:
        if not self._endpoint_out:
            raise TransportError("Not connected")
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        try:
            return self._endpoint_out.write(data, timeout=max(timeout_ms, 1))
        except usb.core.USBTimeoutError:
            raise Timeout(f"USB write to {self.port} timed out") from None
        except usb.core.USBError as e:
            raise TransportError(f"Failed to send data: {e}") from e

    def read(self, max_bytes: int = 256, timeout_ms: Optional[int] = None) -> bytes:
        if not self._device:
            raise TransportError("Not connected")
        if not self._endpoint_in:
            raise TransportError(f"{self.port} has no USB IN endpoint")
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        try:
            return bytes(self._endpoint_in.read(max_bytes, timeout=max(timeout_ms, 1)))
        except usb.core.USBTimeoutError:
            raise Timeout(f"No data from {self.port} within {timeout_ms}ms") from None
        except usb.core.USBError as e:
            raise TransportError(f"Failed to read data: {e}") from e

    def is_connected(self) -> bool:
        return self._device is not None and self._endpoint_out is not None

    def __repr__(self):
        return f"USBTransport({self.port.vendor_id or 0:04x}:{self.port.product_id or 0:04x})"


class SerialTransport(Transport):
    """Serial port connection."""

    def __init__(self, port: PrinterPort, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        super().__init__(port, timeout_ms)
        self._serial: Optional[serial.Serial] = None

    def _open(self, timeout_ms: int) -> None:
        try:
            self._serial = serial.Serial(
                self.port.address,
                self.port.baudrate,
                timeout=timeout_ms / 1000,
                write_timeout=self.timeout_ms / 1000,
            )
        except (serial.SerialException, ValueError) as e:
            self._serial = None
            raise TransportError(f"Failed to connect to {self.port.address}: {e}") from e

    def _close(self) -> None:
        if self._serial:
            try:
                self._serial.close()
            except serial.SerialException as e:
                logger.debug("Error closing %s: %s", self.port, e)
            self._serial = None

    def write(self, data: bytes, timeout_ms: Optional[int] = None) -> int:
        if not self._serial:
            raise TransportError("Not connected")
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        try:
            self._serial.write_timeout = max(timeout_ms, 1) / 1000
            return self._serial.write(data) or len(data)
        except serial.SerialTimeoutException:
            raise Timeout(f"Write to {self.port} timed out") from None
        except serial.SerialException as e:
            raise TransportError(f"Failed to send data: {e}") from e

    def read(self, max_bytes: int = 256, timeout_ms: Optional[int] = None) -> bytes:
        if not self._serial:
            raise TransportError("Not connected")
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        try:
            self._serial.timeout = max(timeout_ms, 1) / 1000
            data = self._serial.read(max_bytes)
        except serial.SerialException as e:
            raise TransportError(f"Failed to read data: {e}") from e
        if not data:
            raise Timeout(f"No data from {self.port} within {timeout_ms}ms")
        return data

    def is_connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def __repr__(self):
        return f"SerialTransport({self.port.address}@{self.port.baudrate})"


_TRANSPORTS = {
    PortKind.LAN: NetworkTransport,
    PortKind.USB: USBTransport,
    PortKind.COM: SerialTransport,
}


def create_transport(port: PrinterPort, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Transport:
    """Factory function returning the only valid transport for a port's kind."""
    transport_class = _TRANSPORTS.get(PortKind.parse(port.kind))
    if transport_class is None:
        raise UnsupportedPortType(f"Unsupported port type: {port.kind}")
    return transport_class(port, timeout_ms=timeout_ms)
