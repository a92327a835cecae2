"""Printer identification handshake and real-time status query.

Identification sends ``GS I 1`` and waits for an answer of at least five
bytes or one terminated by NUL/newline. If nothing arrives it falls back to
``DLE EOT 1``. Many printers answer neither; that silence is reported as
NO_RESPONSE, which callers must not treat as a rejection.

The whole exchange, connect included, is bounded by twice the per-query
timeout. Failures are returned as results, never raised, so a batch of
identifications cannot be aborted by one bad device.
"""
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from posprint.printer.connection import PrinterPort, Transport, create_transport
from posprint.printer.errors import PrinterError, Timeout
from posprint.printer.escpos import CommandEncoder

logger = logging.getLogger(__name__)

IDENTIFY_TIMEOUT_MS = 2000
MIN_RESPONSE_BYTES = 5
TERMINATORS = (b"\x00", b"\n")

QUERIES = (
    (CommandEncoder.IDENTITY_QUERY, "GS I 1"),
    (CommandEncoder.STATUS_QUERY, "DLE EOT 1"),
)

TransportFactory = Callable[[PrinterPort, int], Transport]


class IdentificationStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    NO_RESPONSE = "NO_RESPONSE"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"


@dataclass(frozen=True)
class IdentificationResult:
    """Outcome of an identification attempt."""

    status: IdentificationStatus
    data: Optional[str] = None
    message: Optional[str] = None

    def __post_init__(self):
        if self.status is IdentificationStatus.SUCCESS and not self.data:
            raise ValueError("A successful identification must carry response data")

    @property
    def ok(self) -> bool:
        return self.status is IdentificationStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "data": self.data,
            "message": self.message,
        }


@dataclass(frozen=True)
class PrinterStatus:
    """Decoded DLE EOT 1 status byte."""

    online: bool
    paper_out: bool
    cover_open: bool
    feed_button: bool
    raw: int

    @classmethod
    def from_byte(cls, value: int) -> "PrinterStatus":
        return cls(
            online=(value & 0x08) == 0,
            paper_out=(value & 0x20) != 0,
            cover_open=(value & 0x04) != 0,
            feed_button=(value & 0x01) != 0,
            raw=value,
        )

    def to_dict(self) -> dict:
        return {
            "online": self.online,
            "paper_out": self.paper_out,
            "cover_open": self.cover_open,
            "feed_button": self.feed_button,
            "raw": self.raw,
        }


def _response_complete(received: bytes) -> bool:
    return len(received) >= MIN_RESPONSE_BYTES or any(t in received for t in TERMINATORS)


def _query(transport: Transport, command: bytes, name: str, timeout_ms: int) -> Optional[str]:
    """Send one identification query and wait for a complete answer.

    Returns the decoded answer, or None when the window expired first.
    """
    logger.debug("Sending %s to %s: %s", name, transport.port, command.hex(" "))
    deadline = time.monotonic() + timeout_ms / 1000
    try:
        transport.write(command, timeout_ms=timeout_ms)
    except Timeout:
        logger.debug("%s could not be written to %s in time", name, transport.port)
        return None

    received = bytearray()
    while not _response_complete(received):
        remaining_ms = int((deadline - time.monotonic()) * 1000)
        if remaining_ms <= 0:
            break
        try:
            chunk = transport.read(64, remaining_ms)
        except Timeout:
            break
        if not chunk:  # peer closed
            break
        logger.debug("Received %d bytes from %s: %s", len(chunk), transport.port, chunk.hex(" "))
        received += chunk

    if not _response_complete(received):
        logger.debug("%s timed out after %dms on %s", name, timeout_ms, transport.port)
        return None
    text = received.decode("ascii", errors="replace").replace("\x00", "").strip()
    return text or None


def identify_device(port: PrinterPort, timeout_ms: int = IDENTIFY_TIMEOUT_MS,
                    transport_factory: TransportFactory = create_transport) -> IdentificationResult:
    """Query a device for its identity using GS I 1, then DLE EOT 1.

    Args:
        port: Device to query
        timeout_ms: Per-query window; the whole call never exceeds twice this
        transport_factory: Builds the transport for the port

    Returns:
        IdentificationResult; SUCCESS carries the decoded identity string.
    """
    started = time.monotonic()
    budget_ms = 2 * timeout_ms

    def remaining_ms() -> int:
        return budget_ms - int((time.monotonic() - started) * 1000)

    logger.info("Identifying device at %s", port)
    try:
        transport = transport_factory(port, timeout_ms)
        transport.connect(min(timeout_ms, remaining_ms()))
    except Timeout as e:
        logger.info("Identification of %s timed out: %s", port, e)
        return IdentificationResult(IdentificationStatus.TIMEOUT, message=str(e))
    except PrinterError as e:
        logger.info("Identification of %s failed: %s", port, e)
        return IdentificationResult(IdentificationStatus.ERROR, message=str(e))

    try:
        for command, name in QUERIES:
            window_ms = min(timeout_ms, remaining_ms())
            if window_ms <= 0:
                break
            data = _query(transport, command, name, window_ms)
            if data:
                logger.info("%s answered %s with %r", port, name, data)
                return IdentificationResult(IdentificationStatus.SUCCESS, data=data)
        logger.info("No identification response from %s", port)
        return IdentificationResult(
            IdentificationStatus.NO_RESPONSE,
            message=f"No response from {port}",
        )
    except PrinterError as e:
        logger.warning("Identification of %s failed: %s", port, e)
        return IdentificationResult(IdentificationStatus.ERROR, message=str(e))
    finally:
        transport.close()


def query_status(port: PrinterPort, timeout_ms: int = IDENTIFY_TIMEOUT_MS,
                 transport_factory: TransportFactory = create_transport) -> Optional[PrinterStatus]:
    """Read the real-time printer status byte, or None if the device is silent."""
    try:
        with transport_factory(port, timeout_ms) as transport:
            transport.write(CommandEncoder.STATUS_QUERY)
            data = transport.read(1, timeout_ms)
    except PrinterError as e:
        logger.info("Status query to %s failed: %s", port, e)
        return None
    if not data:
        return None
    status = PrinterStatus.from_byte(data[0])
    logger.debug("Status of %s: %s", port, status)
    return status
