"""Printer driver contract shared by all supported models."""
import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Tuple

from posprint.printer.connection import PrinterPort, create_transport
from posprint.printer.errors import EncodingError
from posprint.printer.escpos import CommandEncoder
from posprint.printer.identification import (
    IDENTIFY_TIMEOUT_MS,
    IdentificationResult,
    IdentificationStatus,
    TransportFactory,
    identify_device,
)
from posprint.printer.renderer import TemplateRenderer

logger = logging.getLogger(__name__)

DEFAULT_SUBNET = "255.255.255.0"


@dataclass(frozen=True)
class LanConfig:
    """Factory-default network settings of a printer model."""

    ip: str
    host_temp_ip: str  # address to give the host while talking to a factory-fresh printer
    subnet: str = DEFAULT_SUBNET

    def to_dict(self) -> dict:
        return {"ip": self.ip, "host_temp_ip": self.host_temp_ip, "subnet": self.subnet}


def match_identity(result: IdentificationResult, tokens: Iterable[str],
                   accept_silent: bool = True) -> bool:
    """Decide whether an identification result belongs to a model.

    SUCCESS matches when any token occurs in the response, case-insensitively.
    NO_RESPONSE matches when accept_silent is set. TIMEOUT and ERROR never match.
    """
    if result.status is IdentificationStatus.SUCCESS:
        data = result.data.upper()
        return any(token.upper() in data for token in tokens)
    if result.status is IdentificationStatus.NO_RESPONSE:
        return accept_silent
    return False


def build_set_ip_command(prefix: bytes, ip: str) -> bytes:
    """Append the four octets of an IPv4 address to a vendor command prefix."""
    try:
        address = ipaddress.IPv4Address(str(ip).strip())
    except ValueError:
        raise EncodingError(f"Invalid IPv4 address: {ip!r}") from None
    return prefix + address.packed


class PrinterDriver(ABC):
    """Model-specific knowledge: identity, network setup and command dialect.

    Subclasses set the class attributes and may override the encoder dialect.
    """

    model_name: str = ""
    manufacturer: str = ""
    identity_tokens: Tuple[str, ...] = ()

    SET_IP_PREFIX: bytes = b""
    RESTART_DELAY_MS = 15000
    DEFAULT_LAN_CONFIG: Optional[LanConfig] = None

    PARTIAL_CUT = CommandEncoder.CUT_PARTIAL
    QR_SIZES: Dict[str, int] = {"small": 3, "medium": 5, "large": 8}

    def __init__(self, width: int = 32):
        self.width = width

    def identify(self, port: PrinterPort, timeout_ms: int = IDENTIFY_TIMEOUT_MS,
                 transport_factory: TransportFactory = create_transport,
                 accept_silent: bool = True) -> bool:
        """Run the identification handshake and decide whether this model is attached."""
        result = identify_device(port, timeout_ms, transport_factory)
        accepted = self.matches(result, accept_silent)
        logger.info("%s %s device at %s (%s)", self.model_name,
                    "accepts" if accepted else "rejects", port, result.status.value)
        return accepted

    def matches(self, result: IdentificationResult, accept_silent: bool = True) -> bool:
        return match_identity(result, self.identity_tokens, accept_silent)

    def get_default_lan_config(self) -> LanConfig:
        return self.DEFAULT_LAN_CONFIG

    def get_set_ip_command(self, ip: str) -> bytes:
        return build_set_ip_command(self.SET_IP_PREFIX, ip)

    def get_restart_delay(self) -> int:
        """Milliseconds the printer needs to reboot after an IP change."""
        return self.RESTART_DELAY_MS

    def encoder(self) -> CommandEncoder:
        return CommandEncoder(width=self.width, partial_cut=self.PARTIAL_CUT)

    @abstractmethod
    def preamble(self, encoder: CommandEncoder) -> bytes:
        """Initialization sequence sent before every receipt."""

    def renderer(self) -> TemplateRenderer:
        encoder = self.encoder()
        return TemplateRenderer(encoder, preamble=self.preamble(encoder),
                                qr_sizes=self.QR_SIZES, label=self.model_name)

    def generate_print_commands(self, receipt_data: Optional[Mapping], template) -> bytes:
        """Render a receipt template with data into this model's command bytes."""
        logger.info("Generating print commands for %s", self.model_name)
        return self.renderer().render(template, receipt_data).finalize()

    def to_dict(self) -> dict:
        return {
            "model": self.model_name,
            "manufacturer": self.manufacturer,
            "identity_tokens": list(self.identity_tokens),
            "default_lan_config": self.get_default_lan_config().to_dict(),
            "restart_delay_ms": self.get_restart_delay(),
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.model_name}>"
