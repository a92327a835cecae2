"""Printer module for ESC/POS thermal printing."""
from posprint.printer.connection import (
    NetworkTransport,
    PortKind,
    PrinterPort,
    SerialTransport,
    Transport,
    USBTransport,
    create_transport,
)
from posprint.printer.controller import AutoConfigurator, PrinterController, PrintResult
from posprint.printer.discovery import discover_printers
from posprint.printer.drivers import DriverRegistry, PrinterDriver, default_registry
from posprint.printer.errors import (
    BufferFinalizedError,
    EncodingError,
    PrinterError,
    ProtocolMismatch,
    TemplateElementError,
    Timeout,
    TransportError,
    UnsupportedPortType,
)
from posprint.printer.escpos import CommandBuffer, CommandEncoder, template_substitute
from posprint.printer.identification import (
    IdentificationResult,
    IdentificationStatus,
    PrinterStatus,
    identify_device,
    query_status,
)
from posprint.printer.renderer import ReceiptTemplate, TemplateRenderer
from posprint.printer.usb_discovery import KNOWN_USB_PRINTERS, ConfiguredPrinter, find_known_devices

__all__ = [
    "AutoConfigurator",
    "BufferFinalizedError",
    "CommandBuffer",
    "CommandEncoder",
    "ConfiguredPrinter",
    "DriverRegistry",
    "EncodingError",
    "IdentificationResult",
    "IdentificationStatus",
    "KNOWN_USB_PRINTERS",
    "NetworkTransport",
    "PortKind",
    "PrintResult",
    "PrinterController",
    "PrinterDriver",
    "PrinterError",
    "PrinterPort",
    "PrinterStatus",
    "ProtocolMismatch",
    "ReceiptTemplate",
    "SerialTransport",
    "TemplateElementError",
    "TemplateRenderer",
    "Timeout",
    "Transport",
    "TransportError",
    "USBTransport",
    "UnsupportedPortType",
    "create_transport",
    "default_registry",
    "discover_printers",
    "find_known_devices",
    "identify_device",
    "query_status",
    "template_substitute",
]
