"""Xprinter XP-V330L 80mm receipt printer."""
from posprint.printer.drivers.base import LanConfig, PrinterDriver
from posprint.printer.escpos import CommandEncoder


class XprinterXPV330LDriver(PrinterDriver):
    model_name = "Xprinter XP-V330L"
    manufacturer = "Xprinter"
    identity_tokens = ("XPRINTER", "XP-")

    # 1F 1B 1F 91 00 "SET IP"
    SET_IP_PREFIX = bytes([0x1F, 0x1B, 0x1F, 0x91, 0x00]) + b"SET IP"
    DEFAULT_LAN_CONFIG = LanConfig(ip="192.168.123.100", host_temp_ip="192.168.123.101")

    PARTIAL_CUT = CommandEncoder.CUT_PARTIAL
    QR_SIZES = {"small": 3, "medium": 4, "large": 6}

    CHARSET_GERMANY = 11
    CODEPAGE_CP858 = 19

    def preamble(self, encoder: CommandEncoder) -> bytes:
        return b"".join([
            encoder.init(),
            encoder.charset(self.CHARSET_GERMANY),
            encoder.codepage(self.CODEPAGE_CP858),
            encoder.print_density(8, 80, 2),
            encoder.line_spacing(32),
        ])
