"""HPRT TP80K 80mm receipt printer."""
from posprint.printer.drivers.base import LanConfig, PrinterDriver
from posprint.printer.escpos import CommandEncoder


class HPRTTP80KDriver(PrinterDriver):
    model_name = "HPRT TP80K"
    manufacturer = "HPRT"
    identity_tokens = ("HPRT",)

    SET_IP_PREFIX = bytes([0x1F, 0x1B, 0x1F, 0x91, 0x00, 0x49, 0x50])
    DEFAULT_LAN_CONFIG = LanConfig(ip="192.168.0.31", host_temp_ip="192.168.0.100")

    PARTIAL_CUT = CommandEncoder.GS + b'\x56\x42\x00'  # GS V B 0
    QR_SIZES = {"small": 3, "medium": 5, "large": 8}

    CODEPAGE_CP858 = 19

    def preamble(self, encoder: CommandEncoder) -> bytes:
        return encoder.init() + encoder.codepage(self.CODEPAGE_CP858)
