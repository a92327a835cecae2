"""ESC/POS command encoder for thermal printers."""
import re
from typing import Any, Iterable, Optional, Union

from posprint.printer.errors import BufferFinalizedError, EncodingError


class CommandBuffer:
    """Ordered, append-only byte sequence for one printer job.

    Chunks are emitted strictly in the order they were appended. Once
    finalize() has been called the buffer is frozen and further appends
    raise BufferFinalizedError.
    """

    def __init__(self, initial: bytes = b""):
        self._buffer = bytearray(initial)
        self._final: Optional[bytes] = None

    def append(self, data: bytes) -> "CommandBuffer":
        """Append one command chunk."""
        if self._final is not None:
            raise BufferFinalizedError("Command buffer is already finalized")
        self._buffer.extend(data)
        return self

    def extend(self, chunks: Iterable[bytes]) -> "CommandBuffer":
        """Append several chunks in order."""
        for chunk in chunks:
            self.append(chunk)
        return self

    @property
    def finalized(self) -> bool:
        return self._final is not None

    def finalize(self) -> bytes:
        """Freeze the buffer and return its bytes."""
        if self._final is None:
            self._final = bytes(self._buffer)
        return self._final

    def __bytes__(self) -> bytes:
        return self._final if self._final is not None else bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self):
        state = "final" if self.finalized else "open"
        return f"CommandBuffer({len(self)} bytes, {state})"


class CommandEncoder:
    """Maps semantic printer operations onto ESC/POS byte sequences."""

    # ESC/POS Command Constants
    ESC = b'\x1b'
    GS = b'\x1d'
    DLE = b'\x10'
    DC2 = b'\x12'
    LF = b'\n'

    # Initialize printer
    INIT = ESC + b'\x40'  # ESC @

    # Text formatting
    BOLD_ON = ESC + b'\x45\x01'   # ESC E 1
    BOLD_OFF = ESC + b'\x45\x00'  # ESC E 0
    ITALIC_ON = ESC + b'\x34\x01'   # ESC 4 1
    ITALIC_OFF = ESC + b'\x34\x00'  # ESC 4 0
    UNDERLINE_ON = ESC + b'\x2d\x01'   # ESC - 1
    UNDERLINE_OFF = ESC + b'\x2d\x00'  # ESC - 0
    RESET_FORMATTING = ESC + b'\x21\x00'  # ESC ! 0

    # Alignment
    ALIGN_LEFT = ESC + b'\x61\x00'    # ESC a 0
    ALIGN_CENTER = ESC + b'\x61\x01'  # ESC a 1
    ALIGN_RIGHT = ESC + b'\x61\x02'   # ESC a 2

    # Paper control
    CUT_FULL = GS + b'\x56\x00'     # GS V 0
    CUT_PARTIAL = GS + b'\x56\x01'  # GS V 1

    # Device queries
    IDENTITY_QUERY = GS + b'\x49\x01'  # GS I 1 - printer model ID
    STATUS_QUERY = DLE + b'\x04\x01'   # DLE EOT 1 - real-time status

    # QR code (GS ( k, cn = 49)
    QR_PREFIX = GS + b'\x28\x6b'
    QR_EC_LEVEL_M = 0x31
    QR_MAX_PAYLOAD = 0xFFFF - 3

    ALIGNMENTS = {
        "left": ALIGN_LEFT,
        "center": ALIGN_CENTER,
        "right": ALIGN_RIGHT,
    }

    STYLES = {
        "bold": (BOLD_ON, BOLD_OFF),
        "italic": (ITALIC_ON, ITALIC_OFF),
        "underline": (UNDERLINE_ON, UNDERLINE_OFF),
    }

    # GS ! n, keyed by normalized size name
    FONT_SIZES = {
        "normal": 0x00,
        "small": 0x00,
        "doubleheight": 0x01,
        "doublewidth": 0x10,
        "doubleboth": 0x11,
        "large": 0x11,
    }

    def __init__(self, width: int = 32, partial_cut: bytes = CUT_PARTIAL, cut_feed_lines: int = 3):
        """Initialize encoder.

        Args:
            width: Character columns per line (32 for fixed-pitch 58mm fonts)
            partial_cut: Model-specific partial cut sequence
            cut_feed_lines: Blank lines fed before every cut
        """
        if width <= 0:
            raise EncodingError(f"Line width must be positive, got {width}")
        self.width = width
        self.partial_cut = partial_cut
        self.cut_feed_lines = cut_feed_lines

    # Basic control

    def init(self) -> bytes:
        """Initialize the printer."""
        return self.INIT

    def align(self, alignment: str = "left") -> bytes:
        """Set text alignment."""
        try:
            return self.ALIGNMENTS[(alignment or "left").lower()]
        except KeyError:
            raise EncodingError(f"Unknown alignment: {alignment!r}") from None

    def style(self, name: str, on: bool = True) -> bytes:
        """Toggle bold, italic or underline."""
        try:
            on_code, off_code = self.STYLES[name.lower()]
        except KeyError:
            raise EncodingError(f"Unknown text style: {name!r}") from None
        return on_code if on else off_code

    def font_size(self, size: str = "normal") -> bytes:
        """Select character size."""
        return self.GS + b'\x21' + bytes([self._font_size_value(size)])

    def charset(self, n: int) -> bytes:
        """Select international character set (ESC R n)."""
        return self.ESC + b'\x52' + bytes([_byte(n, "charset")])

    def codepage(self, n: int) -> bytes:
        """Select character code table (ESC t n)."""
        return self.ESC + b'\x74' + bytes([_byte(n, "codepage")])

    def line_spacing(self, dots: int = 32) -> bytes:
        """Set line spacing in dots (ESC 3 n)."""
        return self.ESC + b'\x33' + bytes([_byte(dots, "line spacing")])

    def print_density(self, density: int = 8, heat_time: int = 80, heat_interval: int = 2) -> bytes:
        """Set print density and heating parameters (DC2 # n1 n2 n3)."""
        return self.DC2 + b'\x23' + bytes([
            _byte(density, "density"),
            _byte(heat_time, "heat time"),
            _byte(heat_interval, "heat interval"),
        ])

    def reset_formatting(self) -> bytes:
        """Reset print mode to defaults."""
        return self.RESET_FORMATTING

    # Text

    def text(self, content: Any, alignment: str = "left",
             style: Union[str, Iterable[str], None] = None,
             font_size: Optional[str] = "normal") -> bytes:
        """Encode one line of text.

        Order is alignment, style/size toggles, UTF-8 payload, inverse
        toggles, line feed.
        """
        styles = self._styles(style)
        size = self._font_size_value(font_size or "normal")

        out = bytearray(self.align(alignment))
        for name in styles:
            out += self.style(name, True)
        if size:
            out += self.GS + b'\x21' + bytes([size])

        out += str(content).encode("utf-8")

        if size:
            out += self.font_size("normal")
        for name in reversed(styles):
            out += self.style(name, False)
        out += self.LF
        return bytes(out)

    def line_feed(self, count: int = 1) -> bytes:
        """Feed paper by a number of lines."""
        if count < 0:
            raise EncodingError(f"Line feed count must not be negative, got {count}")
        return self.LF * count

    def line_separator(self, char: str = "-", length: Optional[int] = None) -> bytes:
        """Print a centered horizontal line padded to the column width."""
        length = self.width if length is None else length
        if length < 0:
            raise EncodingError(f"Separator length must not be negative, got {length}")
        char = char or "-"
        line = (char * length)[:length]
        return self.text(line, alignment="center")

    # Paper control

    def cut(self, mode: str = "partial", feed_lines: int = 3) -> bytes:
        """Feed past the cutter, then cut the paper.

        Args:
            mode: full, partial, feed_full or feed_partial
            feed_lines: Lines fed by the printer itself for the feed_* modes
        """
        mode = (mode or "partial").lower()
        if mode == "full":
            code = self.CUT_FULL
        elif mode == "partial":
            code = self.partial_cut
        elif mode == "feed_full":
            code = self.GS + b'\x56\x41' + bytes([_byte(feed_lines, "feed lines")])  # GS V A n
        elif mode == "feed_partial":
            code = self.GS + b'\x56\x42' + bytes([_byte(feed_lines, "feed lines")])  # GS V B n
        else:
            raise EncodingError(f"Unknown cut mode: {mode!r}")
        return self.line_feed(self.cut_feed_lines) + code

    # Peripherals

    def buzzer(self, times: int = 2, duration: int = 2) -> bytes:
        """Sound the buzzer (ESC B n t)."""
        return self.ESC + b'\x42' + bytes([_byte(times, "buzzer times"), _byte(duration, "buzzer duration")])

    def drawer_pulse(self, pin: int = 0, on_time: int = 50, off_time: int = 200) -> bytes:
        """Kick the cash drawer (ESC p m t1 t2), times in 2ms units."""
        if on_time < 0 or off_time < 0:
            raise EncodingError("Drawer pulse times must not be negative")
        return self.ESC + b'\x70' + bytes([
            0x00 if pin == 0 else 0x01,  # pin 2 or pin 5
            min(on_time, 255),
            min(off_time, 255),
        ])

    # Symbols

    def qr_code(self, data: str, module_size: int = 5) -> bytes:
        """Print a QR code with error correction level M.

        Emits module size, error correction, store data and print, in that
        order. The store command length is len(utf8(data)) + 3 split into
        little-endian pL, pH.
        """
        if not 1 <= module_size <= 16:
            raise EncodingError(f"QR module size must be 1-16, got {module_size}")
        payload = str(data).encode("utf-8") if data is not None else b""
        if not payload:
            raise EncodingError("QR payload must not be empty")
        if len(payload) > self.QR_MAX_PAYLOAD:
            raise EncodingError(f"QR payload too long: {len(payload)} bytes")

        store_len = len(payload) + 3
        p_l = store_len & 0xFF
        p_h = (store_len >> 8) & 0xFF

        return b"".join([
            self.QR_PREFIX + bytes([0x03, 0x00, 0x31, 0x43, module_size]),         # module size
            self.QR_PREFIX + bytes([0x03, 0x00, 0x31, 0x45, self.QR_EC_LEVEL_M]),  # error correction
            self.QR_PREFIX + bytes([p_l, p_h, 0x31, 0x50, 0x30]) + payload,        # store data
            self.QR_PREFIX + bytes([0x03, 0x00, 0x31, 0x51, 0x30]),                # print
        ])

    def barcode_code128(self, data: str, height: int = 162, width: int = 3,
                        font: int = 0, position: int = 0) -> bytes:
        """Print a CODE128 barcode using code set B.

        Args:
            data: ASCII payload
            height: Bar height in dots (GS h)
            width: Module width 2-6 (GS w)
            font: HRI font (GS f)
            position: HRI position, 0 none, 1 above, 2 below, 3 both (GS H)
        """
        try:
            payload = b"{B" + str(data).encode("ascii")
        except UnicodeEncodeError:
            raise EncodingError("CODE128 payload must be ASCII") from None
        if len(payload) <= 2:
            raise EncodingError("Barcode payload must not be empty")
        if len(payload) > 255:
            raise EncodingError(f"Barcode payload too long: {len(payload) - 2} characters")
        return b"".join([
            self.GS + b'\x68' + bytes([_byte(height, "barcode height")]),
            self.GS + b'\x77' + bytes([_byte(width, "barcode width")]),
            self.GS + b'\x66' + bytes([_byte(font, "barcode font")]),
            self.GS + b'\x48' + bytes([_byte(position, "barcode position")]),
            self.GS + b'\x6b\x49' + bytes([len(payload)]) + payload,  # GS k 73 n
        ])

    def _styles(self, style: Union[str, Iterable[str], None]) -> list:
        if not style:
            return []
        if isinstance(style, str):
            names = [s.strip() for s in style.split(",")]
        else:
            names = [str(s).strip() for s in style]
        names = [n.lower() for n in names if n and n.lower() != "normal"]
        for name in names:
            if name not in self.STYLES:
                raise EncodingError(f"Unknown text style: {name!r}")
        return names

    def _font_size_value(self, size: str) -> int:
        key = re.sub(r"[\s_-]", "", str(size)).lower()
        try:
            return self.FONT_SIZES[key]
        except KeyError:
            raise EncodingError(f"Unknown font size: {size!r}") from None


def _byte(value: int, name: str) -> int:
    """Validate a single command parameter byte."""
    if not isinstance(value, int) or not 0 <= value <= 255:
        raise EncodingError(f"{name} must be an integer 0-255, got {value!r}")
    return value


# Template variable substitution

PLACEHOLDER_PATTERN = re.compile(r'\{\{\s*([^{}]+?)\s*\}\}')

_MISSING = object()


def _resolve_path(data: Any, path: str) -> Any:
    value = data
    for key in path.split("."):
        if isinstance(value, dict):
            value = value.get(key, _MISSING)
        elif isinstance(value, (list, tuple)) and key.lstrip("-").isdigit():
            index = int(key)
            value = value[index] if -len(value) <= index < len(value) else _MISSING
        elif key and not key.startswith("_") and hasattr(value, key):
            value = getattr(value, key)
        else:
            value = _MISSING
        if value is _MISSING:
            return _MISSING
    return value


def lookup(data: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted path such as ``order.items`` against data."""
    value = _resolve_path(data, path)
    return default if value is _MISSING else value


def template_substitute(template: str, data: Any) -> str:
    """Replace {{a.b.c}} placeholders by walking the dotted path through data.

    Unresolved paths and None values are left verbatim so the rest of a
    partially broken template still prints.
    """
    def replace_var(match):
        value = _resolve_path(data, match.group(1))
        if value is _MISSING or value is None:
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(replace_var, template or "")
