"""Receipt template renderer for JSON receipt templates."""
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import qrcode
import qrcode.exceptions

from posprint.printer.errors import PrinterError, TemplateElementError
from posprint.printer.escpos import (
    PLACEHOLDER_PATTERN,
    CommandBuffer,
    CommandEncoder,
    lookup,
    template_substitute,
)

logger = logging.getLogger(__name__)

SECTIONS = ("header", "body", "footer")

DEFAULT_QR_SIZES = {"small": 3, "medium": 5, "large": 8}
DEFAULT_QUANTITY_FORMAT = "{{ quantity }} x {{ unit_price }} EUR"
DEFAULT_CURRENCY = "EUR"

# Anything an element handler raises for bad element or data values
ELEMENT_ERRORS = (PrinterError, TypeError, ValueError, KeyError, AttributeError)


@dataclass
class ReceiptTemplate:
    """Receipt layout as three ordered lists of elements."""

    header: List[dict] = field(default_factory=list)
    body: List[dict] = field(default_factory=list)
    footer: List[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "ReceiptTemplate":
        """Build from ``{"header": [...], ...}``, optionally wrapped in ``{"template": ...}``."""
        if isinstance(data, ReceiptTemplate):
            return data
        if not isinstance(data, Mapping):
            raise TemplateElementError("Receipt template must be an object", data)
        if isinstance(data.get("template"), Mapping):
            data = data["template"]

        sections = {}
        for name in SECTIONS:
            elements = data.get(name) or []
            if not isinstance(elements, list):
                logger.warning("Template section %r is not a list, ignoring it", name)
                elements = []
            sections[name] = list(elements)
        return cls(**sections)

    def sections(self):
        """Yield (name, elements) pairs in print order."""
        for name in SECTIONS:
            yield name, getattr(self, name)

    def to_dict(self) -> dict:
        return {name: list(elements) for name, elements in self.sections()}

    def __len__(self):
        return sum(len(elements) for _, elements in self.sections())


def justify(left: str, right: str, width: int) -> str:
    """Left text, at least one space, right text, padded to width."""
    spaces = max(1, width - len(left) - len(right))
    return left + " " * spaces + right


def _int(element: Mapping, key: str, default: int) -> int:
    value = element.get(key, default)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise TemplateElementError(f"{key} must be an integer, got {value!r}", element) from None


def _price(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise TemplateElementError(f"Invalid price: {value!r}") from None


class TemplateRenderer:
    """Renders receipt templates to ESC/POS commands.

    Element types:
    - text: content with {{placeholders}}, alignment, style, font_size
    - line_separator, line_feed
    - qr_code, barcode
    - cut_paper, buzzer, drawer_pulse
    - items_list: one name line and one quantity/price line per item
    - test_print: a fixed character test block

    A bad element is logged and skipped; it never aborts the receipt.
    """

    def __init__(self, encoder: Optional[CommandEncoder] = None, preamble: Optional[bytes] = None,
                 qr_sizes: Optional[Dict[str, int]] = None, label: str = "ESC/POS"):
        """Initialize renderer.

        Args:
            encoder: Command encoder carrying line width and cut codes
            preamble: Bytes emitted before the first element (defaults to ESC @)
            qr_sizes: Mapping of small/medium/large to QR module sizes
            label: Printer name used on test pages
        """
        self.encoder = encoder or CommandEncoder()
        self.width = self.encoder.width
        self.preamble = self.encoder.init() if preamble is None else preamble
        self.qr_sizes = dict(DEFAULT_QR_SIZES, **(qr_sizes or {}))
        self.label = label

        self._handlers = {
            "text": self._text,
            "line_separator": self._line_separator,
            "line_feed": self._line_feed,
            "qr_code": self._qr_code,
            "barcode": self._barcode,
            "cut_paper": self._cut_paper,
            "buzzer": self._buzzer,
            "drawer_pulse": self._drawer_pulse,
            "test_print": self._test_print,
            "items_list": self._items_list,
        }
        self._preview_handlers = {
            "text": self._preview_text,
            "line_separator": self._preview_line_separator,
            "line_feed": self._preview_line_feed,
            "qr_code": self._preview_qr_code,
            "barcode": self._preview_barcode,
            "cut_paper": lambda element, data: ["", "--- CUT ---"],
            "buzzer": lambda element, data: ["[BUZZER]"],
            "drawer_pulse": lambda element, data: ["[OPEN DRAWER]"],
            "test_print": self._preview_test_print,
            "items_list": self._preview_items_list,
        }

    def render(self, template: Any, data: Optional[Mapping] = None) -> CommandBuffer:
        """Render a template to a finalized command buffer.

        Args:
            template: ReceiptTemplate or its dict form
            data: Values for {{placeholders}} and items lists

        Returns:
            Finalized CommandBuffer: preamble, header, body, footer, ESC ! 0
        """
        template = ReceiptTemplate.from_dict(template)
        data = data or {}
        buffer = CommandBuffer(self.preamble)

        rendered = skipped = 0
        for section, elements in template.sections():
            for index, element in enumerate(elements):
                try:
                    chunk = self.render_element(element, data)
                except ELEMENT_ERRORS as e:
                    skipped += 1
                    logger.warning("Skipping %s element %d: %s", section, index, e)
                    continue
                buffer.append(chunk)
                rendered += 1

        buffer.append(self.encoder.reset_formatting())
        logger.info("Rendered %d elements (%d skipped) into %d bytes", rendered, skipped, len(buffer))
        buffer.finalize()
        return buffer

    def render_element(self, element: Any, data: Mapping) -> bytes:
        """Render one element, raising TemplateElementError if it is unusable."""
        return self._dispatch(self._handlers, element)(element, data)

    def render_preview(self, template: Any, data: Optional[Mapping] = None) -> str:
        """Render a template to a plain text preview."""
        template = ReceiptTemplate.from_dict(template)
        data = data or {}
        lines = []
        for section, elements in template.sections():
            for index, element in enumerate(elements):
                try:
                    lines.extend(self._dispatch(self._preview_handlers, element)(element, data))
                except ELEMENT_ERRORS as e:
                    logger.debug("Preview skipping %s element %d: %s", section, index, e)
        return "\n".join(lines)

    def extract_variables(self, template: Any) -> list:
        """List the placeholder paths used anywhere in a template."""
        template = ReceiptTemplate.from_dict(template)
        variables = set()

        def collect(value):
            if isinstance(value, str):
                variables.update(m.strip() for m in PLACEHOLDER_PATTERN.findall(value))
            elif isinstance(value, Mapping):
                for v in value.values():
                    collect(v)
            elif isinstance(value, list):
                for v in value:
                    collect(v)

        for _, elements in template.sections():
            collect(elements)
            for element in elements:
                if isinstance(element, Mapping) and element.get("type") == "items_list":
                    variables.add(element.get("source") or "items")
        return sorted(variables)

    def _dispatch(self, handlers: dict, element: Any):
        if not isinstance(element, Mapping):
            raise TemplateElementError("Template element must be an object", element)
        element_type = element.get("type")
        handler = handlers.get(element_type)
        if handler is None:
            raise TemplateElementError(f"Unknown element type: {element_type!r}", element)
        return handler

    # ESC/POS element handlers

    def _text(self, element: Mapping, data: Mapping) -> bytes:
        content = template_substitute(str(element.get("content", "")), data)
        return self.encoder.text(
            content,
            alignment=element.get("alignment", "left"),
            style=element.get("style"),
            font_size=element.get("font_size", "normal"),
        )

    def _line_separator(self, element: Mapping, data: Mapping) -> bytes:
        return self.encoder.line_separator(element.get("character", "-"),
                                           _int(element, "length", self.width))

    def _line_feed(self, element: Mapping, data: Mapping) -> bytes:
        return self.encoder.line_feed(_int(element, "count", 1))

    def _qr_payload(self, element: Mapping, data: Mapping) -> str:
        payload = template_substitute(str(element.get("data", element.get("content", ""))), data)
        if not payload.strip():
            raise TemplateElementError("QR code without data", element)
        return payload

    def _qr_module_size(self, element: Mapping) -> int:
        size = element.get("size", "medium")
        if isinstance(size, int):
            return size
        try:
            return self.qr_sizes[str(size).lower()]
        except KeyError:
            raise TemplateElementError(f"Unknown QR size: {size!r}", element) from None

    def _qr_code(self, element: Mapping, data: Mapping) -> bytes:
        payload = self._qr_payload(element, data)
        out = self.encoder.align(element.get("alignment", "center"))
        out += self.encoder.qr_code(payload, self._qr_module_size(element))
        return out + self.encoder.line_feed(1) + self.encoder.align("left")

    def _barcode(self, element: Mapping, data: Mapping) -> bytes:
        payload = template_substitute(str(element.get("data", element.get("content", ""))), data)
        out = self.encoder.align(element.get("alignment", "center"))
        out += self.encoder.barcode_code128(
            payload,
            height=_int(element, "height", 162),
            width=_int(element, "width", 3),
            font=_int(element, "font", 0),
            position=_int(element, "position", 0),
        )
        return out + self.encoder.line_feed(1) + self.encoder.align("left")

    def _cut_paper(self, element: Mapping, data: Mapping) -> bytes:
        return self.encoder.cut(element.get("cut_type", "partial"), _int(element, "feed_lines", 3))

    def _buzzer(self, element: Mapping, data: Mapping) -> bytes:
        return self.encoder.buzzer(_int(element, "times", 2), _int(element, "duration", 2))

    def _drawer_pulse(self, element: Mapping, data: Mapping) -> bytes:
        return self.encoder.drawer_pulse(
            _int(element, "pin", 0),
            _int(element, "on_time", 50),
            _int(element, "off_time", 200),
        )

    def _test_print(self, element: Mapping, data: Mapping) -> bytes:
        title, rows = self._test_lines(element)
        out = self.encoder.text(title, alignment="center", style="bold")
        out += self.encoder.line_feed(1)
        for row in rows:
            out += self.encoder.text(row)
        return out + self.encoder.line_separator()

    def _items_list(self, element: Mapping, data: Mapping) -> bytes:
        out = bytearray()
        for name_line, name_format, price_line, price_format in self._item_lines(element, data):
            out += self.encoder.text(
                name_line,
                alignment=name_format.get("alignment", "left"),
                style=name_format.get("style"),
                font_size=name_format.get("font_size", "normal"),
            )
            out += self.encoder.text(
                price_line,
                style=price_format.get("style"),
                font_size=price_format.get("font_size", "normal"),
            )
        return bytes(out)

    # Shared element content

    def _test_lines(self, element: Mapping):
        title = element.get("title") or f"{self.label} TEST PRINT"
        rows = [
            "ASCII Characters:",
            "0123456789",
            "ABCDEFGHIJKLMNOPQRSTUVWXYZ",
            "abcdefghijklmnopqrstuvwxyz",
            "!@#$%&*()-+=[]{};:,.<>/?",
        ]
        return title, rows

    def _item_lines(self, element: Mapping, data: Mapping):
        """Yield name and quantity/price lines with their formats per item."""
        items = lookup(data, element.get("source") or "items", [])
        if not isinstance(items, (list, tuple)):
            raise TemplateElementError("items_list source is not a list", element)

        formats = element.get("format") or {}
        name_format = formats.get("item_name") or {}
        price_format = formats.get("quantity_price_line") or {}
        line_format = price_format.get("format") or DEFAULT_QUANTITY_FORMAT
        currency = element.get("currency", DEFAULT_CURRENCY)
        width = _int(element, "line_width", self.width)

        for item in items:
            if not isinstance(item, Mapping):
                raise TemplateElementError(f"Item is not an object: {item!r}", element)
            left = template_substitute(line_format, item)
            right = f"{_price(item.get('total_price', 0)):.2f} {currency}".rstrip()
            yield str(item.get("name", "")), name_format, justify(left, right, width), price_format

    # Preview handlers

    def _preview_text(self, element: Mapping, data: Mapping) -> List[str]:
        content = template_substitute(str(element.get("content", "")), data)
        alignment = element.get("alignment", "left")
        return [self._align_text(line, alignment) for line in content.split("\n")]

    def _preview_line_separator(self, element: Mapping, data: Mapping) -> List[str]:
        length = _int(element, "length", self.width)
        char = element.get("character") or "-"
        return [self._align_text((char * length)[:length], "center")]

    def _preview_line_feed(self, element: Mapping, data: Mapping) -> List[str]:
        return [""] * _int(element, "count", 1)

    def _preview_qr_code(self, element: Mapping, data: Mapping) -> List[str]:
        payload = self._qr_payload(element, data)
        qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=1)
        try:
            qr.add_data(payload)
            qr.make(fit=True)
        except qrcode.exceptions.DataOverflowError:
            return [f"[QR:{payload}]"]
        out = io.StringIO()
        qr.print_ascii(out=out)
        return out.getvalue().splitlines()

    def _preview_barcode(self, element: Mapping, data: Mapping) -> List[str]:
        payload = template_substitute(str(element.get("data", element.get("content", ""))), data)
        return [self._align_text(f"[BARCODE:code128:{payload}]", "center")]

    def _preview_test_print(self, element: Mapping, data: Mapping) -> List[str]:
        title, rows = self._test_lines(element)
        return [self._align_text(title, "center"), ""] + rows + ["-" * self.width]

    def _preview_items_list(self, element: Mapping, data: Mapping) -> List[str]:
        lines = []
        for name_line, name_format, price_line, _ in self._item_lines(element, data):
            lines.append(self._align_text(name_line, name_format.get("alignment", "left")))
            lines.append(price_line)
        return lines

    def _align_text(self, text: str, alignment: str) -> str:
        """Align text for preview."""
        text = text.rstrip()
        if not text:
            return ""
        if alignment == "center":
            return text.center(self.width)
        elif alignment == "right":
            return text.rjust(self.width)
        return text
