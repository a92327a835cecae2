"""Exception hierarchy for the printer subsystem."""


class PrinterError(Exception):
    """Base class for all printer subsystem errors."""


class TransportError(PrinterError):
    """OS-level socket, USB or serial failure."""


class Timeout(PrinterError):
    """A connect, write or read deadline expired."""


class UnsupportedPortType(TransportError):
    """No transport exists for the requested port kind."""


class ProtocolMismatch(PrinterError):
    """The device identity matched no registered driver."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class TemplateElementError(PrinterError):
    """A template element is unknown or malformed."""

    def __init__(self, message: str, element=None):
        super().__init__(message)
        self.element = element


class EncodingError(PrinterError, ValueError):
    """Invalid arguments while building a command sequence."""


class BufferFinalizedError(PrinterError):
    """Attempt to append to a finalized command buffer."""
