"""
Thermal Receipt Printer command-line tool
Discovers, identifies and test-prints printers over Network, USB, or Serial
"""
import argparse
import json
import os
import sys

from posprint import configure_logging
from posprint.config import PrinterSettings
from posprint.printer import (
    AutoConfigurator,
    PrinterController,
    PrinterError,
    PrinterPort,
    discover_printers,
    find_known_devices,
    identify_device,
    query_status,
)


def parse_port_spec(spec: str) -> PrinterPort:
    """Parse a printer address given on the command line.

    Accepted forms: 192.168.1.50, lan:192.168.1.50:9100, usb:04b8:0e15,
    com:/dev/ttyUSB0:115200, com:COM3.
    """
    kind, _, rest = spec.partition(":")
    kind = kind.lower()
    if not rest:
        return PrinterPort.lan(spec)
    if kind in ("lan", "net"):
        ip, _, tcp_port = rest.partition(":")
        return PrinterPort.lan(ip, int(tcp_port) if tcp_port else 9100)
    if kind == "usb":
        vendor_id, _, product_id = rest.partition(":")
        return PrinterPort.usb(int(vendor_id, 16), int(product_id, 16))
    if kind in ("com", "serial"):
        path, sep, baudrate = rest.rpartition(":")
        if sep and baudrate.isdigit():
            return PrinterPort.serial(path, int(baudrate))
        return PrinterPort.serial(rest)
    # Bare IP with port, e.g. 192.168.1.50:9100
    return PrinterPort.lan(kind, int(rest))


def cmd_discover(args, settings: PrinterSettings) -> int:
    print("Scanning for printers on port %d..." % settings.tcp_port)
    printers = discover_printers(args.range, port=settings.tcp_port,
                                 timeout_ms=settings.discovery_timeout_ms,
                                 scan_window_prefix=settings.scan_window_prefix)
    for ip in printers:
        print(f"  Found: {ip}:{settings.tcp_port}")
    if not printers:
        print("  No devices answered on the printing port")
    return 0 if printers else 1


def cmd_identify(args, settings: PrinterSettings) -> int:
    controller = PrinterController(settings=settings)
    print(f"Identifying {args.port}...")
    result = identify_device(args.port, settings.identify_timeout_ms)
    driver = controller.registry.match(result)
    print(f"  Status: {result.status.value}")
    if result.data:
        print(f"  Response: {result.data}")
    if result.message:
        print(f"  Message: {result.message}")
    print(f"  Driver: {driver.model_name if driver else 'none'}")
    return 0 if driver else 1


def cmd_status(args, settings: PrinterSettings) -> int:
    status = query_status(args.port, settings.identify_timeout_ms)
    if status is None:
        print(f"✗ No status from {args.port}")
        return 1
    print(json.dumps(status.to_dict(), indent=2))
    return 0 if status.online else 1


def cmd_usb(args, settings: PrinterSettings) -> int:
    printers = find_known_devices()
    for detected in printers:
        sig = detected.signature
        print(f"  Found: {sig.model_name} - {sig.vendor_id:04x}:{sig.product_id:04x}")
    if not printers:
        print("  No known printers detected")
    return 0 if printers else 1


def cmd_test_print(args, settings: PrinterSettings) -> int:
    controller = PrinterController(settings=settings)
    driver = controller.registry.get(args.model) if args.model else None
    result = controller.test_print(args.port, driver)
    if result.success:
        print(f"✓ Test page sent ({result.bytes_sent} bytes, {result.model})")
        return 0
    print(f"✗ Error: {result.message}")
    return 1


def cmd_autoconfigure(args, settings: PrinterSettings) -> int:
    configurator = AutoConfigurator(PrinterController(settings=settings), network_range=args.range)
    printer = configurator.run()
    if printer is None:
        print("✗ Could not find a supported printer")
        return 1
    print(f"✓ {printer.driver.model_name} at {printer.port}")
    print(f"  Network verified: {'yes' if printer.network_verified else 'no'}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="posprint",
        description="Thermal Receipt Printer tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  posprint discover
  posprint discover --range 192.168.1.0/24
  posprint identify 192.168.1.100
  posprint status lan:192.168.1.100:9100
  posprint usb
  posprint test-print usb:04b8:0e15 --model "HPRT TP80K"
  posprint test-print com:/dev/ttyUSB0:115200
  posprint autoconfigure
        """
    )
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "WARNING"),
                        help="Logging level (default: WARNING)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    discover_parser = subparsers.add_parser("discover", help="Scan networks for printers")
    discover_parser.add_argument("--range", help="CIDR range to scan instead of local interfaces")
    discover_parser.set_defaults(func=cmd_discover)

    identify_parser = subparsers.add_parser("identify", help="Identify a printer")
    identify_parser.add_argument("port", type=parse_port_spec, help="Printer address")
    identify_parser.set_defaults(func=cmd_identify)

    status_parser = subparsers.add_parser("status", help="Query printer status")
    status_parser.add_argument("port", type=parse_port_spec, help="Printer address")
    status_parser.set_defaults(func=cmd_status)

    usb_parser = subparsers.add_parser("usb", help="List known USB printers")
    usb_parser.set_defaults(func=cmd_usb)

    test_parser = subparsers.add_parser("test-print", help="Print a test page")
    test_parser.add_argument("port", type=parse_port_spec, help="Printer address")
    test_parser.add_argument("--model", help="Driver model name (identified if omitted)")
    test_parser.set_defaults(func=cmd_test_print)

    auto_parser = subparsers.add_parser("autoconfigure", help="Find and configure a printer")
    auto_parser.add_argument("--range", help="CIDR range to scan instead of local interfaces")
    auto_parser.set_defaults(func=cmd_autoconfigure)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    settings = PrinterSettings.from_mapping(os.environ)

    try:
        return args.func(args, settings)
    except PrinterError as e:
        print(f"✗ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
