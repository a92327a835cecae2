"""Network discovery of devices listening on the raw printing port.

An open port 9100 is conventional, not proof of a printer: results are
candidates that still need identification.
"""
import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Iterable, List, Optional

import psutil

from posprint.printer.connection import RAW_PRINT_PORT

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_MS = 1000
SCAN_WINDOW_PREFIX = 24


@dataclass(frozen=True)
class ScanTarget:
    """One network to scan, either from a local interface or a manual CIDR."""

    name: str
    network: ipaddress.IPv4Network
    host: Optional[ipaddress.IPv4Address] = None  # our own address; None for manual ranges

    @property
    def is_manual(self) -> bool:
        return self.host is None

    def __str__(self):
        if self.is_manual:
            return f"{self.name} ({self.network})"
        return f"{self.name} ({self.host}/{self.network.prefixlen})"


def list_interfaces() -> List[ScanTarget]:
    """Return scan targets for all active, non-loopback IPv4 interfaces."""
    stats = psutil.net_if_stats()
    targets = []
    for name, addresses in psutil.net_if_addrs().items():
        if_stats = stats.get(name)
        if if_stats is not None and not if_stats.isup:
            continue
        for addr in addresses:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            host = ipaddress.IPv4Address(addr.address)
            if host.is_loopback:
                continue
            network = ipaddress.IPv4Interface(f"{addr.address}/{addr.netmask}").network
            targets.append(ScanTarget(name, network, host))
    return targets


def parse_range(network_range: str) -> Optional[ScanTarget]:
    """Parse a manual CIDR range such as 192.168.0.0/24."""
    try:
        network = ipaddress.IPv4Network(str(network_range).strip(), strict=False)
    except ValueError as e:
        logger.error("Invalid network range %r: %s", network_range, e)
        return None
    return ScanTarget("manual", network)


def candidate_addresses(target: ScanTarget,
                        scan_window_prefix: Optional[int] = SCAN_WINDOW_PREFIX) -> List[str]:
    """List the addresses to probe for one scan target.

    Network and broadcast addresses are never probed, nor is the host's own
    address on an auto-detected interface. An auto-detected subnet wider than
    the scan window is narrowed to the window containing the host address;
    manual ranges are scanned in full.
    """
    network = target.network
    if (not target.is_manual and scan_window_prefix is not None
            and network.prefixlen < scan_window_prefix):
        network = ipaddress.IPv4Network(f"{target.host}/{scan_window_prefix}", strict=False)
        logger.info("Large subnet on %s, limiting scan to %s", target, network)

    first = int(network.network_address) + 1
    end = int(network.broadcast_address)
    own = None if target.is_manual else int(target.host)
    return [str(ipaddress.IPv4Address(i)) for i in range(first, end) if i != own]


async def probe(ip: str, port: int = RAW_PRINT_PORT, timeout_ms: int = PROBE_TIMEOUT_MS) -> bool:
    """Single TCP connect attempt; True when the port accepted the connection."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(ip, port), timeout_ms / 1000)
    except (asyncio.TimeoutError, OSError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug("Error closing probe connection to %s: %s", ip, e)
    logger.info("Found potential printer at %s:%d", ip, port)
    return True


async def _probe_all(ips: List[str], port: int, timeout_ms: int) -> List[str]:
    results = await asyncio.gather(*(probe(ip, port, timeout_ms) for ip in ips))
    return [ip for ip, ok in zip(ips, results) if ok]


async def _scan(targets: Iterable[ScanTarget], port: int, timeout_ms: int,
                scan_window_prefix: Optional[int]) -> List[str]:
    async def scan_target(target: ScanTarget) -> List[str]:
        ips = candidate_addresses(target, scan_window_prefix)
        logger.info("Scanning %d addresses on %s", len(ips), target)
        found = await _probe_all(ips, port, timeout_ms)
        logger.info("Scan of %s complete, %d potential printers: %s", target, len(found), found)
        return found

    per_target = await asyncio.gather(*(scan_target(t) for t in targets))
    unique = {ip for found in per_target for ip in found}
    return sorted(unique, key=ipaddress.IPv4Address)


def probe_addresses(ips: Iterable[str], port: int = RAW_PRINT_PORT,
                    timeout_ms: int = PROBE_TIMEOUT_MS) -> List[str]:
    """Probe a fixed list of addresses concurrently and return those that answered."""
    return asyncio.run(_probe_all(list(ips), port, timeout_ms))


def discover_printers(network_range: Optional[str] = None, port: int = RAW_PRINT_PORT,
                      timeout_ms: int = PROBE_TIMEOUT_MS,
                      scan_window_prefix: Optional[int] = SCAN_WINDOW_PREFIX,
                      interfaces: Optional[List[ScanTarget]] = None) -> List[str]:
    """Scan local networks for devices accepting connections on the printing port.

    Args:
        network_range: Optional CIDR overriding interface auto-detection
        port: TCP port to probe
        timeout_ms: Per-probe connect timeout
        scan_window_prefix: Widest prefix scanned on auto-detected interfaces
        interfaces: Pre-computed scan targets, mainly for tests

    Returns:
        Sorted, de-duplicated list of candidate IP addresses. Every probe has
        finished or timed out when this returns.
    """
    if network_range:
        target = parse_range(network_range)
        if target is None:
            return []
        targets = [target]
    elif interfaces is not None:
        targets = list(interfaces)
    else:
        try:
            targets = list_interfaces()
        except (psutil.Error, OSError) as e:
            logger.error("Could not enumerate network interfaces: %s", e)
            return []

    if not targets:
        logger.info("No active network interfaces found")
        return []

    logger.info("Scanning %d network(s) for printers on port %d", len(targets), port)
    found = asyncio.run(_scan(targets, port, timeout_ms, scan_window_prefix))
    logger.info("Discovery complete, %d unique potential printers: %s", len(found), found)
    return found
