"""
Collectors that refresh the registry from the host and from vpncmd.
"""

import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Protocol

import psutil

from softether_exporter import registry as metrics
from softether_exporter.config import Config
from softether_exporter.exceptions import ReaderError
from softether_exporter.logger import get_logger
from softether_exporter.reader import HubStatus, VpncmdReader
from softether_exporter.registry import MetricRegistry

logger = get_logger(__name__)

# psutil raises its own errors as well as plain OS errors
STAT_ERRORS = (psutil.Error, OSError, RuntimeError, AttributeError)

LOAD_INTERVALS = ('1_min', '5_min', '15_min')


@dataclass
class DiskSpace:
    """Size of one mounted filesystem"""
    total: int
    free: int


def memory_usage_percent(total: int, free: int) -> Optional[float]:
    """Used memory as a percentage, None when total is unknown."""
    if total <= 0:
        return None
    free = min(max(free, 0), total)
    return (total - free) / total * 100.0


def disk_usage_percent(disks: Iterable[DiskSpace]) -> float:
    """Used space across all filesystems as a percentage, 0 without any space."""
    disks = list(disks)
    total = sum(d.total for d in disks)
    free = sum(d.free for d in disks)
    if total <= 0:
        return 0.0
    return (total - free) / total * 100.0


class SystemStatsCollector:
    """Refreshes host gauges using psutil"""

    def __init__(self, registry: MetricRegistry):
        self.registry = registry

    def collect(self) -> None:
        """Refresh every system gauge, skipping the ones that fail"""
        for name, step in (
            ('load', self._collect_load),
            ('memory', self._collect_memory),
            ('disk', self._collect_disk),
            ('boot_time', self._collect_boot_time),
            ('network', self._collect_network),
        ):
            self._attempt(name, step)

    def _attempt(self, name: str, step: Callable[[], None]) -> None:
        try:
            step()
        except STAT_ERRORS as e:
            logger.debug(f"Skipping system stat {name}: {e}")

    def _collect_load(self) -> None:
        one, five, fifteen = psutil.getloadavg()
        self.registry.set_value(metrics.SYSTEM_CPU_LOAD, (), one)
        for interval, value in zip(LOAD_INTERVALS, (one, five, fifteen)):
            self.registry.set_value(metrics.SYSTEM_LOAD_AVERAGE, (interval,), value)

    def _collect_memory(self) -> None:
        mem = psutil.virtual_memory()
        usage = memory_usage_percent(mem.total, mem.free)
        if usage is not None:
            self.registry.set_value(metrics.SYSTEM_MEMORY_USAGE, (), usage)

    def _collect_disk(self) -> None:
        disks = []
        for partition in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except STAT_ERRORS:
                # Unreadable mounts (e.g. stale network shares) are left out
                continue
            disks.append(DiskSpace(total=usage.total, free=usage.free))
        self.registry.set_value(metrics.SYSTEM_FREE_DISK_SPACE, (), disk_usage_percent(disks))

    def _collect_boot_time(self) -> None:
        boot_time = psutil.boot_time()
        self.registry.set_value(metrics.SYSTEM_BOOT_TIME, (), boot_time)
        self.registry.set_value(metrics.SYSTEM_UPTIME, (), max(time.time() - boot_time, 0.0))

    def _collect_network(self) -> None:
        for interface, counters in psutil.net_io_counters(pernic=True).items():
            self.registry.set_value(metrics.SYSTEM_NETWORK_PACKETS_IN, (interface,), counters.packets_recv)
            self.registry.set_value(metrics.SYSTEM_NETWORK_PACKETS_OUT, (interface,), counters.packets_sent)


class StatusReader(Protocol):
    def hub_status(self, vpncmd: str, server: str, hub: str, password: str) -> HubStatus:
        ...


# HubStatus attribute -> gauge family
HUB_GAUGES = (
    ('sessions', metrics.SOFTETHER_SESSIONS),
    ('sessions_client', metrics.SOFTETHER_SESSIONS_CLIENT),
    ('sessions_bridge', metrics.SOFTETHER_SESSIONS_BRIDGE),
    ('users', metrics.SOFTETHER_USERS),
    ('groups', metrics.SOFTETHER_GROUPS),
    ('mac_tables', metrics.SOFTETHER_MAC_TABLES),
    ('ip_tables', metrics.SOFTETHER_IP_TABLES),
    ('logins', metrics.SOFTETHER_LOGINS),
    ('outgoing_unicast_packets', metrics.SOFTETHER_OUTGOING_UNICAST_PACKETS),
    ('outgoing_unicast_bytes', metrics.SOFTETHER_OUTGOING_UNICAST_BYTES),
    ('outgoing_broadcast_packets', metrics.SOFTETHER_OUTGOING_BROADCAST_PACKETS),
    ('outgoing_broadcast_bytes', metrics.SOFTETHER_OUTGOING_BROADCAST_BYTES),
    ('incoming_unicast_packets', metrics.SOFTETHER_INCOMING_UNICAST_PACKETS),
    ('incoming_unicast_bytes', metrics.SOFTETHER_INCOMING_UNICAST_BYTES),
    ('incoming_broadcast_packets', metrics.SOFTETHER_INCOMING_BROADCAST_PACKETS),
    ('incoming_broadcast_bytes', metrics.SOFTETHER_INCOMING_BROADCAST_BYTES),
)


class HubStatusCollector:
    """
    Refreshes per-hub gauges by querying every configured hub.

    A hub whose query fails gets ``softether_up=0``; its other series keep
    the values of the last successful query.
    """

    def __init__(self, registry: MetricRegistry, config: Config, reader: Optional[StatusReader] = None):
        self.registry = registry
        self.config = config
        self.reader = reader or VpncmdReader(timeout=config.timeout, user_stats=config.user_stats)

    def collect(self) -> None:
        """Query all hubs in configuration order"""
        for hub in self.config.hubs:
            # Hub passwords only apply when no server admin password is configured
            password = self.config.adminpassword or hub.password
            try:
                status = self.reader.hub_status(self.config.vpncmd, self.config.server, hub.name, password)
            except ReaderError as e:
                self._mark_down(hub.name)
                logger.warning(f"Hub status read failed: {e}", extra={'context': {'hub': hub.name}})
                continue
            except Exception as e:
                self._mark_down(hub.name)
                logger.error(
                    f"Unexpected error reading hub status: {e}",
                    exc_info=True,
                    extra={'context': {'hub': hub.name}},
                )
                continue

            self._record(hub.name, status)

    def prune(self, configured: Optional[List[str]] = None) -> List[str]:
        """
        Remove series of hubs that are no longer configured.

        Returns:
            Names of the hubs that were removed
        """
        keep = set(self.config.hub_names if configured is None else configured)
        removed = []
        for name in self.registry.label_values(metrics.SOFTETHER_UP, 'hub'):
            if name not in keep:
                self.registry.remove_hub(name)
                removed.append(name)
        if removed:
            logger.info(f"Removed series of unconfigured hubs: {', '.join(removed)}")
        return removed

    def _mark_down(self, name: str) -> None:
        self.registry.set_value(metrics.SOFTETHER_UP, (name,), 0)

    def _record(self, name: str, status: HubStatus) -> None:
        with self.registry.transaction() as reg:
            reg.set_value(metrics.SOFTETHER_UP, (name,), 1)
            reg.set_value(metrics.SOFTETHER_ONLINE, (name,), 1 if status.online else 0)
            for attr, family in HUB_GAUGES:
                reg.set_value(family, (name,), getattr(status, attr))
            for transfer in status.user_transfers:
                reg.set_value(metrics.SOFTETHER_USER_TRANSFER_BYTES, (name, transfer.user), transfer.transfer_bytes)
                reg.set_value(metrics.SOFTETHER_USER_TRANSFER_PACKETS, (name, transfer.user), transfer.transfer_packets)
