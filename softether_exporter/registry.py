"""
Metric registry for the exporter.

Holds the fixed catalog of Prometheus gauges on a private CollectorRegistry.
Every read and write goes through one coarse lock so a scrape never sees a
hub record half written by a concurrent refresh.

Usage:
    from softether_exporter.registry import MetricRegistry, SOFTETHER_UP

    registry = MetricRegistry()

    series = registry.get_or_create_series(SOFTETHER_UP, ('HUB1',))
    registry.set(series, 1)

    body = registry.encode()
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest


class Family(NamedTuple):
    """Declaration of one gauge family"""
    name: str
    documentation: str
    labelnames: Tuple[str, ...] = ()


class Sample(NamedTuple):
    """One exposed series as seen by snapshot()"""
    name: str
    documentation: str
    labels: Dict[str, str]
    value: float


HUB = ('hub',)

# -- System gauges --
SYSTEM_CPU_LOAD = Family('system_cpu_load', 'Current system CPU load as a percentage.')
SYSTEM_MEMORY_USAGE = Family('system_memory_usage', 'Used memory in the system as a percentage.')
SYSTEM_FREE_DISK_SPACE = Family('system_free_disk_space', 'Free disk space on the system as a percentage.')
SYSTEM_LOAD_AVERAGE = Family('system_load_average', 'Load average over 1, 5, and 15 minutes.', ('interval',))
SYSTEM_UPTIME = Family('system_uptime', 'System uptime in seconds.')
SYSTEM_BOOT_TIME = Family('system_boot_time', 'System boot time in UNIX timestamp.')
SYSTEM_NETWORK_PACKETS_IN = Family(
    'system_network_packets_in', 'Number of packets received on the network interface.', ('interface',))
SYSTEM_NETWORK_PACKETS_OUT = Family(
    'system_network_packets_out', 'Number of packets sent from the network interface.', ('interface',))

# -- Per-hub gauges --
SOFTETHER_UP = Family('softether_up', 'The last query is successful.', HUB)
SOFTETHER_ONLINE = Family('softether_online', 'Hub online.', HUB)
SOFTETHER_SESSIONS = Family('softether_sessions', 'Number of sessions.', HUB)
SOFTETHER_SESSIONS_CLIENT = Family('softether_sessions_client', 'Number of client sessions.', HUB)
SOFTETHER_SESSIONS_BRIDGE = Family('softether_sessions_bridge', 'Number of bridge sessions.', HUB)
SOFTETHER_USERS = Family('softether_users', 'Number of users.', HUB)
SOFTETHER_GROUPS = Family('softether_groups', 'Number of groups.', HUB)
SOFTETHER_MAC_TABLES = Family('softether_mac_tables', 'Number of entries in MAC table.', HUB)
SOFTETHER_IP_TABLES = Family('softether_ip_tables', 'Number of entries in IP table.', HUB)
SOFTETHER_LOGINS = Family('softether_logins', 'Number of logins.', HUB)
SOFTETHER_OUTGOING_UNICAST_PACKETS = Family(
    'softether_outgoing_unicast_packets', 'Outgoing unicast transfer in packets.', HUB)
SOFTETHER_OUTGOING_UNICAST_BYTES = Family(
    'softether_outgoing_unicast_bytes', 'Outgoing unicast transfer in bytes.', HUB)
SOFTETHER_OUTGOING_BROADCAST_PACKETS = Family(
    'softether_outgoing_broadcast_packets', 'Outgoing broadcast transfer in packets.', HUB)
SOFTETHER_OUTGOING_BROADCAST_BYTES = Family(
    'softether_outgoing_broadcast_bytes', 'Outgoing broadcast transfer in bytes.', HUB)
SOFTETHER_INCOMING_UNICAST_PACKETS = Family(
    'softether_incoming_unicast_packets', 'Incoming unicast transfer in packets.', HUB)
SOFTETHER_INCOMING_UNICAST_BYTES = Family(
    'softether_incoming_unicast_bytes', 'Incoming unicast transfer in bytes.', HUB)
SOFTETHER_INCOMING_BROADCAST_PACKETS = Family(
    'softether_incoming_broadcast_packets', 'Incoming broadcast transfer in packets.', HUB)
SOFTETHER_INCOMING_BROADCAST_BYTES = Family(
    'softether_incoming_broadcast_bytes', 'Incoming broadcast transfer in bytes.', HUB)

# -- Per-user gauges --
SOFTETHER_USER_TRANSFER_BYTES = Family(
    'softether_user_transfer_bytes', 'User transfer in bytes.', ('hub', 'user'))
SOFTETHER_USER_TRANSFER_PACKETS = Family(
    'softether_user_transfer_packets', 'User transfer in packets.', ('hub', 'user'))

FAMILIES = (
    SOFTETHER_UP,
    SOFTETHER_ONLINE,
    SOFTETHER_SESSIONS,
    SOFTETHER_SESSIONS_CLIENT,
    SOFTETHER_SESSIONS_BRIDGE,
    SOFTETHER_USERS,
    SOFTETHER_GROUPS,
    SOFTETHER_MAC_TABLES,
    SOFTETHER_IP_TABLES,
    SOFTETHER_LOGINS,
    SOFTETHER_OUTGOING_UNICAST_PACKETS,
    SOFTETHER_OUTGOING_UNICAST_BYTES,
    SOFTETHER_OUTGOING_BROADCAST_PACKETS,
    SOFTETHER_OUTGOING_BROADCAST_BYTES,
    SOFTETHER_INCOMING_UNICAST_PACKETS,
    SOFTETHER_INCOMING_UNICAST_BYTES,
    SOFTETHER_INCOMING_BROADCAST_PACKETS,
    SOFTETHER_INCOMING_BROADCAST_BYTES,
    SOFTETHER_USER_TRANSFER_BYTES,
    SOFTETHER_USER_TRANSFER_PACKETS,
    SYSTEM_CPU_LOAD,
    SYSTEM_MEMORY_USAGE,
    SYSTEM_FREE_DISK_SPACE,
    SYSTEM_LOAD_AVERAGE,
    SYSTEM_UPTIME,
    SYSTEM_BOOT_TIME,
    SYSTEM_NETWORK_PACKETS_IN,
    SYSTEM_NETWORK_PACKETS_OUT,
)


class PopulatedView:
    """Collector view of a registry that skips families without series"""

    def __init__(self, registry: CollectorRegistry):
        self._registry = registry

    def collect(self):
        for metric in self._registry.collect():
            if metric.samples:
                yield metric


class MetricRegistry:
    """
    Owns every gauge the exporter exposes.

    One instance is created at startup and shared by the collectors and the
    HTTP app. Tests build their own instance, so nothing leaks through the
    global prometheus_client REGISTRY.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._registry = CollectorRegistry(auto_describe=True)
        self._gauges: Dict[str, Gauge] = {}
        self._families: Dict[str, Family] = {}

        for family in FAMILIES:
            self._gauges[family.name] = Gauge(
                family.name,
                family.documentation,
                labelnames=family.labelnames,
                registry=self._registry,
            )
            self._families[family.name] = family

        self._populated = PopulatedView(self._registry)

    # -- Writes -------------------------------------------------------------

    def get_or_create_series(self, family: Family, label_values: Sequence[str] = ()) -> Gauge:
        """
        Return the mutable series for *label_values*, creating it if unseen.

        Raises:
            ValueError: label arity does not match the family declaration
        """
        gauge = self._gauges[family.name]
        if len(label_values) != len(family.labelnames):
            raise ValueError(
                f"{family.name} expects labels {family.labelnames}, got {tuple(label_values)}"
            )
        if not family.labelnames:
            return gauge
        with self._lock:
            return gauge.labels(*[str(v) for v in label_values])

    def set(self, series: Gauge, value: float) -> None:
        """Set a series returned by get_or_create_series()."""
        with self._lock:
            series.set(value)

    def set_value(self, family: Family, label_values: Sequence[str], value: float) -> None:
        """Shorthand for get_or_create_series() followed by set()."""
        self.set(self.get_or_create_series(family, label_values), value)

    @contextmanager
    def transaction(self) -> Iterator['MetricRegistry']:
        """
        Hold the registry lock for a group of writes.

        Used to write one hub's whole record so a concurrent scrape sees
        either all of the old values or all of the new ones.
        """
        with self._lock:
            yield self

    def remove_hub(self, hub: str) -> int:
        """
        Drop every series labeled with *hub*.

        Returns:
            Number of series removed
        """
        removed = 0
        with self._lock:
            for metric in self._registry.collect():
                family = self._families.get(metric.name)
                if family is None or 'hub' not in family.labelnames:
                    continue
                for sample in metric.samples:
                    if sample.labels.get('hub') != hub:
                        continue
                    self._gauges[family.name].remove(
                        *[sample.labels[name] for name in family.labelnames]
                    )
                    removed += 1
        return removed

    # -- Reads --------------------------------------------------------------

    def value(self, family: Family, *label_values: str) -> Optional[float]:
        """Current value of one series, None if it was never written."""
        labels = dict(zip(family.labelnames, label_values))
        with self._lock:
            return self._registry.get_sample_value(family.name, labels)

    def label_values(self, family: Family, label: str) -> List[str]:
        """Distinct values of *label* currently exposed in *family*."""
        seen: List[str] = []
        for sample in self.snapshot():
            if sample.name == family.name and sample.labels.get(label) not in (None, *seen):
                seen.append(sample.labels[label])
        return seen

    def snapshot(self) -> List[Sample]:
        """All current series in registration order."""
        samples = []
        with self._lock:
            for metric in self._registry.collect():
                for sample in metric.samples:
                    samples.append(Sample(
                        name=sample.name,
                        documentation=metric.documentation,
                        labels=dict(sample.labels),
                        value=sample.value,
                    ))
        return samples

    def encode(self) -> bytes:
        """
        Render the registry in the Prometheus text exposition format.

        Families that have no series yet (e.g. per-hub gauges with no hubs
        configured) are left out entirely.
        """
        with self._lock:
            return generate_latest(self._populated)
