"""
SoftEther status reader built on the vpncmd command-line tool.

Runs ``vpncmd <server> /SERVER /HUB:<hub> /PASSWORD:<pw> /CSV /CMD StatusGet``
and turns the CSV it prints into a HubStatus.
"""

import csv
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List

from softether_exporter.exceptions import ReaderError
from softether_exporter.logger import get_logger

logger = get_logger(__name__)

# StatusGet "Item" column -> HubStatus attribute
STATUS_FIELDS = {
    'Sessions': 'sessions',
    'Sessions (Client)': 'sessions_client',
    'Sessions (Bridge)': 'sessions_bridge',
    'Users': 'users',
    'Groups': 'groups',
    'MAC Tables': 'mac_tables',
    'IP Tables': 'ip_tables',
    'Num Logins': 'logins',
    'Outgoing Unicast Packets': 'outgoing_unicast_packets',
    'Outgoing Unicast Total Size': 'outgoing_unicast_bytes',
    'Outgoing Broadcast Packets': 'outgoing_broadcast_packets',
    'Outgoing Broadcast Total Size': 'outgoing_broadcast_bytes',
    'Incoming Unicast Packets': 'incoming_unicast_packets',
    'Incoming Unicast Total Size': 'incoming_unicast_bytes',
    'Incoming Broadcast Packets': 'incoming_broadcast_packets',
    'Incoming Broadcast Total Size': 'incoming_broadcast_bytes',
}


@dataclass
class UserTransfer:
    """Transfer totals of one hub user (from UserList)"""
    user: str
    transfer_bytes: float
    transfer_packets: float


@dataclass
class HubStatus:
    """Result of one StatusGet call"""
    online: bool
    sessions: float = 0.0
    sessions_client: float = 0.0
    sessions_bridge: float = 0.0
    users: float = 0.0
    groups: float = 0.0
    mac_tables: float = 0.0
    ip_tables: float = 0.0
    logins: float = 0.0
    outgoing_unicast_packets: float = 0.0
    outgoing_unicast_bytes: float = 0.0
    outgoing_broadcast_packets: float = 0.0
    outgoing_broadcast_bytes: float = 0.0
    incoming_unicast_packets: float = 0.0
    incoming_unicast_bytes: float = 0.0
    incoming_broadcast_packets: float = 0.0
    incoming_broadcast_bytes: float = 0.0
    user_transfers: List[UserTransfer] = field(default_factory=list)


def parse_number(value: str) -> float:
    """
    Parse a vpncmd number such as ``1,234`` or ``5,678 bytes``.

    Raises:
        ValueError: value holds no number
    """
    token = value.replace(',', '').strip().split()
    if not token:
        raise ValueError(f"empty value {value!r}")
    return float(token[0])


def _csv_rows(output: str) -> List[List[str]]:
    return [row for row in csv.reader(output.splitlines()) if row]


def parse_status(output: str, hub: str = '') -> HubStatus:
    """Build a HubStatus from StatusGet CSV output."""
    items: Dict[str, str] = {}
    for row in _csv_rows(output):
        if len(row) >= 2:
            items[row[0].strip()] = row[1].strip()

    if 'Status' not in items:
        raise ReaderError(f"StatusGet output for hub '{hub}' has no Status row", hub=hub)

    status = HubStatus(online=items['Status'].lower() == 'online')
    for item, attr in STATUS_FIELDS.items():
        if item not in items:
            continue
        try:
            setattr(status, attr, parse_number(items[item]))
        except ValueError:
            raise ReaderError(f"Cannot parse {item}={items[item]!r} for hub '{hub}'", hub=hub)

    return status


def parse_user_list(output: str, hub: str = '') -> List[UserTransfer]:
    """Build the per-user transfer list from UserList CSV output."""
    rows = _csv_rows(output)
    if not rows:
        return []

    header = [name.strip() for name in rows[0]]
    try:
        name_col = header.index('User Name')
        bytes_col = header.index('Transfer Bytes')
        packets_col = header.index('Transfer Packets')
    except ValueError:
        raise ReaderError(f"UserList output for hub '{hub}' lacks transfer columns", hub=hub)

    transfers = []
    for row in rows[1:]:
        if len(row) <= max(name_col, bytes_col, packets_col):
            continue
        try:
            transfers.append(UserTransfer(
                user=row[name_col].strip(),
                transfer_bytes=parse_number(row[bytes_col]),
                transfer_packets=parse_number(row[packets_col]),
            ))
        except ValueError:
            raise ReaderError(f"Cannot parse transfer of user '{row[name_col]}' on hub '{hub}'", hub=hub)
    return transfers


class VpncmdReader:
    """
    Queries hub status by running vpncmd.

    Args:
        timeout: Seconds one vpncmd invocation may run
        user_stats: Also run UserList to fill HubStatus.user_transfers
    """

    def __init__(self, timeout: float = 10.0, user_stats: bool = False):
        self.timeout = timeout
        self.user_stats = user_stats

    def hub_status(self, vpncmd: str, server: str, hub: str, password: str) -> HubStatus:
        """
        Read the status of one hub.

        Raises:
            ReaderError: vpncmd failed, timed out or printed unexpected output
        """
        output = self._run(vpncmd, server, hub, password, 'StatusGet')
        status = parse_status(output, hub)

        if self.user_stats:
            # Per-user detail is optional; the hub stays up without it
            try:
                output = self._run(vpncmd, server, hub, password, 'UserList')
                status.user_transfers = parse_user_list(output, hub)
            except ReaderError as e:
                logger.warning(f"User list read failed: {e}", extra={'context': {'hub': hub}})

        return status

    def _run(self, vpncmd: str, server: str, hub: str, password: str, command: str) -> str:
        # The password is on the command line, so it never goes into messages
        args = [
            vpncmd, server, '/SERVER',
            f'/HUB:{hub}',
            f'/PASSWORD:{password}',
            '/CSV',
            '/CMD', command,
        ]
        logger.debug(f"Running vpncmd {command}", extra={'context': {'hub': hub, 'server': server}})

        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired:
            raise ReaderError(f"vpncmd {command} timed out after {self.timeout}s for hub '{hub}'", hub=hub)
        except OSError as e:
            raise ReaderError(f"Cannot run {vpncmd}: {e}", hub=hub) from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or '').strip().splitlines()
            reason = detail[-1] if detail else 'no output'
            raise ReaderError(
                f"vpncmd {command} exited with {result.returncode} for hub '{hub}': {reason}",
                hub=hub,
            )

        return result.stdout
