"""
softether_exporter: Prometheus exporter for SoftEther VPN servers

Queries hub status through vpncmd and host statistics through psutil, and
serves both as Prometheus gauges on /metrics.
"""

from softether_exporter.config import Config, Hub, load_config
from softether_exporter.exporter import Exporter, create_app
from softether_exporter.registry import MetricRegistry

__all__ = ['Config', 'Hub', 'load_config', 'Exporter', 'create_app', 'MetricRegistry']
__version__ = '1.0.0'
