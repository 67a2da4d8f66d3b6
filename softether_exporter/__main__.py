"""
Command-line entry point: python -m softether_exporter
"""
import logging
import signal
import sys
import threading

import click

from softether_exporter import __version__
from softether_exporter.config import DEFAULT_LISTEN_ADDRESS, load_config, parse_listen_address
from softether_exporter.exceptions import ConfigurationError
from softether_exporter.exporter import Exporter, run_server
from softether_exporter.logger import get_logger, setup_logging

logger = get_logger(__name__)


def _reload(exporter: Exporter, config_file: str) -> None:
    try:
        exporter.reload(load_config(config_file))
    except ConfigurationError as e:
        logger.error(f"Keeping previous configuration: {e}")


def reload_in_background(exporter: Exporter, config_file: str) -> threading.Thread:
    """
    Re-read *config_file* on a worker thread.

    The signal handler runs on the event loop thread, which must not wait
    for a refresh cycle in progress.
    """
    thread = threading.Thread(
        target=_reload, args=(exporter, config_file), name='config-reload', daemon=True
    )
    thread.start()
    return thread


def _install_reload_handler(exporter: Exporter, config_file: str) -> None:
    """Reload the configuration file on SIGHUP"""
    if not hasattr(signal, 'SIGHUP'):
        return

    def _handle_reload(signum, frame):
        reload_in_background(exporter, config_file)

    signal.signal(signal.SIGHUP, _handle_reload)


@click.command()
@click.option('--config-file', type=click.Path(exists=True, dir_okay=False), required=True,
              help='Path to the exporter config (YAML, or TOML by .toml suffix)')
@click.option('--listen-address', default=DEFAULT_LISTEN_ADDRESS, show_default=True,
              help='Address to serve metrics on; ":PORT" binds on all interfaces')
@click.option('--log-format', type=click.Choice(['json', 'text']), default='json', show_default=True,
              help='Log output format')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.version_option(__version__)
def main(config_file: str, listen_address: str, log_format: str, verbose: bool):
    """Run the SoftEther Prometheus exporter"""
    level = logging.DEBUG if verbose else logging.INFO
    setup_logging(level=level, use_json=(log_format == 'json'))

    try:
        config = load_config(config_file)
        host, port = parse_listen_address(listen_address)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    exporter = Exporter(config)
    _install_reload_handler(exporter, config_file)

    click.echo(f"Server started: {host}:{port}")
    click.echo(f"Monitoring {len(config.hubs)} hub(s) on {config.server}")
    if exporter.background:
        click.echo(f"Refresh interval: {config.refresh_interval}s")

    run_server(exporter, host=host, port=port, log_level='debug' if verbose else 'info')


if __name__ == '__main__':
    main()
