"""
Unit tests for the refresh orchestrator and the HTTP app.
"""

import time
from unittest.mock import patch

from fastapi.testclient import TestClient

from softether_exporter import registry as metrics
from softether_exporter.config import Config, Hub
from softether_exporter.exporter import LANDING_PAGE, Exporter, create_app
from softether_exporter.reader import HubStatus


class CountingReader:
    """Reader stub that records every hub query"""

    def __init__(self, status=None):
        self.status = status or HubStatus(online=True, sessions=1)
        self.calls = []

    def hub_status(self, vpncmd, server, hub, password):
        self.calls.append(hub)
        return self.status


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _exporter(sleep: int = 0, **kwargs) -> Exporter:
    config = Config(hubs=[Hub(name='HUB1')], sleep=sleep, **kwargs.pop('config', {}))
    return Exporter(config, reader=kwargs.pop('reader', CountingReader()), **kwargs)


class TestRefresh:
    """Test Exporter refresh cycles"""

    def test_system_stats_before_hubs(self):
        """Should run the system collector before the hub collector"""
        exporter = _exporter()
        order = []
        with patch.object(exporter.system_collector, 'collect', side_effect=lambda: order.append('system')), \
             patch.object(exporter.hub_collector, 'collect', side_effect=lambda: order.append('hubs')):
            exporter.refresh()

        assert order == ['system', 'hubs']
        assert exporter.cycles == 1

    def test_throttle_window(self):
        """Should reuse the last cycle within the sleep window"""
        clock = FakeClock()
        reader = CountingReader()
        exporter = _exporter(sleep=500, reader=reader, clock=clock)

        assert exporter.refresh_if_due() is True
        clock.now += 0.2
        assert exporter.refresh_if_due() is False
        clock.now += 0.4
        assert exporter.refresh_if_due() is True

        assert reader.calls == ['HUB1', 'HUB1']

    def test_zero_sleep_always_refreshes(self):
        """Should refresh on every scrape without a sleep window"""
        reader = CountingReader()
        exporter = _exporter(sleep=0, reader=reader)
        exporter.scrape()
        exporter.scrape()
        assert reader.calls == ['HUB1', 'HUB1']

    def test_reload_swaps_hubs(self):
        """Should query the new hub list after reload"""
        reader = CountingReader()
        exporter = _exporter(reader=reader)
        exporter.refresh()

        exporter.reload(Config(hubs=[Hub(name='HUB2')], sleep=0))
        exporter.refresh()

        assert reader.calls == ['HUB1', 'HUB2']
        assert exporter.registry.value(metrics.SOFTETHER_UP, 'HUB1') == 1

    def test_reload_prunes_when_enabled(self):
        """Should drop removed hubs when pruning is enabled"""
        exporter = _exporter()
        exporter.refresh()

        exporter.reload(Config(hubs=[Hub(name='HUB2')], sleep=0, prune_removed_hubs=True))

        assert exporter.registry.value(metrics.SOFTETHER_UP, 'HUB1') is None


class TestBackgroundRefresh:
    """Test background refresh mode"""

    def test_start_and_stop(self):
        """Should refresh on a timer and stop cleanly"""
        reader = CountingReader()
        exporter = _exporter(reader=reader, config={'refresh_interval': 0.05})
        exporter.start()
        try:
            deadline = time.time() + 5
            while exporter.cycles < 2 and time.time() < deadline:
                time.sleep(0.01)
            assert exporter.is_running
        finally:
            exporter.stop()

        assert exporter.cycles >= 2
        assert not exporter.is_running

    def test_scrape_does_not_refresh(self):
        """Should only encode when refreshing in the background"""
        reader = CountingReader()
        exporter = _exporter(reader=reader, config={'refresh_interval': 60})

        body = exporter.scrape()

        assert reader.calls == []
        assert b'softether_up' not in body
        assert b'# HELP system_cpu_load' in body

    def test_start_is_noop_on_demand(self):
        """Should not spawn a thread without refresh_interval"""
        exporter = _exporter()
        exporter.start()
        assert not exporter.is_running


class TestHttpApp:
    """Test HTTP routing"""

    def test_metrics_endpoint(self):
        """Should refresh and return the exposition format"""
        reader = CountingReader(HubStatus(online=True, sessions=3))
        exporter = _exporter(reader=reader)
        client = TestClient(create_app(exporter))

        response = client.get('/metrics')

        assert response.status_code == 200
        assert response.headers['content-type'] == exporter.registry.content_type
        assert 'softether_sessions{hub="HUB1"} 3.0' in response.text
        assert 'system_memory_usage ' in response.text
        assert reader.calls == ['HUB1']

    def test_other_paths_get_landing_page(self):
        """Should serve the landing page without refreshing"""
        reader = CountingReader()
        client = TestClient(create_app(_exporter(reader=reader)))

        for path in ('/', '/index.html', '/metrics/', '/some/unknown/path'):
            response = client.get(path)
            assert response.status_code == 200
            assert response.text == LANDING_PAGE
            assert 'href="/metrics"' in response.text
            assert response.headers['content-type'].startswith('text/html')

        assert reader.calls == []

    def test_encode_failure_returns_500(self):
        """Should fail only the current request when encoding fails"""
        exporter = _exporter()
        client = TestClient(create_app(exporter))

        with patch.object(exporter.registry, 'encode', side_effect=RuntimeError('boom')):
            assert client.get('/metrics').status_code == 500

        assert client.get('/metrics').status_code == 200

    def test_lifespan_runs_background_refresh(self):
        """Should start and stop the refresh thread with the app"""
        exporter = _exporter(config={'refresh_interval': 30})
        with TestClient(create_app(exporter)):
            assert exporter.is_running
        assert not exporter.is_running
