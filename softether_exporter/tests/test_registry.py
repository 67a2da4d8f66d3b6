"""
Unit tests for the metric registry.
"""

import pytest

from softether_exporter import registry as metrics
from softether_exporter.registry import FAMILIES, MetricRegistry


class TestCatalog:
    """Test the declared gauge catalog"""

    def test_names_are_unique(self):
        """Should declare every family once"""
        names = [family.name for family in FAMILIES]
        assert len(names) == len(set(names))

    def test_label_sets(self):
        """Should use the wire-contract label names"""
        assert metrics.SYSTEM_CPU_LOAD.labelnames == ()
        assert metrics.SYSTEM_LOAD_AVERAGE.labelnames == ('interval',)
        assert metrics.SYSTEM_NETWORK_PACKETS_IN.labelnames == ('interface',)
        assert metrics.SOFTETHER_UP.labelnames == ('hub',)
        assert metrics.SOFTETHER_INCOMING_BROADCAST_BYTES.labelnames == ('hub',)
        assert metrics.SOFTETHER_USER_TRANSFER_BYTES.labelnames == ('hub', 'user')

    def test_empty_families_are_not_exposed(self):
        """Should leave out labeled families that have no series yet"""
        text = MetricRegistry().encode().decode()

        for family in FAMILIES:
            if family.labelnames:
                assert f'# HELP {family.name} ' not in text
                assert f'# TYPE {family.name} gauge' not in text
            else:
                assert f'# HELP {family.name} ' in text
        assert 'softether_' not in text

    def test_family_exposed_after_first_write(self):
        """Should emit HELP and TYPE once a family has a series"""
        registry = MetricRegistry()
        registry.set_value(metrics.SOFTETHER_UP, ('HUB1',), 0)

        text = registry.encode().decode()

        assert '# HELP softether_up The last query is successful.' in text
        assert '# TYPE softether_up gauge' in text
        assert 'softether_sessions' not in text


class TestMetricRegistry:
    """Test MetricRegistry reads and writes"""

    def test_set_and_read_labeled_series(self):
        """Should create a series on first write"""
        registry = MetricRegistry()
        assert registry.value(metrics.SOFTETHER_UP, 'HUB1') is None

        series = registry.get_or_create_series(metrics.SOFTETHER_UP, ('HUB1',))
        registry.set(series, 1)

        assert registry.value(metrics.SOFTETHER_UP, 'HUB1') == 1.0

    def test_last_write_wins(self):
        """Should overwrite an existing series"""
        registry = MetricRegistry()
        registry.set_value(metrics.SOFTETHER_SESSIONS, ('HUB1',), 3)
        registry.set_value(metrics.SOFTETHER_SESSIONS, ('HUB1',), 7)

        assert registry.value(metrics.SOFTETHER_SESSIONS, 'HUB1') == 7.0
        assert registry.label_values(metrics.SOFTETHER_SESSIONS, 'hub') == ['HUB1']

    def test_scalar_series(self):
        """Should set unlabeled gauges with an empty label tuple"""
        registry = MetricRegistry()
        registry.set_value(metrics.SYSTEM_UPTIME, (), 1234.5)
        assert registry.value(metrics.SYSTEM_UPTIME) == 1234.5

    def test_wrong_label_arity_rejected(self):
        """Should raise ValueError on a wrong number of label values"""
        registry = MetricRegistry()
        with pytest.raises(ValueError):
            registry.get_or_create_series(metrics.SOFTETHER_UP, ())
        with pytest.raises(ValueError):
            registry.get_or_create_series(metrics.SOFTETHER_USER_TRANSFER_BYTES, ('HUB1',))
        with pytest.raises(ValueError):
            registry.get_or_create_series(metrics.SYSTEM_CPU_LOAD, ('x',))

    def test_empty_hub_name_is_a_label_value(self):
        """Should keep empty hub names verbatim"""
        registry = MetricRegistry()
        registry.set_value(metrics.SOFTETHER_UP, ('',), 0)
        assert registry.value(metrics.SOFTETHER_UP, '') == 0.0

    def test_snapshot(self):
        """Should return name, help, labels and value per series"""
        registry = MetricRegistry()
        registry.set_value(metrics.SOFTETHER_USER_TRANSFER_PACKETS, ('HUB1', 'alice'), 42)

        samples = [s for s in registry.snapshot() if s.name == 'softether_user_transfer_packets']
        assert len(samples) == 1
        sample = samples[0]
        assert sample.documentation == 'User transfer in packets.'
        assert sample.labels == {'hub': 'HUB1', 'user': 'alice'}
        assert sample.value == 42.0

    def test_remove_hub(self):
        """Should drop all series of one hub and keep the others"""
        registry = MetricRegistry()
        for hub in ('HUB1', 'HUB2'):
            registry.set_value(metrics.SOFTETHER_UP, (hub,), 1)
            registry.set_value(metrics.SOFTETHER_SESSIONS, (hub,), 2)
        registry.set_value(metrics.SOFTETHER_USER_TRANSFER_BYTES, ('HUB1', 'bob'), 10)

        removed = registry.remove_hub('HUB1')

        assert removed == 3
        assert registry.value(metrics.SOFTETHER_UP, 'HUB1') is None
        assert registry.value(metrics.SOFTETHER_USER_TRANSFER_BYTES, 'HUB1', 'bob') is None
        assert registry.value(metrics.SOFTETHER_UP, 'HUB2') == 1.0

    def test_encode(self):
        """Should render series in the text exposition format"""
        registry = MetricRegistry()
        registry.set_value(metrics.SOFTETHER_UP, ('HUB1',), 1)

        text = registry.encode().decode()

        assert 'softether_up{hub="HUB1"} 1.0' in text
        assert registry.content_type.startswith('text/plain')

    def test_registries_are_independent(self):
        """Should not share state between instances"""
        first = MetricRegistry()
        second = MetricRegistry()
        first.set_value(metrics.SOFTETHER_UP, ('HUB1',), 1)
        assert second.value(metrics.SOFTETHER_UP, 'HUB1') is None

    def test_transaction_is_reentrant(self):
        """Should allow writes while the transaction holds the lock"""
        registry = MetricRegistry()
        with registry.transaction() as reg:
            reg.set_value(metrics.SOFTETHER_UP, ('HUB1',), 1)
            reg.set_value(metrics.SOFTETHER_ONLINE, ('HUB1',), 1)
        assert registry.value(metrics.SOFTETHER_ONLINE, 'HUB1') == 1.0
