"""Tests for MetricsQueue."""

from unittest.mock import patch

import pytest

from conftest import START
from tsmetrics.exceptions import ClientError, InvalidConfiguration, InvalidMeasureTime
from tsmetrics.persistence import TestPersister
from tsmetrics.queue import MetricsQueue

NOW = int(START.timestamp())


@pytest.fixture
def make_queue(client, clock, persister):
    def _make(options=None, **kwargs):
        kwargs.setdefault('client', client)
        kwargs.setdefault('clock', clock)
        kwargs.setdefault('persister', persister)
        return MetricsQueue(options, **kwargs)
    return _make


class TestConstruction:
    """Tests for queue construction."""

    def test_rejects_conflicting_options(self, make_queue):
        with pytest.raises(InvalidConfiguration):
            make_queue({'measure_time': NOW, 'tags': {'region': 'us'}})

    def test_rejects_non_mapping_options(self, make_queue):
        with pytest.raises(InvalidConfiguration):
            make_queue(['source'])

    def test_exposes_engine_settings(self, make_queue, client, persister):
        queue = make_queue({'per_request': 10, 'prefix': 'web'})

        assert queue.client is client
        assert queue.persister is persister
        assert queue.per_request == 10
        assert queue.prefix == 'web'
        assert queue.last_submit_time is None
        assert queue.empty()


class TestAdd:
    """Tests for adding measurements."""

    def test_add_plain_values(self, make_queue):
        queue = make_queue()
        queue.add({'cpu': 12.5, 'mem': 40})

        assert queue.queued == [
            {'value': 12.5, 'name': 'cpu', 'measure_time': NOW, 'type': 'gauge'},
            {'value': 40, 'name': 'mem', 'measure_time': NOW, 'type': 'gauge'},
        ]
        assert queue.size == 2
        assert len(queue) == 2

    def test_add_is_chainable(self, make_queue):
        queue = make_queue()
        assert queue.add({'a': 1}).add({'b': 2}) is queue
        assert queue.size == 2

    def test_counter(self, make_queue):
        queue = make_queue()
        queue.add({'requests': {'value': 3, 'type': 'counter'}})
        assert queue.queued[0]['type'] == 'counter'

    def test_unknown_type(self, make_queue):
        with pytest.raises(InvalidConfiguration):
            make_queue().add({'requests': {'value': 3, 'type': 'histogram'}})

    def test_missing_value(self, make_queue):
        with pytest.raises(InvalidConfiguration):
            make_queue().add({'requests': {'source': 'app1'}})

    def test_rejects_non_mapping(self, make_queue):
        with pytest.raises(InvalidConfiguration):
            make_queue().add([('cpu', 1)])

    def test_prefix(self, make_queue):
        queue = make_queue({'prefix': 'web'})
        queue.add({'cpu': 1})
        queue.prefix = 'api'
        queue.add({'cpu': 2})

        assert [m['name'] for m in queue.queued] == ['web.cpu', 'api.cpu']

    def test_default_source(self, make_queue):
        queue = make_queue({'source': 'app1'})
        queue.add({'cpu': 1, 'mem': {'value': 2, 'source': 'app2'}})

        assert [m['source'] for m in queue.queued] == ['app1', 'app2']

    def test_default_tags(self, make_queue):
        queue = make_queue({'tags': {'region': 'us'}})
        queue.add({'cpu': 1, 'mem': {'value': 2, 'tags': {'region': 'eu'}}})

        cpu, mem = queue.queued
        assert cpu['tags'] == {'region': 'us'}
        assert cpu['time'] == NOW
        assert 'measure_time' not in cpu
        assert mem['tags'] == {'region': 'eu'}

    def test_default_measure_time(self, make_queue):
        queue = make_queue({'measure_time': NOW - 60})
        queue.add({'cpu': 1})
        assert queue.queued[0]['measure_time'] == NOW - 60

    def test_default_time(self, make_queue):
        queue = make_queue({'time': NOW - 60})
        queue.add({'cpu': 1})
        assert queue.queued[0]['time'] == NOW - 60

    def test_explicit_time_is_truncated(self, make_queue):
        queue = make_queue()
        queue.add({'cpu': {'value': 1, 'measure_time': NOW - 9.3}})
        assert queue.queued[0]['measure_time'] == NOW - 10

    def test_measure_time_renamed_for_tagged_client(self, make_queue, tagged_client):
        queue = make_queue(client=tagged_client)
        queue.add({'cpu': {'value': 1, 'measure_time': NOW - 5}})

        metric = queue.queued[0]
        assert metric['time'] == NOW - 5
        assert 'measure_time' not in metric

    def test_old_measure_time(self, make_queue):
        queue = make_queue()
        with pytest.raises(InvalidMeasureTime):
            queue.add({'cpu': {'value': 1, 'measure_time': NOW - 366 * 24 * 60 * 60}})
        assert queue.empty()

    def test_skip_measurement_times(self, make_queue):
        queue = make_queue({'skip_measurement_times': True})
        queue.add({'cpu': 1})
        assert 'measure_time' not in queue.queued[0]

    @pytest.mark.parametrize('options', [
        {'source': 'a', 'tags': {'b': 'c'}},
        {'measure_time': NOW, 'time': NOW},
        {'source': 'a', 'time': NOW},
        {'measure_time': NOW, 'tags': {'b': 'c'}},
    ])
    def test_rejects_conflicting_measurement_options(self, make_queue, options):
        queue = make_queue()
        with pytest.raises(InvalidConfiguration):
            queue.add({'ok': 1, 'bad': dict(options, value=1)})
        assert queue.empty()

    def test_rejects_source_for_tagged_client(self, make_queue, tagged_client):
        queue = make_queue(client=tagged_client)
        with pytest.raises(InvalidConfiguration):
            queue.add({'cpu': {'value': 1, 'source': 'app1'}})
        assert queue.empty()

    def test_rejects_source_when_default_tags_are_set(self, make_queue):
        queue = make_queue({'tags': {'region': 'us'}})
        with pytest.raises(InvalidConfiguration):
            queue.add({'cpu': {'value': 1, 'source': 'app1'}})
        assert queue.empty()

    def test_clear(self, make_queue):
        queue = make_queue()
        queue.add({'cpu': 1})
        queue.clear()
        assert queue.empty()


class TestSubmit:
    """Tests for submitting a queue."""

    def test_submit_in_batches(self, make_queue, persister, clock):
        queue = make_queue({'per_request': 2})
        queue.add({'a': 1, 'b': 2, 'c': 3})
        clock.advance(1)

        assert queue.submit() is True

        assert [len(batch) for batch in persister.persisted] == [2, 1]
        assert queue.empty()
        assert queue.last_submit_time == clock.now

    def test_declined_submit_keeps_queue(self, make_queue):
        queue = make_queue(persister=TestPersister(return_value=False))
        queue.add({'a': 1})

        assert queue.submit() is False
        assert queue.size == 1

    def test_clear_failures(self, make_queue):
        queue = make_queue({'clear_failures': True}, persister=TestPersister(error=ClientError("bad")))
        queue.add({'a': 1})

        with pytest.raises(ClientError):
            queue.submit()
        assert queue.empty()

    def test_autosubmit_count(self, make_queue, persister):
        queue = make_queue({'autosubmit_count': 3})
        queue.add({'a': 1, 'b': 2})
        assert persister.persisted == []

        queue.add({'c': 3})
        assert len(persister.persisted) == 1
        assert queue.empty()

    def test_autosubmit_interval_on_add(self, make_queue, persister, clock):
        queue = make_queue({'autosubmit_interval': 60})
        queue.add({'a': 1})
        assert queue.size == 1

        clock.advance(61)
        queue.add({'b': 2})

        assert queue.empty()
        assert [m['name'] for m in persister.persisted[0]] == ['a', 'b']

    def test_check_autosubmit(self, make_queue, persister, clock):
        queue = make_queue({'autosubmit_interval': 60})
        queue.add({'a': 1})
        clock.advance(59)
        queue.check_autosubmit()
        assert queue.size == 1

        clock.advance(2)
        queue.check_autosubmit()
        assert queue.empty()


class TestTime:
    """Tests for timing blocks into the queue."""

    def test_time_queues_sample(self, make_queue):
        queue = make_queue({'source': 'app1'})

        with patch('tsmetrics.processor.perf_counter', side_effect=[5.0, 5.1]):
            result = queue.time('x', lambda: 42)

        assert result == 42
        assert queue.size == 1
        sample = queue.queued[0]
        assert sample['name'] == 'x'
        assert sample['value'] == pytest.approx(100.0)
        assert sample['source'] == 'app1'
        assert sample['measure_time'] == NOW

    def test_time_uses_prefix(self, make_queue):
        queue = make_queue({'prefix': 'web'})
        queue.time('render', lambda: None)
        assert queue.queued[0]['name'] == 'web.render'

    def test_failing_work_queues_nothing(self, make_queue):
        queue = make_queue()

        def work():
            raise KeyError('missing')

        with pytest.raises(KeyError):
            queue.time('x', work)
        assert queue.empty()

    def test_timer(self, make_queue):
        queue = make_queue()
        with queue.timer('block', {'tags': {'host': 'a'}}):
            pass

        sample = queue.queued[0]
        assert sample['tags'] == {'host': 'a'}
        assert sample['time'] == NOW

    def test_benchmark(self, make_queue):
        queue = make_queue()
        assert queue.benchmark('x', lambda: 'ok') == 'ok'
        assert queue.size == 1
