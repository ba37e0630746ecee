"""
Unit tests for metrics recording (light sanity checks).
"""

from prometheus_client import REGISTRY

from stream_engine.metrics import metrics_registry
from stream_engine.models import ConsumerIdentity
from stream_engine.reader import ReadEngine
from stream_engine.writer import WriteEngine


def _value(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_poll_and_ack_counters(broker):
    broker.create_group("m-a", "mg", "0")
    reader = ReadEngine(broker, ConsumerIdentity(group="mg", consumer="c"), ["m-a"])
    before_polled = _value("stream_engine_messages_polled_total", stream="m-a", origin="fresh")
    before_empty = _value("stream_engine_polls_total", group="mg", outcome="empty")

    reader.poll()
    broker.add("m-a", k="v")
    reader.poll()
    list(reader)
    reader.ack()

    assert _value("stream_engine_polls_total", group="mg", outcome="empty") == before_empty + 1
    assert (
        _value("stream_engine_messages_polled_total", stream="m-a", origin="fresh")
        == before_polled + 1
    )
    assert _value("stream_engine_messages_acked_total", stream="m-a") >= 1


def test_append_outcomes(broker):
    before = _value("stream_engine_entries_appended_total", stream="m-out", outcome="success")
    WriteEngine(broker, "m-out").write_row(b"x")
    after = _value("stream_engine_entries_appended_total", stream="m-out", outcome="success")
    assert after == before + 1


def test_registry_exposes_metrics():
    samples = list(metrics_registry.poll_latency_ms.collect())[0].samples
    assert isinstance(samples, list)
