# tests/engine/test_interception.py
"""Tests for the interception layer.

Every test patches a freshly built fake host, so hooks never leak.
"""

from __future__ import annotations

import asyncio
import gc
from types import SimpleNamespace
from typing import Any

import pytest

from audiotrace.contracts.records import CallReport
from audiotrace.core.clock import MockClock
from audiotrace.core.identity import IdentityResolver
from audiotrace.engine.hooks import DEFAULT_HOOK_TARGETS, HookTarget
from audiotrace.engine.hookspecs import hookimpl
from audiotrace.engine.interception import InterceptionLayer
from tests.fixtures.host import audio_blob, build_host


@pytest.fixture
def reports() -> list[CallReport]:
    return []


@pytest.fixture
def layer(reports: list[CallReport], host: SimpleNamespace) -> Any:
    layer = InterceptionLayer(IdentityResolver(), clock=MockClock(start=7.0))
    layer.add_callback(reports.append)
    layer.install(host)
    yield layer
    layer.uninstall()


def _operations(reports: list[CallReport]) -> list[str]:
    return [r.operation_name for r in reports]


class TestInstall:
    def test_installs_every_default_target(self, host: SimpleNamespace) -> None:
        layer = InterceptionLayer(IdentityResolver())

        installed = layer.install(host)

        assert set(installed) == {t.operation_name for t in DEFAULT_HOOK_TARGETS}
        layer.uninstall()

    def test_uninstall_restores_host_exactly(self, host: SimpleNamespace) -> None:
        original_init = host.AudioContext.__dict__["__init__"]
        original_connect = host.AudioNode.__dict__["connect"]
        layer = InterceptionLayer(IdentityResolver())

        layer.install(host)
        assert host.AudioContext.__dict__["__init__"] is not original_init
        layer.uninstall()

        assert host.AudioContext.__dict__["__init__"] is original_init
        assert host.AudioNode.__dict__["connect"] is original_connect
        assert layer.installed == ()

    def test_uninstall_removes_inherited_constructor_patch(self) -> None:
        """A class that inherited __init__ gets the attribute deleted again."""

        class Plain:
            pass

        host = SimpleNamespace(Blob=Plain)
        target = HookTarget("Blob.construct", "Blob", None, lambda call: {"seen": True})
        layer = InterceptionLayer(IdentityResolver(), targets=(target,))

        layer.install(host)
        assert "__init__" in Plain.__dict__
        Plain()
        layer.uninstall()

        assert "__init__" not in Plain.__dict__

    def test_missing_target_is_skipped(self) -> None:
        host = build_host()
        del host.Worker
        layer = InterceptionLayer(IdentityResolver())

        installed = layer.install(host)

        assert "Worker.construct" not in installed
        assert "Worker.postMessage" not in installed
        assert "AudioNode.connect" in installed
        layer.uninstall()

    def test_missing_method_is_skipped(self) -> None:
        class Recorder:
            pass

        host = SimpleNamespace(MediaRecorder=Recorder)
        targets = (
            HookTarget("MediaRecorder.start", "MediaRecorder", "start", lambda call: {}),
            HookTarget("MediaRecorder.construct", "MediaRecorder", None, lambda call: {}),
        )
        layer = InterceptionLayer(IdentityResolver(), targets=targets)

        assert layer.install(host) == ("MediaRecorder.construct",)
        assert "start" not in Recorder.__dict__
        layer.uninstall()

    def test_non_function_method_is_skipped(self) -> None:
        class Recorder:
            start = staticmethod(lambda: None)

        host = SimpleNamespace(MediaRecorder=Recorder)
        target = HookTarget("MediaRecorder.start", "MediaRecorder", "start", lambda call: {})
        layer = InterceptionLayer(IdentityResolver(), targets=(target,))

        assert layer.install(host) == ()

    def test_second_install_is_ignored(self, host: SimpleNamespace) -> None:
        original_connect = host.AudioNode.__dict__["connect"]
        layer = InterceptionLayer(IdentityResolver())
        first = layer.install(host)

        assert layer.install(host) == first
        layer.uninstall()
        assert host.AudioNode.__dict__["connect"] is original_connect


class TestTransparency:
    """Wrapped calls behave exactly like the originals."""

    def test_constructor_keeps_class_identity(self, layer: InterceptionLayer, host: SimpleNamespace) -> None:
        context = host.AudioContext(sample_rate=16000)

        assert type(context) is host.AudioContext
        assert isinstance(context, host.AudioContext)
        assert context.sampleRate == 16000

    def test_method_result_and_receiver_preserved(self, layer: InterceptionLayer, host: SimpleNamespace) -> None:
        context = host.AudioContext()
        gain = context.createGain()

        returned = gain.connect(context.destination, 0, 0)

        assert returned is context.destination
        assert gain.connections == [(context.destination, 0, 0)]

    def test_subclass_methods_go_through_wrapper(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        context = host.AudioContext()
        analyser = context.createAnalyser()

        analyser.connect(context.destination)

        assert "AudioNode.connect" in _operations(reports)

    def test_async_method_is_awaited(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        stream = asyncio.run(host.MediaDevices().getUserMedia({"audio": True}))

        assert isinstance(stream, host.MediaStream)
        report = reports[-1]
        assert report.operation_name == "MediaDevices.getUserMedia"
        assert report.args_summary == {"audio": True, "streamId": stream.id}

    def test_video_only_capture_is_not_reported(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        asyncio.run(host.MediaDevices().getUserMedia({"video": True}))

        assert reports == []

    def test_host_exception_propagates_unreported(self, host: SimpleNamespace, reports: list[CallReport]) -> None:
        def broken(self: Any, destination: Any, output: int = 0, input: int = 0) -> None:
            raise ValueError("IndexSizeError")

        host.AudioNode.connect = broken
        layer = InterceptionLayer(IdentityResolver())
        layer.add_callback(reports.append)
        layer.install(host)
        context = host.AudioContext()
        reports.clear()

        with pytest.raises(ValueError, match="IndexSizeError"):
            context.createGain().connect(context.destination)

        assert "AudioNode.connect" not in _operations(reports)
        layer.uninstall()


class TestReports:
    def test_constructor_report(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        context = host.AudioContext(sample_rate=44100)

        (report,) = reports
        assert report.operation_name == "AudioContext.construct"
        assert report.identity == layer._resolver.lookup(context)
        assert report.args_summary["sampleRate"] == 44100
        assert report.args_summary["destination"] == layer._resolver.lookup(context.destination)
        assert report.timestamp == 7.0

    def test_factory_reports_identify_the_result(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        context = host.AudioContext()
        processor = context.createScriptProcessor(2048, 1, 1)

        report = reports[-1]
        assert report.operation_name == "AudioContext.createScriptProcessor"
        assert report.identity is not None
        assert report.identity.startswith("ScriptProcessorNode#")
        assert report.identity == layer._resolver.lookup(processor)
        assert report.args_summary["bufferSize"] == 2048
        assert report.args_summary["context"] == layer._resolver.lookup(context)

    def test_reports_hold_no_host_objects(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        context = host.AudioContext()
        source = context.createMediaStreamSource(host.MediaStream("mic"))
        source.connect(context.createMediaStreamDestination())

        for report in reports:
            for value in report.args_summary.values():
                assert value is None or isinstance(value, str | int | float | bool | dict)

    def test_disconnect_overloads(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        context = host.AudioContext()
        gain = context.createGain()
        destination_identity = layer._resolver.resolve(context.destination)

        gain.disconnect()
        gain.disconnect(1)
        gain.disconnect(context.destination, 0)

        summaries = [r.args_summary for r in reports if r.operation_name == "AudioNode.disconnect"]
        assert summaries == [
            {"destination": None, "output": None, "input": None},
            {"destination": None, "output": 1, "input": None},
            {"destination": destination_identity, "output": 0, "input": None},
        ]

    def test_analyser_reads_reported_once_per_identity(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        analyser = host.AudioContext().createAnalyser()
        buffer = [0] * 8

        for _ in range(5):
            analyser.getByteFrequencyData(buffer)
        analyser.getByteTimeDomainData(buffer)

        assert _operations(reports).count("AnalyserNode.getByteFrequencyData") == 1
        assert _operations(reports).count("AnalyserNode.getByteTimeDomainData") == 1
        assert buffer == [128] * 8

    def test_once_per_identity_state_released_with_object(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        analyser = host.AudioContext().createAnalyser()
        analyser.getByteFrequencyData([0] * 8)
        assert layer.tracked_identities == 1

        del analyser
        gc.collect()

        assert layer.tracked_identities == 0
        fresh = host.AudioContext().createAnalyser()
        fresh.getByteFrequencyData([0] * 8)
        assert _operations(reports).count("AnalyserNode.getByteFrequencyData") == 2

    def test_bulk_worker_traffic_suppressed(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        worker = host.Worker("/js/encoderWorker.min.js")
        reports.clear()

        worker.postMessage({"command": "init", "config": {"encoderSampleRate": 48000}})
        worker.postMessage({"command": "encode", "buffers": [[0.0] * 128]})
        worker.postMessage(b"raw pcm")

        assert _operations(reports) == ["Worker.postMessage"]
        assert reports[0].args_summary["fields"] == {"command": "init", "encoderSampleRate": 48000}
        assert len(worker.messages) == 3

    def test_nested_worker_message_unwrapped(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        worker = host.Worker("/worker.js")

        worker.postMessage({"type": "message", "message": {"command": "encode-init", "config": {"bitRate": 64}}})

        summary = reports[-1].args_summary
        assert summary["nested"] is True
        assert summary["command"] == "encode-init"
        assert summary["fields"]["bitRate"] == 64

    def test_blob_report(self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]) -> None:
        audio_blob(host, 4000, "audio/WebM;codecs=opus")
        host.Blob([b"{}"])

        assert _operations(reports) == ["Blob.construct"]
        assert reports[0].args_summary == {"mediaType": "audio/webm;codecs=opus", "size": 4000}

    def test_stats_report_reduced_to_audio_streams(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        connection = host.RTCPeerConnection()
        connection.connectionState = "connected"
        connection.bytes_sent = 12000
        connection.bytes_received = 3000

        asyncio.run(connection.getStats())
        connection.close()

        assert _operations(reports) == [
            "RTCPeerConnection.construct",
            "RTCPeerConnection.getStats",
            "RTCPeerConnection.close",
        ]
        assert reports[0].args_summary == {"connectionState": "new"}
        summary = reports[1].args_summary
        assert summary["connectionState"] == "connected"
        assert summary["send"]["codec"] == "audio/opus"
        assert summary["send"]["bytes"] == 12000
        assert summary["send"]["clockRate"] == 48000
        assert summary["send"]["targetBitrate"] == 32000
        assert summary["recv"]["bytes"] == 3000
        assert summary["recv"]["jitter"] == 0.002
        assert {r.identity for r in reports} == {reports[0].identity}

    def test_stats_without_audio_not_reported(self, reports: list[CallReport]) -> None:
        class RTCPeerConnection:
            connectionState = "connected"

            def getStats(self) -> list[dict[str, Any]]:
                return [{"id": "V1", "type": "outbound-rtp", "kind": "video", "bytesSent": 10}]

        custom = InterceptionLayer(IdentityResolver())
        custom.add_callback(reports.append)
        custom.install(SimpleNamespace(RTCPeerConnection=RTCPeerConnection))
        try:
            RTCPeerConnection().getStats()
        finally:
            custom.uninstall()

        assert _operations(reports) == ["RTCPeerConnection.construct"]


class TestObservers:
    def test_suspended_layer_forwards_without_reporting(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        layer.set_suspended(True)
        context = host.AudioContext()
        gain = context.createGain()
        gain.connect(context.destination)

        assert reports == []
        assert gain.connections
        layer.set_suspended(False)
        gain.disconnect()
        assert _operations(reports) == ["AudioNode.disconnect"]

    def test_failing_observer_is_isolated(
        self, layer: InterceptionLayer, host: SimpleNamespace, reports: list[CallReport]
    ) -> None:
        def broken(report: CallReport) -> None:
            raise RuntimeError("observer bug")

        layer.add_callback(broken)

        context = host.AudioContext()

        assert context.sampleRate == 48000
        assert len(reports) == 1
        assert layer.observer_failures == 1

    def test_observers_run_in_registration_order(self, host: SimpleNamespace) -> None:
        layer = InterceptionLayer(IdentityResolver())
        order: list[str] = []
        layer.add_callback(lambda r: order.append("first"))
        layer.add_callback(lambda r: order.append("second"))
        layer.install(host)

        host.AudioContext()

        assert order == ["first", "second"]
        layer.uninstall()

    def test_plugin_observer(self, host: SimpleNamespace) -> None:
        class Counter:
            def __init__(self) -> None:
                self.count = 0

            @hookimpl
            def audiotrace_observe_call(self, report: CallReport) -> None:
                self.count += 1

        counter = Counter()
        layer = InterceptionLayer(IdentityResolver())
        layer.register_observer(counter, name="counter")
        layer.install(host)

        host.AudioContext()
        layer.unregister_observer(counter)
        host.AudioContext()

        assert counter.count == 1
        assert layer.reports_emitted == 2
        layer.uninstall()

    def test_summary_failure_is_not_reported(self, reports: list[CallReport]) -> None:
        class Thing:
            def poke(self) -> None:
                pass

        def broken_summary(call: Any) -> dict[str, Any]:
            raise KeyError("missing")

        host = SimpleNamespace(Thing=Thing)
        layer = InterceptionLayer(IdentityResolver(), targets=(HookTarget("Thing.poke", "Thing", "poke", broken_summary),))
        layer.add_callback(reports.append)
        layer.install(host)

        Thing().poke()

        assert reports == []
        layer.uninstall()
