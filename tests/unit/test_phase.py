"""Unit tests for Phase and run_to_completion."""

from __future__ import annotations

import io
import threading

import pytest

from packforge.core.engine import run_to_completion
from packforge.core.errors import PhaseCancelledError, PhaseExecutionError
from packforge.core.phase import Phase
from packforge.models.images import ContainerSpec
from packforge.models.phases import PhaseName
from packforge.output import BuildLogger
from tests.fakes import BUILDER, FakeContainer, FakeEngine


def _phase(engine: FakeEngine, name: PhaseName, logger: BuildLogger) -> Phase:
    spec = ContainerSpec(image=BUILDER, cmd=[f"/lifecycle/{name.value}", "-flag"])
    return Phase(name, spec, engine, logger, poll_interval=0.001)


def _exit_with(code: int, text: bytes = b"") -> object:
    def _handler(engine: FakeEngine, container: FakeContainer, args: list[str]) -> int:
        if text:
            container.output.append(("stdout", text))
        return code

    return _handler


class TestPhase:
    def test_success(self, engine: FakeEngine, build_logger: BuildLogger):
        engine.handlers["builder"] = _exit_with(0)
        with _phase(engine, PhaseName.BUILD, build_logger) as phase:
            phase.run()
            assert phase.exit_code == 0
        assert engine.live_containers() == []

    def test_output_prefixed_with_phase_name(self, engine: FakeEngine, build_logger: BuildLogger, out: io.StringIO):
        engine.handlers["builder"] = _exit_with(0, b"compiling\nlinking\n")
        with _phase(engine, PhaseName.BUILD, build_logger) as phase:
            phase.run()
        assert "[builder] compiling\n[builder] linking\n" in out.getvalue()

    def test_nonzero_exit(self, engine: FakeEngine, build_logger: BuildLogger):
        engine.handlers["builder"] = _exit_with(3)
        with pytest.raises(PhaseExecutionError) as exc_info:
            with _phase(engine, PhaseName.BUILD, build_logger) as phase:
                phase.run()
        assert exc_info.value.phase == "build"
        assert exc_info.value.exit_code == 3
        assert engine.live_containers() == []

    def test_detect_no_group(self, engine: FakeEngine, build_logger: BuildLogger):
        engine.handlers["detector"] = _exit_with(6)
        phase = _phase(engine, PhaseName.DETECT, build_logger)
        with pytest.raises(PhaseExecutionError) as exc_info:
            phase.run()
        assert phase.no_buildpack_group
        assert exc_info.value.no_buildpack_group

    def test_cancel_kills_container(self, engine: FakeEngine, build_logger: BuildLogger):
        cancel = threading.Event()

        def _hang(engine: FakeEngine, container: FakeContainer, args: list[str]) -> None:
            cancel.set()
            return None

        engine.handlers["builder"] = _hang
        with pytest.raises(PhaseCancelledError, match="build"):
            with _phase(engine, PhaseName.BUILD, build_logger) as phase:
                phase.run(cancel)
        assert ("kill", "builder") in engine.events
        assert engine.live_containers() == []

    def test_cleanup_is_idempotent(self, engine: FakeEngine, build_logger: BuildLogger):
        engine.handlers["builder"] = _exit_with(0)
        phase = _phase(engine, PhaseName.BUILD, build_logger)
        phase.cleanup()
        phase.run()
        phase.cleanup()
        phase.cleanup()
        assert [e for e in engine.events if e[0] == "remove"] == [("remove", "builder")]

    def test_repr(self, engine: FakeEngine, build_logger: BuildLogger):
        assert repr(_phase(engine, PhaseName.BUILD, build_logger)) == "<Phase builder args=['-flag']>"


class TestRunToCompletion:
    def test_interrupt_kills_and_propagates(self, engine: FakeEngine, monkeypatch: pytest.MonkeyPatch):
        container_id = engine.create_container(ContainerSpec(image=BUILDER, cmd=["true"]))

        def _interrupted(container_id: str, timeout: float | None = None) -> int | None:
            raise KeyboardInterrupt

        monkeypatch.setattr(engine, "wait_container", _interrupted)
        with pytest.raises(KeyboardInterrupt):
            run_to_completion(engine, container_id, io.StringIO(), io.StringIO())
        assert ("kill", "true") in engine.events

    def test_returns_exit_code(self, engine: FakeEngine):
        container_id = engine.create_container(ContainerSpec(image=BUILDER, cmd=["true"]))
        assert run_to_completion(engine, container_id, io.StringIO(), io.StringIO()) == 0
