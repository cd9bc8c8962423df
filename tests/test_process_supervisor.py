"""Tests for gifcapture.process_supervisor — real QProcess runs of the Python interpreter."""

import sys

import pytest

from gifcapture.process_supervisor import ProcessResult, ProcessSupervisor


def _script(code: str) -> list:
    return ["-c", code]


@pytest.fixture
def supervisor(qapp):
    sup = ProcessSupervisor(kill_after_ms=2000)
    yield sup
    sup.stop()


def _record(sup: ProcessSupervisor):
    out: list = []
    results: list = []
    sup.output.connect(out.append)
    sup.finished.connect(results.append)
    return out, results


class TestProcessResult:
    def test_ok(self) -> None:
        assert ProcessResult(exit_code=0).ok

    def test_non_zero(self) -> None:
        assert not ProcessResult(exit_code=1).ok

    def test_spawn_error(self) -> None:
        assert not ProcessResult(exit_code=None, spawn_error="nope").ok

    def test_crash(self) -> None:
        assert not ProcessResult(exit_code=None, crashed=True).ok


class TestProcessSupervisor:
    def test_streams_stderr_and_reports_exit_code(self, supervisor, wait_until) -> None:
        out, results = _record(supervisor)
        supervisor.run(sys.executable, _script(
            "import sys; sys.stderr.write('frame=1 time=00:00:01.00 bitrate=1k\\n'); sys.exit(3)"
        ))

        wait_until(lambda: results)

        assert results == [ProcessResult(exit_code=3)]
        assert "time=00:00:01.00" in "".join(out)
        assert not supervisor.is_running

    def test_clean_exit(self, supervisor, wait_until) -> None:
        _, results = _record(supervisor)
        supervisor.run(sys.executable, _script("pass"))
        wait_until(lambda: results)
        assert results[0].ok

    def test_spawn_failure(self, supervisor, wait_until, tmp_path) -> None:
        _, results = _record(supervisor)
        supervisor.run(str(tmp_path / "no-such-ffmpeg"), ["-version"])

        wait_until(lambda: results)

        assert len(results) == 1
        assert results[0].spawn_error
        assert not results[0].ok

    def test_cancel_stops_running_process(self, supervisor, wait_until) -> None:
        out, results = _record(supervisor)
        supervisor.run(sys.executable, _script(
            "import sys, time; sys.stderr.write('ready\\n'); sys.stderr.flush(); time.sleep(30)"
        ))
        wait_until(lambda: "ready" in "".join(out))

        supervisor.cancel()
        wait_until(lambda: results)

        assert len(results) == 1
        assert not results[0].ok
        assert not supervisor.is_running

    def test_single_use(self, supervisor, wait_until) -> None:
        _, results = _record(supervisor)
        supervisor.run(sys.executable, _script("pass"))
        with pytest.raises(RuntimeError):
            supervisor.run(sys.executable, _script("pass"))
        wait_until(lambda: results)

    def test_cancel_when_idle_is_noop(self, supervisor) -> None:
        supervisor.cancel()
        assert not supervisor.is_running

    def test_remembers_command(self, supervisor, wait_until) -> None:
        _, results = _record(supervisor)
        supervisor.run(sys.executable, _script("pass"))
        assert supervisor.program == sys.executable
        assert supervisor.arguments == ["-c", "pass"]
        wait_until(lambda: results)
