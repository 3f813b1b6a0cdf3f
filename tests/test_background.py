import io
import subprocess

import ciharness.background as ch_background
from ciharness.background import BackgroundTask, heartbeat, prefix_line, tail


def test_heartbeat_is_bounded():
    out = io.StringIO()
    sleeps = []
    heartbeat("…", 3, 60, out, sleep=sleeps.append)
    assert out.getvalue() == "………"
    assert sleeps == [60, 60, 60]


def test_heartbeat_with_newlines():
    out = io.StringIO()
    heartbeat("…\n", 2, 1, out, sleep=lambda seconds: None)
    assert out.getvalue().splitlines() == ["…", "…"]


def _append(fpath, text):
    with open(fpath, "a") as f:
        f.write(text)


def test_tail_waits_for_file_and_copies_new_lines(tmp_path):
    log = tmp_path / "cromwell.log"
    out = io.StringIO()
    steps = [
        lambda: log.write_text("written before following\n"),
        lambda: _append(log, "first li"),
        lambda: _append(log, "ne\nsecond line\n"),
    ]
    sleeps = []
    stop = False

    def fake_sleep(seconds):
        nonlocal stop
        sleeps.append(seconds)
        if steps:
            steps.pop(0)()
        else:
            stop = True

    tail(str(log), 2, out, sleep=fake_sleep, follow_interval=1, should_stop=lambda: stop)
    assert out.getvalue() == "first line\nsecond line\n"
    assert sleeps == [2, 1, 1, 1]


def test_tail_gives_up_waiting_when_stopped(tmp_path):
    out = io.StringIO()
    tail(str(tmp_path / "never"), 2, out, should_stop=lambda: True)
    assert out.getvalue() == ""


def test_prefix_line():
    assert prefix_line("mysql-5.7_1", "ready\n") == "\x1b[35mmysql-5.7_1\x1b[0m ready\n"


class _FakeProcess:
    pid = 4321

    def __init__(self, hangs=False):
        self.hangs = hangs
        self.waited = []

    def wait(self, timeout=None):
        self.waited.append(timeout)
        if self.hangs:
            raise subprocess.TimeoutExpired("tail", timeout)
        return 0


def test_stop_kills_the_tree(monkeypatch):
    killed = []
    monkeypatch.setattr(ch_background, "kill_tree", killed.append)
    process = _FakeProcess()
    BackgroundTask("tail", process).stop()
    assert killed == [4321]
    assert process.waited == [ch_background.STOP_TIMEOUT]


def test_stop_tolerates_a_hung_task(monkeypatch):
    monkeypatch.setattr(ch_background, "kill_tree", lambda pid: None)
    BackgroundTask("heartbeat", _FakeProcess(hangs=True)).stop()


def test_heartbeat_task_is_registered(make_context, monkeypatch):
    spawned = []

    def fake_spawn(kind, *args, stdout=None):
        spawned.append((kind, args))
        return BackgroundTask(kind, _FakeProcess())

    monkeypatch.setattr(ch_background, "spawn_background", fake_spawn)
    ctx = make_context()
    task = ch_background.start_build_heartbeat(ctx)

    kind, args = spawned[0]
    assert kind == "heartbeat"
    assert f"--iterations={ctx.variables.heartbeat_minutes}" in args
    assert [action.description.split("(")[0] for action in ctx.registry.actions] == [
        "BackgroundTask.stop"
    ]
    assert task.pid == 4321


def test_main_runs_heartbeat(capsys):
    assert ch_background.main(["heartbeat", "--pattern=x", "--iterations=0"]) == 0
    assert capsys.readouterr().out == ""
