import contextlib
import os
import signal
import subprocess
import sys

import pytest

import ciharness.utils.process_tree as chu_process_tree
from ciharness.utils.process_tree import descendants, kill_tree

from .conftest import wait_until_gone

# 1 -> (2 -> 4), 3
_TREE = {1: [2, 3], 2: [4], 3: [], 4: []}


@pytest.fixture
def fake_tree(monkeypatch):
    signalled = []
    monkeypatch.setattr(chu_process_tree, "_direct_children", lambda pid: _TREE.get(pid, []))
    monkeypatch.setattr(
        chu_process_tree, "_signal_one", lambda pid, sig: signalled.append((pid, sig))
    )
    return signalled


def test_descendants_deepest_first(fake_tree):
    assert descendants(1) == [4, 2, 3]
    assert descendants(3) == []


def test_children_die_before_parents(fake_tree):
    kill_tree(1)
    assert fake_tree == [
        (4, signal.SIGTERM),
        (2, signal.SIGTERM),
        (3, signal.SIGTERM),
        (1, signal.SIGTERM),
    ]


def test_vanished_process_is_ignored(monkeypatch):
    def gone(pid, sig):
        raise ProcessLookupError(pid)

    monkeypatch.setattr(chu_process_tree, "_direct_children", lambda pid: [])
    monkeypatch.setattr(chu_process_tree.os, "kill", gone)
    kill_tree(99999)


_SPAWN_GRANDCHILD = """
import subprocess, sys, time
child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
print(child.pid, flush=True)
time.sleep(60)
"""


def test_kills_real_grandchildren():
    parent = subprocess.Popen(
        [sys.executable, "-c", _SPAWN_GRANDCHILD], stdout=subprocess.PIPE, text=True
    )
    try:
        grandchild = int(parent.stdout.readline())
        assert descendants(parent.pid) == [grandchild]

        kill_tree(parent.pid)
        assert parent.wait(timeout=10) == -signal.SIGTERM
        wait_until_gone(grandchild)
    finally:
        parent.kill()
        parent.wait()
        parent.stdout.close()


# Every level prints its own pid, then starts the next one down.
_CHAIN = """
import os, subprocess, sys, time
depth = int(sys.argv[1])
print(os.getpid(), flush=True)
if depth:
    subprocess.Popen([sys.executable, __file__, str(depth - 1)])
time.sleep(60)
"""


def test_real_three_level_tree_dies_bottom_up(tmp_path, monkeypatch):
    script = tmp_path / "chain.py"
    script.write_text(_CHAIN)
    top = subprocess.Popen(
        [sys.executable, str(script), "2"], stdout=subprocess.PIPE, text=True
    )
    pids = []
    try:
        pids = [int(top.stdout.readline()) for _ in range(3)]
        middle, bottom = descendants(top.pid)[::-1]
        assert sorted(pids) == sorted([top.pid, middle, bottom])

        signalled = []
        real_kill = chu_process_tree.os.kill

        def recording_kill(pid, sig):
            signalled.append(pid)
            real_kill(pid, sig)

        monkeypatch.setattr(chu_process_tree.os, "kill", recording_kill)
        kill_tree(top.pid)
        monkeypatch.undo()

        assert signalled == [bottom, middle, top.pid]
        assert top.wait(timeout=10) == -signal.SIGTERM
        for pid in (middle, bottom):
            wait_until_gone(pid)
    finally:
        for pid in pids:
            with contextlib.suppress(ProcessLookupError):
                os.kill(pid, signal.SIGKILL)
        top.wait()
        top.stdout.close()
