import io
import time

import psutil
import pytest

from ciharness.context import BuildContext
from ciharness.data.config import HarnessConfig
from ciharness.exit_actions import ExitActionRegistry
from ciharness.providers.local import LocalHandler
from ciharness.utils.logging.build_logger import BuildLogger
from ciharness.variables import create_build_variables


class FakeGit:
    def __init__(self, message="", short_hash="abcdef1", ancestors=()):
        self.message = message
        self.hash = short_hash
        self.ancestors = set(ancestors)
        self.ranges = []

    def last_commit_message(self, commit_range):
        self.ranges.append(commit_range)
        return self.message

    def short_hash(self):
        return self.hash

    def is_ancestor_of_head(self, revision):
        return revision in self.ancestors


@pytest.fixture
def fake_git():
    return FakeGit()


@pytest.fixture
def source_tree(tmp_path):
    root = tmp_path / "cromwell"
    (root / "project").mkdir(parents=True)
    (root / "project" / "Version.scala").write_text(
        'object Version {\n  val cromwellVersion = "86"\n}\n'
    )
    return root


@pytest.fixture
def local_variables(source_tree, fake_git, tmp_path):
    env = {"HOME": str(tmp_path / "home")}
    return create_build_variables(
        env,
        fake_git,
        source_tree,
        build_type_hint="centaurLocal",
        handler=LocalHandler(),
        pid=4242,
    )


@pytest.fixture
def make_context(local_variables):
    def make(variables=None, databases=None, config=None):
        variables = variables if variables is not None else local_variables
        if databases is None:
            databases = LocalHandler().database_variables({}, variables.docker_localhost)
        return BuildContext(
            variables=variables,
            databases=databases,
            config=config if config is not None else HarnessConfig(),
            registry=ExitActionRegistry(install_trap=False),
            build_log=BuildLogger(io.StringIO()),
        )

    return make


def wait_until_gone(pid, timeout=10):
    """Waits for ``pid`` to exit.  An orphan may linger as a zombie until reaped."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return
        except psutil.NoSuchProcess:
            return
        assert time.monotonic() < deadline, f"process {pid} is still running"
        time.sleep(0.05)
