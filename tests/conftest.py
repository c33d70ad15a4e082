"""Shared pytest fixtures for all test modules."""

import os
import subprocess
import sys
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from oraboot.provisioning.ssh_transport import RemoteResult
from oraboot.provisioning.types import RemoteSessionConfig

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the oraboot CLI as a subprocess."""

    def _run(*args, env=None, cwd=None):
        full_env = {**os.environ, **(env or {})}
        full_env["PYTHONPATH"] = os.pathsep.join(filter(None, [project_root, full_env.get("PYTHONPATH")]))
        result = subprocess.run(
            [sys.executable, "-m", "oraboot.oraboot", *args],
            capture_output=True,
            text=True,
            cwd=cwd or project_root,
            env=full_env,
        )
        return result.returncode, result.stdout, result.stderr

    return _run


# ── Local input files ──────────────────────────────────────────────


@pytest.fixture
def input_files(tmp_path):
    """A public key and a setup script, as the CLI expects them on disk."""
    pub_key = tmp_path / "id_ed25519.pub"
    pub_key.write_text("ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAITest user@example.com\n")
    script = tmp_path / "server-setup.sh"
    script.write_text("#!/bin/bash\nset -e\ncurl -fsSL https://get.docker.com | sh\n")
    return SimpleNamespace(public_key=str(pub_key), script=str(script))


# ── Sleep recorder ─────────────────────────────────────────────────


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)

    @property
    def total(self):
        return sum(self.calls)


@pytest.fixture
def sleeper():
    return SleepRecorder()


# ── Fake SSH session ───────────────────────────────────────────────


def ok(command="", stdout=""):
    return RemoteResult.classify(command, 0, stdout, "")


def disconnected(command=""):
    return RemoteResult.classify(command, 255, "", "Connection to 203.0.113.5 closed by remote host.")


def failed(command="", returncode=1, stderr="E: Unable to locate package"):
    return RemoteResult.classify(command, returncode, "", stderr)


class FakeSession:
    """Scripted RemoteSession.

    ``responses`` maps a command (exact match first, then substring) to a
    list of RemoteResults returned in order; the last one repeats.
    Unmatched commands succeed.
    """

    def __init__(self, responses=None, upload_result=None, username="ubuntu", host="203.0.113.5"):
        self.config = RemoteSessionConfig(host=host, username=username)
        self.responses = {k: list(v) for k, v in (responses or {}).items()}
        self.upload_result = upload_result
        self.calls = []
        self.uploads = []
        self.dry_run = False

    @property
    def address(self):
        return self.config.address

    def _next(self, key):
        queue = self.responses[key]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def run(self, command, sudo=False, timeout=None, connect_timeout=None):
        self.calls.append((command, sudo))
        if command in self.responses:
            return self._next(command)
        for key in self.responses:
            if key in command:
                return self._next(key)
        return ok(command)

    async def upload(self, local_path, remote_path, timeout=300):
        self.uploads.append((local_path, remote_path))
        return self.upload_result or ok(f"scp {local_path} -> {remote_path}")

    def commands(self):
        return [c for c, _ in self.calls]


@pytest.fixture
def results():
    """Builders for RemoteResult values."""
    return SimpleNamespace(ok=ok, disconnected=disconnected, failed=failed)


@pytest.fixture
def make_session():
    return FakeSession


# ── Fake OCI clients ───────────────────────────────────────────────


def _response(data):
    return SimpleNamespace(data=data)


def instance(state, instance_id="ocid1.instance.oc1..test"):
    return SimpleNamespace(id=instance_id, lifecycle_state=state)


@pytest.fixture
def oci_clients():
    """OciClients-like object backed by MagicMocks.

    Use ``set_states``/``set_vnics`` to script what the provider reports.
    """
    clients = SimpleNamespace(
        compute=MagicMock(),
        network=MagicMock(),
        identity=MagicMock(),
        compartment_id="ocid1.tenancy.oc1..test",
    )
    clients.compute.launch_instance.return_value = _response(instance("PROVISIONING"))

    def set_states(*states):
        clients.compute.get_instance.side_effect = [_response(instance(s)) for s in states]

    def set_vnics(*observations):
        """Each observation is None (no attachment) or a public IP string/None."""
        attachments = []
        vnics = []
        for obs in observations:
            if obs is None:
                attachments.append(_response([]))
            else:
                attachments.append(_response([SimpleNamespace(vnic_id="ocid1.vnic.oc1..test")]))
                vnics.append(_response(SimpleNamespace(public_ip=obs or None)))
        clients.compute.list_vnic_attachments.side_effect = attachments
        clients.network.get_vnic.side_effect = vnics

    clients.set_states = set_states
    clients.set_vnics = set_vnics
    return clients
