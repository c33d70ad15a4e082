"""Unit tests for the bootstrap sequence."""

import pytest

from oraboot.errors import ConnectivityFailure, ConnectivityTimeout, RemoteCommandFailure, ValidationFailure
from oraboot.provisioning.remote import (
    REBOOT_COMMAND,
    BootstrapOptions,
    bootstrap_host,
    default_script_path,
)
from oraboot.provisioning.ssh import PROBE_COMMAND
from oraboot.provisioning.types import STAGE_FAILED, STAGE_OK, STAGE_SKIPPED, RetryPolicy

ALL_STAGES = ["upgrade", "wait-online", "upload", "execute", "reboot", "wait-online-again", "validate"]

OPTIONS = BootstrapOptions(
    connectivity_policy=RetryPolicy(attempts=5, delay=5),
    validation_policy=RetryPolicy(attempts=4, delay=10),
)


def _healthy_session(make_session, results, **overrides):
    responses = {
        "apt-get": [results.disconnected()],
        REBOOT_COMMAND: [results.disconnected()],
        "docker --version": [results.ok(stdout="Docker version 27.3.1, build ce12230\n")],
    }
    responses.update(overrides)
    return make_session(responses)


def _stage_names(outcome):
    return [s.name for s in outcome.stages]


def test_default_script_path():
    assert default_script_path("ubuntu") == "/home/ubuntu/server-setup.sh"
    assert default_script_path("root") == "/root/server-setup.sh"


async def test_full_sequence(make_session, results, sleeper):
    session = _healthy_session(make_session, results)
    outcome = await bootstrap_host(session, "./server-setup.sh", OPTIONS, sleep=sleeper)

    assert outcome.ok
    assert _stage_names(outcome) == ALL_STAGES
    assert all(s.status == STAGE_OK for s in outcome.stages)
    assert all(s.elapsed >= 0 for s in outcome.stages)
    assert session.uploads == [("./server-setup.sh", "/home/ubuntu/server-setup.sh")]

    commands = session.commands()
    assert "apt-get full-upgrade -yq" in commands[0]
    assert commands[1] == PROBE_COMMAND
    assert commands[2] == "chmod +x /home/ubuntu/server-setup.sh && sudo /home/ubuntu/server-setup.sh"
    assert commands[3] == REBOOT_COMMAND
    assert commands[4] == PROBE_COMMAND
    assert commands[5] == "docker --version"
    # upgrade and reboot run privileged
    assert session.calls[0][1] is True
    assert session.calls[3][1] is True


async def test_upgrade_disconnect_is_absorbed(make_session, results, sleeper):
    session = _healthy_session(
        make_session,
        results,
        **{PROBE_COMMAND: [results.disconnected(), results.disconnected(), results.ok()]},
    )
    outcome = await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)
    assert outcome.stages[0].name == "upgrade"
    assert outcome.stages[0].status == STAGE_OK
    assert outcome.stages[0].detail == "disconnected: Connection to 203.0.113.5 closed by remote host."


async def test_upgrade_refused_connection_is_visible_in_outcome(make_session, results, sleeper):
    refused = results.failed(returncode=255, stderr="ssh: connect to host 203.0.113.5 port 22: Connection refused\n")
    session = _healthy_session(make_session, results, **{"apt-get": [refused]})
    outcome = await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)

    assert outcome.stages[0].status == STAGE_OK
    assert outcome.stages[0].detail == "disconnected: ssh: connect to host 203.0.113.5 port 22: Connection refused"
    assert "Connection refused" in outcome.to_dict()["stages"][0]["detail"]


async def test_upgrade_clean_exit_continues(make_session, results, sleeper):
    session = _healthy_session(make_session, results, **{"apt-get": [results.ok()]})
    outcome = await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)
    assert outcome.ok
    assert outcome.stages[0].detail == "reboot issued"


async def test_upgrade_remote_failure_surfaces(make_session, results, sleeper):
    session = _healthy_session(make_session, results, **{"apt-get": [results.failed(returncode=100)]})
    with pytest.raises(RemoteCommandFailure) as exc_info:
        await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)

    assert exc_info.value.returncode == 100
    outcome = exc_info.value.outcome
    assert _stage_names(outcome) == ["upgrade"]
    assert outcome.stages[0].status == STAGE_FAILED
    assert len(session.calls) == 1
    assert session.uploads == []


async def test_host_never_returns(make_session, results, sleeper):
    session = _healthy_session(make_session, results, **{PROBE_COMMAND: [results.disconnected()]})
    with pytest.raises(ConnectivityTimeout) as exc_info:
        await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)

    assert _stage_names(exc_info.value.outcome) == ["upgrade", "wait-online"]
    assert sleeper.total == OPTIONS.connectivity_policy.max_wait
    assert session.uploads == []


async def test_upload_failure_is_fatal(make_session, results, sleeper):
    session = _healthy_session(make_session, results)
    session.upload_result = results.failed("scp", returncode=1, stderr="Permission denied")
    with pytest.raises(RemoteCommandFailure):
        await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)
    assert not any("chmod" in c for c in session.commands())


async def test_upload_connectivity_loss_is_fatal(make_session, results, sleeper):
    session = _healthy_session(make_session, results)
    session.upload_result = results.disconnected("scp")
    with pytest.raises(RemoteCommandFailure) as exc_info:
        await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)
    assert exc_info.value.outcome.stages[-1].name == "upload"


async def test_script_failure_stops_sequence(make_session, results, sleeper):
    session = _healthy_session(make_session, results, **{"chmod +x": [results.failed(returncode=2)]})
    with pytest.raises(RemoteCommandFailure) as exc_info:
        await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)

    outcome = exc_info.value.outcome
    assert _stage_names(outcome) == ["upgrade", "wait-online", "upload", "execute"]
    assert outcome.stages[-1].status == STAGE_FAILED
    assert not outcome.ok
    assert REBOOT_COMMAND not in session.commands()


async def test_second_reboot_remote_failure_surfaces(make_session, results, sleeper):
    session = _healthy_session(make_session, results, **{REBOOT_COMMAND: [results.failed(returncode=1)]})
    with pytest.raises(RemoteCommandFailure):
        await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)


async def test_second_reboot_skipped(make_session, results, sleeper):
    session = _healthy_session(make_session, results)
    options = BootstrapOptions(
        reboot_after_script=False,
        connectivity_policy=OPTIONS.connectivity_policy,
        validation_policy=OPTIONS.validation_policy,
    )
    outcome = await bootstrap_host(session, "s.sh", options, sleep=sleeper)

    assert _stage_names(outcome) == ALL_STAGES
    reboot = outcome.stages[4]
    assert reboot.status == STAGE_SKIPPED
    assert reboot.elapsed == 0
    assert outcome.ok
    assert REBOOT_COMMAND not in session.commands()


async def test_custom_remote_script_path(make_session, results, sleeper):
    session = _healthy_session(make_session, results)
    options = BootstrapOptions(
        remote_script_path="/opt/setup.sh",
        connectivity_policy=OPTIONS.connectivity_policy,
        validation_policy=OPTIONS.validation_policy,
    )
    await bootstrap_host(session, "s.sh", options, sleep=sleeper)
    assert session.uploads == [("s.sh", "/opt/setup.sh")]
    assert "chmod +x /opt/setup.sh && sudo /opt/setup.sh" in session.commands()


async def test_remote_script_path_with_spaces_is_quoted(make_session, results, sleeper):
    session = _healthy_session(make_session, results)
    options = BootstrapOptions(
        remote_script_path="/opt/my setup.sh",
        connectivity_policy=OPTIONS.connectivity_policy,
        validation_policy=OPTIONS.validation_policy,
    )
    await bootstrap_host(session, "s.sh", options, sleep=sleeper)
    assert "chmod +x '/opt/my setup.sh' && sudo '/opt/my setup.sh'" in session.commands()


async def test_execute_connectivity_loss_matches_upload(make_session, results, sleeper):
    session = _healthy_session(make_session, results, **{"chmod +x": [results.disconnected()]})
    with pytest.raises(RemoteCommandFailure) as exc_info:
        await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)

    assert exc_info.value.returncode == 255
    assert isinstance(exc_info.value.__cause__, ConnectivityFailure)
    outcome = exc_info.value.outcome
    assert outcome.stages[-1].name == "execute"
    assert outcome.stages[-1].status == STAGE_FAILED
    assert REBOOT_COMMAND not in session.commands()


# ── Validation ────────────────────────────────────────────────────


@pytest.mark.parametrize("k", [1, 2, 4])
async def test_validation_succeeds_on_attempt_k(make_session, results, sleeper, k):
    not_yet = results.failed(returncode=127, stderr="docker: command not found")
    ready = results.ok(stdout="Docker version 27.3.1\n")
    session = _healthy_session(make_session, results, **{"docker --version": [not_yet] * (k - 1) + [ready]})
    outcome = await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)

    assert outcome.ok
    validation_sleeps = [s for s in sleeper.calls if s == OPTIONS.validation_policy.delay]
    assert sum(validation_sleeps) == (k - 1) * OPTIONS.validation_policy.delay
    assert session.commands().count("docker --version") == k


async def test_validation_failure_after_budget(make_session, results, sleeper):
    session = _healthy_session(make_session, results, **{"docker --version": [results.ok(stdout="something else\n")]})
    with pytest.raises(ValidationFailure) as exc_info:
        await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)

    err = exc_info.value
    assert err.attempts == OPTIONS.validation_policy.attempts
    assert err.last_output == "something else\n"
    assert session.commands().count("docker --version") == OPTIONS.validation_policy.attempts
    assert sleeper.total == OPTIONS.validation_policy.max_wait
    assert _stage_names(err.outcome) == ALL_STAGES
    assert err.outcome.stages[-1].status == STAGE_FAILED


async def test_validation_tolerates_connectivity_blips(make_session, results, sleeper):
    session = _healthy_session(
        make_session,
        results,
        **{"docker --version": [results.disconnected(), results.ok(stdout="Docker version 27\n")]},
    )
    outcome = await bootstrap_host(session, "s.sh", OPTIONS, sleep=sleeper)
    assert outcome.ok
