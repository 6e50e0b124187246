import os
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from claudepod.errors import RuntimeProcessError
from claudepod.integrations.runtime import (
    CliRuntime,
    ContainerSpec,
    container_spec,
    image_tag_for,
    runtime_for,
)
from claudepod.models.profile import Profile

PROFILE = """\
[runtime]
enable_gpu = true
gpu_driver = "all"
extra_args = ["--network=host"]

[[runtime.volumes]]
host = "$PWD"
container = "$PWD"

[[runtime.volumes]]
host = "$HOME/.claude"
container = "/home/code/.claude"

[[runtime.volumes]]
host = "~/.ssh"
container = "/home/code/.ssh"
readonly = true

[[runtime.tmpfs]]
path = "/workspace/build"
readonly = true
size = "1m"
"""


def _completed(returncode=0, stdout="", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


@pytest.fixture
def spec():
    return container_spec(
        Profile.from_toml(PROFILE),
        identity="claudepod-0123456789ab",
        image_tag="claudepod-default:latest",
        project_dir=Path("/work/app"),
        env={"HOME": "/home/alice"},
    )


def test_container_spec_expands_paths(spec):
    # the project directory is mounted separately, so the $PWD volume is skipped
    assert spec.volumes == [
        "/home/alice/.claude:/home/code/.claude",
        "/home/alice/.ssh:/home/code/.ssh:ro",
    ]
    assert spec.tmpfs == ["/workspace/build:size=1m,ro"]
    assert spec.gpus == "all"
    assert spec.extra_args == ["--network=host"]
    assert spec.env == {"CLAUDEPOD_UID": str(os.getuid()), "CLAUDEPOD_GID": str(os.getgid())}


def test_gpu_disabled():
    profile = Profile.from_toml("[runtime]\nenable_gpu = false\n")
    spec = container_spec(profile, "claudepod-x", "tag", Path("/w"))
    assert spec.gpus is None


def test_podman_create_command(spec):
    runtime = CliRuntime("podman")

    with patch("subprocess.run", return_value=_completed()) as mock_run:
        runtime.create_container(spec)

    args = mock_run.call_args[0][0]
    assert args[:4] == ["podman", "create", "--name", "claudepod-0123456789ab"]
    assert "-it" in args
    assert "--userns=keep-id" in args
    assert args[args.index("-v") + 1] == "/work/app:/work/app"
    assert "/home/alice/.ssh:/home/code/.ssh:ro" in args
    assert args[args.index("--tmpfs") + 1] == "/workspace/build:size=1m,ro"
    assert args[args.index("--gpus") + 1] == "all"
    assert "--network=host" in args
    assert args[-3:] == ["claudepod-default:latest", "sleep", "infinity"]


def test_docker_create_has_no_userns(spec):
    with patch("subprocess.run", return_value=_completed()) as mock_run:
        CliRuntime("docker").create_container(spec)
    args = mock_run.call_args[0][0]
    assert args[0] == "docker"
    assert "--userns=keep-id" not in args


def test_create_failure_carries_exit_code(spec):
    with patch("subprocess.run", return_value=_completed(125, stderr="name in use")):
        with pytest.raises(RuntimeProcessError) as excinfo:
            CliRuntime("podman").create_container(spec)
    assert excinfo.value.returncode == 125
    assert "name in use" in str(excinfo.value)


def test_build_passes_user_ids_and_returns_image_id(tmp_path):
    runtime = CliRuntime("podman")
    process = MagicMock()
    process.wait.return_value = 0

    with (
        patch("subprocess.Popen", return_value=process) as mock_popen,
        patch("subprocess.run", return_value=_completed(stdout="abc123\n")),
    ):
        image_id = runtime.build_image(tmp_path, "claudepod-default:latest")

    args = mock_popen.call_args[0][0]
    assert args[:2] == ["podman", "build"]
    assert f"USER_UID={os.getuid()}" in args
    assert f"USER_GID={os.getgid()}" in args
    assert args[args.index("-t") + 1] == "claudepod-default:latest"
    assert mock_popen.call_args.kwargs["cwd"] == tmp_path
    assert image_id == "abc123"


def test_build_failure(tmp_path):
    process = MagicMock()
    process.wait.return_value = 2
    with patch("subprocess.Popen", return_value=process):
        with pytest.raises(RuntimeProcessError) as excinfo:
            CliRuntime("podman").build_image(tmp_path, "tag")
    assert excinfo.value.returncode == 2


def test_image_id_missing():
    with patch("subprocess.run", return_value=_completed(stdout="")):
        assert CliRuntime("docker").image_id("nope:latest") is None
        assert CliRuntime("docker").image_exists("nope:latest") is False


def test_container_state_queries():
    runtime = CliRuntime("podman")
    with patch("subprocess.run", return_value=_completed(stdout="claudepod-abc\n")) as mock_run:
        assert runtime.exists("claudepod-abc") is True
        assert "-a" in mock_run.call_args[0][0]
        assert runtime.is_running("claudepod-abc") is True
        assert "-a" not in mock_run.call_args[0][0]
        assert "name=^claudepod-abc$" in mock_run.call_args[0][0]

    with patch("subprocess.run", return_value=_completed(stdout="")):
        assert runtime.exists("claudepod-abc") is False


def test_remove_skips_missing_container():
    with patch("subprocess.run", return_value=_completed(stdout="")) as mock_run:
        CliRuntime("podman").remove("claudepod-abc")
    assert mock_run.call_count == 1


def test_remove_existing_container():
    with patch(
        "subprocess.run",
        side_effect=[_completed(stdout="claudepod-abc\n"), _completed()],
    ) as mock_run:
        CliRuntime("podman").remove("claudepod-abc")
    assert mock_run.call_args[0][0] == ["podman", "rm", "-f", "claudepod-abc"]


def test_exec_sets_workdir_and_returns_exit_code():
    process = MagicMock()
    process.wait.return_value = 7

    with patch("subprocess.Popen", return_value=process) as mock_popen:
        code = CliRuntime("podman").exec(
            "claudepod-abc", ["bash", "-c", "ls"], Path("/work/app/src")
        )

    args = mock_popen.call_args[0][0]
    assert code == 7
    assert args[:3] == ["podman", "exec", "-it"]
    assert args[args.index("-w") + 1] == "/work/app/src"
    assert "CLAUDEPOD_WORKDIR=/work/app/src" in args
    assert args[-4:] == ["claudepod-abc", "bash", "-c", "ls"]


def test_exec_non_interactive():
    process = MagicMock()
    process.wait.return_value = 0
    with patch("subprocess.Popen", return_value=process) as mock_popen:
        CliRuntime("docker").exec("c", ["true"], Path("/w"), interactive=False)
    assert "-it" not in mock_popen.call_args[0][0]


def test_interrupt_terminates_child_and_reraises():
    process = MagicMock()
    process.wait.side_effect = [KeyboardInterrupt(), 0]

    with patch("subprocess.Popen", return_value=process):
        with pytest.raises(KeyboardInterrupt):
            CliRuntime("podman", stop_timeout=3).exec("c", ["claude"], Path("/w"))

    process.terminate.assert_called_once()
    process.wait.assert_called_with(timeout=3)
    process.kill.assert_not_called()


def test_interrupt_kills_child_that_ignores_terminate():
    process = MagicMock()
    process.wait.side_effect = [
        KeyboardInterrupt(),
        subprocess.TimeoutExpired(cmd="podman", timeout=3),
        -9,
    ]

    with patch("subprocess.Popen", return_value=process):
        with pytest.raises(KeyboardInterrupt):
            CliRuntime("podman", stop_timeout=3).exec("c", ["claude"], Path("/w"))

    process.kill.assert_called_once()


def test_missing_executable():
    with patch("subprocess.run", side_effect=FileNotFoundError("podman")):
        with pytest.raises(RuntimeProcessError) as excinfo:
            CliRuntime("podman").image_id("x")
    assert excinfo.value.returncode == 127


def test_runtime_selection():
    profile = Profile.from_toml('[runtime]\ncontainer_runtime = "docker"\n')
    assert runtime_for(profile).executable == "docker"
    assert runtime_for(profile, override="podman").executable == "podman"
    assert image_tag_for("work") == "claudepod-work:latest"


def test_spec_is_plain_data():
    spec = ContainerSpec(identity="c", image_tag="t", project_dir=Path("/w"))
    assert spec.volumes == [] and spec.gpus is None
