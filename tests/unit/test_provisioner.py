"""Unit tests for the Vagrant provisioner."""

import subprocess
from unittest.mock import patch

import pytest

from kube_vagrant.exceptions import ConfigurationError, ProvisionerError
from kube_vagrant.provisioner import VagrantProvisioner

STATUS_OUTPUT = """\
1700000000,k8s-master,metadata,provider,virtualbox
1700000000,k8s-master,provider-name,virtualbox
1700000000,k8s-master,state,running
1700000000,k8s-worker1,provider-name,virtualbox
1700000000,k8s-worker1,state,poweroff
1700000000,,ui,info,Current machine states:
"""


@pytest.fixture
def provisioner(cluster_settings):
    return VagrantProvisioner(cluster_settings)


def mark_created(settings, machine):
    machine_dir = settings.vagrant_state_dir / machine / "virtualbox"
    machine_dir.mkdir(parents=True, exist_ok=True)
    (machine_dir / "id").write_text("5f0e7c1a")


def test_vagrantfile_defines_every_node(provisioner):
    """Test that all four machines are defined with their addresses and resources."""
    content = provisioner.render_vagrantfile()

    assert 'config.vm.box = "bento/ubuntu-22.04"' in content
    for machine, ip in [
        ("k8s-master", "192.168.56.10"),
        ("k8s-worker1", "192.168.56.11"),
        ("k8s-worker2", "192.168.56.12"),
        ("k8s-worker3", "192.168.56.13"),
    ]:
        assert f'config.vm.define "{machine}", autostart: false' in content
        assert f'ip: "{ip}"' in content
    assert content.count("vb.memory = 2048") == 4
    assert content.rstrip().endswith("end")


def test_write_vagrantfile_only_when_changed(provisioner, cluster_settings):
    path = provisioner.write_vagrantfile()
    mtime = path.stat().st_mtime_ns

    provisioner.write_vagrantfile()

    assert path == cluster_settings.vagrantfile_path
    assert path.stat().st_mtime_ns == mtime


def test_present_nodes_from_machine_ids(provisioner, cluster_settings):
    """Test that only machines with a VirtualBox id count as present."""
    mark_created(cluster_settings, "k8s-master")
    mark_created(cluster_settings, "k8s-worker2")
    (cluster_settings.vagrant_state_dir / "k8s-worker1" / "virtualbox").mkdir(parents=True)

    present = provisioner.present_nodes()

    assert [n.machine_name for n in present] == ["k8s-master", "k8s-worker2"]


def test_machine_states_parsed(provisioner):
    """Test parsing of machine-readable vagrant status output."""
    completed = subprocess.CompletedProcess(["vagrant"], 0, stdout=STATUS_OUTPUT, stderr="")

    with patch("subprocess.run", return_value=completed) as run:
        states = provisioner.machine_states()

    assert run.call_args.args[0] == ["vagrant", "status", "--machine-readable"]
    assert [(s.name, s.state, s.running) for s in states] == [
        ("k8s-master", "running", True),
        ("k8s-worker1", "poweroff", False),
    ]


def test_create_runs_vagrant_up(provisioner, cluster_settings):
    with patch("subprocess.run") as run:
        provisioner.create(cluster_settings.worker(2))

    args = run.call_args.args[0]
    assert args == ["vagrant", "up", "k8s-worker2", "--provider", "virtualbox"]
    assert run.call_args.kwargs["cwd"] == cluster_settings.project_dir
    assert cluster_settings.vagrantfile_path.exists()


def test_destroy_runs_vagrant_destroy(provisioner, cluster_settings):
    with patch("subprocess.run") as run:
        provisioner.destroy(cluster_settings.worker(1))

    assert run.call_args.args[0] == ["vagrant", "destroy", "-f", "k8s-worker1"]


def test_timeout_is_translated(provisioner, cluster_settings):
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(["vagrant"], 1800)):
        with pytest.raises(ProvisionerError) as exc_info:
            provisioner.destroy(cluster_settings.worker(1))

    assert "timed out" in exc_info.value.message


def test_run_on_returns_result_without_raising(provisioner, cluster_settings):
    """Test that a failing remote command is reported through its return code."""
    failed = subprocess.CompletedProcess(["vagrant"], 1, stdout="", stderr="not found")

    with patch("subprocess.run", return_value=failed) as run:
        result = provisioner.run_on(cluster_settings.master(), "test -f /etc/kubernetes/admin.conf")

    assert result.returncode == 1
    assert run.call_args.args[0] == [
        "vagrant",
        "ssh",
        "k8s-master",
        "-c",
        "test -f /etc/kubernetes/admin.conf",
    ]


def test_run_on_timeout(provisioner, cluster_settings):
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(["vagrant"], 5)):
        with pytest.raises(ProvisionerError):
            provisioner.run_on(cluster_settings.master(), "sleep 60", timeout=5)


def test_interactive_returns_exit_code(provisioner, cluster_settings):
    with patch("subprocess.run", return_value=subprocess.CompletedProcess([], 3)) as run:
        rc = provisioner.interactive(cluster_settings.worker(1), "sudo journalctl -u kubelet -f")

    assert rc == 3
    assert run.call_args.args[0][-2:] == ["-c", "sudo journalctl -u kubelet -f"]


def test_check_tools_requires_vagrant(provisioner):
    with patch("shutil.which", return_value=None):
        with pytest.raises(ConfigurationError) as exc_info:
            provisioner.check_tools()

    assert "Vagrant" in exc_info.value.message


def test_check_tools_requires_virtualbox(provisioner):
    def which(name):
        return "/usr/bin/vagrant" if name == "vagrant" else None

    with patch("shutil.which", side_effect=which):
        with pytest.raises(ConfigurationError) as exc_info:
            provisioner.check_tools()

    assert "VirtualBox" in exc_info.value.message


def test_check_tools_warns_without_kernel_module(provisioner):
    """Test that a missing vboxdrv module is a warning, not an error."""
    with patch("shutil.which", return_value="/usr/bin/tool"), patch(
        "platform.system", return_value="Linux"
    ), patch.object(VagrantProvisioner, "_vboxdrv_loaded", return_value=False):
        warnings = provisioner.check_tools()

    assert len(warnings) == 1
    assert "vboxdrv" in warnings[0]
