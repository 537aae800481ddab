"""Basic tests to verify project setup."""


def test_import_kube_vagrant():
    """Test that kube_vagrant package can be imported."""
    import kube_vagrant

    assert kube_vagrant.__version__ == "0.1.0"


def test_import_cli():
    """Test that CLI module can be imported."""
    from kube_vagrant import cli

    assert cli.app is not None


def test_import_models():
    """Test that models module can be imported."""
    from kube_vagrant import models

    assert models.Node is not None
    assert models.ClusterActualState is not None


def test_playbook_is_packaged():
    """Test that the node image playbook ships with the package."""
    from kube_vagrant.initializer import PLAYBOOK_PATH

    assert PLAYBOOK_PATH.is_file()
    assert "kubeadm" in PLAYBOOK_PATH.read_text()
