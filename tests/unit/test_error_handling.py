"""Tests for error handling across components."""

import subprocess
from unittest.mock import patch

import pytest

from kube_vagrant.exceptions import (
    ArtifactUnavailable,
    ConfigurationError,
    ControlPlaneError,
    CredentialError,
    InitializerError,
    InventoryError,
    KubeVagrantError,
    ProvisionerError,
    ValidationError,
)
from kube_vagrant.logging_config import get_logger, setup_logging


def test_custom_exception_with_details():
    """Test that custom exceptions support message and details."""
    error = ProvisionerError("Vagrant failed during create k8s-master", "VT-x is disabled")

    assert error.message == "Vagrant failed during create k8s-master"
    assert error.details == "VT-x is disabled"
    assert "Vagrant failed during create k8s-master" in str(error)
    assert "VT-x is disabled" in str(error)


def test_custom_exception_without_details():
    """Test that custom exceptions work without details."""
    error = ValidationError("Invalid input")

    assert error.message == "Invalid input"
    assert error.details is None
    assert str(error) == "Invalid input"


def test_exception_hierarchy():
    """Test that all custom exceptions inherit from KubeVagrantError."""
    for cls in (
        ValidationError,
        ConfigurationError,
        ProvisionerError,
        ControlPlaneError,
        ArtifactUnavailable,
        CredentialError,
        InventoryError,
    ):
        assert issubclass(cls, KubeVagrantError)
    assert issubclass(InitializerError, ProvisionerError)


def test_logging_setup():
    """Test that logging can be configured."""
    setup_logging(level="INFO", verbose=False)

    logger = get_logger("test")
    assert logger is not None
    assert logger.name == "test"


def test_logging_with_log_file(tmp_path):
    """Test that a log file receives records hidden from the console."""
    log_file = tmp_path / "logs" / "debug.log"
    setup_logging(verbose=False, log_file=log_file)

    get_logger("kube_vagrant.test").info("written to file")

    assert "written to file" in log_file.read_text()


def test_vagrant_failure_is_translated(cluster_settings):
    """Test that a failing vagrant command becomes a ProvisionerError with stderr."""
    from kube_vagrant.provisioner import VagrantProvisioner

    provisioner = VagrantProvisioner(cluster_settings)
    failure = subprocess.CalledProcessError(1, ["vagrant", "up"], stderr="VT-x is not available")

    with patch("subprocess.run", side_effect=failure):
        with pytest.raises(ProvisionerError) as exc_info:
            provisioner.create(cluster_settings.master())

    assert "create k8s-master" in exc_info.value.message
    assert "VT-x is not available" in exc_info.value.details


def test_missing_vagrant_binary(cluster_settings):
    """Test that a missing vagrant binary gives an installation hint."""
    from kube_vagrant.provisioner import VagrantProvisioner

    with patch("subprocess.run", side_effect=FileNotFoundError("vagrant")):
        with pytest.raises(ProvisionerError) as exc_info:
            VagrantProvisioner(cluster_settings).destroy_all()

    assert "not installed" in exc_info.value.message
    assert "developer.hashicorp.com" in exc_info.value.details


def test_inventory_error_messages(tmp_path):
    """Test that a corrupt inventory is reported with its path."""
    from kube_vagrant.inventory import InventoryManager

    inventory_file = tmp_path / "hosts.yml"
    inventory_file.write_text("all: [unclosed")

    with pytest.raises(InventoryError) as exc_info:
        InventoryManager(inventory_file).read()

    assert "hosts.yml" in str(exc_info.value)
