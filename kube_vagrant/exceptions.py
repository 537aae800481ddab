"""Custom exceptions for kube-vagrant."""


class KubeVagrantError(Exception):
    """Base exception for all kube-vagrant errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ValidationError(KubeVagrantError):
    """Exception raised for bad node counts or node names."""

    pass


class ConfigurationError(KubeVagrantError):
    """Exception raised for configuration and host tooling errors."""

    pass


class ProvisionerError(KubeVagrantError):
    """Exception raised when a VM cannot be created, started or destroyed."""

    pass


class InitializerError(ProvisionerError):
    """Exception raised when a node image cannot be initialized."""

    pass


class ControlPlaneError(KubeVagrantError):
    """Exception raised for kubeadm/kubectl failures on the cluster."""

    pass


class ArtifactUnavailable(KubeVagrantError):
    """Exception raised when the join artifact never became available."""

    pass


class CredentialError(KubeVagrantError):
    """Exception raised for missing kubeconfig sources or backups."""

    pass


class InventoryError(KubeVagrantError):
    """Exception raised when the Ansible inventory cannot be read or written."""

    pass
