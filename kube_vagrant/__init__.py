"""Local multi-node Kubernetes clusters on Vagrant virtual machines."""

__version__ = "0.1.0"
