"""Host kubeconfig installation with timestamped backups."""

import filecmp
import shutil
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

from kube_vagrant.exceptions import CredentialError
from kube_vagrant.logging_config import get_logger

logger = get_logger(__name__)

BACKUP_MARKER = ".backup_"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
# Used when a backup from the same second already exists
PRECISE_TIMESTAMP_FORMAT = f"{TIMESTAMP_FORMAT}_%f"


def default_host_kubeconfig() -> Path:
    return Path.home() / ".kube" / "config"


def parse_timestamp(stamp: str) -> datetime | None:
    for fmt in (TIMESTAMP_FORMAT, PRECISE_TIMESTAMP_FORMAT):
        try:
            return datetime.strptime(stamp, fmt)
        except ValueError:
            continue
    return None


class CredentialMirror:
    """Copies the cluster's admin kubeconfig to and from the workstation."""

    def __init__(
        self,
        source_path: Path,
        host_path: Path | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.source_path = Path(source_path)
        self.host_path = Path(host_path) if host_path else default_host_kubeconfig()
        self.clock = clock

    def backups(self) -> list[Path]:
        """Existing backups, oldest first by the timestamp in their name."""
        found = []
        for path in self.host_path.parent.glob(f"{self.host_path.name}{BACKUP_MARKER}*"):
            stamp = path.name[len(self.host_path.name) + len(BACKUP_MARKER) :]
            taken = parse_timestamp(stamp)
            if taken is None:
                logger.debug(f"Ignoring {path}: not a kubeconfig backup")
            else:
                found.append((taken, path))
        return [path for _, path in sorted(found)]

    def install(self) -> Path | None:
        """Back up the host kubeconfig (if any) and replace it with the cluster's.

        Returns:
            The backup path, or None if there was nothing to back up

        Raises:
            CredentialError: If the cluster kubeconfig does not exist
        """
        if not self.source_path.is_file():
            raise CredentialError(
                f"Kubeconfig not found: {self.source_path}",
                "Make sure the cluster is running ('up' publishes it after the "
                "control plane initializes).",
            )

        backup = None
        if self.host_path.exists() and self._host_matches_source():
            logger.info(f"{self.host_path} already matches the cluster kubeconfig")
        elif self.host_path.exists():
            backup = self._backup_path()
            logger.info(f"Backing up existing kubeconfig to {backup}")
            shutil.copy2(self.host_path, backup)

        self.host_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.source_path, self.host_path)
        logger.info(f"Kubeconfig copied to {self.host_path}")
        return backup

    def _host_matches_source(self) -> bool:
        return filecmp.cmp(self.host_path, self.source_path, shallow=False)

    def _backup_path(self) -> Path:
        """First free backup name for the current time; never an existing file."""
        now = self.clock()
        backup = self._named(now.strftime(TIMESTAMP_FORMAT))
        while backup.exists():
            backup = self._named(now.strftime(PRECISE_TIMESTAMP_FORMAT))
            now += timedelta(microseconds=1)
        return backup

    def _named(self, stamp: str) -> Path:
        return self.host_path.with_name(f"{self.host_path.name}{BACKUP_MARKER}{stamp}")

    def restore(self) -> Path:
        """Restore the most recent backup over the host kubeconfig.

        Returns:
            The backup that was restored

        Raises:
            CredentialError: If no backup exists
        """
        backups = self.backups()
        if not backups:
            raise CredentialError(
                "No kubeconfig backup found",
                f"Looked for {self.host_path}{BACKUP_MARKER}*. "
                "You may need to restore your kubeconfig manually.",
            )
        latest = backups[-1]
        shutil.copyfile(latest, self.host_path)
        logger.info(f"Kubeconfig restored from {latest}")
        return latest

    @staticmethod
    def kubectl_available() -> bool:
        return shutil.which("kubectl") is not None

    def check_connection(self) -> list[str]:
        """List node names through the installed kubeconfig.

        Raises:
            CredentialError: If the kubeconfig cannot be loaded or the API is unreachable
        """
        from kubernetes import client, config
        from kubernetes.client.rest import ApiException

        try:
            api_client = config.new_client_from_config(config_file=str(self.host_path))
        except Exception as e:
            raise CredentialError(f"Failed to load kubeconfig {self.host_path}", str(e))

        try:
            nodes = client.CoreV1Api(api_client).list_node(_request_timeout=10)
        except ApiException as e:
            raise CredentialError("Kubernetes API rejected the request", f"{e.status} {e.reason}")
        except Exception as e:
            raise CredentialError("Could not reach the Kubernetes API", str(e))
        return sorted(node.metadata.name for node in nodes.items)
