"""Main CLI entry point for kube-vagrant."""

import re
import shlex
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from kube_vagrant.config import ClusterSettings
from kube_vagrant.exceptions import KubeVagrantError
from kube_vagrant.logging_config import get_logger, setup_logging

app = typer.Typer(
    name="kube-vagrant",
    help="Create, scale and tear down a local multi-node Kubernetes cluster on Vagrant VMs",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

KUBECTL_INSTALL_HINT = """To install kubectl:
  macOS: brew install kubectl
  Linux: sudo snap install kubectl --classic
  Or download from: https://kubernetes.io/docs/tasks/tools/"""


# Global callback to set up logging and locate the project
@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
    project_dir: Path = typer.Option(
        Path("."), "--project-dir", "-C", help="Directory holding the Vagrantfile and cluster state"
    ),
    config_file: str | None = typer.Option(
        None, "--config", help="YAML file with default cluster settings"
    ),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    ctx.obj = {"project_dir": project_dir, "config_file": config_file}
    logger.debug("Logging initialized")


def _error_label(error: KubeVagrantError) -> str:
    # ControlPlaneError -> "Control Plane Error"
    return re.sub(r"(?<!^)(?=[A-Z])", " ", type(error).__name__)


@contextmanager
def _cli_errors(action: str):
    """Map errors raised inside a command to console output and exit codes."""
    try:
        yield
    except typer.Exit:
        raise
    except KubeVagrantError as e:
        logger.error(f"{action} failed: {e.message}")
        console.print(f"[red]{_error_label(e)}:[/red] {e.message}")
        if e.details:
            console.print(f"\n{e.details}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print(f"\n[yellow]{action} interrupted by user[/yellow]")
        raise typer.Exit(code=130)
    except Exception as e:
        logger.error(f"Unexpected error during {action}: {e}", exc_info=True)
        console.print(f"[red]Unexpected error:[/red] {e}")
        console.print("\nRun with --verbose --log-file debug.log for more details")
        raise typer.Exit(code=1)


def _settings(ctx: typer.Context, **overrides) -> ClusterSettings:
    obj = ctx.obj or {}
    return ClusterSettings.resolve(
        overrides=overrides,
        config_file=obj.get("config_file"),
        project_dir=obj.get("project_dir", Path(".")),
    )


def _reconciler(settings: ClusterSettings):
    from kube_vagrant.reconciler import NodeLifecycleReconciler

    reconciler = NodeLifecycleReconciler.from_settings(settings)
    for warning in reconciler.provisioner.check_tools():
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    return reconciler


def _print_configuration(settings: ClusterSettings, node_count: int) -> None:
    console.print("\n[bold cyan]Configuration[/bold cyan]")
    console.print(f"  Nodes: {node_count}")
    console.print(f"  Memory per node: {settings.memory_mb}MB")
    console.print(f"  CPUs per node: {settings.cpus}")
    console.print(f"  Kubernetes version: {settings.k8s_version}")
    console.print()


def _print_report(report) -> None:
    """Show executed, failed and skipped steps of a reconciliation."""
    if report.plan.is_noop:
        console.print(f"[green]✓[/green] {report.plan.describe()}")
        return

    table = Table(title=report.plan.describe())
    table.add_column("Step", style="cyan")
    table.add_column("Node", style="magenta")
    table.add_column("Result")

    for outcome in report.outcomes:
        if not outcome.success:
            result = f"[red]✗ Failed ({outcome.phase})[/red]"
        elif outcome.warnings:
            result = "[yellow]⚠ Done with warnings[/yellow]"
        else:
            result = "[green]✓ Done[/green]"
        table.add_row(outcome.step.action.value, outcome.step.machine_name, result)
    for step in report.skipped:
        table.add_row(step.action.value, step.machine_name, "[dim]Skipped[/dim]")

    console.print(table)

    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    failure = report.failure
    if failure:
        console.print(f"\n[red]✗ {failure.describe_failure()}[/red]")
        if failure.error.details:
            console.print(f"\n{failure.error.details}")
    else:
        console.print(f"\n[green]✓ Cluster now has {report.actual.total} nodes[/green]")


def _print_status(reconciler, actual=None) -> None:
    """Print observed state; control-plane problems are warnings only."""
    actual = actual or reconciler.probe()
    if not actual.exists:
        console.print("No cluster is currently running")
        return

    console.print("\n[bold cyan]Cluster Status[/bold cyan]")
    console.print(f"  Current nodes: {actual.total} ({', '.join(actual.node_names)})")
    for stray in actual.stray_workers:
        console.print(f"  [yellow]Stray VM not counted:[/yellow] {stray.machine_name}")

    try:
        machines = reconciler.provisioner.machine_states()
        vm_table = Table(title="Vagrant Machines")
        vm_table.add_column("Machine", style="cyan")
        vm_table.add_column("State", style="green")
        vm_table.add_column("Provider", style="blue")
        for machine in machines:
            vm_table.add_row(machine.name, machine.state, machine.provider)
        console.print(vm_table)
    except KubeVagrantError as e:
        console.print(f"[yellow]Warning:[/yellow] Could not read Vagrant status: {e.message}")

    try:
        nodes = reconciler.control.get_nodes()
        nodes_table = Table(title="Kubernetes Nodes")
        nodes_table.add_column("Name", style="cyan")
        nodes_table.add_column("Role", style="magenta")
        nodes_table.add_column("Status", style="green")
        nodes_table.add_column("Version", style="blue")
        nodes_table.add_column("Internal IP", style="yellow")
        for node in nodes:
            if node.status == "Ready":
                status = "[green]✓ Ready[/green]"
            else:
                status = f"[red]✗ {node.status}[/red]"
            nodes_table.add_row(
                node.name, node.role, status, node.kubelet_version, node.internal_ip
            )
        console.print(nodes_table)
    except KubeVagrantError:
        console.print("[yellow]Warning:[/yellow] Could not connect to Kubernetes API")

    try:
        console.print("\n[bold cyan]Cluster Info[/bold cyan]")
        console.print(reconciler.control.cluster_info())
    except KubeVagrantError:
        console.print("[yellow]Warning:[/yellow] Could not get cluster info")


def _install_kubeconfig(settings: ClusterSettings, fatal: bool) -> None:
    """Mirror the cluster kubeconfig to the host and test it."""
    from kube_vagrant.credentials import CredentialMirror
    from kube_vagrant.exceptions import CredentialError

    mirror = CredentialMirror(settings.shared_kubeconfig_path)
    console.print("\n[bold]Setting up kubectl access from host machine...[/bold]")
    try:
        backup = mirror.install()
    except CredentialError as e:
        if fatal:
            raise
        console.print(f"[yellow]Warning:[/yellow] {e.message}")
        return

    if backup:
        console.print(f"Backed up existing kubeconfig to {backup}")
    console.print(f"[green]✓[/green] Kubeconfig copied to {mirror.host_path}")

    if not mirror.kubectl_available():
        console.print("[yellow]Warning:[/yellow] kubectl not found on host machine.")
        console.print(KUBECTL_INSTALL_HINT)

    console.print("Testing connection...")
    try:
        names = mirror.check_connection()
        console.print(f"[green]✓ kubectl is working![/green] Nodes: {', '.join(names)}")
    except CredentialError as e:
        console.print(f"[yellow]Warning:[/yellow] Connection test failed: {e.message}")


@app.command()
def version() -> None:
    """Show version information."""
    from kube_vagrant import __version__

    typer.echo(f"kube-vagrant version {__version__}")


@app.command()
def up(
    ctx: typer.Context,
    nodes: int | None = typer.Argument(None, help="Total nodes including the master (2-4)"),
    memory: int | None = typer.Option(None, "--memory", help="Memory per node in MB"),
    cpus: int | None = typer.Option(None, "--cpus", help="CPUs per node"),
    k8s_version: str | None = typer.Option(None, "--k8s-version", help="Kubernetes version"),
    setup_kubectl: bool = typer.Option(
        True,
        "--setup-kubectl/--no-setup-kubectl",
        help="Install the cluster kubeconfig on this machine afterwards",
    ),
) -> None:
    """
    Create a cluster with NODES nodes (2-4, default 2).

    Brings up the master, initializes the control plane and joins workers
    one at a time. Against an existing cluster it only adds missing workers;
    use 'scale' to remove workers.

    Examples:
        kube-vagrant up 3
        kube-vagrant up 2 --memory 4096 --cpus 4
    """
    with _cli_errors("Cluster creation"):
        settings = _settings(
            ctx, node_count=nodes, memory_mb=memory, cpus=cpus, k8s_version=k8s_version
        )
        desired = settings.desired_state()
        console.print(
            f"[bold]Creating Kubernetes cluster with {desired.node_count} nodes...[/bold]"
        )
        _print_configuration(settings, desired.node_count)

        reconciler = _reconciler(settings)
        report = reconciler.up(desired.node_count)
        _print_report(report)
        if report.failed:
            raise typer.Exit(code=1)

        if setup_kubectl:
            _install_kubeconfig(settings, fatal=False)
        _print_status(reconciler, report.actual)


@app.command()
def scale(
    ctx: typer.Context,
    nodes: int | None = typer.Argument(None, help="Target total nodes including the master (2-4)"),
    memory: int | None = typer.Option(None, "--memory", help="Memory per new node in MB"),
    cpus: int | None = typer.Option(None, "--cpus", help="CPUs per new node"),
    k8s_version: str | None = typer.Option(None, "--k8s-version", help="Kubernetes version"),
    setup_kubectl: bool = typer.Option(
        True,
        "--setup-kubectl/--no-setup-kubectl",
        help="Install the kubeconfig on this machine if the cluster had to be created",
    ),
) -> None:
    """
    Scale the cluster to NODES nodes, adding or removing workers.

    Workers are added in ascending order and removed from the highest
    number down; removed workers are drained and deleted from the cluster
    before their VM is destroyed. Creates the cluster if none exists.
    """
    with _cli_errors("Scaling"):
        settings = _settings(
            ctx, node_count=nodes, memory_mb=memory, cpus=cpus, k8s_version=k8s_version
        )
        desired = settings.desired_state()

        reconciler = _reconciler(settings)
        report = reconciler.scale(desired.node_count)
        if report.plan.current == 0 and not report.failed:
            console.print("No existing cluster found. Created a new one.")
        _print_report(report)
        if report.failed:
            raise typer.Exit(code=1)

        if setup_kubectl and report.plan.creates_master:
            _install_kubeconfig(settings, fatal=False)
        if not report.plan.is_noop:
            _print_status(reconciler, report.actual)


@app.command()
def down(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
) -> None:
    """Destroy the entire cluster and its generated join/kubeconfig files."""
    with _cli_errors("Cluster destruction"):
        settings = _settings(ctx)
        if not force:
            confirm = typer.confirm("Destroy all cluster VMs?")
            if not confirm:
                console.print("Operation cancelled")
                raise typer.Exit(code=0)

        console.print("[bold]Destroying Kubernetes cluster...[/bold]")
        reconciler = _reconciler(settings)
        reconciler.destroy_all()
        console.print("[green]✓ Cluster destroyed successfully[/green]")


@app.command()
def status(ctx: typer.Context) -> None:
    """
    Show cluster status.

    Lists the nodes with a VM, Vagrant machine states, the control plane's
    node registry and cluster-info. Problems reaching the control plane are
    reported as warnings.
    """
    with _cli_errors("Status check"):
        settings = _settings(ctx)
        _print_status(_reconciler(settings))


def _node_shell(ctx: typer.Context, node: str, command: str | None) -> None:
    from kube_vagrant.models.node import Node
    from kube_vagrant.provisioner import VagrantProvisioner

    with _cli_errors(f"Connecting to {node}"):
        role, ordinal = Node.parse_name(node)
        settings = _settings(ctx)
        rc = VagrantProvisioner(settings).interactive(settings.node(role, ordinal), command)
        if rc != 0:
            raise typer.Exit(code=rc)


@app.command()
def ssh(
    ctx: typer.Context,
    node: str = typer.Argument("master", help="master, worker1, worker2 or worker3"),
) -> None:
    """Open a shell on a node."""
    _node_shell(ctx, node, None)


@app.command()
def logs(
    ctx: typer.Context,
    node: str = typer.Argument("master", help="master, worker1, worker2 or worker3"),
) -> None:
    """Follow the kubelet logs of a node."""
    _node_shell(ctx, node, "sudo journalctl -u kubelet -f")


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def kubectl(
    ctx: typer.Context,
    args: list[str] | None = typer.Argument(None, help="Arguments passed to kubectl"),
) -> None:
    """
    Run kubectl on the master node.

    Example:
        kube-vagrant kubectl get nodes -o wide
    """
    if not args:
        console.print("[red]Error:[/red] Please provide a kubectl command")
        raise typer.Exit(code=1)
    _node_shell(ctx, "master", f"kubectl {shlex.join(args)}")


@app.command("setup-kubectl")
def setup_kubectl(ctx: typer.Context) -> None:
    """Install the cluster kubeconfig as ~/.kube/config, backing up the old one."""
    with _cli_errors("kubectl setup"):
        _install_kubeconfig(_settings(ctx), fatal=True)
        console.print("You can now use kubectl from your host machine!")


@app.command("reset-kubectl")
def reset_kubectl(ctx: typer.Context) -> None:
    """Restore ~/.kube/config from the most recent backup."""
    from kube_vagrant.credentials import CredentialMirror

    with _cli_errors("kubectl reset"):
        settings = _settings(ctx)
        restored = CredentialMirror(settings.shared_kubeconfig_path).restore()
        console.print(f"[green]✓[/green] Kubeconfig restored from {restored}")


if __name__ == "__main__":
    app()
