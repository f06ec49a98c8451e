"""Install summary counting and reporting."""
from dataclasses import dataclass
from typing import List

from rich.console import Console
from rich.table import Table

from bodhilab.models.result import InstallResult, InstallStatus

STATUS_STYLE = {
    InstallStatus.SUCCESS: "green",
    InstallStatus.PARTIAL: "yellow",
    InstallStatus.FAILED: "red",
}


@dataclass(frozen=True)
class Summary:
    success: int
    partial: int
    failed: int
    total: int

    @property
    def all_succeeded(self) -> bool:
        return self.total > 0 and self.success == self.total


def summarize(results: List[InstallResult]) -> Summary:
    """Count results by status; the three counts always add up to total."""
    counts = {status: 0 for status in InstallStatus}
    for result in results:
        counts[result.status] += 1
    return Summary(
        success=counts[InstallStatus.SUCCESS],
        partial=counts[InstallStatus.PARTIAL],
        failed=counts[InstallStatus.FAILED],
        total=len(results),
    )


def render_summary(results: List[InstallResult], console: Console) -> Summary:
    """Print the per-node table, the counts and access details."""
    table = Table(title="Pi-hole Installation Summary")
    table.add_column("Node", style="cyan")
    table.add_column("Container")
    table.add_column("IP")
    table.add_column("Status")
    table.add_column("Reason", style="dim")

    for result in results:
        style = STATUS_STYLE[result.status]
        table.add_row(
            result.node,
            str(result.vmid),
            result.ip,
            f"[{style}]{result.status.value.upper()}[/{style}]",
            result.reason or "",
        )
    console.print(table)

    summary = summarize(results)
    console.print(
        f"\n[green]{summary.success} succeeded[/green], "
        f"[yellow]{summary.partial} partial[/yellow], "
        f"[red]{summary.failed} failed[/red] "
        f"(of {summary.total} nodes)"
    )

    succeeded = [r for r in results if r.ok]
    if succeeded:
        console.print("\n[bold]Access details:[/bold]")
        for result in succeeded:
            address = result.ip.split("/")[0]
            console.print(f"  [cyan]{result.node}[/cyan]: http://{address}/admin")
            console.print(f"    Web password:  {result.web_password}")
            console.print(f"    Root password: {result.root_password}")
            console.print(f"    Status:        pct exec {result.vmid} -- pihole-status.sh")
        console.print(
            "\n[yellow]⚠ Point your router's DNS (or individual devices) at the addresses above[/yellow]"
        )
    return summary
