"""Rich rendering of the controller state."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:  # pragma: no cover
    from rich.console import RenderableType
    from rich.live import Live

    from torrentctl.session.state import ControllerState

HELP_TEXT = """\
HELP SCREEN (press any key to dismiss)

CLIENT OPTIONS
[q] quit client                                 [m] add magnet link

TORRENT ACTIONS
[p] pause/resume selected torrent               [W] remove all web seeds
[s] toggle sequential download                  [j] force recheck
[space] toggle session pause                    [c] clear error
[v] scrape                                      [D] delete torrent and data
[r] force reannounce                            [R] save resume data for all torrents
[o] set piece deadlines (sequential dl)         [k] toggle force-started

DISPLAY OPTIONS
left/right arrow keys: select torrent filter
up/down arrow keys: select torrent
[i] toggle show peers                           [d] toggle show downloading pieces
[u] show uTP stats                              [f] toggle show files
[g] show DHT                                    [x] toggle disk cache stats
[t] show trackers                               [l] toggle show log
[P] show pad files (in file list)               [y] toggle show piece matrix

COLUMN OPTIONS
[1] toggle IP column                            [3] toggle timers column
[4] toggle block progress column                [5] toggle peer rate column
[6] toggle failures column                      [7] toggle send buffers column
"""

STATE_STYLES = {
    "downloading": "green",
    "downloading_metadata": "cyan",
    "seeding": "blue",
    "finished": "blue",
    "checking_files": "yellow",
    "checking_resume_data": "yellow",
}

UTP_COUNTERS = (
    "utp.num_utp_idle",
    "utp.num_utp_syn_sent",
    "utp.num_utp_connected",
    "utp.num_utp_fin_sent",
    "utp.num_utp_close_wait",
)

DISK_COUNTERS = (
    "disk.queued_disk_jobs",
    "disk.num_jobs",
    "disk.num_read_jobs",
    "disk.num_write_jobs",
    "disk.disk_blocks_in_use",
)


def _fmt_rate(rate: int) -> str:
    """Format a byte rate."""
    if rate >= 1024 * 1024:
        return f"{rate / (1024 * 1024):.1f} MB/s"
    if rate >= 1024:
        return f"{rate / 1024:.1f} kB/s"
    return f"{rate} B/s"


def create_torrent_table(state: ControllerState) -> Table:
    """Create the torrent list for the active filter."""
    ui = state.ui
    table = Table(
        title=f"Torrents ({ui.torrent_filter.label})",
        expand=True,
        show_lines=False,
    )
    table.add_column("#", justify="right", style="dim", width=3)
    table.add_column("Name", style="cyan", no_wrap=True, ratio=3)
    table.add_column("State", ratio=1)
    table.add_column("Progress", justify="right")
    table.add_column("Down", justify="right", style="green")
    table.add_column("Up", justify="right", style="red")
    table.add_column("Peers", justify="right")

    visible = ui.visible_torrents()
    for idx, status in enumerate(visible):
        name = status.name or status.identity.hex()
        if status.error:
            state_text = Text(f"error: {status.error}", style="red")
        else:
            state_text = Text(status.state, style=STATE_STYLES.get(status.state, "white"))
        flags = []
        if status.is_sequential:
            flags.append("seq")
        if not status.is_auto_managed:
            flags.append("forced")
        if flags:
            state_text.append(f" ({', '.join(flags)})", style="dim")
        table.add_row(
            str(idx),
            name,
            state_text,
            f"{status.progress * 100:.1f}%",
            _fmt_rate(status.download_rate),
            _fmt_rate(status.upload_rate),
            f"{status.num_peers} ({status.num_seeds})",
            style="reverse" if idx == ui.selected else None,
        )
    return table


def create_dht_panel(state: ControllerState) -> Panel:
    """Create the DHT routing table and lookup panel."""
    dht = state.ui.dht
    buckets = Table(show_header=True, box=None)
    buckets.add_column("Bucket", justify="right")
    buckets.add_column("Nodes", justify="right")
    buckets.add_column("Replacements", justify="right")
    buckets.add_column("")
    for idx, bucket in enumerate(dht.buckets):
        bar = "#" * min(bucket.num_nodes, 64) + "-" * min(bucket.num_replacements, 8)
        buckets.add_row(str(idx), str(bucket.num_nodes), str(bucket.num_replacements), bar)

    lookups = Table(show_header=True, box=None)
    lookups.add_column("Lookup")
    lookups.add_column("In flight", justify="right")
    lookups.add_column("Timeouts", justify="right")
    lookups.add_column("Responses", justify="right")
    lookups.add_column("Branch", justify="right")
    for lookup in dht.lookups:
        lookups.add_row(
            lookup.kind,
            str(lookup.outstanding_requests),
            str(lookup.timeouts),
            str(lookup.responses),
            str(lookup.branch_factor),
        )
    return Panel(
        Group(buckets, lookups),
        title=f"DHT ({dht.node_count} nodes)",
    )


def create_counters_panel(state: ControllerState, title: str, names: tuple[str, ...]) -> Panel:
    """Create a panel listing selected session counters."""
    table = Table(show_header=False, box=None)
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")
    stats = state.ui.session_stats
    for name in names:
        table.add_row(name.split(".", 1)[-1], str(stats.get(name)))
    return Panel(table, title=title)


def create_log_panel(state: ControllerState) -> Panel:
    """Create the event log panel."""
    text = Text()
    for line in state.events:
        if text:
            text.append("\n")
        text.append(line)
    return Panel(text, title="Events")


def create_status_line(state: ControllerState) -> Text:
    """Create the one-line session summary."""
    stats = state.ui.session_stats
    line = Text()
    line.append(f"torrents: {len(state.ui.torrents)}  ")
    line.append(f"dht nodes: {stats.get('dht.dht_nodes')}  ")
    line.append(f"outstanding saves: {state.barrier.count}  ")
    line.append("[h] help", style="dim")
    return line


def render(state: ControllerState) -> RenderableType:
    """Build the full screen for the current state."""
    display = state.display
    if display.show_help:
        return Panel(Text(HELP_TEXT), title="Help")

    parts: list[RenderableType] = [create_torrent_table(state), create_status_line(state)]
    if display.show_dht_status:
        parts.append(create_dht_panel(state))
    if display.show_utp_stats:
        parts.append(create_counters_panel(state, "uTP", UTP_COUNTERS))
    if display.show_disk_stats:
        parts.append(create_counters_panel(state, "Disk", DISK_COUNTERS))
    if display.show_log:
        parts.append(create_log_panel(state))
    elif len(state.events):
        parts.append(Text(state.events.lines()[-1], style="dim"))
    return Group(*parts)


class LiveView:
    """Pushes a fresh rendering to a Rich `Live` display each tick."""

    def __init__(self, live: Live):
        """Initialize live view."""
        self.live = live

    def __call__(self, state: ControllerState) -> None:
        """Render ``state``."""
        self.live.update(render(state), refresh=True)
