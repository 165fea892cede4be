"""
Command-line interface for the commit-branch evolve tool.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional
from datetime import datetime

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.tree import Tree

from .branch_workflow import BranchWorkflow
from .cli_prompt import CliPrompt
from .config import env_file_path, merged_values, write_env_value, DEFAULTS, KEY_LOG
from .evolve_orchestrator import EvolveOrchestrator
from .git_manager import GitManager
from .graph import BranchGraph
from .markers import (
    EVOLVE_HOME_MARKER,
    EVOLVE_TRUNK_MARKER,
    parse_evolve_tag,
    parse_merge_base_tag,
    parse_split_branch_tag,
    parse_split_root_branch_name,
    parse_stale_parent_tag,
)
from .models import (
    BBranchError,
    Branch,
    EvolveResult,
    EvolveState,
    OperationCancelledError,
    RebaseFlag,
    RebaseOutcome,
)
from . import __version__ as PACKAGE_VERSION


console = Console()
logger = logging.getLogger(__name__)


def _print_version(ctx, param, value):
    """Eager option callback to print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"bbranch {PACKAGE_VERSION}")
    ctx.exit()


def _default_log_path() -> Path:
    """Determine default log file path (~/.bbranch/bbranch.log)."""
    env_path = os.environ.get(KEY_LOG)
    if env_path:
        p = Path(env_path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base = Path.home() / ".bbranch"
    base.mkdir(parents=True, exist_ok=True)
    return base / "bbranch.log"


class SafeConsoleFormatter(logging.Formatter):
    """Formatter that replaces characters not encodable by the target console encoding.

    File handlers keep full UTF-8 output; only console output is sanitized.
    """

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, style: str = "%", encoding: Optional[str] = None):
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self.encoding = encoding or getattr(sys.stderr, "encoding", None) or "utf-8"

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        try:
            msg.encode(self.encoding, errors="strict")
            return msg
        except UnicodeEncodeError:
            return msg.encode(self.encoding, errors="replace").decode(self.encoding, errors="replace")


class SafeConsoleFilter(logging.Filter):
    """Sanitize record messages for console by replacing unencodable characters.

    Runs before handler emission, which matters for RichHandler because it
    renders message text without the standard formatter.
    """

    def __init__(self, encoding: Optional[str] = None):
        super().__init__()
        self.encoding = encoding or getattr(sys.stderr, "encoding", None) or "utf-8"

    def filter(self, record: logging.LogRecord) -> bool:  # always keep the record
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        try:
            message.encode(self.encoding, errors="strict")
        except UnicodeEncodeError:
            # Replace the message and clear args to avoid double formatting
            record.msg = message.encode(self.encoding, errors="replace").decode(self.encoding, errors="replace")
            record.args = ()
        return True


def setup_logging(verbose: bool = False, console_level: Optional[str] = None, log_file: Optional[Path] = None) -> Path:
    """Setup logging:
    - Rotating UTF-8 log file, always on (~/.bbranch/bbranch.log or BBRANCH_LOG)
    - Console logging disabled by default; enable via --verbose or --log-level
    Returns the log file path.
    """
    provided = Path(log_file) if log_file else _default_log_path()
    if provided.exists() and provided.is_dir():
        log_path = provided / "bbranch.log"
    else:
        log_path = provided
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    # Clear existing handlers to avoid duplication in tests / repeated invocations
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    file_handler = RotatingFileHandler(
        str(log_path), maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(file_handler)

    # Console handler (optional)
    if verbose or console_level:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
        }
        ch_level = level_map.get((console_level or "info").lower(), logging.INFO)
        console_handler = RichHandler(console=console, rich_tracebacks=True)
        console_handler.setLevel(ch_level)
        stream = getattr(console, "file", sys.stderr)
        enc = getattr(stream, "encoding", None) or getattr(sys.stderr, "encoding", None) or "utf-8"
        console_handler.setFormatter(SafeConsoleFormatter("%(message)s", encoding=enc))
        console_handler.addFilter(SafeConsoleFilter(encoding=enc))
        root.addHandler(console_handler)

    logger.debug(f"Logging started at {datetime.now().isoformat(timespec='seconds')}")
    return log_path


@contextmanager
def _command_errors(ctx: click.Context, action: str) -> Iterator[None]:
    """Map domain errors to coloured messages and exit codes."""
    try:
        yield
    except OperationCancelledError as e:
        console.print(f"\n🚫 {e}", style="bold yellow")
        logger.debug(f"{action} cancelled", exc_info=True)
        sys.exit(0)
    except BBranchError as e:
        console.print(f"\n❌ **{action} failed:** {e}", style="bold red")
        # Debug stack trace to file logs for diagnostics
        logger.debug(f"{action} aborted due to {type(e).__name__}", exc_info=True)
        sys.exit(1)
    except click.ClickException:
        raise
    except (click.Abort, KeyboardInterrupt):
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        logger.debug("Operation cancelled by user", exc_info=True)
        sys.exit(130)
    except Exception as e:
        console.print(f"\n💥 **Unexpected Error:** {e}", style="bold red")
        if ctx.obj.get("verbose"):
            console.print_exception()
        logger.debug(f"Unexpected error during {action}", exc_info=True)
        sys.exit(1)


def _orchestrator(ctx: click.Context) -> EvolveOrchestrator:
    return EvolveOrchestrator(ctx.obj.get("repo_path"))


@click.group()
@click.option(
    "--version",
    "-V",
    is_flag=True,
    callback=_print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose console logging (INFO)")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Console log level. By default, console logging is disabled.",
)
@click.option(
    "--repo-path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to repository (defaults to current directory)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, log_level: Optional[str], repo_path: Optional[Path]) -> None:
    """bbranch - one branch per commit, with automatic re-linearization of descendants."""
    log_path = setup_logging(verbose, console_level=log_level)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["console_level"] = log_level
    ctx.obj["log_path"] = log_path
    ctx.obj["repo_path"] = repo_path.resolve() if isinstance(repo_path, Path) else None
    logger.debug(f"CLI init: cwd={Path.cwd()} repo_path={ctx.obj['repo_path']}")


# --- Commit-branch workflow ---
@cli.command()
@click.option("--branch", "-b", "branch_name", help="Name of the new branch")
@click.option("--message", "-m", help="Commit message (opens the editor when omitted)")
@click.option("--allow-empty/--no-allow-empty", default=True, show_default=True, help="Allow a commit without changes")
@click.pass_context
def commit(ctx: click.Context, branch_name: Optional[str], message: Optional[str], allow_empty: bool) -> None:
    """Create a new branch at HEAD and commit onto it."""
    with _command_errors(ctx, "Commit"):
        if not branch_name:
            branch_name = click.prompt("Enter new branch name").strip()
        workflow = BranchWorkflow(_orchestrator(ctx))
        name = workflow.commit(branch_name, message, allow_empty=allow_empty)
        console.print(f"✅ Committed on new branch [green]{name}[/green]")


@cli.command()
@click.argument("path", required=False)
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Answer yes to all prompts")
@click.pass_context
def amend(ctx: click.Context, path: Optional[str], assume_yes: bool) -> None:
    """Amend changes (optionally only PATH) into the current commit-branch."""
    with _command_errors(ctx, "Amend"):
        workflow = BranchWorkflow(_orchestrator(ctx))
        workflow.amend(path, prompt=CliPrompt(console), assume_yes=assume_yes)
        console.print("✅ Amended the current commit", style="bold green")


@cli.command()
@click.argument("path")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Answer yes to all prompts")
@click.pass_context
def unamend(ctx: click.Context, path: str, assume_yes: bool) -> None:
    """Move files matching PATH out of the last commit and back to the index."""
    with _command_errors(ctx, "Unamend"):
        workflow = BranchWorkflow(_orchestrator(ctx))
        removed = workflow.unamend(path, prompt=CliPrompt(console), assume_yes=assume_yes)
        for entry in removed:
            console.print(f"Removed {entry.path} from last commit")


@cli.command()
@click.argument("splitter", default="/")
@click.option("--branch", "-b", "branch_name", help="Branch to split (defaults to the current branch)")
@click.option("--message", "-m", help="Message for the split commits; {{BB_DIRECTORY}} is replaced by the group")
@click.option("--clean", "-c", is_flag=True, help="Only delete an existing split and exit")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Split every group without prompting")
@click.pass_context
def split(
    ctx: click.Context,
    splitter: str,
    branch_name: Optional[str],
    message: Optional[str],
    clean: bool,
    assume_yes: bool,
) -> None:
    """
    Split a commit-branch into one branch per directory below SPLITTER.

    Example: bbranch split src/ -y
    """
    with _command_errors(ctx, "Split"):
        workflow = BranchWorkflow(_orchestrator(ctx))
        if clean:
            deleted = workflow.clean_split(branch_name, prompt=CliPrompt(console), assume_yes=assume_yes)
            console.print(f"🧹 Deleted {len(deleted)} split branch(es)", style="bold green")
            return
        created = workflow.split(
            splitter, branch_name, message, prompt=CliPrompt(console), assume_yes=assume_yes
        )
        for name in created:
            console.print(f"  ✅ {name}")
        console.print(f"✂️  Created {len(created)} split branch(es)", style="bold green")


@cli.command()
@click.argument("target", required=False)
@click.option("--continue", "continue_", is_flag=True, help="Continue after resolving conflicts")
@click.option("--abort", is_flag=True, help="Abort the rebase in progress")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Answer yes to all prompts")
@click.pass_context
def rebase(ctx: click.Context, target: Optional[str], continue_: bool, abort: bool, assume_yes: bool) -> None:
    """Rebase the current commit-branch onto TARGET."""
    with _command_errors(ctx, "Rebase"):
        if continue_ and abort:
            raise click.UsageError("--continue and --abort are mutually exclusive")
        orchestrator = _orchestrator(ctx)
        git = orchestrator.git_manager

        if abort:
            orchestrator.rebase_one("", "", RebaseFlag.ABORT)
            console.print("Rebase aborted", style="yellow")
            return

        if continue_:
            branch = git.get_rebase_head_branch()
            if branch is None:
                raise BBranchError("No rebase in progress")
            outcome, files = orchestrator.rebase_one(branch, target or branch, RebaseFlag.CONTINUE)
        else:
            if not target:
                raise click.UsageError("TARGET is required unless --continue or --abort is given")
            branch = BranchWorkflow(orchestrator).current_branch("rebase")
            if not assume_yes and not CliPrompt(console).confirm_rebase(branch, target):
                raise OperationCancelledError("Rebase cancelled by user")
            outcome, files = orchestrator.rebase_one(branch, target)

        if outcome == RebaseOutcome.CONFLICT:
            _print_conflicts(files)
            console.print("Resolve them, stage the files and run 'bbranch rebase --continue'.")
            sys.exit(1)
        console.print(f"✅ Rebased [green]{branch}[/green]", style="bold")


@cli.command()
@click.argument("branch", required=False)
@click.option(
    "--scope",
    type=click.Choice(["self", "directs", "full"]),
    default="full",
    show_default=True,
    help="self: only BRANCH; directs: BRANCH and current descendants; full: also orphaned descendants",
)
@click.option("--continue", "continue_", is_flag=True, help="Continue the evolve after resolving conflicts")
@click.option("--abort", is_flag=True, help="Abort the in-flight rebase and clear the evolve queue")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Skip the confirmation summary")
@click.pass_context
def evolve(
    ctx: click.Context,
    branch: Optional[str],
    scope: str,
    continue_: bool,
    abort: bool,
    assume_yes: bool,
) -> None:
    """
    Rebase BRANCH (default: current) and its descendants onto their parents.

    Example: bbranch evolve --scope directs
    """
    with _command_errors(ctx, "Evolve"):
        if continue_ and abort:
            raise click.UsageError("--continue and --abort are mutually exclusive")
        orchestrator = _orchestrator(ctx)
        if abort:
            result = orchestrator.resume_evolve(RebaseFlag.ABORT)
        elif continue_:
            result = orchestrator.resume_evolve(RebaseFlag.CONTINUE)
        else:
            start = branch or orchestrator.git_manager.get_current_branch()
            result = orchestrator.start_evolve(
                start, scope, prompt=CliPrompt(console), assume_yes=assume_yes
            )
        _report_evolve(result)
        if result.state == EvolveState.PAUSED_ON_CONFLICT:
            sys.exit(1)


# --- Navigation and sync ---
@cli.command("next")
@click.pass_context
def next_(ctx: click.Context) -> None:
    """Check out a child of the current branch."""
    with _command_errors(ctx, "Next"):
        choice = BranchWorkflow(_orchestrator(ctx)).next(CliPrompt(console))
        if choice is None:
            console.print("No child branch checked out", style="yellow")
        else:
            console.print(f"Checked out [green]{choice}[/green]")


@cli.command()
@click.pass_context
def prev(ctx: click.Context) -> None:
    """Check out the parent of the current branch."""
    with _command_errors(ctx, "Prev"):
        parent = BranchWorkflow(_orchestrator(ctx)).prev()
        console.print(f"Checked out [green]{parent}[/green]")


@cli.command()
@click.pass_context
def pull(ctx: click.Context) -> None:
    """Update the trunk from the remote and record its old tip."""
    with _command_errors(ctx, "Pull"):
        orchestrator = _orchestrator(ctx)
        moved = BranchWorkflow(orchestrator).pull()
        if moved:
            console.print(
                f"✅ Updated {orchestrator.trunk}; run 'bbranch evolve {orchestrator.trunk}' to move children onto it"
            )
        else:
            console.print(f"{orchestrator.trunk} already up to date")


@cli.command()
@click.option("--chain", is_flag=True, help="Also push every descendant of the current branch")
@click.pass_context
def push(ctx: click.Context, chain: bool) -> None:
    """Force-push the current branch (with lease) to the configured remote."""
    with _command_errors(ctx, "Push"):
        orchestrator = _orchestrator(ctx)
        workflow = BranchWorkflow(orchestrator)
        pushed = [workflow.push()]
        if chain:
            for name in BranchGraph(orchestrator).descendants(pushed[0]):
                pushed.append(workflow.push(name))
        for name in pushed:
            console.print(f"⬆️  Pushed [green]{name}[/green] to {orchestrator.settings.remote}")


# --- Inspection ---
@cli.group("list")
@click.pass_context
def list_(ctx: click.Context) -> None:
    """Show branch relationships."""
    pass


@list_.command("parent")
@click.argument("branch", required=False)
@click.pass_context
def list_parent(ctx: click.Context, branch: Optional[str]) -> None:
    """Print the resolved parent of BRANCH (default: current)."""
    with _command_errors(ctx, "List parent"):
        orchestrator = _orchestrator(ctx)
        name = branch or orchestrator.git_manager.get_current_branch()
        parent = orchestrator.resolve_parent(name)
        suffix = " [red](stale: rewritten since)[/red]" if parent.stale else ""
        console.print(f"{parent.name}{suffix}")


@list_.command("children")
@click.argument("branch", required=False)
@click.pass_context
def list_children(ctx: click.Context, branch: Optional[str]) -> None:
    """Print the current and orphaned children of BRANCH (default: current)."""
    with _command_errors(ctx, "List children"):
        orchestrator = _orchestrator(ctx)
        name = branch or orchestrator.git_manager.get_current_branch()
        children = orchestrator.resolve_children(name)
        if not children:
            console.print(f"{name} has no children")
            return
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Child", style="cyan")
        table.add_column("State", style="yellow")
        for child in children:
            table.add_row(child.name, "orphaned" if child.orphaned else "current")
        console.print(table)


@list_.command("tree")
@click.pass_context
def list_tree(ctx: click.Context) -> None:
    """Display the tree of all local branches."""
    with _command_errors(ctx, "List tree"):
        root, _ = BranchGraph(_orchestrator(ctx)).build()
        console.print(_render_tree(root))


@cli.group()
@click.pass_context
def markers(ctx: click.Context) -> None:
    """Inspect and garbage-collect markers."""
    pass


@markers.command("sweep")
@click.pass_context
def markers_sweep(ctx: click.Context) -> None:
    """Delete markers no live branch needs and refresh trunk markers."""
    with _command_errors(ctx, "Sweep"):
        orchestrator = _orchestrator(ctx)
        deleted = orchestrator.sweep_stale_markers()
        orchestrator.stale.cleanup()
        console.print(f"🧹 Swept {len(deleted)} stale marker(s)", style="bold green")


@markers.command("list")
@click.pass_context
def markers_list(ctx: click.Context) -> None:
    """List every marker with its decoded fields."""
    with _command_errors(ctx, "List markers"):
        orchestrator = _orchestrator(ctx)
        store = orchestrator.store
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Marker", style="cyan")
        table.add_column("Kind", style="blue")
        table.add_column("Fields", style="yellow")
        table.add_column("Commit", style="dim")
        for name in sorted(store.list()):
            kind, fields = _describe_marker(name)
            if kind is None:
                continue
            commit = store.resolve(name) or ""
            table.add_row(name, kind, fields, commit[:8])
        console.print(table)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the evolve queue and whether a rebase is in progress."""
    with _command_errors(ctx, "Status"):
        orchestrator = _orchestrator(ctx)
        queue_status = orchestrator.evolve_status()
        rebasing = orchestrator.git_manager.is_rebase_in_progress()

        console.print("\n📊 **Evolve Status**")
        if queue_status is None:
            console.print("No evolve in progress")
        else:
            scope = queue_status.scope.value if queue_status.scope else "unknown"
            console.print(f"Scope: {scope}")
            console.print(f"Home branch: {queue_status.home_branch or '-'}")
            if queue_status.trunk_snapshot:
                console.print(f"Trunk target: {queue_status.trunk_snapshot[:12]}")
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Step", justify="right")
            table.add_column("Branch", style="cyan")
            for step in queue_status.pending:
                table.add_row(str(step.step), step.branch or "?")
            console.print(table)
        console.print("🔄 Rebase in progress" if rebasing else "✅ No rebase in progress")


# --- Configuration ---
@cli.group()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Read and write repository configuration."""
    pass


@config.command("set")
@click.argument("key")
@click.argument("value", default="")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set KEY to VALUE in the repository env file (empty VALUE unsets)."""
    with _command_errors(ctx, "Config set"):
        git = GitManager(ctx.obj.get("repo_path"))
        write_env_value(env_file_path(git), key.upper(), value)
        console.print(f"{key.upper()}={value}" if value else f"Unset {key.upper()}")


@config.command("list")
@click.argument("key", required=False)
@click.pass_context
def config_list(ctx: click.Context, key: Optional[str]) -> None:
    """Print merged configuration values (env > file > default)."""
    with _command_errors(ctx, "Config list"):
        git = GitManager(ctx.obj.get("repo_path"))
        wanted = key.upper() if key else None
        if wanted and wanted not in DEFAULTS:
            raise BBranchError(f"Unknown configuration key: {key}")
        for name, value, source in merged_values(git):
            if wanted and name != wanted:
                continue
            note = " [dim](default)[/dim]" if source == "default" else f" [dim]({source})[/dim]"
            console.print(f"{name}={value if value is not None else ''}{note}")


@cli.command()
def version() -> None:
    """Print the current bbranch version."""
    console.print(f"bbranch {PACKAGE_VERSION}")


def _print_conflicts(files: List[Path]) -> None:
    console.print("\n⚠️  **Rebase conflicts in:**", style="bold yellow")
    for path in files:
        console.print(f"  • {path}")


def _report_evolve(result: EvolveResult) -> None:
    """Display the outcome of an evolve run."""
    for name in result.completed:
        console.print(f"  ✅ {name}")
    if result.state == EvolveState.DONE:
        if result.completed:
            console.print("\n🎉 **Evolve completed successfully!**", style="bold green")
        else:
            console.print("Nothing to evolve")
    elif result.state == EvolveState.PAUSED_ON_CONFLICT:
        console.print(f"\n⏸️  **Evolve paused on {result.paused_on}**", style="bold yellow")
        _print_conflicts(result.conflict_files)
        console.print("Resolve them, stage the files and run 'bbranch evolve --continue' (or --abort).")
    elif result.state == EvolveState.ABORTED:
        console.print("Evolve aborted; already rebased branches stay rebased", style="yellow")


def _branch_label(branch: Branch) -> str:
    label = f"[green]{branch.name}[/green]"
    source = parse_split_root_branch_name(branch.name)
    if source is not None:
        label += f" [blue](split root of {source})[/blue]"
    if branch.orphaned:
        label += " [red](orphaned)[/red]"
    return label


def _render_tree(root: Branch) -> Tree:
    tree = Tree(f"[bold]{root.name}[/bold]")
    pending = [(root, tree)]
    while pending:
        node, view = pending.pop()
        for child in sorted(node.children, key=lambda c: c.name):
            pending.append((child, view.add(_branch_label(child))))
    return tree


def _describe_marker(name: str):
    if name == EVOLVE_HOME_MARKER:
        return "evolve-home", ""
    if name == EVOLVE_TRUNK_MARKER:
        return "evolve-trunk", ""
    stale = parse_stale_parent_tag(name)
    if stale is not None:
        return "stale-parent", f"branch={stale.branch} seq={stale.seq}"
    merge_base = parse_merge_base_tag(name)
    if merge_base is not None:
        return "merge-base", f"seq={merge_base.seq}"
    evolve_marker = parse_evolve_tag(name)
    if evolve_marker is not None:
        return "evolve", f"scope={evolve_marker.scope.value} step={evolve_marker.step}"
    split = parse_split_branch_tag(name)
    if split is not None:
        return "split-root", f"branch={split}"
    return None, ""


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n\n🚫 **Operation cancelled by user**", style="bold yellow")
        # Debug stack trace for cancellation context
        logger.debug("Top-level cancellation (KeyboardInterrupt)", exc_info=True)
        sys.exit(130)
    except Exception as e:
        console.print(f"\n💥 **Unexpected error:** {e}", style="bold red")
        # Debug stack trace to file logs for diagnostics
        logger.debug("Unexpected error in main()", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
