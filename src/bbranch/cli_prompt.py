"""
CLI-specific implementation of the prompt interface.
"""

from __future__ import annotations

from typing import Dict, List, Optional
import click
from rich.console import Console
from rich.panel import Panel

from .models import SPLIT_NOMATCH_GROUP, SPLIT_ROOT_GROUP, Branch, EvolveScope
from .prompt_interface import UserPrompt


class CliPrompt(UserPrompt):
    """CLI implementation of the prompt interface using click and rich."""

    def __init__(self, console: Console = None):
        self.console = console or Console()

    def confirm_evolve_plan(self, start_branch: str, scope: EvolveScope, plan: List[str]) -> bool:
        """Show the evolve plan and ask to proceed."""
        lines = "\n".join(f"  {i}. [green]{name}[/green]" for i, name in enumerate(plan, 1))
        panel = Panel(
            f"Start: [cyan]{start_branch}[/cyan]   Scope: [yellow]{scope.value}[/yellow]\n\n"
            f"The following branches will be rebased onto their parents, in order:\n{lines}",
            title="Evolve Plan",
            border_style="blue",
        )
        self.console.print(panel)
        return click.confirm("Proceed with evolve?", default=True)

    def confirm_rebase(self, branch_name: str, target: str) -> bool:
        """Ask before a single-branch rebase."""
        self.console.print(f"Rebase [green]{branch_name}[/green] onto [blue]{target}[/blue]")
        return click.confirm("Proceed with rebase?", default=True)

    def confirm_amend(self, branch_name: str, paths: List[str]) -> bool:
        """List the paths to fold into the commit and ask to proceed."""
        self.console.print(f"\n📝 Amending [green]{branch_name}[/green] with:", style="bold")
        if not paths:
            self.console.print("  (no file changes; message and metadata only)")
        for path in paths:
            self.console.print(f"  • {path}")
        return click.confirm("Amend this commit?", default=True)

    def confirm_unamend(self, branch_name: str, paths: List[str]) -> bool:
        """Ask before moving several files out of the last commit."""
        self.console.print(
            f"\n⚠️  {len(paths)} files of [green]{branch_name}[/green] match:", style="bold yellow"
        )
        for path in paths:
            self.console.print(f"  • {path}")
        return click.confirm("Remove all of them from the commit?", default=False)

    def choose_split_groups(self, source_branch: str, groups: Dict[str, List[str]]) -> List[str]:
        """List the groups of a split and read back a comma-separated selection."""
        keys = list(groups)
        self.console.print(f"\n✂️  {len(keys)} split(s) found in [green]{source_branch}[/green]:", style="bold")
        for i, key in enumerate(keys, 1):
            label = {SPLIT_NOMATCH_GROUP: "Non-matching files", SPLIT_ROOT_GROUP: "Files at the split root"}.get(key, key)
            self.console.print(f"  {i}. {label} ({len(groups[key])} files)")
        answer = click.prompt("Groups to split (numbers, comma separated)", default="all")
        if answer.strip().lower() == "all":
            return keys
        chosen: List[str] = []
        for part in answer.split(","):
            part = part.strip()
            if part.isdigit() and 1 <= int(part) <= len(keys) and keys[int(part) - 1] not in chosen:
                chosen.append(keys[int(part) - 1])
        return chosen

    def confirm_split_restart(self, root_branch: str) -> bool:
        self.console.print(f"⚠️  A split already exists under [green]{root_branch}[/green]", style="bold yellow")
        return click.confirm("Delete the existing split branches and start over?", default=False)

    def confirm_split_clean(self, branches: List[str]) -> bool:
        self.console.print(f"\n🧹 Found {len(branches)} branch(es) to delete:", style="bold")
        for name in branches:
            self.console.print(f"  • {name}")
        return click.confirm("Delete them?", default=False)

    def choose_branch(self, candidates: List[Branch]) -> Optional[str]:
        """Numbered choice between candidate branches; orphaned ones are annotated."""
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0].name

        self.console.print("\nOptions:")
        for i, branch in enumerate(candidates, 1):
            note = " [red](orphaned)[/red]" if branch.orphaned else ""
            self.console.print(f"  {i}. {branch.name}{note}")

        choices = [str(i) for i in range(1, len(candidates) + 1)] + ["abort"]
        try:
            choice = click.prompt(
                "Choose a branch", type=click.Choice(choices), show_choices=False
            )
        except (click.Abort, KeyboardInterrupt):
            return None
        if choice == "abort":
            return None
        return candidates[int(choice) - 1].name
