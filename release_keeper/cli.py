"""Command-line interface for release-keeper"""

import sys
from typing import List

from rich.console import Console
from rich.table import Table

from .args import parse_args
from .config import load_config
from .core import UpdaterService
from .logging_config import setup_logging
from .models import CommitInfo

console = Console()


def _format_date(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "unknown"


def _commit_table(title: str, commits: List[CommitInfo]) -> Table:
    table = Table(title=title)
    table.add_column("Commit", style="cyan")
    table.add_column("Date")
    table.add_column("Message")
    for commit in commits:
        table.add_row(commit.hash, _format_date(commit.date), commit.message)
    return table


def show_version(service: UpdaterService, no_clone: bool) -> int:
    version = service.current_version(allow_clone=not no_clone)
    if version is None:
        console.print("[yellow]Version unknown[/yellow]")
        return 0
    source = "embedded" if version.embedded else version.branch
    console.print(f"[bold]{version.commit_hash}[/bold] ({source}) {_format_date(version.commit_date)}")
    if version.commit_msg:
        console.print(version.commit_msg)
    return 0


def show_check(service: UpdaterService) -> int:
    result = service.check_for_updates()
    if result.current_version:
        console.print(f"Current version: [bold]{result.current_version.commit_hash}[/bold]")
    console.print(f"{result.commits_behind} behind, {result.commits_ahead} ahead of upstream")
    if result.ahead_commits:
        console.print(_commit_table("Local commits", result.ahead_commits))
    if result.has_updates:
        console.print(_commit_table("New upstream commits", result.new_commits))
    else:
        console.print("[green]Up to date[/green]")
    return 0


def show_prs(service: UpdaterService, state: str, limit: int) -> int:
    table = Table(title=f"Upstream pull requests ({state})")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Updated")
    table.add_column("Applied")
    for pr in service.get_upstream_prs(state, limit):
        applied = "[green]yes[/green]" if pr.applied else ""
        if pr.applied and not pr.can_revert:
            applied += " [dim](untracked)[/dim]"
        table.add_row(str(pr.number), pr.title, pr.author, _format_date(pr.updated_at), applied)
    console.print(table)
    return 0


def show_backups(service: UpdaterService, limit: int) -> int:
    table = Table(title="Backups")
    table.add_column("File", style="cyan")
    table.add_column("Created")
    table.add_column("Size", justify="right")
    for backup in service.list_backups(limit):
        name = f"{backup.filename} [green](current)[/green]" if backup.is_current else backup.filename
        table.add_row(name, _format_date(backup.created_at), f"{backup.size:,}")
    console.print(table)
    return 0


def apply_prs(service: UpdaterService, numbers: List[int], build: bool, restart: bool) -> int:
    results = service.execute_cherry_pick(numbers, rebuild=build, auto_restart=restart)
    exit_code = 0
    for result in results:
        if result.success:
            applied = ", ".join(result.applied) or "nothing new"
            console.print(f"[green]PR #{result.pr_number}: applied {applied}[/green]")
        else:
            console.print(f"[red]PR #{result.pr_number}: {result.error_text}[/red]")
            exit_code = 1
    return exit_code


def revert_pr(service: UpdaterService, number: int, build: bool, restart: bool) -> int:
    result = service.execute_revert(number, rebuild=build, auto_restart=restart)
    if not result.success:
        console.print(f"[red]PR #{number}: {result.error_text}[/red]")
        return 1
    console.print(f"[green]PR #{number}: reverted {', '.join(result.reverted) or 'nothing'}[/green]")
    return 0


def run_command(service: UpdaterService, parsed_args) -> int:
    restart = not parsed_args.no_restart
    command = parsed_args.command

    if command == "version":
        return show_version(service, parsed_args.no_clone)
    if command == "check":
        return show_check(service)
    if command == "commits":
        console.print(_commit_table("Recent commits", service.get_current_commits(parsed_args.limit)))
        return 0
    if command == "update":
        service.execute_update(auto_restart=restart)
        return 0
    if command == "build":
        service.execute_build(auto_restart=restart, tag=parsed_args.tag)
        return 0
    if command == "prs":
        return show_prs(service, parsed_args.state, parsed_args.limit)
    if command == "apply":
        return apply_prs(service, parsed_args.numbers, parsed_args.build, restart)
    if command == "revert":
        return revert_pr(service, parsed_args.number, parsed_args.build, restart)
    if command == "backups":
        return show_backups(service, parsed_args.limit)
    if command == "rollback":
        if not service.execute_rollback(parsed_args.path):
            console.print("[yellow]Already running that version; nothing to do[/yellow]")
        return 0

    console.print(f"[red]Unknown command: {command}[/red]")
    return 2


def main(argv=None):
    """Main entry point for the application."""
    parsed_args = parse_args(argv)
    try:
        setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug)
        config = load_config(parsed_args.config, verbose=parsed_args.verbose, debug=parsed_args.debug)

        if parsed_args.debug:
            console.print("[yellow]Configuration:[/yellow]")
            for key, value in config.to_dict().items():
                if key == "github_token" and value:
                    value = "***"
                console.print(f"  {key}: {value}")

        service = UpdaterService(config)
        service.set_log_callback(lambda message: console.print(f"[dim]{message}[/dim]"))
        try:
            return run_command(service, parsed_args)
        finally:
            service.close()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 1
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if parsed_args.debug:
            console.print_exception()
        return 1


if __name__ == "__main__":
    sys.exit(main())
