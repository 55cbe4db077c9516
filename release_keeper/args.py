import argparse

from release_keeper.__version__ import __version__


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="release-keeper",
        description="Keep a locally built service up to date with its upstream source",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("--debug", action="store_true", help="Show debug output")
    parser.add_argument("--config", help="Path to release-keeper.json")
    parser.add_argument("--no-restart", action="store_true",
                        help="Do not relaunch after building; swap executables on next exit instead")

    subparsers = parser.add_subparsers(dest="command", required=True)

    version = subparsers.add_parser("version", help="Show the running build's commit")
    version.add_argument("--no-clone", action="store_true", help="Never provision the source tree")

    subparsers.add_parser("check", help="Check upstream for new commits")

    commits = subparsers.add_parser("commits", help="List recent commits of the source tree")
    commits.add_argument("-n", "--limit", type=int, default=10, help="Number of commits (1-50)")

    subparsers.add_parser("update", help="Merge upstream, rebuild and restart")

    build = subparsers.add_parser("build", help="Rebuild from the current source tree and restart")
    build.add_argument("--tag", default="build", choices=["build", "update", "pr"],
                       help="Backup tag for the replaced executable")

    prs = subparsers.add_parser("prs", help="List upstream pull requests")
    prs.add_argument("--state", default="open", choices=["open", "closed", "all"], help="PR state")
    prs.add_argument("-n", "--limit", type=int, default=30, help="Number of PRs (1-100)")

    apply = subparsers.add_parser("apply", help="Cherry-pick upstream PRs in the given order")
    apply.add_argument("numbers", nargs="+", type=int, help="PR numbers")
    apply.add_argument("--build", action="store_true", help="Rebuild when anything was applied")

    revert = subparsers.add_parser("revert", help="Revert a previously applied PR")
    revert.add_argument("number", type=int, help="PR number")
    revert.add_argument("--build", action="store_true", help="Rebuild after reverting")

    backups = subparsers.add_parser("backups", help="List backed up executables")
    backups.add_argument("-n", "--limit", type=int, default=0, help="Number of backups (0 = all)")

    rollback = subparsers.add_parser("rollback", help="Restore a backed up executable and restart")
    rollback.add_argument("path", help="Backup file inside the backup directory")

    return parser.parse_args(argv)
