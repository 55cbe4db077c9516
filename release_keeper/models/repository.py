"""Repository context model."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RepositoryContext:
    """Directories an operation works against.

    Resolved once per operation and never cached, since the install
    directory moves when the running executable is swapped.
    """

    repo_dir: str
    install_dir: str
    work_dir: str
