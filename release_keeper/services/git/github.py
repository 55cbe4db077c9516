"""GitHub API integration: upstream pull requests and their commits"""

from itertools import islice
from typing import TYPE_CHECKING, Dict, List, Optional, Union

from github import Auth, Github, GithubException

from release_keeper.constants import DEFAULT_PR_LIMIT, MAX_PR_LIMIT
from release_keeper.exceptions import GitHubAPIError, ValidationError
from release_keeper.logging_config import get_logger
from release_keeper.models.pull_request import PRCommit, PullRequest

if TYPE_CHECKING:
    from github.PullRequest import PullRequest as GithubPullRequest
    from github.Repository import Repository
    from release_keeper.config import Config

logger = get_logger(__name__)


class GitHubService:
    """Read-only access to the upstream repository's pull requests.

    The token is optional; without one the API is used anonymously (and
    rate-limited accordingly).
    """

    def __init__(self, config: Union["Config", dict], client: Optional[Github] = None):
        self.config = config
        self.github_token = config.get("github_token")
        self.timeout = config.get("api_timeout", 15)
        self._client = client
        self._repo: Optional["Repository"] = None

    @property
    def repo_slug(self) -> str:
        slug = self.config.get("upstream_slug", "")
        if not slug:
            raise GitHubAPIError("setup", f"upstream URL is not a GitHub repository: {self.config.get('upstream_url')}")
        return slug

    def _github(self) -> Github:
        if self._client is None:
            if self.github_token:
                self._client = Github(auth=Auth.Token(self.github_token), timeout=self.timeout,
                                      per_page=MAX_PR_LIMIT)
            else:
                logger.debug("[GitHub] No token configured, using anonymous access")
                self._client = Github(timeout=self.timeout, per_page=MAX_PR_LIMIT)
        return self._client

    def _get_repo(self) -> "Repository":
        if self._repo is None:
            try:
                self._repo = self._github().get_repo(self.repo_slug)
            except (GithubException, OSError) as e:
                raise GitHubAPIError("get repository", str(e)) from e
            logger.debug(f"[GitHub] Using repository {self.repo_slug}")
        return self._repo

    @staticmethod
    def _to_model(pr: "GithubPullRequest", commit_count: int = 0) -> PullRequest:
        return PullRequest(
            number=pr.number,
            title=pr.title,
            state=pr.state,
            created_at=pr.created_at,
            updated_at=pr.updated_at,
            author=pr.user.login if pr.user else "",
            head_sha=pr.head.sha if pr.head else "",
            commits=commit_count,
        )

    def get_upstream_prs(self, state: str = "open", limit: int = DEFAULT_PR_LIMIT,
                         applied: Optional[Dict[int, List[str]]] = None,
                         with_commit_counts: bool = False) -> List[PullRequest]:
        """List upstream pull requests, most recently updated first.

        Args:
            state: "open", "closed" or "all"; empty means "open"
            limit: Maximum number of PRs; out-of-range values fall back to the default
            applied: Ledger contents used to fill in ``applied``/``can_revert``
            with_commit_counts: Fetch each PR's commit count (one request per PR)

        Raises:
            GitHubAPIError: On API or network failures
        """
        state = state or "open"
        if limit <= 0 or limit > MAX_PR_LIMIT:
            limit = DEFAULT_PR_LIMIT

        repo = self._get_repo()
        try:
            pulls = repo.get_pulls(state=state, sort="updated", direction="desc")
            prs = []
            for pr in islice(pulls, limit):
                count = pr.commits if with_commit_counts else 0
                prs.append(self._to_model(pr, count))
        except (GithubException, OSError) as e:
            raise GitHubAPIError("list pull requests", str(e)) from e

        logger.debug(f"[GitHub] Fetched {len(prs)} {state} PR(s)")
        if applied is not None:
            self.annotate_applied(prs, applied)
        return prs

    def get_pr_commits(self, pr_number: int) -> List[PRCommit]:
        """Commits of a pull request, in the order they were made.

        Raises:
            ValidationError: If ``pr_number`` is not positive
            GitHubAPIError: On API or network failures
        """
        if pr_number <= 0:
            raise ValidationError(f"invalid PR number: {pr_number}")

        repo = self._get_repo()
        try:
            commits = [
                PRCommit(sha=commit.sha, message=commit.commit.message)
                for commit in repo.get_pull(pr_number).get_commits()
            ]
        except (GithubException, OSError) as e:
            raise GitHubAPIError(f"list commits of PR #{pr_number}", str(e)) from e

        logger.debug(f"[GitHub] PR #{pr_number} has {len(commits)} commit(s)")
        return commits

    @staticmethod
    def annotate_applied(prs: List[PullRequest], applied: Dict[int, List[str]]) -> List[PullRequest]:
        """Join ledger state into the PR list.

        A PR can be reverted only when the ledger knows which commits it produced.
        """
        for pr in prs:
            commits = applied.get(pr.number)
            pr.applied = commits is not None
            pr.can_revert = bool(commits)
        return prs
