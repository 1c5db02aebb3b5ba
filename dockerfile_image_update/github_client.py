import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from github import Github, GithubException, UnknownObjectException
from github.ContentFile import ContentFile
from github.PullRequest import PullRequest
from github.Repository import Repository

from dockerfile_image_update import constants, exectools
from dockerfile_image_update.branch import GitForkBranch

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateContent:
    """ A file found by code search """
    parent_name: str
    path: str
    source_name: str


@dataclass
class SearchResults:
    total_count: int
    items: List[CandidateContent] = field(default_factory=list)


class GitHubClient:
    """
    Async facade over PyGithub.

    PyGithub is synchronous; every call that may reach the API runs in a worker thread so that repositories can be
    processed concurrently. Retries for GitHub's replication lag live here too, expressed with
    exectools.retry_with_fixed_delay.
    """
    def __init__(self, github: Github, retry_delay: float = 1):
        self.github = github
        self.retry_delay = retry_delay
        self._login: Optional[str] = None
        self._login_lock = asyncio.Lock()

    @classmethod
    def from_token(cls, token: Optional[str], api_url: Optional[str] = None, **kwargs) -> "GitHubClient":
        github_kwargs = {}
        if api_url:
            github_kwargs["base_url"] = api_url
        return cls(Github(token, **github_kwargs), **kwargs)

    async def get_login(self) -> str:
        """
        Returns the login of the authenticated user.
        :raises GithubException: if the identity can't be resolved, e.g. because of bad credentials
        """
        async with self._login_lock:
            if self._login is None:
                self._login = await asyncio.to_thread(lambda: self.github.get_user().login)
        return self._login

    async def get_repo(self, full_name: str) -> Repository:
        return await asyncio.to_thread(self.github.get_repo, full_name)

    async def is_owner(self, repo: Repository) -> bool:
        return repo.owner.login == await self.get_login()

    async def create_public_repo(self, name: str) -> Repository:
        _LOGGER.info("Creating public repository %s", name)
        return await asyncio.to_thread(lambda: self.github.get_user().create_repo(name, private=False))

    # Search

    def _search_code(self, query: str, limit: int) -> SearchResults:
        paginated = self.github.search_code(query)
        results = SearchResults(total_count=paginated.totalCount)
        for item in paginated:
            if len(results.items) >= limit:
                break
            name = item.repository.full_name
            results.items.append(CandidateContent(parent_name=name, path=item.path, source_name=name))
        return results

    async def search_code(self, query: str, limit: int = constants.DEFAULT_SEARCH_LIMIT,
                          attempts: int = 5) -> SearchResults:
        """
        Searches code, retrying while GitHub reports no results.
        Freshly pushed files take a while to be indexed, so an empty result is retried before being trusted.
        """
        _LOGGER.info("Searching for %s", query)
        try:
            results = await exectools.retry_with_fixed_delay(
                asyncio.to_thread, self._search_code, query, limit,
                attempts=attempts, delay=self.retry_delay,
                check_f=lambda r: r.total_count > 0,
                description=f"search for {query}",
            )
        except exectools.RetryException:
            _LOGGER.info("Could not find any content for %s", query)
            return SearchResults(total_count=0)
        _LOGGER.info("Number of files found for %s: %s", query, results.total_count)
        return results

    # Forks

    def _get_or_create_fork(self, parent: Repository, login: str) -> Repository:
        for fork in parent.get_forks():
            if fork.owner.login == login:
                _LOGGER.info("Reusing fork %s of %s", fork.full_name, parent.full_name)
                return fork
        _LOGGER.info("Forking %s", parent.full_name)
        return parent.create_fork()

    async def get_or_create_fork(self, parent: Repository) -> Optional[Repository]:
        """ Returns a fork of `parent` owned by the current user, or None if it can't be obtained """
        try:
            login = await self.get_login()
            return await asyncio.to_thread(self._get_or_create_fork, parent, login)
        except GithubException as e:
            _LOGGER.warning("Could not fork %s: %s", parent.full_name, e)
            return None

    async def safe_delete_repo(self, repo: Repository) -> bool:
        """ Deletes a fork, unless it still has open pull requests """
        open_pulls = await asyncio.to_thread(lambda: repo.get_pulls(state="open").totalCount)
        if open_pulls:
            _LOGGER.info("Not deleting %s because it has %s open pull request(s)", repo.full_name, open_pulls)
            return False
        _LOGGER.info("Deleting %s", repo.full_name)
        await asyncio.to_thread(repo.delete)
        return True

    # Branches

    def _ensure_branch(self, parent: Repository, fork: Repository, branch_name: str, reset: bool) -> str:
        sha = parent.get_branch(parent.default_branch).commit.sha
        try:
            ref = fork.get_git_ref(f"heads/{branch_name}")
        except UnknownObjectException:
            ref = None
        if ref is None:
            _LOGGER.info("Creating branch %s in %s at %s", branch_name, fork.full_name, sha)
            fork.create_git_ref(ref=f"refs/heads/{branch_name}", sha=sha)
        elif reset and ref.object.sha != sha:
            _LOGGER.info("Resetting branch %s in %s to %s", branch_name, fork.full_name, sha)
            ref.edit(sha, force=True)
        return sha

    async def ensure_branch(self, parent: Repository, fork: Repository, branch_name: str, reset: bool = True,
                            attempts: int = 10) -> str:
        """
        Makes `branch_name` exist in the fork, pointing at the head of the parent's default branch.
        An existing branch is reset to that commit when `reset` is set; otherwise it's kept as is.
        A fresh fork may not accept refs yet, so failures are retried.
        :return: The sha of the parent's default branch
        """
        return await exectools.retry_with_fixed_delay(
            asyncio.to_thread, self._ensure_branch, parent, fork, branch_name, reset,
            attempts=attempts, delay=self.retry_delay, retry_on=GithubException,
            description=f"creating branch {branch_name} in {fork.full_name}",
        )

    async def wait_for_branch(self, repo: Repository, branch_name: str, attempts: int = 10):
        """ Waits until a new branch is visible to reads """
        return await exectools.retry_with_fixed_delay(
            asyncio.to_thread, repo.get_branch, branch_name,
            attempts=attempts, delay=self.retry_delay, retry_on=UnknownObjectException,
            description=f"retrieving branch {branch_name} of {repo.full_name}",
        )

    # Pull requests

    def _find_pull_request(self, parent: Repository, login: str, fork_branch: GitForkBranch) -> Optional[PullRequest]:
        for pull in parent.get_pulls(state="open"):
            head_owner = pull.head.repo.owner.login if pull.head.repo else pull.user.login
            if head_owner == login and fork_branch.is_same_branch_or_has_image_name_prefix(pull.head.ref):
                return pull
        return None

    async def find_pull_request(self, parent: Repository, fork_branch: GitForkBranch) -> Optional[PullRequest]:
        """ Returns an open pull request from one of our branches for the same image, if there is one """
        login = await self.get_login()
        return await asyncio.to_thread(self._find_pull_request, parent, login, fork_branch)

    async def create_pull(self, parent: Repository, title: str, body: str, base: str, head: str) -> PullRequest:
        return await asyncio.to_thread(parent.create_pull, title=title, body=body, base=base, head=head)

    # Content

    async def get_contents(self, repo: Repository, path: str, ref: str):
        return await asyncio.to_thread(repo.get_contents, path, ref=ref)

    async def update_file(self, repo: Repository, path: str, message: str, content: str, sha: str, branch: str):
        return await asyncio.to_thread(repo.update_file, path, message, content, sha, branch=branch)

    async def try_retrieving_content(self, repo: Repository, path: str, ref: str,
                                     attempts: int = 10) -> Optional[ContentFile]:
        """ Returns the content at `path`, waiting for it to be replicated; None if it never shows up """
        try:
            return await exectools.retry_with_fixed_delay(
                self.get_contents, repo, path, ref,
                attempts=attempts, delay=self.retry_delay, retry_on=UnknownObjectException,
                description=f"retrieving {path} from {repo.full_name}@{ref}",
            )
        except UnknownObjectException:
            _LOGGER.warning("Content %s in %s@%s never became available", path, repo.full_name, ref)
            return None

    async def has_renovate_config(self, repo: Repository) -> bool:
        """ Tells whether the repository is kept up to date by Renovate """
        try:
            content = await self.get_contents(repo, constants.RENOVATE_CONFIG_FILENAME, repo.default_branch)
        except UnknownObjectException:
            return False
        try:
            config = json.loads(content.decoded_content)
        except ValueError:
            # Renovate accepts JSON5; an unparsable file still means Renovate is set up
            return True
        if not isinstance(config, dict):
            return True
        return str(config.get("enabled", True)).lower() != "false"
