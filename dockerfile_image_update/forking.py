import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set

from github import GithubException
from github.Repository import Repository

from dockerfile_image_update import constants, exectools
from dockerfile_image_update.branch import GitForkBranch
from dockerfile_image_update.github_client import CandidateContent, GitHubClient
from dockerfile_image_update.instructions import is_line_with_image_and_older_tag, line_kind_for_path

_LOGGER = logging.getLogger(__name__)

NO_REASON = "no reason. Repo can be forked."
REPO_IS_FORK = "it's a fork already. Sending a PR to a fork is unsupported at the moment."
REPO_IS_ARCHIVED = "it's archived."
REPO_IS_OWNED_BY_THIS_USER = "it is owned by this user."
COULD_NOT_CHECK_THIS_USER = \
    "we could not determine fork status because we don't know the identity of the authenticated user."
CONTENT_PATH_NOT_IN_DEFAULT_BRANCH_TEMPLATE = "didn't find content path {} in default branch"
COULD_NOT_FIND_IMAGE_TO_UPDATE_TEMPLATE = "didn't find the image '{}' which required an update in path {}"


@dataclass(frozen=True)
class ShouldForkResult:
    allowed: bool
    reason: str = NO_REASON

    @classmethod
    def should_fork(cls) -> "ShouldForkResult":
        return cls(True)

    @classmethod
    def should_not_fork(cls, reason: str) -> "ShouldForkResult":
        return cls(False, reason)

    def and_(self, other: "ShouldForkResult") -> "ShouldForkResult":
        """ Returns the first result that denies forking, or `other` if this one allows it """
        return other if self.allowed else self

    def __bool__(self):
        return self.allowed


class ForkableRepoValidator:
    def __init__(self, gh: GitHubClient, ignore_marker: Optional[str] = None, content_retry_attempts: int = 10):
        self.gh = gh
        self.ignore_marker = ignore_marker
        self.content_retry_attempts = content_retry_attempts

    async def should_fork(self, parent: Repository, search_path: Optional[str] = None,
                          fork_branch: Optional[GitForkBranch] = None) -> ShouldForkResult:
        """
        Decides whether `parent` may be forked for an update.
        Checks run in order and stop at the first denial. The content check only runs if a path and a branch
        (which carries the image and tag) are given.
        """
        result = self.parent_is_fork(parent).and_(self.parent_is_archived(parent))
        if not result:
            return result
        result = await self.this_user_is_not_owner(parent)
        if not result or search_path is None or fork_branch is None:
            return result
        return await self.content_has_changes_in_default_branch(parent, search_path, fork_branch)

    @staticmethod
    def parent_is_fork(parent: Repository) -> ShouldForkResult:
        return ShouldForkResult.should_not_fork(REPO_IS_FORK) if parent.fork else ShouldForkResult.should_fork()

    @staticmethod
    def parent_is_archived(parent: Repository) -> ShouldForkResult:
        return ShouldForkResult.should_not_fork(REPO_IS_ARCHIVED) if parent.archived else ShouldForkResult.should_fork()

    async def this_user_is_not_owner(self, parent: Repository) -> ShouldForkResult:
        try:
            if await self.gh.is_owner(parent):
                return ShouldForkResult.should_not_fork(REPO_IS_OWNED_BY_THIS_USER)
        except GithubException as e:
            _LOGGER.warning("Could not resolve the authenticated user: %s", e)
            return ShouldForkResult.should_not_fork(COULD_NOT_CHECK_THIS_USER)
        return ShouldForkResult.should_fork()

    async def content_has_changes_in_default_branch(self, parent: Repository, search_path: str,
                                                    fork_branch: GitForkBranch) -> ShouldForkResult:
        """ Search results may be stale: the file may be gone or already updated in the default branch """
        try:
            content = await self.gh.try_retrieving_content(parent, search_path, parent.default_branch,
                                                           attempts=self.content_retry_attempts)
        except GithubException as e:
            _LOGGER.warning("Couldn't get parent content to check for %s. Trying to proceed... %s",
                            parent.full_name, e)
            return ShouldForkResult.should_fork()
        if content is None:
            return ShouldForkResult.should_not_fork(CONTENT_PATH_NOT_IN_DEFAULT_BRANCH_TEMPLATE.format(search_path))
        if not self.has_changes(content.decoded_content, search_path, fork_branch):
            return ShouldForkResult.should_not_fork(
                COULD_NOT_FIND_IMAGE_TO_UPDATE_TEMPLATE.format(fork_branch.image_name, search_path))
        return ShouldForkResult.should_fork()

    def has_changes(self, data: bytes, path: str, fork_branch: GitForkBranch) -> bool:
        kind = line_kind_for_path(path)
        text = data.decode("utf-8", errors="replace")
        return any(is_line_with_image_and_older_tag(line, fork_branch.image_name, fork_branch.image_tag or None,
                                                    kind, self.ignore_marker)
                   for line in text.split("\n"))


@dataclass
class ForkRecord:
    """ A fork to update, and the paths in it that reference the image """
    parent: Repository
    fork: Repository
    content_paths: Set[str] = field(default_factory=set)

    @property
    def parent_name(self) -> str:
        return self.parent.full_name


class ForkCache:
    """
    Forks obtained during a single run, keyed by parent full name.

    get_or_create() holds a lock per parent while it checks for a record and forks, so concurrent hits for the same
    parent fork it at most once. A parent whose fork couldn't be obtained is remembered and dropped for the
    rest of the run.
    """
    def __init__(self):
        self._records: Dict[str, ForkRecord] = {}
        self._failed: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_or_create(self, parent: Repository, path: str, fork_factory) -> Optional[ForkRecord]:
        name = parent.full_name
        async with self._locks[name]:
            if name in self._failed:
                return None
            record = self._records.get(name)
            if record is None:
                _LOGGER.info("Getting or creating fork: %s", name)
                fork = await fork_factory(parent)
                if fork is None:
                    _LOGGER.info("Could not fork %s", name)
                    self._failed.add(name)
                    return None
                record = ForkRecord(parent=parent, fork=fork)
                self._records[name] = record
            record.content_paths.add(path)
            return record

    def records(self) -> Dict[str, ForkRecord]:
        return dict(self._records)

    def __len__(self):
        return len(self._records)


class ForkOrchestrator:
    """ Turns search hits into at most one fork per parent repository """
    def __init__(self, gh: GitHubClient, validator: ForkableRepoValidator, dry_run: bool = False,
                 concurrency: int = constants.DEFAULT_CONCURRENCY):
        self.gh = gh
        self.validator = validator
        self.dry_run = dry_run
        self.concurrency = concurrency
        # parent full name -> reason, for hits that failed unexpectedly in the last fork_repositories() call
        self.failures: Dict[str, str] = {}

    async def _process_hit(self, cache: ForkCache, hit: CandidateContent, fork_branch: Optional[GitForkBranch]):
        try:
            await self._fork_hit(cache, hit, fork_branch)
        except Exception as e:
            _LOGGER.exception("Unexpected error while forking %s for %s", hit.parent_name, hit.path)
            self.failures.setdefault(hit.parent_name, f"{type(e).__name__}: {e}")

    async def _fork_hit(self, cache: ForkCache, hit: CandidateContent, fork_branch: Optional[GitForkBranch]):
        try:
            # search results lack details such as the archived flag
            parent = await self.gh.get_repo(hit.parent_name)
        except GithubException as e:
            _LOGGER.warning("Could not refresh details of %s: %s", hit.parent_name, e)
            return
        result = await self.validator.should_fork(parent, hit.path, fork_branch)
        if not result:
            _LOGGER.warning("Skipping %s because %s", hit.parent_name, result.reason)
            return
        if self.dry_run:
            _LOGGER.warning("[DRY RUN] Would have forked %s to update %s", hit.parent_name, hit.path)
            return
        await cache.get_or_create(parent, hit.path, self.gh.get_or_create_fork)

    async def fork_repositories(self, hits: Iterable[CandidateContent],
                                fork_branch: Optional[GitForkBranch] = None) -> Dict[str, ForkRecord]:
        """
        Forks every forkable repository found by search.
        Duplicate hits, and several files in the same repository, share a single fork.
        A hit whose processing failed unexpectedly is dropped and its parent listed in `failures`.
        :return: Fork records keyed by parent full name
        """
        _LOGGER.info("Forking repositories...")
        cache = ForkCache()
        self.failures = {}
        await exectools.run_limited_unordered(
            self._process_hit, [(cache, hit, fork_branch) for hit in hits], self.concurrency)
        records = cache.records()
        _LOGGER.info("Path to Dockerfiles in repos: %s",
                     {name: sorted(record.content_paths) for name, record in records.items()})
        return records
