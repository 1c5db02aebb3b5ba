import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from github import GithubException
from github.Repository import Repository

from dockerfile_image_update import constants, exectools
from dockerfile_image_update.branch import GitForkBranch, split_filenames
from dockerfile_image_update.content import ContentUpdater
from dockerfile_image_update.forking import ForkableRepoValidator, ForkOrchestrator, ForkRecord
from dockerfile_image_update.github_client import CandidateContent, GitHubClient
from dockerfile_image_update.logutil import EntityLoggingAdapter
from dockerfile_image_update.pullrequests import (PullRequestCoordinator, PullRequestInfo, PullRequestOutcome,
                                                  PullRequestResult)
from dockerfile_image_update.ratelimit import RateLimiter
from dockerfile_image_update.runtime import Runtime
from dockerfile_image_update.search import build_search_query, get_search_terms

# Errors that abort the processing of a single repository
REPOSITORY_ERRORS = (GithubException, exectools.RetryException, OSError)


@dataclass
class UpdateOptions:
    org: Optional[str] = None
    branch: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    commit_message: Optional[str] = None
    filenames: Optional[str] = None
    search_limit: int = constants.DEFAULT_SEARCH_LIMIT
    rate_limit: bool = False
    rate_limit_spec: Optional[str] = None
    skip_pr_creation: bool = False
    check_for_renovate: bool = False
    ignore_image_string: Optional[str] = None
    concurrency: Optional[int] = None
    timeout: Optional[float] = None

    @classmethod
    def from_cli(cls, runtime: Runtime, **kwargs) -> "UpdateOptions":
        """ Command line values win; `[defaults]` in the config file fill the gaps """
        names = {f.name for f in fields(cls)}
        options = cls(**{k: v for k, v in kwargs.items() if k in names and v is not None})
        for key in ("org", "filenames", "concurrency", "search_limit"):
            if kwargs.get(key) is None and runtime.defaults.get(key) is not None:
                setattr(options, key, runtime.defaults[key])
        return options

    @property
    def filenames_to_search(self) -> List[str]:
        return split_filenames(self.filenames or constants.DEFAULT_FILENAMES_TO_SEARCH)

    @property
    def worker_count(self) -> int:
        return self.concurrency or constants.DEFAULT_CONCURRENCY


@dataclass(frozen=True)
class ProcessingError:
    image: str
    tag: str
    repository: Optional[str]
    reason: str


class ProcessingFailure(Exception):
    def __init__(self, errors: List[ProcessingError]):
        super().__init__(f"There were {len(errors)} errors with changing Dockerfiles.")
        self.errors = errors


async def run_with_timeout(coro, timeout: Optional[float]):
    """ Cancels the run, including any retry or rate limit wait, once `timeout` seconds have passed """
    if not timeout:
        return await coro
    return await asyncio.wait_for(coro, timeout)


class UpdateImagePipeline:
    """
    Updates an image to a tag across repositories: search, fork, rewrite and open pull requests.

    A pipeline may be used for several image/tag pairs; they then share the pull request rate limiter.
    Errors are collected per repository and reported by report() once everything has been attempted.
    """
    def __init__(self, runtime: Runtime, gh: GitHubClient, options: UpdateOptions,
                 rate_limiter: Optional[RateLimiter] = None):
        self.runtime = runtime
        self.gh = gh
        self.options = options
        self._logger = runtime.logger
        if rate_limiter is None:
            rate_limiter = RateLimiter.from_options(options.rate_limit or bool(options.rate_limit_spec),
                                                    options.rate_limit_spec)
        self.rate_limiter = rate_limiter
        self.validator = ForkableRepoValidator(gh, ignore_marker=options.ignore_image_string)
        self.orchestrator = ForkOrchestrator(gh, self.validator, dry_run=runtime.dry_run,
                                             concurrency=options.worker_count)
        self.content_updater = ContentUpdater(gh, extra_commit_message=options.commit_message,
                                              ignore_marker=options.ignore_image_string,
                                              filenames=options.filenames_to_search)
        self.coordinator = PullRequestCoordinator(gh, rate_limiter=rate_limiter)

        # (image, tag, repository) -> outcome
        self.outcomes: Dict[Tuple[str, str, str], PullRequestOutcome] = {}
        self.skipped: Set[str] = set()
        self.errors: List[ProcessingError] = []

    def fork_branch(self, image: str, tag: str) -> GitForkBranch:
        return GitForkBranch(image, tag, self.options.branch, self.options.filenames_to_search)

    async def search(self, image: str) -> List[CandidateContent]:
        """ Searches files referencing the image, once per searched file name """
        hits = []
        for filename in self.options.filenames_to_search:
            terms = get_search_terms(image, filename)
            if not terms:
                continue
            query = build_search_query(terms, filename, self.options.org)
            results = await self.gh.search_code(query, limit=self.options.search_limit)
            hits.extend(results.items)
        return hits

    async def update_image(self, image: str, tag: str):
        """ Updates every repository that references `image` to `tag` """
        fork_branch = self.fork_branch(image, tag)
        hits = await self.search(image)
        if not hits:
            self._logger.info("No files found referencing %s", image)
            return
        records = await self.orchestrator.fork_repositories(hits, fork_branch)
        for repository, reason in self.orchestrator.failures.items():
            self._record_error(image, tag, repository, reason)
        await exectools.run_limited_unordered(
            self._process_record, [(record, image, tag, fork_branch) for record in records.values()],
            self.options.worker_count)

    async def update_child(self, repo_name: str, image: str, tag: str):
        """ Updates a single repository, walking its whole tree """
        logger = EntityLoggingAdapter(self._logger, {"entity": repo_name})
        try:
            parent = await self.gh.get_repo(repo_name)
            if self.runtime.dry_run:
                logger.warning("[DRY RUN] Would have forked %s and updated %s to %s", repo_name, image, tag)
                return
            fork = await self.gh.get_or_create_fork(parent)
            if fork is None:
                self._record_error(image, tag, repo_name, f"could not fork {repo_name}")
                return
            outcome = await self.update_repository(parent, fork, self.fork_branch(image, tag), logger=logger)
        except REPOSITORY_ERRORS as e:
            logger.error("Error changing Dockerfiles: %s", e)
            self._record_error(image, tag, repo_name, str(e))
            return
        except Exception as e:
            logger.exception("Unexpected error changing Dockerfiles")
            self._record_error(image, tag, repo_name, f"{type(e).__name__}: {e}")
            return
        self._record_outcome(image, tag, repo_name, outcome)

    async def _process_record(self, record: ForkRecord, image: str, tag: str, fork_branch: GitForkBranch):
        logger = EntityLoggingAdapter(self._logger, {"entity": record.parent_name})
        try:
            outcome = await self.update_repository(record.parent, record.fork, fork_branch,
                                                   paths=record.content_paths, logger=logger)
        except REPOSITORY_ERRORS as e:
            logger.error("Error changing Dockerfiles: %s", e)
            self._record_error(image, tag, record.parent_name, str(e))
            return
        except Exception as e:
            logger.exception("Unexpected error changing Dockerfiles")
            self._record_error(image, tag, record.parent_name, f"{type(e).__name__}: {e}")
            return
        self._record_outcome(image, tag, record.parent_name, outcome)

    async def update_repository(self, parent: Repository, fork: Repository, fork_branch: GitForkBranch,
                                paths: Optional[Iterable[str]] = None,
                                logger: Optional[logging.LoggerAdapter] = None) -> Optional[PullRequestOutcome]:
        """
        Rewrites the image references of one repository on its fork and makes sure a pull request carries them.

        If an open pull request from one of our branches already exists for the image, possibly for an older tag,
        its branch receives the new commits. Otherwise the deterministic branch is (re)created from the parent's
        default branch.
        :param paths: Files to rewrite; the whole tree is walked if None
        :return: The pull request outcome, or None if the repository was skipped
        """
        logger = logger or EntityLoggingAdapter(self._logger, {"entity": parent.full_name})
        image, tag = fork_branch.image_name, fork_branch.image_tag or None

        if self.options.check_for_renovate and await self.gh.has_renovate_config(parent):
            logger.info("Found file with name %s. Skip sending pull requests.", constants.RENOVATE_CONFIG_FILENAME)
            self.skipped.add(parent.full_name)
            return None

        existing = await self.gh.find_pull_request(parent, fork_branch)
        branch_name = existing.head.ref if existing is not None else fork_branch.branch_name
        await self.gh.ensure_branch(parent, fork, branch_name, reset=existing is None)
        await self.gh.wait_for_branch(fork, branch_name)

        if paths is None:
            modified = await self.content_updater.update_tree(fork, branch_name, image, tag)
        else:
            modified = await self.content_updater.update_paths(fork, branch_name, paths, image, tag)
        logger.info("Modified %s file(s) on %s: %s", len(modified), branch_name, modified)

        if existing is not None:
            logger.info("Pull request %s is already open for %s", existing.html_url, branch_name)
            return PullRequestOutcome.reused(url=existing.html_url)
        info = PullRequestInfo(self.options.title, image, tag, self.options.body)
        return await self.coordinator.create_pull_request(parent, fork, fork_branch, info, branch_name)

    def _record_outcome(self, image: str, tag: str, repository: str, outcome: Optional[PullRequestOutcome]):
        if outcome is None:
            return
        self.outcomes[(image, tag, repository)] = outcome
        if outcome.result == PullRequestResult.FAILED:
            self._record_error(image, tag, repository, outcome.reason or "pull request creation failed")

    def _record_error(self, image: str, tag: str, repository: Optional[str], reason: str):
        self.errors.append(ProcessingError(image=image, tag=tag, repository=repository, reason=reason))

    def summary(self) -> Dict[str, Any]:
        counts = {result.value: 0 for result in PullRequestResult}
        for outcome in self.outcomes.values():
            counts[outcome.result.value] += 1
        return {
            "updated": sorted(f"{repository} ({image}:{tag})"
                              for (image, tag, repository), outcome in self.outcomes.items() if outcome.ok),
            "failed": len(self.errors),
            "skipped": sorted(self.skipped),
            "results": counts,
        }

    def report(self):
        """
        Logs a summary of the run.
        :raises ProcessingFailure: if any repository could not be processed
        """
        summary = self.summary()
        self._logger.warning("%s repositories updated, %s failed. Pull requests: %s",
                             len(summary["updated"]), summary["failed"], summary["results"])
        if summary["skipped"]:
            self._logger.warning("List of repos skipped: %s", summary["skipped"])
        for error in self.errors:
            self._logger.error("Failed to update %s to %s:%s: %s",
                               error.repository or "<all repositories>", error.image, error.tag, error.reason)
        if self.errors:
            raise ProcessingFailure(self.errors)
