import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

from github import GithubException
from github.Repository import Repository

from dockerfile_image_update import constants, exectools
from dockerfile_image_update.branch import GitForkBranch
from dockerfile_image_update.github_client import GitHubClient
from dockerfile_image_update.ratelimit import RateLimiter

_LOGGER = logging.getLogger(__name__)

BODY_TEMPLATE = ("`{image}` changed recently. This pull request ensures you're using the latest version of the image "
                 "and changes `{image}` to the latest tag: `{tag}`\n"
                 "\n"
                 "New base image: `{image}:{tag}`")


class PullRequestStatus(Enum):
    """ How a pull request creation attempt went """
    SUCCESS = "success"
    ALREADY_EXISTS = "already_exists"
    NO_COMMITS = "no_commits"
    TRANSIENT = "transient"
    FATAL = "fatal"


class PullRequestResult(Enum):
    CREATED = "created"
    REUSED = "reused"
    SKIPPED_NO_COMMITS = "skipped_no_commits"
    FAILED = "failed"


@dataclass(frozen=True)
class PullRequestOutcome:
    result: PullRequestResult
    reason: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def created(cls, url: Optional[str] = None):
        return cls(PullRequestResult.CREATED, url=url)

    @classmethod
    def reused(cls, url: Optional[str] = None, reason: Optional[str] = None):
        return cls(PullRequestResult.REUSED, reason=reason, url=url)

    @classmethod
    def skipped_no_commits(cls, reason: Optional[str] = None):
        return cls(PullRequestResult.SKIPPED_NO_COMMITS, reason=reason)

    @classmethod
    def failed(cls, reason: str):
        return cls(PullRequestResult.FAILED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.result != PullRequestResult.FAILED


def error_messages(data: Any) -> List[str]:
    """ Extracts the human readable messages of a GitHub error payload """
    if isinstance(data, dict):
        messages = []
        for error in data.get("errors") or []:
            if isinstance(error, dict):
                if error.get("message"):
                    messages.append(str(error["message"]))
            elif error:
                messages.append(str(error))
        if data.get("message"):
            messages.append(str(data["message"]))
        return messages
    if data:
        return [str(data)]
    return []


def classify_pull_request_error(status: Optional[int], data: Any = None) -> PullRequestStatus:
    """
    Classifies the outcome of a pull request creation call from its HTTP status and error payload.

    GitHub reports both "already exists" and "no commits" as 422 Validation Failed, with the distinction only
    available as prose in `errors[].message`.
    """
    if status is None:
        return PullRequestStatus.SUCCESS
    messages = [message.strip().lower() for message in error_messages(data)]
    if any("a pull request already exists" in message for message in messages):
        return PullRequestStatus.ALREADY_EXISTS
    if any(message.startswith("no commits between") for message in messages):
        return PullRequestStatus.NO_COMMITS
    if any("rate limit" in message for message in messages):
        return PullRequestStatus.TRANSIENT
    if status in (401, 403, 404):
        return PullRequestStatus.FATAL
    if status == 422 or status >= 500:
        return PullRequestStatus.TRANSIENT
    return PullRequestStatus.FATAL


class PullRequestInfo:
    def __init__(self, title: Optional[str], image: Optional[str], tag: Optional[str], body: Optional[str] = None):
        self.title = title if title and title.strip() else constants.DEFAULT_PULL_REQUEST_TITLE
        self.image = image
        self.tag = tag
        self._body = body

    @property
    def body(self) -> str:
        if self._body and self._body.strip():
            return self._body
        return BODY_TEMPLATE.format(image=self.image, tag=self.tag)


@dataclass(frozen=True)
class _Attempt:
    status: PullRequestStatus
    message: str = ""
    url: Optional[str] = None


class PullRequestCoordinator:
    """
    Opens at most one pull request per parent repository, from `<fork owner>:<branch>` to the parent's default branch.

    Every creation call first takes a token from the rate limiter, if there is one. Transient failures are retried
    `max_attempts` times `retry_delay` seconds apart before the repository is reported as failed.
    """
    def __init__(self, gh: GitHubClient, rate_limiter: Optional[RateLimiter] = None,
                 max_attempts: int = 5, retry_delay: float = 3):
        self.gh = gh
        self.rate_limiter = rate_limiter
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    async def _attempt(self, parent: Repository, head: str, info: PullRequestInfo) -> _Attempt:
        if self.rate_limiter:
            await self.rate_limiter.consume()
        _LOGGER.info("Creating pull request on %s from %s...", parent.full_name, head)
        try:
            pull = await self.gh.create_pull(parent, title=info.title, body=info.body,
                                             base=parent.default_branch, head=head)
        except GithubException as e:
            status = classify_pull_request_error(e.status, e.data)
            message = "; ".join(error_messages(e.data)) or str(e)
            _LOGGER.info("Pull request creation on %s returned %s (%s): %s", parent.full_name, e.status,
                         status.value, message)
            return _Attempt(status, message)
        _LOGGER.info("A pull request has been created at %s", pull.html_url)
        return _Attempt(PullRequestStatus.SUCCESS, url=pull.html_url)

    async def create_pull_request(self, parent: Repository, fork: Repository, fork_branch: GitForkBranch,
                                  info: PullRequestInfo, branch_name: Optional[str] = None) -> PullRequestOutcome:
        branch_name = branch_name or fork_branch.branch_name
        existing = await self.gh.find_pull_request(parent, fork_branch)
        if existing is not None:
            _LOGGER.info("Pull request %s already tracks %s; new commits were pushed to it",
                         existing.html_url, existing.head.ref)
            return PullRequestOutcome.reused(url=existing.html_url)

        head = f"{fork.owner.login}:{branch_name}"
        try:
            attempt = await exectools.retry_with_fixed_delay(
                self._attempt, parent, head, info,
                attempts=self.max_attempts, delay=self.retry_delay,
                check_f=lambda a: a.status != PullRequestStatus.TRANSIENT,
                description=f"pull request creation on {parent.full_name}",
            )
        except exectools.RetryException:
            return PullRequestOutcome.failed(
                f"pull request creation on {parent.full_name} kept failing after {self.max_attempts} attempts")

        if attempt.status == PullRequestStatus.SUCCESS:
            return PullRequestOutcome.created(attempt.url)
        if attempt.status == PullRequestStatus.ALREADY_EXISTS:
            _LOGGER.info("NOTE: %s New commits may have been added to the pull request.", attempt.message)
            return PullRequestOutcome.reused(reason=attempt.message)
        if attempt.status == PullRequestStatus.NO_COMMITS:
            _LOGGER.warning("NOTE: %s Pull request was not created.", attempt.message)
            try:
                await self.gh.safe_delete_repo(fork)
            except GithubException as e:
                _LOGGER.warning("Could not delete fork %s: %s", fork.full_name, e)
            return PullRequestOutcome.skipped_no_commits(attempt.message)
        return PullRequestOutcome.failed(attempt.message)
