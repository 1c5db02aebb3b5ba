import logging
from typing import Iterable, List, Optional, Tuple

from github import UnknownObjectException
from github.ContentFile import ContentFile
from github.Repository import Repository

from dockerfile_image_update import exectools
from dockerfile_image_update.branch import split_filenames
from dockerfile_image_update.github_client import GitHubClient
from dockerfile_image_update.instructions import line_kind_for_path, rewrite_line

_LOGGER = logging.getLogger(__name__)


def commit_message_for(path: str, extra_message: Optional[str] = None) -> str:
    message = f"Fix Docker base image in /{path}."
    if extra_message:
        message += f"\n\n{extra_message}"
    return message


class ContentUpdater:
    """
    Rewrites image references in the files of a fork branch, one commit per modified file.

    :param gh: GitHub client
    :param extra_commit_message: Text appended to every commit message
    :param ignore_marker: Lines whose comment contains this marker are left alone (as are `no-dfiu` lines)
    :param filenames: Only files whose name contains one of these (case-insensitively) are rewritten when walking
                      a tree. Empty means every file.
    """
    def __init__(self, gh: GitHubClient, extra_commit_message: Optional[str] = None,
                 ignore_marker: Optional[str] = None, filenames=None,
                 listing_attempts: int = 5, content_attempts: int = 10):
        self.gh = gh
        self.extra_commit_message = extra_commit_message
        self.ignore_marker = ignore_marker
        self.filenames = [name.lower() for name in split_filenames(filenames)]
        self.listing_attempts = listing_attempts
        self.content_attempts = content_attempts

    def in_scope(self, path: str) -> bool:
        if not self.filenames:
            return True
        name = path.rsplit("/", 1)[-1].lower()
        return any(pattern in name for pattern in self.filenames)

    def rewrite(self, text: str, path: str, image: str, tag: Optional[str]) -> Tuple[str, bool]:
        """ Rewrites every line of a file. Line endings, including a missing final newline, are kept """
        kind = line_kind_for_path(path)
        modified = False
        lines = []
        for line in text.split("\n"):
            new_line, changed = rewrite_line(line, image, tag, kind, self.ignore_marker)
            modified = modified or changed
            lines.append(new_line)
        return "\n".join(lines), modified

    async def update_content(self, repo: Repository, content: ContentFile, branch: str,
                             image: str, tag: Optional[str]) -> bool:
        """ Rewrites a single file and commits it if anything changed """
        try:
            text = content.decoded_content.decode("utf-8")
        except UnicodeDecodeError:
            _LOGGER.info("Skipping binary file %s in %s", content.path, repo.full_name)
            return False
        new_text, modified = self.rewrite(text, content.path, image, tag)
        _LOGGER.debug("content: %s", content.path)
        if not modified:
            return False
        _LOGGER.info("modified: %s in %s@%s", content.path, repo.full_name, branch)
        await self.gh.update_file(repo, content.path, commit_message_for(content.path, self.extra_commit_message),
                                  new_text, content.sha, branch)
        return True

    async def _list_directory(self, repo: Repository, path: str, branch: str) -> List[ContentFile]:
        listing = await self.gh.get_contents(repo, path, branch)
        if not isinstance(listing, list):
            listing = [listing]
        return listing

    async def _update_recursive(self, repo: Repository, content: ContentFile, branch: str,
                                image: str, tag: Optional[str], modified_paths: List[str]):
        if content.type == "dir":
            for child in await self._list_directory(repo, content.path, branch):
                await self._update_recursive(repo, child, branch, image, tag, modified_paths)
        elif content.type == "file" and content.download_url:
            if not self.in_scope(content.path):
                return
            # listings don't carry file content
            full = await self.gh.get_contents(repo, content.path, branch)
            if await self.update_content(repo, full, branch, image, tag):
                modified_paths.append(content.path)
        else:
            _LOGGER.debug("Skipping %s (%s) in %s", content.path, content.type, repo.full_name)

    async def update_tree(self, repo: Repository, branch: str, image: str, tag: Optional[str]) -> List[str]:
        """
        Walks the whole branch and rewrites every in-scope file. Submodules are skipped.
        A fresh fork may report no content for a while, so the root listing is retried.
        :return: Paths that were modified
        """
        tree = await exectools.retry_with_fixed_delay(
            self._list_directory, repo, "", branch,
            attempts=self.listing_attempts, delay=self.gh.retry_delay,
            retry_on=UnknownObjectException, check_f=bool,
            description=f"listing {repo.full_name}@{branch}",
        )
        modified_paths: List[str] = []
        for content in tree:
            await self._update_recursive(repo, content, branch, image, tag, modified_paths)
        return modified_paths

    async def update_paths(self, repo: Repository, branch: str, paths: Iterable[str],
                           image: str, tag: Optional[str]) -> List[str]:
        """
        Rewrites known files, such as the ones found by code search.
        Files that never become visible in the fork are logged and skipped.
        :return: Paths that were modified
        """
        modified_paths = []
        for path in sorted(set(paths)):
            content = await self.gh.try_retrieving_content(repo, path, branch, attempts=self.content_attempts)
            if content is None:
                _LOGGER.warning("Couldn't retrieve %s from %s@%s; skipping it", path, repo.full_name, branch)
                continue
            if await self.update_content(repo, content, branch, image, tag):
                modified_paths.append(path)
        return modified_paths
