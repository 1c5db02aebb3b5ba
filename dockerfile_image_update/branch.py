"""
Deterministic branch names for image updates.

Image names become branch names by replacing `:` with `-` and lowercasing; the tag is appended after a dash.
See https://docs.docker.com/engine/reference/commandline/tag/#extended-description and
https://git-scm.com/docs/git-check-ref-format for the naming rules on both sides.
"""
from typing import Iterable, Optional, Union

from dockerfile_image_update import constants

_KNOWN_SUFFIXES = (constants.DOCKERFILE_BRANCH_SUFFIX, constants.DOCKER_COMPOSE_BRANCH_SUFFIX)


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def split_filenames(filenames: Union[None, str, Iterable[str]]):
    if filenames is None:
        return []
    if isinstance(filenames, str):
        filenames = filenames.split(",")
    return [name.strip() for name in filenames if name and name.strip()]


def branch_suffix(filenames_to_search: Union[None, str, Iterable[str]]) -> str:
    """
    Returns the suffix that keeps Dockerfile-only and compose-only runs on separate branches.
    Runs that search both kinds of files, or that don't say, get no suffix.
    """
    names = [name.lower() for name in split_filenames(filenames_to_search)]
    has_dockerfile = any(constants.DOCKERFILE in name for name in names)
    has_compose = any(constants.DOCKER_COMPOSE in name for name in names)
    if has_dockerfile and not has_compose:
        return constants.DOCKERFILE_BRANCH_SUFFIX
    if has_compose and not has_dockerfile:
        return constants.DOCKER_COMPOSE_BRANCH_SUFFIX
    return ""


class GitForkBranch:
    def __init__(self, image_name: Optional[str], image_tag: Optional[str], specified_branch: Optional[str] = None,
                 filenames_to_search: Union[None, str, Iterable[str]] = None):
        self.image_tag = "" if _blank(image_tag) else image_tag.strip()
        self.image_name = "" if _blank(image_name) else image_name.strip()
        if _blank(specified_branch):
            if not self.image_name:
                raise ValueError("You must specify an imageName if not specifying a branch")
            self.branch_prefix = self.image_name.replace(":", "-").lower()
            self.uses_explicit_override = False
            self.suffix = branch_suffix(filenames_to_search)
        else:
            self.branch_prefix = specified_branch
            self.uses_explicit_override = True
            self.suffix = ""

    @property
    def branch_name(self) -> str:
        if self.uses_explicit_override:
            return self.branch_prefix
        if not self.image_tag:
            return self.branch_prefix + self.suffix
        return f"{self.branch_prefix}-{self.image_tag}{self.suffix}"

    def is_same_branch_or_has_image_name_prefix(self, branch_name: Optional[str]) -> bool:
        """
        Tells whether `branch_name` was created for the same image, whatever the tag it was created for.
        A new tag can then be pushed to the existing branch and pull request instead of opening a parallel one.
        """
        if self.uses_explicit_override:
            return self.branch_name == branch_name
        if branch_name is None:
            return False
        candidate = branch_name.strip()
        if self.suffix:
            if not candidate.endswith(self.suffix):
                return False
            candidate = candidate[:-len(self.suffix)]
        elif candidate.endswith(_KNOWN_SUFFIXES):
            return False
        if candidate == self.branch_prefix:
            return True
        return candidate.rsplit("-", 1)[0] == self.branch_prefix

    def __str__(self):
        return self.branch_name

    def __repr__(self):
        return f"GitForkBranch({self.branch_name!r})"
