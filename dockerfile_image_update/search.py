"""
Builds GitHub code search queries for an image.

GitHub's code search tokenizes on dashes, so a quoted term such as "FROM my-registry.io/app" doesn't match anything.
Images are therefore split into several terms at the dashes of the registry domain and of path segments, and at the
dots of the image name. All of the terms are required to appear in the file.
"""
import logging
from typing import List, Optional

from dockerfile_image_update import constants

_LOGGER = logging.getLogger(__name__)


class _SearchTermState:
    def __init__(self):
        self.terms: List[str] = []
        self._current: List[str] = []

    @property
    def current_term(self) -> str:
        return "".join(self._current)

    def add(self, segment: str):
        self._current.append(segment)

    def finalize(self):
        self.terms.append(self.current_term)
        self._current = []


def search_keyword(filename: Optional[str]) -> str:
    """ Returns the instruction keyword that precedes an image in files named like `filename` """
    if filename and constants.DOCKER_COMPOSE in filename.lower():
        return "image: "
    return "FROM "


def _process_domain(state: _SearchTermState, domain: str, keyword: str):
    if not domain.strip():
        return
    state.add(keyword)
    chunks = domain.split("-")
    for chunk in chunks[:-1]:
        state.add(chunk)
        state.finalize()
    state.add(chunks[-1])


def _process_intermediate_segment(state: _SearchTermState, segment: str):
    if "-" in segment:
        state.finalize()
    else:
        state.add("/")
    state.add(segment)


def _process_final_segment(state: _SearchTermState, segment: str):
    if "-" in state.current_term:
        state.finalize()
    # dots split terms as well, e.g. version numbers in image names
    chunks = segment.split(".")
    state.add("/")
    state.add(chunks[0])
    for chunk in chunks[1:]:
        state.finalize()
        state.add(chunk)


def get_search_terms(image: Optional[str], filename: Optional[str] = "Dockerfile") -> List[str]:
    """
    Splits an image name into code search terms.

    >>> get_search_terms("gcr.io/the-dash/the-mash", "Dockerfile")
    ['FROM gcr.io', 'the-dash', '/the-mash']

    :param image: Image name, optionally with registry domain and path segments
    :param filename: The name of the files that will be searched; it determines the instruction keyword
    :return: Ordered list of terms; empty if image is blank
    """
    if image is None or not image.strip():
        return []
    parts = image.split("/")
    state = _SearchTermState()
    _process_domain(state, parts[0], search_keyword(filename))
    if len(parts) > 1:
        for segment in parts[1:-1]:
            _process_intermediate_segment(state, segment)
        _process_final_segment(state, parts[-1])
    state.finalize()
    return state.terms


def build_search_query(terms: List[str], filename: str, org: Optional[str] = None,
                       max_length: int = constants.SEARCH_QUERY_MAX_LENGTH) -> str:
    """
    Joins search terms into a single GitHub code search query.
    Trailing terms that would make the query longer than `max_length` are dropped;
    the remaining terms still narrow the search and files are validated line by line later.
    """
    if not terms:
        raise ValueError("At least one search term is required")
    qualifiers = [f"filename:{filename}"]
    if org:
        qualifiers.append(f"org:{org}")
    suffix = " " + " ".join(qualifiers)

    quoted = [f'"{term}"' for term in terms]
    kept = [quoted[0]]
    for term in quoted[1:]:
        if len(" ".join(kept + [term])) + len(suffix) > max_length:
            _LOGGER.warning("Search query for %s is too long; dropping term(s) from %s on", terms[0], term)
            break
        kept.append(term)
    return " ".join(kept) + suffix
