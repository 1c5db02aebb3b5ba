"""
Parsing and rewriting of single lines that reference a Docker image.

Two kinds of lines are understood:

- Dockerfile ``FROM`` instructions, e.g. ``FROM --platform=$BUILDPLATFORM registry.io/base:1.0 AS builder # note``
- docker-compose ``image:`` keys, e.g. ``    image: "registry.io/base:1.0"``

A parsed line can be rendered back. Whitespace between the keyword, image and extra tokens is normalized to single
spaces. Leading whitespace and comments are reproduced as they were, so that YAML indentation survives a rewrite.
"""
import dataclasses
import re
from dataclasses import dataclass
from typing import ClassVar, Optional, Pattern, Tuple, Type

from dockerfile_image_update import constants


@dataclass(frozen=True)
class ImageReference:
    name: Optional[str]
    tag: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "ImageReference":
        """ Splits `image[:tag]` on the last colon that follows the last slash, so that registry ports are kept """
        colon = text.rfind(":")
        if colon > text.rfind("/"):
            return cls(text[:colon], text[colon + 1:] or None)
        return cls(text, None)

    def __str__(self):
        if self.tag is None:
            return self.name or ""
        return f"{self.name}:{self.tag.strip()}"


@dataclass(frozen=True)
class SourceLine:
    """ A line of a Dockerfile or compose file that holds an image reference """

    KEYWORD: ClassVar[str]
    PATTERN: ClassVar[Pattern]

    raw_text: str
    leading_whitespace: str
    keyword: str
    image: ImageReference
    options: Tuple[str, ...] = ()
    extra_tokens: Tuple[str, ...] = ()
    comment: Optional[str] = None
    quote: str = ""

    @classmethod
    def is_applicable(cls, line: Optional[str]) -> bool:
        return bool(line) and cls.PATTERN.match(line) is not None

    @classmethod
    def parse(cls, line: Optional[str]):
        """ Returns a parsed line, or None if the line is not of this kind """
        if not cls.is_applicable(line):
            return None
        match = cls.PATTERN.match(line)
        rest = line[match.end():]
        comment = None
        comment_index = rest.find("#")
        if comment_index >= 0:
            comment = rest[comment_index:]
            rest = rest[:comment_index]
        return cls._from_tokens(line, match.group(1), match.group(2), rest.split(), comment)

    @classmethod
    def _from_tokens(cls, line, leading_whitespace, keyword, tokens, comment):
        raise NotImplementedError

    @property
    def image_name(self) -> Optional[str]:
        return self.image.name

    @property
    def tag(self) -> Optional[str]:
        return self.image.tag

    def has_base_image(self, image_to_find: Optional[str]) -> bool:
        return self.image.name is not None and image_to_find is not None and self.image.name.endswith(image_to_find)

    def has_tag(self) -> bool:
        return self.image.tag is not None

    def has_different_tag(self, expected_tag: Optional[str]) -> bool:
        if self.image.tag is None and expected_tag is None:
            return False
        if self.image.tag is None or expected_tag is None:
            return True
        return self.image.tag.strip() != expected_tag.strip()

    def has_ignore_comment(self, marker: Optional[str] = None) -> bool:
        """ Lines commented with `no-dfiu` (or a caller-chosen marker) must be left alone """
        if self.comment is None:
            return False
        if constants.NO_DFIU in self.comment:
            return True
        return bool(marker) and marker in self.comment

    def with_new_tag(self, tag: Optional[str]) -> "SourceLine":
        return dataclasses.replace(self, image=dataclasses.replace(self.image, tag=tag))

    def _render_image(self) -> Optional[str]:
        if self.image.name is None:
            return None
        return f"{self.quote}{self.image}{self.quote}"

    def render(self) -> str:
        parts = [self.keyword, *self.options]
        image = self._render_image()
        if image is not None:
            parts.append(image)
        parts.extend(self.extra_tokens)
        if self.comment is not None:
            parts.append(self.comment)
        return self.leading_whitespace + " ".join(parts)

    def __str__(self):
        return self.render()


@dataclass(frozen=True)
class FromInstruction(SourceLine):
    KEYWORD: ClassVar[str] = "FROM"
    PATTERN: ClassVar[Pattern] = re.compile(r"^(\s*)(FROM)(?=\s|$)", re.IGNORECASE)

    @classmethod
    def _from_tokens(cls, line, leading_whitespace, keyword, tokens, comment):
        options = []
        while tokens and tokens[0].startswith("--"):
            options.append(tokens.pop(0))
        image = ImageReference.parse(tokens[0]) if tokens else ImageReference(None)
        return cls(
            raw_text=line,
            leading_whitespace=leading_whitespace,
            keyword=keyword,
            image=image,
            options=tuple(options),
            extra_tokens=tuple(tokens[1:]),
            comment=comment,
        )


@dataclass(frozen=True)
class ImageKeyValuePair(SourceLine):
    KEYWORD: ClassVar[str] = "image:"
    PATTERN: ClassVar[Pattern] = re.compile(r"^(\s*)(image:)(?=\s|$)")

    @classmethod
    def _from_tokens(cls, line, leading_whitespace, keyword, tokens, comment):
        if not tokens:
            return cls(raw_text=line, leading_whitespace=leading_whitespace, keyword=keyword,
                       image=ImageReference(None), comment=comment)
        value = tokens[0]
        quote = ""
        if len(value) >= 2 and value[0] in "'\"" and value[-1] == value[0]:
            quote, value = value[0], value[1:-1]
        return cls(
            raw_text=line,
            leading_whitespace=leading_whitespace,
            keyword=keyword,
            image=ImageReference.parse(value),
            extra_tokens=tuple(tokens[1:]),
            comment=comment,
            quote=quote,
        )


def line_kind_for_path(path: str) -> Type[SourceLine]:
    """ docker-compose files reference images with `image:` keys; everything else is treated as a Dockerfile """
    name = path.rsplit("/", 1)[-1].lower()
    if constants.DOCKER_COMPOSE in name or name.endswith((".yml", ".yaml")):
        return ImageKeyValuePair
    return FromInstruction


def is_line_with_image_and_older_tag(line: str, image: str, tag: Optional[str],
                                     kind: Type[SourceLine] = FromInstruction,
                                     ignore_marker: Optional[str] = None) -> bool:
    """ Tells whether rewrite_line() would change the line """
    parsed = kind.parse(line.rstrip("\r"))
    return parsed is not None and parsed.has_base_image(image) and parsed.has_different_tag(tag) \
        and not parsed.has_ignore_comment(ignore_marker)


def rewrite_line(line: str, image: str, tag: Optional[str], kind: Type[SourceLine] = FromInstruction,
                 ignore_marker: Optional[str] = None) -> Tuple[str, bool]:
    """
    Rewrites a single line so that it references `image` with `tag`.

    :return: (line, modified). The line is returned unchanged if it doesn't reference the image, already uses the tag,
             or is commented with an ignore marker.
    """
    body, newline = line, ""
    if body.endswith("\r"):
        body, newline = body[:-1], "\r"
    parsed = kind.parse(body)
    if parsed is None or not parsed.has_base_image(image) or not parsed.has_different_tag(tag):
        return line, False
    if parsed.has_ignore_comment(ignore_marker):
        return line, False
    return parsed.with_new_tag(tag).render() + newline, True
