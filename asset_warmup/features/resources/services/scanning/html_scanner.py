import html as html_lib
import re
from itertools import chain
from typing import Iterator, NamedTuple

from asset_warmup.features.resources.schemas.resource import ResourceType


class ResourceReference(NamedTuple):
    """A raw stylesheet/script reference found in page markup; tag is the matched markup, kept for failure logs."""
    url: str
    kind: ResourceType
    tag: str


class HTMLResourceScanner:
    """
    Lexical scanner for <link rel=stylesheet href> and <script src> tags.

    Works on the raw HTML string with regexes instead of a DOM: rendered
    pages are first-party, and malformed markup must simply produce fewer
    matches. Every find_* call returns a fresh generator over the document.
    """

    _FLAGS = re.IGNORECASE | re.DOTALL | re.MULTILINE

    LINK_PATTERN = re.compile(
        r'<link\s+(?:[^>]*[\s"\'])?href\s*=\s*[\'"]\s*(?P<url>[^\'"\s]+)\s*[\'"](?:[^>]+)?/?>',
        _FLAGS,
    )
    SCRIPT_PATTERN = re.compile(
        r'<script\s+(?:[^>]*[\s\'"])?src\s*=\s*[\'"]\s*(?P<url>[^\'"\s]+)\s*[\'"](?:[^>]+)?/?>',
        _FLAGS,
    )
    STYLESHEET_REL_PATTERN = re.compile(
        r'(?:^|[\s"\'])rel\s*=\s*[\'"]?[^\'">]*\bstylesheet\b',
        _FLAGS,
    )

    @classmethod
    def find_styles(cls, html: str) -> Iterator[ResourceReference]:
        if not html:
            return
        for match in cls.LINK_PATTERN.finditer(html):
            tag = match.group(0)
            # <link> tags without rel=stylesheet (icons, preloads, canonical) are skipped
            if not cls.STYLESHEET_REL_PATTERN.search(tag):
                continue
            yield ResourceReference(cls._clean_url(match.group("url")), ResourceType.css, tag)

    @classmethod
    def find_scripts(cls, html: str) -> Iterator[ResourceReference]:
        if not html:
            return
        for match in cls.SCRIPT_PATTERN.finditer(html):
            yield ResourceReference(cls._clean_url(match.group("url")), ResourceType.js, match.group(0))

    @classmethod
    def find_all(cls, html: str) -> Iterator[ResourceReference]:
        """Stylesheets first, then scripts, each in document order."""
        return chain(cls.find_styles(html), cls.find_scripts(html))

    @staticmethod
    def _clean_url(raw: str) -> str:
        # Rendered markup escapes query separators (?ver=1&amp;x=2)
        return html_lib.unescape(raw.strip())
