"""Extraction of title and plain-text body from fetched pages."""
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

WHITESPACE_RE = re.compile(r'\s+')

# Elements whose text is never rendered to the reader
NON_RENDERED_TAGS = ('script', 'style', 'noscript', 'template')


@dataclass(frozen=True)
class ExtractedContent:
    """Title and normalized body text of a page."""

    title: str
    text: str


def collapse_whitespace(value: str) -> str:
    """Collapse every whitespace run to a single space and trim the ends."""
    return WHITESPACE_RE.sub(' ', value).strip()


def extract_content(html: str, url: str) -> ExtractedContent:
    """
    Extract the title and body text from HTML.

    Pure function with no I/O. Uses BeautifulSoup for parsing.

    The title is the trimmed text of the <title> element, falling back to
    ``url`` when the element is missing or blank. The body text is the text of
    <body> (or of the whole document when there is no body) with scripts and
    styles removed and whitespace collapsed.

    Args:
        html:
            Raw HTML string to parse.
        url:
            The bookmark's URL, used as the fallback title.

    Returns:
        ExtractedContent with a non-empty title and possibly empty text.
    """
    soup = BeautifulSoup(html, 'lxml')

    title = ''
    title_tag = soup.find('title')
    if title_tag is not None:
        title = title_tag.get_text().strip()

    for element in soup.find_all(NON_RENDERED_TAGS):
        element.decompose()

    body = soup.body if soup.body is not None else soup
    text = collapse_whitespace(body.get_text(' '))

    return ExtractedContent(title=title or url, text=text)
