from __future__ import annotations

import re
from typing import Any, List, Tuple

import lxml.html

from graph.schema import Response

_BACKGROUND_URL = re.compile(
    r"""background(?:-image)?\s*:[^;"']*?url\(\s*['"]?([^'")]+?)['"]?\s*\)""",
    re.IGNORECASE,
)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_MANY_NEWLINES = re.compile(r"\n{3,}")

BLOCK_TAGS = {"div", "p", "li", "h1", "h2", "h3", "h4", "h5", "h6"}
# element text that is never shown to the visitor
HIDDEN_TAGS = {"script", "style", "head", "title"}


def _parse(body: str) -> lxml.html.HtmlElement:
    return lxml.html.fragment_fromstring(_CONTROL_CHARS.sub("", body), create_parent="div")


def _element_images(el: lxml.html.HtmlElement) -> List[str]:
    urls: List[str] = []
    if el.tag == "img" and el.get("src"):
        urls.append(el.get("src").strip())
    urls.extend(u.strip() for u in _BACKGROUND_URL.findall(el.get("style") or ""))
    return [u for u in urls if u]


def _finish_text(raw: str) -> str:
    text = raw.replace("\xa0", " ").replace("\r\n", "\n")
    text = _MANY_NEWLINES.sub("\n\n", text)
    return text.strip()


def split_images(body: str) -> List[Response]:
    """Split a rich-text body into text and image responses in document order.

    The body is parsed as HTML, so tags disappear and entities are decoded
    exactly once; escaped text such as ``&lt;ID&gt;`` stays literal. Every
    image reference (``<img src>`` or a ``background-image:url(...)`` style)
    becomes exactly one image response.
    """
    if not body or not body.strip():
        return []

    root = _parse(body)
    responses: List[Response] = []
    buffer: List[str] = []

    def flush() -> None:
        text = _finish_text("".join(buffer))
        buffer.clear()
        if text:
            responses.append(Response.text_body(text))

    # (element, closing) pairs; walked without recursion
    stack: List[Tuple[Any, bool]] = [(root, False)]
    while stack:
        el, closing = stack.pop()
        is_element = isinstance(el.tag, str)
        tag = el.tag.lower() if is_element else ""

        if closing:
            if tag in BLOCK_TAGS:
                buffer.append("\n")
            if el is not root and el.tail:
                buffer.append(el.tail)
            continue

        stack.append((el, True))
        if not is_element or tag in HIDDEN_TAGS:
            continue

        urls = _element_images(el)
        if urls:
            flush()
            responses.extend(Response.image(url) for url in urls)
        if tag == "br":
            buffer.append("\n")
        if el.text:
            buffer.append(el.text)
        stack.extend((child, False) for child in reversed(el))

    flush()
    return responses


def image_urls(markup: str) -> List[str]:
    """Image references carried by a markup snippet, in document order"""
    return [r.image_url for r in split_images(markup) if r.image_url]


def strip_markup(body: str) -> str:
    """Plain text of a rich-text body; images are dropped"""
    if not body:
        return ""
    parts = [r.text for r in split_images(body) if r.text]
    return _MANY_NEWLINES.sub("\n\n", "\n".join(parts)).strip()
