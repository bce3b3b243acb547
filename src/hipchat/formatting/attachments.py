"""Inline image attachments in XHTML-IM bodies.

The service renders each attachment as
``<img src='{url}' title='{filename}' longdesc='{thumb_size}##{thumb_url}'/>``.
Extraction matches exactly that grammar; any other markup is ignored.
"""

from __future__ import annotations

import html
import re
from collections.abc import Iterable

from hipchat.events import Attachment

IMAGE_TAG = "<img src='{}' title='{}' longdesc='{}##{}'/>"

# Four groups: image URL, title (filename), thumbnail size, thumbnail URL
_IMAGE_RE = re.compile(r"<img src='([^']+)' title='([^']+)' longdesc='([^']+)##([^']+)'")


def extract_attachments(rich_text: str) -> list[Attachment]:
    """Return attachments referenced by ``rich_text`` in document order."""
    if not rich_text:
        return []
    return [
        Attachment(
            image_url=html.unescape(url),
            image_filename=html.unescape(title),
            thumbnail_size=html.unescape(size),
            thumbnail_url=html.unescape(thumb),
        )
        for url, title, size, thumb in _IMAGE_RE.findall(rich_text)
    ]


def render_image_tags(attachments: Iterable[Attachment]) -> str:
    """Render attachments as newline-separated ``<img/>`` tags."""
    return "\n".join(
        IMAGE_TAG.format(
            html.escape(a.image_url),
            html.escape(a.image_filename),
            html.escape(a.thumbnail_size),
            html.escape(a.thumbnail_url),
        )
        for a in attachments
    )
