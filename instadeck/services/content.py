"""Article HTML rewriting for the device renderer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from bs4 import BeautifulSoup, Comment

from ..schemas import DeviceImage


MARKER_PREFIX = "IMG_"


@dataclass(frozen=True)
class ImageRef:
    ordinal: int
    src: str

    @property
    def marker(self) -> str:
        return f"{MARKER_PREFIX}{self.ordinal}"


@dataclass
class RewrittenArticle:
    html: str
    images: List[ImageRef] = field(default_factory=list)

    def device_images(self) -> Dict[str, DeviceImage]:
        """The ``images`` map of a download response, keyed by ordinal."""

        return {
            str(ref.ordinal): DeviceImage(image_id=str(ref.ordinal), item_id=str(ref.ordinal), src=ref.src)
            for ref in self.images
        }


def rewrite_images(html: str) -> RewrittenArticle:
    """Replace every ``<img>`` with an ``<!--IMG_n-->`` marker.

    Images are numbered from 0 in document order. Markup without images is
    returned untouched, so rewriting an already rewritten article changes
    nothing.
    """

    if not html:
        return RewrittenArticle(html=html or "")
    soup = BeautifulSoup(html, "html.parser")
    elements = soup.find_all("img")
    if not elements:
        return RewrittenArticle(html=html)

    refs: List[ImageRef] = []
    for ordinal, element in enumerate(elements):
        ref = ImageRef(ordinal=ordinal, src=element.get("src") or "")
        element.replace_with(Comment(ref.marker))
        refs.append(ref)
    return RewrittenArticle(html=soup.decode(), images=refs)
