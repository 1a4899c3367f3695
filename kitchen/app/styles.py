from typing import Iterable, Optional

from pydantic import BaseModel


class Style(BaseModel):
    id: str
    name: str
    description: str


STYLES: list[Style] = [
    Style(
        id="vangogh",
        name="Van Gogh",
        description="Post-impressionist style with bold colors and expressive brushstrokes",
    ),
    Style(
        id="monet",
        name="Monet",
        description="Impressionist style with soft, dreamlike qualities",
    ),
    Style(
        id="anime",
        name="Anime",
        description="Japanese animation style with vibrant colors",
    ),
    Style(
        id="pixar",
        name="Pixar",
        description="3D animated style with clean, polished look",
    ),
    Style(
        id="watercolor",
        name="Watercolor",
        description="Soft, flowing watercolor painting style",
    ),
]

_BY_ID = {s.id: s for s in STYLES}


def get_style(style_id: str) -> Optional[Style]:
    return _BY_ID.get(style_id)


def unknown_styles(style_ids: Iterable[str]) -> list[str]:
    return [s for s in style_ids if s not in _BY_ID]


def join_styles(style_ids: Iterable[str]) -> Optional[str]:
    """Comma-join selected style ids into a job's style tag, keeping order."""
    seen: list[str] = []
    for s in style_ids:
        s = s.strip()
        if s and s not in seen:
            seen.append(s)
    return ",".join(seen) or None


def split_styles(style_tag: Optional[str]) -> list[str]:
    if not style_tag:
        return []
    return [s for s in (p.strip() for p in style_tag.split(",")) if s]
