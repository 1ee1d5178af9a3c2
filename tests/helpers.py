"""Builders for Bulbapedia-like pages, a stub HTTP session and test images."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union
from urllib.parse import quote

from PIL import Image

from dexbook.config import BULBAPEDIA_BASE

FIXTURES = Path(__file__).resolve().parent / "fixtures"
IMAGE_HOST = "https://archives.bulbagarden.net"


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------


def page_path(name: str) -> str:
    return f"/wiki/{quote(name.replace(' ', '_'))}_(Pok%C3%A9mon)"


def page_url(name: str) -> str:
    return f"{BULBAPEDIA_BASE}{page_path(name)}"


def thumb_url(file_name: str, width: int = 120) -> str:
    return f"{IMAGE_HOST}/media/upload/thumb/a/ab/{file_name}/{width}px-{file_name}"


def origin_url(file_name: str) -> str:
    return f"{IMAGE_HOST}/media/upload/a/ab/{file_name}"


# ---------------------------------------------------------------------------
# Page builders
# ---------------------------------------------------------------------------


def make_page(
    identifier: int,
    name: str,
    *,
    category: str = "Test Pokémon",
    kana: str = "テスト",
    romaji: str = "Tesuto",
    types: Sequence[str] = ("Normal",),
    images: Sequence[Tuple[str, str]] = (),
    evolution: Sequence[Tuple[str, str]] = (),
    forms: Sequence[str] = (),
    lead: str = "",
    info: Sequence[Tuple[str, str]] = (),
    body_images: Sequence[Tuple[str, str]] = (),
) -> bytes:
    """
    A minimal page with the same landmarks as a real Bulbapedia article.

    ``images`` is a list of ``(file name, caption)``; ``evolution`` a list of
    ``(name, stage label)``; ``forms`` names of pages linked from "Forms".
    ``info`` adds info box rows as ``(label, value)`` and ``body_images``
    adds figures to the Biology section as ``(file name, caption)``.
    """
    image_cells = "".join(
        f'<td><a class="image" href="/wiki/File:{file_name}">'
        f'<img alt="{name}" src="{thumb_url(file_name)}" width="120"/></a>'
        f"{f'<br/><small>{caption}</small>' if caption else ''}</td>"
        for file_name, caption in images
    )
    type_cells = "".join(
        f'<td><a href="/wiki/{t}_(type)" title="{t} (type)"><b>{t}</b></a></td>' for t in types
    )
    evolution_cells = "".join(
        f'<td><a href="{page_path(member)}">{member}</a><br/><small>{stage}</small></td>'
        for member, stage in evolution
    )
    form_links = " ".join(f'<a href="{page_path(form)}">{form}</a>' for form in forms)
    info_rows = "".join(
        f"<tr><td><b>{label}</b><table><tr><td>{value}</td></tr></table></td></tr>"
        for label, value in info
    )
    figures = "".join(
        f'<div class="thumb tright"><div class="thumbinner">'
        f'<a class="image" href="/wiki/File:{file_name}"><img alt="" src="{thumb_url(file_name, 180)}" width="180"/></a>'
        f'<div class="thumbcaption">{caption}</div></div></div>'
        for file_name, caption in body_images
    )

    html = f"""<!DOCTYPE html>
<html><head><meta charset="UTF-8"/><title>{name} (Pokémon)</title></head><body>
<div class="mw-parser-output">
<table class="roundy">
<tr><td colspan="4"><table><tr>
<td><table><tr>
<td><big><big><b>{name}</b></big></big><br/>
<a href="/wiki/Pok%C3%A9mon_category" title="Pokémon category"><span>{category}</span></a></td>
<td><span lang="ja">{kana}</span><br/><i>{romaji}</i></td>
</tr></table></td>
<th><a href="/wiki/List_of_Pok%C3%A9mon_by_National_Pok%C3%A9dex_number"><span>#{identifier:04d}</span></a></th>
</tr>
<tr><td colspan="2"><table><tr>{image_cells}</tr></table></td></tr>
</table></td></tr>
<tr><td><b><a href="/wiki/Type">Type</a></b><table><tr>{type_cells}</tr></table></td></tr>
{info_rows}
</table>
<p><b>{name}</b> is a Pokémon. {lead}</p>
<h2><span class="mw-headline">Biology</span></h2>
<p>{name} lives in tests.</p>
{figures}
<h2><span class="mw-headline">Game data</span></h2>
{f'<h3><span class="mw-headline">Forms</span></h3><p>{form_links}</p>' if forms else ''}
{f'<h3><span class="mw-headline">Evolution</span></h3><table class="roundy"><tr>{evolution_cells}</tr></table>' if evolution else ''}
<h3><span class="mw-headline">Sprites</span></h3>
</div>
</body></html>
"""
    return html.encode("utf-8")


def make_index(entries: Sequence[Tuple[int, str]]) -> bytes:
    rows = "".join(
        f'<tr><td>#{identifier:04d}</td><td><a href="{page_path(name)}" title="{name} (Pokémon)">{name}</a></td></tr>'
        for identifier, name in entries
    )
    html = f"""<!DOCTYPE html>
<html><body><div class="mw-parser-output">
<table class="roundy"><tr><th>Ndex</th><th>Pokémon</th></tr>{rows}</table>
</div></body></html>
"""
    return html.encode("utf-8")


def png_bytes(width: int = 64, height: int = 48, color=(200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def gif_bytes(frames: int = 2) -> bytes:
    images = [Image.new("P", (16, 16), i * 40) for i in range(frames)]
    buffer = io.BytesIO()
    images[0].save(buffer, format="GIF", save_all=True, append_images=images[1:], duration=100, loop=0)
    return buffer.getvalue()


def apng_bytes(frames: int = 2) -> bytes:
    images = [Image.new("RGBA", (16, 16), (i * 80, 0, 0, 255)) for i in range(frames)]
    buffer = io.BytesIO()
    images[0].save(buffer, format="PNG", save_all=True, append_images=images[1:], duration=100, loop=0)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Stub HTTP
# ---------------------------------------------------------------------------


class StubResponse:
    def __init__(self, status_code: int, content: bytes = b"") -> None:
        self.status_code = status_code
        self.content = content


class StubSession:
    """
    Stands in for ``requests.Session``.

    ``routes`` maps a URL to the body to return, a status code to answer
    with, or an exception to raise.  Unknown URLs answer 404.
    """

    def __init__(self, routes: Dict[str, Union[bytes, int, Exception]] | None = None) -> None:
        self.routes: Dict[str, Union[bytes, int, Exception]] = dict(routes or {})
        self.calls: List[str] = []

    def get(self, url: str, headers=None, timeout=None) -> StubResponse:
        self.calls.append(url)
        value = self.routes.get(url, 404)
        if isinstance(value, Exception):
            raise value
        if isinstance(value, int):
            return StubResponse(value)
        return StubResponse(200, value)

    def count(self, url: str) -> int:
        return self.calls.count(url)
