"""Parse NDL OpenSearch RSS feeds and normalize ISBNs.

Feed items mix plain RSS elements with Dublin Core (``dc:``), NDL
(``dcndl:``) and DC terms (``dcterms:``) elements. Identifiers and subjects
are told apart by their ``xsi:type`` attribute, e.g. ``dcndl:ISBN`` or
``dcndl:NDC10``.
"""

from __future__ import annotations

import re
from typing import Optional

from bs4 import BeautifulSoup, Tag

from ..models.book import NdlFeed, NdlItem


def isbn10_to_13(isbn10: str) -> str:
    """Convert an ISBN-10 to ISBN-13 (978 prefix). Other lengths pass through."""
    if len(isbn10) != 10:
        return isbn10

    core = f"978{isbn10[:9]}"
    total = sum(int(d) * (1 if i % 2 == 0 else 3) for i, d in enumerate(core))
    check_digit = (10 - total % 10) % 10
    return f"{core}{check_digit}"


def _text(tag: Optional[Tag]) -> Optional[str]:
    if tag is None:
        return None
    text = tag.get_text().strip()
    return text or None


def _texts(tags: list[Tag]) -> list[str]:
    return [t for t in (_text(tag) for tag in tags) if t]


def _xsi_type(tag: Tag) -> str:
    return str(tag.get("xsi:type") or tag.get("type") or "").upper()


def _int(tag: Optional[Tag], default: int) -> int:
    text = _text(tag)
    try:
        return int(text) if text is not None else default
    except ValueError:
        return default


def _parse_item(item: Tag) -> NdlItem:
    pub_year = _text(item.find("date"))
    if pub_year:
        # "2021.2" and similar are reduced to the year
        match = re.search(r"\d{4}", pub_year)
        pub_year = match.group(0) if match else pub_year

    isbn13 = ndl_bib_id = jpno = tohan = None
    for node in item.find_all("identifier"):
        value = _text(node)
        if not value:
            continue
        kind = _xsi_type(node)
        if "ISBN" in kind:
            isbn13 = value.replace("-", "")
        elif "NDLBIBID" in kind:
            ndl_bib_id = value
        elif "JPNO" in kind:
            jpno = value
        elif "TOHAN" in kind:
            tohan = value

    ndc10 = ndlc = None
    subjects: list[str] = []
    for node in item.find_all("subject"):
        value = _text(node)
        if not value:
            continue
        kind = _xsi_type(node)
        if "NDC10" in kind:
            ndc10 = value
        elif "NDLC" in kind:
            ndlc = value
        else:
            subjects.append(value)

    return NdlItem(
        title=_text(item.find("title")),
        title_kana=_text(item.find("titleTranscription")),
        link=_text(item.find("link")) or _text(item.find("guid")),
        creators=_texts(item.find_all("creator")),
        creators_kana=_texts(item.find_all("creatorTranscription")),
        publisher=_text(item.find("publisher")),
        pub_year=pub_year,
        issued=_text(item.find("issued")),
        extent=_text(item.find("extent")),
        price=_text(item.find("price")),
        categories=_texts(item.find_all("category")),
        isbn13=isbn13,
        ndl_bib_id=ndl_bib_id,
        jpno=jpno,
        tohan_marc_no=tohan,
        ndc10=ndc10,
        ndlc=ndlc,
        subjects=subjects,
        description_html=_text(item.find("description")),
        see_also=[
            str(node["rdf:resource"])
            for node in item.find_all("seeAlso")
            if node.get("rdf:resource")
        ],
    )


def parse_opensearch(xml: str) -> NdlFeed:
    soup = BeautifulSoup(xml, "xml")
    channel = soup.find("channel")
    if channel is None:
        return NdlFeed()

    return NdlFeed(
        total_results=_int(channel.find("totalResults", recursive=False), 0),
        start_index=_int(channel.find("startIndex", recursive=False), 1),
        items_per_page=_int(channel.find("itemsPerPage", recursive=False), 0),
        items=[_parse_item(item) for item in channel.find_all("item", recursive=False)],
    )
