"""Pydantic models for Calil list entries and NDL bibliographic records."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Book(BaseModel):
    """One entry of a Calil wish/read list."""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    isbn: str = ""
    title: str = ""
    author: str = ""
    publisher: str = ""
    pubdate: str = ""
    source: str = ""
    updated: str = ""
    volume: str = ""


class ListMetadata(BaseModel):
    total_count: int
    total_pages: int
    page_size: int


class NdlItem(BaseModel):
    """A record from the NDL OpenSearch RSS feed."""

    title: Optional[str] = None
    title_kana: Optional[str] = None
    link: Optional[str] = None
    creators: list[str] = Field(default_factory=list)
    creators_kana: list[str] = Field(default_factory=list)
    publisher: Optional[str] = None
    pub_year: Optional[str] = None
    issued: Optional[str] = None
    extent: Optional[str] = None
    price: Optional[str] = None
    categories: list[str] = Field(default_factory=list)
    isbn13: Optional[str] = None
    ndl_bib_id: Optional[str] = None
    jpno: Optional[str] = None
    tohan_marc_no: Optional[str] = None
    ndc10: Optional[str] = None
    ndlc: Optional[str] = None
    subjects: list[str] = Field(default_factory=list)
    description_html: Optional[str] = None
    see_also: list[str] = Field(default_factory=list)


class NdlFeed(BaseModel):
    total_results: int = 0
    start_index: int = 1
    items_per_page: int = 0
    items: list[NdlItem] = Field(default_factory=list)
