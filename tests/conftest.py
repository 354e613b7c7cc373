"""Shared pytest fixtures for the calil-shelf test suite."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from calil_shelf.models.session import Cookie, Session


NDL_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:dc="http://purl.org/dc/elements/1.1/"
     xmlns:dcndl="http://ndl.go.jp/dcndl/terms/"
     xmlns:dcterms="http://purl.org/dc/terms/"
     xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
     xmlns:rdfs="http://www.w3.org/2000/01/rdf-schema#"
     xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
     xmlns:openSearch="http://a9.com/-/spec/opensearchrss/1.0/">
  <channel>
    <title>吾輩は猫である - 国立国会図書館サーチ</title>
    <link>https://ndlsearch.ndl.go.jp/api/opensearch?isbn=9784003101018</link>
    <openSearch:totalResults>1</openSearch:totalResults>
    <openSearch:startIndex>1</openSearch:startIndex>
    <openSearch:itemsPerPage>1</openSearch:itemsPerPage>
    <item>
      <title>吾輩は猫である</title>
      <link>https://ndlsearch.ndl.go.jp/books/R100000002-I031234567</link>
      <description><![CDATA[<p>改版</p>]]></description>
      <author>夏目漱石 著</author>
      <category>図書</category>
      <guid isPermaLink="true">https://ndlsearch.ndl.go.jp/books/R100000002-I031234567</guid>
      <dc:title>吾輩は猫である</dc:title>
      <dcndl:titleTranscription>ワガハイ ハ ネコ デ アル</dcndl:titleTranscription>
      <dc:creator>夏目, 漱石, 1867-1916</dc:creator>
      <dcndl:creatorTranscription>ナツメ, ソウセキ</dcndl:creatorTranscription>
      <dc:publisher>岩波書店</dc:publisher>
      <dcterms:issued xsi:type="dcterms:W3CDTF">2021.2</dcterms:issued>
      <dc:date xsi:type="dcterms:W3CDTF">2021.2</dc:date>
      <dcndl:price>800円</dcndl:price>
      <dc:extent>350p ; 15cm</dc:extent>
      <dc:identifier xsi:type="dcndl:ISBN">978-4-00-310101-8</dc:identifier>
      <dc:identifier xsi:type="dcndl:JPNO">23456789</dc:identifier>
      <dc:identifier xsi:type="dcndl:NDLBibID">031234567</dc:identifier>
      <dc:subject>日本文学</dc:subject>
      <dc:subject xsi:type="dcndl:NDC10">913.6</dc:subject>
      <dc:subject xsi:type="dcndl:NDLC">KH312</dc:subject>
      <rdfs:seeAlso rdf:resource="https://id.ndl.go.jp/bib/031234567"/>
    </item>
  </channel>
</rss>
"""


@pytest.fixture
def ndl_feed_xml() -> str:
    """Returns a one-item NDL OpenSearch feed."""
    return NDL_FEED_XML


@pytest.fixture
def session() -> Session:
    """Returns a logged-in session with two Calil cookies."""
    return Session(
        cookies=[
            Cookie(name="sid", value="abc", domain=".calil.jp", expires=2000),
            Cookie(name="pref", value="1", domain="calil.jp", expires=1000),
        ]
    )


@pytest.fixture
def mock_vault() -> MagicMock:
    """Returns a vault double whose methods are all awaitable."""
    vault = MagicMock()
    vault.load = AsyncMock(return_value=None)
    vault.probe = AsyncMock(return_value=None)
    vault.save = AsyncMock(side_effect=lambda s: s)
    vault.clear = AsyncMock()
    return vault


@pytest.fixture
def mock_browser() -> MagicMock:
    """Returns a browser manager double with an existing profile."""
    browser = MagicMock()
    browser.has_profile = True
    browser.login = AsyncMock()
    return browser
