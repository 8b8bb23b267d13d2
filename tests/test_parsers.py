# -*- coding: utf-8 -*-
"""
tests/test_parsers.py
RSS/Atom 解析、SEC 申报标题、Google News 辅助函数、KAP JSON/HTML 解析、标题打标签。
"""

from datetime import datetime, timezone

import pytest

from ingest_hub.errors import ParseError
from ingest_hub.parsers.kap import (
    UNTITLED,
    KapItem,
    is_valid_kap_item,
    parse_disclosure,
    parse_kap_response,
)
from ingest_hub.parsers.rss import (
    build_google_news_url,
    detect_language,
    extract_filing_type,
    extract_source_info,
    filing_tags,
    parse_feed,
)
from ingest_hub.tagging import Tagger

KAP_BASE = "https://www.kap.org.tr"

RSS_SAMPLE = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Sample</title>
    <item>
      <title>Fed holds rates steady</title>
      <link>https://example.com/fed</link>
      <description>Policy unchanged</description>
      <pubDate>Mon, 15 Jan 2024 10:00:00 GMT</pubDate>
      <guid>fed-1</guid>
      <category>Economy</category>
    </item>
    <item>
      <title>Entry without link</title>
    </item>
  </channel>
</rss>
"""

ATOM_SAMPLE = """<?xml version="1.0" encoding="ISO-8859-1" ?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Latest Filings</title>
  <entry>
    <title>8-K - ACME CORP (0000123456) (Filer)</title>
    <link rel="alternate" type="text/html" href="https://www.sec.gov/Archives/edgar/data/123456/0001.htm"/>
    <summary type="html">Current report</summary>
    <updated>2024-01-15T16:30:00-05:00</updated>
    <id>urn:tag:sec.gov,2008:accession-number=0001</id>
  </entry>
</feed>
"""


# -------------------- RSS / Atom --------------------

def test_parse_rss_skips_entries_without_link():
    entries = parse_feed(RSS_SAMPLE, "sample")
    assert len(entries) == 1
    e = entries[0]
    assert e.title == "Fed holds rates steady"
    assert e.link == "https://example.com/fed"
    assert e.description == "Policy unchanged"
    assert e.guid == "fed-1"
    assert e.categories == ["Economy"]
    assert e.published == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def test_parse_atom_uses_updated_time():
    entries = parse_feed(ATOM_SAMPLE, "sec")
    assert len(entries) == 1
    assert entries[0].link.startswith("https://www.sec.gov/Archives/")
    assert entries[0].published == datetime(2024, 1, 15, 21, 30, tzinfo=timezone.utc)


def test_malformed_feed_returns_empty():
    assert parse_feed("this is definitely not a feed", "broken") == []
    assert parse_feed("", "empty") == []


# -------------------- SEC --------------------

@pytest.mark.parametrize("title,expected", [
    ("8-K - ACME CORP (0000123456)", "8-K"),
    ("10-Q - Widgets Inc (0000000042)", "10-Q"),
    ("4 - Jane Doe (0001234567)", "4"),
    ("SC 13G - Fund LP (0009999999)", "13G"),
    ("DEF 14A - Big Co (0000000001)", "DEF 14A"),
    ("NT 10-D - Trust (0000000002)", "OTHER"),
])
def test_extract_filing_type(title, expected):
    assert extract_filing_type(title).type == expected


def test_extract_filing_company_and_ticker():
    info = extract_filing_type("8-K - ACME CORP (0000123456)")
    assert info.company_name == "ACME CORP"
    assert info.cik == "0000123456"
    assert extract_filing_type("8-K - TESLA INC (TSLA) (0001318605)").ticker == "TSLA"
    assert extract_filing_type("").type == "OTHER"


def test_filing_tags():
    assert filing_tags("8-K") == ["sec-filing", "earnings"]
    assert filing_tags("4") == ["sec-filing", "insider"]
    assert filing_tags("S-1") == ["sec-filing", "ipo"]
    assert filing_tags("OTHER") == ["sec-filing"]


# -------------------- Google News --------------------

def test_build_google_news_url():
    url = build_google_news_url("tesla stock", hl="tr", gl="TR", ceid="TR:tr")
    assert url == "https://news.google.com/rss/search?q=tesla%20stock&hl=tr&gl=TR&ceid=TR:tr"


def test_extract_source_info():
    info = extract_source_info('<a href="https://reuters.com/story" target="_blank">Reuters</a>')
    assert info == {"name": "Reuters", "original_url": "https://reuters.com/story"}
    assert extract_source_info("") == {"name": "", "original_url": None}


def test_detect_language():
    assert detect_language("https://news.google.com/rss/search?q=x&hl=tr", "") == "tr"
    assert detect_language("https://news.google.com/rss/articles/abc", "Borsa İstanbul yükseldi") == "tr"
    assert detect_language("https://news.google.com/rss/articles/abc", "Stocks rally") == "en"


# -------------------- KAP --------------------

def test_kap_known_keys_take_priority_even_when_empty():
    payload = {"data": [], "results": [{"id": 1, "title": "Ignored"}]}
    assert parse_kap_response(payload, KAP_BASE) == []


def test_kap_unknown_key_with_object_array():
    payload = {"meta": {"total": 1}, "tags": ["x"], "rows": [{"id": 5, "baslik": "Özel Durum Açıklaması"}]}
    items = parse_kap_response(payload, KAP_BASE)
    assert [i.title for i in items] == ["Özel Durum Açıklaması"]
    assert items[0].url == "https://www.kap.org.tr/bildirim/5"


def test_kap_disclosure_fields():
    item = parse_disclosure({
        "disclosureId": 987,
        "title": "Finansal Rapor",
        "link": "/tr/Bildirim/987",
        "publishDate": "15.01.2024 09:30",
        "stockCode": "THYAO",
        "companyName": "Türk Hava Yolları",
    }, KAP_BASE)
    assert item.source_id == "987"
    assert item.url == "https://www.kap.org.tr/tr/Bildirim/987"
    assert item.published_at == datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)
    assert item.stock_code == "THYAO"
    assert item.company_name == "Türk Hava Yolları"


def test_kap_disclosure_without_id_is_dropped():
    assert parse_disclosure({"title": "No id"}, KAP_BASE) is None
    assert parse_disclosure("nope", KAP_BASE) is None


def test_kap_json_text_and_bare_array():
    items = parse_kap_response('[{"id": 1, "title": "A"}, {"id": 2}]', KAP_BASE)
    assert [i.title for i in items] == ["A", UNTITLED]


def test_kap_json_mode_rejects_invalid_payload():
    with pytest.raises(ParseError, match="Invalid JSON response from KAP"):
        parse_kap_response("<html>maintenance</html>", KAP_BASE, response_type="json")


def test_kap_html_table():
    html = """<html><body><table>
      <tr><th>Şirket</th><th>Tarih</th></tr>
      <tr><td><a href="/tr/Bildirim/111">Özel Durum</a></td><td>15.01.2024 10:00</td></tr>
      <tr><td>THYAO</td><td>Duyuru</td></tr>
      <tr><td>single cell</td></tr>
    </table></body></html>"""
    items = parse_kap_response(html, KAP_BASE)
    assert len(items) == 2
    first, second = items
    assert first.title == "Özel Durum"
    assert first.url == "https://www.kap.org.tr/tr/Bildirim/111"
    assert first.source_id == first.url
    assert first.published_at == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    assert second.title == "THYAO"
    assert second.source_id == "html-row-1"
    assert second.url == "https://www.kap.org.tr#row-1"


def test_kap_auto_mode_unknown_text():
    assert parse_kap_response("service unavailable", KAP_BASE) == []
    assert parse_kap_response("{broken", KAP_BASE) == []


def test_is_valid_kap_item():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert is_valid_kap_item(KapItem("1", "Title", "https://kap/1", now))
    assert not is_valid_kap_item(KapItem("1", UNTITLED, "https://kap/1", now))
    assert not is_valid_kap_item(KapItem("", "Title", "https://kap/1", now))


# -------------------- 打标签 --------------------

def test_tagger_matches_cashtags_aliases_and_stems():
    tagger = Tagger(
        aliases={"tesla": "tsla"},
        keywords={"crypto": ["bitcoin"], "rates": ["rate hike"]},
    )
    assert tagger.extract_tickers("Tesla and $AAPL rally") == ["AAPL", "TSLA"]
    assert tagger.extract_tags("Bitcoins surge after rate hikes") == ["crypto", "rates"]
    assert tagger.extract_tags("") == []
