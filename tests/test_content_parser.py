"""Tests for content_parser module."""

from src.content_parser import (
    clean_note_subject,
    extract_sender_email,
    extract_sender_name,
    html_to_plain_text,
    parse_newsletter_html,
    substack_newsletter_url,
)
from src.models import LinkType


def test_parse_strips_scripts_styles_and_footer():
    html = (
        "<html><head><title>T</title><style>.x{}</style></head><body>"
        "<script>alert('x')</script><p>Real content</p>"
        '<footer><a href="https://example.com/2026/03/footer-story">Footer</a></footer>'
        "</body></html>"
    )
    parsed = parse_newsletter_html(html)
    assert parsed.plain_text == "Real content"
    assert parsed.links == []


def test_parse_collapses_whitespace():
    parsed = parse_newsletter_html("<p>Hello\n\n   world</p><p>again</p>")
    assert parsed.plain_text == "Hello world again"


def test_parse_extracts_and_categorizes_links():
    html = (
        '<p><a href="https://example.com/2026/03/big-story?utm_source=nl">The big story</a></p>'
        '<p><a href="https://twitter.com/newsletter">Twitter</a></p>'
        '<p><a href="https://example.com/unsubscribe">Leave</a></p>'
        '<p><a href="mailto:hi@example.com">Mail us</a></p>'
        '<p><a href="#top">Top</a></p>'
    )
    parsed = parse_newsletter_html(html)
    by_url = {link.url: link for link in parsed.links}

    assert set(by_url) == {
        "https://example.com/2026/03/big-story",
        "https://twitter.com/newsletter",
        "https://example.com/unsubscribe",
    }
    assert by_url["https://example.com/2026/03/big-story"].link_type == LinkType.ARTICLE
    assert by_url["https://example.com/2026/03/big-story"].text == "The big story"
    assert by_url["https://twitter.com/newsletter"].link_type == LinkType.SOCIAL
    assert by_url["https://example.com/unsubscribe"].link_type == LinkType.UNSUBSCRIBE
    assert [link.url for link in parsed.article_links] == ["https://example.com/2026/03/big-story"]


def test_parse_deduplicates_links_after_cleaning():
    html = (
        '<a href="https://example.com/2026/03/story?utm_source=a">First</a>'
        '<a href="https://example.com/2026/03/story?utm_source=b">Second</a>'
    )
    parsed = parse_newsletter_html(html)
    assert len(parsed.links) == 1
    assert parsed.links[0].text == "First"


def test_parse_uses_url_when_link_has_no_text():
    parsed = parse_newsletter_html('<a href="https://example.com/2026/03/story"><img src="x.png"></a>')
    assert parsed.links[0].text == "https://example.com/2026/03/story"


def test_parse_empty_body():
    parsed = parse_newsletter_html("")
    assert parsed.plain_text == ""
    assert parsed.links == []


def test_html_to_plain_text_prefers_text_body():
    assert html_to_plain_text("<p>HTML</p>", "Plain\r\nbody") == "Plain\nbody"


def test_html_to_plain_text_converts_blocks_and_entities():
    html = "<div>First line</div><p>Caf&eacute; &amp; more</p><script>var x;</script><br>"
    assert html_to_plain_text(html) == "First line\n\nCafé & more"


def test_html_to_plain_text_ignores_blank_text_body():
    assert html_to_plain_text("<p>From HTML</p>", "   \n") == "From HTML"


def test_clean_note_subject():
    assert clean_note_subject("Great idea +dailyrepo", "+dailyrepo", "Note") == "Great idea"
    assert clean_note_subject("+DailyRepo: Read later", "+dailyrepo", "Note") == "Read later"
    assert clean_note_subject("+dailyrepo", "+dailyrepo", "E-Mail Notiz") == "E-Mail Notiz"


def test_extract_sender_email():
    assert extract_sender_email('"Morning Brew" <News@MorningBrew.com>') == "news@morningbrew.com"
    assert extract_sender_email("plain@example.com") == "plain@example.com"


def test_extract_sender_name_with_quoted():
    assert extract_sender_name('"Morning Brew" <news@morningbrew.com>') == "Morning Brew"


def test_extract_sender_name_with_unquoted():
    assert extract_sender_name("TLDR <tldr@example.com>") == "TLDR"


def test_extract_sender_name_email_only():
    assert extract_sender_name("news@morningbrew.com") == "news"


def test_substack_newsletter_url():
    assert substack_newsletter_url("platformer@substack.com") == "https://platformer.substack.com"
    assert substack_newsletter_url("platformer+digest@substack.com") == "https://platformer.substack.com"
    assert substack_newsletter_url("news@example.com") is None
