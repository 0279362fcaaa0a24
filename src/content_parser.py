"""HTML email content parsing — plain text and categorized links from newsletters."""

import html as html_lib
import logging
import re

from bs4 import BeautifulSoup

from src.exceptions import ContentParseError
from src.link_classifier import categorize_link, clean_url
from src.models import ExtractedLink, ParsedNewsletter, sender_address

logger = logging.getLogger(__name__)

# Elements to strip from newsletter HTML before reading its text
STRIP_SELECTORS = "script, style, head, nav, footer, .footer, .unsubscribe"

# Block-level tags that become line breaks in note bodies
BLOCK_TAG_PATTERN = re.compile(
    r"</?(p|div|br|h[1-6]|li|tr|blockquote|section|article)[^>]*>", re.IGNORECASE
)
SCRIPT_STYLE_PATTERN = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
TAG_PATTERN = re.compile(r"<[^>]+>")

SUBSTACK_SENDER_PATTERN = re.compile(r"^([a-z0-9-]+)(\+[^@]*)?@substack\.com$", re.IGNORECASE)


def parse_newsletter_html(html: str) -> ParsedNewsletter:
    """Parse a newsletter body into plain text and categorized links.

    Args:
        html: Raw HTML body of the email.

    Returns:
        ParsedNewsletter with whitespace-collapsed text and de-duplicated links.
    """
    try:
        soup = BeautifulSoup(html or "", "lxml")
    except Exception as e:
        raise ContentParseError(f"Failed to parse newsletter HTML: {e}") from e

    for tag in soup.select(STRIP_SELECTORS):
        tag.decompose()

    links = _extract_links(soup)

    root = soup.body or soup
    plain_text = re.sub(r"\s+", " ", root.get_text(" ")).strip()

    return ParsedNewsletter(plain_text=plain_text, links=links)


def _extract_links(soup: BeautifulSoup) -> list[ExtractedLink]:
    links: list[ExtractedLink] = []
    seen: set[str] = set()

    for a_tag in soup.find_all("a", href=True):
        href = a_tag["href"].strip()
        if href.startswith(("mailto:", "tel:", "#")):
            continue

        url = clean_url(href)
        if not url or url in seen:
            continue
        seen.add(url)

        text = a_tag.get_text(" ", strip=True)
        links.append(ExtractedLink(url=url, text=text or url, link_type=categorize_link(url, text)))

    return links


def html_to_plain_text(html_body: str, text_body: str = "") -> str:
    """Convert an email body to readable plain text.

    The text/plain part wins when present. Otherwise script and style blocks
    are dropped, block tags become line breaks, remaining tags are stripped
    and entities decoded.
    """
    if text_body and text_body.strip():
        return _collapse_blank_lines(text_body)

    text = SCRIPT_STYLE_PATTERN.sub("", html_body or "")
    text = BLOCK_TAG_PATTERN.sub("\n", text)
    text = TAG_PATTERN.sub("", text)
    text = html_lib.unescape(text)
    return _collapse_blank_lines(text)


def _collapse_blank_lines(text: str) -> str:
    lines = [line.strip() for line in text.replace("\r\n", "\n").split("\n")]
    text = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def clean_note_subject(subject: str, tag: str, default: str) -> str:
    """Remove the note tag from a subject ("Idea +dailyrepo" -> "Idea")."""
    cleaned = re.sub(re.escape(tag), "", subject or "", flags=re.IGNORECASE).strip()
    cleaned = re.sub(r"^[-:\s]+", "", cleaned).strip()
    return cleaned or default


def extract_sender_email(sender: str) -> str:
    """Return the lower-cased address from a From header value."""
    return sender_address(sender)


def extract_sender_name(sender: str) -> str:
    """Extract a clean sender name from email From header.

    Args:
        sender: Raw From header value like '"Morning Brew" <email@example.com>'.

    Returns:
        Clean sender name, or the address' local part when no name is given.
    """
    match = re.match(r'^"?([^"<]+)"?\s*<', sender or "")
    if match:
        return match.group(1).strip()
    address = extract_sender_email(sender)
    return address.split("@")[0] if "@" in address else address


def substack_newsletter_url(sender_email: str) -> str | None:
    """Map a substack sender ("name+tag@substack.com") to its publication URL."""
    match = SUBSTACK_SENDER_PATTERN.match((sender_email or "").strip())
    if not match:
        return None
    return f"https://{match.group(1).lower()}.substack.com"
