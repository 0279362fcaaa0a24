"""Decide whether a newsletter link points at a genuine article.

Rules are kept as ordered data so each one can be tested on its own and new
ones can be added without touching the ingestion code. Both predicates are
pure functions; the ingestion run applies them as an AND filter over links
tagged ``article``, and applies :func:`is_likely_article_url` a second time
to the final URL once redirects have been followed.
"""

import logging
import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from src.models import ExtractedLink, LinkType

logger = logging.getLogger(__name__)

# (rule name, pattern) — any match rejects the URL. Checked in order.
URL_REJECT_RULES: list[tuple[str, re.Pattern]] = [
    ("media_file", re.compile(r"\.(pdf|jpe?g|png|gif|webp|mp4|mp3|zip|exe|dmg)(\?|$)")),
    ("video_host", re.compile(r"(youtube\.com|youtu\.be|vimeo\.com)")),
    ("social_post", re.compile(r"(twitter|x)\.com/\w+/status|linkedin\.com/(posts|feed|in)/")),
    ("social_share", re.compile(
        r"(twitter\.com/intent|x\.com/intent|facebook\.com/sharer|linkedin\.com/share"
        r"|reddit\.com/submit|wa\.me/|api\.whatsapp\.com/send|t\.me/share)"
    )),
    ("social_host", re.compile(
        r"(facebook\.com|fb\.com|instagram\.com|tiktok\.com|threads\.net|linkedin\.com)"
    )),
    ("mail_or_phone", re.compile(r"^(mailto|tel):")),
    ("bare_anchor", re.compile(r"#$")),
    ("unsubscribe", re.compile(r"(unsubscribe|abmelden|abbestellen|opt-?out)")),
    ("manage_preferences", re.compile(r"(manage.preferences|email.preferences|/preferences)")),
    ("view_in_browser", re.compile(r"(view.in.browser|view.online|webversion|web-version)")),
    ("account_path", re.compile(
        r"/(login|log-in|signin|sign-in|signup|sign-up|register|account|profile|settings"
        r"|auth|cart|checkout)(/|\?|$)"
    )),
    ("subscribe_path", re.compile(r"/(subscribe|subscription)(/|\?|$)")),
    ("app_link", re.compile(r"/(app|app-link)(/|\?|$)|introducing-the-substack-app")),
    ("survey", re.compile(r"(survey|/form(/|\?|$)|form\.typeform)")),
    ("non_article_domain", re.compile(
        r"(typeform\.com|forms\.gle|surveymonkey\.com|docs\.google\.com|drive\.google\.com"
        r"|calendly\.com|zoom\.us|teams\.microsoft\.com|slack\.com|discord\.com|discord\.gg"
        r"|apps\.apple\.com|play\.google\.com)"
    )),
    ("giveaway", re.compile(r"win-\$|win \$")),
]

# Redirect/tracking hosts that carry no article information without a path.
TRACKING_HOST_PATTERN = re.compile(
    r"^(click|clicks|links?|trk|track|tracking|email|e|go|r|t)\."
    r"|list-manage\.com$|mailchi\.mp$|sendgrid\.net$|convertkit-mail\d*\.com$"
    r"|beehiiv\.com$|mlsend\.com$|hubspotlinks\.com$|t\.co$|bit\.ly$|lnkd\.in$"
)

# Shapes of typical article permalinks
ARTICLE_PATH_PATTERNS: list[re.Pattern] = [
    re.compile(r"/\d{4}/\d{2}/"),
    re.compile(r"/articles?/"),
    re.compile(r"/posts?/"),
    re.compile(r"/blog/"),
    re.compile(r"/news/"),
    re.compile(r"/story/"),
    re.compile(r"/p/[a-z0-9-]+"),
    re.compile(r"-[a-z0-9]{6,}$"),
]

SOCIAL_DOMAINS = [
    "twitter.com", "x.com",
    "facebook.com", "fb.com",
    "instagram.com",
    "linkedin.com",
    "youtube.com", "youtu.be",
    "tiktok.com",
    "threads.net",
    "reddit.com",
]

UNSUBSCRIBE_PATTERNS = [
    "unsubscribe",
    "abmelden",
    "opt-out",
    "optout",
    "manage preferences",
    "email preferences",
    "einstellungen",
    "abbestellen",
]

# Link text that never labels an article, in the languages our senders use.
# Single words only match the whole text ("Share prices fall" is a headline).
NON_ARTICLE_LINK_WORDS = [
    "unsubscribe", "abmelden", "abbestellen", "désabonner", "opt out", "opt-out",
    "share", "teilen", "tweet", "forward", "weiterleiten",
    "subscribe", "abonnieren", "anmelden", "upgrade", "like", "comment",
    "kommentieren", "restack", "advertise", "sponsor", "werben",
    "datenschutz", "impressum", "terms", "kontakt", "einstellungen",
    "here", "hier", "mehr", "more", "webversion",
]

# Multi-word phrases also match as the leading part of the text.
NON_ARTICLE_LINK_PHRASES = [
    "view in browser", "view online", "view this email", "read online",
    "read in app", "open in app", "in der app lesen", "im browser ansehen",
    "online ansehen", "se désabonner", "darse de baja",
    "share this", "share on", "forward to a friend", "an freunde weiterleiten",
    "manage preferences", "update preferences", "email preferences",
    "newsletter-einstellungen", "update your profile",
    "subscribe now", "subscribe to", "jetzt abonnieren", "sign up", "upgrade to paid",
    "follow us", "folge uns", "advertise with us", "sponsor this", "werben sie",
    "privacy policy", "terms of service", "contact us",
    "download the app", "get the app", "click here", "hier klicken",
]

# Fragments rejected wherever they occur in the link text.
NON_ARTICLE_LINK_FRAGMENTS = [
    "unsubscribe", "abmelden", "abbestellen", "view in browser", "im browser",
    "manage preferences", "email preferences",
]

TRACKING_PARAMS = {
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "mc_cid", "mc_eid",
    "ref", "source",
    "fbclid", "gclid",
    "__s", "_hsenc", "_hsmi",
}

_TRAILING_DECORATION = re.compile(r"[\s→»>›.:!\-–—]+$")


def _normalize_text(text: str) -> str:
    text = re.sub(r"\s+", " ", text or "").strip().lower()
    return _TRAILING_DECORATION.sub("", text)


def url_reject_reason(url: str) -> str | None:
    """Return the name of the first rule rejecting ``url``, or None."""
    url_lower = (url or "").strip().lower()
    if not url_lower:
        return "empty"

    for name, pattern in URL_REJECT_RULES:
        if pattern.search(url_lower):
            return name

    parsed = urlparse(url_lower)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return "not_http"

    host = parsed.hostname.removeprefix("www.")
    if TRACKING_HOST_PATTERN.search(host) and parsed.path in ("", "/") and not parsed.query:
        return "tracking_host_without_path"

    return None


def is_likely_article_url(url: str) -> bool:
    """Check if a URL is likely to be an article (not social, video, admin, etc.)."""
    return url_reject_reason(url) is None


def is_non_article_link_text(link_text: str) -> bool:
    """Check if link text is a generic non-article phrase ("Unsubscribe", "Share", ...)."""
    text = _normalize_text(link_text)
    if not text:
        return False

    for fragment in NON_ARTICLE_LINK_FRAGMENTS:
        if fragment in text:
            return True

    if text in NON_ARTICLE_LINK_WORDS:
        return True

    for phrase in NON_ARTICLE_LINK_PHRASES:
        if text == phrase or text.startswith(phrase + " "):
            return True

    return False


def clean_url(href: str) -> str | None:
    """Normalize a link target and drop tracking parameters.

    Returns None for anything that is not an absolute http(s) URL.
    """
    href = (href or "").strip()
    if href.startswith("//"):
        href = "https:" + href

    try:
        parsed = urlparse(href)
    except ValueError:
        return None

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None

    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key.lower() not in TRACKING_PARAMS
    ]
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))


def _is_social_host(url: str) -> bool:
    hostname = (urlparse(url).hostname or "").lower().removeprefix("www.")
    return any(hostname == domain or hostname.endswith("." + domain) for domain in SOCIAL_DOMAINS)


def _looks_like_article(url: str) -> bool:
    if not is_likely_article_url(url):
        return False

    url_lower = url.lower()
    if any(pattern.search(url_lower) for pattern in ARTICLE_PATH_PATTERNS):
        return True

    # Anything with a meaningful path beyond the homepage
    path = urlparse(url).path
    return len(path) > 10


def categorize_link(url: str, text: str) -> LinkType:
    """Categorize a link based on its URL and anchor text."""
    url_lower = url.lower()
    text_lower = (text or "").lower()

    for pattern in UNSUBSCRIBE_PATTERNS:
        if pattern in url_lower or pattern in text_lower:
            return LinkType.UNSUBSCRIBE

    if _is_social_host(url):
        return LinkType.SOCIAL

    if _looks_like_article(url):
        return LinkType.ARTICLE

    return LinkType.OTHER


def filter_article_links(links: list[ExtractedLink]) -> list[ExtractedLink]:
    """Keep article-typed links that pass both the URL and link-text checks."""
    kept: list[ExtractedLink] = []
    for link in links:
        if link.link_type != LinkType.ARTICLE:
            continue
        if not is_likely_article_url(link.url):
            logger.debug("Filtered out by URL: %s", link.url[:80])
            continue
        if is_non_article_link_text(link.text):
            logger.debug("Filtered out by link text: '%s'", link.text[:50])
            continue
        kept.append(link)
    return kept
