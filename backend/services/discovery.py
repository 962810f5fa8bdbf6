"""
Discovery Service - finding candidate camp websites and recovering moved URLs.

Two halves:

1. Candidate discovery - search results and directory pages are scored,
   deduplicated by domain/URL and stored as DiscoveredSource rows for
   admin review. Approved candidates are promoted to an inactive orphan
   ScrapeSource plus a scraper development request.

2. URL resolution - when a source's URL stops returning camp content, try
   the parent paths, a list of common camp paths, then the sitemap.

Fetching never happens inside an open write: resolve_source_url collects
all check results first and persists them at the end.
"""
import logging
import re
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from constants import CAMP_SIGNAL_KEYWORDS, KNOWN_DIRECTORIES
from models.database import db
from scrapers.content import camp_content_signals, has_camp_content
from scrapers.fetcher import FetchError, PageFetcher
from scrapers.models import DiscoveredSource, ScrapeSource
from services.dev_requests import request_scraper_development
from services.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from services.source_health import create_alert_if_not_exists
from services.sources import create_source, record_url_check, suggest_url_update
from services.validation import is_valid_url

logger = logging.getLogger(__name__)

SKIP_PATTERNS = [
    re.compile(r"facebook\.com", re.I),
    re.compile(r"twitter\.com", re.I),
    re.compile(r"instagram\.com", re.I),
    re.compile(r"linkedin\.com", re.I),
    re.compile(r"youtube\.com", re.I),
    re.compile(r"wikipedia\.org", re.I),
    re.compile(r"yelp\.com", re.I),
    re.compile(r"tripadvisor", re.I),
    re.compile(r"google\.(com|maps)", re.I),
    re.compile(r"pinterest\.com", re.I),
    re.compile(r"reddit\.com", re.I),
    re.compile(r"indeed\.com", re.I),
    re.compile(r"glassdoor\.com", re.I),
    re.compile(r"\.(pdf|doc|docx|xls|xlsx)$", re.I),
]

# Links on directory pages that never lead to a camp listing
LINK_SKIP_PATTERNS = [
    re.compile(r"\.(pdf|doc|docx|xls|xlsx|ppt|pptx|zip|jpg|jpeg|png|gif|svg|css|js)$", re.I),
    re.compile(r"facebook\.com|twitter\.com|instagram\.com|linkedin\.com|youtube\.com", re.I),
    re.compile(r"login|signin|signup|account|cart|checkout|privacy|terms|contact|about$", re.I),
]

CAMP_PATH_PATTERNS = [
    re.compile(r"/camps?/?$", re.I),
    re.compile(r"/summer-?camps?/?$", re.I),
    re.compile(r"/programs?/?$", re.I),
    re.compile(r"/classes?/?$", re.I),
    re.compile(r"/education/?$", re.I),
    re.compile(r"/kids?/?$", re.I),
    re.compile(r"/youth/?$", re.I),
]

COMMON_CAMP_PATHS = [
    "/camps",
    "/summer-camps",
    "/summer",
    "/programs",
    "/classes",
    "/registration",
    "/register",
    "/youth",
    "/kids",
]

SITEMAP_CAMP_URL = re.compile(r"camp|summer|program|class|register", re.I)

REVIEWABLE_STATUSES = {"pending_analysis", "pending_review"}


# =============================================================================
# URL heuristics
# =============================================================================

def extract_domain(url: str) -> str:
    """Hostname without a leading www. ('' when the URL has no host)."""
    host = urlparse(url or "").hostname or ""
    return re.sub(r"^www\.", "", host.lower())


def should_skip_url(url: str) -> bool:
    return any(pattern.search(url or "") for pattern in SKIP_PATTERNS)


def is_known_directory(domain: str) -> bool:
    return any(directory in (domain or "") for directory in KNOWN_DIRECTORIES)


def score_camp_url(url: str, title: str = "", year: int = None) -> int:
    """
    Camp-relatedness score for a search result.

    +10 per camp keyword in URL or title, +5 for .org/.edu, +5 when the
    current or next year is mentioned.
    """
    year = year or datetime.utcnow().year
    combined = f"{url} {title or ''}".lower()

    score = sum(10 for keyword in CAMP_SIGNAL_KEYWORDS if keyword in combined)
    if ".org" in url or ".edu" in url:
        score += 5
    if str(year) in combined or str(year + 1) in combined:
        score += 5
    return score


def _suggested_name(domain: str) -> str:
    stem = re.sub(r"\.(com|org|edu|net|gov|co|io)$", "", domain, flags=re.I)
    return " ".join(word[:1].upper() + word[1:] for word in re.split(r"[.-]", stem) if word)


def organize_directory_links(links: Iterable[Dict[str, str]]) -> List[Dict[str, Any]]:
    """
    Group harvested links by domain and pick the best entry URL per domain.

    Camp-looking paths score +10, shorter URLs are preferred (-len/100) and
    links with descriptive text get +2. The best link's text becomes the
    suggested organization name when it is a reasonable length.
    """
    by_domain: "OrderedDict[str, List[Dict[str, str]]]" = OrderedDict()
    for link in links:
        domain = link.get("domain") or extract_domain(link["url"])
        by_domain.setdefault(domain, []).append(link)

    organizations = []
    for domain, domain_links in by_domain.items():
        scored = []
        for link in domain_links:
            score = 10 if any(p.search(link["url"]) for p in CAMP_PATH_PATTERNS) else 0
            score -= len(link["url"]) / 100
            text = (link.get("text") or "").strip()
            if len(text) > 3:
                score += 2
            scored.append((score, link["url"], text))
        scored.sort(key=lambda item: item[0], reverse=True)

        best_text = scored[0][2]
        name = best_text if 3 < len(best_text) < 50 else _suggested_name(domain)
        organizations.append({
            "domain": domain,
            "suggested_name": name,
            "best_url": scored[0][1],
            "alternate_urls": [url for _, url, _ in scored[1:]],
        })

    organizations.sort(key=lambda org: org["domain"])
    return organizations


def harvest_links(html: str, base_url: str, domain_filter: str = None,
                  link_pattern: str = None) -> List[Dict[str, str]]:
    """
    Collect outbound http(s) links from a directory page.

    Args:
        domain_filter: keep only links whose domain contains this value
        link_pattern: keep only links whose URL or text matches this regex
                      (ignored when it does not compile)
    """
    pattern = None
    if link_pattern:
        try:
            pattern = re.compile(link_pattern, re.I)
        except re.error:
            logger.debug(f"Ignoring invalid link pattern {link_pattern!r}")

    if domain_filter:
        domain_filter = re.sub(r"^www\.", "", domain_filter)

    soup = BeautifulSoup(html or "", "html.parser")
    seen = set()
    links = []
    for anchor in soup.find_all("a", href=True):
        url = urljoin(base_url, anchor["href"].strip()).split("#")[0]
        if not is_valid_url(url) or url in seen:
            continue
        text = anchor.get_text(" ", strip=True)
        domain = extract_domain(url)

        if domain_filter and domain_filter not in domain:
            continue
        if pattern is not None and not (pattern.search(url) or pattern.search(text)):
            continue
        if any(p.search(url) for p in LINK_SKIP_PATTERNS):
            continue

        seen.add(url)
        links.append({"url": url, "text": text, "domain": domain})

    links.sort(key=lambda link: link["domain"])
    return links


# =============================================================================
# Discovered sources
# =============================================================================

def get_discovered_source(discovered_id: int) -> DiscoveredSource:
    discovered = db.session.get(DiscoveredSource, discovered_id)
    if discovered is None:
        raise NotFoundError(f"Discovered source {discovered_id} not found")
    return discovered


def record_discovered_source(city_id: int, url: str, title: str = None, snippet: str = None,
                             discovery_query: str = None, commit: bool = True) -> Optional[DiscoveredSource]:
    """
    Store a candidate URL. Returns None when the URL is already known.
    """
    if not is_valid_url(url):
        raise ValidationError("Discovered URL must be http(s)", field="url")
    if DiscoveredSource.query.filter_by(url=url).first() is not None:
        return None

    discovered = DiscoveredSource(
        city_id=city_id,
        url=url,
        domain=extract_domain(url),
        title=title,
        snippet=snippet,
        discovery_query=discovery_query,
        score=score_camp_url(url, title or ""),
        status="pending_analysis",
    )
    db.session.add(discovered)
    if commit:
        db.session.commit()
    return discovered


def process_search_results(city_id: int, query: str, results: List[Dict[str, str]]) -> Dict[str, Any]:
    """
    Record search hits for a city, one per domain.

    Results on skip-listed sites are dropped; hits that score zero are kept
    only for known camp directories.
    """
    seen_domains = set()
    skipped_domains = []
    created = []

    for result in results:
        url = result.get("url") or ""
        domain = extract_domain(url)
        if not domain or should_skip_url(url):
            continue
        if domain in seen_domains:
            skipped_domains.append(domain)
            continue
        seen_domains.add(domain)

        if score_camp_url(url, result.get("title") or "") <= 0 and not is_known_directory(domain):
            continue

        discovered = record_discovered_source(
            city_id, url, title=result.get("title"), snippet=result.get("snippet"),
            discovery_query=query, commit=False,
        )
        if discovered is not None:
            created.append(discovered)

    if created:
        create_alert_if_not_exists(
            None, "new_sources_pending", "info",
            f"{len(created)} new camp sources discovered for review",
        )
    db.session.commit()
    logger.info(f"Discovery query {query!r}: {len(results)} results, {len(created)} new sources")
    return {
        "success": True,
        "results_count": len(results),
        "new_sources_found": len(created),
        "skipped_domains": skipped_domains,
    }


def review_discovered_source(discovered: DiscoveredSource, status: str, reviewed_by: str) -> DiscoveredSource:
    """Approve, reject or mark duplicate. Only pending candidates can be reviewed."""
    if status not in ("approved", "rejected", "duplicate"):
        raise ValidationError(f"Invalid review status: {status}", field="status")
    if discovered.status not in REVIEWABLE_STATUSES:
        raise InvalidTransitionError("discovered source", discovered.status, status)

    discovered.status = status
    discovered.reviewed_by = reviewed_by
    discovered.reviewed_at = datetime.utcnow()
    db.session.commit()
    return discovered


def promote_discovered_source(discovered: DiscoveredSource, requested_by: str = None) -> ScrapeSource:
    """
    Turn an approved candidate into an inactive orphan source and file a
    development request for it.
    """
    if discovered.status != "approved":
        raise InvalidTransitionError("discovered source", discovered.status, "scraper_generated")
    if ScrapeSource.query.filter_by(url=discovered.url).first() is not None:
        raise ConflictError(f"A scrape source for {discovered.url} already exists", code="SOURCE_EXISTS")

    name = discovered.title or _suggested_name(discovered.domain)
    source = create_source(name=name, url=discovered.url, city_id=discovered.city_id, commit=False)
    db.session.flush()
    request_scraper_development(
        source_name=name,
        source_url=discovered.url,
        city_id=discovered.city_id,
        source_id=source.id,
        request_type="new",
        notes=f"Promoted from discovery (query: {discovered.discovery_query or 'n/a'})",
        requested_by=requested_by,
        commit=False,
    )
    discovered.status = "scraper_generated"
    discovered.scrape_source_id = source.id
    db.session.commit()
    logger.info(f"Promoted discovered source {discovered.id} to scrape source {source.id}")
    return source


def list_discovered_sources(status: Optional[str] = None, city_id: Optional[int] = None,
                            limit: int = 100) -> List[DiscoveredSource]:
    query = DiscoveredSource.query
    if status:
        query = query.filter(DiscoveredSource.status == status)
    if city_id is not None:
        query = query.filter(DiscoveredSource.city_id == city_id)
    return query.order_by(DiscoveredSource.score.desc(), DiscoveredSource.id.asc()).limit(limit).all()


# =============================================================================
# URL resolution
# =============================================================================

def parent_urls(url: str) -> List[str]:
    parsed = urlparse(url)
    parts = [p for p in parsed.path.split("/") if p]
    origin = f"{parsed.scheme}://{parsed.netloc}"
    urls = []
    while parts:
        parts.pop()
        if parts:
            urls.append(f"{origin}/{'/'.join(parts)}")
    return urls


def common_camp_urls(url: str) -> List[str]:
    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    return [f"{origin}{path}" for path in COMMON_CAMP_PATHS]


def _try_fetch(fetcher: PageFetcher, url: str):
    """(status, html) with status 0 for network errors."""
    try:
        page = fetcher.fetch(url)
    except FetchError as e:
        return e.status_code or 0, None
    return page.status_code, page.html


def fetch_sitemap_urls(fetcher: PageFetcher, url: str) -> List[str]:
    parsed = urlparse(url)
    status, xml = _try_fetch(fetcher, f"{parsed.scheme}://{parsed.netloc}/sitemap.xml")
    if not xml:
        return []
    soup = BeautifulSoup(xml, "html.parser")
    return [loc.get_text(strip=True) for loc in soup.find_all("loc")]


def check_url(url: str, fetcher: PageFetcher = None) -> Dict[str, Any]:
    """Is the URL reachable, and does it look like a camp page?"""
    fetcher = fetcher or PageFetcher()
    status, html = _try_fetch(fetcher, url)
    if html is None:
        return {"valid": False, "has_camp_content": False, "status": status, "content_signals": []}
    signals = camp_content_signals(html)
    return {
        "valid": True,
        "has_camp_content": len(signals) >= 2,
        "status": status,
        "content_signals": signals,
    }


def _find_camp_page(fetcher: PageFetcher, source_url: str):
    for method, candidates in (("parent_fallback", parent_urls(source_url)),
                               ("common_path", common_camp_urls(source_url))):
        for candidate in candidates:
            if candidate.rstrip("/") == source_url.rstrip("/"):
                continue
            status, html = _try_fetch(fetcher, candidate)
            if html is not None and has_camp_content(html):
                return candidate, method, status

    sitemap_match = next(
        (u for u in fetch_sitemap_urls(fetcher, source_url) if SITEMAP_CAMP_URL.search(u)), None
    )
    if sitemap_match:
        status, html = _try_fetch(fetcher, sitemap_match)
        if html is not None and has_camp_content(html):
            return sitemap_match, "sitemap", status
    return None, "failed", None


def resolve_source_url(source: ScrapeSource, fetcher: PageFetcher = None) -> Dict[str, Any]:
    """
    Find a working camp URL for a source.

    Strategies in order: direct, parent_fallback, common_path, sitemap.
    The primary URL's check is appended to url_history; a fallback hit is
    stored as the source's suggested URL (and flags it for rescan).

    Returns:
        {"url": str|None, "method": str, "status": int|None}
    """
    fetcher = fetcher or PageFetcher()
    status, html = _try_fetch(fetcher, source.url)
    direct_ok = html is not None and has_camp_content(html)

    if direct_ok:
        result = {"url": source.url, "method": "direct", "status": status}
    else:
        url, method, found_status = _find_camp_page(fetcher, source.url)
        result = {"url": url, "method": method, "status": found_status}

    check_status = "valid" if direct_ok else ("404" if status == 404 else "error")
    record_url_check(source, source.url, check_status)
    if result["url"] and result["method"] != "direct":
        suggest_url_update(source, result["url"])
    db.session.commit()

    logger.info(f"Resolved URL for source {source.id}: {result['method']} -> {result['url']}")
    return result
