"""
sitemap.xml generation.

Static routes first, then every published product and blog post. A failure
loading products or posts leaves that category out instead of failing the
whole document.
"""
from datetime import datetime
from typing import Callable, List, Optional
from urllib.parse import urljoin
from xml.sax.saxutils import escape

import structlog

from storefront import config
from storefront.blog import get_all_blogs
from storefront.database import now_utc
from storefront.schemas import PRODUCTS

logger = structlog.get_logger(__name__)

SITEMAP_NAMESPACE = "http://www.sitemaps.org/schemas/sitemap/0.9"

STATIC_ROUTES = [
    {"path": "", "changefreq": "daily", "priority": "1.0"},
    {"path": "about", "changefreq": "monthly", "priority": "0.6"},
    {"path": "contact", "changefreq": "monthly", "priority": "0.6"},
    {"path": "products", "changefreq": "weekly", "priority": "0.8"},
    {"path": "blog", "changefreq": "weekly", "priority": "0.7"},
    {"path": "checkout", "changefreq": "weekly", "priority": "0.5"},
]


class UrlBuilder:
    def __init__(self, base_url: str = None, base_path: str = None, trailing_slash: bool = None):
        base_url = base_url if base_url is not None else config.SITE_BASE_URL
        base_path = base_path if base_path is not None else config.SITE_BASE_PATH
        self.base = urljoin(base_url, base_path or "/")
        self.trailing_slash = config.SITE_TRAILING_SLASH if trailing_slash is None else trailing_slash

    def format(self, path: str = "") -> str:
        normalized = path.lstrip("/")
        url = urljoin(self.base, normalized)
        if self.trailing_slash:
            return url if url.endswith("/") else f"{url}/"
        if len(url) > 1 and url.endswith("/"):
            return url[:-1]
        return url


def _lastmod(doc: dict, fallback: str) -> str:
    value = doc.get("updated_at") or doc.get("created_at")
    if isinstance(value, datetime):
        return value.isoformat()
    return value or fallback


def build_url_entry(loc: str, lastmod: str, changefreq: str, priority: str) -> str:
    return (
        "\n  <url>"
        f"\n    <loc>{escape(loc)}</loc>"
        f"\n    <lastmod>{escape(lastmod)}</lastmod>"
        f"\n    <changefreq>{changefreq}</changefreq>"
        f"\n    <priority>{priority}</priority>"
        "\n  </url>"
    )


def _published_products(catalog) -> List[dict]:
    return catalog.find(
        PRODUCTS,
        {"published": True},
        limit=1000,
        sort="-updated_at",
        select={"slug": True, "updated_at": True, "created_at": True},
        run_hooks=False,
    )["docs"]


def _entries(load: Callable[[], List[dict]], prefix: str, priority: str, urls: UrlBuilder, fallback: str, label: str) -> List[str]:
    try:
        docs = load()
    except Exception as exc:
        logger.error("Failed to build sitemap entries", category=label, error=str(exc))
        return []
    return [
        build_url_entry(urls.format(f"{prefix}/{doc['slug']}"), _lastmod(doc, fallback), "weekly", priority)
        for doc in docs
        if isinstance(doc.get("slug"), str) and doc["slug"]
    ]


def build_sitemap(catalog, urls: Optional[UrlBuilder] = None, now: Optional[datetime] = None) -> str:
    urls = urls or UrlBuilder()
    timestamp = (now or now_utc()).isoformat()

    entries = [
        build_url_entry(urls.format(route["path"]), timestamp, route["changefreq"], route["priority"])
        for route in STATIC_ROUTES
    ]
    entries += _entries(lambda: _published_products(catalog), "products", "0.9", urls, timestamp, "products")
    entries += _entries(lambda: get_all_blogs(catalog), "blog", "0.7", urls, timestamp, "blogs")

    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<urlset xmlns="{SITEMAP_NAMESPACE}">{"".join(entries)}\n</urlset>'
    )
