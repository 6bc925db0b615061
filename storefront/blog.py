"""Blog reads for the listing pages and the sitemap."""
from typing import List, Optional

import structlog

from storefront.schemas import BLOGS

logger = structlog.get_logger(__name__)


def get_blogs(catalog, limit: int = 10) -> dict:
    return catalog.find(BLOGS, {"published": True}, limit=limit, sort="-published_date")


def get_blog(catalog, slug: str) -> Optional[dict]:
    docs = catalog.find(BLOGS, {"slug": slug, "published": True}, limit=1)["docs"]
    return docs[0] if docs else None


def get_all_blogs(catalog) -> List[dict]:
    try:
        return catalog.find(BLOGS, {"published": True}, limit=1000, sort="-updated_at")["docs"]
    except Exception as exc:
        logger.error("Error fetching blogs for sitemap", error=str(exc))
        return []
