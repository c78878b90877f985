"""robots.txt-compliant scraping fallback."""

from .fallback import ScrapeTarget, ScrapingFallback

__all__ = ["ScrapeTarget", "ScrapingFallback"]
