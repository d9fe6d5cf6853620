"""Services composing the pipeline stages."""

from .scrape import ScrapeResult, ScrapeService

__all__ = ["ScrapeResult", "ScrapeService"]
