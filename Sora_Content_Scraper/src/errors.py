class ScraperError(Exception):
    """Base class for errors raised by the scraper and prober."""


class ConfigError(ScraperError):
    """Missing or invalid configuration (endpoint, credentials, paths)."""


class KeyspaceExhaustedError(ScraperError):
    """Not enough untried codes left to fill a batch."""


class PageCollectionError(ScraperError):
    """The root item could not be fetched or had an unexpected shape."""


class AssetDownloadError(ScraperError):
    """The media server answered with a non 2xx/3xx status."""

    def __init__(self, url: str, status: int, reason: str = ""):
        self.url = url
        self.status = status
        super().__init__(f"Failed to download video: {status} {reason}".strip())
