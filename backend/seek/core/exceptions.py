"""Custom exception classes for the scraping pipeline."""


class SeekException(Exception):
    """Base exception for all Seek errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(SeekException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class ConfigurationError(SeekException):
    """Raised when a retailer recipe or scraper registration is invalid."""


class ScraperError(SeekException):
    """Raised when a retailer run cannot proceed."""

    def __init__(self, retailer: str, message: str):
        self.retailer = retailer
        super().__init__(f"Scraper error for {retailer}: {message}")


class NavigationError(ScraperError):
    """Raised when a page could not be loaded within the retry ceiling."""

    def __init__(self, retailer: str, url: str, attempts: int):
        self.url = url
        self.attempts = attempts
        super().__init__(retailer, f"navigation to {url} failed after {attempts} attempts")
