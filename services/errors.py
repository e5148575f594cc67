from __future__ import annotations


class DividendError(Exception):
    """Base for failures the API maps to a specific status code."""
    status = 500
    error = 'Scraping failed'
    default_message = 'An internal error occurred while fetching data'

    def __init__(self, message: str | None = None, ticker: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.ticker = ticker


class ValidationError(DividendError):
    status = 400
    error = 'Invalid request'
    default_message = 'Invalid ticker symbol format'


class NoDataFound(DividendError):
    status = 404
    error = 'No dividend data found'
    default_message = 'The ticker may not exist or may not pay dividends'


class FetchTimeout(DividendError):
    status = 408
    error = 'Request timeout'
    default_message = 'The request took too long to complete'


class ExtractionTimeout(FetchTimeout):
    default_message = 'The dividend table did not appear in time'


class NavigationFailed(DividendError):
    status = 503
    error = 'Service unavailable'
    default_message = 'Unable to reach the data source'


# 503 alias used by the HTTP layer
SourceUnreachable = NavigationFailed


class NavigationTimeout(NavigationFailed, FetchTimeout):
    status = 408
    error = 'Request timeout'
    default_message = 'The data source did not respond in time'


class CreationFailed(DividendError):
    default_message = 'Could not start a browser instance'


class PoolClosed(DividendError):
    status = 503
    error = 'Service unavailable'
    default_message = 'The browser pool is shutting down'
