from __future__ import annotations
from typing import List, Optional, Sequence

from lxml import html as lxml_html
from lxml.etree import ParserError

from services.errors import NoDataFound
from services.models import FetchResult

# Rows of the dividends grid, most specific first.
TABLE_ROW_SELECTORS = (
    "div[data-testid='stock-dividends-table'] table tbody tr",
    "table tbody tr",
    ".dividend-table tbody tr",
)
DIVIDENDS_CONTAINER = "div[data-testid='stock-dividends-table']"

PLACEHOLDERS = {'', 'n/a', 'na', '-', '--', '—', 'nan', 'null', 'none'}


def _clean(value) -> str:
    if value is None:
        return ''
    return ' '.join(str(value).split())


def first_row_from_html(markup: str) -> Optional[List[str]]:
    """Text of the first body row of the first table with at least four cells.

    Cell text is returned as rendered (whitespace collapsed), never coerced.
    """
    if not markup or not markup.strip():
        return None
    try:
        doc = lxml_html.fromstring(markup)
    except (ParserError, ValueError):
        return None
    for table in doc.iter('table'):
        for tr in table.xpath('./tbody/tr | ./tr'):
            cells = tr.xpath('./td')
            if not cells:
                # header row
                continue
            if len(cells) >= 4:
                return [_clean(td.text_content()) for td in cells]
            break
    return None


async def extract_dividend_row(page) -> Optional[List[str]]:
    """Default extraction predicate: read the rendered dividends table."""
    container = await page.query_selector(DIVIDENDS_CONTAINER)
    if container is not None:
        row = first_row_from_html(await container.inner_html())
        if row:
            return row
    return first_row_from_html(await page.content())


def parse_dividend_row(ticker: str, cells: Optional[Sequence[str]]) -> FetchResult:
    if not cells or len(cells) < 4:
        raise NoDataFound(ticker=ticker)
    ex_date, pay_date, amount, yld = (_clean(c) for c in cells[:4])
    if any(v.lower() in PLACEHOLDERS for v in (ex_date, pay_date, amount, yld)):
        raise NoDataFound(ticker=ticker)
    return FetchResult(
        ticker=ticker,
        ex_date=ex_date,
        pay_date=pay_date,
        dividend_amount=amount,
        yield_value=yld,
    )
