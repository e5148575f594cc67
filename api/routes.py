import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from services.errors import DividendError, ValidationError

bp = Blueprint('api', __name__)
logger = logging.getLogger(__name__)


def _service():
    return current_app.extensions['dividends']


@bp.get('/health')
def health():
    return jsonify(
        status='healthy',
        timestamp=datetime.now(timezone.utc).isoformat(),
        **_service().health(),
    )


@bp.get('/dividend/<ticker>')
def dividend(ticker):
    try:
        result, cached = _service().get(ticker)
    except DividendError as err:
        if err.ticker is None:
            err.ticker = ticker.upper()
        if err.status >= 500 or err.status == 408:
            logger.warning("Error scraping %s: %s", err.ticker, err.message)
        raise

    body = dict(result.to_dict(), cached=cached)
    if cached:
        body['cacheAge'] = result.age_seconds()
    return jsonify(body)


@bp.post('/dividends/batch')
def dividends_batch():
    payload = request.get_json(silent=True) or {}
    tickers = payload.get('tickers') if isinstance(payload, dict) else None
    if not isinstance(tickers, list) or not tickers:
        raise ValidationError('Tickers array is required')
    return jsonify(results=_service().get_many(tickers))


@bp.delete('/cache')
@bp.delete('/cache/<ticker>')
def clear_cache(ticker=None):
    if ticker:
        deleted = _service().invalidate(ticker)
        return jsonify(message=f'Cache cleared for {ticker}', deleted=deleted)
    _service().invalidate()
    return jsonify(message='All cache cleared')
