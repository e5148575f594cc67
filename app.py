import logging
import signal
import sys

from flask import Flask, g, jsonify, request
from flask_compress import Compress
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from api.routes import bp as api_bp
from services.dividends import DividendFetcher, DividendService
from services.errors import DividendError
from services.pool import InstancePool
from services.render import PlaywrightBackend, RenderLoop
from utils.cache import TTLCache
from utils.config import Settings
from utils.ratelimit import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

# Hardening headers added to every response unless a view set its own.
SECURITY_HEADERS = {
    'Content-Security-Policy': "default-src 'self'; frame-ancestors 'self'; object-src 'none'",
    'Cross-Origin-Opener-Policy': 'same-origin',
    'Cross-Origin-Resource-Policy': 'same-origin',
    'Referrer-Policy': 'no-referrer',
    'Strict-Transport-Security': 'max-age=15552000; includeSubDomains',
    'X-Content-Type-Options': 'nosniff',
    'X-DNS-Prefetch-Control': 'off',
    'X-Frame-Options': 'SAMEORIGIN',
}


def build_service(settings: Settings) -> DividendService:
    """Wire the render loop, browser pool, fetcher and cache together."""
    loop = RenderLoop().start()
    backend = PlaywrightBackend(headless=settings.headless)
    pool = InstancePool(backend.launch, max_size=settings.max_browsers)
    fetcher = DividendFetcher(
        pool,
        url_template=settings.source_url_template,
        nav_timeout_ms=settings.browser_timeout_ms,
        content_timeout_ms=settings.content_timeout_ms,
        max_attempts=settings.nav_attempts,
        backoff=settings.nav_backoff,
    )
    cache = TTLCache(ttl_seconds=settings.cache_ttl, maxsize=settings.cache_maxsize)

    def drain():
        try:
            loop.run(pool.shutdown(), timeout=30)
            loop.run(backend.stop(), timeout=30)
        finally:
            loop.stop()

    return DividendService(
        fetcher,
        cache,
        loop.run,
        request_timeout=settings.request_timeout,
        batch_max=settings.batch_max,
        on_shutdown=drain,
    )


def create_app(settings: Settings = None, service: DividendService = None):
    settings = settings or Settings.from_env()
    app = Flask(__name__)
    CORS(app)
    Compress(app)
    app.config['SETTINGS'] = settings
    app.extensions['dividends'] = service or build_service(settings)
    app.register_blueprint(api_bp)

    limiter = FixedWindowRateLimiter(settings.rate_limit_window, settings.rate_limit_max)
    app.extensions['rate_limiter'] = limiter

    @app.after_request
    def security_headers(response):
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.before_request
    def rate_limit():
        g.rate_limit = limiter.hit(request.remote_addr or 'unknown')
        if not g.rate_limit.allowed:
            return jsonify(error='Too many requests, please try again later.'), 429

    @app.after_request
    def rate_limit_headers(response):
        rl = g.get('rate_limit')
        if rl is not None:
            response.headers['RateLimit-Limit'] = str(rl.limit)
            response.headers['RateLimit-Remaining'] = str(rl.remaining)
            response.headers['RateLimit-Reset'] = str(rl.reset_in)
        return response

    @app.errorhandler(DividendError)
    def handle_dividend_error(e):
        body = {'error': e.error, 'message': e.message}
        if e.ticker:
            body['ticker'] = e.ticker
        return jsonify(body), e.status

    @app.errorhandler(404)
    def handle_404(e):
        return jsonify(error='Endpoint not found'), 404

    @app.errorhandler(HTTPException)
    def handle_http(e):
        return jsonify(error=e.name, message=e.description), e.code

    @app.errorhandler(Exception)
    def handle_500(e):
        logger.exception("Unhandled error on %s", request.path)
        return jsonify(error='Something went wrong!'), 500

    return app


def install_signal_handlers(service: DividendService):
    def _handler(signum, frame):
        logger.info("Received %s, shutting down gracefully...", signal.Signals(signum).name)
        service.shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    app = create_app(settings)
    install_signal_handlers(app.extensions['dividends'])
    logger.info("Server running on port %d", settings.port)
    logger.info("Cache TTL: %d seconds", settings.cache_ttl)
    logger.info("Max concurrent browsers: %d", settings.max_browsers)
    app.run(host='0.0.0.0', port=settings.port, threaded=True)


if __name__ == '__main__':
    main()
