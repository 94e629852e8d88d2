"""
Cache utilities.

Redis-backed caching through Flask-Caching, falling back to the in-memory
SimpleCache when REDIS_URL is unset or unreachable. Only derived, read-mostly
values are cached (the affiliate commission-rate estimate); balances, tiers and
coupon usage counts are always read from the database.

Usage:
    from nailcare_loyalty.utils.cache import cache

    @cache.memoize(timeout=300)
    def get_expensive_data(param):
        ...
"""
import os
import logging
from flask_caching import Cache

logger = logging.getLogger(__name__)

cache = Cache()


def init_cache(app):
    """
    Initialize Flask-Caching with Redis or fallback to simple cache.

    A CACHE_TYPE already present in the app config (e.g. NullCache for tests)
    is left untouched.

    Returns:
        bool: True if Redis connected, False otherwise
    """
    if app.config.get('CACHE_TYPE'):
        cache.init_app(app)
        return False

    redis_url = os.getenv('REDIS_URL')

    if redis_url:
        try:
            import redis
            r = redis.from_url(redis_url, socket_connect_timeout=2)
            r.ping()

            app.config['CACHE_TYPE'] = 'RedisCache'
            app.config['CACHE_REDIS_URL'] = redis_url
            app.config['CACHE_KEY_PREFIX'] = 'nailcare:'

            cache.init_app(app)
            logger.info('Redis cache connected: %s', redis_url.split('@')[-1])
            return True

        except Exception as e:
            logger.warning('Redis unavailable (%s), using simple cache', str(e))

    app.config['CACHE_TYPE'] = 'SimpleCache'

    cache.init_app(app)
    logger.info('Using simple in-memory cache (no Redis)')
    return False
