"""Address to coordinate resolution with provider fallback.

Providers are tried in order. Each provider owns a rate limiter so the
public Nominatim endpoint never sees more than one request per interval
from this process.
"""

import threading
import time
from dataclasses import dataclass

import requests

from backend.log_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float
    longitude: float
    provider: str = ''

    def to_dict(self):
        return {'latitude': self.latitude, 'longitude': self.longitude}


class RateLimiter:
    """Block until ``min_interval`` seconds have passed since the previous call."""

    def __init__(self, min_interval, clock=time.monotonic, sleep=time.sleep):
        self.min_interval = max(float(min_interval or 0), 0.0)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call = None

    def wait(self):
        with self._lock:
            now = self._clock()
            if self._last_call is not None:
                remaining = self.min_interval - (now - self._last_call)
                if remaining > 0:
                    self._sleep(remaining)
                    now = self._clock()
            self._last_call = now


def format_address(address, city='', state='', zip_code=''):
    parts = [str(part).strip() for part in (address, city, state, zip_code) if part and str(part).strip()]
    return ', '.join(parts)


class NominatimProvider:
    name = 'nominatim'

    def __init__(self, url, user_agent, country_codes='us', timeout=10.0, rate_limiter=None):
        self.url = url
        self.user_agent = user_agent
        self.country_codes = country_codes
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter(1.0)

    def geocode(self, query):
        self.rate_limiter.wait()
        params = {'q': query, 'format': 'json', 'limit': 1}
        if self.country_codes:
            params['countrycodes'] = self.country_codes
        resp = requests.get(
            self.url,
            params=params,
            headers={'User-Agent': self.user_agent},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        results = resp.json()
        if not results:
            return None
        first = results[0]
        return GeocodeResult(float(first['lat']), float(first['lon']), self.name)


class GoogleGeocodingProvider:
    name = 'google'

    def __init__(self, api_key, url, timeout=10.0, rate_limiter=None):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter(0)

    def geocode(self, query):
        self.rate_limiter.wait()
        resp = requests.get(
            self.url,
            params={'address': query, 'key': self.api_key},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
        status = payload.get('status')
        if status == 'ZERO_RESULTS':
            return None
        if status != 'OK':
            raise ValueError(f'Google geocoding returned status {status}')
        location = payload['results'][0]['geometry']['location']
        return GeocodeResult(float(location['lat']), float(location['lng']), self.name)


class GeocodingService:
    def __init__(self, providers):
        self.providers = list(providers or [])

    def geocode(self, address, city='', state='', zip_code=''):
        """Return a GeocodeResult, or None when no provider could resolve it."""
        query = format_address(address, city, state, zip_code)
        if not query:
            return None

        for provider in self.providers:
            try:
                result = provider.geocode(query)
            except (requests.RequestException, ValueError, KeyError, IndexError, TypeError) as exc:
                logger.warning(
                    'geocoding_provider_failed',
                    provider=provider.name, query=query, error=str(exc),
                )
                continue
            if result is not None:
                logger.debug('geocoded_address', provider=provider.name, query=query)
                return result
            logger.info('geocoding_no_result', provider=provider.name, query=query)

        logger.warning('geocoding_failed', query=query, providers=len(self.providers))
        return None


def build_geocoder(app_config):
    timeout = app_config.get('GEOCODING_TIMEOUT_SECONDS', 10.0)
    providers = []
    raw_order = str(app_config.get('GEOCODING_PROVIDERS') or '')
    ordered = [item.strip().lower() for item in raw_order.split(',') if item.strip()]
    # keep config order but drop duplicates
    seen = set()
    for name in ordered:
        if name in seen:
            continue
        seen.add(name)
        if name == 'nominatim':
            providers.append(NominatimProvider(
                url=app_config.get('NOMINATIM_URL'),
                user_agent=app_config.get('NOMINATIM_USER_AGENT'),
                country_codes=app_config.get('NOMINATIM_COUNTRY_CODES', 'us'),
                timeout=timeout,
                rate_limiter=RateLimiter(app_config.get('NOMINATIM_MIN_INTERVAL_SECONDS', 1.0)),
            ))
        elif name == 'google':
            api_key = app_config.get('GOOGLE_MAPS_API_KEY')
            if not api_key:
                logger.warning('geocoding_provider_skipped', provider=name, reason='missing api key')
                continue
            providers.append(GoogleGeocodingProvider(
                api_key=api_key,
                url=app_config.get('GOOGLE_GEOCODING_URL'),
                timeout=timeout,
            ))
        else:
            logger.warning('geocoding_provider_unknown', provider=name)
    return GeocodingService(providers)
