"""
Process-wide collaborators, built once from ``settings``.

The geo cache is the only mutable shared state; the resolvers hold a
reference to it and the sweep worker purges it.  Everything else here is
stateless or immutable and safe to share across requests.
"""

from cabcore.config import settings
from cabcore.domain.cancellation import CancellationPolicy
from cabcore.domain.discounts import DiscountEngine
from cabcore.domain.pricing import FareCalculator, PricingPolicy
from cabcore.infrastructure.events import BookingEventPublisher
from cabcore.infrastructure.geocache import GeoCache
from cabcore.infrastructure.geocoding import GeocodingResolver
from cabcore.infrastructure.notifications import PushNotifier
from cabcore.infrastructure.payments import PaymentGatewayClient
from cabcore.infrastructure.redis_client import get_redis
from cabcore.infrastructure.routing import RoutingResolver

from .bookings import BookingRules
from .distance_pipeline import DistanceResolutionPipeline

geo_cache = GeoCache(
    default_ttl=settings.geo_cache_ttl_seconds,
    max_entries=settings.geo_cache_max_entries,
)

geocoder = GeocodingResolver.from_settings(settings, cache=geo_cache)
router = RoutingResolver.from_settings(settings, cache=geo_cache)
pipeline = DistanceResolutionPipeline(
    geocoder, router, circuity_multiplier=settings.road_circuity_multiplier
)

calculator = FareCalculator(PricingPolicy.from_settings(settings))
discounts = DiscountEngine()
cancellation_policy = CancellationPolicy.from_settings(settings)
booking_rules = BookingRules.from_settings(settings)

publisher = BookingEventPublisher(get_redis, prefix=settings.realtime_channel_prefix)
notifier = PushNotifier.from_settings(settings)
payments = PaymentGatewayClient.from_settings(settings)
