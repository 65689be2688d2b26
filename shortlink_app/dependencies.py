"""
FastAPI dependencies for dependency injection.

Infrastructure (storage, cache, queue, geo-IP) is built once per process
from settings. The click pipeline is built in the application lifespan
and read from ``app.state``; services are assembled per request.
"""

from functools import lru_cache

from fastapi import Depends, Request

from shortlink_app.cache.factory import CacheFactory, CacheBackend
from shortlink_app.cache.strategies import CacheStrategy
from shortlink_app.click_processor.pipeline import ClickPipeline
from shortlink_app.config import settings
from shortlink_app.queue.factory import QueueFactory, QueueBackend
from shortlink_app.queue.strategies import QueueStrategy
from shortlink_app.services.analytics_aggregator import AggregationScheduler, AnalyticsAggregator
from shortlink_app.services.click_recorder import ClickRecorder
from shortlink_app.services.geo import CountryResolver, create_country_resolver
from shortlink_app.services.link_directory import LinkDirectory
from shortlink_app.services.redirect_resolver import RedirectResolver
from shortlink_app.storage.factory import StorageFactory, StorageBackend
from shortlink_app.storage.strategies import StorageStrategy


@lru_cache()
def get_storage() -> StorageStrategy:
    """Storage instance (singleton) for the configured backend"""
    return StorageFactory.create(StorageBackend(settings.storage_backend))


@lru_cache()
def get_cache() -> CacheStrategy:
    """
    Get cache instance (singleton).

    Factory gets config from settings internally.
    @lru_cache ensures this is called only once.
    """
    return CacheFactory.create(CacheBackend(settings.cache_backend))


@lru_cache()
def get_queue() -> QueueStrategy:
    """Queue instance (singleton) for the configured backend"""
    return QueueFactory.create(QueueBackend(settings.queue_backend))


@lru_cache()
def get_country_resolver() -> CountryResolver:
    return create_country_resolver()


def build_click_pipeline(
    storage: StorageStrategy,
    queue: QueueStrategy,
    workers: int = None,
    country_resolver: CountryResolver = None
) -> ClickPipeline:
    """
    Wire recorder, aggregation and workers around one storage and queue.

    Not started: the caller owns start() and stop().
    """
    aggregator = AnalyticsAggregator(storage)
    scheduler = AggregationScheduler(aggregator, interval=settings.aggregation_interval)
    recorder = ClickRecorder(
        storage,
        scheduler=scheduler,
        country_resolver=country_resolver or get_country_resolver(),
    )
    return ClickPipeline(
        queue,
        recorder,
        scheduler,
        queue_name=settings.queue_name,
        workers=workers or settings.click_workers,
    )


def get_click_pipeline(request: Request) -> ClickPipeline:
    return request.app.state.click_pipeline


def get_link_directory(
    storage: StorageStrategy = Depends(get_storage),
    cache: CacheStrategy = Depends(get_cache)
) -> LinkDirectory:
    return LinkDirectory(storage, cache)


def get_url_service(
    storage: StorageStrategy = Depends(get_storage),
    directory: LinkDirectory = Depends(get_link_directory)
):
    """
    Get URLService with all dependencies injected.

    Controllers depend on the service; the service depends on
    infrastructure (storage, cache).
    """
    from shortlink_app.services.url_service import URLService
    return URLService(storage, directory=directory)


def get_redirect_resolver(
    directory: LinkDirectory = Depends(get_link_directory),
    pipeline: ClickPipeline = Depends(get_click_pipeline)
) -> RedirectResolver:
    return RedirectResolver(directory, pipeline)
