"""Periodic eviction of idle cache entries and abandoned artifacts."""

import asyncio
import logging

from beatflo.jobs.models import JobKind
from beatflo.services import Services

logger = logging.getLogger(__name__)


def sweep(services: Services) -> int:
    """Run one sweep. Returns the number of registry entries evicted."""
    settings = services.settings
    registry = services.registry
    store = services.store

    evicted = registry.evict_stale(
        JobKind.WAVEFORM, settings.waveform_cache_ttl_minutes * 60
    )

    # Finished jobs nobody fetched: drop the entry and its artifact
    artifact_ttl = settings.artifact_ttl_hours * 3600
    for kind in (JobKind.DOWNLOAD, JobKind.BULK, JobKind.MIXSET):
        for record in registry.evict_stale(kind, artifact_ttl):
            if record.filename:
                store.remove_file(store.path_for(record.filename))
            evicted.append(record)

    # Files of jobs still registered may carry an old mtime from the source
    live = [record.id for record in registry.records()]
    store.cleanup_expired(artifact_ttl, keep=live)
    return len(evicted)


async def run_periodically(services: Services, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            sweep(services)
        except Exception:
            logger.exception("Sweep failed")
