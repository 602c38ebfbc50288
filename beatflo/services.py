"""Service objects shared by the API layer and the pipelines."""

from dataclasses import dataclass

from beatflo.config import Settings
from beatflo.jobs.dispatcher import InProcessDispatcher, JobDispatcher
from beatflo.jobs.registry import JobRegistry
from beatflo.storage.artifacts import ArtifactStore
from beatflo.tools.invoker import ToolInvoker


@dataclass
class Services:
    settings: Settings
    registry: JobRegistry
    store: ArtifactStore
    invoker: ToolInvoker
    dispatcher: JobDispatcher


def build_services(
    settings: Settings,
    invoker: ToolInvoker = None,
    registry: JobRegistry = None,
) -> Services:
    registry = registry or JobRegistry()
    return Services(
        settings=settings,
        registry=registry,
        store=ArtifactStore(settings.downloads_dir),
        invoker=invoker or ToolInvoker(default_timeout=settings.tool_timeout_seconds),
        dispatcher=InProcessDispatcher(
            registry,
            max_concurrent=settings.max_concurrent_jobs,
            job_timeout=settings.job_timeout_seconds,
        ),
    )
