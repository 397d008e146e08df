"""Dependency Injection container for SkillSync.

The container manages:
- Settings (Singleton, loaded via ``load_settings``)
- Scheduler and key-value store shared by sessions
- SyncSession factory wiring cache, queue, executor and sync engine

Tests and hosts override providers instead of patching modules, e.g.
``container.config.override(providers.Object(Settings()))``.
"""

from __future__ import annotations

from dependency_injector import containers, providers

from skillsync.config.loader import load_settings
from skillsync.session import SyncSession, build_store
from skillsync.shared.scheduling import AsyncioScheduler


class Container(containers.DeclarativeContainer):
    """Dependency Injection container for SkillSync sessions.

    Example:
        >>> container = Container()
        >>> container.handlers.override(providers.Object({"sendMessage": send_message}))
        >>> async with container.session() as session:
        ...     await session.queue.enqueue("sendMessage", {"chatId": "c1", "text": "hi"})
    """

    # Configuration
    config = providers.Singleton(load_settings)

    # Timing
    scheduler = providers.Singleton(AsyncioScheduler)

    # Persistence
    kv_store = providers.Singleton(build_store, settings=config)

    # Offline action handlers (action_type -> callable)
    handlers = providers.Object(None)

    # Connectivity probe feeding the monitor (None = no polling)
    connectivity_probe = providers.Object(None)

    session = providers.Factory(
        SyncSession,
        settings=config,
        store=kv_store,
        scheduler=scheduler,
        handlers=handlers,
        probe=connectivity_probe,
    )
