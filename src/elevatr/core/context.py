"""
Store context: one explicitly wired set of stores.

Everything a UI or CLI needs (router, entity stores, app store, navigation
persistence, config) is built by ``create_context`` and passed around as a
StoreContext. Tests build their own contexts with fake routers.
"""

from dataclasses import dataclass

from elevatr.core.config import ElevatrConfig, load_config
from elevatr.core.storage import JsonDocumentStore, StorageRouter, create_router
from elevatr.core.stores import AppStore, SprintStore, TaskStore, UserProgressStore
from elevatr.core.sync.persistence import NavigationPersistence


@dataclass
class StoreContext:
    config: ElevatrConfig
    router: StorageRouter
    sprints: SprintStore
    tasks: TaskStore
    progress: UserProgressStore
    app: AppStore
    navigation: NavigationPersistence


def create_context(
    config: ElevatrConfig | None = None,
    router: StorageRouter | None = None,
    app: AppStore | None = None,
) -> StoreContext:
    """
    Wire a fresh set of stores.

    Navigation state is persisted under the configured data dir. It is not
    loaded or attached here; callers decide when to restore and save it.

    Args:
        config: Configuration (loaded from disk and env when omitted)
        router: Storage router (built from ``config`` when omitted)
        app: App store (created from the navigation settings when omitted)
    """
    if config is None:
        config = load_config()
    if router is None:
        router = create_router(config)

    nav = config.navigation
    if app is None:
        app = AppStore(
            history_limit=nav.history_limit,
            route_cache_max_age=nav.route_cache_max_age_seconds,
        )

    sprints = SprintStore(router)
    return StoreContext(
        config=config,
        router=router,
        sprints=sprints,
        tasks=TaskStore(router),
        progress=UserProgressStore(router, sprint_lookup=sprints.lookup),
        app=app,
        navigation=NavigationPersistence(
            app,
            JsonDocumentStore(config.storage.data_dir),
            debounce=nav.persist_debounce_seconds,
            max_age_hours=nav.state_max_age_hours,
        ),
    )
