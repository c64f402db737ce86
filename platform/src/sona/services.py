"""Composition root that owns one instance of every SONA component."""

from __future__ import annotations

from dataclasses import dataclass

from sona.analytics.oplog import OperationLogger
from sona.analytics.reports import SonaAnalytics
from sona.config import Settings, get_settings
from sona.content.tracker import ContentTracker
from sona.portability.manager import ExportImportManager
from sona.sandbox.generator import SandboxGenerator
from sona.sandbox.manager import SandboxManager
from sona.settings.manager import SettingsManager
from sona.storage.database import dispose_engine
from sona.storage.gateway import PersistenceGateway
from sona.versioning.versions import VersionManager


@dataclass
class SonaServices:
    """Hosts build this once and pass it (or its parts) to whoever needs them.

    ``reset()`` drops in-memory state between tests without touching the
    database; ``close()`` releases the engine.
    """

    config: Settings
    gateway: PersistenceGateway
    tracker: ContentTracker
    versions: VersionManager
    settings: SettingsManager
    sandbox: SandboxManager
    portability: ExportImportManager
    analytics: SonaAnalytics
    oplog: OperationLogger

    @classmethod
    def build(
        cls,
        config: Settings | None = None,
        *,
        gateway: PersistenceGateway | None = None,
        generator: SandboxGenerator | None = None,
    ) -> SonaServices:
        config = config or get_settings()
        gateway = gateway or PersistenceGateway.for_path(config.db_path)
        settings = SettingsManager(gateway)
        return cls(
            config=config,
            gateway=gateway,
            tracker=ContentTracker(gateway, cache_size=config.hash_cache_size),
            versions=VersionManager(
                gateway,
                max_versions_to_keep=config.max_versions_to_keep,
                auto_archive_old_versions=config.auto_archive_old_versions,
            ),
            settings=settings,
            sandbox=SandboxManager(
                generator=generator,
                settings_manager=settings,
                gateway=gateway,
                max_age_hours=config.sandbox_max_age_hours,
                max_content=config.sandbox_max_content,
            ),
            portability=ExportImportManager(
                config.data_dir,
                settings,
                gateway,
                schema_version=config.export_schema_version,
                csv_locale=config.csv_locale,
            ),
            analytics=SonaAnalytics(gateway, cache_seconds=config.analytics_cache_seconds),
            oplog=OperationLogger(
                gateway, capacity=config.log_buffer_size, csv_locale=config.csv_locale
            ),
        )

    def reset(self) -> None:
        self.tracker.clear_cache()
        self.settings.clear_cache()
        self.sandbox.clear_all()
        self.analytics.clear_cache()
        self.oplog.clear()

    def close(self) -> None:
        self.reset()
        dispose_engine(self.config.db_path)
