# ==============================================================================
# SCHEMA LIFECYCLE - Provision at Startup, Tear Down at Shutdown
# ==============================================================================
# Drives the selected backend to the fixture revision before traffic is
# accepted and reverses it once on graceful shutdown
# ==============================================================================

from __future__ import annotations

import io
import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Connection

from basicapi.core.exceptions import ProvisioningError, TeardownError
from basicapi.database.factory import StorageContext

logger = logging.getLogger(__name__)


MIGRATIONS_PATH = Path(__file__).resolve().parent.parent / "migrations"

# Target of provisioning; teardown returns to the empty baseline
FIXTURE_REVISION = "initial"
BASELINE_REVISION = "base"

# SQLite keeps these next to the database file
_SQLITE_SIDECARS = ("-journal", "-wal", "-shm")


class SchemaState(str, Enum):
    """Lifecycle states of the fixture schema."""
    UNPROVISIONED = "unprovisioned"
    PROVISIONED = "provisioned"
    TORN_DOWN = "torn_down"


class FinalizationAction:
    """
    Shutdown action handed to the host.

    Runs its callback at most once; later calls are ignored.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], name: str) -> None:
        self._callback = callback
        self.name = name
        self.invoked = False

    async def __call__(self) -> None:
        if self.invoked:
            logger.warning(f"{self.name} already ran; ignoring repeated invocation")
            return
        self.invoked = True
        await self._callback()

    def __repr__(self) -> str:
        return f"FinalizationAction(name='{self.name}', invoked={self.invoked})"


# ==============================================================================
# ALEMBIC HELPERS
# ==============================================================================

def build_alembic_config(
    storage: StorageContext,
    script_location: Path = MIGRATIONS_PATH,
    output_buffer: Optional[io.StringIO] = None,
) -> Config:
    """
    Programmatic Alembic configuration for the storage backend.

    Args:
        storage: Storage whose URL the migrations target
        script_location: Directory holding ``env.py`` and ``versions/``
        output_buffer: Receives offline SQL when generating scripts

    Returns:
        alembic Config
    """
    config = Config(output_buffer=output_buffer)
    config.set_main_option("script_location", str(script_location))

    url = storage.configuration.url.render_as_string(hide_password=False)
    # ConfigParser interpolation
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return config


def _upgrade(connection: Connection, config: Config, revision: str) -> None:
    config.attributes["connection"] = connection
    command.upgrade(config, revision)


def _downgrade(connection: Connection, config: Config, revision: str) -> None:
    config.attributes["connection"] = connection
    command.downgrade(config, revision)


def _current_revision(connection: Connection) -> Optional[str]:
    return MigrationContext.configure(connection).get_current_revision()


# ==============================================================================
# LIFECYCLE MANAGER
# ==============================================================================

class SchemaLifecycleManager:
    """
    Provision and tear down the fixture schema.

    States: ``UNPROVISIONED -> PROVISIONED -> TORN_DOWN``.

    Teardown depends on the backend. The embedded SQLite store is private
    to this run, so the whole file is deleted. Other backends may be shared
    infrastructure, so only the fixture revisions are reversed and the
    database itself is left in place.

    Every operation runs inside its own scoped connection.

    Example:
        >>> lifecycle = SchemaLifecycleManager(storage)
        >>> teardown = await lifecycle.provision()
        >>> ...
        >>> await teardown()
    """

    def __init__(
        self,
        storage: StorageContext,
        display_sql_scripts: bool = False,
        script_location: Path = MIGRATIONS_PATH,
    ) -> None:
        self.storage = storage
        self.display_sql_scripts = display_sql_scripts
        self.script_location = script_location
        self.state = SchemaState.UNPROVISIONED
        self._finalizer: Optional[FinalizationAction] = None

    def _config(self, output_buffer: Optional[io.StringIO] = None) -> Config:
        return build_alembic_config(self.storage, self.script_location, output_buffer)

    # ==========================================================================
    # VERSION QUERIES
    # ==========================================================================

    async def current_revision(self) -> Optional[str]:
        """Revision currently applied to the backend, ``None`` at baseline."""
        async with self.storage.connect() as connection:
            return await connection.run_sync(_current_revision)

    def available_revisions(self) -> List[str]:
        """All known revisions in upgrade order."""
        script = ScriptDirectory.from_config(self._config())
        return [rev.revision for rev in reversed(list(script.walk_revisions()))]

    # ==========================================================================
    # DIAGNOSTIC SCRIPTS
    # ==========================================================================

    def render_script(self, direction: str, current: Optional[str] = None) -> str:
        """
        Generate the SQL an upgrade or downgrade would execute.

        Args:
            direction: ``"upgrade"`` or ``"downgrade"``
            current: Revision the backend is at (``None`` at baseline)

        Returns:
            SQL script text (empty when there is nothing to run)
        """
        buffer = io.StringIO()
        config = self._config(output_buffer=buffer)

        if direction == "upgrade":
            if current == FIXTURE_REVISION:
                return ""
            target = f"{current}:{FIXTURE_REVISION}" if current else FIXTURE_REVISION
            command.upgrade(config, target, sql=True)
        elif direction == "downgrade":
            if current is None:
                return ""
            command.downgrade(config, f"{current}:{BASELINE_REVISION}", sql=True)
        else:
            raise ValueError(f"Unknown script direction: {direction}")

        return buffer.getvalue()

    async def _log_script(self, direction: str, title: str) -> None:
        if not self.display_sql_scripts:
            return

        try:
            current = await self.current_revision()
            script = self.render_script(direction, current)
        except Exception as e:
            logger.warning(f"Could not generate {direction} script: {e}", exc_info=True)
            return

        logger.info(f"{title}\n{script}")

    # ==========================================================================
    # PROVISION
    # ==========================================================================

    async def provision(self) -> FinalizationAction:
        """
        Apply all pending schema revisions up to the fixture revision.

        Revisions already applied are skipped, so running against an already
        provisioned backend changes nothing.

        Returns:
            FinalizationAction: Teardown for the host's shutdown sequence

        Raises:
            ProvisioningError: If the schema cannot be applied, or after
                teardown has already happened
        """
        if self.state is SchemaState.PROVISIONED and self._finalizer is not None:
            logger.warning("Schema already provisioned; reusing existing teardown action")
            return self._finalizer
        if self.state is SchemaState.TORN_DOWN:
            raise ProvisioningError("Schema has been torn down; cannot provision again")

        backend = self.storage.backend.value
        logger.info(f"Provisioning {backend} schema to revision '{FIXTURE_REVISION}'")

        try:
            await self._log_script("upgrade", "Create script:")
            async with self.storage.connect() as connection:
                await connection.run_sync(_upgrade, self._config(), FIXTURE_REVISION)
        except Exception as e:
            logger.error(f"Schema provisioning failed for {backend}: {e}")
            raise ProvisioningError(
                f"Failed to provision {backend} schema: {e}",
                details={"backend": backend, "revision": FIXTURE_REVISION},
            ) from e

        self.state = SchemaState.PROVISIONED
        logger.info(f"{backend} schema provisioned")

        self._finalizer = FinalizationAction(self.teardown, name=f"{backend} schema teardown")
        return self._finalizer

    # ==========================================================================
    # TEARDOWN
    # ==========================================================================

    async def teardown(self) -> None:
        """
        Reverse provisioning.

        Failures are logged and swallowed; the process is exiting anyway.
        The state becomes ``TORN_DOWN`` either way.
        """
        if self.state is not SchemaState.PROVISIONED:
            logger.warning(f"Teardown skipped: schema is {self.state.value}")
            return

        backend = self.storage.backend.value
        try:
            if self.storage.configuration.is_embedded:
                await self._drop_database()
            else:
                await self._drop_tables()
        except Exception as e:
            error = TeardownError(
                f"Failed to tear down {backend} schema: {e}",
                details={"backend": backend},
            )
            logger.error(error.message, exc_info=True)
        else:
            logger.info(f"{backend} schema torn down")
        finally:
            self.state = SchemaState.TORN_DOWN

    async def _drop_database(self) -> None:
        """Delete the embedded store, leaving nothing behind."""
        await self._log_script("downgrade", "Delete script:")

        # Release pooled handles before removing the file
        await self.storage.dispose()

        path = self.storage.configuration.database_path
        if path is None:
            raise TeardownError("Embedded backend has no database file")

        for candidate in [path] + [Path(f"{path}{suffix}") for suffix in _SQLITE_SIDECARS]:
            candidate.unlink(missing_ok=True)
        logger.info(f"Deleted database file {path}")

    async def _drop_tables(self) -> None:
        """Reverse the fixture revisions down to the baseline."""
        await self._log_script("downgrade", "Delete script:")

        async with self.storage.connect() as connection:
            await connection.run_sync(_downgrade, self._config(), BASELINE_REVISION)
