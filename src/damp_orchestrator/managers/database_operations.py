"""Dump, restore and list databases inside database service containers."""

import re
from dataclasses import dataclass

from damp_orchestrator.managers.container_manager import ContainerManager
from damp_orchestrator.service_definitions import ServiceId
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.audit_logger import AuditEventType, AuditLogger
from damp_orchestrator.utils.cleanup import best_effort
from damp_orchestrator.utils.exceptions import (
    ContainerNotFoundError,
    DampError,
    ValidationError,
)

logger = get_logger(__name__)

RESTORE_TEMP_FILE = "/tmp/damp_restore.dump"

DATABASE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

SYSTEM_DATABASES = "^(information_schema|performance_schema|mysql|sys)$"

MONGO_AUTH = "--username root --password root --authenticationDatabase admin"

LIST_COMMANDS = {
    ServiceId.MYSQL: (
        'exec mysql -uroot -p"$MYSQL_ROOT_PASSWORD" -e "SHOW DATABASES" '
        f'| tail -n +2 | grep -v -E "{SYSTEM_DATABASES}"'
    ),
    ServiceId.MARIADB: (
        'exec mariadb -uroot -p"$MARIADB_ROOT_PASSWORD" -e "SHOW DATABASES" '
        f'| tail -n +2 | grep -v -E "{SYSTEM_DATABASES}"'
    ),
    ServiceId.POSTGRESQL: (
        'psql -U postgres -t -c "SELECT datname FROM pg_database '
        "WHERE datistemplate = false AND datname NOT IN ('postgres')\""
    ),
    ServiceId.MONGODB: (
        f"mongosh {MONGO_AUTH} --quiet --eval "
        '"db.adminCommand({ listDatabases: 1 }).databases.map(d => d.name)'
        ".filter(n => !['admin', 'config', 'local'].includes(n)).join('\\n')\""
    ),
}

DUMP_COMMANDS = {
    ServiceId.MYSQL: (
        'exec mysqldump -uroot -p"$MYSQL_ROOT_PASSWORD" '
        "--single-transaction --routines --triggers --databases {db}"
    ),
    ServiceId.MARIADB: (
        'exec mariadb-dump -uroot -p"$MARIADB_ROOT_PASSWORD" '
        "--single-transaction --routines --triggers --databases {db}"
    ),
    ServiceId.POSTGRESQL: "pg_dump -U postgres -Fc {db}",
    ServiceId.MONGODB: f"mongodump {MONGO_AUTH} --db {{db}} --archive --gzip",
}

RESTORE_COMMANDS = {
    ServiceId.MYSQL: 'exec mysql -uroot -p"$MYSQL_ROOT_PASSWORD" {db} < {file}',
    ServiceId.MARIADB: 'exec mariadb -uroot -p"$MARIADB_ROOT_PASSWORD" {db} < {file}',
    ServiceId.POSTGRESQL: "pg_restore -U postgres -d {db} --clean --if-exists {file}",
    ServiceId.MONGODB: f"mongorestore {MONGO_AUTH} --db {{db}} --archive={{file}} --gzip --drop",
}

DUMP_EXTENSIONS = {
    ServiceId.MYSQL: "sql",
    ServiceId.MARIADB: "sql",
    ServiceId.POSTGRESQL: "dump",
    ServiceId.MONGODB: "archive",
}


@dataclass(frozen=True)
class DumpFileFilter:
    name: str
    extensions: tuple[str, ...]


DUMP_FILE_FILTERS = {
    ServiceId.MYSQL: DumpFileFilter("SQL Files", ("sql",)),
    ServiceId.MARIADB: DumpFileFilter("SQL Files", ("sql",)),
    ServiceId.POSTGRESQL: DumpFileFilter("PostgreSQL Dump Files", ("dump",)),
    ServiceId.MONGODB: DumpFileFilter("MongoDB Archive Files", ("archive", "gz")),
}


def validate_database_name(name: str) -> str:
    """
    Reject database names that could escape the shell command.

    Raises:
        ValidationError: If the name has characters outside ``[A-Za-z0-9_-]``
    """
    if not DATABASE_NAME_PATTERN.match(name):
        raise ValidationError(
            f'Invalid database name: "{name}". Only alphanumeric characters, '
            "underscores, and hyphens are allowed."
        )
    return name


def supported_service(service_id: ServiceId | str) -> ServiceId:
    """
    Resolve a service ID that supports database operations.

    Raises:
        ValidationError: For services other than mysql, mariadb, postgresql and mongodb
    """
    try:
        sid = ServiceId(service_id)
    except ValueError:
        sid = None
    if sid not in DUMP_COMMANDS:
        raise ValidationError(f"Service {service_id} does not support database operations")
    return sid


def get_dump_file_extension(service_id: ServiceId | str) -> str:
    try:
        return DUMP_EXTENSIONS.get(ServiceId(service_id), "dump")
    except ValueError:
        return "dump"


def get_dump_file_filter(service_id: ServiceId | str) -> DumpFileFilter:
    try:
        sid = ServiceId(service_id)
    except ValueError:
        sid = None
    return DUMP_FILE_FILTERS.get(sid, DumpFileFilter("Database Dump Files", ("dump", "sql")))


class DatabaseOperations:
    """Database maintenance commands executed inside running service containers."""

    def __init__(
        self, container_manager: ContainerManager, audit_logger: AuditLogger | None = None
    ) -> None:
        """
        Initialize database operations.

        Args:
            container_manager: Container manager used to locate and exec into services
            audit_logger: Audit logger for dumps and restores
        """
        self.container_manager = container_manager
        self.audit_logger = audit_logger

    async def _ready_container(self, sid: ServiceId, project_id: str | None) -> str:
        container = await self.container_manager.find_service_container(sid.value, project_id)
        if container is None:
            raise ContainerNotFoundError(sid.value)

        state = await self.container_manager.get_container_state(container.id)
        if not state.running:
            raise DampError(f"Service {sid.value} is not running")
        if state.health_status not in ("none", "healthy"):
            raise DampError(
                f"Service {sid.value} is not healthy yet (status: {state.health_status})"
            )
        return container.id

    async def list_databases(
        self, service_id: ServiceId | str, project_id: str | None = None
    ) -> list[str]:
        """
        List user databases, excluding the engine's system databases.

        Args:
            service_id: Database service ID
            project_id: Owning project for a bundled database

        Returns:
            Database names

        Raises:
            ValidationError: If the service has no database operations
            ContainerNotFoundError: If the service is not installed
            DampError: If the service is not ready or the command fails
        """
        sid = supported_service(service_id)
        container_id = await self._ready_container(sid, project_id)

        result = await self.container_manager.exec_command(
            container_id, ["sh", "-c", LIST_COMMANDS[sid]]
        )
        if not result.ok:
            raise DampError(f"Failed to list databases: {result.stderr or result.stdout}")

        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def dump_database(
        self, service_id: ServiceId | str, database: str, project_id: str | None = None
    ) -> bytes:
        """
        Dump one database to bytes.

        Postgres dumps use the custom format and MongoDB dumps are gzipped
        archives, so the output is returned undecoded.

        Args:
            service_id: Database service ID
            database: Database name
            project_id: Owning project for a bundled database

        Returns:
            Dump contents

        Raises:
            ValidationError: If the name is invalid or the service unsupported
            ContainerNotFoundError: If the service is not installed
            DampError: If the service is not ready or the dump fails
        """
        db = validate_database_name(database)
        sid = supported_service(service_id)
        container_id = await self._ready_container(sid, project_id)

        result = await self.container_manager.exec_command(
            container_id, ["sh", "-c", DUMP_COMMANDS[sid].format(db=db)]
        )
        if not result.ok:
            self._audit(AuditEventType.DATABASE_DUMP, sid, db, False, result.stderr)
            raise DampError(f"Failed to dump database: {result.stderr or 'Unknown error'}")

        logger.info(
            "Database dumped",
            extra={"service_id": sid.value, "database": db, "bytes": len(result.raw_stdout)},
        )
        self._audit(AuditEventType.DATABASE_DUMP, sid, db, True)
        return result.raw_stdout

    async def restore_database(
        self,
        service_id: ServiceId | str,
        database: str,
        dump: bytes,
        project_id: str | None = None,
    ) -> None:
        """
        Restore a database from a dump produced by :meth:`dump_database`.

        The dump is copied into the container first and removed afterwards
        whether or not the restore succeeds.

        Args:
            service_id: Database service ID
            database: Target database name
            dump: Dump contents
            project_id: Owning project for a bundled database

        Raises:
            ValidationError: If the name is invalid or the service unsupported
            ContainerNotFoundError: If the service is not installed
            DampError: If the service is not ready or the restore fails
        """
        db = validate_database_name(database)
        sid = supported_service(service_id)
        container_id = await self._ready_container(sid, project_id)

        await self.container_manager.put_file(container_id, RESTORE_TEMP_FILE, dump)
        try:
            result = await self.container_manager.exec_command(
                container_id,
                ["sh", "-c", RESTORE_COMMANDS[sid].format(db=db, file=RESTORE_TEMP_FILE)],
            )
        finally:
            async with best_effort("remove restore file", service_id=sid.value):
                cleanup = await self.container_manager.exec_command(
                    container_id, ["rm", "-f", RESTORE_TEMP_FILE]
                )
                if not cleanup.ok:
                    logger.warning(
                        "Failed to remove restore file",
                        extra={"service_id": sid.value, "error": cleanup.stderr},
                    )

        if not result.ok:
            self._audit(AuditEventType.DATABASE_RESTORE, sid, db, False, result.stderr)
            raise DampError(f"Failed to restore database: {result.stderr or 'Unknown error'}")

        logger.info("Database restored", extra={"service_id": sid.value, "database": db})
        self._audit(AuditEventType.DATABASE_RESTORE, sid, db, True)

    def _audit(
        self,
        event: AuditEventType,
        sid: ServiceId,
        database: str,
        success: bool,
        error: str | None = None,
    ) -> None:
        if self.audit_logger is None:
            return
        details = {"database": database}
        if error:
            details["error"] = error
        self.audit_logger.log_event(event, target=sid.value, success=success, details=details)
