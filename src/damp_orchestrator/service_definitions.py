"""Catalog of installable services.

Definitions are static data: they only change with a new release of the
package. Everything that provisions a service reads its defaults from here.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from damp_orchestrator.service_config import SECOND_NS, HealthcheckSpec, ServiceConfig
from damp_orchestrator.utils.exceptions import ServiceNotFoundError


class ServiceId(str, Enum):
    """Identifiers of the services in the catalog."""

    CADDY = "caddy"
    MYSQL = "mysql"
    MAILPIT = "mailpit"
    POSTGRESQL = "postgresql"
    MARIADB = "mariadb"
    MONGODB = "mongodb"
    REDIS = "redis"
    MEILISEARCH = "meilisearch"
    MINIO = "minio"
    MEMCACHED = "memcached"
    RABBITMQ = "rabbitmq"
    TYPESENSE = "typesense"
    VALKEY = "valkey"
    RUSTFS = "rustfs"
    PHPMYADMIN = "phpmyadmin"
    ADMINER = "adminer"


class ServiceType(str, Enum):
    WEB = "web"
    DATABASE = "database"
    CACHE = "cache"
    EMAIL = "email"
    SEARCH = "search"
    QUEUE = "queue"
    STORAGE = "storage"


@dataclass(frozen=True)
class ServiceDefinition:
    """Static description of one installable service."""

    id: ServiceId
    name: str
    display_name: str
    description: str
    service_type: ServiceType
    default_config: ServiceConfig
    required: bool = False
    bundleable: bool = False
    post_install_message: str | None = None
    # Admin tools locate their database through this service
    linked_database_service: ServiceId | None = None
    proxy_subdomain: str | None = None
    proxy_port: int | None = None
    supports_multiple_databases: bool = False

    def to_dict(self) -> dict:
        config = self.default_config
        return {
            "id": self.id.value,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "service_type": self.service_type.value,
            "required": self.required,
            "bundleable": self.bundleable,
            "post_install_message": self.post_install_message,
            "linked_database_service": (
                self.linked_database_service.value if self.linked_database_service else None
            ),
            "proxy_subdomain": self.proxy_subdomain,
            "proxy_port": self.proxy_port,
            "default_config": {
                "image": config.image,
                "ports": [list(pair) for pair in config.ports],
                "environment_vars": list(config.environment_vars),
                "volume_bindings": list(config.volume_bindings),
                "data_volume": config.data_volume,
                "has_healthcheck": config.healthcheck is not None,
            },
        }


def _healthcheck(*test: str, retries: int = 3, timeout_s: int = 5, **extra: int) -> HealthcheckSpec:
    return HealthcheckSpec(
        test=("CMD",) + test,
        retries=retries,
        timeout=timeout_s * SECOND_NS,
        interval=extra["interval_s"] * SECOND_NS if "interval_s" in extra else None,
        start_period=extra["start_period_s"] * SECOND_NS if "start_period_s" in extra else None,
    )


_TYPESENSE_HEALTH = (
    "exec 3<>/dev/tcp/localhost/8108 && "
    "printf 'GET /health HTTP/1.1\\r\\nConnection: close\\r\\n\\r\\n' >&3 && "
    "head -n1 <&3 | grep '200' && exec 3>&-"
)

_DEFINITIONS = (
    ServiceDefinition(
        id=ServiceId.CADDY,
        name="caddy",
        display_name="Web Server",
        description="Caddy reverse proxy server",
        service_type=ServiceType.WEB,
        required=True,
        default_config=ServiceConfig(
            image="caddy:latest",
            ports=((80, 80), (443, 443)),
            data_volume="damp_caddy_data",
            volume_bindings=("damp_caddy_data:/data", "damp_caddy_config:/config"),
        ),
        post_install_message=(
            "Caddy web server is ready. SSL certificates are configured and will be "
            "automatically generated for .local domains."
        ),
    ),
    ServiceDefinition(
        id=ServiceId.MYSQL,
        name="mysql",
        display_name="MySQL Database",
        description="MySQL database server",
        service_type=ServiceType.DATABASE,
        bundleable=True,
        supports_multiple_databases=True,
        default_config=ServiceConfig(
            image="mysql:latest",
            ports=((3306, 3306),),
            environment_vars=(
                "MYSQL_ROOT_PASSWORD=root",
                "MYSQL_ROOT_HOST=%",
                "MYSQL_DATABASE=development",
                "MYSQL_USER=developer",
                "MYSQL_PASSWORD=developer",
            ),
            data_volume="damp_mysql_data",
            volume_bindings=("damp_mysql_data:/var/lib/mysql",),
            healthcheck=_healthcheck("mysqladmin", "ping", "-proot"),
        ),
        post_install_message=(
            "MySQL installed successfully.\n"
            "Root: 'root' | Database: 'development' | User: 'developer' | Password: 'developer'"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.MAILPIT,
        name="mailpit",
        display_name="Mailpit",
        description="Email testing server",
        service_type=ServiceType.EMAIL,
        bundleable=True,
        proxy_subdomain="mailpit",
        proxy_port=8025,
        default_config=ServiceConfig(
            image="axllent/mailpit:latest",
            ports=((1025, 1025), (8025, 8025)),
            environment_vars=(
                "MP_SMTP_BIND_ADDR=0.0.0.0:1025",
                "MP_UI_BIND_ADDR=0.0.0.0:8025",
                "MP_MAX_MESSAGES=5000",
            ),
        ),
        post_install_message=(
            "Mailpit installed and started successfully. "
            "Web UI: http://localhost:8025, SMTP: localhost:1025"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.POSTGRESQL,
        name="postgresql",
        display_name="PostgreSQL Database",
        description="PostgreSQL database server",
        service_type=ServiceType.DATABASE,
        bundleable=True,
        supports_multiple_databases=True,
        default_config=ServiceConfig(
            image="postgres:17-alpine",
            ports=((5432, 5432),),
            environment_vars=(
                "POSTGRES_PASSWORD=postgres",
                "POSTGRES_DB=postgres",
                "POSTGRES_USER=postgres",
            ),
            data_volume="damp_pgsql_data",
            volume_bindings=("damp_pgsql_data:/var/lib/postgresql/data",),
            healthcheck=_healthcheck("pg_isready", "-q", "-d", "postgres", "-U", "postgres"),
        ),
        post_install_message=(
            "PostgreSQL installed successfully.\n"
            "Root: 'postgres' | Database: 'postgres' | Password: 'postgres'"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.MARIADB,
        name="mariadb",
        display_name="MariaDB Database",
        description="MariaDB database server",
        service_type=ServiceType.DATABASE,
        bundleable=True,
        supports_multiple_databases=True,
        default_config=ServiceConfig(
            image="mariadb:11",
            ports=((3306, 3306),),
            environment_vars=(
                "MARIADB_ROOT_PASSWORD=root",
                "MARIADB_ROOT_HOST=%",
                "MARIADB_DATABASE=development",
                "MARIADB_USER=developer",
                "MARIADB_PASSWORD=developer",
            ),
            data_volume="damp-mariadb",
            volume_bindings=("damp-mariadb:/var/lib/mysql",),
            healthcheck=_healthcheck("healthcheck.sh", "--connect", "--innodb_initialized"),
        ),
        post_install_message=(
            "MariaDB installed successfully.\n"
            "Root: 'root' | Database: 'development' | User: 'developer' | Password: 'developer'"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.MONGODB,
        name="mongodb",
        display_name="MongoDB Database",
        description="MongoDB document database",
        service_type=ServiceType.DATABASE,
        bundleable=True,
        supports_multiple_databases=True,
        default_config=ServiceConfig(
            image="mongo",
            ports=((27017, 27017),),
            environment_vars=(
                "MONGO_INITDB_ROOT_USERNAME=root",
                "MONGO_INITDB_ROOT_PASSWORD=root",
            ),
            data_volume="damp-mongodb",
            volume_bindings=("damp-mongodb:/data/db",),
            healthcheck=_healthcheck(
                "mongosh", "--quiet", "--eval", "db.runCommand({ping:1}).ok"
            ),
        ),
        post_install_message="MongoDB installed successfully.\nRoot: 'root' | Password: 'root'",
    ),
    ServiceDefinition(
        id=ServiceId.REDIS,
        name="redis",
        display_name="Redis Cache",
        description="Redis key-value store for caching and sessions",
        service_type=ServiceType.CACHE,
        bundleable=True,
        default_config=ServiceConfig(
            image="redis:alpine",
            ports=((6379, 6379),),
            data_volume="damp-redis",
            volume_bindings=("damp-redis:/data",),
            healthcheck=_healthcheck("redis-cli", "ping"),
        ),
        post_install_message=(
            "Redis cache server installed and started successfully. Available at localhost:6379"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.MEILISEARCH,
        name="meilisearch",
        display_name="Meilisearch",
        description="Meilisearch full-text search engine",
        service_type=ServiceType.SEARCH,
        bundleable=True,
        proxy_subdomain="meilisearch",
        proxy_port=7700,
        default_config=ServiceConfig(
            image="getmeili/meilisearch:latest",
            ports=((7700, 7700),),
            environment_vars=("MEILI_NO_ANALYTICS=false", "MEILI_MASTER_KEY=masterkey"),
            data_volume="damp-meilisearch",
            volume_bindings=("damp-meilisearch:/meili_data",),
            healthcheck=_healthcheck("curl", "--fail", "http://127.0.0.1:7700/health"),
        ),
        post_install_message=(
            "Meilisearch installed and started successfully. "
            "Web UI: http://localhost:7700, Master key: 'masterkey'"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.MINIO,
        name="minio",
        display_name="MinIO Storage",
        description="MinIO S3-compatible object storage",
        service_type=ServiceType.STORAGE,
        default_config=ServiceConfig(
            image="minio/minio:latest",
            ports=((9000, 9000), (8900, 8900)),
            environment_vars=("MINIO_ROOT_USER=root", "MINIO_ROOT_PASSWORD=password"),
            data_volume="damp-minio",
            volume_bindings=("damp-minio:/data",),
            healthcheck=_healthcheck("mc", "ready", "local"),
        ),
        post_install_message=(
            "MinIO storage server installed and started successfully. "
            "Console: http://localhost:8900, API: http://localhost:9000, "
            "User: 'root', Password: 'password'"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.MEMCACHED,
        name="memcached",
        display_name="Memcached",
        description="Memcached distributed memory caching system",
        service_type=ServiceType.CACHE,
        bundleable=True,
        default_config=ServiceConfig(
            image="memcached:alpine",
            ports=((11211, 11211),),
        ),
        post_install_message=(
            "Memcached installed and started successfully. Available at localhost:11211"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.RABBITMQ,
        name="rabbitmq",
        display_name="RabbitMQ",
        description="RabbitMQ message broker for queues and messaging",
        service_type=ServiceType.QUEUE,
        bundleable=True,
        proxy_subdomain="rabbitmq",
        proxy_port=15672,
        default_config=ServiceConfig(
            image="rabbitmq:4-management-alpine",
            ports=((5672, 5672), (15672, 15672)),
            environment_vars=("RABBITMQ_DEFAULT_USER=rabbitmq", "RABBITMQ_DEFAULT_PASS=rabbitmq"),
            data_volume="damp-rabbitmq",
            volume_bindings=("damp-rabbitmq:/var/lib/rabbitmq",),
            healthcheck=_healthcheck("rabbitmq-diagnostics", "-q", "ping"),
        ),
        post_install_message=(
            "RabbitMQ installed and started successfully. "
            "Management UI: http://localhost:15672, User: 'rabbitmq', Password: 'rabbitmq'"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.TYPESENSE,
        name="typesense",
        display_name="Typesense Search",
        description="Typesense open source search engine",
        service_type=ServiceType.SEARCH,
        bundleable=True,
        proxy_subdomain="typesense",
        proxy_port=8108,
        default_config=ServiceConfig(
            image="typesense/typesense:27.1",
            ports=((8108, 8108),),
            environment_vars=(
                "TYPESENSE_DATA_DIR=/typesense-data",
                "TYPESENSE_API_KEY=xyz",
                "TYPESENSE_ENABLE_CORS=true",
            ),
            data_volume="damp-typesense",
            volume_bindings=("damp-typesense:/typesense-data",),
            healthcheck=_healthcheck("bash", "-c", _TYPESENSE_HEALTH, retries=5, timeout_s=7),
        ),
        post_install_message=(
            "Typesense search engine installed and started successfully. "
            "Available at http://localhost:8108, API Key: 'xyz'"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.VALKEY,
        name="valkey",
        display_name="Valkey Cache",
        description="Valkey key-value store for caching and sessions",
        service_type=ServiceType.CACHE,
        bundleable=True,
        default_config=ServiceConfig(
            image="valkey/valkey:alpine",
            ports=((6379, 6379),),
            data_volume="damp-valkey",
            volume_bindings=("damp-valkey:/data",),
            healthcheck=_healthcheck("valkey-cli", "ping"),
        ),
        post_install_message=(
            "Valkey cache server installed and started successfully. Available at localhost:6379"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.RUSTFS,
        name="rustfs",
        display_name="RustFS Storage",
        description="RustFS S3-compatible object storage",
        service_type=ServiceType.STORAGE,
        default_config=ServiceConfig(
            image="rustfs/rustfs:latest",
            ports=((9000, 9000), (9001, 9001)),
            environment_vars=(
                "RUSTFS_VOLUMES=/data",
                "RUSTFS_ADDRESS=0.0.0.0:9000",
                "RUSTFS_CONSOLE_ADDRESS=0.0.0.0:9001",
                "RUSTFS_CONSOLE_ENABLE=true",
                "RUSTFS_EXTERNAL_ADDRESS=:9000",
                "RUSTFS_CORS_ALLOWED_ORIGINS=*",
                "RUSTFS_CONSOLE_CORS_ALLOWED_ORIGINS=*",
                "RUSTFS_ACCESS_KEY=damp",
                "RUSTFS_SECRET_KEY=password",
                "RUSTFS_LOG_LEVEL=info",
            ),
            data_volume="damp_rustfs_data",
            volume_bindings=("damp_rustfs_data:/data",),
            healthcheck=_healthcheck(
                "sh",
                "-c",
                "curl -f http://127.0.0.1:9000/health && curl -f http://127.0.0.1:9001/health",
                timeout_s=10,
                interval_s=30,
                start_period_s=40,
            ),
        ),
        post_install_message=(
            "RustFS storage server installed and started successfully. "
            "Console: http://localhost:9001, API: http://localhost:9000, "
            "Access Key: 'damp', Secret Key: 'password'"
        ),
    ),
    ServiceDefinition(
        id=ServiceId.PHPMYADMIN,
        name="phpmyadmin",
        display_name="phpMyAdmin",
        description="Web-based MySQL/MariaDB database administration tool",
        service_type=ServiceType.DATABASE,
        bundleable=True,
        proxy_subdomain="phpmyadmin",
        proxy_port=80,
        linked_database_service=ServiceId.MYSQL,
        default_config=ServiceConfig(
            image="phpmyadmin:latest",
            environment_vars=("PMA_HOST=mysql", "PMA_ARBITRARY=0", "UPLOAD_LIMIT=100M"),
        ),
        post_install_message="phpMyAdmin is available for database management.",
    ),
    ServiceDefinition(
        id=ServiceId.ADMINER,
        name="adminer",
        display_name="Adminer",
        description="Lightweight database management tool (supports MySQL, PostgreSQL, MongoDB)",
        service_type=ServiceType.DATABASE,
        bundleable=True,
        proxy_subdomain="adminer",
        proxy_port=8080,
        linked_database_service=ServiceId.POSTGRESQL,
        default_config=ServiceConfig(
            image="adminer:latest",
            environment_vars=("ADMINER_DEFAULT_SERVER=postgresql",),
        ),
        post_install_message="Adminer is available for database management.",
    ),
)

SERVICE_DEFINITIONS: Mapping[ServiceId, ServiceDefinition] = MappingProxyType(
    {definition.id: definition for definition in _DEFINITIONS}
)


def get_service_definition(service_id: ServiceId | str) -> ServiceDefinition:
    """
    Look up a service definition.

    Args:
        service_id: Service ID or its string value

    Returns:
        Service definition

    Raises:
        ServiceNotFoundError: If the ID is not in the catalog
    """
    try:
        return SERVICE_DEFINITIONS[ServiceId(service_id)]
    except ValueError:
        raise ServiceNotFoundError(str(service_id))


def get_all_service_definitions() -> list[ServiceDefinition]:
    return list(SERVICE_DEFINITIONS.values())


def get_required_services() -> list[ServiceDefinition]:
    return [definition for definition in _DEFINITIONS if definition.required]


def get_optional_services() -> list[ServiceDefinition]:
    return [definition for definition in _DEFINITIONS if not definition.required]


def get_bundleable_services() -> list[ServiceDefinition]:
    """Services that can run as a per-project bundled container."""
    return [definition for definition in _DEFINITIONS if definition.bundleable]


def get_bundleable_services_by_type() -> dict[ServiceType, list[ServiceDefinition]]:
    grouped: dict[ServiceType, list[ServiceDefinition]] = {}
    for definition in get_bundleable_services():
        grouped.setdefault(definition.service_type, []).append(definition)
    return grouped
