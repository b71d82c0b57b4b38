"""Devcontainer and compose files generated for a project.

Static templates carry ``{{PLACEHOLDER}}`` markers that
:func:`render_template` fills from a :class:`TemplateContext`. Projects with
bundled services get a compose based devcontainer whose services are built
programmatically.
"""

import json
from dataclasses import dataclass, field

from damp_orchestrator.labels import LabelKey, bundled_service_labels, project_container_labels
from damp_orchestrator.project_config import BundledService
from damp_orchestrator.service_config import SECOND_NS
from damp_orchestrator.service_definitions import (
    ServiceDefinition,
    ServiceId,
    ServiceType,
    get_service_definition,
)

# Concrete Node.js majors for the lts/latest aliases
NODE_VERSION_MAP = {
    "lts": "24",
    "latest": "25",
    "20": "20",
    "22": "22",
    "24": "24",
    "25": "25",
}

CLAUDE_AI_FEATURE = '"ghcr.io/anthropics/devcontainer-features/claude-code:1.0": {}'

POST_CREATE_COMMAND = (
    "[ -f composer.json ] && composer install || true; "
    "[ -f package.json ] && npm install && npm run build || true"
)

# Apache, NGINX and FrankenPHP are started by S6 Overlay
POST_START_COMMAND = ""


@dataclass
class TemplateContext:
    """Values substituted into the project templates."""

    project_id: str
    project_name: str
    volume_name: str
    php_version: str
    php_variant: str
    node_version: str
    php_extensions: str
    document_root: str
    network_name: str
    forwarded_port: int
    enable_claude_ai: bool
    post_start_command: str
    post_create_command: str | None
    launch_index_path: str = ""
    bundled_services: list[BundledService] = field(default_factory=list)


@dataclass
class ProjectTemplates:
    devcontainer_json: str
    dockerfile: str
    launch_json: str
    dockerignore: str
    devcontainer_compose: str
    root_docker_compose: str

    def files(self) -> dict[str, str]:
        """Rendered files keyed by their path relative to the project root."""
        return {
            ".devcontainer/devcontainer.json": self.devcontainer_json,
            ".devcontainer/docker-compose.yml": self.devcontainer_compose,
            ".vscode/launch.json": self.launch_json,
            "Dockerfile": self.dockerfile,
            ".dockerignore": self.dockerignore,
            "docker-compose.yml": self.root_docker_compose,
        }


DEVCONTAINER_JSON_TEMPLATE = """{
    "name": "{{PROJECT_NAME}}",

    // Docker volume for better performance and persistent storage
    "workspaceMount": "source={{VOLUME_NAME}},target=/var/www/html,type=volume",
    "workspaceFolder": "/var/www/html",

    "build": {
        "dockerfile": "../Dockerfile",
        "context": "..",
        "target": "development",
        "args": {
            "USER_ID": "${localEnv:UID:1000}",
            "GROUP_ID": "${localEnv:GID:1000}"
        }
    },

    "remoteUser": "www-data",
    "overrideCommand": false,

    "containerEnv": {
        "SSL_MODE": "full",
        "PHP_OPCACHE_ENABLE": "0"
    },

    "features": {
        {{CLAUDE_AI_FEATURE}}
    },

    "customizations": {
        "vscode": {
            "settings": {
                "php.validate.executablePath": "/usr/local/bin/php"
            },
            "extensions": [
                "xdebug.php-debug",
                "bmewburn.vscode-intelephense-client",
                "streetsidesoftware.code-spell-checker"
            ]
        }
    },

    "runArgs": [
        "--network={{NETWORK_NAME}}",
        "--label={{LABEL_MANAGED}}",
        "--label={{LABEL_TYPE}}",
        "--label={{LABEL_PROJECT_ID}}",
        "--label={{LABEL_PROJECT_NAME}}"
    ],

    "forwardPorts": [{{FORWARDED_PORT}}],

    "postCreateCommand": "{{POST_CREATE_COMMAND}}",
    "postStartCommand": "{{POST_START_COMMAND}}"
}
"""

DEVCONTAINER_COMPOSE_JSON_TEMPLATE = """{
    "name": "{{PROJECT_NAME}}",

    // Docker Compose for multi-container orchestration
    "dockerComposeFile": "docker-compose.yml",
    "service": "app",
    "workspaceFolder": "/var/www/html",

    "remoteUser": "www-data",
    "overrideCommand": false,

    "containerEnv": {
        "SSL_MODE": "full",
        "PHP_OPCACHE_ENABLE": "0"
    },

    "features": {
        {{CLAUDE_AI_FEATURE}}
    },

    "customizations": {
        "vscode": {
            "settings": {
                "php.validate.executablePath": "/usr/local/bin/php"
            },
            "extensions": [
                "xdebug.php-debug",
                "bmewburn.vscode-intelephense-client",
                "streetsidesoftware.code-spell-checker"
            ]
        }
    },

    "forwardPorts": [{{FORWARDED_PORT}}],

    "postCreateCommand": "{{POST_CREATE_COMMAND}}",
    "postStartCommand": "{{POST_START_COMMAND}}"
}
"""

DOCKERFILE_TEMPLATE = r"""# syntax=docker/dockerfile:1.4

############################################
# Build Arguments
############################################
ARG PHP_VERSION={{PHP_VERSION}}
ARG PHP_VARIANT={{PHP_VARIANT}}
ARG USER_ID=1000
ARG GROUP_ID=1000

############################################
# Base Image
############################################
FROM serversideup/php:${PHP_VERSION}-${PHP_VARIANT} AS base

############################################
# Development Image
############################################
FROM base AS development

USER root

# Change www-data UID/GID to match the host user
ARG USER_ID
ARG GROUP_ID
RUN docker-php-serversideup-set-id www-data ${USER_ID}:${GROUP_ID} && \
    docker-php-serversideup-set-file-permissions --owner ${USER_ID}:${GROUP_ID} --service {{SERVICE_TYPE}}

# Install development tools{{NODE_INSTALL_COMMENT}}
RUN --mount=type=cache,target=/var/cache/apt,sharing=locked \
    --mount=type=cache,target=/var/lib/apt,sharing=locked \
    {{NODE_CACHE_MOUNT}}{{NODE_SETUP_COMMANDS}} \
    && apt-get clean \
    && rm -rf /var/lib/apt/lists/*

# Install Xdebug and additional PHP extensions
RUN install-php-extensions xdebug{{PHP_EXTENSIONS_DOCKERFILE}} \
    && cat > /usr/local/etc/php/conf.d/xdebug.ini <<'EOF'
xdebug.mode = develop,debug,trace,coverage,profile
xdebug.start_with_request = trigger
xdebug.client_port = 9003
EOF

# Configure www-data user for development
RUN usermod -s /usr/bin/zsh www-data && \
    mkdir -p /var/www && \
    chown www-data:www-data /var/www && \
    echo "www-data ALL=(root) NOPASSWD:ALL" > /etc/sudoers.d/www-data && \
    chmod 0440 /etc/sudoers.d/www-data

# Install Oh My Zsh for www-data
USER www-data
RUN sh -c "$(curl -fsSL https://raw.githubusercontent.com/ohmyzsh/ohmyzsh/master/tools/install.sh)" "" --unattended \
    && git clone https://github.com/zsh-users/zsh-autosuggestions ${ZSH_CUSTOM:-~/.oh-my-zsh/custom}/plugins/zsh-autosuggestions \
    && git clone https://github.com/zsh-users/zsh-syntax-highlighting ${ZSH_CUSTOM:-~/.oh-my-zsh/custom}/plugins/zsh-syntax-highlighting \
    && sed -i 's/plugins=(git)/plugins=(git node npm composer sudo zsh-autosuggestions zsh-syntax-highlighting)/' ~/.zshrc

############################################
# Production Image
############################################
FROM base AS production

COPY --chown=www-data:www-data . /var/www/html
"""

LAUNCH_JSON_TEMPLATE = """{
    "version": "0.2.0",
    "configurations": [
        {
            "name": "Listen for XDebug",
            "type": "php",
            "request": "launch",
            "port": 9003
        },
        {
            "name": "Launch application",
            "type": "php",
            "request": "launch",
            "program": "${workspaceFolder}/{{LAUNCH_INDEX_PATH}}index.php",
            "cwd": "${workspaceFolder}",
            "port": 9003
        },
        {
            "name": "Launch currently open script",
            "type": "php",
            "request": "launch",
            "program": "${file}",
            "cwd": "${fileDirname}",
            "port": 9003
        }
    ]
}
"""

DOCKERIGNORE_TEMPLATE = """# Development files
.devcontainer/
.vscode/
.idea/
.git/
.gitignore
.editorconfig

# Environment files
.env.*
!.env.example

# Build artifacts
*.log
npm-debug.log*
yarn-debug.log*
yarn-error.log*
.npm
.cache/

# Testing
coverage/
.phpunit.result.cache
tests/_output/

# OS files
.DS_Store
Thumbs.db

# Editors
*.swp
*.swo
*~

# Temporary files
tmp/
temp/
*.tmp
"""

DOCKER_COMPOSE_TEMPLATE = """# Docker Compose Configuration
#
# Usage:
#   Development:  docker compose --profile development up app-dev
#   Production:   docker compose --profile production up app-prod
#
# Environment variables can be customized in .env file:
#   DEV_PORT=80, DEV_SSL_PORT=443
#   PROD_PORT=80, PROD_SSL_PORT=443
#   APP_ENV=local, APP_DEBUG=true, LOG_LEVEL=debug

services:
  # Development service with debugging tools
  app-dev:
    build:
      context: .
      dockerfile: Dockerfile
      target: development
      args:
        PHP_VERSION: {{PHP_VERSION}}
        PHP_VARIANT: {{PHP_VARIANT}}
        USER_ID: ${UID:-1000}
        GROUP_ID: ${GID:-1000}
    restart: unless-stopped

    ports:
      - "${DEV_PORT:-80}:8080"
      - "${DEV_SSL_PORT:-443}:8443"

    networks:
      - {{NETWORK_NAME}}

    environment:
      - APP_ENV=${APP_ENV:-local}
      - APP_DEBUG=${APP_DEBUG:-true}
      - SSL_MODE=${SSL_MODE:-full}
      - PHP_OPCACHE_ENABLE=0
      - PHP_DISPLAY_ERRORS=On
      - LOG_LEVEL=${LOG_LEVEL:-debug}

    volumes:
      # Bind mount for hot-reload
      - .:/var/www/html
      # Named volume alternative:
      # - {{VOLUME_NAME}}:/var/www/html

    profiles:
      - development

  # Production service
  app-prod:
    build:
      context: .
      dockerfile: Dockerfile
      target: production
      args:
        PHP_VERSION: {{PHP_VERSION}}
        PHP_VARIANT: {{PHP_VARIANT}}
    # Pre-built alternative: docker build --target production -t {{PROJECT_NAME}}:latest .
    # image: {{PROJECT_NAME}}:latest

    restart: unless-stopped

    ports:
      - "${PROD_PORT:-80}:8080"
      - "${PROD_SSL_PORT:-443}:8443"

    networks:
      - {{NETWORK_NAME}}

    environment:
      - APP_ENV=production
      - APP_DEBUG=false
      - SSL_MODE=${SSL_MODE:-full}
      - PHP_OPCACHE_ENABLE=1
      - PHP_DISPLAY_ERRORS=Off
      - LOG_LEVEL=${LOG_LEVEL:-warning}

    healthcheck:
      test: ["CMD", "curl", "-f", "http://localhost:8080/healthcheck"]
      interval: 30s
      timeout: 10s
      retries: 3
      start_period: 40s

    profiles:
      - production

networks:
  {{NETWORK_NAME}}:
    external: true
"""


def php_service_type(php_variant: str) -> str:
    """Web server flavour of a serversideup/php variant."""
    for service_type in ("apache", "nginx", "frankenphp"):
        if service_type in php_variant:
            return service_type
    return "fpm"


def _node_setup(node_version: str) -> tuple[str, str, str]:
    if not node_version or node_version == "none":
        return (
            "",
            "",
            "apt-get update \\\n"
            "    && apt-get install -y --no-install-recommends \\\n"
            "        git \\\n"
            "        sudo \\\n"
            "        zsh",
        )
    mapped = NODE_VERSION_MAP.get(node_version, node_version)
    return (
        f" and Node.js {mapped}",
        "--mount=type=cache,target=/root/.npm,sharing=locked \\\n    ",
        f"curl -fsSL https://deb.nodesource.com/setup_{mapped}.x | bash - \\\n"
        "    && apt-get install -y --no-install-recommends \\\n"
        "        git \\\n"
        "        zsh \\\n"
        "        sudo \\\n"
        "        nodejs \\\n"
        "    && npm install -g npm@latest",
    )


def render_template(template: str, context: TemplateContext) -> str:
    """
    Fill every ``{{PLACEHOLDER}}`` of a template.

    Args:
        template: Template text
        context: Substitution values

    Returns:
        Rendered text
    """
    labels = project_container_labels(context.project_id, context.project_name).to_labels()
    node_comment, node_cache_mount, node_setup = _node_setup(context.node_version)
    extensions = context.php_extensions.strip()

    def label(key: LabelKey) -> str:
        return f"{key.value}={labels[key.value]}"

    values = {
        "PROJECT_NAME": context.project_name,
        "VOLUME_NAME": context.volume_name,
        "PHP_VERSION": context.php_version,
        "NODE_VERSION": context.node_version,
        "NODE_VERSION_MAPPED": NODE_VERSION_MAP.get(context.node_version, ""),
        "PHP_EXTENSIONS": context.php_extensions,
        "PHP_VARIANT": context.php_variant,
        "SERVICE_TYPE": php_service_type(context.php_variant),
        "DOCUMENT_ROOT": context.document_root,
        "NETWORK_NAME": context.network_name,
        "FORWARDED_PORT": str(context.forwarded_port),
        "LABEL_MANAGED": label(LabelKey.MANAGED),
        "LABEL_TYPE": label(LabelKey.TYPE),
        "LABEL_PROJECT_ID": label(LabelKey.PROJECT_ID),
        "LABEL_PROJECT_NAME": label(LabelKey.PROJECT_NAME),
        "POST_START_COMMAND": context.post_start_command,
        "POST_CREATE_COMMAND": context.post_create_command or "",
        "LAUNCH_INDEX_PATH": context.launch_index_path,
        "PHP_EXTENSIONS_DOCKERFILE": f" {extensions}" if extensions else "",
        "NODE_INSTALL_COMMENT": node_comment,
        "NODE_CACHE_MOUNT": node_cache_mount,
        "NODE_SETUP_COMMANDS": node_setup,
        "CLAUDE_AI_FEATURE": CLAUDE_AI_FEATURE if context.enable_claude_ai else "",
    }
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace("{{" + key + "}}", value)
    return rendered


def _set_env(env_vars: list[str], key: str, value: str) -> None:
    prefix = f"{key}="
    for index, item in enumerate(env_vars):
        if item.startswith(prefix):
            env_vars[index] = prefix + value
            return
    env_vars.append(prefix + value)


_CREDENTIAL_ENV = {
    ServiceId.MYSQL: {
        "root_password": "MYSQL_ROOT_PASSWORD",
        "database": "MYSQL_DATABASE",
        "username": "MYSQL_USER",
        "password": "MYSQL_PASSWORD",
    },
    ServiceId.MARIADB: {
        "root_password": "MARIADB_ROOT_PASSWORD",
        "database": "MARIADB_DATABASE",
        "username": "MARIADB_USER",
        "password": "MARIADB_PASSWORD",
    },
    ServiceId.POSTGRESQL: {
        "password": "POSTGRES_PASSWORD",
        "database": "POSTGRES_DB",
        "username": "POSTGRES_USER",
    },
    ServiceId.MONGODB: {
        "username": "MONGO_INITDB_ROOT_USERNAME",
        "password": "MONGO_INITDB_ROOT_PASSWORD",
    },
}

_ADMIN_HOST_ENV = {
    ServiceId.PHPMYADMIN: "PMA_HOST",
    ServiceId.ADMINER: "ADMINER_DEFAULT_SERVER",
}


def _is_primary_database(definition: ServiceDefinition) -> bool:
    return (
        definition.service_type == ServiceType.DATABASE
        and definition.linked_database_service is None
    )


def find_linked_database(
    bundled: list[BundledService], admin: ServiceDefinition
) -> ServiceDefinition | None:
    """
    Pick the bundled database an admin tool should talk to.

    The declared linked database wins; phpMyAdmin also accepts MariaDB and
    Adminer accepts any bundled database.
    """
    if admin.linked_database_service is None:
        return None
    ids = [service.service_id for service in bundled]
    if admin.linked_database_service in ids:
        return get_service_definition(admin.linked_database_service)
    if admin.id == ServiceId.PHPMYADMIN and ServiceId.MARIADB in ids:
        return get_service_definition(ServiceId.MARIADB)
    if admin.id == ServiceId.ADMINER:
        for service_id in ids:
            definition = get_service_definition(service_id)
            if _is_primary_database(definition):
                return definition
    return None


def bundled_service_env(
    service: BundledService, bundled: list[BundledService]
) -> list[str]:
    """
    Environment of a bundled service with credential overrides applied.

    Args:
        service: Bundled service
        bundled: Every service bundled with the project, for admin tool links

    Returns:
        ``KEY=value`` strings
    """
    definition = get_service_definition(service.service_id)
    env_vars = list(definition.default_config.environment_vars)
    creds = service.custom_credentials
    if creds:
        for attr, key in _CREDENTIAL_ENV.get(service.service_id, {}).items():
            value = getattr(creds, attr)
            if value:
                _set_env(env_vars, key, value)

    host_key = _ADMIN_HOST_ENV.get(service.service_id)
    if host_key:
        linked = find_linked_database(bundled, definition)
        if linked is not None:
            _set_env(env_vars, host_key, linked.name)
    return env_vars


def bundled_container_name(project_name: str, definition: ServiceDefinition) -> str:
    return f"{project_name}-{definition.name}"


def bundled_data_volume(project_name: str, definition: ServiceDefinition) -> str:
    return f"{project_name}_{definition.name}_data"


def _compose_healthcheck(definition: ServiceDefinition) -> list[str]:
    check = definition.default_config.healthcheck
    if check is None:
        return []
    lines = [
        "    healthcheck:",
        f"      test: {json.dumps(list(check.test))}",
        f"      retries: {check.retries}",
        f"      timeout: {check.timeout // SECOND_NS}s",
    ]
    if check.interval:
        lines.append(f"      interval: {check.interval // SECOND_NS}s")
    if check.start_period:
        lines.append(f"      start_period: {check.start_period // SECOND_NS}s")
    return lines


def generate_multi_service_compose(context: TemplateContext) -> str:
    """
    Build the devcontainer compose file for a project with bundled services.

    Falls back to the plain compose template when nothing is bundled.
    """
    bundled = context.bundled_services
    if not bundled:
        return render_template(DOCKER_COMPOSE_TEMPLATE, context)

    app_labels = project_container_labels(context.project_id, context.project_name).to_labels()
    definitions = [get_service_definition(service.service_id) for service in bundled]

    lines = [
        "# Docker Compose Configuration with Bundled Services",
        f"# Project: {context.project_name}",
        "# Auto-generated by DAMP - Do not edit manually",
        "",
        "services:",
        "  # Main application container",
        "  app:",
        "    build:",
        "      context: ..",
        "      dockerfile: Dockerfile",
        "      target: development",
        "      args:",
        f"        PHP_VERSION: {context.php_version}",
        f"        PHP_VARIANT: {context.php_variant}",
        "        USER_ID: ${UID:-1000}",
        "        GROUP_ID: ${GID:-1000}",
        f"    container_name: {context.project_name}-app",
        "    restart: unless-stopped",
        "    volumes:",
        f"      - {context.volume_name}:/var/www/html",
        "    networks:",
        f"      - {context.network_name}",
        "    environment:",
        "      - SSL_MODE=full",
        "      - PHP_OPCACHE_ENABLE=0",
        "      - PHP_DISPLAY_ERRORS=On",
        "    labels:",
    ]
    lines.extend(f'      - "{key}={value}"' for key, value in app_labels.items())

    databases = [d for d in definitions if _is_primary_database(d)]
    if databases:
        lines.append("    depends_on:")
        for definition in databases:
            condition = (
                "service_healthy" if definition.default_config.healthcheck else "service_started"
            )
            lines.extend([f"      {definition.name}:", f"        condition: {condition}"])

    for service, definition in zip(bundled, definitions):
        labels = bundled_service_labels(
            context.project_id, context.project_name, definition.id.value
        ).to_labels()
        lines.extend(
            [
                "",
                f"  # {definition.display_name}",
                f"  {definition.name}:",
                f"    image: {definition.default_config.image}",
                f"    container_name: {bundled_container_name(context.project_name, definition)}",
                "    restart: unless-stopped",
                "    networks:",
                f"      - {context.network_name}",
                "    labels:",
            ]
        )
        lines.extend(f'      - "{key}={value}"' for key, value in labels.items())

        env_vars = bundled_service_env(service, bundled)
        if env_vars:
            lines.append("    environment:")
            lines.extend(f"      - {env}" for env in env_vars)

        config = definition.default_config
        if config.data_volume:
            target = "/data"
            if config.volume_bindings:
                parts = config.volume_bindings[0].split(":")
                if len(parts) > 1:
                    target = parts[1]
            lines.extend(
                [
                    "    volumes:",
                    f"      - {bundled_data_volume(context.project_name, definition)}:{target}",
                ]
            )

        lines.extend(_compose_healthcheck(definition))

        linked = find_linked_database(bundled, definition)
        if linked is not None:
            lines.extend(
                [
                    "    depends_on:",
                    f"      {linked.name}:",
                    "        condition: service_healthy",
                ]
            )

    lines.extend(["", "volumes:", f"  {context.volume_name}:", "    external: true"])
    for definition in definitions:
        if definition.default_config.data_volume:
            lines.append(f"  {bundled_data_volume(context.project_name, definition)}:")

    lines.extend(["", "networks:", f"  {context.network_name}:", "    external: true", ""])
    return "\n".join(lines)


def generate_project_templates(context: TemplateContext) -> ProjectTemplates:
    """Render every project file; compose mode is used when services are bundled."""
    compose_mode = bool(context.bundled_services)
    return ProjectTemplates(
        devcontainer_json=render_template(
            DEVCONTAINER_COMPOSE_JSON_TEMPLATE if compose_mode else DEVCONTAINER_JSON_TEMPLATE,
            context,
        ),
        dockerfile=render_template(DOCKERFILE_TEMPLATE, context),
        launch_json=render_template(LAUNCH_JSON_TEMPLATE, context),
        dockerignore=render_template(DOCKERIGNORE_TEMPLATE, context),
        devcontainer_compose=generate_multi_service_compose(context),
        root_docker_compose=render_template(DOCKER_COMPOSE_TEMPLATE, context),
    )


def _service_by_key(bundled: list[BundledService]) -> dict[str, BundledService]:
    # Databases are keyed by name, everything else by service type
    mapping: dict[str, BundledService] = {}
    for service in bundled:
        definition = get_service_definition(service.service_id)
        key = (
            definition.name
            if definition.service_type == ServiceType.DATABASE
            else definition.service_type.value
        )
        mapping[key] = service
    return mapping


def generate_env_for_bundled_services(
    project_name: str, domain: str, bundled: list[BundledService]
) -> str:
    """
    Render ``.env.damp`` with connection settings for the bundled services.

    Hosts follow the bundled container naming, ``{project}-{service}``.
    """
    lines = [
        "# DAMP Environment Configuration",
        "# Auto-generated by DAMP for bundled services",
        "# Copy the values you need to your .env file",
        "",
        f"# Project: {project_name}",
        f"# Domain: https://{domain}",
        "",
    ]
    by_key = _service_by_key(bundled)

    def host(service: BundledService) -> str:
        return bundled_container_name(project_name, get_service_definition(service.service_id))

    def cred(service: BundledService, attr: str, default: str) -> str:
        value = getattr(service.custom_credentials, attr, None) if service.custom_credentials else None
        return value or default

    mysql = by_key.get("mysql") or by_key.get("mariadb")
    pgsql = by_key.get("postgresql")
    mongo = by_key.get("mongodb")
    if mysql:
        definition = get_service_definition(mysql.service_id)
        lines.extend(
            [
                f"# Database - {definition.display_name}",
                "DB_CONNECTION=mysql",
                f"DB_HOST={host(mysql)}",
                "DB_PORT=3306",
                f"DB_DATABASE={cred(mysql, 'database', 'development')}",
                f"DB_USERNAME={cred(mysql, 'username', 'developer')}",
                f"DB_PASSWORD={cred(mysql, 'password', 'developer')}",
                "",
            ]
        )
    elif pgsql:
        lines.extend(
            [
                "# Database - PostgreSQL",
                "DB_CONNECTION=pgsql",
                f"DB_HOST={host(pgsql)}",
                "DB_PORT=5432",
                f"DB_DATABASE={cred(pgsql, 'database', 'postgres')}",
                f"DB_USERNAME={cred(pgsql, 'username', 'postgres')}",
                f"DB_PASSWORD={cred(pgsql, 'password', 'postgres')}",
                "",
            ]
        )
    elif mongo:
        lines.extend(
            [
                "# Database - MongoDB",
                "DB_CONNECTION=mongodb",
                f"DB_HOST={host(mongo)}",
                "DB_PORT=27017",
                f"DB_USERNAME={cred(mongo, 'username', 'root')}",
                f"DB_PASSWORD={cred(mongo, 'password', 'root')}",
                "",
            ]
        )

    cache = by_key.get(ServiceType.CACHE.value)
    if cache:
        definition = get_service_definition(cache.service_id)
        driver = "redis" if definition.name == "valkey" else definition.name
        lines.extend(
            [
                f"# Cache - {definition.display_name}",
                f"CACHE_STORE={driver}",
                f"REDIS_HOST={host(cache)}",
                "REDIS_PASSWORD=null",
                "REDIS_PORT=6379",
                "",
                f"SESSION_DRIVER={driver}",
                f"QUEUE_CONNECTION={driver}",
                "",
            ]
        )

    email = by_key.get(ServiceType.EMAIL.value)
    if email:
        lines.extend(
            [
                "# Email - Mailpit",
                "MAIL_MAILER=smtp",
                f"MAIL_HOST={host(email)}",
                "MAIL_PORT=1025",
                "MAIL_USERNAME=null",
                "MAIL_PASSWORD=null",
                "MAIL_ENCRYPTION=null",
                f'MAIL_FROM_ADDRESS="hello@{domain}"',
                'MAIL_FROM_NAME="${APP_NAME}"',
                "",
            ]
        )

    search = by_key.get(ServiceType.SEARCH.value)
    if search:
        if search.service_id == ServiceId.MEILISEARCH:
            lines.extend(
                [
                    "# Search - Meilisearch",
                    "SCOUT_DRIVER=meilisearch",
                    f"MEILISEARCH_HOST=http://{host(search)}:7700",
                    "MEILISEARCH_KEY=masterkey",
                    "",
                ]
            )
        elif search.service_id == ServiceId.TYPESENSE:
            lines.extend(
                [
                    "# Search - Typesense",
                    "SCOUT_DRIVER=typesense",
                    "TYPESENSE_API_KEY=xyz",
                    f"TYPESENSE_HOST={host(search)}",
                    "TYPESENSE_PORT=8108",
                    "",
                ]
            )

    queue = by_key.get(ServiceType.QUEUE.value)
    if queue:
        lines.extend(
            [
                "# Queue - RabbitMQ",
                f"RABBITMQ_HOST={host(queue)}",
                "RABBITMQ_PORT=5672",
                "RABBITMQ_USER=rabbitmq",
                "RABBITMQ_PASSWORD=rabbitmq",
                "RABBITMQ_VHOST=/",
                "",
            ]
        )

    return "\n".join(lines)


def generate_index_php(project_name: str, php_version: str) -> str:
    """Welcome page written to ``public/index.php`` of basic PHP projects."""
    return f"""<?php
/**
 * Welcome to {project_name}
 * PHP Version: {php_version}
 */

$phpVersion = phpversion();
$extensions = get_loaded_extensions();

?>
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{project_name} - PHP Development Site</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            max-width: 800px;
            margin: 0 auto;
            padding: 20px;
            background: #f5f5f5;
        }}
        .container {{
            background: white;
            padding: 30px;
            border-radius: 8px;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        }}
        .info {{
            background: #e8f4fd;
            padding: 15px;
            border-radius: 5px;
            margin: 20px 0;
        }}
        .extensions {{
            display: grid;
            grid-template-columns: repeat(auto-fit, minmax(200px, 1fr));
            gap: 10px;
        }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{project_name}</h1>
        <p>Your PHP development environment is ready!</p>

        <div class="info">
            <h3>Environment Information</h3>
            <p><strong>PHP Version:</strong> <?= $phpVersion ?></p>
            <p><strong>Site Name:</strong> {project_name}</p>
            <p><strong>Server:</strong> <?= $_SERVER['SERVER_SOFTWARE'] ?? 'Built-in PHP Server' ?></p>
            <p><strong>Document Root:</strong> <?= $_SERVER['DOCUMENT_ROOT'] ?? __DIR__ ?></p>
        </div>

        <div class="info">
            <h3>Available PHP Extensions</h3>
            <div class="extensions">
                <?php foreach ($extensions as $extension): ?>
                    <div><?= htmlspecialchars($extension) ?></div>
                <?php endforeach; ?>
            </div>
        </div>
    </div>
</body>
</html>
"""
