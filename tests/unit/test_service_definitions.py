"""Unit tests for the service catalog."""

import pytest

from damp_orchestrator.service_definitions import (
    ServiceId,
    ServiceType,
    get_all_service_definitions,
    get_bundleable_services,
    get_bundleable_services_by_type,
    get_optional_services,
    get_required_services,
    get_service_definition,
)
from damp_orchestrator.utils.exceptions import ServiceNotFoundError


def test_every_service_id_has_a_definition():
    ids = {definition.id for definition in get_all_service_definitions()}

    assert ids == set(ServiceId)


def test_lookup_accepts_string_ids():
    definition = get_service_definition("postgresql")

    assert definition.id == ServiceId.POSTGRESQL
    assert definition.default_config.image == "postgres:17-alpine"
    assert definition.default_config.healthcheck is not None


def test_unknown_service_raises():
    with pytest.raises(ServiceNotFoundError) as exc_info:
        get_service_definition("oracle")

    assert str(exc_info.value) == "Service oracle not found"


def test_caddy_is_the_only_required_service():
    required = get_required_services()

    assert [definition.id for definition in required] == [ServiceId.CADDY]
    assert ServiceId.CADDY not in {d.id for d in get_optional_services()}


def test_bundleable_services_exclude_proxy():
    bundleable = {definition.id for definition in get_bundleable_services()}

    assert ServiceId.CADDY not in bundleable
    assert ServiceId.MYSQL in bundleable


def test_bundleable_services_grouped_by_type():
    grouped = get_bundleable_services_by_type()

    assert ServiceId.MYSQL in {d.id for d in grouped[ServiceType.DATABASE]}
    for service_type, definitions in grouped.items():
        assert all(d.service_type == service_type for d in definitions)


def test_admin_tools_link_a_database_and_expose_a_subdomain():
    phpmyadmin = get_service_definition(ServiceId.PHPMYADMIN)

    assert phpmyadmin.linked_database_service == ServiceId.MYSQL
    assert phpmyadmin.proxy_subdomain == "phpmyadmin"
    assert phpmyadmin.proxy_port == 80


def test_to_dict_is_plain_data():
    data = get_service_definition(ServiceId.MYSQL).to_dict()

    assert data["id"] == "mysql"
    assert data["service_type"] == "database"
    assert data["default_config"]["ports"] == [[3306, 3306]]
    assert data["default_config"]["has_healthcheck"] is True
