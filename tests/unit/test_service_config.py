"""Unit tests for service configuration merging."""

from damp_orchestrator.service_config import (
    SECOND_NS,
    CustomConfig,
    HealthcheckSpec,
    ServiceConfig,
    merge_configs,
    volume_names_from_bindings,
)

DEFAULT = ServiceConfig(
    image="mysql:latest",
    ports=((3306, 3306),),
    environment_vars=("MYSQL_ROOT_PASSWORD=root",),
    volume_bindings=("damp_mysql_data:/var/lib/mysql",),
    data_volume="damp_mysql_data",
)


def test_merge_without_custom_returns_default():
    assert merge_configs(DEFAULT, None) is DEFAULT


def test_merge_replaces_ports_and_appends_environment():
    custom = CustomConfig(ports=((3307, 3306),), environment_vars=("TZ=UTC",))

    merged = merge_configs(DEFAULT, custom)

    assert merged.ports == ((3307, 3306),)
    assert merged.environment_vars == ("MYSQL_ROOT_PASSWORD=root", "TZ=UTC")
    assert merged.volume_bindings == DEFAULT.volume_bindings
    assert merged.image == DEFAULT.image


def test_merge_replaces_bindings_and_name():
    custom = CustomConfig(volume_bindings=("other:/data",), container_name="db")

    merged = merge_configs(DEFAULT, custom)

    assert merged.volume_bindings == ("other:/data",)
    assert merged.container_name == "db"
    assert merged.data_volume == "damp_mysql_data"


def test_empty_ports_override_is_respected():
    merged = merge_configs(DEFAULT, CustomConfig(ports=()))

    assert merged.ports == ()


def test_custom_config_dict_round_trip():
    custom = CustomConfig.from_dict(
        {"ports": [[8080, 80]], "environment_vars": ["A=1"], "container_name": "web"}
    )

    assert custom.ports == ((8080, 80),)
    assert custom.volume_bindings is None
    assert custom.to_dict() == {
        "ports": [[8080, 80]],
        "environment_vars": ["A=1"],
        "container_name": "web",
    }
    assert CustomConfig.from_dict(None) is None
    assert CustomConfig.from_dict({}) is None


def test_volume_names_skip_host_paths():
    bindings = [
        "damp_caddy_data:/data",
        "/srv/www:/var/www",
        "./local:/app",
        "C:\\Users\\dev:/app",
        "damp_caddy_data:/backup:ro",
        "damp_caddy_config:/config",
    ]

    assert volume_names_from_bindings(bindings) == ["damp_caddy_data", "damp_caddy_config"]


def test_healthcheck_to_docker_omits_unset_durations():
    spec = HealthcheckSpec(test=("CMD", "true"))

    assert spec.to_docker() == {"test": ["CMD", "true"], "retries": 3, "timeout": 5 * SECOND_NS}

    spec = HealthcheckSpec(test=("CMD", "true"), interval=SECOND_NS, start_period=2 * SECOND_NS)
    assert spec.to_docker()["interval"] == SECOND_NS
    assert spec.to_docker()["start_period"] == 2 * SECOND_NS
