"""Property-based tests for the service configuration merge policy."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from damp_orchestrator.service_config import CustomConfig, ServiceConfig, merge_configs

port_pairs = st.lists(
    st.tuples(st.integers(1, 65535), st.integers(1, 65535)), max_size=4
).map(tuple)
env_vars = st.lists(
    st.from_regex(r"[A-Z][A-Z_]{0,10}=[a-z0-9]{0,8}", fullmatch=True), max_size=5
).map(tuple)
bindings = st.lists(st.from_regex(r"[a-z]{1,8}:/[a-z]{1,8}", fullmatch=True), max_size=3).map(tuple)

defaults = st.builds(
    ServiceConfig,
    image=st.just("mysql:latest"),
    ports=port_pairs,
    environment_vars=env_vars,
    volume_bindings=bindings,
)
overrides = st.builds(
    CustomConfig,
    ports=st.none() | port_pairs,
    environment_vars=st.none() | env_vars,
    volume_bindings=st.none() | bindings,
)


@pytest.mark.property
@given(defaults, overrides)
def test_environment_is_appended(default: ServiceConfig, custom: CustomConfig):
    """Property: default variables are kept, in order, ahead of the override's."""
    merged = merge_configs(default, custom)

    assert merged.environment_vars == default.environment_vars + (custom.environment_vars or ())


@pytest.mark.property
@given(defaults, overrides)
def test_ports_and_bindings_are_replaced(default: ServiceConfig, custom: CustomConfig):
    """Property: provided ports and bindings replace the defaults outright."""
    merged = merge_configs(default, custom)

    expected_ports = custom.ports if custom.ports is not None else default.ports
    expected_bindings = (
        custom.volume_bindings if custom.volume_bindings is not None else default.volume_bindings
    )
    assert merged.ports == expected_ports
    assert merged.volume_bindings == expected_bindings
    assert merged.image == default.image


@pytest.mark.property
@given(defaults)
def test_no_override_is_identity(default: ServiceConfig):
    """Property: merging nothing returns the default unchanged."""
    assert merge_configs(default, None) == default
