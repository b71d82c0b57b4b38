"""Property-based tests for orphan classification and drift detection."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, create_autospec
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from damp_orchestrator.config import Settings
from damp_orchestrator.labels import project_volume_labels
from damp_orchestrator.managers.container_manager import ContainerManager
from damp_orchestrator.managers.resource_reconciler import ResourceReconciler, service_has_drifted
from damp_orchestrator.managers.service_state_manager import ServiceStateManager
from damp_orchestrator.managers.volume_manager import VolumeManager
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.models.projects import Project
from damp_orchestrator.repositories import ProjectRepository
from damp_orchestrator.service_definitions import get_service_definition

project_ids = st.sampled_from([f"p_{i}" for i in range(8)])


def make_project(project_id: str) -> Project:
    now = datetime.now(timezone.utc)
    return Project(
        id=project_id,
        name=project_id,
        type="basic-php",
        import_method="create",
        path=f"/tmp/{project_id}",
        volume_name=f"damp_project_{project_id}",
        domain=f"{project_id}.local",
        php_version="8.3",
        php_variant="fpm-apache",
        node_version="lts",
        forwarded_port=8443,
        network_name="damp-network",
        created_at=now,
        updated_at=now,
    )


def project_volume(project_id: str):
    volume = MagicMock()
    volume.name = f"damp_project_{project_id}"
    volume.attrs = {"Labels": project_volume_labels(project_id, volume.name).to_labels()}
    return volume


@pytest.mark.property
@pytest.mark.asyncio
@given(
    recorded=st.sets(project_ids),
    pending=st.sets(project_ids),
    on_daemon=st.sets(project_ids, min_size=1),
)
@settings(
    suppress_health_check=[HealthCheck.function_scoped_fixture],
    max_examples=25,
    deadline=None,
)
async def test_orphan_iff_neither_recorded_nor_pending(tmp_path_factory, recorded, pending, on_daemon):
    """Property: a project volume is orphaned exactly when no record or pending creation owns it."""
    db_manager = DatabaseManager(
        Settings(state_db=str(tmp_path_factory.mktemp("db") / f"{uuid4().hex}.db"))
    )
    await db_manager.create_tables()
    try:
        async with db_manager.get_session() as session:
            repo = ProjectRepository(session)
            for project_id in recorded:
                await repo.create(make_project(project_id))

        container_manager = create_autospec(ContainerManager, instance=True)
        container_manager.get_all_managed_containers.return_value = []
        volume_manager = create_autospec(VolumeManager, instance=True)
        volume_manager.get_all_managed_volumes.return_value = [
            project_volume(pid) for pid in sorted(on_daemon)
        ]
        project_state_manager = MagicMock()
        project_state_manager.pending_project_ids = frozenset(pending)

        reconciler = ResourceReconciler(
            container_manager,
            volume_manager,
            db_manager,
            project_state_manager,
            create_autospec(ServiceStateManager, instance=True),
        )
        resources = await reconciler.get_all_resources()
    finally:
        await db_manager.close()

    for resource in resources:
        owner = resource.owner_id
        assert resource.is_orphan == (owner not in recorded and owner not in pending)


mysql_env = list(get_service_definition("mysql").default_config.environment_vars)


@pytest.mark.property
@given(
    removed=st.sets(st.sampled_from(mysql_env)),
    extra=st.lists(st.from_regex(r"EXTRA_[A-Z]{1,6}=[a-z]{0,6}", fullmatch=True), max_size=4),
)
def test_only_missing_declared_variables_drift(removed, extra):
    """Property: drift is reported iff a declared variable is missing; extras never drift."""
    env = [var for var in mysql_env if var not in removed] + extra
    attrs = {"Config": {"Image": "mysql:latest", "Env": env}}

    assert service_has_drifted("mysql", attrs) == bool(removed)
