"""Unit tests for the persistence repositories."""

from datetime import datetime, timedelta, timezone

import pytest

from damp_orchestrator.repositories import (
    AppSettingsRepository,
    ImagePullRepository,
    ProjectRepository,
    ServiceStateRepository,
)


@pytest.mark.asyncio
async def test_projects_listed_in_display_order(db_manager, project_factory):
    await project_factory("second", sort_order=1)
    await project_factory("first", sort_order=0)

    async with db_manager.get_session() as session:
        projects = await ProjectRepository(session).list_ordered()

    assert [p.name for p in projects] == ["first", "second"]


@pytest.mark.asyncio
async def test_next_order(db_manager, project_factory):
    async with db_manager.get_session() as session:
        assert await ProjectRepository(session).next_order() == 0

    await project_factory("blog", sort_order=4)

    async with db_manager.get_session() as session:
        assert await ProjectRepository(session).next_order() == 5


@pytest.mark.asyncio
async def test_get_by_name(db_manager, project_factory):
    blog = await project_factory("blog")

    async with db_manager.get_session() as session:
        repo = ProjectRepository(session)
        assert (await repo.get_by_name("blog")).id == blog.id
        assert await repo.get_by_name("shop") is None


@pytest.mark.asyncio
async def test_delete_by_id(db_manager, project_factory):
    blog = await project_factory("blog")

    async with db_manager.get_session() as session:
        repo = ProjectRepository(session)
        assert await repo.delete_by_id(blog.id)
        assert not await repo.delete_by_id(blog.id)


@pytest.mark.asyncio
async def test_mark_installed_keeps_install_time(db_manager):
    async with db_manager.get_session() as session:
        first = await ServiceStateRepository(session).mark_installed("mysql")
        installed_at = first.installed_at

    async with db_manager.get_session() as session:
        repo = ServiceStateRepository(session)
        again = await repo.mark_installed("mysql", {"environment_vars": ["TZ=UTC"]})
        assert again.custom_config == {"environment_vars": ["TZ=UTC"]}
        assert again.installed_at.replace(tzinfo=None) == installed_at.replace(tzinfo=None)
        assert await repo.service_ids() == {"mysql"}


@pytest.mark.asyncio
async def test_image_pull_times_are_utc(db_manager):
    pulled_at = datetime.now(timezone.utc) - timedelta(days=3)

    async with db_manager.get_session() as session:
        repo = ImagePullRepository(session)
        assert await repo.get_last_pull("mysql:latest") is None
        await repo.record_pull("mysql:latest", pulled_at)

    async with db_manager.get_session() as session:
        last = await ImagePullRepository(session).get_last_pull("mysql:latest")

    assert last.tzinfo is not None
    assert abs(last - pulled_at) < timedelta(seconds=1)


@pytest.mark.asyncio
async def test_app_settings(db_manager):
    async with db_manager.get_session() as session:
        repo = AppSettingsRepository(session)
        assert await repo.get_value("theme", "light") == "light"
        assert await repo.is_caddy_cert_installed() is False
        await repo.set_value("theme", "dark")
        await repo.set_caddy_cert_installed(True)

    async with db_manager.get_session() as session:
        repo = AppSettingsRepository(session)
        assert await repo.get_value("theme") == "dark"
        assert await repo.is_caddy_cert_installed() is True
