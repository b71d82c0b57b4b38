"""Unit tests for trust store installation."""

import pytest

from damp_orchestrator.managers.trust_store import (
    MACOS_SYSTEM_KEYCHAIN,
    CommandResult,
    TrustStoreInstaller,
    run_command,
)


class FakeRunner:
    """Records commands and replays canned results."""

    def __init__(self, *results):
        self.results = list(results)
        self.commands = []

    async def __call__(self, cmd):
        self.commands.append(cmd)
        return self.results.pop(0)


def ok(stdout=""):
    return CommandResult(returncode=0, stdout=stdout, stderr="")


def failed(code, stderr=""):
    return CommandResult(returncode=code, stdout="", stderr=stderr)


@pytest.mark.asyncio
async def test_unsupported_platform():
    installer = TrustStoreInstaller(platform="linux", runner=FakeRunner())

    result = await installer.install("/tmp/root.crt")

    assert not installer.supported
    assert not result.success
    assert "only supported on Windows and macOS" in result.error
    assert await installer.verify("/tmp/root.crt") is False


@pytest.mark.asyncio
async def test_windows_install():
    runner = FakeRunner(ok())
    installer = TrustStoreInstaller(platform="win32", runner=runner)

    result = await installer.install("C:\\tmp\\root.crt")

    assert result.success
    assert runner.commands == [["certutil", "-addstore", "-f", "ROOT", "C:\\tmp\\root.crt"]]


@pytest.mark.asyncio
async def test_windows_access_denied_retries_elevated():
    runner = FakeRunner(failed(5, "Access is denied."), ok())
    installer = TrustStoreInstaller(platform="win32", runner=runner)

    result = await installer.install("root.crt")

    assert result.success
    assert runner.commands[1][0] == "powershell"
    assert "-Verb RunAs" in runner.commands[1][-1]


@pytest.mark.asyncio
async def test_windows_other_failure_is_not_retried():
    runner = FakeRunner(failed(1, "bad certificate"))
    installer = TrustStoreInstaller(platform="win32", runner=runner)

    result = await installer.install("root.crt")

    assert not result.success
    assert result.error == "bad certificate"
    assert len(runner.commands) == 1


@pytest.mark.asyncio
async def test_macos_install_uses_system_keychain():
    runner = FakeRunner(ok())
    installer = TrustStoreInstaller(platform="darwin", runner=runner)

    assert (await installer.install("/tmp/root.crt")).success
    assert MACOS_SYSTEM_KEYCHAIN in runner.commands[0]
    assert runner.commands[0][:3] == ["sudo", "security", "add-trusted-cert"]


@pytest.mark.asyncio
async def test_macos_verify_matches_fingerprint():
    runner = FakeRunner(
        ok("SHA1 Fingerprint=AB:CD:EF:01\n"),
        ok("SHA-1 hash: ABCDEF01\nkeychain: System"),
    )
    installer = TrustStoreInstaller(platform="darwin", runner=runner)

    assert await installer.verify("/tmp/root.crt") is True


@pytest.mark.asyncio
async def test_macos_verify_missing_certificate():
    runner = FakeRunner(ok("SHA1 Fingerprint=AB:CD:EF:01\n"), ok("SHA-1 hash: 12345678"))
    installer = TrustStoreInstaller(platform="darwin", runner=runner)

    assert await installer.verify("/tmp/root.crt") is False


@pytest.mark.asyncio
async def test_run_command_reports_missing_executable():
    result = await run_command(["definitely-not-a-real-binary-damp"])

    assert result.returncode == -1
    assert not result.success
