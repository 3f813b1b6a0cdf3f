import asyncio
from subprocess import CalledProcessError

import pytest

import ciharness.steps.environment as chs_environment
import ciharness.vault as ch_vault


@pytest.fixture
def vault_calls(monkeypatch):
    calls = []

    async def fake_vault_run(ctx, *args, input=None):
        calls.append(args)
        if args[:2] == ("write", "-field=token"):
            return b"s.approle-token\n"
        return b""

    monkeypatch.setattr(ch_vault, "vault_run", fake_vault_run)
    return calls


def test_token_login(make_context, vault_calls):
    token = asyncio.run(ch_vault.login_vault(make_context(), {"VAULT_TOKEN": "s.token"}))
    assert token == "s.token"
    assert vault_calls == [("login", "s.token")]


def test_approle_login(make_context, vault_calls):
    env = {"VAULT_ROLE_ID": "role", "VAULT_SECRET_ID": "secret", "VAULT_TOKEN": "ignored"}
    token = asyncio.run(ch_vault.login_vault(make_context(), env))
    assert token == "s.approle-token"
    assert vault_calls[0][-2:] == ("role_id=role", "secret_id=secret")
    assert vault_calls[1] == ("login", "s.approle-token")


def test_no_credentials(make_context, vault_calls):
    assert asyncio.run(ch_vault.login_vault(make_context(), {})) is None
    assert vault_calls == []


def test_failed_login_is_not_fatal(make_context, monkeypatch):
    async def failing_vault_run(ctx, *args, input=None):
        raise CalledProcessError(2, ("vault", *args))

    monkeypatch.setattr(ch_vault, "vault_run", failing_vault_run)
    assert asyncio.run(ch_vault.login_vault(make_context(), {"VAULT_TOKEN": "t"})) is None


def test_docker_login_requires_vault_login(make_context, monkeypatch):
    steps = []

    async def install(ctx):
        steps.append("install")

    async def login_vault(ctx, env):
        steps.append("vault")
        return env.get("VAULT_TOKEN")

    async def login_docker(ctx):
        steps.append("docker")
        return True

    monkeypatch.setattr(ch_vault, "install_vault", install)
    monkeypatch.setattr(ch_vault, "login_vault", login_vault)
    monkeypatch.setattr(ch_vault, "login_docker", login_docker)
    ctx = make_context()

    asyncio.run(chs_environment._login(ctx, {}))
    assert steps == ["install", "vault"]

    steps.clear()
    asyncio.run(chs_environment._login(ctx, {"VAULT_TOKEN": "t"}))
    assert steps == ["install", "vault", "docker"]


def test_vault_download_url():
    assert ch_vault.vault_download_url("linux") == (
        "https://releases.hashicorp.com/vault/1.6.3/vault_1.6.3_linux_amd64.zip"
    )
