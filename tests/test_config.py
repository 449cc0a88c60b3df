# Tests for config.py, logging_setup.py and the CLI entry point
# Created: 2026-10-18

import json
import logging

import pytest
from pydantic import ValidationError
from rich.logging import RichHandler

from kubeoauth.__main__ import main
from kubeoauth.config import Settings, get_settings, reset_settings
from kubeoauth.errors import ConfigError
from kubeoauth.logging_setup import setup_logging


@pytest.fixture
def env(monkeypatch):
    for name in ("CLIENT_ID", "CLIENT_SECRET", "KUBE_BACKEND", "BASE_URL"):
        monkeypatch.delenv(f"KUBEOAUTH_{name}", raising=False)
    monkeypatch.setenv("KUBEOAUTH_KUBE_BACKEND", "memory")
    return monkeypatch


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.namespace_prefix == "spotify-"
        assert s.refresh_interval == 600
        assert s.secret_name == "spotify-oauth"
        assert s.management_selector == "dj-kubelet.com/oauth-refresher=spotify"
        assert not s.controller_enabled

    def test_redirect_uri(self):
        s = Settings(_env_file=None, base_url="https://dj.example.com/")
        assert s.redirect_uri == "https://dj.example.com/callback"

    def test_env_prefix(self, env):
        env.setenv("KUBEOAUTH_CLIENT_ID", "from-env")
        env.setenv("KUBEOAUTH_REFRESH_INTERVAL", "30")
        s = Settings(_env_file=None)
        assert s.client_id == "from-env"
        assert s.refresh_interval == 30

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, kube_backend="etcd")

    def test_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, refresh_interval=0)

    def test_validate_for_serving(self):
        with pytest.raises(ConfigError, match="KUBEOAUTH_CLIENT_SECRET"):
            Settings(_env_file=None, client_id="x").validate_for_serving()
        Settings(_env_file=None, client_id="x", client_secret="y").validate_for_serving()

    def test_singleton(self, env):
        first = get_settings()
        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first


class TestLogging:
    def test_single_rich_handler(self):
        root = logging.getLogger()
        setup_logging("INFO")
        setup_logging("DEBUG")
        handlers = [h for h in root.handlers if isinstance(h, RichHandler)]
        assert len(handlers) == 1
        assert root.level == logging.DEBUG

    def test_http_loggers_quiet(self):
        setup_logging("INFO")
        assert logging.getLogger("httpx").level == logging.WARNING


class TestCli:
    def test_provision(self, env, capsys):
        assert main(["provision", "alice"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["namespace"] == "spotify-alice"
        assert out["state"] == "READY"
        assert [s["step"] for s in out["steps"]][0] == "namespace"

    def test_sweep_needs_client(self, env):
        assert main(["sweep"]) == 2

    def test_sweep(self, env, capsys):
        env.setenv("KUBEOAUTH_CLIENT_ID", "cid")
        env.setenv("KUBEOAUTH_CLIENT_SECRET", "secret")
        assert main(["sweep"]) == 0
        assert json.loads(capsys.readouterr().out)["total"] == 0
