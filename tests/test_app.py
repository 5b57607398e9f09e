"""Tests for startup validation, shutdown and the CLI entry point."""

from __future__ import annotations

import sys
from unittest.mock import MagicMock, patch

import asyncssh
import pytest
from conftest import make_settings

from shellgate.__main__ import main
from shellgate.app import ShellgateApp
from shellgate.auth import KeyLoadError
from shellgate.config import AuthConfig, ConfigError
from shellgate.host import ShellNotFoundError

_ASSERT_SHELL = "shellgate.app.assert_shell"


@pytest.fixture
def keys_file(tmp_path):
    path = tmp_path / "authorized_keys"
    key = asyncssh.generate_private_key("ssh-ed25519")
    path.write_bytes(key.export_public_key())
    return path


def _app(tmp_path, environ=None, keys_path=None):
    settings = make_settings(auth=AuthConfig(authorized_keys_path=keys_path or tmp_path / "none"))
    return ShellgateApp(settings, environ=environ if environ is not None else {})


# ---------------------------------------------------------------------------
# prepare / check
# ---------------------------------------------------------------------------


class TestPrepare:
    def test_plan_with_keys(self, tmp_path, keys_file):
        app = _app(tmp_path, environ={"SHELLGATE_PORT": "2200"}, keys_path=keys_file)

        with patch(_ASSERT_SHELL, return_value="/bin/sh"):
            plan = app.prepare()

        assert plan.shell_path == "/bin/sh"
        assert plan.port == 2200
        assert plan.authorized_keys is not None and len(plan.authorized_keys) == 1

    def test_missing_keys_file_runs_open(self, tmp_path):
        with patch(_ASSERT_SHELL, return_value="/bin/sh"):
            plan = _app(tmp_path).prepare()

        assert plan.authorized_keys is None
        assert plan.port == 2222

    def test_bad_port_is_fatal(self, tmp_path):
        app = _app(tmp_path, environ={"SHELLGATE_PORT": "80"})

        with patch(_ASSERT_SHELL, return_value="/bin/sh"), pytest.raises(ConfigError):
            app.prepare()

    def test_empty_keys_file_is_fatal(self, tmp_path):
        path = tmp_path / "authorized_keys"
        path.write_text("")

        with patch(_ASSERT_SHELL, return_value="/bin/sh"), pytest.raises(KeyLoadError):
            _app(tmp_path, keys_path=path).prepare()

    def test_shell_checked_with_settings(self, tmp_path):
        with patch(_ASSERT_SHELL, return_value="/bin/sh") as assert_shell:
            _app(tmp_path).prepare()

        assert_shell.assert_called_once_with("/bin/sh", install_missing=False)


class TestCheck:
    def test_passes(self, tmp_path):
        with patch(_ASSERT_SHELL, return_value="/bin/sh"):
            assert _app(tmp_path).check() is True

    def test_fails_on_missing_shell(self, tmp_path):
        with patch(_ASSERT_SHELL, side_effect=ShellNotFoundError("bash")):
            assert _app(tmp_path).check() is False

    def test_fails_on_bad_port(self, tmp_path):
        with patch(_ASSERT_SHELL, return_value="/bin/sh"):
            assert _app(tmp_path, environ={"SHELLGATE_PORT": "abc"}).check() is False


# ---------------------------------------------------------------------------
# shutdown
# ---------------------------------------------------------------------------


class TestShutdown:
    async def test_first_signal_stops_listening(self, tmp_path):
        app = _app(tmp_path)
        app._acceptor = MagicMock()

        await app.shutdown("SIGTERM")

        app._acceptor.close.assert_called_once()

    async def test_second_signal_forces_exit(self, tmp_path):
        app = _app(tmp_path)
        app._shutting_down = True

        with patch("shellgate.app.os._exit", side_effect=SystemExit(1)) as force:
            with pytest.raises(SystemExit):
                await app.shutdown("SIGINT")

        force.assert_called_once_with(1)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestMain:
    def test_version(self, capsys):
        with (
            patch.object(sys, "argv", ["shellgate", "--version"]),
            pytest.raises(SystemExit) as exc,
        ):
            main()

        assert exc.value.code == 0
        assert capsys.readouterr().out.startswith("shellgate ")

    @pytest.mark.parametrize(("passed", "code"), [(True, 0), (False, 1)])
    def test_check_exit_code(self, passed, code):
        with (
            patch.object(sys, "argv", ["shellgate", "check"]),
            patch("shellgate.app.ShellgateApp.check", return_value=passed),
            pytest.raises(SystemExit) as exc,
        ):
            main()

        assert exc.value.code == code

    def test_startup_error_exits_nonzero(self):
        async def failing_run(self):
            raise ConfigError("5 is a reserved port")

        with (
            patch.object(sys, "argv", ["shellgate"]),
            patch("shellgate.app.ShellgateApp.run", failing_run),
            pytest.raises(SystemExit) as exc,
        ):
            main()

        assert exc.value.code == 1
