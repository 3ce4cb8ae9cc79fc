"""Tests for pydirenv.orchestrator: loading, recording and reverting across prompts."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from pydirenv.diff import EnvDiff
from pydirenv.env import DIRENV_DIFF, DIRENV_DIR, DIRENV_FILE, DIRENV_WATCHES, STATE_VARS, Env
from pydirenv.errors import RCExecutionError, RCNotTrustedError
from pydirenv.orchestrator import Orchestrator, RecordedState
from pydirenv.trust import TrustStore, file_signature


@pytest.fixture
def project(tmp_path: Path, write_script) -> Path:
    """A project directory with a script and a nested subdirectory."""
    write_script(tmp_path / "proj", "export FOO=bar\nPATH_add bin\n")
    (tmp_path / "proj" / "sub").mkdir()
    (tmp_path / "elsewhere").mkdir()
    return tmp_path / "proj"


def _orchestrator(make_settings, fake_executor, env: Env, work_dir: Path) -> Orchestrator:
    """Orchestrator as the CLI would build it for one prompt."""
    rc_dir = env.get(DIRENV_DIR, "").lstrip("-")
    settings = make_settings(work_dir=str(work_dir), rc_dir=rc_dir)
    return Orchestrator(settings, env, executor=fake_executor)


def _allow(make_settings, script: Path) -> None:
    TrustStore(make_settings().allow_dir).approve(script, file_signature(script))


# =============================================================================
# Revert
# =============================================================================


class TestRevert:
    """Tests for Orchestrator.revert."""

    def test_no_diff_returns_copy(self, make_settings, fake_executor) -> None:
        env = Env({"A": "1"})
        orch = Orchestrator(make_settings(), env, executor=fake_executor)
        assert orch.revert(env, None) == env
        assert orch.revert(env, "") == env

    def test_reverses_recorded_diff(self, make_settings, fake_executor) -> None:
        before = Env({"PATH": "/usr/bin"})
        after = Env({"PATH": "/usr/bin:/proj/bin", "FOO": "bar"})
        token = EnvDiff.compute(before, after).encode()
        orch = Orchestrator(make_settings(), after, executor=fake_executor)

        assert orch.revert(after, token) == before

    def test_corrupt_diff_drops_state(
        self, make_settings, fake_executor, caplog: pytest.LogCaptureFixture
    ) -> None:
        env = Env({"A": "1", DIRENV_DIR: "-/p", DIRENV_DIFF: "corrupt"})
        orch = Orchestrator(make_settings(), env, executor=fake_executor)

        with caplog.at_level(logging.WARNING, logger="pydirenv"):
            reverted = orch.revert(env, "corrupt")

        assert reverted == {"A": "1"}
        assert "corrupt recorded diff" in caplog.text

    def test_shell_maintained_keys_are_not_restored(self, make_settings, fake_executor) -> None:
        """A recorded diff touching PWD leaves the live PWD alone."""
        token = EnvDiff.compute({"PWD": "/old"}, {"PWD": "/new", "FOO": "bar"}).encode()
        env = Env({"PWD": "/current", "FOO": "bar"})
        orch = Orchestrator(make_settings(), env, executor=fake_executor)

        assert orch.revert(env, token) == {"PWD": "/current"}


# =============================================================================
# Enter
# =============================================================================


class TestEnterDirectory:
    """Tests for Orchestrator.enter_directory."""

    def test_records_state(self, project: Path, make_settings, fake_executor) -> None:
        script = project / ".envrc"
        _allow(make_settings, script)
        fake_executor.on(script, FOO="bar")
        env = Env({"PATH": "/usr/bin"})
        orch = Orchestrator(make_settings(), env, executor=fake_executor)

        result = orch.enter_directory(str(project / "sub"), env)

        assert result.env[DIRENV_DIR] == f"-{project}"
        assert result.env[DIRENV_FILE] == str(script)
        assert result.env[DIRENV_WATCHES]
        assert EnvDiff.decode(result.env[DIRENV_DIFF]) == result.diff
        assert result.diff.added == {"FOO": "bar"}
        assert result.state == RecordedState(
            dir=str(project),
            file=str(script),
            watches=result.env[DIRENV_WATCHES],
            diff=result.env[DIRENV_DIFF],
        )
        assert env == {"PATH": "/usr/bin"}

    def test_untrusted_propagates(self, project: Path, make_settings, fake_executor) -> None:
        env = Env({"PATH": "/usr/bin"})
        orch = Orchestrator(make_settings(), env, executor=fake_executor)

        with pytest.raises(RCNotTrustedError):
            orch.enter_directory(str(project), env)

        assert env == {"PATH": "/usr/bin"}

    def test_execution_error_propagates(self, project: Path, make_settings, fake_executor) -> None:
        script = project / ".envrc"
        _allow(make_settings, script)
        fake_executor.fail(script)
        orch = Orchestrator(make_settings(), Env(), executor=fake_executor)

        with pytest.raises(RCExecutionError):
            orch.enter_directory(str(project), Env())

    def test_no_script(self, tmp_path: Path, make_settings, fake_executor) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        orch = Orchestrator(make_settings(), Env(), executor=fake_executor)

        result = orch.enter_directory(str(empty), Env({"A": "1", DIRENV_DIR: "-/old"}))

        assert result.rc is None
        assert result.env == {"A": "1"}
        assert not result.diff


# =============================================================================
# Lookup
# =============================================================================


class TestLoadedRC:
    """Tests for Orchestrator.loaded_rc."""

    def test_nothing_recorded(self, make_settings, fake_executor) -> None:
        assert Orchestrator(make_settings(), Env(), executor=fake_executor).loaded_rc() is None

    def test_rebuilt_from_state(self, project: Path, make_settings, fake_executor) -> None:
        env = Env({DIRENV_DIR: f"-{project}", DIRENV_WATCHES: "corrupt"})
        orch = Orchestrator(make_settings(rc_dir=str(project)), env, executor=fake_executor)

        rc = orch.loaded_rc()

        assert rc is not None
        assert rc.path == str(project / ".envrc")
        assert rc.is_stale()


# =============================================================================
# Export: the per-prompt driver
# =============================================================================


class TestExport:
    """Drives several prompts in a row, the way the shell hook does."""

    def _prompt(self, make_settings, fake_executor, env: Env, cwd: Path):
        result = _orchestrator(make_settings, fake_executor, env, cwd).export()
        # The shell applies the diff; that must land on exactly result.env.
        assert result.diff.apply(env) == result.env
        return result

    def test_nothing_to_do(self, tmp_path: Path, make_settings, fake_executor) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        result = self._prompt(make_settings, fake_executor, Env({"A": "1"}), empty)
        assert result.action == "none"
        assert not result.changed

    def test_enter_and_leave_restores_environment(
        self, project: Path, tmp_path: Path, make_settings, fake_executor
    ) -> None:
        """{PATH:/usr/bin} -> load -> leave gives back {PATH:/usr/bin}."""
        script = project / ".envrc"
        _allow(make_settings, script)
        fake_executor.on(script, PATH="/usr/bin:/proj/bin", FOO="bar")
        start = Env({"PATH": "/usr/bin"})

        loaded = self._prompt(make_settings, fake_executor, start, project / "sub")
        assert loaded.action == "load"
        assert loaded.env["FOO"] == "bar"
        assert loaded.env["PATH"] == "/usr/bin:/proj/bin"

        left = self._prompt(make_settings, fake_executor, loaded.env, tmp_path / "elsewhere")
        assert left.action == "unload"
        assert left.env == start
        assert "FOO" not in left.env

    def test_unchanged_script_is_not_rerun(
        self, project: Path, make_settings, fake_executor
    ) -> None:
        script = project / ".envrc"
        _allow(make_settings, script)
        fake_executor.on(script, FOO="bar")

        first = self._prompt(make_settings, fake_executor, Env(), project)
        second = self._prompt(make_settings, fake_executor, first.env, project / "sub")

        assert second.action == "none"
        assert not second.changed
        assert len(fake_executor.calls) == 1

    def test_edit_triggers_reload_and_blocks(
        self, project: Path, make_settings, fake_executor, write_script
    ) -> None:
        """Editing an approved script undoes its effect and blocks it."""
        script = project / ".envrc"
        _allow(make_settings, script)
        fake_executor.on(script, FOO="bar")
        start = Env({"PATH": "/usr/bin"})

        loaded = self._prompt(make_settings, fake_executor, start, project)
        write_script(project, "export FOO=evil\n")
        blocked = self._prompt(make_settings, fake_executor, loaded.env, project)

        assert blocked.action == "blocked"
        assert isinstance(blocked.error, RCNotTrustedError)
        assert blocked.error.reason == "stale-approval"
        assert "FOO" not in blocked.env
        assert blocked.env[DIRENV_DIR] == f"-{project}"
        assert DIRENV_DIFF not in blocked.env

    def test_blocked_script_is_not_retried_until_changed(
        self, project: Path, make_settings, fake_executor
    ) -> None:
        script = project / ".envrc"
        fake_executor.on(script, FOO="bar")

        blocked = self._prompt(make_settings, fake_executor, Env(), project)
        again = self._prompt(make_settings, fake_executor, blocked.env, project)
        assert blocked.action == "blocked"
        assert again.action == "none"

        _allow(make_settings, script)
        allowed = self._prompt(make_settings, fake_executor, again.env, project)

        assert allowed.action == "reload"
        assert allowed.env["FOO"] == "bar"
        assert allowed.error is None

    def test_switching_projects_unloads_previous(
        self, tmp_path: Path, make_settings, fake_executor, write_script
    ) -> None:
        a = write_script(tmp_path / "a")
        b = write_script(tmp_path / "b")
        _allow(make_settings, a)
        _allow(make_settings, b)
        fake_executor.on(a, FROM_A="1", SHARED="a")
        fake_executor.on(b, FROM_B="1", SHARED="b")
        start = Env({"SHARED": "orig"})

        in_a = self._prompt(make_settings, fake_executor, start, tmp_path / "a")
        in_b = self._prompt(make_settings, fake_executor, in_a.env, tmp_path / "b")

        assert in_b.env.without_state() == {"FROM_B": "1", "SHARED": "b"}
        assert in_b.env[DIRENV_FILE] == str(b)

    def test_failing_script_reports_and_records(
        self, project: Path, make_settings, fake_executor
    ) -> None:
        script = project / ".envrc"
        _allow(make_settings, script)
        fake_executor.fail(script, stderr="boom")

        result = self._prompt(make_settings, fake_executor, Env({"A": "1"}), project)

        assert result.action == "blocked"
        assert isinstance(result.error, RCExecutionError)
        assert result.env.without_state() == {"A": "1"}
        assert set(result.env) - {"A"} <= STATE_VARS

    def test_corrupt_recorded_diff_is_recovered(
        self, project: Path, make_settings, fake_executor
    ) -> None:
        script = project / ".envrc"
        _allow(make_settings, script)
        fake_executor.on(script, FOO="bar")
        env = Env({"A": "1", DIRENV_DIR: f"-{project}", DIRENV_DIFF: "corrupt", DIRENV_WATCHES: "x"})

        result = self._prompt(make_settings, fake_executor, env, project)

        assert result.action == "reload"
        assert result.env.without_state() == {"A": "1", "FOO": "bar"}
        assert EnvDiff.decode(result.env[DIRENV_DIFF]).added == {"FOO": "bar"}

    def test_edited_sourced_file_blocks_until_reapproved(
        self, project: Path, make_settings, fake_executor, bump
    ) -> None:
        """Changing a file the script sources needs a new approval."""
        script = project / ".envrc"
        side = project / "side.sh"
        side.write_text("export FOO=good\n")
        _allow(make_settings, script)
        fake_executor.on(script, watched=[str(side)], FOO="good")

        loaded = self._prompt(make_settings, fake_executor, Env(), project)
        assert loaded.action == "load"

        side.write_text("export FOO=evil\n")
        bump(side)
        blocked = self._prompt(make_settings, fake_executor, loaded.env, project)

        assert blocked.action == "blocked"
        assert isinstance(blocked.error, RCNotTrustedError)
        assert blocked.error.reason == "stale-approval"
        assert "FOO" not in blocked.env
        assert len(fake_executor.calls) == 1

        again = self._prompt(make_settings, fake_executor, blocked.env, project)
        assert again.action == "none"

        _allow(make_settings, script)
        reloaded = self._prompt(make_settings, fake_executor, again.env, project)
        assert reloaded.action == "reload"
        assert reloaded.env["FOO"] == "good"

    def test_recorded_state_comes_from_given_env(
        self, project: Path, make_settings, fake_executor
    ) -> None:
        """export(env) reads the DIRENV_* state from env, not the constructor snapshot."""
        script = project / ".envrc"
        _allow(make_settings, script)
        fake_executor.on(script, FOO="bar")
        loaded = self._prompt(make_settings, fake_executor, Env(), project)

        orch = Orchestrator(make_settings(work_dir=str(project)), Env(), executor=fake_executor)
        result = orch.export(loaded.env)

        assert result.action == "none"
        assert len(fake_executor.calls) == 1

    def test_load_goes_through_enter_directory(
        self, project: Path, make_settings, fake_executor, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        script = project / ".envrc"
        _allow(make_settings, script)
        fake_executor.on(script, FOO="bar")
        entered: list[str] = []
        original = Orchestrator.enter_directory

        def spy(self, new_dir, current_env):
            entered.append(new_dir)
            return original(self, new_dir, current_env)

        monkeypatch.setattr(Orchestrator, "enter_directory", spy)

        result = self._prompt(make_settings, fake_executor, Env(), project / "sub")

        assert result.action == "load"
        assert entered == [str(project / "sub")]

    def test_summary(self, project: Path, make_settings, fake_executor) -> None:
        result = self._prompt(make_settings, fake_executor, Env(), project)
        assert result.summary().startswith("blocked | ")
        assert "error:" in result.summary()


class TestStatus:
    """Tests for Orchestrator.status."""

    def test_reports_found_script_and_trust(
        self, project: Path, make_settings, fake_executor
    ) -> None:
        orch = Orchestrator(make_settings(work_dir=str(project)), Env(), executor=fake_executor)

        status = orch.status()

        assert status["loaded"] is None
        assert status["found"]["path"] == str(project / ".envrc")
        assert status["found"]["trusted"] is False
        assert status["found"]["reason"] == "unapproved"
        assert status["settings"]["work_dir"] == str(project)
