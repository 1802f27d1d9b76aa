"""Tests for post-restore hooks."""

import sys

from stowage.utils.hooks import CommandDataStore, PostRestoreHooks


def test_disabled_hooks_do_nothing(tmp_path):
    calls = []
    hooks = PostRestoreHooks(tmp_path, install_command=lambda: calls.append("install"))
    assert hooks.run() == []
    assert calls == []


def test_hooks_run_in_order(tmp_path):
    calls = []

    class Store:
        def push_schema(self):
            calls.append("schema")

    hooks = PostRestoreHooks(
        tmp_path,
        auto_install=True,
        auto_migrate=True,
        auto_start=True,
        install_command=lambda: calls.append("install"),
        start_command=lambda: calls.append("start"),
        data_store=Store(),
    )
    assert hooks.run() == []
    assert calls == ["install", "schema", "start"]


def test_failing_command_becomes_warning(tmp_path):
    hooks = PostRestoreHooks(
        tmp_path, auto_install=True, install_command=[sys.executable, "-c", "raise SystemExit(3)"], timeout=30
    )
    warnings = hooks.run()
    assert len(warnings) == 1
    assert "install" in warnings[0]


def test_command_data_store_runs_each_command(tmp_path):
    script = "import pathlib, sys; pathlib.Path(sys.argv[1]).touch()"
    store = CommandDataStore(
        tmp_path,
        [[sys.executable, "-c", script, "first"], [sys.executable, "-c", script, "second"]],
        timeout=30,
    )
    store.push_schema()
    assert (tmp_path / "first").exists()
    assert (tmp_path / "second").exists()


def test_from_config_reads_restore_section(config):
    config.set_setting("restore.auto_install", True)
    hooks = PostRestoreHooks.from_config(config)
    assert hooks.auto_install
    assert not hooks.auto_start
    assert hooks.install_command == ["npm", "install"]
    assert isinstance(hooks.data_store, CommandDataStore)
