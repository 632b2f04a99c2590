"""Tests for the core orchestrator."""

import logging

import pytest

from mursfoto_core import __version__
from mursfoto_core.config import CoreConfig
from mursfoto_core.core import CoreState, MursfotoCore, PluginContext
from mursfoto_core.errors import (
    CommandExecutionError,
    ConfigError,
    DuplicateCommand,
    NotInitialized,
    PluginDiscoveryError,
    PluginLoadError,
    RegistryInitError,
    UnknownCommand,
)
from mursfoto_core.plugins.base import Plugin, PluginMetadata, PluginState

from plugin_fixtures import EchoPlugin, command_plugin, failing_plugin


class BrokenSource:
    """Source whose discovery always fails."""

    def discover(self):
        raise OSError("disk gone")

    def resolve(self, name):
        return None


class TestInitialize:
    """Test the startup lifecycle."""

    def test_status_before_initialize(self, make_core) -> None:
        """Test status is safe before initialization."""
        core = make_core()
        status = core.get_status()

        assert status.core_version == __version__
        assert status.state is CoreState.CONSTRUCTED
        assert status.loaded_plugins == 0
        assert status.registered_commands == 0

    def test_initialize_without_autoload(self, make_core) -> None:
        """Test initialization seeds built-ins and skips plugins."""
        calls = []
        core = make_core({"alpha": command_plugin("a", calls=calls)}, auto_load_plugins=False)

        assert core.initialize() is True

        status = core.get_status()
        assert status.state is CoreState.READY
        assert status.loaded_plugins == 0
        assert status.registered_commands == 2
        assert status.config["auto_load_plugins"] is False
        assert calls == []

    def test_initialize_without_builtins(self, make_core) -> None:
        """Test no commands exist when built-ins are disabled."""
        core = make_core(auto_load_plugins=False, command_config={"builtins": False})
        core.initialize()

        assert core.get_status().registered_commands == 0

    def test_initialize_autoloads(self, make_core) -> None:
        """Test plugins are loaded and contribute commands."""
        core = make_core({
            "alpha": command_plugin("build"),
            "beta": command_plugin("deploy", "rollback"),
        })
        core.initialize()

        assert [r.name for r in core.get_loaded_plugins()] == ["alpha", "beta"]
        assert core.execute_command("deploy") == "deploy"

        owners = {c.name: c.owner for c in core.get_registered_commands()}
        assert owners == {
            "help": "core",
            "version": "core",
            "build": "alpha",
            "deploy": "beta",
            "rollback": "beta",
        }

    def test_builtins_exist_before_plugins(self, make_core) -> None:
        """Test plugins see built-in commands during auto-load."""
        seen = []

        def plugin(context, options):
            seen.extend(c.name for c in context.core.get_registered_commands())

        core = make_core({"alpha": plugin})
        core.initialize()

        assert seen == ["help", "version"]

    def test_plugin_failure_does_not_abort(self, make_core) -> None:
        """Test a failing plugin leaves the core ready."""
        core = make_core({
            "A": command_plugin("a"),
            "B": failing_plugin(),
            "C": command_plugin("c"),
        })

        assert core.initialize() is True
        assert core.get_status().loaded_plugins == 2
        assert core.plugin_manager.get_plugin("B").state is PluginState.FAILED

    def test_initialize_twice(self, make_core) -> None:
        """Test a second initialize on a ready core does nothing."""
        calls = []
        core = make_core({"alpha": command_plugin("a", calls=calls)})

        assert core.initialize() is True
        assert core.initialize() is True
        assert calls == ["alpha"]

    def test_discovery_failure_aborts(self, make_core) -> None:
        """Test a discovery failure fails initialization for good."""
        core = make_core(plugin_config={"sources": [BrokenSource()]})

        with pytest.raises(PluginDiscoveryError):
            core.initialize()

        assert core.state is CoreState.FAILED
        with pytest.raises(NotInitialized):
            core.initialize()
        with pytest.raises(NotInitialized):
            core.execute_command("help")

    def test_registry_failure_aborts(self, make_core, monkeypatch) -> None:
        """Test a registry init failure aborts before plugins load."""
        from mursfoto_core.commands import builtin

        calls = []
        monkeypatch.setattr(builtin, "register_builtins", lambda registry: 1 / 0)
        core = make_core({"alpha": command_plugin("a", calls=calls)})

        with pytest.raises(RegistryInitError):
            core.initialize()

        assert core.state is CoreState.FAILED
        assert calls == []

    def test_system_exit_during_autoload_fails_core(self, make_core) -> None:
        """Test an interrupt during auto-load leaves the core failed, not stuck."""

        def exits(context, options):
            raise SystemExit(2)

        core = make_core({"x": exits})

        with pytest.raises(SystemExit):
            core.initialize()

        assert core.state is CoreState.FAILED
        assert core.plugin_manager.get_plugin("x").state is PluginState.FAILED


class TestExecuteCommand:
    """Test dispatch through the core."""

    def test_execute_before_initialize(self, make_core) -> None:
        """Test executing before initialize fails without side effects."""
        calls = []
        core = make_core()
        core.register_command("build", lambda args, options: calls.append(args))

        with pytest.raises(NotInitialized) as exc_info:
            core.execute_command("build", ["x"])

        assert exc_info.value.state is CoreState.CONSTRUCTED
        assert calls == []

    def test_execute_passes_args_and_options(self, make_core) -> None:
        """Test args and options reach the handler."""
        core = make_core(auto_load_plugins=False)
        core.initialize()
        core.register_command("show", lambda args, options: {"args": args, "options": options})

        assert core.execute_command("show", ["a"], {"b": 1}) == {"args": ["a"], "options": {"b": 1}}

    def test_unknown_command(self, make_core) -> None:
        """Test unknown names raise UnknownCommand."""
        core = make_core(auto_load_plugins=False)
        core.initialize()

        with pytest.raises(UnknownCommand):
            core.execute_command("nope", [])

    def test_handler_error(self, make_core) -> None:
        """Test handler failures are wrapped."""
        core = make_core(auto_load_plugins=False)
        core.initialize()
        core.register_command("explode", lambda args, options: {}["missing"])

        with pytest.raises(CommandExecutionError) as exc_info:
            core.execute_command("explode")

        assert isinstance(exc_info.value.cause, KeyError)

    def test_builtin_version(self, make_core) -> None:
        """Test the version built-in."""
        core = make_core(auto_load_plugins=False)
        core.initialize()

        assert core.execute_command("version") == __version__


class TestPluginCommands:
    """Test commands contributed by plugins."""

    def test_plugin_duplicate_fails_plugin(self, make_core) -> None:
        """Test a plugin clashing with an earlier one fails to load."""
        core = make_core({
            "first": command_plugin("build"),
            "second": command_plugin("test", "build"),
        })
        core.initialize()

        second = core.plugin_manager.get_plugin("second")
        assert second.state is PluginState.FAILED
        assert isinstance(second.error.cause, DuplicateCommand)
        assert core.execute_command("build") == "build"
        # commands registered before the clash are rolled back
        assert [c.name for c in core.get_registered_commands()] == ["help", "version", "build"]

    def test_plugin_overwrites_builtin(self, make_core) -> None:
        """Test a plugin may explicitly replace a built-in."""

        def plugin(context, options):
            result = context.register_command("help", lambda args, opts: "custom help", overwrite=True)
            assert result.replaced is True
            assert result.previous_owner == "core"

        core = make_core({"helper": plugin})
        core.initialize()

        assert core.execute_command("help") == "custom help"
        assert core.command_registry.get_command("help").owner == "helper"

    def test_plugin_context(self, make_core) -> None:
        """Test the context exposes the core to plugins."""
        contexts = []
        core = make_core({"alpha": lambda context, options: contexts.append(context)}, verbose=True)
        core.initialize()

        context = contexts[0]
        assert isinstance(context, PluginContext)
        assert context.plugin_name == "alpha"
        assert context.config.verbose is True
        assert context.logger.name == "mursfoto_core.plugins.alpha"
        assert context.get_status().loaded_plugins == 1
        assert context.execute_command("version") == __version__

    def test_load_plugin_after_initialize(self, make_core) -> None:
        """Test explicit loads after startup."""
        core = make_core({"echo": EchoPlugin}, auto_load_plugins=False)
        core.initialize()

        record = core.load_plugin("echo", {"separator": "-"})

        assert record.metadata.version == "2.1.0"
        assert core.execute_command("echo", ["a", "b"]) == "a-b"
        assert core.load_plugin("echo") is record

    def test_load_plugin_failure(self, make_core) -> None:
        """Test explicit load failures raise."""
        core = make_core({"broken": failing_plugin("nope")}, auto_load_plugins=False)
        core.initialize()

        with pytest.raises(PluginLoadError) as exc_info:
            core.load_plugin("broken")

        assert str(exc_info.value.cause) == "nope"

    def test_unload_removes_commands(self, make_core) -> None:
        """Test unloading a plugin removes its commands."""
        core = make_core({"echo": EchoPlugin})
        core.initialize()
        handle = core.plugin_manager.get_plugin("echo").handle

        record = core.unload_plugin("echo")

        assert record.state is PluginState.UNLOADED
        assert handle.shut_down is True
        with pytest.raises(UnknownCommand):
            core.execute_command("echo", ["x"])

    def test_shutdown(self, make_core) -> None:
        """Test shutdown unloads plugins and drops their commands."""
        core = make_core({"echo": EchoPlugin, "alpha": command_plugin("a")})
        core.initialize()

        core.shutdown()

        assert core.get_loaded_plugins() == []
        assert [c.name for c in core.get_registered_commands()] == ["help", "version"]

    def test_plugin_named_core_keeps_builtins(self, make_core) -> None:
        """Test a plugin can't take the built-in owner name."""
        core = make_core({"core": failing_plugin()})
        core.initialize()

        record = core.plugin_manager.get_plugin("core")
        assert record.failed is True
        assert isinstance(record.error.cause, ValueError)
        assert [c.name for c in core.get_registered_commands()] == ["help", "version"]

        core.unload_plugin("core")
        assert [c.name for c in core.get_registered_commands()] == ["help", "version"]

    def test_failed_plugin_restores_replaced_builtin(self, make_core) -> None:
        """Test a failing plugin gives back the built-in it replaced."""

        def plugin(context, options):
            context.register_command("version", lambda args, opts: "hijacked", overwrite=True)
            raise RuntimeError("after replacing version")

        core = make_core({"hijack": plugin})
        core.initialize()

        assert core.plugin_manager.get_plugin("hijack").failed is True
        assert core.command_registry.get_command("version").owner == "core"
        assert core.execute_command("version") == __version__

    def test_unload_restores_replaced_builtin(self, make_core) -> None:
        """Test unloading a plugin gives back the built-in it replaced."""

        def plugin(context, options):
            context.register_command("help", lambda args, opts: "custom help", overwrite=True)

        core = make_core({"helper": plugin})
        core.initialize()
        core.unload_plugin("helper")

        assert core.command_registry.get_command("help").owner == "core"
        assert core.command_registry.get_command("?").name == "help"
        assert [c.name for c in core.get_registered_commands()] == ["help", "version"]


class TestConfiguration:
    """Test core construction options."""

    def test_defaults(self) -> None:
        """Test default configuration values."""
        core = MursfotoCore()

        assert core.config.auto_load_plugins is True
        assert core.config.verbose is False

    def test_unknown_option_rejected(self) -> None:
        """Test unknown option keys fail at construction."""
        with pytest.raises(ConfigError) as exc_info:
            MursfotoCore(autoload=False)

        assert exc_info.value.unknown_keys == ["autoload"]

    def test_config_and_options_exclusive(self) -> None:
        """Test a config object and keyword options can't be mixed."""
        with pytest.raises(TypeError):
            MursfotoCore(CoreConfig(), verbose=True)

    def test_status_echoes_config(self, make_core) -> None:
        """Test the status snapshot echoes configuration."""
        core = make_core(verbose=True, auto_load_plugins=False)
        snapshot = core.get_status().to_dict()

        assert snapshot["config"]["verbose"] is True
        assert snapshot["state"] == "constructed"
        assert snapshot["core_version"] == __version__

    def test_verbose_logs_progress(self, make_core, caplog) -> None:
        """Test verbose mode logs progress at INFO."""
        with caplog.at_level(logging.INFO, logger="mursfoto_core"):
            make_core({"alpha": command_plugin("a")}, verbose=True).initialize()

        messages = [r.getMessage() for r in caplog.records]
        assert "Initializing core..." in messages
        assert "Plugin alpha loaded" in messages

    def test_quiet_by_default(self, make_core, caplog) -> None:
        """Test progress stays below INFO without verbose."""
        with caplog.at_level(logging.INFO, logger="mursfoto_core"):
            assert make_core({"alpha": command_plugin("a")}).initialize() is True

        assert caplog.records == []


class TestHooks:
    """Test hooks registered by plugins."""

    def test_plugins_extend_hook_in_priority_order(self, make_core) -> None:
        """Test handlers from several plugins run lowest priority first."""

        def late(context, options):
            context.register_hook("before-deploy", lambda ctx: "late", priority=20)

        def early(context, options):
            context.register_hook("before-deploy", lambda ctx: "early", priority=1)

        core = make_core({"late": late, "early": early})
        core.initialize()
        core.register_hook("before-deploy", lambda ctx: "default")

        results = core.execute_hook("before-deploy", {"target": "prod"})

        assert [r.value for r in results] == ["early", "default", "late"]
        assert [r.owner for r in results] == ["early", "core", "late"]

    def test_failing_handler_does_not_stop_others(self, make_core) -> None:
        """Test a handler error is recorded and later handlers still run."""
        core = make_core(auto_load_plugins=False)
        core.register_hook("notify", lambda ctx: {}["missing"], priority=1)
        core.register_hook("notify", lambda ctx: ctx["who"], priority=2)

        results = core.execute_hook("notify", {"who": "ops"})

        assert isinstance(results[0].error, KeyError)
        assert results[0].ok is False
        assert results[1].value == "ops"

    def test_declared_hooks_attached(self, make_core) -> None:
        """Test hooks listed in plugin metadata are registered on load."""

        class Auditor(Plugin):
            metadata = PluginMetadata(name="auditor", hooks={"after-run": "record"})

            def __init__(self):
                self.seen = []

            def initialize(self, context, options):
                pass

            def record(self, ctx):
                self.seen.append(ctx["command"])

        core = make_core({"auditor": Auditor})
        core.initialize()
        core.execute_hook("after-run", {"command": "deploy"})

        assert core.plugin_manager.get_plugin("auditor").handle.seen == ["deploy"]

    def test_declared_hook_without_method_fails_plugin(self, make_core) -> None:
        """Test a metadata hook naming a missing method fails the load."""

        class Broken(Plugin):
            metadata = PluginMetadata(name="broken", hooks={"after-run": "nope"})

            def initialize(self, context, options):
                context.register_command("broken-cmd", lambda args, opts: None)
                context.register_hook("before-run", lambda ctx: None)

        core = make_core({"broken": Broken})
        core.initialize()

        record = core.plugin_manager.get_plugin("broken")
        assert isinstance(record.error.cause, TypeError)
        assert core.hook_registry.get_hooks("before-run") == []
        assert "broken-cmd" not in core.command_registry

    def test_unload_and_shutdown_drop_hooks(self, make_core) -> None:
        """Test a plugin's hooks leave with it."""

        def plugin(context, options):
            context.register_hook("tick", lambda ctx: context.plugin_name)

        core = make_core({"alpha": plugin, "beta": plugin})
        core.initialize()

        core.unload_plugin("alpha")
        assert [r.value for r in core.execute_hook("tick")] == ["beta"]

        core.shutdown()
        assert core.execute_hook("tick") == []
