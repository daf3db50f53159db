"""
Bootloader orchestration: registration, wiring, phases, shutdown.
"""

import asyncio
import functools
import itertools
import logging
import threading
from dataclasses import dataclass, field

import pytest

from bootloader import Bootloader, BootloaderConfig, BootPhase, inject
from bootloader.errors import (
    DepthExceededError,
    DuplicateRegistrationError,
    LifecycleOrderError,
    LifecyclePhaseError,
    ModuleLookupError,
    PhaseTimeoutError,
    PropertyNotFoundError,
    PropertyStoreUnsetError,
    UnresolvedDependencyError,
)
from bootloader.lifecycle import ModuleState
from bootloader.testing import make_bootloader, running


# ============================================================================
# Application fixtures
# ============================================================================

@dataclass
class Database:
    Username: str = ""
    Password: str = ""


@dataclass
class AppConfig:
    Port: int = 0
    DB: Database = field(default_factory=Database)


class UserRepository:
    def __init__(self):
        self.connected = False

    def on_create(self):
        self.connected = True

    def find(self, user_id):
        return {"id": user_id}


class UserService:
    repo: UserRepository = inject()
    username: str = inject("$db.username")

    def on_mount(self):
        assert self.repo.connected

    def get_user(self, user_id):
        return self.repo.find(user_id)


class Server:
    users: UserService = inject("user-service")
    port: int = inject("$port")

    def __init__(self):
        self.serving = False
        self.closed = False

    async def on_start(self):
        self.serving = True

    async def on_destroy(self):
        self.closed = True


class A:
    b: "B" = inject("b")


class B:
    c: "C" = inject()


class C:
    d: "D" = inject("d")


class D:
    pass


class Tracer:
    """Records begin/end of every hook into a shared log."""

    def __init__(self, name, log, delay):
        self.name = name
        self.log = log
        self.delay = delay

    async def _trace(self, phase):
        self.log.append((phase, "begin", self.name))
        await asyncio.sleep(self.delay)
        self.log.append((phase, "end", self.name))

    async def on_create(self):
        await self._trace("create")

    async def on_mount(self):
        await self._trace("mount")

    async def on_start(self):
        await self._trace("start")

    async def on_destroy(self):
        await self._trace("destroy")


def app_properties():
    return AppConfig(Port=8080, DB=Database(Username="root", Password="toor"))


# ============================================================================
# End-to-end wiring
# ============================================================================

class TestApplication:

    @pytest.mark.asyncio
    async def test_register_in_any_order_and_launch(self):
        loader = make_bootloader(properties=app_properties())
        server = Server()
        loader.add_by_type(server)
        loader.add("user-service", UserService())
        loader.add_by_type(UserRepository())

        await loader.launch()

        assert server.serving is True
        assert server.closed is True
        assert server.port == 8080
        assert server.users.username == "root"
        assert server.users.get_user(7) == {"id": 7}
        assert loader.phase == BootPhase.STOPPED

    @pytest.mark.asyncio
    async def test_all_registration_orders_reach_the_fixed_point(self):
        for order in itertools.permutations(["a", "b", "c", "d"]):
            loader = make_bootloader()
            instances = {"a": A(), "b": B(), "c": C(), "d": D()}
            for key in order:
                if key == "c":
                    loader.add_by_type(instances[key])
                else:
                    loader.add(key, instances[key])

            await loader.start()

            assert instances["a"].b is instances["b"], order
            assert instances["b"].c is instances["c"], order
            assert instances["c"].d is instances["d"], order
            await loader.stop()

    @pytest.mark.asyncio
    async def test_mutual_references(self):
        class Left:
            right: "object" = inject("right")

        class Right:
            left: "object" = inject("left")

        loader = make_bootloader()
        left, right = Left(), Right()
        loader.add("left", left)
        loader.add("right", right)
        async with running(loader):
            assert left.right is right
            assert right.left is left

    @pytest.mark.asyncio
    async def test_exact_type_beats_compatible_type(self):
        class Base:
            pass

        class Derived(Base):
            pass

        class Wants:
            dep: Base = inject()

        loader = make_bootloader()
        wants = Wants()
        base = Base()
        loader.add_by_type(wants)
        loader.add_by_type(Derived())
        loader.add_by_type(base)
        await loader.test_unit(lambda: None)
        # The first pass after Derived already bound the field
        assert isinstance(wants.dep, Derived)

        loader = make_bootloader()
        wants = Wants()
        loader.add_by_type(Derived())
        loader.add_by_type(base)
        loader.add_by_type(wants)
        await loader.test_unit(lambda: None)
        assert wants.dep is base


# ============================================================================
# Registration
# ============================================================================

class TestRegistration:

    def test_duplicate_name_keeps_first(self):
        loader = make_bootloader()
        first = UserRepository()
        loader.add("repo", first)
        with pytest.raises(DuplicateRegistrationError):
            loader.add("repo", UserRepository())
        assert loader.get("repo") is first

    def test_ignored_name(self):
        loader = make_bootloader()
        calls = []

        def provider():
            calls.append(1)
            return UserRepository()

        loader.set_ignores("repo")
        assert loader.add("repo", provider) is False
        assert calls == []
        with pytest.raises(ModuleLookupError):
            loader.get("repo")

    def test_get_unknown_module(self):
        loader = make_bootloader()
        with pytest.raises(ModuleLookupError) as exc_info:
            loader.must_get("missing")
        assert "Module missing not found" in str(exc_info.value)

    def test_find_by_type(self):
        loader = make_bootloader()
        repo = UserRepository()
        loader.add_from_type(repo)
        assert loader.find(UserRepository) is repo
        assert loader.find(Server) is None

    def test_aliases(self):
        loader = make_bootloader()
        loader.add_by_auto(UserRepository())
        loader.add_from_type(D())
        assert len(loader.registry) == 2

    def test_property_field_before_properties(self):
        loader = make_bootloader()
        with pytest.raises(PropertyStoreUnsetError):
            loader.add_by_type(Server())


# ============================================================================
# Providers
# ============================================================================

class RepoProvider:
    def get_module(self):
        return UserRepository()


class SelfProvider:
    def get_module(self):
        return self


class Chain:
    def __init__(self, n):
        self.n = n

    def get_module(self):
        if self.n == 0:
            return D()
        return Chain(self.n - 1)


class TestProviders:

    def test_provider_object(self):
        loader = make_bootloader()
        loader.add("repo", RepoProvider())
        assert isinstance(loader.get("repo"), UserRepository)

    def test_provider_returning_itself(self):
        loader = make_bootloader()
        provider = SelfProvider()
        loader.add("self", provider)
        assert loader.get("self") is provider

    def test_provider_function(self):
        loader = make_bootloader()
        loader.add("lambda", lambda: D())
        loader.add("partial", functools.partial(Database, "admin"))
        assert isinstance(loader.get("lambda"), D)
        assert loader.get("partial") == Database(Username="admin")

    def test_provider_result_is_unwrapped_again(self):
        loader = make_bootloader()
        loader.add("chain", functools.partial(Chain, 1))
        assert isinstance(loader.get("chain"), D)

    def test_bound_method_provider(self):
        loader = make_bootloader()
        loader.add("repo", RepoProvider().get_module)
        assert isinstance(loader.get("repo"), UserRepository)

    def test_nested_providers_within_bound(self):
        loader = make_bootloader()
        loader.add("chain", Chain(3))
        assert isinstance(loader.get("chain"), D)

    def test_provider_chain_too_deep(self):
        loader = make_bootloader()
        with pytest.raises(DepthExceededError) as exc_info:
            loader.add("chain", Chain(10))
        assert exc_info.value.max_depth == 5
        assert len(loader.registry) == 0

    def test_depth_is_configurable(self):
        loader = Bootloader(BootloaderConfig(show_log=False, max_provider_depth=20))
        loader.add("chain", Chain(10))
        assert isinstance(loader.get("chain"), D)

    def test_coroutine_provider_rejected(self):
        async def make():
            return D()

        loader = make_bootloader()
        with pytest.raises(TypeError):
            loader.add("d", make)


# ============================================================================
# Properties
# ============================================================================

class TestProperties:

    def test_lookup(self):
        loader = make_bootloader(properties=app_properties())
        assert loader.get_property("port") == 8080
        assert loader.get_property("DB.Username") == "root"
        assert loader.get_property("missing") is None
        assert loader.get_property("missing", 42) == 42
        assert loader.must_get_property("db.password") == "toor"
        with pytest.raises(PropertyNotFoundError):
            loader.must_get_property("missing")

    def test_properties_set_later_satisfy_pending_fields(self):
        loader = make_bootloader(properties={"unrelated": 1})
        svc = UserService()
        loader.add("user-service", svc)
        assert svc.username is None

        loader.set_properties(app_properties())
        assert svc.username == "root"

    def test_sparse_merge(self):
        loader = make_bootloader(properties=app_properties())
        loader.set_properties(AppConfig(DB=Database(Password="new")))
        assert loader.get_property("port") == 8080
        assert loader.get_property("db.username") == "root"
        assert loader.get_property("db.password") == "new"

    @pytest.mark.asyncio
    async def test_falsy_properties_are_injected(self):
        class Flags:
            debug: bool = inject("$server.debug")
            retries: int = inject("$server.retries")
            banner: str = inject("$server.banner")

        loader = make_bootloader(properties={
            "server": {"debug": False, "retries": 0, "banner": "", "host": "x"},
        })
        flags = Flags()
        loader.add("flags", flags)

        async with running(loader):
            assert flags.debug is False
            assert flags.retries == 0
            assert flags.banner == ""

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "app.yaml"
        path.write_text("port: 9090\ndb:\n  username: admin\n")

        loader = make_bootloader()
        loader.load_properties(str(path))
        assert loader.get_property("port") == 9090
        assert loader.get_property("db.username") == "admin"


# ============================================================================
# Lifecycle
# ============================================================================

class TestLifecycle:

    @pytest.mark.asyncio
    async def test_unresolved_dependency_blocks_start(self):
        loader = make_bootloader()
        loader.add("a", A())
        with pytest.raises(UnresolvedDependencyError) as exc_info:
            await loader.start()

        assert exc_info.value.field == "b"
        assert exc_info.value.module.endswith(".A")
        assert loader.phase == BootPhase.ERROR

    @pytest.mark.asyncio
    async def test_phase_barriers(self):
        log = []
        loader = make_bootloader()
        for i, delay in enumerate([0.03, 0.0, 0.01]):
            loader.add(f"t{i}", Tracer(f"t{i}", log, delay))

        await loader.launch()

        def last(phase, what):
            return max(i for i, e in enumerate(log) if e[0] == phase and e[1] == what)

        def first(phase, what):
            return min(i for i, e in enumerate(log) if e[0] == phase and e[1] == what)

        assert last("create", "end") < first("mount", "begin")
        assert last("mount", "end") < first("start", "begin")
        assert last("start", "end") < first("destroy", "begin")
        assert len(log) == 3 * 4 * 2

    @pytest.mark.asyncio
    async def test_hooks_within_a_phase_run_concurrently(self):
        barrier = threading.Barrier(3, timeout=5)

        class Waiter:
            def on_create(self):
                barrier.wait()

        loader = make_bootloader()
        for i in range(3):
            loader.add(f"w{i}", Waiter())
        # Sequential execution would break the barrier
        await loader.launch()
        assert not barrier.broken

    @pytest.mark.asyncio
    async def test_module_states(self):
        loader = make_bootloader()
        loader.add("repo", UserRepository())
        wrapper = loader.registry.find_by_name("repo")

        await loader.start()
        assert wrapper.state == ModuleState.STARTED
        assert loader.phase == BootPhase.READY

        await loader.stop()
        assert wrapper.state == ModuleState.DESTROYED

    @pytest.mark.asyncio
    async def test_failing_hooks_are_collected(self):
        class Broken:
            def __init__(self, message):
                self.message = message

            def on_start(self):
                raise RuntimeError(self.message)

        loader = make_bootloader()
        healthy = Server()
        loader.set_properties(app_properties())
        loader.add("user-service", UserService())
        loader.add_by_type(UserRepository())
        loader.add("server", healthy)
        loader.add("broken-1", Broken("one"))
        loader.add("broken-2", Broken("two"))

        with pytest.raises(LifecyclePhaseError) as exc_info:
            await loader.start()

        err = exc_info.value
        assert err.phase == "start"
        assert [str(e) for _, e in err.failures] == ["one", "two"]
        assert loader.phase == BootPhase.ERROR
        # The rest of the phase still ran to completion
        assert healthy.serving is True

        await loader.stop()
        assert healthy.closed is True

    @pytest.mark.asyncio
    async def test_destroy_failures_are_logged(self, caplog):
        class BadDestroy:
            def on_destroy(self):
                raise RuntimeError("cannot close")

        loader = make_bootloader()
        server_closed = Server()
        loader.set_properties(app_properties())
        loader.add("user-service", UserService())
        loader.add_by_type(UserRepository())
        loader.add("server", server_closed)
        loader.add("bad", BadDestroy())

        with caplog.at_level(logging.ERROR, logger="bootloader"):
            await loader.launch()

        assert server_closed.closed is True
        assert loader.phase == BootPhase.STOPPED
        assert "cannot close" in caplog.text

    @pytest.mark.asyncio
    async def test_phase_timeout(self):
        release = asyncio.Event()

        class Stuck:
            async def on_create(self):
                await release.wait()

        loader = make_bootloader(phase_timeout=0.05)
        loader.add("stuck", Stuck())
        loader.add("fine", D())

        with pytest.raises(PhaseTimeoutError) as exc_info:
            await loader.start()

        assert len(exc_info.value.pending) == 1
        assert exc_info.value.pending[0].endswith("Stuck")
        assert loader.phase == BootPhase.ERROR

        release.set()
        await asyncio.gather(*loader._stray_tasks)
        assert loader.registry.find_by_name("stuck").state == ModuleState.CREATED

    @pytest.mark.asyncio
    async def test_phase_timeout_reports_earlier_failures(self, caplog):
        release = asyncio.Event()

        class Stuck:
            async def on_create(self):
                await release.wait()
                raise RuntimeError("late failure")

        class FailsFast:
            async def on_create(self):
                raise RuntimeError("early failure")

        loader = make_bootloader(phase_timeout=0.05)
        loader.add("stuck", Stuck())
        loader.add("fails-fast", FailsFast())

        with pytest.raises(PhaseTimeoutError) as exc_info:
            await loader.start()

        err = exc_info.value
        assert [str(e) for _, e in err.failures] == ["early failure"]
        assert err.failures[0][0].endswith("FailsFast")
        assert "early failure" in str(err)

        with caplog.at_level(logging.ERROR, logger="bootloader"):
            release.set()
            await asyncio.gather(*loader._stray_tasks, return_exceptions=True)
            # Let the done callbacks run
            await asyncio.sleep(0)
        assert "late failure" in caplog.text

    @pytest.mark.asyncio
    async def test_start_twice(self):
        loader = make_bootloader()
        loader.add("d", D())
        await loader.start()
        with pytest.raises(LifecycleOrderError):
            await loader.start()
        await loader.stop()

        with pytest.raises(LifecycleOrderError):
            await loader.start()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        class CountingDestroy:
            def __init__(self):
                self.count = 0

            def on_destroy(self):
                self.count += 1

        loader = make_bootloader()
        module = CountingDestroy()
        loader.add("m", module)
        await loader.start()
        await loader.stop()
        await loader.stop()
        assert module.count == 1

    @pytest.mark.asyncio
    async def test_empty_loader(self):
        loader = make_bootloader()
        await loader.launch()
        assert loader.phase == BootPhase.STOPPED


# ============================================================================
# Shutdown
# ============================================================================

class Worker:
    """Runs a background loop until the shared shutdown signal is set."""

    def __init__(self, cancelled):
        self.cancelled = cancelled
        self.observed_shutdown = False
        self._thread = None

    def on_start(self):
        self._thread = threading.Thread(target=self._loop)
        self._thread.start()

    def _loop(self):
        self.cancelled.wait()
        self.observed_shutdown = True

    def on_destroy(self):
        self._thread.join(timeout=5)


class TestShutdown:

    @pytest.mark.asyncio
    async def test_run_until_shutdown(self):
        loader = make_bootloader()
        server_like = Tracer("t", [], 0)
        loader.add("t", server_like)

        task = asyncio.create_task(loader.run())
        for _ in range(200):
            if loader.phase == BootPhase.READY:
                break
            await asyncio.sleep(0.01)
        assert loader.phase == BootPhase.READY
        assert not task.done()

        loader.shutdown()
        await asyncio.wait_for(task, timeout=5)
        assert loader.phase == BootPhase.STOPPED
        assert ("destroy", "end", "t") in server_like.log

    @pytest.mark.asyncio
    async def test_modules_observe_cancellation(self):
        loader = make_bootloader()
        worker = Worker(loader.cancelled)
        loader.add("worker", worker)

        await loader.launch()

        assert loader.cancelled.is_set()
        assert worker.observed_shutdown is True

    @pytest.mark.asyncio
    async def test_wait_returns_after_shutdown(self):
        loader = make_bootloader()
        loader.shutdown()
        await asyncio.wait_for(loader.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_test_unit(self):
        loader = make_bootloader(properties=app_properties())
        loader.add("user-service", UserService())
        loader.add_by_type(UserRepository())

        result = await loader.test_unit(
            lambda: loader.get("user-service").get_user(1)
        )
        assert result == {"id": 1}
        assert loader.phase == BootPhase.STOPPED

    @pytest.mark.asyncio
    async def test_test_unit_with_coroutine_still_stops(self):
        loader = make_bootloader()
        repo = UserRepository()
        loader.add("repo", repo)
        wrapper = loader.registry.find_by_name("repo")

        async def check():
            raise AssertionError("failed inside")

        with pytest.raises(AssertionError):
            await loader.test_unit(check)
        assert wrapper.state == ModuleState.DESTROYED


# ============================================================================
# Diagnostics
# ============================================================================

class TestDiagnostics:

    def test_show_log(self, caplog):
        loader = Bootloader(BootloaderConfig(show_log=False))
        with caplog.at_level(logging.INFO, logger="bootloader"):
            loader.add("quiet", D())
            assert "AddByName" not in caplog.text

            loader.show_log(True)
            loader.add("loud", D())
            assert "AddByName" in caplog.text
            assert "named: loud" in caplog.text

    @pytest.mark.asyncio
    async def test_dependency_graph(self):
        loader = make_bootloader(properties=app_properties())
        loader.add("user-service", UserService())
        loader.add("repo", UserRepository())
        loader.add_by_type(Server())
        await loader.start()

        graph = loader.dependency_graph()
        server_key = next(k for k in graph.adj_list if k.endswith("Server#2"))
        assert graph.dependencies(server_key) == ["user-service"]
        assert graph.dependencies("user-service") == ["repo"]
        assert graph.detect_cycles() == []
        assert '"user-service" -> "repo" [label="repo"];' in graph.export_dot()
        await loader.stop()

    def test_repr(self):
        loader = make_bootloader()
        loader.add("d", D())
        assert repr(loader) == "<Bootloader modules=1 phase=init>"
