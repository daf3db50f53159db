"""
Injectable field declarations and slots.
"""

from typing import Optional

import pytest

from bootloader.fields import (
    AUTO,
    FieldSlot,
    Inject,
    TagKind,
    declared_fields,
    inject,
    property_path,
    resolve_field_type,
    tag_kind,
)


class Repo:
    pass


class Service:
    repo: Repo = inject("repo")
    port: int = inject("$server.port")
    plain: str = "not injected"
    maybe: Optional[Repo] = inject()


class ChildService(Service):
    extra: Repo = inject("extra")
    repo: Repo = inject("other-repo")


# ============================================================================
# Declarations
# ============================================================================

class TestDeclarations:

    def test_declaration_order(self):
        names = [d.name for d in declared_fields(Service)]
        assert names == ["repo", "port", "maybe"]

    def test_undeclared_attributes_are_ignored(self):
        assert "plain" not in [d.name for d in declared_fields(Service)]

    def test_subclass_extends_and_overrides(self):
        decls = {d.name: d for d in declared_fields(ChildService)}
        assert set(decls) == {"repo", "port", "maybe", "extra"}
        assert decls["repo"].tag == "other-repo"
        # Parent keeps its own declaration
        assert {d.name: d for d in declared_fields(Service)}["repo"].tag == "repo"

    def test_default_tag_is_auto(self):
        assert inject().tag == AUTO

    def test_empty_tag_rejected(self):
        with pytest.raises(ValueError):
            inject("")
        with pytest.raises(ValueError):
            inject("   ")

    def test_empty_property_path_rejected(self):
        with pytest.raises(ValueError):
            inject("$")
        with pytest.raises(ValueError):
            inject("${}")

    def test_descriptor_access(self):
        assert isinstance(Service.__dict__["repo"], Inject)
        s = Service()
        assert s.repo is None
        repo = Repo()
        s.repo = repo
        assert s.repo is repo

    def test_descriptor_default(self):
        class WithDefault:
            level: int = inject("$log.level", default=3)

        assert WithDefault().level == 3

    def test_default_is_shared(self):
        shared = []

        class WithList:
            hosts: list = inject("$hosts", default=shared)

        assert WithList().hosts is WithList().hosts is shared

    def test_default_factory_is_per_instance(self):
        class WithFactory:
            hosts: list = inject("$hosts", default_factory=list)

        a, b = WithFactory(), WithFactory()
        a.hosts.append("x")
        assert a.hosts == ["x"]
        assert b.hosts == []
        assert a.hosts is a.hosts

    def test_injection_replaces_factory_value(self):
        class WithFactory:
            hosts: list = inject("$hosts", default_factory=list)

        obj = WithFactory()
        assert obj.hosts == []
        slot = FieldSlot(name="hosts", tag="$hosts", type=list, instance=obj)
        slot.set_value(["a"])
        assert obj.hosts == ["a"]

    def test_default_and_factory_are_exclusive(self):
        with pytest.raises(ValueError):
            inject(default=1, default_factory=int)


# ============================================================================
# Tags
# ============================================================================

class TestTags:

    def test_tag_kinds(self):
        assert tag_kind("auto") == TagKind.AUTO
        assert tag_kind("$db.user") == TagKind.PROPERTY
        assert tag_kind("user-service") == TagKind.NAME

    def test_property_path(self):
        assert property_path("$db.user") == "db.user"
        assert property_path("${db.user}") == "db.user"
        assert property_path("$ port ") == "port"


# ============================================================================
# Types
# ============================================================================

class TestFieldTypes:

    def _decl(self, cls, name):
        return {d.name: d for d in declared_fields(cls)}[name]

    def test_type_from_annotation(self):
        assert resolve_field_type(Service, self._decl(Service, "repo")) is Repo
        assert resolve_field_type(Service, self._decl(Service, "port")) is int

    def test_optional_is_unwrapped(self):
        assert resolve_field_type(Service, self._decl(Service, "maybe")) is Repo

    def test_explicit_type_wins(self):
        class Explicit:
            thing = inject(type=Repo)

        assert resolve_field_type(Explicit, self._decl(Explicit, "thing")) is Repo

    def test_missing_annotation(self):
        class Bare:
            thing = inject("thing")

        assert resolve_field_type(Bare, self._decl(Bare, "thing")) is None

    def test_unresolvable_forward_reference(self):
        class Forward:
            thing: "DoesNotExist" = inject()  # noqa: F821

        assert resolve_field_type(Forward, self._decl(Forward, "thing")) is None

    def test_generic_checks_origin(self):
        class Generic:
            items: list[int] = inject("$items")

        assert resolve_field_type(Generic, self._decl(Generic, "items")) is list


# ============================================================================
# Slots
# ============================================================================

class TestFieldSlot:

    def test_set_value_is_terminal(self):
        s = Service()
        slot = FieldSlot(name="repo", tag="repo", type=Repo, instance=s)
        repo = Repo()
        slot.set_value(repo)

        assert slot.injected is True
        assert s.repo is repo
        with pytest.raises(RuntimeError):
            slot.set_value(Repo())
        assert s.repo is repo

    def test_incompatible_value_rejected(self):
        s = Service()
        slot = FieldSlot(name="port", tag="$server.port", type=int, instance=s)
        with pytest.raises(TypeError):
            slot.set_value("80")
        assert slot.injected is False

    def test_int_accepted_for_float(self):
        class Rate:
            value: float = inject("$rate")

        r = Rate()
        slot = FieldSlot(name="value", tag="$rate", type=float, instance=r)
        slot.set_value(3)
        assert r.value == 3

    def test_untyped_slot_accepts_anything(self):
        s = Service()
        slot = FieldSlot(name="repo", tag="repo", type=None, instance=s)
        slot.set_value("anything")
        assert s.repo == "anything"
