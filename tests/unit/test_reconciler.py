# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for reconciliation planning.
"""
from homestead.MANAGERS.reconciler import Reconciler, plan
from homestead.MODELS.reconciliation_plan import ActionKind
from homestead.MODELS.service_descriptor import (
    InstanceState, ResolvedDescriptor, ResolvedPort, ResolvedVolume,
)


def descriptor(name, image="busybox:1.36", depends_on=(), **fields):
    return ResolvedDescriptor(name=name, image=image, depends_on=list(depends_on), **fields)


def running(d, **overrides):
    data = d.model_dump()
    data.update(overrides)
    return InstanceState(container_id=f"id-{d.name}", **data)


class TestReconciler:
    """Tests for Reconciler.plan."""

    def test_create_when_absent(self):
        result = plan([descriptor("a")], [])
        assert [(a.service, a.kind) for a in result.actions] == [("a", ActionKind.CREATE)]

    def test_noop_when_identical(self):
        a = descriptor("a", environment={"X": "1"}, ports=[ResolvedPort(host_port=80, container_port=80)])
        result = plan([a], [running(a)])
        assert result.actions[0].kind == ActionKind.NOOP
        assert result.is_noop()

    def test_recreate_names_changed_fields(self):
        a = descriptor("a", environment={"X": "1"})
        stale = running(a, image="busybox:1.35", environment={"X": "2"})
        action = plan([a], [stale]).actions[0]
        assert action.kind == ActionKind.RECREATE
        assert action.changes == ["image", "environment"]

    def test_port_and_volume_order_is_ignored(self):
        ports = [ResolvedPort(host_port=80, container_port=80), ResolvedPort(host_port=443, container_port=443)]
        volumes = [ResolvedVolume(host_path="/d/a", container_path="/a"),
                   ResolvedVolume(host_path="/d/b", container_path="/b")]
        a = descriptor("a", ports=ports, volumes=volumes)
        instance = running(a, ports=list(reversed(ports)), volumes=list(reversed(volumes)))
        assert plan([a], [instance]).actions[0].kind == ActionKind.NOOP

    def test_volume_mode_change_recreates(self):
        a = descriptor("a", volumes=[ResolvedVolume(host_path="/d/a", container_path="/a", read_only=True)])
        instance = running(a, volumes=[ResolvedVolume(host_path="/d/a", container_path="/a")])
        assert plan([a], [instance]).actions[0].changes == ["volumes"]

    def test_host_address_change_recreates(self):
        a = descriptor("a", ports=[ResolvedPort(host_port=80, container_port=80, host_ip="127.0.0.1")])
        instance = running(a, ports=[ResolvedPort(host_port=80, container_port=80)])
        assert plan([a], [instance]).actions[0].changes == ["ports"]

    def test_dependency_order_with_catalog_tie_break(self):
        desired = [
            descriptor("web", depends_on=["api"]),
            descriptor("metrics"),
            descriptor("api", depends_on=["db"]),
            descriptor("db"),
        ]
        result = plan(desired, [])
        assert [a.service for a in result.actions] == ["metrics", "db", "api", "web"]
        assert result.get("web").requires == ["api"]

    def test_orphans_stopped_first_in_reverse_dependency_order(self):
        db = descriptor("db")
        app = descriptor("app", depends_on=["db"])
        keep = descriptor("keep")
        result = plan([keep], [running(db), running(app), running(keep)])
        kinds = [(a.service, a.kind) for a in result.actions]
        assert kinds == [("app", ActionKind.STOP), ("db", ActionKind.STOP), ("keep", ActionKind.NOOP)]
        assert result.get("db").requires == ["app"]
        assert result.get("app").requires == []

    def test_unresolved_service_is_not_stopped(self):
        a = descriptor("a")
        result = plan([], [running(a)], unresolved={"a": "a.image: variable 'TAG' is not set"})
        assert result.actions == []
        assert result.unresolved == {"a": "a.image: variable 'TAG' is not set"}
        assert not result.is_noop()

    def test_idempotent_against_unchanged_engine(self, fake_engine):
        desired = [descriptor("db"), descriptor("web", depends_on=["db"], environment={"A": "b"})]
        first = plan(desired, fake_engine.list_running())
        assert not first.is_noop()
        for action in first.actions:
            fake_engine.start(action.descriptor)
        second = plan(desired, fake_engine.list_running())
        assert second.is_noop()
        assert [a.kind for a in second.actions] == [ActionKind.NOOP, ActionKind.NOOP]

    def test_snapshot_not_mutated(self):
        a = descriptor("a", environment={"X": "1"})
        instance = running(a)
        before = instance.model_dump()
        Reconciler().plan([descriptor("a", environment={"X": "2"})], [instance])
        assert instance.model_dump() == before

    def test_summary(self):
        a = descriptor("a")
        result = plan([a, descriptor("b")], [running(a), running(descriptor("c"))])
        assert result.summary() == {"create": 1, "recreate": 0, "stop": 1, "no-op": 1}
