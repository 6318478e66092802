"""
Unit tests for descriptor resolution against environment layers.
"""
import os
import pytest
from homestead.MANAGERS.environment_manager import EnvironmentLayers
from homestead.MODELS.service_descriptor import (
    ServiceDescriptor, EnvBinding, VolumeBinding, PortBinding, RestartPolicy,
)
from homestead.RUNNERS.environment_resolver import EnvironmentResolver
from homestead.errors import ResolutionError, UnresolvedPlaceholderError


def jupyter(**overrides):
    fields = dict(
        name="jupyter",
        image="jupyter/base-notebook:${JUPYTER_TAG:-latest}",
        environment=[EnvBinding(key="TOKEN", value="${JUPYTER_TOKEN:-}")],
        volumes=[VolumeBinding(source="./notebooks", target="/home/jovyan/work")],
        ports=[PortBinding(host="${PORT:-8888}", container=8888)],
        restart_policy=RestartPolicy.UNLESS_STOPPED,
    )
    fields.update(overrides)
    return ServiceDescriptor(**fields)


class TestEnvironmentResolver:
    """Tests for EnvironmentResolver."""

    def test_machine_layer_overrides_default(self, tmp_path):
        """Layers [{PORT default 8888}, {PORT=8889}] resolve to 8889."""
        layers = EnvironmentLayers([{"PORT": "8888"}, {"PORT": "8889"}])
        resolved = EnvironmentResolver(str(tmp_path)).resolve(jupyter(), layers)
        assert resolved.ports[0].host_port == 8889
        assert resolved.ports[0].container_port == 8888

    def test_literal_default_used_when_unset(self, tmp_path):
        resolved = EnvironmentResolver(str(tmp_path)).resolve(jupyter(), EnvironmentLayers())
        assert resolved.ports[0].host_port == 8888
        assert resolved.image == "jupyter/base-notebook:latest"
        assert resolved.environment == {"TOKEN": ""}

    def test_unrelated_layer_contents_do_not_leak(self, tmp_path):
        resolver = EnvironmentResolver(str(tmp_path))
        base = resolver.resolve(jupyter(), EnvironmentLayers([{"PORT": "9000"}]))
        noisy = resolver.resolve(jupyter(), EnvironmentLayers([
            {"PORT": "9000", "OTHER": "x", "PORTS": "1"},
            {"UNRELATED": "y", "port": "1234"},
        ]))
        assert base == noisy

    def test_missing_placeholder_without_default(self, tmp_path):
        descriptor = jupyter(environment=[EnvBinding(key="DB_URL", value="${DATABASE_URL}")])
        with pytest.raises(UnresolvedPlaceholderError) as exc:
            EnvironmentResolver(str(tmp_path)).resolve(descriptor, EnvironmentLayers([{"PORT": "1"}]))
        assert exc.value.key == "DATABASE_URL"
        assert exc.value.service == "jupyter"
        assert exc.value.field == "environment.DB_URL"

    def test_pass_through_binding(self, tmp_path):
        descriptor = jupyter(environment=[EnvBinding(key="TZ"), EnvBinding(key="LANG")])
        resolved = EnvironmentResolver(str(tmp_path)).resolve(descriptor, EnvironmentLayers([{"TZ": "Europe/Oslo"}]))
        assert resolved.environment == {"TZ": "Europe/Oslo"}

    def test_environment_order_kept(self, tmp_path):
        descriptor = jupyter(environment=[EnvBinding(key=k, value=k.lower()) for k in ("Z", "A", "M")])
        resolved = EnvironmentResolver(str(tmp_path)).resolve(descriptor, EnvironmentLayers())
        assert list(resolved.environment) == ["Z", "A", "M"]

    def test_relative_volume_rooted_under_data_dir(self, tmp_path):
        resolved = EnvironmentResolver(str(tmp_path)).resolve(jupyter(), EnvironmentLayers())
        assert resolved.volumes[0].host_path == os.path.join(str(tmp_path), "notebooks")
        assert resolved.volumes[0].container_path == "/home/jovyan/work"

    def test_absolute_volume_kept(self, tmp_path):
        descriptor = jupyter(volumes=[VolumeBinding(source="/var/run/docker.sock", target="/var/run/docker.sock")])
        resolved = EnvironmentResolver(str(tmp_path)).resolve(descriptor, EnvironmentLayers())
        assert resolved.volumes[0].host_path == "/var/run/docker.sock"

    def test_volume_placeholder(self, tmp_path):
        descriptor = jupyter(volumes=[VolumeBinding(source="${NB_DIR:-./nb}", target="/work", read_only=True)])
        resolved = EnvironmentResolver(str(tmp_path)).resolve(descriptor, EnvironmentLayers([{"NB_DIR": "books"}]))
        assert resolved.volumes[0].host_path == os.path.join(str(tmp_path), "books")
        assert resolved.volumes[0].read_only

    def test_volume_escaping_data_dir(self, tmp_path):
        descriptor = jupyter(volumes=[VolumeBinding(source="../outside", target="/work")])
        with pytest.raises(ResolutionError) as exc:
            EnvironmentResolver(str(tmp_path / "data")).resolve(descriptor, EnvironmentLayers())
        assert exc.value.field == "volumes"

    def test_host_address_carried_through(self, tmp_path):
        descriptor = jupyter(ports=[PortBinding(host="${PORT:-8888}", container=8888, host_ip="127.0.0.1")])
        resolved = EnvironmentResolver(str(tmp_path)).resolve(descriptor, EnvironmentLayers())
        assert resolved.ports[0].host_ip == "127.0.0.1"
        assert resolved.ports[0].host_port == 8888

    @pytest.mark.parametrize("value", ["http", "0", "70000"])
    def test_invalid_host_port(self, tmp_path, value):
        with pytest.raises(ResolutionError) as exc:
            EnvironmentResolver(str(tmp_path)).resolve(jupyter(), EnvironmentLayers([{"PORT": value}]))
        assert exc.value.field == "ports"

    def test_resolution_is_deterministic(self, tmp_path):
        resolver = EnvironmentResolver(str(tmp_path))
        layers = EnvironmentLayers([{"PORT": "8000", "JUPYTER_TAG": "2024"}])
        assert resolver.resolve(jupyter(), layers) == resolver.resolve(jupyter(), layers)
