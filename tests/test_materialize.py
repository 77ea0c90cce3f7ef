"""Tests for ConfigMaterializer."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from ephemera.config import HarnessSettings, read_config
from ephemera.errors import ConfigurationError, ErrorCode, NoAvailablePortError
from ephemera.infra.materialize import ConfigMaterializer, InstanceContext
from ephemera.infra.ports import PortAllocator


@pytest.fixture
def conf_dir(tmp_path: Path) -> Path:
    path = tmp_path / "instance"
    path.mkdir()
    return path


@pytest.fixture
def materializer(settings: HarnessSettings, allocator: PortAllocator) -> ConfigMaterializer:
    return ConfigMaterializer(settings, allocator)


class TestInstanceContext:
    def test_is_read_only(self) -> None:
        source = {"a": "1"}
        context = InstanceContext(custom_config=source)
        source["a"] = "2"

        assert context.custom_config["a"] == "1"
        with pytest.raises(TypeError):
            context.custom_config["a"] = "3"  # type: ignore[index]


class TestMaterialize:
    def test_computed_defaults(self, materializer: ConfigMaterializer, conf_dir: Path, storage_root: Path) -> None:
        runtime = materializer.materialize(conf_dir)

        assert 2000 <= runtime.port <= 3000
        assert runtime.host == "127.0.0.1"
        assert runtime.storage_path.parent == storage_root
        assert runtime.storage_path.name.startswith("ephemera-")
        assert runtime.base_url == f"http://127.0.0.1:{runtime.port}"
        assert runtime.allocated_ports == (runtime.port,)

    def test_file_contents(self, materializer: ConfigMaterializer, conf_dir: Path) -> None:
        runtime = materializer.materialize(conf_dir)

        written = read_config(runtime.config_file)
        assert runtime.config_file == (conf_dir / "server.conf").resolve()
        assert written["server.webserver.httpPort"] == str(runtime.port)
        assert written["entry.kv.backend.path"] == str(runtime.storage_path)
        # template defaults survive
        assert written["server.webserver.minThreads"] == "4"
        assert written["catalog.cache.enabled"] == "true"

    def test_companion_files_are_copied(self, materializer: ConfigMaterializer, conf_dir: Path) -> None:
        materializer.materialize(conf_dir)

        assert (conf_dir / "server-env.sh").read_text().startswith("# export JAVA_HOME=")

    def test_caller_overrides_win(self, materializer: ConfigMaterializer, conf_dir: Path, tmp_path: Path) -> None:
        storage = tmp_path / "mine"
        context = InstanceContext(
            custom_config={
                "server.webserver.httpPort": "2999",
                "entry.kv.backend.path": str(storage),
                "catalog.cache.enabled": "false",
                "extra.key": 42,
            }
        )

        runtime = materializer.materialize(conf_dir, context)

        written = read_config(runtime.config_file)
        assert runtime.port == 2999
        assert runtime.storage_path == storage
        assert written["catalog.cache.enabled"] == "false"
        assert written["extra.key"] == "42"
        assert runtime.values["extra.key"] == 42
        assert runtime.allocated_ports == ()

    def test_port_override_skips_allocation(self, settings: HarnessSettings, conf_dir: Path) -> None:
        allocator = MagicMock(spec=PortAllocator)
        materializer = ConfigMaterializer(settings, allocator)

        materializer.materialize(conf_dir, InstanceContext({"server.webserver.httpPort": "2500"}))

        allocator.allocate.assert_not_called()

    def test_storage_paths_are_unique(self, materializer: ConfigMaterializer, tmp_path: Path) -> None:
        first_dir = tmp_path / "a"
        second_dir = tmp_path / "b"
        first_dir.mkdir()
        second_dir.mkdir()

        first = materializer.materialize(first_dir)
        second = materializer.materialize(second_dir)

        assert first.storage_path != second.storage_path
        assert first.port != second.port

    def test_stale_storage_is_removed(self, materializer: ConfigMaterializer, conf_dir: Path, tmp_path: Path) -> None:
        stale = tmp_path / "stale"
        (stale / "db").mkdir(parents=True)

        materializer.materialize(conf_dir, InstanceContext({"entry.kv.backend.path": str(stale)}))

        assert not stale.exists()

    def test_auxiliary_ports(self, backend_root: Path, storage_root: Path, conf_dir: Path) -> None:
        settings = HarnessSettings(
            root_dir=backend_root,
            storage_root=str(storage_root),
            auxiliary_port_keys=["aux.iceberg-rest.httpPort"],
        )

        runtime = ConfigMaterializer(settings, PortAllocator()).materialize(conf_dir)

        aux_port = runtime.auxiliary_ports["aux.iceberg-rest.httpPort"]
        assert 3000 <= aux_port <= 4000
        assert read_config(runtime.config_file)["aux.iceberg-rest.httpPort"] == str(aux_port)
        assert set(runtime.allocated_ports) == {runtime.port, aux_port}

    def test_host_from_template(self, backend_root: Path, conf_dir: Path, allocator: PortAllocator) -> None:
        template = backend_root / "conf" / "server.conf.template"
        template.write_text("server.webserver.host = localhost\n")
        settings = HarnessSettings(root_dir=backend_root, companion_templates=[])

        runtime = ConfigMaterializer(settings, allocator).materialize(conf_dir)

        assert runtime.host == "localhost"

    def test_yaml_template(self, backend_root: Path, conf_dir: Path, allocator: PortAllocator) -> None:
        (backend_root / "conf" / "server.yaml.template").write_text(
            "server:\n  webserver:\n    httpPort: 8090\nlimits:\n  maxConnections: 10\n"
        )
        settings = HarnessSettings(
            root_dir=backend_root,
            config_template="server.yaml.template",
            config_file_name="server.yaml",
            companion_templates=[],
        )

        runtime = ConfigMaterializer(settings, allocator).materialize(conf_dir)

        written = yaml.safe_load(runtime.config_file.read_text())
        assert written["server"]["webserver"]["httpPort"] == runtime.port
        assert written["entry"]["kv"]["backend"]["path"] == str(runtime.storage_path)
        assert written["limits"]["maxConnections"] == 10

    def test_yaml_template_with_path_override(
        self, backend_root: Path, conf_dir: Path, allocator: PortAllocator
    ) -> None:
        (backend_root / "conf" / "server.yaml.template").write_text("server:\n  webserver:\n    httpPort: 8090\n")
        settings = HarnessSettings(
            root_dir=backend_root,
            config_template="server.yaml.template",
            config_file_name="server.yaml",
            companion_templates=[],
        )

        runtime = ConfigMaterializer(settings, allocator).materialize(
            conf_dir, InstanceContext({"extra.dir": Path("/data"), "extra.enabled": True})
        )

        written = yaml.safe_load(runtime.config_file.read_text())
        assert written["extra"] == {"dir": "/data", "enabled": True}


class TestMaterializeFailures:
    def test_missing_root_dir_fails_before_allocation(self, conf_dir: Path) -> None:
        allocator = MagicMock(spec=PortAllocator)

        with pytest.raises(ConfigurationError):
            ConfigMaterializer(HarnessSettings(), allocator).materialize(conf_dir)

        allocator.allocate.assert_not_called()

    def test_missing_template(self, settings: HarnessSettings, backend_root: Path, conf_dir: Path) -> None:
        (backend_root / "conf" / "server.conf.template").unlink()
        allocator = MagicMock(spec=PortAllocator)

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigMaterializer(settings, allocator).materialize(conf_dir)

        assert exc_info.value.error_code is ErrorCode.TEMPLATE_MISSING
        allocator.allocate.assert_not_called()

    def test_missing_companion(self, settings: HarnessSettings, backend_root: Path, conf_dir: Path) -> None:
        (backend_root / "conf" / "server-env.sh.template").unlink()

        with pytest.raises(ConfigurationError, match="Companion template not found"):
            ConfigMaterializer(settings, PortAllocator()).materialize(conf_dir)

    def test_output_dir_missing(self, materializer: ConfigMaterializer, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            materializer.materialize(tmp_path / "does-not-exist")

        assert exc_info.value.error_code is ErrorCode.OUTPUT_NOT_WRITABLE

    @pytest.mark.skipif(hasattr(os, "geteuid") and os.geteuid() == 0, reason="root ignores permissions")
    def test_output_dir_read_only(self, materializer: ConfigMaterializer, conf_dir: Path) -> None:
        conf_dir.chmod(0o500)
        try:
            with pytest.raises(ConfigurationError) as exc_info:
                materializer.materialize(conf_dir)
        finally:
            conf_dir.chmod(0o700)

        assert exc_info.value.error_code is ErrorCode.OUTPUT_NOT_WRITABLE

    def test_non_scalar_override(self, materializer: ConfigMaterializer, conf_dir: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            materializer.materialize(conf_dir, InstanceContext({"a.list": [1, 2]}))

        assert exc_info.value.error_code is ErrorCode.MERGE_CONFLICT

    def test_non_numeric_port_override_releases_ports(
        self, backend_root: Path, conf_dir: Path, allocator: PortAllocator
    ) -> None:
        settings = HarnessSettings(root_dir=backend_root, auxiliary_port_keys=["aux.port"])

        with pytest.raises(ConfigurationError):
            ConfigMaterializer(settings, allocator).materialize(
                conf_dir, InstanceContext({"server.webserver.httpPort": "eighty"})
            )

        assert allocator.reserved() == frozenset()

    def test_yaml_key_collision_releases_ports(
        self, backend_root: Path, conf_dir: Path, allocator: PortAllocator
    ) -> None:
        (backend_root / "conf" / "server.yaml.template").write_text("server:\n  webserver:\n    httpPort: 8090\n")
        settings = HarnessSettings(
            root_dir=backend_root,
            config_template="server.yaml.template",
            config_file_name="server.yaml",
            companion_templates=[],
        )

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigMaterializer(settings, allocator).materialize(conf_dir, InstanceContext({"server": "flat"}))

        assert exc_info.value.error_code is ErrorCode.MERGE_CONFLICT
        assert allocator.reserved() == frozenset()

    def test_no_available_port(self, settings: HarnessSettings, conf_dir: Path) -> None:
        allocator = MagicMock(spec=PortAllocator)
        allocator.allocate.side_effect = NoAvailablePortError(low=2000, high=3000, attempts=1000)

        with pytest.raises(NoAvailablePortError):
            ConfigMaterializer(settings, allocator).materialize(conf_dir)
