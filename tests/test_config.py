"""EngineConfig validation and YAML/environment loading."""

from pathlib import Path
from uuid import uuid4

import pytest
import yaml

from inventory_kernel.config import EngineConfig, load_config
from inventory_kernel.db.engine import create_tables, reset_engine
from inventory_kernel.orchestrator import InventoryEngine


class TestEngineConfig:

    def test_defaults(self):
        config = EngineConfig.with_defaults()
        assert config.max_retries == 3
        assert config.prefix_for("order") == "ORD"
        assert config.is_sqlite

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": 0},
            {"retry_backoff_seconds": -1},
            {"lock_timeout_seconds": 0},
            {"log_level": "LOUD"},
            {"database_url": ""},
            {"number_width": 0},
            {"document_prefixes": {"invoice": "INV"}},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_prefix_override_merges_with_defaults(self):
        config = EngineConfig(document_prefixes={"order": "SO"})
        assert config.prefix_for("order") == "SO"
        assert config.prefix_for("transfer") == "TRF"

    def test_log_level_normalized(self):
        assert EngineConfig(log_level="debug").log_level == "DEBUG"

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            EngineConfig.from_dict({"max_retries": 2, "colour": "blue"})


class TestLoadConfig:

    def test_no_file_no_env(self):
        assert load_config(env={}) == EngineConfig()

    def test_yaml_under_inventory_key(self, tmp_path):
        path = tmp_path / "inventory.yaml"
        path.write_text(yaml.safe_dump({
            "inventory": {
                "database_url": "sqlite:///stock.db",
                "max_retries": 5,
                "document_prefixes": {"purchase_order": "P"},
            },
        }))

        config = load_config(path, env={})
        assert config.database_url == "sqlite:///stock.db"
        assert config.max_retries == 5
        assert config.prefix_for("purchase_order") == "P"

    def test_yaml_top_level(self, tmp_path):
        path = tmp_path / "inventory.yaml"
        path.write_text("log_level: warning\n")
        assert load_config(path, env={}).log_level == "WARNING"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "inventory.yaml"
        path.write_text("")
        assert load_config(path, env={}) == EngineConfig()

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "inventory.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(path, env={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml", env={})

    def test_environment_wins(self, tmp_path):
        path = tmp_path / "inventory.yaml"
        path.write_text("max_retries: 2\nlog_level: INFO\n")

        config = load_config(
            path,
            env={
                "INVENTORY_MAX_RETRIES": "7",
                "INVENTORY_LOG_LEVEL": "error",
                "INVENTORY_DATABASE_URL": "postgresql://localhost/stock",
            },
        )
        assert config.max_retries == 7
        assert config.log_level == "ERROR"
        assert not config.is_sqlite

    def test_bad_environment_value(self):
        with pytest.raises(ValueError, match="INVENTORY_MAX_RETRIES"):
            load_config(env={"INVENTORY_MAX_RETRIES": "lots"})

    def test_example_file_loads(self):
        example = Path(__file__).resolve().parent.parent / "inventory.example.yaml"
        config = load_config(example, env={})
        assert config.max_retries >= 1


class TestEngineFromConfig:

    def test_engine_built_from_yaml(self, tmp_path, test_actor_id):
        path = tmp_path / "inventory.yaml"
        path.write_text(yaml.safe_dump({
            "inventory": {
                "database_url": f"sqlite:///{tmp_path / 'from_config.db'}",
                "max_retries": 4,
                "document_prefixes": {"order": "SO"},
            },
        }))

        engine = InventoryEngine.from_config(path)
        try:
            create_tables()
            assert engine.config.max_retries == 4
            warehouse = engine.register_warehouse("MAIN", "Main", actor_id=test_actor_id).value
            order = engine.create_order(uuid4(), warehouse.id, actor_id=test_actor_id).value
            assert order.order_number == "SO-000001"
        finally:
            reset_engine()
