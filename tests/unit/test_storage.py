"""
Unit Tests - Relation Store and Configuration
"""
import pytest
import polars as pl

from sales_bi.config import get_settings
from sales_bi.exceptions import ConfigError, MissingRelationError
from sales_bi.storage import RelationStore


class TestRelationStore:
    """Tests for RelationStore"""

    def test_replace_swaps_relation(self):
        store = RelationStore()

        store.replace("t", pl.DataFrame({"a": [1]}))
        store.replace("t", pl.DataFrame({"a": [1, 2]}))

        assert len(store) == 1
        assert store.get("t")["a"].to_list() == [1, 2]

    def test_missing_relation(self):
        with pytest.raises(MissingRelationError):
            RelationStore().get("nope")

    def test_missing_required_column(self):
        store = RelationStore()
        store.replace("fact_sales", pl.DataFrame({"date_key": [20200101]}))

        assert store.get("fact_sales", ["date_key"]).height == 1
        with pytest.raises(MissingRelationError, match="line_revenue"):
            store.get("fact_sales", ["date_key", "line_revenue"])

    def test_persists_parquet(self, tmp_path):
        store = RelationStore(tmp_path)
        df = pl.DataFrame({"a": [1, 2, 3]})

        store.replace("t", df)

        assert pl.read_parquet(tmp_path / "t.parquet").equals(df)
        assert not list(tmp_path.glob(".*.tmp"))

    def test_drop_all(self):
        store = RelationStore()
        store.replace_many({"a": pl.DataFrame({"x": [1]}), "b": pl.DataFrame({"x": [2]})})

        store.drop_all()

        assert len(store) == 0
        assert "a" not in store


class TestSettings:
    """Tests for get_settings"""

    @pytest.fixture(autouse=True)
    def _fresh_settings(self):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_invalid_environment_raises_config_error(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "moon")

        with pytest.raises(ConfigError):
            get_settings()

    def test_valid_environment(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "Testing")

        assert get_settings().app_env == "testing"
