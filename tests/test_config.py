"""Tests for configuration handling."""

import dataclasses
import json
from pathlib import PurePosixPath

import pytest

from minify_watch.config import (
    DEFAULT_RENAME,
    PatternRule,
    RenameRule,
    WatchConfig,
    load_config_file,
    rename_rule,
)
from minify_watch.exceptions import ConfigError
from minify_watch.minifier import EsprimaMinifier, RjsminMinifier

SCRIPT = PurePosixPath("script.js")


class TestWatchConfigDefaults:

    def test_defaults(self):
        config = WatchConfig.from_options(None)
        assert config.persistent is True
        assert config.delete is True
        assert config.recursive is True
        assert config.out_source_map is None
        assert config.source_maps is False
        assert config.patterns == ("*.js",)
        assert config.ignore_patterns == ()
        assert isinstance(config.minifier, EsprimaMinifier)
        assert config.rename(SCRIPT) == PurePosixPath("script.min.js")

    def test_is_frozen(self):
        config = WatchConfig.from_options({})
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.delete = False

    def test_minifier_options_read_only(self):
        config = WatchConfig.from_options({"minifier_options": {"module": True}})
        assert config.minifier_options["module"] is True
        assert config.minifier.options == {"module": True}
        with pytest.raises(TypeError):
            config.minifier_options["module"] = False

    def test_config_passthrough(self):
        config = WatchConfig.from_options({"delete": False})
        assert WatchConfig.from_options(config) is config


class TestWatchConfigValidation:

    def test_unknown_option(self):
        with pytest.raises(ConfigError, match="peristent"):
            WatchConfig.from_options({"peristent": False})

    def test_non_bool_flag(self):
        with pytest.raises(ConfigError):
            WatchConfig.from_options({"delete": "yes"})

    def test_negative_settle(self):
        with pytest.raises(ConfigError):
            WatchConfig.from_options({"settle_seconds": -1})

    def test_empty_patterns(self):
        with pytest.raises(ConfigError):
            WatchConfig.from_options({"patterns": []})

    def test_single_pattern_string(self):
        config = WatchConfig.from_options({"patterns": "*.mjs"})
        assert config.patterns == ("*.mjs",)

    def test_unknown_encoding(self):
        with pytest.raises(ConfigError):
            WatchConfig.from_options({"encoding": "no-such-codec"})

    def test_rjsmin_cannot_write_source_maps(self):
        with pytest.raises(ConfigError):
            WatchConfig.from_options({"minifier": "rjsmin", "out_source_map": True})

    def test_rjsmin_backend(self):
        config = WatchConfig.from_options({"minifier": "rjsmin"})
        assert isinstance(config.minifier, RjsminMinifier)


class TestRenameRules:

    def test_default_rule(self):
        assert DEFAULT_RENAME(PurePosixPath("lib/app.js")) == PurePosixPath("lib/app.min.js")

    def test_prefix_replaces_default(self):
        rule = rename_rule({"prefix": "min-"})
        assert rule(SCRIPT) == PurePosixPath("min-script.js")

    def test_all_parts(self):
        rule = RenameRule(dirname="out", basename="bundle", prefix="p.", suffix=".s", extname=".mjs")
        assert rule(PurePosixPath("a/b.js")) == PurePosixPath("out/p.bundle.s.mjs")

    def test_append(self):
        assert RenameRule(append=".map")(PurePosixPath("script.min.js")) == PurePosixPath("script.min.js.map")

    def test_unknown_rename_key(self):
        with pytest.raises(ConfigError):
            rename_rule({"extension": ".js"})

    def test_non_string_rename_value(self):
        with pytest.raises(ConfigError):
            rename_rule({"prefix": 1})

    def test_pattern_string(self):
        rule = rename_rule("{name}-min.{ext}")
        assert isinstance(rule, PatternRule)
        assert rule(PurePosixPath("sub/script.js")) == PurePosixPath("sub/script-min.js")

    def test_invalid_pattern(self):
        with pytest.raises(ConfigError):
            rename_rule("{nope}.js")

    def test_pattern_with_attribute_lookup(self):
        with pytest.raises(ConfigError):
            rename_rule("{name.upper}.js")

    def test_callable(self):
        def upper(path):
            return path.with_name(path.name.upper())

        assert rename_rule(upper) is upper

    def test_unsupported(self):
        with pytest.raises(ConfigError):
            rename_rule(42)


class TestSourceMapRule:

    def test_true_appends_map(self):
        config = WatchConfig.from_options({"out_source_map": True})
        assert config.source_maps is True
        assert config.out_source_map(PurePosixPath("script.min.js")) == PurePosixPath("script.min.js.map")

    def test_extname_rule(self):
        config = WatchConfig.from_options({"out_source_map": {"extname": ".js.map"}})
        assert config.out_source_map(PurePosixPath("script.min.js")) == PurePosixPath("script.min.js.map")

    def test_false_disables(self):
        assert WatchConfig.from_options({"out_source_map": False}).out_source_map is None


class TestLoadConfigFile:

    def test_loads_object(self, tmp_path):
        path = tmp_path / "watch.json"
        path.write_text(json.dumps({"delete": False, "rename": {"prefix": "min-"}}), encoding="utf-8")
        options = load_config_file(path)
        config = WatchConfig.from_options(options)
        assert config.delete is False
        assert config.rename(SCRIPT) == PurePosixPath("min-script.js")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config_file(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "watch.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config_file(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "watch.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config_file(path)
