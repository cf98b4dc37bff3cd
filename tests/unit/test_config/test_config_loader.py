# SPDX-License-Identifier: LGPL-3.0-or-later
import argparse
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

from vmrescue.config.config_loader import Config
from vmrescue.core.exceptions import ConfigurationError


class TestConfigLoad(unittest.TestCase):
    def setUp(self):
        self.logger = Mock()

    def test_yaml_dash_keys_normalized(self):
        with tempfile.TemporaryDirectory() as td:
            cfg = Path(td) / "rescue.yaml"
            cfg.write_text("rescue-root: /mnt/rescue\nroot_vg: rootvg\n", encoding="utf-8")

            conf = Config.load_one(self.logger, str(cfg))

            self.assertEqual(conf, {"rescue_root": "/mnt/rescue", "root_vg": "rootvg"})

    def test_json_config(self):
        with tempfile.TemporaryDirectory() as td:
            cfg = Path(td) / "rescue.json"
            cfg.write_text(json.dumps({"imds_timeout": 5}), encoding="utf-8")

            self.assertEqual(Config.load_one(self.logger, str(cfg)), {"imds_timeout": 5})

    def test_empty_yaml_is_empty_mapping(self):
        with tempfile.TemporaryDirectory() as td:
            cfg = Path(td) / "empty.yaml"
            cfg.write_text("", encoding="utf-8")

            self.assertEqual(Config.load_one(self.logger, str(cfg)), {})

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            Config.load_one(self.logger, "/nonexistent/rescue.yaml")

    def test_invalid_yaml(self):
        with tempfile.TemporaryDirectory() as td:
            cfg = Path(td) / "bad.yaml"
            cfg.write_text("root_vg: [unclosed\n", encoding="utf-8")

            with self.assertRaises(ConfigurationError):
                Config.load_one(self.logger, str(cfg))

    def test_top_level_list_rejected(self):
        with tempfile.TemporaryDirectory() as td:
            cfg = Path(td) / "list.yaml"
            cfg.write_text("- a\n- b\n", encoding="utf-8")

            with self.assertRaises(ConfigurationError):
                Config.load_one(self.logger, str(cfg))


class TestConfigMerge(unittest.TestCase):
    def test_later_overrides_and_nested_merge(self):
        base = {"root_vg": "rootvg", "nested": {"a": 1, "b": 2}, "support_filesystems": ["dev", "proc"]}
        override = {"nested": {"b": 3}, "support_filesystems": ["sys"]}

        merged = Config.merge_dicts(base, override)

        self.assertEqual(merged["nested"], {"a": 1, "b": 3})
        self.assertEqual(merged["support_filesystems"], ["sys"])
        self.assertEqual(merged["root_vg"], "rootvg")

    def test_expand_directory(self):
        with tempfile.TemporaryDirectory() as td:
            d = Path(td)
            (d / "10-base.yaml").write_text("a: 1\n", encoding="utf-8")
            (d / "20-site.yml").write_text("a: 2\n", encoding="utf-8")
            (d / "notes.txt").write_text("ignored\n", encoding="utf-8")

            paths = Config.expand_configs(Mock(), [str(d)])

            self.assertEqual([Path(p).name for p in paths], ["10-base.yaml", "20-site.yml"])
            self.assertEqual(Config.load_many(Mock(), paths), {"a": 2})


class TestApplyAsDefaults(unittest.TestCase):
    def test_config_becomes_default(self):
        p = argparse.ArgumentParser()
        p.add_argument("--env-file", dest="env_file", default=None)
        p.add_argument("--keep-mounted", dest="keep_mounted", action="store_true")

        Config.apply_as_defaults(Mock(), p, {"env_file": "/run/rescue.env", "unknown": 1})

        self.assertEqual(p.parse_args([]).env_file, "/run/rescue.env")
        self.assertEqual(p.parse_args(["--env-file", "/tmp/x"]).env_file, "/tmp/x")


if __name__ == "__main__":
    unittest.main()
