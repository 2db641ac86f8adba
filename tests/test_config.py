from __future__ import annotations

import argparse
import os
import unittest
from unittest import mock

from smag.config import (
    DEFAULT_HISTORY,
    DEFAULT_INTERVAL_SECONDS,
    MIN_HISTORY,
    MIN_INTERVAL_SECONDS,
    ConfigError,
    build_parser,
    config_from_args,
    load_config,
)
from smag.series_store import ManualRange

_SMAG_ENV = ("SMAG_INTERVAL", "SMAG_HISTORY", "SMAG_LOG_LEVEL")


def _clean_env() -> dict:
    return {key: value for key, value in os.environ.items() if key not in _SMAG_ENV}


class LoadConfigTest(unittest.TestCase):
    def test_defaults(self) -> None:
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            config = load_config(["uptime"])

        self.assertEqual(config.commands, ("uptime",))
        self.assertEqual(config.interval, DEFAULT_INTERVAL_SECONDS)
        self.assertEqual(config.history, DEFAULT_HISTORY)
        self.assertEqual(config.y_label, "")
        self.assertFalse(config.diff)
        self.assertIsNone(config.manual_range)
        self.assertIsNone(config.command_timeout)
        self.assertEqual(config.log_level, "WARNING")

    def test_all_options(self) -> None:
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            config = load_config(
                [
                    "-n",
                    "0.5",
                    "-H",
                    "50",
                    "-y",
                    "MB",
                    "-d",
                    "-r",
                    "0,100,25",
                    "-t",
                    "3",
                    "--log-level",
                    "debug",
                    "cat /proc/loadavg",
                    "echo 1",
                ]
            )

        self.assertEqual(config.commands, ("cat /proc/loadavg", "echo 1"))
        self.assertEqual(config.interval, 0.5)
        self.assertEqual(config.history, 50)
        self.assertEqual(config.y_label, "MB")
        self.assertTrue(config.diff)
        self.assertEqual(config.manual_range, ManualRange(0.0, 100.0, 25.0))
        self.assertEqual(config.command_timeout, 3.0)
        self.assertEqual(config.log_level, "DEBUG")
        self.assertEqual(config.log_level_value, 10)

    def test_env_overrides_defaults(self) -> None:
        env = {"SMAG_INTERVAL": "2.5", "SMAG_HISTORY": "30", "SMAG_LOG_LEVEL": "info"}
        with mock.patch.dict(os.environ, env, clear=False):
            config = load_config(["uptime"])

        self.assertEqual(config.interval, 2.5)
        self.assertEqual(config.history, 30)
        self.assertEqual(config.log_level, "INFO")

    def test_cli_wins_over_env(self) -> None:
        with mock.patch.dict(os.environ, {"SMAG_INTERVAL": "2.5"}, clear=False):
            config = load_config(["-n", "0.2", "uptime"])

        self.assertEqual(config.interval, 0.2)

    def test_env_garbage_falls_back_to_defaults(self) -> None:
        env = {"SMAG_INTERVAL": "often", "SMAG_HISTORY": "many", "SMAG_LOG_LEVEL": "LOUD"}
        with mock.patch.dict(os.environ, env, clear=False):
            config = load_config(["uptime"])

        self.assertEqual(config.interval, DEFAULT_INTERVAL_SECONDS)
        self.assertEqual(config.history, DEFAULT_HISTORY)
        self.assertEqual(config.log_level, "WARNING")

    def test_env_values_are_clamped(self) -> None:
        env = {"SMAG_INTERVAL": "0", "SMAG_HISTORY": "1"}
        with mock.patch.dict(os.environ, env, clear=False):
            config = load_config(["uptime"])

        self.assertEqual(config.interval, MIN_INTERVAL_SECONDS)
        self.assertEqual(config.history, MIN_HISTORY)

    def test_bad_range_exits_with_usage_error(self) -> None:
        with mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit) as ctx:
                load_config(["-r", "10,5", "uptime"])

        self.assertEqual(ctx.exception.code, 2)

    def test_missing_command_exits_with_usage_error(self) -> None:
        with mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit) as ctx:
                load_config([])

        self.assertEqual(ctx.exception.code, 2)


class ConfigFromArgsTest(unittest.TestCase):
    def _args(self, **overrides) -> argparse.Namespace:
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            args = build_parser().parse_args(["uptime"])
        for key, value in overrides.items():
            setattr(args, key, value)
        return args

    def test_rejects_too_small_interval(self) -> None:
        with self.assertRaises(ConfigError):
            config_from_args(self._args(interval=0.0))

    def test_rejects_short_history(self) -> None:
        with self.assertRaises(ConfigError):
            config_from_args(self._args(history=1))

    def test_rejects_non_positive_timeout(self) -> None:
        with self.assertRaises(ConfigError):
            config_from_args(self._args(timeout=0.0))

    def test_rejects_blank_command(self) -> None:
        with self.assertRaises(ConfigError):
            config_from_args(self._args(cmds=["  "]))

    def test_wraps_manual_range_error(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            config_from_args(self._args(y_range="a,b"))

        self.assertIsInstance(ctx.exception.__cause__, ValueError)


if __name__ == "__main__":
    unittest.main()
