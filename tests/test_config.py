"""
Tests for configuration loading and validation.
"""
import tempfile
import unittest
from pathlib import Path

from polite_crawler.utils.config import (
    DEFAULT_USER_AGENT, Config, ConfigError, ConfigManager, load_config, validate_config,
)


class TestDefaults(unittest.TestCase):
    def test_defaults(self):
        config = Config()
        self.assertEqual(config.crawler.max_depth, 4)
        self.assertEqual(config.crawler.max_host_visitors, 512)
        self.assertEqual(config.crawler.max_redirects, 5)
        self.assertEqual(config.crawler.user_agent, DEFAULT_USER_AGENT)
        self.assertEqual(config.transport.request_timeout, 20.0)
        self.assertEqual(config.download.destination, "archive/res")
        validate_config(config)


class TestFromDict(unittest.TestCase):
    def test_partial_sections_keep_defaults(self):
        config = Config.from_dict({
            'crawler': {'seed_urls': ['https://a.test/'], 'max_depth': 2},
            'politeness': {'politeness_delay': 0.5},
        })
        self.assertEqual(config.crawler.seed_urls, ['https://a.test/'])
        self.assertEqual(config.crawler.max_depth, 2)
        self.assertEqual(config.crawler.max_concurrent_requests, 10)
        self.assertEqual(config.politeness.politeness_delay, 0.5)
        self.assertEqual(config.politeness.backoff_factor, 2.0)

    def test_empty_document(self):
        self.assertEqual(Config.from_dict(None), Config())

    def test_unknown_section(self):
        with self.assertRaises(ConfigError):
            Config.from_dict({'cache': {'size': 10}})

    def test_unknown_key(self):
        with self.assertRaises(ConfigError):
            Config.from_dict({'crawler': {'max_pages': 10}})

    def test_section_must_be_mapping(self):
        with self.assertRaises(ConfigError):
            Config.from_dict({'crawler': ['https://a.test/']})


class TestValidateConfig(unittest.TestCase):
    def assertInvalid(self, section, key, value):
        config = Config()
        setattr(getattr(config, section), key, value)
        with self.assertRaises(ConfigError):
            validate_config(config)

    def test_invalid_values(self):
        self.assertInvalid('crawler', 'seed_urls', ['ftp://a.test/'])
        self.assertInvalid('crawler', 'seed_urls', ['not a url'])
        self.assertInvalid('crawler', 'max_depth', -1)
        self.assertInvalid('crawler', 'max_concurrent_requests', 0)
        self.assertInvalid('crawler', 'retry_attempts', 0)
        self.assertInvalid('politeness', 'backoff_factor', 1.0)
        self.assertInvalid('politeness', 'min_backoff_delay', 0)
        self.assertInvalid('politeness', 'max_backoff_delay', 0.5)
        self.assertInvalid('politeness', 'quarantine_threshold', 0)
        self.assertInvalid('download', 'max_concurrent_downloads', 0)
        self.assertInvalid('logging', 'level', 'LOUD')
        self.assertInvalid('crawler', 'user_agent', [])
        self.assertInvalid('crawler', 'user_agent', '')

    def test_user_agent_list(self):
        agents = ['AgentA/1.0', 'AgentB/2.0']
        config = Config.from_dict({'crawler': {'user_agent': agents}})
        validate_config(config)
        self.assertIn(config.crawler.choose_user_agent(), agents)
        self.assertEqual(Config().crawler.choose_user_agent(), DEFAULT_USER_AGENT)

    def test_log_level_is_case_insensitive(self):
        config = Config()
        config.logging.level = 'debug'
        validate_config(config)


class TestConfigManager(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "config.yaml"

    def tearDown(self):
        self.tmp.cleanup()

    def test_load_yaml(self):
        self.path.write_text(
            "crawler:\n"
            "  seed_urls:\n"
            "    - https://a.test/\n"
            "  follow_links: false\n"
            "download:\n"
            "  enabled: false\n"
        )
        config = load_config(str(self.path))
        self.assertEqual(config.crawler.seed_urls, ['https://a.test/'])
        self.assertFalse(config.crawler.follow_links)
        self.assertFalse(config.download.enabled)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_config(str(self.path))

    def test_invalid_yaml(self):
        self.path.write_text("crawler: [unclosed\n")
        with self.assertRaises(ConfigError):
            load_config(str(self.path))

    def test_config_before_load(self):
        manager = ConfigManager(str(self.path))
        with self.assertRaises(ConfigError):
            _ = manager.config

    def test_shipped_example_is_valid(self):
        example = Path(__file__).resolve().parent.parent / "config.yaml"
        if not example.exists():
            self.skipTest("config.yaml missing")
        config = load_config(str(example))
        self.assertTrue(config.crawler.seed_urls)


if __name__ == '__main__':
    unittest.main()
