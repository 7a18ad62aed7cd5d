"""
Tests for the command line driver.
"""
import unittest

from main import CrawlerApp, build_parser, main
from polite_crawler.utils.config import ConfigError


class TestCommandLine(unittest.TestCase):
    def test_overrides_without_config_file(self):
        args = build_parser().parse_args([
            '--config', '/nonexistent/config.yaml',
            '--depth', '1',
            '--max-concurrency', '3',
            '--dest', 'out/images',
            '--no-download',
            'https://a.test/', 'https://b.test/',
        ])
        config = CrawlerApp().load(args)

        self.assertEqual(config.crawler.seed_urls, ['https://a.test/', 'https://b.test/'])
        self.assertEqual(config.crawler.max_depth, 1)
        self.assertEqual(config.crawler.max_concurrent_requests, 3)
        self.assertEqual(config.download.destination, 'out/images')
        self.assertFalse(config.download.enabled)

    def test_invalid_override_is_rejected(self):
        args = build_parser().parse_args(['--config', '/nonexistent/config.yaml', '--depth', '-1'])
        with self.assertRaises(ConfigError):
            CrawlerApp().load(args)

    def test_invalid_seed_exits_with_error(self):
        self.assertEqual(main(['--config', '/nonexistent/config.yaml', 'ftp://a.test/']), 1)


if __name__ == '__main__':
    unittest.main()
