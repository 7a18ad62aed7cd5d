"""
Tests for URLFrontier.
"""
import unittest

from polite_crawler.crawler.models import CrawlTarget, URLPriority
from polite_crawler.crawler.url_frontier import URLFrontier


class TestURLFrontier(unittest.TestCase):
    def test_fifo_within_host(self):
        frontier = URLFrontier()
        frontier.add_all([CrawlTarget("http://a.test/1"), CrawlTarget("http://a.test/2")])
        self.assertEqual(frontier.next_target().url, "http://a.test/1")
        self.assertEqual(frontier.next_target().url, "http://a.test/2")
        self.assertIsNone(frontier.next_target())
        self.assertTrue(frontier.is_empty())

    def test_depth_limit(self):
        frontier = URLFrontier(max_depth=1)
        self.assertTrue(frontier.add(CrawlTarget("http://a.test/", depth=1)))
        self.assertFalse(frontier.add(CrawlTarget("http://a.test/deep", depth=2)))
        self.assertEqual(frontier.get_stats()['total_queued'], 1)

    def test_higher_priority_first(self):
        frontier = URLFrontier()
        frontier.add(CrawlTarget("http://a.test/low", priority=URLPriority.LOW))
        frontier.add(CrawlTarget("http://b.test/high", priority=URLPriority.HIGH))
        self.assertEqual(frontier.next_target().url, "http://b.test/high")

    def test_host_visitor_cap(self):
        frontier = URLFrontier(max_host_visitors=1)
        frontier.add_all([
            CrawlTarget("http://a.test/1"),
            CrawlTarget("http://a.test/2"),
            CrawlTarget("http://b.test/1"),
        ])

        first = frontier.next_target()
        second = frontier.next_target()
        self.assertEqual({first.host, second.host}, {"http://a.test", "http://b.test"})
        self.assertIsNone(frontier.next_target())
        self.assertFalse(frontier.is_empty())

        frontier.release(first if first.host == "http://a.test" else second)
        self.assertEqual(frontier.next_target().url, "http://a.test/2")

    def test_stats(self):
        frontier = URLFrontier()
        frontier.add(CrawlTarget("http://a.test/1"))
        frontier.add(CrawlTarget("http://b.test/1"))
        frontier.next_target()
        stats = frontier.get_stats()
        self.assertEqual(stats['total_queued'], 1)
        self.assertEqual(stats['in_flight'], 1)
        self.assertEqual(stats['total_domains'], 2)


if __name__ == '__main__':
    unittest.main()
