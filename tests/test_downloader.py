"""
Tests for ImageDownloader.
"""
import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from polite_crawler.crawler.fetcher import WebFetcher
from polite_crawler.crawler.politeness import PolitenessController
from polite_crawler.crawler.transport import TransportError, TransportResponse
from polite_crawler.storage.downloader import ImageDownloader
from polite_crawler.utils.retry import RetryPolicy

from tests.fakes import FakeTransport, image, status

IMAGE_URL = "http://a.test/img/cat.png"
PNG = b"\x89PNG\r\n\x1a\nfake-image-data"


class DownloaderTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.destination = Path(self.tmp.name) / "res"
        self.transport = FakeTransport()
        self.downloader = self.make_downloader()

    def tearDown(self):
        self.tmp.cleanup()

    def make_downloader(self, respect_robots_txt=False):
        self.politeness = PolitenessController(
            self.transport, user_agent="TestBot", politeness_delay=0.0,
            min_backoff_delay=0.01, max_backoff_delay=0.05, quarantine_threshold=100,
            respect_robots_txt=respect_robots_txt
        )
        fetcher = WebFetcher(
            self.transport, self.politeness, user_agent="TestBot",
            retry_policy=RetryPolicy(attempts=2, base_delay=0, max_delay=0)
        )
        return ImageDownloader(fetcher, destination=self.destination)


class TestDownload(DownloaderTestCase):
    def test_writes_image(self):
        self.transport.add(IMAGE_URL, image(IMAGE_URL, PNG))

        result = asyncio.run(self.downloader.download_url(IMAGE_URL))

        self.assertTrue(result.success)
        self.assertFalse(result.skipped)
        self.assertEqual(result.path, self.downloader.job_for(IMAGE_URL).path)
        self.assertEqual(result.path.read_bytes(), PNG)
        self.assertEqual(list(self.destination.glob("*.part")), [])
        self.assertEqual(self.downloader.get_stats()['success'], 1)
        self.assertEqual(self.downloader.get_stats()['bytes'], len(PNG))

    def test_existing_file_is_not_fetched_again(self):
        self.transport.add(IMAGE_URL, image(IMAGE_URL, PNG))

        async def run():
            first = await self.downloader.download_url(IMAGE_URL)
            second = await self.downloader.download_url(IMAGE_URL)
            return first, second

        first, second = asyncio.run(run())

        self.assertTrue(second.success)
        self.assertTrue(second.skipped)
        self.assertEqual(first.path, second.path)
        self.assertEqual(self.transport.calls_to(IMAGE_URL), 1)

    def test_image_headers(self):
        self.transport.add(IMAGE_URL, image(IMAGE_URL, PNG))

        asyncio.run(self.downloader.download_url(IMAGE_URL))

        headers = self.transport.headers_seen[-1]
        self.assertEqual(headers["User-Agent"], "TestBot")
        self.assertIn("image/", headers["Accept"])

    def test_redirected_image(self):
        moved = "http://a.test/img/moved.png"
        self.transport.add(moved, status(moved, 302, {'Location': '/img/cat.png'}))
        self.transport.add(IMAGE_URL, image(IMAGE_URL, PNG))

        result = asyncio.run(self.downloader.download_url(moved))

        self.assertTrue(result.success)
        self.assertEqual(result.path, self.downloader.job_for(moved).path)
        self.assertEqual(result.path.read_bytes(), PNG)
        self.assertEqual(self.transport.calls_to(IMAGE_URL), 1)


class TestDownloadPoliteness(DownloaderTestCase):
    def test_robots_disallowed_image_is_not_requested(self):
        private = "http://a.test/private/x.png"
        self.transport.add("http://a.test/robots.txt", TransportResponse(
            "http://a.test/robots.txt", 200, {'Content-Type': 'text/plain'}, b"User-agent: *\nDisallow: /private\n"
        ))
        self.transport.add(private, image(private, PNG))
        downloader = self.make_downloader(respect_robots_txt=True)

        result = asyncio.run(downloader.download_url(private))

        self.assertFalse(result.success)
        self.assertEqual(result.error.reason, "denied: robots_disallowed")
        self.assertEqual(self.transport.calls_to(private), 0)
        self.assertFalse(downloader.job_for(private).path.exists())

    def test_rate_limited_image_backs_off_then_succeeds(self):
        self.transport.add(IMAGE_URL, status(IMAGE_URL, 429), image(IMAGE_URL, PNG))

        result = asyncio.run(self.downloader.download_url(IMAGE_URL))

        self.assertTrue(result.success)
        self.assertEqual(self.transport.calls_to(IMAGE_URL), 2)
        self.assertGreater(self.politeness.current_delay(IMAGE_URL), 0)

    def test_persistently_blocked_image(self):
        self.transport.add(IMAGE_URL, status(IMAGE_URL, 503))

        result = asyncio.run(self.downloader.download_url(IMAGE_URL))

        self.assertFalse(result.success)
        self.assertEqual(result.error.reason, "HTTP 503")
        self.assertGreater(self.politeness.snapshot(IMAGE_URL).consecutive_failures, 0)


class TestDownloadFailures(DownloaderTestCase):
    def test_http_error(self):
        self.transport.add(IMAGE_URL, status(IMAGE_URL, 500))

        result = asyncio.run(self.downloader.download_url(IMAGE_URL))

        self.assertFalse(result.success)
        self.assertEqual(result.error.reason, "HTTP 500")
        self.assertEqual(result.error.url, IMAGE_URL)
        self.assertFalse(self.downloader.job_for(IMAGE_URL).path.exists())

    def test_transport_error_after_retries(self):
        self.transport.add(IMAGE_URL, TransportError("connection reset"))

        result = asyncio.run(self.downloader.download_url(IMAGE_URL))

        self.assertFalse(result.success)
        self.assertIn("connection reset", result.error.reason)
        self.assertEqual(self.transport.calls_to(IMAGE_URL), 2)
        self.assertEqual(self.downloader.get_stats()['failed'], 1)

    def test_failed_write_leaves_no_partial_file(self):
        self.transport.add(IMAGE_URL, image(IMAGE_URL, PNG))

        with patch('polite_crawler.storage.downloader.os.replace', side_effect=OSError("disk full")):
            result = asyncio.run(self.downloader.download_url(IMAGE_URL))

        self.assertFalse(result.success)
        self.assertIn("write failed", result.error.reason)
        self.assertEqual(list(self.destination.glob("*.part")), [])
        self.assertFalse(self.downloader.job_for(IMAGE_URL).path.exists())

    def test_failure_does_not_affect_other_downloads(self):
        other = "http://a.test/img/dog.jpg"
        self.transport.add(IMAGE_URL, status(IMAGE_URL, 404))
        self.transport.add(other, image(other, PNG))

        async def run():
            return await asyncio.gather(
                self.downloader.download_url(IMAGE_URL),
                self.downloader.download_url(other)
            )

        failed, succeeded = asyncio.run(run())
        self.assertFalse(failed.success)
        self.assertTrue(succeeded.success)


if __name__ == '__main__':
    unittest.main()
