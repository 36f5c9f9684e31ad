#!/usr/bin/env python3
"""
Tests for the storage collaborators.
"""

import sys
import tempfile
import threading
import unittest
from pathlib import Path
from unittest import mock

import httpx

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from quote_intake.exceptions import StorageError
from quote_intake.storage import LocalStorageClient, SupabaseStorageClient


class TestLocalStorageClient(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        (self.root / "quotes").mkdir()
        (self.root / "quotes" / "q1.pdf").write_bytes(b"%PDF-1.7 quote")
        self.storage = LocalStorageClient(str(self.root))

    def tearDown(self):
        self.tmp.cleanup()

    async def test_download_file(self):
        self.assertEqual(await self.storage.download_file("quotes/q1.pdf"), b"%PDF-1.7 quote")

    async def test_missing_file(self):
        with self.assertRaises(StorageError):
            await self.storage.download_file("quotes/missing.pdf")

    async def test_path_outside_root(self):
        with self.assertRaises(StorageError) as ctx:
            await self.storage.download_file("../escape.pdf")
        self.assertIn("outside the storage root", str(ctx.exception))

    async def test_file_is_read_off_the_event_loop_thread(self):
        original = Path.read_bytes
        readers = []

        def recording_read_bytes(path):
            readers.append(threading.get_ident())
            return original(path)

        with mock.patch.object(Path, "read_bytes", recording_read_bytes):
            data = await self.storage.download_file("quotes/q1.pdf")

        self.assertEqual(data, b"%PDF-1.7 quote")
        self.assertEqual(len(readers), 1)
        self.assertNotEqual(readers[0], threading.get_ident())


class TestSupabaseStorageClient(unittest.IsolatedAsyncioTestCase):

    def make_storage(self, handler):
        self.requests = []

        def record(request):
            self.requests.append(request)
            return handler(request)

        self.http = httpx.AsyncClient(transport=httpx.MockTransport(record))
        return SupabaseStorageClient("https://project.supabase.test/", "service-key", "documents", self.http)

    async def asyncTearDown(self):
        await self.http.aclose()

    async def test_download_file(self):
        storage = self.make_storage(lambda request: httpx.Response(200, content=b"pdf bytes"))

        data = await storage.download_file("vendor a/quote.pdf")

        self.assertEqual(data, b"pdf bytes")
        request = self.requests[0]
        self.assertEqual(
            str(request.url),
            "https://project.supabase.test/storage/v1/object/documents/vendor%20a/quote.pdf",
        )
        self.assertEqual(request.headers["Authorization"], "Bearer service-key")
        self.assertEqual(request.headers["apikey"], "service-key")

    async def test_http_error(self):
        storage = self.make_storage(lambda request: httpx.Response(404))
        with self.assertRaises(StorageError) as ctx:
            await storage.download_file("missing.pdf")
        self.assertIn("HTTP 404", str(ctx.exception))
        self.assertEqual(len(self.requests), 1)

    async def test_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        storage = self.make_storage(refuse)
        with self.assertRaises(StorageError):
            await storage.download_file("quote.pdf")
        self.assertEqual(len(self.requests), 1)


if __name__ == "__main__":
    unittest.main()
