import io
import logging
import os
import tempfile
import unittest
from pathlib import Path

from pinshare.app import create_app
from pinshare.settings import Settings, load_settings


class PinShareAppIntegrationTests(unittest.TestCase):
    def setUp(self):
        self.storage_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.storage_dir.name) / "storage"
        self.app = self._build_app()
        self.client = self.app.test_client()

    def tearDown(self):
        self.storage_dir.cleanup()

    def _build_app(self, **overrides):
        settings = Settings(storage_path=self.root, **overrides)
        app = create_app(settings)
        app.config.update(TESTING=True)
        return app

    def _upload(self, pin, content, filename, client=None):
        client = client or self.client
        return client.post(
            f"/api/files/{pin}",
            data={"file": (io.BytesIO(content), filename)},
            content_type="multipart/form-data",
        )

    def test_storage_root_created_on_startup(self):
        self.assertTrue(self.root.is_dir())

    def test_empty_listing_creates_pin_directory(self):
        self.assertFalse((self.root / "123456").exists())

        response = self.client.get("/api/files/123456")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"files": []})
        self.assertTrue((self.root / "123456").is_dir())

    def test_upload_list_and_download_round_trip(self):
        response = self._upload("123456", b"hello", "report.txt")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.get_json(), {"message": "File report.txt uploaded successfully"}
        )

        listing = self.client.get("/api/files/123456").get_json()
        self.assertIn({"name": "report.txt", "size": 5}, listing["files"])

        download = self.client.get("/api/files/123456/report.txt")
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.data, b"hello")
        self.assertEqual(download.mimetype, "application/octet-stream")
        self.assertIn("attachment", download.headers.get("Content-Disposition", ""))
        download.close()

    def test_upload_strips_path_components(self):
        response = self._upload("123456", b"not really", "a/../../etc/passwd")

        self.assertEqual(response.status_code, 200)
        self.assertTrue((self.root / "123456" / "passwd").is_file())
        stored = [path for path in Path(self.storage_dir.name).rglob("*") if path.is_file()]
        self.assertEqual(stored, [self.root / "123456" / "passwd"])

    def test_second_upload_with_same_name_overwrites(self):
        self._upload("123456", b"first version", "notes.txt")
        self._upload("123456", b"v2", "notes.txt")

        files = self.client.get("/api/files/123456").get_json()["files"]
        self.assertEqual(files, [{"name": "notes.txt", "size": 2}])
        self.assertEqual((self.root / "123456" / "notes.txt").read_bytes(), b"v2")

    def test_pins_are_isolated(self):
        self._upload("111111", b"one", "shared.txt")

        self.assertEqual(self.client.get("/api/files/222222").get_json(), {"files": []})
        response = self.client.get("/api/files/222222/shared.txt")
        self.assertEqual(response.status_code, 404)

    def test_listing_skips_directories(self):
        (self.root / "123456" / "nested").mkdir(parents=True)
        self._upload("123456", b"abc", "file.bin")

        files = self.client.get("/api/files/123456").get_json()["files"]
        self.assertEqual(files, [{"name": "file.bin", "size": 3}])

    def test_upload_without_file_field_is_rejected(self):
        response = self.client.post(
            "/api/files/123456",
            data={"other": "value"},
            content_type="multipart/form-data",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.get_json())
        # The PIN directory is still created before the form is inspected.
        self.assertTrue((self.root / "123456").is_dir())

    def test_upload_with_empty_filename_is_rejected(self):
        response = self._upload("123456", b"data", "")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(list((self.root / "123456").iterdir()), [])

    def test_upload_over_existing_directory_reports_server_error(self):
        (self.root / "123456" / "taken").mkdir(parents=True)

        response = self._upload("123456", b"data", "taken")

        self.assertEqual(response.status_code, 500)
        self.assertIn("error", response.get_json())

    def test_listing_failure_reports_server_error(self):
        (self.root / "123456").write_bytes(b"not a directory")

        response = self.client.get("/api/files/123456")

        self.assertEqual(response.status_code, 500)
        self.assertIn("error", response.get_json())

    def test_missing_download_returns_not_found(self):
        response = self.client.get("/api/files/123456/missing.txt")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {"error": "File not found"})

    def test_download_of_directory_returns_not_found(self):
        (self.root / "123456" / "folder").mkdir(parents=True)

        response = self.client.get("/api/files/123456/folder")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {"error": "File not found"})

    def test_options_short_circuits_with_no_content(self):
        for path in ("/api/files/123456", "/api/files/123456/report.txt", "/unknown"):
            response = self.client.options(path)
            self.assertEqual(response.status_code, 204, path)
            self.assertEqual(response.data, b"", path)
            self.assertEqual(
                response.headers["Access-Control-Allow-Origin"], "http://localhost:5173"
            )

    def test_cors_headers_on_regular_responses(self):
        response = self.client.get("/api/files/123456")

        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "http://localhost:5173")
        self.assertEqual(response.headers["Access-Control-Allow-Credentials"], "true")
        self.assertEqual(response.headers["Access-Control-Allow-Methods"], "GET,POST,OPTIONS")
        self.assertEqual(
            response.headers["Access-Control-Allow-Headers"], "Content-Type,Authorization"
        )

    def test_configured_cors_origin_is_used(self):
        client = self._build_app(cors_origin="https://share.example.com").test_client()

        response = client.options("/api/files/123456")

        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "https://share.example.com")

    def test_request_id_is_echoed(self):
        response = self.client.get("/api/files/123456", headers={"X-Request-ID": "abc123"})
        self.assertEqual(response.headers["X-Request-ID"], "abc123")

        generated = self.client.get("/api/files/123456").headers["X-Request-ID"]
        self.assertEqual(len(generated), 32)

    def test_unvalidated_pin_format_is_accepted_by_default(self):
        response = self._upload("not-a-number", b"x", "x.txt")

        self.assertEqual(response.status_code, 200)
        self.assertTrue((self.root / "not-a-number" / "x.txt").is_file())

    def test_enforced_pin_format_rejects_other_pins(self):
        client = self._build_app(enforce_pin_format=True).test_client()

        response = client.get("/api/files/abc")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json(), {"error": "PIN must be 6-8 digits"})
        self.assertFalse((self.root / "abc").exists())

        self.assertEqual(client.get("/api/files/12345678").status_code, 200)

    def test_upload_size_limit(self):
        client = self._build_app(max_upload_size_mb=1).test_client()

        response = self._upload("123456", b"x" * (2 * 1024 * 1024), "big.bin", client=client)

        self.assertEqual(response.status_code, 413)
        self.assertEqual(response.get_json(), {"error": "File too large"})

    def test_unknown_route_returns_json_not_found(self):
        response = self.client.get("/api/nothing-here")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {"error": "Not found"})

    def test_unsupported_method_returns_json(self):
        response = self.client.delete("/api/files/123456")

        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.get_json(), {"error": "Method not allowed"})

    def test_health_check_reports_writable_storage(self):
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["status"], "healthy")
        self.assertEqual(payload["checks"]["storage_writable"], "ok")
        self.assertEqual(list(self.root.iterdir()), [])

    def test_api_documentation_endpoints(self):
        document = self.client.get("/api/swagger/doc.json")
        self.assertEqual(document.status_code, 200)
        paths = document.get_json()["paths"]
        self.assertIn("/api/files/{pin}", paths)
        self.assertIn("/api/files/{pin}/{filename}", paths)
        self.assertEqual(set(paths["/api/files/{pin}"]), {"get", "post"})

        index = self.client.get("/api/swagger/index.html")
        self.assertEqual(index.status_code, 200)
        self.assertIn(b"/api/swagger/doc.json", index.data)

        redirect = self.client.get("/api/swagger/")
        self.assertEqual(redirect.status_code, 302)
        self.assertTrue(redirect.headers["Location"].endswith("/api/swagger/index.html"))

    def test_file_logging_writes_application_log(self):
        logs_dir = Path(self.storage_dir.name) / "logs"
        self._build_app(logs_dir=logs_dir)

        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            if getattr(handler, "baseFilename", "").startswith(str(logs_dir)):
                self.addCleanup(root_logger.removeHandler, handler)
                self.addCleanup(handler.close)

        self.assertTrue((logs_dir / "application.log").exists())



class RelativeStoragePathTests(unittest.TestCase):
    def setUp(self):
        self.work_dir = tempfile.TemporaryDirectory()
        previous_cwd = os.getcwd()
        os.chdir(self.work_dir.name)
        self.addCleanup(self.work_dir.cleanup)
        self.addCleanup(os.chdir, previous_cwd)

    def _round_trip(self, app):
        client = app.test_client()
        upload = client.post(
            "/api/files/123456",
            data={"file": (io.BytesIO(b"hello"), "report.txt")},
            content_type="multipart/form-data",
        )
        self.assertEqual(upload.status_code, 200)

        listing = client.get("/api/files/123456").get_json()
        self.assertEqual(listing, {"files": [{"name": "report.txt", "size": 5}]})

        download = client.get("/api/files/123456/report.txt")
        self.assertEqual(download.status_code, 200)
        self.assertEqual(download.data, b"hello")
        download.close()

    def test_default_settings_round_trip(self):
        app = create_app(load_settings({}))
        app.config.update(TESTING=True)

        self._round_trip(app)

        stored = Path(self.work_dir.name) / "storage" / "123456" / "report.txt"
        self.assertEqual(stored.read_bytes(), b"hello")

    def test_relative_settings_path_is_made_absolute(self):
        app = create_app(Settings(storage_path=Path("relative-store")))
        app.config.update(TESTING=True)

        self.assertTrue(app.config["PINSHARE_SETTINGS"].storage_path.is_absolute())
        self._round_trip(app)


if __name__ == "__main__":
    unittest.main()
