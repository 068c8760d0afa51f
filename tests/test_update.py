import hashlib
import os
import stat
import tempfile
import unittest
import unittest.mock
from pathlib import Path

from srvkit.errors import ChecksumMismatchError, FetchError, SwapError
from srvkit.update import UpdateState, Updater, asset_name, extract_checksum, parse_release

ASSET = "server-toolkit-linux-amd64"
NEW_BINARY = b"#!/bin/sh\necho new\n"
OLD_BINARY = b"#!/bin/sh\necho old\n"


def release_json(tag="v1.1.0", checksums=True):
    assets = [{"name": ASSET, "browser_download_url": f"https://dl.example/{tag}/{ASSET}"}]
    if checksums:
        assets.append({"name": "checksums.txt", "browser_download_url": f"https://dl.example/{tag}/checksums.txt"})
    return {"tag_name": tag, "assets": assets}


class TestReleaseParsing(unittest.TestCase):
    def test_asset_name_maps_architectures(self):
        self.assertEqual(asset_name("Linux", "x86_64"), "server-toolkit-linux-amd64")
        self.assertEqual(asset_name("Linux", "aarch64"), "server-toolkit-linux-arm64")

    def test_extract_checksum(self):
        listing = "# sha256\n\nabc123  server-toolkit-linux-arm64\ndef456 *server-toolkit-linux-amd64\n"
        self.assertEqual(extract_checksum(listing, ASSET), "def456")
        self.assertIsNone(extract_checksum(listing, "server-toolkit-darwin-arm64"))

    def test_parse_release_falls_back_to_download_url(self):
        release = parse_release({"tag_name": "v2.0.0", "assets": [{"name": "checksums.sha256"}]}, "o/r", ASSET)
        self.assertEqual(release.download_url, f"https://github.com/o/r/releases/download/v2.0.0/{ASSET}")
        self.assertEqual(release.checksum_url, "https://github.com/o/r/releases/download/v2.0.0/checksums.sha256")

    def test_empty_tag_is_an_error(self):
        with self.assertRaises(FetchError):
            parse_release({"tag_name": ""}, "o/r", ASSET)


class TestExecutable(unittest.TestCase):
    def test_defaults_to_resolved_argv0(self):
        with tempfile.TemporaryDirectory() as tmp:
            script = Path(tmp).resolve() / "server-toolkit"
            script.write_text("#!/bin/sh\n")
            with unittest.mock.patch("sys.argv", [str(script)]):
                self.assertEqual(Updater("1.0.0").executable, script)

    def test_explicit_executable_wins(self):
        self.assertEqual(Updater("1.0.0", executable="/opt/bin/server-toolkit").executable, Path("/opt/bin/server-toolkit"))


class UpdaterTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.exe = self.dir / "server-toolkit"
        self.exe.write_bytes(OLD_BINARY)
        os.chmod(self.exe, 0o755)
        self.updater = Updater("v1.0.0", repo="o/r", executable=self.exe)
        self.updater.asset_name = ASSET

        self.checksums = f"{hashlib.sha256(NEW_BINARY).hexdigest()}  {ASSET}\n"
        self.release = release_json()
        patches = [
            unittest.mock.patch("srvkit.update.fetch_json", side_effect=lambda url, timeout: self.release),
            unittest.mock.patch("srvkit.update.fetch_bytes", side_effect=lambda url, timeout: NEW_BINARY),
            unittest.mock.patch("srvkit.update.fetch_text", side_effect=lambda url, timeout: self.checksums),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def names(self):
        return sorted(p.name for p in self.dir.iterdir())


class TestCheck(UpdaterTestCase):
    def test_update_available(self):
        self.assertEqual(self.updater.check(), ("v1.1.0", True))
        self.assertEqual(self.updater.state, UpdateState.UPDATE_AVAILABLE)

    def test_up_to_date_ignores_v_prefix(self):
        self.updater.current_version = "1.1.0"
        self.assertEqual(self.updater.check(), ("v1.1.0", False))
        self.assertEqual(self.updater.state, UpdateState.UP_TO_DATE)

    def test_bad_payload(self):
        self.release = {"tag_name": ""}
        with self.assertRaises(FetchError):
            self.updater.check()
        self.assertEqual(self.updater.state, UpdateState.FAILED)


class TestPerformUpdate(UpdaterTestCase):
    def test_successful_update(self):
        self.assertTrue(self.updater.perform_update())
        self.assertEqual(self.exe.read_bytes(), NEW_BINARY)
        self.assertEqual(stat.S_IMODE(os.stat(self.exe).st_mode), 0o755)
        self.assertEqual((self.dir / "server-toolkit.bak").read_bytes(), OLD_BINARY)
        self.assertEqual(self.names(), ["server-toolkit", "server-toolkit.bak"])
        self.assertEqual(self.updater.state, UpdateState.DONE)

    def test_already_up_to_date(self):
        self.updater.current_version = "v1.1.0"
        self.assertFalse(self.updater.perform_update())
        self.assertEqual(self.exe.read_bytes(), OLD_BINARY)

    def test_corrupted_checksum_never_touches_executable(self):
        self.checksums = f"{'0' * 64}  {ASSET}\n"
        with self.assertRaises(ChecksumMismatchError):
            self.updater.perform_update()
        self.assertEqual(self.exe.read_bytes(), OLD_BINARY)
        self.assertEqual(self.names(), ["server-toolkit"])
        self.assertEqual(self.updater.state, UpdateState.FAILED)

    def test_missing_checksum_asset(self):
        self.release = release_json(checksums=False)
        with self.assertRaises(ChecksumMismatchError):
            self.updater.perform_update()
        self.assertEqual(self.names(), ["server-toolkit"])

    def test_missing_checksum_entry(self):
        self.checksums = "abc  server-toolkit-darwin-arm64\n"
        with self.assertRaises(ChecksumMismatchError):
            self.updater.perform_update()
        self.assertEqual(self.exe.read_bytes(), OLD_BINARY)

    def test_failed_swap_rolls_back(self):
        real_replace = os.replace
        calls = []

        def flaky_replace(src, dst):
            calls.append((src, dst))
            if len(calls) == 2:
                raise OSError("rename failed")
            return real_replace(src, dst)

        with unittest.mock.patch("srvkit.update.os.replace", side_effect=flaky_replace):
            with self.assertRaises(SwapError) as ctx:
                self.updater.perform_update()

        self.assertIsNone(ctx.exception.rollback_error)
        self.assertEqual(self.exe.read_bytes(), OLD_BINARY)
        self.assertEqual(self.names(), ["server-toolkit"])
        self.assertEqual(self.updater.state, UpdateState.ROLLED_BACK)

    def test_failed_rollback_is_reported(self):
        real_replace = os.replace
        calls = []

        def broken_replace(src, dst):
            calls.append((src, dst))
            if len(calls) >= 2:
                raise OSError(f"rename {len(calls)} failed")
            return real_replace(src, dst)

        with unittest.mock.patch("srvkit.update.os.replace", side_effect=broken_replace):
            with self.assertRaises(SwapError) as ctx:
                self.updater.perform_update()

        self.assertIsNotNone(ctx.exception.rollback_error)
        self.assertIn("rollback failed", str(ctx.exception))
        self.assertEqual((self.dir / "server-toolkit.bak").read_bytes(), OLD_BINARY)

    def test_dry_run_downloads_nothing(self):
        self.updater.dry_run = True
        self.assertTrue(self.updater.perform_update())
        self.assertEqual(self.exe.read_bytes(), OLD_BINARY)
        self.assertEqual(self.names(), ["server-toolkit"])


if __name__ == "__main__":
    unittest.main()
