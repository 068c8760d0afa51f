import tempfile
import unittest
import unittest.mock
from pathlib import Path

from srvkit.errors import FetchError, KeySourceError
from srvkit.keys import KeyRequest, KeySource, fetch_keys, filter_valid_keys, validate_key

ED25519 = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIGm4f0x0example0key0data0000000000000000000 alice@laptop"
RSA = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC7example== bob"


class TestValidateKey(unittest.TestCase):
    def test_accepts_known_types(self):
        self.assertIsNone(validate_key(ED25519))
        self.assertIsNone(validate_key(RSA))
        self.assertIsNone(validate_key("sk-ssh-ed25519@openssh.com AAAAGnNrLXNzaC1lZDI1NTE5QG9wZW5zc2guY29t"))
        self.assertIsNone(validate_key("ecdsa-sha2-nistp521 AAAAE2VjZHNh"))

    def test_rejects_malformed_lines(self):
        self.assertIsNotNone(validate_key("ssh-ed25519"))
        self.assertIsNotNone(validate_key("ssh-foo AAAA"))
        self.assertIsNotNone(validate_key("ssh-rsa not!base64"))
        self.assertIsNotNone(validate_key('command="ls" ssh-rsa AAAA'))

    def test_filter_drops_comments_invalid_and_duplicates(self):
        keys = filter_valid_keys(["# mine", ED25519, "garbage", ED25519, RSA])
        self.assertEqual(keys, [ED25519, RSA])


class TestFetchKeys(unittest.TestCase):
    def test_github_source(self):
        with unittest.mock.patch("srvkit.keys.fetch_text", return_value=f"{ED25519}\r\n{RSA}\r\n") as fetch:
            keys = fetch_keys(KeyRequest(KeySource.GITHUB, "alice"), timeout=5)
        fetch.assert_called_once_with("https://github.com/alice.keys", 5)
        self.assertEqual(keys, [ED25519, RSA])

    def test_url_source_errors_become_key_source_errors(self):
        with unittest.mock.patch("srvkit.keys.fetch_text", side_effect=FetchError("HTTP 404")):
            with self.assertRaises(KeySourceError):
                fetch_keys(KeyRequest(KeySource.URL, "https://example.com/keys"))

    def test_file_source(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "keys.pub"
            path.write_text(f"# team keys\n\n{RSA}\n")
            self.assertEqual(fetch_keys(KeyRequest(KeySource.FILE, str(path))), [RSA])

    def test_no_valid_keys(self):
        with unittest.mock.patch("srvkit.keys.fetch_text", return_value="Not Found\n"):
            with self.assertRaises(KeySourceError):
                fetch_keys(KeyRequest(KeySource.GITHUB, "nobody"))

    def test_missing_file(self):
        with self.assertRaises(KeySourceError):
            fetch_keys(KeyRequest(KeySource.FILE, "/nonexistent/keys.pub"))


if __name__ == "__main__":
    unittest.main()
