import os
import stat
import tempfile
import unittest
import unittest.mock
from pathlib import Path

from srvkit.authkeys import AuthorizedKeysManager
from srvkit.errors import AccountNotFoundError, FileOperationError, ValidationError
from srvkit.users import UserInfo

KEY_A = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIAaaaa alice"
KEY_B = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIBbbbb bob"
KEY_C = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQCccc carol"


class AuthKeysTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.home = Path(self._tmp.name)
        self.user = UserInfo("deploy", os.getuid(), os.getgid(), str(self.home))
        self._get_user = unittest.mock.patch("srvkit.authkeys.get_user", return_value=self.user)
        self._get_user.start()
        self.path = self.home / ".ssh" / "authorized_keys"

    def tearDown(self):
        self._get_user.stop()
        self._tmp.cleanup()

    def write_keys(self, content):
        self.path.parent.mkdir(mode=0o700)
        self.path.write_text(content)

    def backups(self):
        return [p for p in self.path.parent.iterdir() if p.name.startswith("authorized_keys.bak.")]


class TestMerge(AuthKeysTestCase):
    def test_one_present_one_new(self):
        self.write_keys(f"{KEY_A}\n")
        result = AuthorizedKeysManager("deploy").merge([KEY_A, KEY_B])
        self.assertEqual(result.added, 1)
        self.assertEqual(self.path.read_text(), f"{KEY_A}\n{KEY_B}\n")
        self.assertEqual(len(self.backups()), 1)

    def test_creates_ssh_dir_and_file_with_tight_modes(self):
        result = AuthorizedKeysManager("deploy").merge([KEY_A])
        self.assertEqual(result.added, 1)
        self.assertEqual(stat.S_IMODE(os.stat(self.path.parent).st_mode), 0o700)
        self.assertEqual(stat.S_IMODE(os.stat(self.path).st_mode), 0o600)

    def test_original_bytes_kept_when_missing_final_newline(self):
        self.write_keys(f"# managed\n{KEY_A}")
        AuthorizedKeysManager("deploy").merge([KEY_B])
        self.assertEqual(self.path.read_text(), f"# managed\n{KEY_A}\n{KEY_B}\n")

    def test_nothing_new_means_no_write(self):
        self.write_keys(f"{KEY_A}\n")
        result = AuthorizedKeysManager("deploy").merge([f"  {KEY_A}  ", "", "# comment"])
        self.assertEqual(result.added, 0)
        self.assertEqual(self.backups(), [])

    def test_invalid_keys_reported(self):
        result = AuthorizedKeysManager("deploy").merge([KEY_A, "ssh-rsa", "nonsense here"])
        self.assertEqual(result.added, 1)
        self.assertEqual(result.invalid, ["ssh-rsa", "nonsense here"])

    def test_batch_duplicates_collapse(self):
        result = AuthorizedKeysManager("deploy").merge([KEY_A, KEY_A])
        self.assertEqual(result.added, 1)
        self.assertEqual(self.path.read_text(), f"{KEY_A}\n")

    def test_overwrite_replaces_content(self):
        self.write_keys(f"{KEY_A}\n{KEY_B}\n")
        result = AuthorizedKeysManager("deploy").merge([KEY_C], overwrite=True)
        self.assertEqual(result.added, 1)
        self.assertEqual(self.path.read_text(), f"{KEY_C}\n")

    def test_overwrite_with_no_valid_keys_is_refused(self):
        self.write_keys(f"{KEY_A}\n")
        with self.assertRaises(ValidationError):
            AuthorizedKeysManager("deploy").merge(["junk"], overwrite=True)
        self.assertEqual(self.path.read_text(), f"{KEY_A}\n")

    def test_backup_failure_aborts_before_writing(self):
        self.write_keys(f"{KEY_A}\n")
        with unittest.mock.patch("srvkit.files.shutil.copy2", side_effect=OSError("disk full")):
            with self.assertRaises(FileOperationError) as ctx:
                AuthorizedKeysManager("deploy").merge([KEY_B])
        self.assertEqual(ctx.exception.stage, "backup")
        self.assertEqual(self.path.read_text(), f"{KEY_A}\n")
        self.assertEqual([p.name for p in self.path.parent.iterdir()], ["authorized_keys"])

    def test_dry_run_writes_nothing(self):
        result = AuthorizedKeysManager("deploy", dry_run=True).merge([KEY_A])
        self.assertEqual(result.added, 1)
        self.assertFalse(self.path.parent.exists())

    def test_chown_failure_is_reported(self):
        with unittest.mock.patch("srvkit.authkeys.os.chown", side_effect=PermissionError("denied")):
            with self.assertRaises(FileOperationError) as ctx:
                AuthorizedKeysManager("deploy").merge([KEY_A])
        self.assertEqual(ctx.exception.stage, "chown")


class TestUnknownAccount(unittest.TestCase):
    def test_unknown_account_fails_first(self):
        with self.assertRaises(AccountNotFoundError):
            AuthorizedKeysManager("no-such-user-srvkit-test")


class TestListAndRemove(AuthKeysTestCase):
    def test_list_and_count(self):
        self.write_keys(f"# managed\n{KEY_A}\n\n{KEY_B}\n")
        manager = AuthorizedKeysManager("deploy")
        self.assertEqual(manager.list_keys(), [KEY_A, KEY_B])
        self.assertEqual(manager.count(), 2)

    def test_remove_key_ignores_comment(self):
        self.write_keys(f"# managed\n{KEY_A}\n{KEY_B}\n")
        removed = AuthorizedKeysManager("deploy").remove_key("ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIAaaaa")
        self.assertTrue(removed)
        self.assertEqual(self.path.read_text(), f"# managed\n{KEY_B}\n")

    def test_remove_missing_key(self):
        self.write_keys(f"{KEY_A}\n")
        self.assertFalse(AuthorizedKeysManager("deploy").remove_key(KEY_C))
        self.assertEqual(self.backups(), [])


if __name__ == "__main__":
    unittest.main()
