import os
import stat
import tempfile
import unittest
import unittest.mock
from pathlib import Path

from srvkit.errors import FileOperationError
from srvkit.hosts import (
    HostsEntry,
    HostsUpdateMode,
    apply_hosts_update,
    canonical_line,
    find_hostname_entry,
    parse_hosts_entries,
    update_hosts,
)


class TestApplyHostsUpdate(unittest.TestCase):
    def test_replaces_canonical_line_and_drops_duplicates(self):
        lines = ["127.0.0.1 localhost", "127.0.1.1 old", "127.0.1.1 old.example.com old"]
        mode, new_lines = apply_hosts_update(lines, "old", "web01", "web01.example.com")
        self.assertEqual(mode, HostsUpdateMode.REPLACE_CANONICAL)
        self.assertEqual(new_lines, ["127.0.0.1 localhost", "127.0.1.1 web01.example.com web01"])

    def test_inserts_after_loopback(self):
        lines = "127.0.0.1 localhost\n::1 localhost\n".splitlines()
        mode, new_lines = apply_hosts_update(lines, "", "web01")
        self.assertEqual(mode, HostsUpdateMode.INSERT_AFTER)
        self.assertEqual(new_lines, ["127.0.0.1 localhost", "127.0.1.1 web01", "::1 localhost"])

    def test_appends_without_loopback(self):
        lines = ["# static hosts", "10.0.0.5 db"]
        mode, new_lines = apply_hosts_update(lines, "", "web01")
        self.assertEqual(mode, HostsUpdateMode.APPEND)
        self.assertEqual(new_lines, lines + ["127.0.1.1 web01"])

    def test_append_mode_skips_insert(self):
        lines = ["127.0.0.1 localhost"]
        mode, new_lines = apply_hosts_update(lines, "", "web01", mode=HostsUpdateMode.APPEND)
        self.assertEqual(mode, HostsUpdateMode.APPEND)
        self.assertEqual(new_lines[-1], "127.0.1.1 web01")

    def test_replace_token_keeps_other_names_and_comment(self):
        lines = ["127.0.0.1 localhost OLD-box other # pinned"]
        mode, new_lines = apply_hosts_update(lines, "old-box", "web01", mode=HostsUpdateMode.REPLACE_TOKEN)
        self.assertEqual(mode, HostsUpdateMode.REPLACE_TOKEN)
        self.assertEqual(new_lines, ["127.0.0.1 localhost web01 other # pinned"])

    def test_replace_token_already_applied_is_a_no_op(self):
        lines = ["127.0.0.1 localhost srv1", "::1 localhost"]
        mode, new_lines = apply_hosts_update(lines, "oldbox", "srv1", mode=HostsUpdateMode.REPLACE_TOKEN)
        self.assertEqual(mode, HostsUpdateMode.REPLACE_TOKEN)
        self.assertEqual(new_lines, lines)

    def test_replace_token_needs_old_name(self):
        lines = ["127.0.0.1 localhost"]
        mode, _ = apply_hosts_update(lines, "", "web01", mode=HostsUpdateMode.REPLACE_TOKEN)
        self.assertEqual(mode, HostsUpdateMode.INSERT_AFTER)

    def test_canonical_line_omits_fqdn_equal_to_name(self):
        self.assertEqual(canonical_line("web01", "web01"), "127.0.1.1 web01")
        self.assertEqual(canonical_line("web01", "web01.lan"), "127.0.1.1 web01.lan web01")


class TestUpdateHosts(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.path = self.dir / "hosts"
        self._which = unittest.mock.patch("shutil.which", return_value=None)
        self._which.start()

    def tearDown(self):
        self._which.stop()
        self._tmp.cleanup()

    def canonical_lines(self):
        return [line for line in self.path.read_text().splitlines() if line.startswith("127.0.1.1")]

    def test_example_document(self):
        self.path.write_text("127.0.0.1 localhost\n::1 localhost\n")
        mode = update_hosts("", "web01", path=self.path)
        self.assertEqual(mode, HostsUpdateMode.INSERT_AFTER)
        self.assertEqual(self.path.read_text(), "127.0.0.1 localhost\n127.0.1.1 web01\n::1 localhost\n")

    def test_running_twice_leaves_one_canonical_line(self):
        self.path.write_text("127.0.0.1 localhost\n::1 localhost\n")
        update_hosts("", "web01", "web01.example.com", path=self.path)
        mode = update_hosts("web01", "web01", "web01.example.com", path=self.path)
        self.assertEqual(mode, HostsUpdateMode.REPLACE_CANONICAL)
        self.assertEqual(self.canonical_lines(), ["127.0.1.1 web01.example.com web01"])

    def test_replace_token_twice_changes_nothing_the_second_time(self):
        self.path.write_text("127.0.0.1 localhost oldbox\n::1 localhost\n")
        update_hosts("oldbox", "srv1", "", HostsUpdateMode.REPLACE_TOKEN, path=self.path)
        first = self.path.read_text()
        self.assertEqual(first, "127.0.0.1 localhost srv1\n::1 localhost\n")

        mode = update_hosts("oldbox", "srv1", "", HostsUpdateMode.REPLACE_TOKEN, path=self.path)
        self.assertEqual(mode, HostsUpdateMode.REPLACE_TOKEN)
        self.assertEqual(self.path.read_text(), first)
        self.assertEqual(self.canonical_lines(), [])

    def test_unchanged_file_is_not_reported_as_updated(self):
        self.path.write_text("127.0.0.1 localhost\n127.0.1.1 web01\n")
        with self.assertLogs("srvkit", level="INFO") as logs:
            update_hosts("web01", "web01", path=self.path)
        output = "\n".join(logs.output)
        self.assertIn("already up to date", output)
        self.assertNotIn("Updated", output)

    def test_backup_failure_aborts_before_writing(self):
        self.path.write_text("127.0.0.1 localhost\n")
        with unittest.mock.patch("srvkit.files.shutil.copy2", side_effect=OSError("disk full")):
            with self.assertRaises(FileOperationError) as ctx:
                update_hosts("", "web01", path=self.path)
        self.assertEqual(ctx.exception.stage, "backup")
        self.assertEqual(self.path.read_bytes(), b"127.0.0.1 localhost\n")
        self.assertEqual([p.name for p in self.dir.iterdir()], ["hosts"])

    def test_no_loopback_appends_exactly_one_line(self):
        self.path.write_text("10.0.0.5 db\n")
        mode = update_hosts("", "web01", path=self.path)
        self.assertEqual(mode, HostsUpdateMode.APPEND)
        self.assertEqual(self.path.read_text(), "10.0.0.5 db\n127.0.1.1 web01\n")

    def test_missing_file_is_created(self):
        mode = update_hosts("", "web01", path=self.path)
        self.assertEqual(mode, HostsUpdateMode.APPEND)
        self.assertEqual(self.path.read_text(), "127.0.1.1 web01\n")

    def test_mode_is_preserved_and_backup_taken(self):
        self.path.write_text("127.0.0.1 localhost\n")
        os.chmod(self.path, 0o600)
        update_hosts("", "web01", path=self.path)
        self.assertEqual(stat.S_IMODE(os.stat(self.path).st_mode), 0o600)
        backups = [p for p in self.dir.iterdir() if p.name.startswith("hosts.bak.")]
        self.assertEqual(len(backups), 1)
        self.assertEqual(backups[0].read_text(), "127.0.0.1 localhost\n")

    def test_dry_run_writes_nothing(self):
        self.path.write_text("127.0.0.1 localhost\n")
        mode = update_hosts("", "web01", path=self.path, dry_run=True)
        self.assertEqual(mode, HostsUpdateMode.INSERT_AFTER)
        self.assertEqual(self.path.read_text(), "127.0.0.1 localhost\n")
        self.assertEqual(len(list(self.dir.iterdir())), 1)

    def test_find_hostname_entry(self):
        self.path.write_text("# comment\n127.0.0.1 localhost\n127.0.1.1 web01.lan web01 # me\n")
        entry = find_hostname_entry("WEB01", self.path)
        self.assertEqual(entry, HostsEntry("127.0.1.1", ["web01.lan", "web01"], "me"))
        self.assertIsNone(find_hostname_entry("db", self.path))

    def test_parse_skips_blank_and_comment_lines(self):
        entries = parse_hosts_entries("\n# x\n  \n10.0.0.1 a b\n")
        self.assertEqual([e.address for e in entries], ["10.0.0.1"])


if __name__ == "__main__":
    unittest.main()
