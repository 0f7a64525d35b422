from __future__ import annotations

import errno
import io
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from mpqtool.errors import (
    ArchiveWriteError,
    DirCreationError,
    EntryNotFoundError,
    EntryReadError,
    FileOpenError,
    InvalidPatternError,
    ListfileNotFoundError,
    PathEscapeError,
)
from mpqtool.extract import extract_archive
from mpqtool.listing import list_entries, view_entry
from mpqtool.pack import pack_directory, pack_to_file
from mpqtool.pathutil import ensure_parent_dirs, normalize, to_archive_name, to_host_path
from mpqtool.pattern import GlobPattern, compile_pattern, matches
from mpqtool.reader import ArchiveReader
from mpqtool.writer import ArchiveWriter, FileOptions


class FakeArchive:
    """Stands in for ArchiveReader: a name listing plus per-name contents."""

    def __init__(self, entries, listing=None, broken=()):
        self.entries = dict(entries)
        self.listing = list(self.entries) if listing is None else listing
        self.broken = set(broken)

    def list_files(self):
        return self.listing

    def read_file(self, name):
        if name in self.broken:
            raise EntryReadError(f"{name}: cannot decode")
        if name not in self.entries:
            raise EntryNotFoundError(name)
        return self.entries[name]


def _archive_bytes(entries, **kw) -> bytes:
    writer = ArchiveWriter(**kw)
    for name, data in entries.items():
        writer.add_file(name, data)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


class PathNormalizerTests(unittest.TestCase):
    def test_normalize_removes_backslashes_and_is_idempotent(self):
        for name in ("a.txt", "dir\\b.txt", "x\\y\\z\\", "\\\\lead", "mixed/dir\\c"):
            once = normalize(name)
            self.assertNotIn("\\", once)
            self.assertEqual(normalize(once), once)

    def test_to_archive_name(self):
        self.assertEqual(to_archive_name(os.path.join("sub", "y")), "sub\\y")
        self.assertEqual(to_archive_name("a/b/c.txt"), "a\\b\\c.txt")

    def test_host_path_is_descendant(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp).resolve()
            for p in ("a.txt", "dir/b.txt", "/abs/c.txt", "./d/./e.txt", "f//g.txt"):
                host = to_host_path(p, root).resolve()
                self.assertTrue(str(host).startswith(str(root) + os.sep), p)

    def test_parent_segments_rejected(self):
        for p in ("../escape.txt", "a/../../b", "a/..", ".."):
            with self.assertRaises(PathEscapeError):
                to_host_path(p, "/tmp/out")

    def test_empty_path_rejected(self):
        for p in ("", "/", "./."):
            with self.assertRaises(PathEscapeError):
                to_host_path(p, "/tmp/out")

    def test_ensure_parent_dirs(self):
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "a" / "b" / "c.txt"
            ensure_parent_dirs(target)
            self.assertTrue((Path(tmp) / "a" / "b").is_dir())
            ensure_parent_dirs(target)  # already there

    def test_ensure_parent_dirs_file_collision(self):
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "a").write_bytes(b"not a dir")
            with self.assertRaises(DirCreationError) as ctx:
                ensure_parent_dirs(Path(tmp) / "a" / "b" / "c.txt")
            self.assertIsInstance(ctx.exception.cause, OSError)


class PatternTests(unittest.TestCase):
    def test_no_pattern_matches_everything(self):
        self.assertIsNone(compile_pattern(None))
        self.assertIsNone(compile_pattern(""))
        self.assertTrue(matches(None, "any/thing"))

    def test_star_stays_in_one_component(self):
        pat = GlobPattern("*.txt")
        self.assertTrue(pat.matches("a.txt"))
        self.assertFalse(pat.matches("b.bin"))
        self.assertFalse(pat.matches("dir/a.txt"))
        self.assertTrue(GlobPattern("dir/*.txt").matches("dir/a.txt"))

    def test_question_mark_and_classes(self):
        self.assertTrue(GlobPattern("file?.dat").matches("file1.dat"))
        self.assertFalse(GlobPattern("file?.dat").matches("file10.dat"))
        self.assertTrue(GlobPattern("[a-c]*.mdx").matches("b_unit.mdx"))
        self.assertFalse(GlobPattern("[!a-c]*.mdx").matches("b_unit.mdx"))
        self.assertTrue(GlobPattern("[^a-c]*.mdx").matches("z_unit.mdx"))
        self.assertTrue(GlobPattern("[]]x").matches("]x"))
        self.assertFalse(GlobPattern("a[/]b").matches("a/b"))

    def test_double_star(self):
        pat = GlobPattern("**/*.txt")
        self.assertTrue(pat.matches("a.txt"))
        self.assertTrue(pat.matches("x/y/a.txt"))
        self.assertFalse(pat.matches("x/y/a.bin"))
        mid = GlobPattern("units/**/footman.mdx")
        self.assertTrue(mid.matches("units/footman.mdx"))
        self.assertTrue(mid.matches("units/human/melee/footman.mdx"))
        self.assertTrue(GlobPattern("data/**").matches("data/a/b.txt"))

    def test_backslashes_in_pattern_act_as_separators(self):
        self.assertTrue(GlobPattern("dir\\*.txt").matches("dir/a.txt"))

    def test_regex_characters_are_literal(self):
        self.assertTrue(GlobPattern("a+b(1).txt").matches("a+b(1).txt"))
        self.assertFalse(GlobPattern("a.txt").matches("abtxt"))

    def test_invalid_patterns(self):
        for text in ("[abc", "[]", "[!]", "***", "a**/b", "**b", "[z-a]"):
            with self.assertRaises(InvalidPatternError, msg=text):
                compile_pattern(text)


class ExtractorTests(unittest.TestCase):
    def test_extract_writes_entries_under_root(self):
        entries = {"a.txt": b"alpha", "dir\\b.txt": b"bravo"}
        blob = _archive_bytes(entries)
        with tempfile.TemporaryDirectory() as tmp:
            with ArchiveReader(io.BytesIO(blob)) as r:
                report = extract_archive(r, tmp)
                self.assertEqual((Path(tmp) / "a.txt").read_bytes(), r.read_file("a.txt"))
                self.assertEqual((Path(tmp) / "dir" / "b.txt").read_bytes(), r.read_file("dir\\b.txt"))
            self.assertEqual(report.extracted, ["a.txt", "dir/b.txt"])
            self.assertEqual(report.failures, [])
            self.assertEqual(report.bytes_written, 10)
            self.assertTrue(report.ok)

    def test_filter_skips_non_matching(self):
        fake = FakeArchive({"a.txt": b"1", "b.bin": b"2", "d\\c.txt": b"3"})
        with tempfile.TemporaryDirectory() as tmp:
            report = extract_archive(fake, tmp, compile_pattern("*.txt"))
            self.assertEqual(report.extracted, ["a.txt"])
            self.assertEqual(report.skipped, 2)
            self.assertFalse((Path(tmp) / "b.bin").exists())

    def test_one_bad_entry_does_not_abort(self):
        entries = {f"f{i}.dat": bytes([i]) * 10 for i in range(5)}
        fake = FakeArchive(entries, broken={"f2.dat"})
        with tempfile.TemporaryDirectory() as tmp:
            report = extract_archive(fake, tmp)
            self.assertEqual(len(report.extracted), 4)
            self.assertEqual(len(report.failures), 1)
            self.assertEqual(report.failures[0].name, "f2.dat")
            self.assertIsInstance(report.failures[0].cause, EntryReadError)
            self.assertFalse((Path(tmp) / "f2.dat").exists())
            for i in (0, 1, 3, 4):
                self.assertEqual((Path(tmp) / f"f{i}.dat").read_bytes(), bytes([i]) * 10)

    def test_listed_but_missing_entry_is_recorded(self):
        fake = FakeArchive({"a.txt": b"1"}, listing=["a.txt", "ghost.txt"])
        with tempfile.TemporaryDirectory() as tmp:
            report = extract_archive(fake, tmp)
            self.assertEqual(report.extracted, ["a.txt"])
            self.assertIsInstance(report.failures[0].cause, EntryNotFoundError)

    def test_escaping_entry_is_recorded(self):
        fake = FakeArchive({"..\\evil.txt": b"x", "good.txt": b"y"})
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp) / "out"
            report = extract_archive(fake, out)
            self.assertEqual(report.extracted, ["good.txt"])
            self.assertIsInstance(report.failures[0].cause, PathEscapeError)
            self.assertFalse((Path(tmp) / "evil.txt").exists())

    def test_dir_creation_failure_is_per_entry(self):
        fake = FakeArchive({"block": b"file", "block\\inner.txt": b"x", "other.txt": b"y"})
        with tempfile.TemporaryDirectory() as tmp:
            report = extract_archive(fake, tmp)
            self.assertEqual(report.extracted, ["block", "other.txt"])
            self.assertEqual(len(report.failures), 1)
            self.assertIsInstance(report.failures[0].cause, DirCreationError)

    def test_missing_listfile_is_fatal(self):
        blob = _archive_bytes({"a.txt": b"x"}, add_listfile=False)
        with tempfile.TemporaryDirectory() as tmp:
            with ArchiveReader(io.BytesIO(blob)) as r:
                with self.assertRaises(ListfileNotFoundError):
                    extract_archive(r, tmp)
            self.assertEqual(os.listdir(tmp), [])

    def test_progress_callback(self):
        seen = []
        fake = FakeArchive({"a.txt": b"12", "b\\c.txt": b"345"})
        with tempfile.TemporaryDirectory() as tmp:
            extract_archive(fake, tmp, progress=lambda name, size: seen.append((name, size)))
        self.assertEqual(seen, [("a.txt", 2), ("b/c.txt", 3)])


class ListerViewerTests(unittest.TestCase):
    def test_list_with_filter(self):
        fake = FakeArchive({"a.txt": b"", "b.bin": b""})
        self.assertEqual(list(list_entries(fake, compile_pattern("*.txt"))), ["a.txt"])

    def test_list_keeps_listing_order_and_normalizes(self):
        fake = FakeArchive({"z.txt": b"", "dir\\a.txt": b"", "m.txt": b""})
        self.assertEqual(list(list_entries(fake)), ["z.txt", "dir/a.txt", "m.txt"])

    def test_list_is_single_pass(self):
        it = list_entries(FakeArchive({"a": b"", "b": b""}))
        self.assertEqual(list(it), ["a", "b"])
        self.assertEqual(list(it), [])

    def test_list_without_listing_fails_immediately(self):
        with self.assertRaises(ListfileNotFoundError):
            list_entries(_NoListing())

    def test_view(self):
        blob = _archive_bytes({"dir\\file.txt": b"contents"})
        with ArchiveReader(io.BytesIO(blob)) as r:
            self.assertEqual(view_entry(r, "dir\\file.txt"), b"contents")
            self.assertEqual(view_entry(r, "dir/file.txt"), b"contents")
            with self.assertRaises(EntryNotFoundError):
                view_entry(r, "nope.txt")


class _NoListing(FakeArchive):
    def __init__(self):
        super().__init__({})

    def list_files(self):
        return None


class PackerTests(unittest.TestCase):
    def _tree(self, root: Path):
        (root / "sub").mkdir()
        (root / "x").write_bytes(b"x contents")
        (root / "sub" / "y").write_bytes(os.urandom(9000))

    def test_pack_then_extract_roundtrip(self):
        with tempfile.TemporaryDirectory() as src, tempfile.TemporaryDirectory() as out:
            src_root = Path(src)
            self._tree(src_root)
            buf = io.BytesIO()
            report = pack_directory(src_root, buf)
            self.assertEqual(report.added, ["x", "sub\\y"])
            self.assertEqual(report.warnings, [])
            self.assertEqual(report.archive_size, len(buf.getvalue()))
            with ArchiveReader(io.BytesIO(buf.getvalue())) as r:
                ext = extract_archive(r, out)
            self.assertEqual(ext.failures, [])
            self.assertEqual((Path(out) / "x").read_bytes(), (src_root / "x").read_bytes())
            self.assertEqual((Path(out) / "sub" / "y").read_bytes(), (src_root / "sub" / "y").read_bytes())

    def test_options_are_passed_through(self):
        with tempfile.TemporaryDirectory() as src:
            self._tree(Path(src))
            for options in (
                FileOptions(compress=False),
                FileOptions(encrypt=True),
                FileOptions(encrypt=True, adjust_key=True),
            ):
                buf = io.BytesIO()
                pack_directory(src, buf, options)
                with ArchiveReader(io.BytesIO(buf.getvalue())) as r:
                    self.assertEqual(r.read_file("sub\\y"), (Path(src) / "sub" / "y").read_bytes())

    def test_relative_and_absolute_roots_give_same_names(self):
        with tempfile.TemporaryDirectory() as src:
            self._tree(Path(src))
            cwd = os.getcwd()
            try:
                os.chdir(src)
                rel = pack_directory(".", io.BytesIO()).added
            finally:
                os.chdir(cwd)
            absolute = pack_directory(os.path.abspath(src), io.BytesIO()).added
            self.assertEqual(rel, absolute)

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks not supported")
    def test_symlinks_followed_and_problems_reported(self):
        with tempfile.TemporaryDirectory() as src, tempfile.TemporaryDirectory() as other:
            src_root = Path(src)
            self._tree(src_root)
            (Path(other) / "linked.txt").write_bytes(b"via link")
            try:
                os.symlink(other, src_root / "outside")
                os.symlink(src_root / "sub", src_root / "sub" / "loop")
                os.symlink(src_root / "missing-target", src_root / "dangling")
            except (OSError, NotImplementedError):
                self.skipTest("cannot create symlinks")
            report = pack_directory(src_root, io.BytesIO())
            self.assertIn("outside\\linked.txt", report.added)
            self.assertNotIn("dangling", report.added)
            warned = {w.name for w in report.warnings}
            self.assertIn("dangling", warned)
            self.assertIn(os.path.join("sub", "loop"), warned)

    def test_missing_input_is_fatal(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(FileOpenError):
                pack_directory(Path(tmp) / "nope", io.BytesIO())

    def test_sink_failure_is_fatal(self):
        class BrokenSink(io.RawIOBase):
            def writable(self):
                return True

            def write(self, b):
                raise OSError(28, "No space left on device")

        with tempfile.TemporaryDirectory() as src:
            self._tree(Path(src))
            with self.assertRaises(ArchiveWriteError):
                pack_directory(src, BrokenSink())

    def test_pack_to_file_is_atomic(self):
        with tempfile.TemporaryDirectory() as src, tempfile.TemporaryDirectory() as dst:
            self._tree(Path(src))
            target = Path(dst) / "out.mpq"
            report = pack_to_file(src, target)
            self.assertEqual(target.stat().st_size, report.archive_size)
            self.assertEqual(sorted(os.listdir(dst)), ["out.mpq"])
            with ArchiveReader(str(target)) as r:
                self.assertEqual(r.read_file("x"), b"x contents")

    def test_pack_to_file_into_input_dir_skips_temp_file(self):
        with tempfile.TemporaryDirectory() as src:
            self._tree(Path(src))
            target = Path(src) / "self.mpq"
            first = pack_to_file(src, target)
            self.assertEqual(first.added, ["x", "sub\\y"])
            second = pack_to_file(src, target)
            self.assertEqual(second.added, ["x", "sub\\y"])
            self.assertEqual(second.archive_size, first.archive_size)
            with ArchiveReader(str(target)) as r:
                self.assertEqual(r.list_files(), ["x", "sub\\y"])

    def test_case_colliding_names_keep_first_and_warn(self):
        with tempfile.TemporaryDirectory() as src:
            root = Path(src)
            (root / "A.txt").write_bytes(b"upper")
            (root / "a.txt").write_bytes(b"lower")
            if len(os.listdir(src)) != 2:
                self.skipTest("case-insensitive filesystem")
            buf = io.BytesIO()
            report = pack_directory(root, buf)
            self.assertEqual(report.added, ["A.txt"])
            self.assertEqual(len(report.warnings), 1)
            self.assertEqual(report.warnings[0].name, "a.txt")
            self.assertIn("collides with A.txt", str(report.warnings[0].cause))
            with ArchiveReader(io.BytesIO(buf.getvalue())) as r:
                self.assertEqual(r.list_files(), ["A.txt"])
                self.assertEqual(r.read_file("a.txt"), b"upper")

    def test_file_named_like_listfile_is_not_packed(self):
        with tempfile.TemporaryDirectory() as src:
            self._tree(Path(src))
            (Path(src) / "(listfile)").write_bytes(b"bogus")
            buf = io.BytesIO()
            report = pack_directory(src, buf)
            self.assertEqual(report.added, ["x", "sub\\y"])
            self.assertEqual([w.name for w in report.warnings], ["(listfile)"])
            with ArchiveReader(io.BytesIO(buf.getvalue())) as r:
                self.assertEqual(r.list_files(), ["x", "sub\\y"])

    def test_unreadable_file_is_a_warning(self):
        real_read_bytes = Path.read_bytes

        def failing_read_bytes(path):
            if path.name == "x":
                raise OSError(errno.EIO, "Input/output error", str(path))
            return real_read_bytes(path)

        with tempfile.TemporaryDirectory() as src:
            self._tree(Path(src))
            with mock.patch.object(Path, "read_bytes", failing_read_bytes):
                report = pack_directory(src, io.BytesIO())
            self.assertEqual(report.added, ["sub\\y"])
            self.assertEqual(len(report.warnings), 1)
            self.assertEqual(report.warnings[0].name, "x")
            self.assertEqual(report.warnings[0].cause.errno, errno.EIO)

    def test_unreadable_directory_is_a_warning(self):
        real_scandir = os.scandir

        with tempfile.TemporaryDirectory() as src:
            root = Path(src)
            self._tree(root)
            (root / "locked").mkdir()
            (root / "locked" / "hidden.txt").write_bytes(b"h")
            locked = os.path.join(os.path.abspath(src), "locked")

            def failing_scandir(path="."):
                if os.fspath(path) == locked:
                    raise PermissionError(errno.EACCES, "Permission denied", locked)
                return real_scandir(path)

            with mock.patch("os.scandir", failing_scandir):
                report = pack_directory(src, io.BytesIO())
            self.assertEqual(report.added, ["x", "sub\\y"])
            self.assertEqual(len(report.warnings), 1)
            self.assertEqual(report.warnings[0].name, "locked")
            self.assertIsInstance(report.warnings[0].cause, PermissionError)

    def test_pack_to_file_failure_leaves_nothing(self):
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "out.mpq"
            with self.assertRaises(FileOpenError):
                pack_to_file(Path(tmp) / "missing-input", target)
            self.assertEqual(os.listdir(tmp), [])
            with self.assertRaises(ArchiveWriteError):
                pack_to_file(tmp, Path(tmp) / "no-such-dir" / "out.mpq")


if __name__ == "__main__":
    unittest.main()
