"""Tests for two-tier executable version extraction."""

import sys
import tempfile
import unittest
from pathlib import Path

from ahkdesk.runtime.version_probe import UNKNOWN_VERSION, VersionProbe, parse_version, require_major


class VersionProbeTests(unittest.TestCase):
    """Validate version parsing, validation and fallback order."""

    def test_parse_version_extracts_first_semver(self) -> None:
        self.assertEqual(parse_version("AutoHotkey v2.0.18 (64-bit)"), "2.0.18")
        self.assertEqual(parse_version("2.1-alpha.14"), "2.1-alpha.14")
        self.assertIsNone(parse_version("no digits here"))

    def test_require_major(self) -> None:
        validate = require_major(2)
        self.assertTrue(validate("2.0.18"))
        self.assertFalse(validate("1.1.37.02"))
        self.assertFalse(validate(UNKNOWN_VERSION))

    def test_reads_version_from_invocation(self) -> None:
        version = VersionProbe(args=("--version",)).read(Path(sys.executable))
        self.assertTrue(version.startswith(f"{sys.version_info.major}.{sys.version_info.minor}"))

    def test_falls_back_to_file_version(self) -> None:
        calls: list[Path] = []

        def _reader(path: Path) -> str:
            calls.append(path)
            return "2.0.11"

        with tempfile.TemporaryDirectory() as tmpdir:
            missing = Path(tmpdir) / "AutoHotkey64.exe"
            version = VersionProbe(file_version_reader=_reader).read(missing)
        self.assertEqual(version, "2.0.11")
        self.assertEqual(calls, [missing])

    def test_unknown_when_both_tiers_fail(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            missing = Path(tmpdir) / "AutoHotkey64.exe"
            version = VersionProbe(file_version_reader=lambda _path: None).read(missing)
        self.assertEqual(version, UNKNOWN_VERSION)


if __name__ == "__main__":
    unittest.main()
