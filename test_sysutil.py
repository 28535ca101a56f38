from __future__ import annotations

import plistlib
import tempfile
import unittest
from pathlib import Path

from dotstash.sysutil import format_size, os_version


class OSVersionTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_plist_product_version(self):
        def scenario(root: Path):
            plist = root / "SystemVersion.plist"
            with open(plist, "wb") as fh:
                plistlib.dump({"ProductName": "macOS", "ProductVersion": "14.2.1"}, fh)
            self.assertEqual(os_version(str(plist), str(root / "missing")), "macOS 14.2.1")

            with open(plist, "wb") as fh:
                plistlib.dump({"ProductVersion": "13.6"}, fh, fmt=plistlib.FMT_BINARY)
            self.assertEqual(os_version(str(plist), str(root / "missing")), "macOS 13.6")

        self.run_with_tmpdir(scenario)

    def test_os_release_fallback(self):
        def scenario(root: Path):
            release = root / "os-release"
            release.write_text('NAME="Debian GNU/Linux"\nPRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\n')
            self.assertEqual(os_version(str(root / "missing.plist"), str(release)), "Debian GNU/Linux 12 (bookworm)")

            broken = root / "broken.plist"
            broken.write_bytes(b"not a property list")
            self.assertEqual(os_version(str(broken), str(release)), "Debian GNU/Linux 12 (bookworm)")

            truncated = root / "truncated.plist"
            truncated.write_bytes(b'<?xml version="1.0" encoding="UTF-8"?>\n<plist version="1.0"><dict><key>')
            self.assertEqual(os_version(str(truncated), str(release)), "Debian GNU/Linux 12 (bookworm)")

        self.run_with_tmpdir(scenario)

    def test_unknown(self):
        def scenario(root: Path):
            self.assertEqual(os_version(str(root / "a"), str(root / "b")), "")

        self.run_with_tmpdir(scenario)


class FormatSizeTests(unittest.TestCase):
    def test_units(self):
        self.assertEqual(format_size(512), "512 bytes")
        self.assertEqual(format_size(1536), "1.50 KB")
        self.assertEqual(format_size(5 * 1024 * 1024), "5.00 MB")
        self.assertEqual(format_size(3 * 1024 ** 3), "3.00 GB")


if __name__ == "__main__":
    unittest.main()
