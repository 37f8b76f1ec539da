import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

from core import paths as core_paths


class CorePathsTests(unittest.TestCase):
    def test_working_dir_honours_env_override(self) -> None:
        with TemporaryDirectory() as tmp:
            target = Path(tmp) / "vault"
            with mock.patch.dict(os.environ, {"PATIENTVAULT_HOME": str(target)}):
                resolved = core_paths.resolve_working_dir()
            self.assertEqual(resolved, target.resolve())
            self.assertTrue(resolved.is_dir())

    def test_working_dir_falls_back_to_app_data(self) -> None:
        with TemporaryDirectory() as tmp:
            env = {"APPDATA": tmp, "PATIENTVAULT_HOME": ""}
            with mock.patch.dict(os.environ, env):
                resolved = core_paths.resolve_working_dir()
            self.assertEqual(resolved, Path(tmp).resolve() / core_paths.APP_DIR_NAME)

    def test_state_files_live_in_working_dir(self) -> None:
        base = Path("/data/vault")
        self.assertEqual(core_paths.get_registry_path(base), base / "storage_roots.json")
        self.assertEqual(core_paths.get_dictionaries_path(base), base / "dictionaries.json")
        self.assertEqual(core_paths.get_session_path(base), base / "session.json")
        self.assertEqual(core_paths.get_default_root_path(base), base / "patients")

    def test_safe_label(self) -> None:
        self.assertEqual(core_paths.safe_label("  my rec:01 "), "my_rec_01")
        self.assertEqual(core_paths.safe_label("take.webm"), "take.webm")
        self.assertEqual(core_paths.safe_label("///"), "recording")


if __name__ == "__main__":
    unittest.main()
