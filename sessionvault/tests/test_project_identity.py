import unittest

from sessionvault.project_identity import (
    canonical_project_id,
    decode_project_path,
    group_project_ids,
    looks_like_session_id,
    project_display_name,
)


class ProjectIdentityTests(unittest.TestCase):
    def test_wsl_and_native_spellings_share_one_id(self) -> None:
        self.assertEqual(canonical_project_id("-mnt-e-foo"), "E--foo")
        self.assertEqual(canonical_project_id("e--foo"), "E--foo")
        self.assertEqual(canonical_project_id("E--foo"), "E--foo")
        self.assertEqual(canonical_project_id("-mnt-c"), "C--")

    def test_other_ids_pass_through(self) -> None:
        self.assertEqual(canonical_project_id("-home-me-app"), "-home-me-app")
        self.assertEqual(canonical_project_id("-mnt-data-app"), "-mnt-data-app")

    def test_grouping_keeps_first_seen_order(self) -> None:
        groups = group_project_ids(["-home-me-x", "-mnt-e-foo", "E--foo"])
        self.assertEqual(list(groups), ["-home-me-x", "E--foo"])
        self.assertEqual(groups["E--foo"], ["-mnt-e-foo", "E--foo"])

    def test_display_helpers(self) -> None:
        self.assertEqual(decode_project_path("-home-me-app"), "/home/me/app")
        self.assertEqual(decode_project_path("E--work-app"), "E:\\work\\app")
        self.assertEqual(project_display_name("-home-me-app"), "app")

    def test_session_id_shape(self) -> None:
        self.assertTrue(looks_like_session_id("0b6b2c1e-8f0a-4c51-9d53-0a1f1e2d3c4b"))
        self.assertFalse(looks_like_session_id("subagents"))


if __name__ == "__main__":
    unittest.main()
