import os
import unittest
from pathlib import Path

from click.testing import CliRunner

from spangrep.cli import main


class TestCli(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()

    def invoke(self, *args, **kwargs):
        return self.runner.invoke(main, ["--color", "never", *args], **kwargs)

    def test_inline_text(self):
        result = self.invoke("ab+", "xabby", "zzz")
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.stdout, "1. xabby zzz\n")

    def test_stdin(self):
        result = self.invoke("--no-trim", "ab+", input="xabby\nzzz\nabbb\n")
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.stdout, "1. xabby\n3. abbb\n")

    def test_no_match_prints_nothing(self):
        result = self.invoke("needle", input="hay\nhay\n")
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.stdout, "")

    def test_missing_pattern_is_a_usage_error(self):
        result = self.runner.invoke(main, [])
        self.assertNotEqual(result.exit_code, 0)

    def test_unknown_option_is_a_usage_error(self):
        result = self.runner.invoke(main, ["--invalid", "test"])
        self.assertNotEqual(result.exit_code, 0)

    def test_invalid_pattern(self):
        result = self.invoke("[invalid", "text")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("invalid pattern", result.output)

    def test_directory_and_output_file(self):
        with self.runner.isolated_filesystem():
            Path("tree").mkdir()
            Path("tree/one.txt").write_text("first line\n\tsecond match\n")
            Path("tree/two.txt").write_text("no hits\n")
            result = self.invoke("-f", "tree", "-o", "out.txt", "--sort", "match")
            self.assertEqual(result.exit_code, 0)
            expected = f"{os.path.join('tree', 'one.txt')}: \n2. second match\n"
            self.assertEqual(result.stdout, expected)
            self.assertEqual(Path("out.txt").read_text(), expected)

    def test_existing_output_file_is_refused(self):
        with self.runner.isolated_filesystem():
            Path("out.txt").write_text("old")
            result = self.invoke("-o", "out.txt", "x", "x")
            self.assertEqual(result.exit_code, 1)
            self.assertIn("already exists", result.output)
            self.assertEqual(Path("out.txt").read_text(), "old")

    def test_missing_input_file(self):
        with self.runner.isolated_filesystem():
            result = self.invoke("-f", "absent.txt", "x")
            self.assertEqual(result.exit_code, 1)
            self.assertIn("can't open", result.output)


if __name__ == "__main__":
    unittest.main()
