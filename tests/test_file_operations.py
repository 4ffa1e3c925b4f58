"""
Unit tests for sandboxed repository reads.
"""

import os

import pytest

from repowiki.file_operations import AccessDeniedError, SandboxedFileReader


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "repo"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_bytes(b"print('hi')\r\nprint('bye')\r\n")
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / "node_modules" / "pkg" / "index.js").write_text("module.exports = {};\n")
    (tmp_path / "outside.txt").write_text("secret\n")
    return root


class TestSandboxedFileReader:
    """Test path confinement and reads."""

    def test_read_text_preserves_line_endings(self, repo):
        reader = SandboxedFileReader(repo)
        assert reader.read_text("src/app.py") == "print('hi')\r\nprint('bye')\r\n"

    def test_relative_path(self, repo):
        reader = SandboxedFileReader(repo)
        assert reader.relative_path(repo / "src" / "app.py") == "src/app.py"
        assert reader.relative_path("src/../src/app.py") == "src/app.py"

    def test_parent_traversal_is_denied(self, repo):
        reader = SandboxedFileReader(repo)
        with pytest.raises(AccessDeniedError):
            reader.read_text("../outside.txt")

    def test_absolute_path_outside_is_denied(self, repo, tmp_path):
        reader = SandboxedFileReader(repo)
        with pytest.raises(AccessDeniedError):
            reader.resolve(tmp_path / "outside.txt")

    def test_symlink_escape_is_denied(self, repo, tmp_path):
        link = repo / "src" / "escape.txt"
        try:
            os.symlink(tmp_path / "outside.txt", link)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported")

        with pytest.raises(AccessDeniedError):
            SandboxedFileReader(repo).read_text("src/escape.txt")

    def test_access_denied_is_a_permission_error(self):
        assert issubclass(AccessDeniedError, PermissionError)

    def test_exists_and_size(self, repo):
        reader = SandboxedFileReader(repo)
        assert reader.exists("src/app.py")
        assert not reader.exists("src/missing.py")
        assert reader.file_size("src/app.py") == len(b"print('hi')\r\nprint('bye')\r\n")

    def test_find_files_skips_dependency_folders(self, repo):
        reader = SandboxedFileReader(repo)
        found = [p.relative_to(reader.base_dir).as_posix() for p in reader.find_files("**/*.*")]
        assert found == ["src/app.py"]

    def test_find_files_rejects_traversal_patterns(self, repo):
        with pytest.raises(AccessDeniedError):
            SandboxedFileReader(repo).find_files("../*")
