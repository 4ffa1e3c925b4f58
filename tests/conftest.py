"""
Pytest configuration for the repowiki test suite.

Provides a small on-disk repository and indexing configs that keep the
cache outside of it.
"""

from pathlib import Path

import pytest

from repowiki.config import ChunkerConfig, IndexingConfig


AUTH_SERVICE = '''\
"""Authentication service."""

import hashlib
import hmac
import os


class AuthService:
    """Handles login and password hashing for user accounts."""

    def __init__(self, users):
        self.users = users

    def hash_password(self, password, salt=None):
        salt = salt or os.urandom(16)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)
        return salt.hex() + ":" + digest.hex()

    def login(self, username, password):
        stored = self.users.get(username)
        if stored is None:
            return False
        salt_hex, _ = stored.split(":", 1)
        candidate = self.hash_password(password, bytes.fromhex(salt_hex))
        return hmac.compare_digest(candidate, stored)


def issue_session_token(username):
    """Create an opaque session token for a logged in user."""
    return hashlib.sha256((username + os.urandom(8).hex()).encode("utf-8")).hexdigest()
'''

REPORT_UTILS = '''\
def format_currency(amount, currency="EUR"):
    """Render an amount with two decimals and its currency code."""
    return f"{amount:,.2f} {currency}"


def format_percentage(value, digits=1):
    """Render a ratio between 0 and 1 as a percentage string."""
    return f"{value * 100:.{digits}f}%"
'''

AUTH_TEST = '''\
from src.auth.service import AuthService


def test_login_rejects_unknown_password():
    service = AuthService({"alice": "00:11"})
    assert not service.login("alice", "password")
    assert not service.login("bob", "password")
'''

README = '''\
# Demo Repository

A tiny repository used to exercise indexing and search end to end.

## Usage

Call AuthService.login with a username and a password to check credentials.
'''


def write_files(root: Path, files: dict) -> Path:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def sample_repo(tmp_path):
    """A repository with source, tests, docs, config and excluded folders."""
    return write_files(tmp_path / "repo", {
        "src/auth/service.py": AUTH_SERVICE,
        "src/reports/utils.py": REPORT_UTILS,
        "tests/test_auth.py": AUTH_TEST,
        "README.md": README,
        "config/settings.json": '{\n  "session_ttl": 3600,\n  "hash_rounds": 100000\n}\n',
        "node_modules/left-pad/index.js": "module.exports = function leftPad() {};\n",
        "dist/bundle.js": "function bundled() { return 1; }\n",
        "static/app.min.js": "function minified(){return 1}\n",
        "docs/diagram.png": "not really a png\n",
    })


@pytest.fixture
def keyword_config(tmp_path):
    """Indexing config forced onto the keyword fallback backend."""
    return IndexingConfig(cache_dir=str(tmp_path / "cache"), index_backend="keyword")


@pytest.fixture
def small_chunker_config():
    """Chunker config with a low minimum so short test snippets survive."""
    return ChunkerConfig(max_chunk_size=3000, min_chunk_size=20)
