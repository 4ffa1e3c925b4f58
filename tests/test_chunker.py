"""
Unit tests for CodeChunker and its language front ends.
"""

import logging
import threading

import pytest

from repowiki.config import ChunkerConfig
from repowiki.file_operations import AccessDeniedError
from repowiki.indexing import CodeChunker, ChunkType
from repowiki.indexing import typescript_parser
from repowiki.indexing.pattern_parser import extract_pattern_chunks
from repowiki.indexing.source import SourceFile


PASSWORDS_PY = '''\
"""Password helpers."""

import hashlib
import os


def hash_password(password, salt=None):
    """Hash a password with a random salt."""
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)
    return salt.hex() + ":" + digest.hex()


def verify_password(password, stored):
    """Check a password against a stored salt:digest pair."""
    salt_hex, _ = stored.split(":", 1)
    return hash_password(password, bytes.fromhex(salt_hex)) == stored
'''

USER_SERVICE_PY = '''\
class UserService:
    """Creates, updates and removes user accounts in the backing store."""

    def __init__(self, store):
        self.store = store
        self.created = 0

    def create(self, name, email):
        self.created += 1
        return self.store.insert({"name": name, "email": email})

    def rename(self, user_id, name):
        return self.store.update(user_id, {"name": name})

    def remove(self, user_id):
        return self.store.delete(user_id)
'''

BROKEN_PY = '''\
class Account:
    def deposit(self, amount):
        self.balance += amount
        return self.balance

def withdraw(account, amount)
    account.balance -= amount
    return account.balance
'''

USER_CONTROLLER_JAVA = '''\
@RestController
public class UserController {
    public String getUser(String id) {
        return userRepository.findById(id).map(User::getName).orElse("unknown user");
    }
}
'''

USERS_API_TS = '''\
import { Controller, Get, Param } from '@nestjs/common';
import { UsersService } from './users.service';

@Controller('users')
export class UsersApi {
  constructor(private readonly users: UsersService) {}

  @Get()
  findAll() {
    return this.users.findAll();
  }

  @Get(':id')
  findOne(@Param('id') id: string) {
    return this.users.findOne(id);
  }
}
'''

AUTH_MIDDLEWARE_TS = '''\
import { Request, Response, NextFunction } from 'express';
import jwt from 'jsonwebtoken';

/** Verifies the bearer token on every request. */
export function authMiddleware(req: Request, res: Response, next: NextFunction) {
  const header = req.headers.authorization || '';
  req.user = jwt.verify(header.replace('Bearer ', ''), process.env.JWT_SECRET);
  next();
}

export const useSession = () => {
  const token = localStorage.getItem('session');
  return token ? jwt.decode(token) : null;
};
'''

GUIDE_MD = '''\
# Guide

This guide explains how the indexer splits documents into sections.

## Install

```bash
# not a heading
pip install repowiki
```

## Usage

Run the index command and then search with a natural language query.
'''

PAYLOAD_RB = '''\
require 'json'

def parse_payload(raw)
  JSON.parse(raw)
end

def render_payload(data)
  JSON.generate(data)
end
'''


def assert_exact_slices(chunks, content):
    lines = content.split("\n")
    for chunk in chunks:
        assert chunk.content == "\n".join(lines[chunk.start_line - 1:chunk.end_line])
        assert chunk.id == f"{chunk.file_path}:{chunk.start_line}-{chunk.end_line}"


class TestPythonChunking:
    """Test the syntax tree front end."""

    @pytest.fixture
    def chunker(self, small_chunker_config):
        return CodeChunker(small_chunker_config)

    def test_top_level_functions_and_imports(self, chunker):
        chunks = chunker.chunk_source("auth/passwords.py", PASSWORDS_PY)

        assert [c.name for c in chunks] == ["imports", "hash_password", "verify_password"]
        assert [c.chunk_type for c in chunks] == [ChunkType.IMPORT_BLOCK, ChunkType.FUNCTION, ChunkType.FUNCTION]
        assert chunks[0].imports == ["hashlib", "os"]
        assert chunks[1].documentation == "Hash a password with a random salt."
        assert chunks[1].signature == "def hash_password(password, salt=None)"
        assert chunks[1].is_public_api is True
        assert_exact_slices(chunks, PASSWORDS_PY)

    def test_chunks_are_ordered_and_carry_domain_hints(self, chunker):
        chunks = chunker.chunk_source("auth/passwords.py", PASSWORDS_PY)

        assert [c.start_line for c in chunks] == sorted(c.start_line for c in chunks)
        hashing = chunks[1]
        assert hashing.domain_hints
        assert hashing.domain_hints[0].category == "authentication"

    def test_oversized_service_is_split_into_members(self):
        chunker = CodeChunker(ChunkerConfig(max_chunk_size=400, min_chunk_size=20))
        chunks = chunker.chunk_source("users.py", USER_SERVICE_PY)

        assert chunks[0].name == "UserService"
        assert chunks[0].chunk_type == ChunkType.SERVICE
        members = chunks[1:]
        assert [c.name for c in members] == ["__init__", "create", "rename", "remove"]
        assert members[0].chunk_type == ChunkType.CONSTRUCTOR
        assert all(c.parent_name == "UserService" for c in members)
        assert members[1].context_path == "users > UserService > create"
        assert_exact_slices(chunks, USER_SERVICE_PY)

    def test_small_service_stays_whole(self):
        chunker = CodeChunker(ChunkerConfig(max_chunk_size=3000, min_chunk_size=20))
        source = USER_SERVICE_PY + "\n\nMAX_USERS = 10_000_000_000_000_000_000\n"
        chunks = chunker.chunk_source("users.py", source)

        assert chunks[0].name == "UserService"
        assert chunks[0].start_line == 1
        assert chunks[0].end_line == 16
        assert chunks[0].exports == ["__init__", "create", "rename", "remove"]

    def test_syntax_error_falls_back_to_indentation(self, chunker):
        chunks = chunker.chunk_source("accounts.py", BROKEN_PY)

        assert [c.name for c in chunks] == ["Account", "withdraw"]
        assert chunks[0].chunk_type == ChunkType.CLASS
        assert (chunks[0].start_line, chunks[0].end_line) == (1, 4)
        assert chunks[1].chunk_type == ChunkType.FUNCTION
        assert (chunks[1].start_line, chunks[1].end_line) == (6, 8)
        assert_exact_slices(chunks, BROKEN_PY)


class TestTypeScriptChunking:
    """Test the tree-sitter front end."""

    def test_middleware_hook_and_imports(self, small_chunker_config):
        chunks = CodeChunker(small_chunker_config).chunk_source("src/auth.ts", AUTH_MIDDLEWARE_TS)
        by_name = {c.name: c for c in chunks}

        assert by_name["imports"].chunk_type == ChunkType.IMPORT_BLOCK
        assert by_name["imports"].imports == ["express", "jsonwebtoken"]

        middleware = by_name["authMiddleware"]
        assert middleware.chunk_type == ChunkType.MIDDLEWARE
        assert middleware.start_line == 4
        assert middleware.documentation == "Verifies the bearer token on every request."
        assert middleware.exports == ["authMiddleware"]
        assert middleware.is_public_api is True

        assert by_name["useSession"].chunk_type == ChunkType.HOOK
        assert_exact_slices(chunks, AUTH_MIDDLEWARE_TS)

    def test_small_exported_function_collapses_to_file_chunk(self):
        content = "export function add(a: number, b: number): number {\n  return a + b;\n}\n\nexport default add;\n"
        chunks = CodeChunker().chunk_source("src/math.ts", content)

        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.chunk_type == ChunkType.FILE
        assert chunk.start_line == 1
        assert chunk.content == content
        assert chunk.name == "math"


    def test_decorated_controller_keeps_its_type(self):
        chunks = CodeChunker().chunk_source("src/users/users.api.ts", USERS_API_TS)

        assert [(c.name, c.chunk_type) for c in chunks] == [
            ("imports", ChunkType.IMPORT_BLOCK),
            ("UsersApi", ChunkType.CONTROLLER),
        ]
        assert chunks[0].imports == ["@nestjs/common", "./users.service"]
        assert chunks[1].start_line == 4
        assert chunks[1].decorators == ["@Controller('users')"]
        assert_exact_slices(chunks, USERS_API_TS)

    def test_missing_grammar_falls_back_to_whole_file(self, monkeypatch, caplog):
        def unavailable(name):
            raise LookupError(f"no grammar for {name}")

        monkeypatch.setattr(typescript_parser, "_local", threading.local())
        monkeypatch.setattr(typescript_parser, "get_language", unavailable)

        with caplog.at_level(logging.WARNING):
            chunks = CodeChunker().chunk_source("src/auth.ts", AUTH_MIDDLEWARE_TS)

        assert len(chunks) == 1
        assert chunks[0].chunk_type == ChunkType.FILE
        assert chunks[0].content == AUTH_MIDDLEWARE_TS
        assert "tree-sitter grammar unavailable | language: typescript" in caplog.text


class TestPatternChunking:
    """Test brace tracking for languages without a syntax tree front end."""

    def test_controller_file_with_imports_keeps_its_type(self):
        content = "import org.springframework.web.bind.annotation.RestController;\n\n" + USER_CONTROLLER_JAVA
        chunks = CodeChunker().chunk_source("src/main/java/UserController.java", content)

        assert len(chunks) == 1
        assert chunks[0].name == "UserController"
        assert chunks[0].chunk_type == ChunkType.CONTROLLER
        assert (chunks[0].start_line, chunks[0].end_line) == (3, 8)

    def test_php_single_quoted_braces_are_ignored(self):
        content = (
            "<?php\n"
            "class Router {\n"
            "    public function pattern() {\n"
            "        return 'open {';\n"
            "    }\n"
            "}\n"
            "\n"
            "function boot() {\n"
            "    return new Router();\n"
            "}\n"
        )
        chunks = extract_pattern_chunks(SourceFile("Router.php", content), ChunkerConfig())

        assert [c.name for c in chunks] == ["Router", "boot"]
        assert (chunks[0].start_line, chunks[0].end_line) == (2, 6)
        assert (chunks[1].start_line, chunks[1].end_line) == (8, 10)

    def test_annotated_controller(self):
        source = SourceFile("UserController.java", USER_CONTROLLER_JAVA)
        chunks = extract_pattern_chunks(source, ChunkerConfig())

        assert len(chunks) == 1
        controller = chunks[0]
        assert controller.name == "UserController"
        assert controller.chunk_type == ChunkType.CONTROLLER
        assert controller.is_public_api is True
        assert controller.decorators == ["@RestController"]
        assert (controller.start_line, controller.end_line) == (1, 6)

    def test_go_receivers_become_methods(self):
        content = (
            "package store\n"
            "\n"
            "type Cache struct {\n"
            "\titems map[string]string\n"
            "}\n"
            "\n"
            "func (c *Cache) Get(key string) string {\n"
            "\treturn c.items[key]\n"
            "}\n"
        )
        chunks = extract_pattern_chunks(SourceFile("store/cache.go", content), ChunkerConfig())

        assert [c.name for c in chunks] == ["Cache", "Get"]
        assert chunks[0].chunk_type == ChunkType.MODEL
        assert chunks[1].chunk_type == ChunkType.METHOD
        assert chunks[1].parent_name == "Cache"
        assert (chunks[1].start_line, chunks[1].end_line) == (7, 9)

    def test_braces_inside_strings_are_ignored(self):
        content = (
            "public class Greeter {\n"
            "    public String greet(String name) {\n"
            "        return \"}}} hello \" + name;\n"
            "    }\n"
            "}\n"
        )
        chunks = extract_pattern_chunks(SourceFile("Greeter.java", content), ChunkerConfig())

        assert chunks[0].name == "Greeter"
        assert chunks[0].end_line == 5


class TestOtherFormats:
    """Test markdown, config and the generic fallback."""

    def test_markdown_sections_skip_fenced_code(self, small_chunker_config):
        chunks = CodeChunker(small_chunker_config).chunk_source("docs/guide.md", GUIDE_MD)

        assert [c.name for c in chunks] == ["Guide", "Install", "Usage"]
        assert all(c.chunk_type == ChunkType.UNKNOWN for c in chunks)
        assert chunks[1].start_line == 5
        assert "# not a heading" in chunks[1].content
        assert_exact_slices(chunks, GUIDE_MD)

    def test_config_file_is_one_chunk(self):
        content = "server:\n  port: 8080\n  host: 0.0.0.0\n"
        chunks = CodeChunker().chunk_source("deploy/settings.yaml", content)

        assert len(chunks) == 1
        assert chunks[0].chunk_type == ChunkType.CONFIG
        assert chunks[0].name == "settings.yaml"
        assert chunks[0].content == content

    def test_generic_fallback_for_unsupported_language(self, small_chunker_config):
        chunks = CodeChunker(small_chunker_config).chunk_source("lib/payload.rb", PAYLOAD_RB)

        assert [c.name for c in chunks] == ["parse_payload", "render_payload"]
        assert all(c.chunk_type == ChunkType.FUNCTION for c in chunks)
        assert (chunks[0].start_line, chunks[0].end_line) == (3, 5)
        assert_exact_slices(chunks, PAYLOAD_RB)


class TestChunkerContract:
    """Test behavior shared by every language."""

    def test_deterministic(self, small_chunker_config):
        chunker = CodeChunker(small_chunker_config)
        first = [c.to_dict() for c in chunker.chunk_source("auth/passwords.py", PASSWORDS_PY)]
        second = [c.to_dict() for c in chunker.chunk_source("auth/passwords.py", PASSWORDS_PY)]
        assert first == second

    def test_empty_file_has_no_chunks(self):
        assert CodeChunker().chunk_source("empty.py", "") == []

    def test_whitespace_file_is_one_file_chunk(self):
        content = "\n\n   \n"
        chunks = CodeChunker().chunk_source("blank.py", content)

        assert len(chunks) == 1
        assert chunks[0].chunk_type == ChunkType.FILE
        assert (chunks[0].start_line, chunks[0].content) == (1, content)

    def test_crlf_content_is_preserved(self):
        content = "def ping():\r\n    return 'pong'\r\n"
        chunks = CodeChunker().chunk_source("ping.py", content)

        assert len(chunks) == 1
        assert chunks[0].content == content

    def test_chunk_file_reads_relative_to_repo(self, tmp_path):
        (tmp_path / "pkg").mkdir()
        (tmp_path / "pkg" / "passwords.py").write_text(PASSWORDS_PY, encoding="utf-8")

        chunks = CodeChunker().chunk_file("pkg/passwords.py", tmp_path)

        assert chunks
        assert all(c.file_path == "pkg/passwords.py" for c in chunks)

    def test_chunk_file_missing_returns_empty(self, tmp_path):
        assert CodeChunker().chunk_file("missing.py", tmp_path) == []

    def test_chunk_file_refuses_paths_outside_repo(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        (tmp_path / "secret.py").write_text("TOKEN = 'x'\n", encoding="utf-8")

        with pytest.raises(AccessDeniedError):
            CodeChunker().chunk_file("../secret.py", repo)

    def test_domain_hints_can_be_disabled(self):
        chunker = CodeChunker(ChunkerConfig(extract_domain_hints=False))
        chunks = chunker.chunk_source("auth/passwords.py", PASSWORDS_PY)
        assert all(c.domain_hints == [] for c in chunks)
