"""Tests for certomat.selfcert.cache: the directory-backed cache."""

from __future__ import annotations

import stat

import pytest

from certomat.selfcert.cache import DirCache


class TestDirCache:
    def test_miss_returns_none(self, tmp_path):
        assert DirCache(tmp_path / "cache").get("www.example.com") is None

    def test_put_then_get(self, tmp_path):
        cache = DirCache(tmp_path / "cache")
        cache.put("www.example.com", b"key+cert")
        assert cache.get("www.example.com") == b"key+cert"

    def test_put_overwrites(self, tmp_path):
        cache = DirCache(tmp_path / "cache")
        cache.put("www.example.com", b"old")
        cache.put("www.example.com", b"new")
        assert cache.get("www.example.com") == b"new"

    def test_permissions(self, tmp_path):
        cache = DirCache(tmp_path / "cache")
        cache.put("www.example.com", b"secret")
        assert stat.S_IMODE((tmp_path / "cache").stat().st_mode) == 0o700
        assert stat.S_IMODE((tmp_path / "cache" / "www.example.com").stat().st_mode) == 0o600

    def test_no_temp_files_left(self, tmp_path):
        cache = DirCache(tmp_path / "cache")
        cache.put("www.example.com", b"x")
        assert [p.name for p in (tmp_path / "cache").iterdir()] == ["www.example.com"]

    def test_delete(self, tmp_path):
        cache = DirCache(tmp_path / "cache")
        cache.put("www.example.com", b"x")
        cache.delete("www.example.com")
        cache.delete("www.example.com")
        assert cache.get("www.example.com") is None

    @pytest.mark.parametrize("key", ["", ".", "..", "../escape", "a/b", "a\\b"])
    def test_invalid_keys(self, tmp_path, key):
        with pytest.raises(ValueError):
            DirCache(tmp_path).get(key)

    def test_directory_property(self, tmp_path):
        assert DirCache(str(tmp_path)).directory == tmp_path
