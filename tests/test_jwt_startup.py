"""
tests/test_jwt_startup.py — JWT Secret Validation at Import
============================================================
The admin API refuses to load when JWT_SECRET is missing, blank, too
short, or one of the known placeholder values.
"""

from __future__ import annotations

import importlib
import os
from unittest.mock import patch

import pytest


def _reload_deps() -> str:
    import warden.api.deps as deps_mod

    importlib.reload(deps_mod)
    return deps_mod.JWT_SECRET


@pytest.fixture(autouse=True)
def _restore_jwt_secret():
    original = os.environ.get("JWT_SECRET")
    yield
    if original is not None:
        os.environ["JWT_SECRET"] = original
    else:
        os.environ.pop("JWT_SECRET", None)
    try:
        _reload_deps()
    except RuntimeError:
        pass  # no valid secret in this environment; later imports will report it


class TestJWTSecretValidation:
    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("JWT_SECRET", None)
            with pytest.raises(RuntimeError, match="is not set"):
                _reload_deps()

    @pytest.mark.parametrize(("secret", "message"), [
        ("", "is not set"),
        ("warden-dev-secret-change-me", "known weak default"),
        ("change-me", "known weak default"),
        ("tooshort", "too short"),
        ("x" * 31, "too short"),
    ])
    def test_rejects_bad_secrets(self, secret, message):
        with patch.dict(os.environ, {"JWT_SECRET": secret}):
            with pytest.raises(RuntimeError, match=message):
                _reload_deps()

    def test_accepts_strong_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "k" * 48}):
            assert _reload_deps() == "k" * 48
