"""Unit tests for auth/redirects.py -- post-sign-in redirect validation.

Covers:
- Relative paths resolve against the base URL; protocol-relative do not
- Same-origin absolute URLs accepted, except under /api/auth/
- Foreign origins and junk fall back to the application root
- Mobile app targets must start with an allowed scheme
"""

import pytest

from auth.redirects import is_allowed_app_target, resolve_redirect

BASE = "https://nopass.example.com"


class TestResolveRedirect:
    def test_relative_path(self) -> None:
        assert resolve_redirect("/dashboard", BASE) == "https://nopass.example.com/dashboard"

    def test_relative_path_with_trailing_slash_base(self) -> None:
        assert resolve_redirect("/my-cards", BASE + "/") == "https://nopass.example.com/my-cards"

    def test_same_origin_absolute(self) -> None:
        url = "https://nopass.example.com/my-passwords?tab=2"
        assert resolve_redirect(url, BASE) == url

    @pytest.mark.parametrize(
        "url",
        [
            "https://nopass.example.com/api/auth/callback/google",
            "https://nopass.example.com/api/auth/signin/github",
        ],
    )
    def test_auth_paths_go_to_root(self, url: str) -> None:
        assert resolve_redirect(url, BASE) == BASE

    @pytest.mark.parametrize(
        "url",
        [
            "https://evil.io/phish",
            "//evil.io/phish",
            "http://nopass.example.com/downgrade",
            "https://nopass.example.com.evil.io/",
            "javascript:alert(1)",
            "dashboard",
        ],
    )
    def test_untrusted_go_to_root(self, url: str) -> None:
        assert resolve_redirect(url, BASE) == BASE

    @pytest.mark.parametrize("url", [None, ""])
    def test_empty_goes_to_root(self, url) -> None:
        assert resolve_redirect(url, BASE) == BASE


class TestAppTarget:
    SCHEMES = ["exp://", "nopassmobile://"]

    @pytest.mark.parametrize("target", ["nopassmobile://redirect", "exp://192.168.1.5:8081/--/auth"])
    def test_allowed(self, target: str) -> None:
        assert is_allowed_app_target(target, self.SCHEMES)

    @pytest.mark.parametrize("target", ["https://evil.io/steal", "nopassmobile:/x", "", "javascript://x"])
    def test_rejected(self, target: str) -> None:
        assert not is_allowed_app_target(target, self.SCHEMES)
