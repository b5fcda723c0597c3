"""
Unit tests for resolver.backends module.

Tests:
- PasswdUserSource uid floor and unknown names
- AssignUserSource exact and prefix entries, terminator, errors
- StaticUserSource and build_user_source()
- HomeDirStorage existence checks, reads, truncation, path safety
"""

import pytest

from rcptd.core.exceptions import BackendError, ConfigurationError
from rcptd.models import LocalUser
from rcptd.resolver.backends import (
    AssignUserSource,
    HomeDirStorage,
    PasswdUserSource,
    StaticUserSource,
    build_user_source,
    file_token,
)
from rcptd.resolver.configs import StaticUserConfig, UserSourceConfig


ASSIGN = """\
=alice:alice:1001:1001:/home/alice:::
+vhost-:vhost:2000:2000:/var/vhost:-::
+vhost-sales-:sales:2001:2001:/var/sales:-::
.
=ignored:ignored:1:1:/nowhere:::
"""


class TestFileToken:
    """file_token() helper."""

    def test_missing(self, tmp_path):
        assert file_token(tmp_path / "nope") is None

    def test_changes_with_content(self, tmp_path):
        path = tmp_path / "f"
        path.write_text("a")
        before = file_token(path)
        path.write_text("abc")
        assert file_token(path) != before


class TestPasswdUserSource:
    """PasswdUserSource lookups."""

    def test_unknown_user(self):
        assert PasswdUserSource().lookup_user("no-such-account-rcptd") is None

    def test_root_below_min_uid(self):
        assert PasswdUserSource(min_uid=1, require_home=False).lookup_user("root") is None

    def test_root_allowed_with_zero_floor(self):
        user = PasswdUserSource(min_uid=0, require_home=False).lookup_user("root")
        assert user is not None
        assert user.uid == 0

    def test_null_byte_name(self):
        assert PasswdUserSource().lookup_user("ro\x00ot") is None


class TestAssignUserSource:
    """AssignUserSource parsing and lookup."""

    @pytest.fixture
    def source(self, tmp_path):
        path = tmp_path / "assign"
        path.write_text(ASSIGN)
        return AssignUserSource(path).loaded()

    def test_exact(self, source):
        user = source.lookup_user("alice")
        assert user == LocalUser(name="alice", home="/home/alice", uid=1001, gid=1001)

    def test_prefix(self, source):
        assert source.lookup_user("vhost").home == "/var/vhost"

    def test_longest_prefix_wins(self, source):
        assert source.lookup_user("vhost-sales").name == "sales"

    def test_case_insensitive(self, source):
        assert source.lookup_user("ALICE").name == "alice"

    def test_entries_after_terminator_ignored(self, source):
        assert source.lookup_user("ignored") is None

    def test_unknown(self, source):
        assert source.lookup_user("mallory") is None

    def test_lookup_before_load(self, tmp_path):
        assert AssignUserSource(tmp_path / "assign").lookup_user("alice") is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            AssignUserSource(tmp_path / "assign").loaded()

    def test_malformed_line(self, tmp_path):
        path = tmp_path / "assign"
        path.write_text("=alice:alice:1001\n")
        with pytest.raises(ConfigurationError, match=":1: malformed"):
            AssignUserSource(path).loaded()

    def test_bad_uid(self, tmp_path):
        path = tmp_path / "assign"
        path.write_text("=alice:alice:x:1001:/home/alice:::\n")
        with pytest.raises(ConfigurationError):
            AssignUserSource(path).loaded()

    def test_load_leaves_receiver_untouched(self, source, tmp_path):
        (tmp_path / "assign").write_text("=bob:bob:1002:1002:/home/bob:::\n")
        fresh = source.loaded()
        assert fresh.lookup_user("bob").home == "/home/bob"
        assert source.lookup_user("bob") is None
        assert source.lookup_user("alice") is not None

    def test_changed_since(self, source, tmp_path):
        token = source.change_token()
        assert not source.changed_since(token)
        (tmp_path / "assign").write_text(ASSIGN + "\n# more\n")
        assert source.changed_since(token)


class TestStaticUserSource:
    """StaticUserSource and the backend factory."""

    def test_lookup(self, tmp_path):
        source = StaticUserSource({"bob": StaticUserConfig(home=tmp_path, uid=5)})
        user = source.lookup_user("bob")
        assert user.home == str(tmp_path)
        assert user.uid == 5
        assert source.lookup_user("carol") is None

    def test_disabled_owner(self, tmp_path):
        source = StaticUserSource({"bob": StaticUserConfig(home=tmp_path, exists=False)})
        assert source.lookup_user("bob").exists is False

    def test_no_change_tracking(self, tmp_path):
        source = StaticUserSource({})
        assert not source.changed_since(source.change_token())

    @pytest.mark.parametrize(
        ("backend", "expected"),
        [("passwd", PasswdUserSource), ("assign", AssignUserSource), ("static", StaticUserSource)],
    )
    def test_build_user_source(self, backend, expected):
        assert isinstance(build_user_source(UserSourceConfig(backend=backend)), expected)


class TestHomeDirStorage:
    """HomeDirStorage reads from the owner's home directory."""

    @pytest.fixture
    def owner(self, tmp_path):
        return LocalUser(name="bob", home=str(tmp_path))

    def test_exists(self, owner, tmp_path):
        (tmp_path / ".qmail-sales").write_text("./Maildir/\n")
        storage = HomeDirStorage()
        assert storage.exists(owner, ".qmail-sales")
        assert not storage.exists(owner, ".qmail-support")

    def test_directory_is_not_a_dotfile(self, owner, tmp_path):
        (tmp_path / ".qmail-dir").mkdir()
        assert not HomeDirStorage().exists(owner, ".qmail-dir")

    def test_read(self, owner, tmp_path):
        (tmp_path / ".qmail").write_text("&carol@example.org\n")
        assert HomeDirStorage().read(owner, ".qmail") == "&carol@example.org\n"

    def test_read_invalid_utf8(self, owner, tmp_path):
        (tmp_path / ".qmail").write_bytes(b"\xff./Maildir/\n")
        assert HomeDirStorage().read(owner, ".qmail").endswith("./Maildir/\n")

    def test_read_truncated(self, owner, tmp_path):
        (tmp_path / ".qmail").write_text("x" * 5000)
        assert len(HomeDirStorage(max_file_size=1024).read(owner, ".qmail")) == 1024

    def test_read_missing(self, owner):
        with pytest.raises(BackendError):
            HomeDirStorage().read(owner, ".qmail-gone")

    @pytest.mark.parametrize("name", ["", ".", "..", "../etc/passwd", ".qmail\x00x"])
    def test_unsafe_names(self, owner, name):
        storage = HomeDirStorage()
        assert not storage.exists(owner, name)
        with pytest.raises(BackendError):
            storage.read(owner, name)
