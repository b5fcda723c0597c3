"""
Unit tests for resolver.dotfile module.

Tests:
- Positional splitting of local names
- Chain construction (order, length, filenames, terminal catch-all)
- First-existing probing against HomeDirStorage
"""

import pytest

from rcptd.models import LocalUser
from rcptd.resolver import DotFileConfig, DotFileResolver, HomeDirStorage


@pytest.fixture
def owner(tmp_path):
    home = tmp_path / "bob"
    home.mkdir()
    return LocalUser(name="bob", home=str(home))


@pytest.fixture
def alias(tmp_path):
    home = tmp_path / "alias"
    home.mkdir()
    return LocalUser(name="alias", home=str(home))


@pytest.fixture
def resolver():
    return DotFileResolver(HomeDirStorage())


class TestSplit:
    """DotFileResolver.split()."""

    def test_no_extension(self, resolver):
        assert resolver.split("bob") == ("bob", ())

    def test_segments(self, resolver):
        assert resolver.split("bob-sales-eu") == ("bob", ("sales", "eu"))

    def test_empty_segments_kept(self, resolver):
        assert resolver.split("bob--x") == ("bob", ("", "x"))

    def test_custom_separator(self):
        resolver = DotFileResolver(HomeDirStorage(), DotFileConfig(separator="+"))
        assert resolver.split("bob+tag-x") == ("bob", ("tag-x",))


class TestResolve:
    """Chain construction."""

    def test_virtual_chain(self, resolver, owner, alias):
        chain = resolver.resolve("bob", ("sales", "eu"), owner, alias, strip_user=False)
        assert [c.name for c in chain] == [
            "bob-sales-eu",
            "bob-sales-default",
            "bob-default",
            "default",
        ]
        assert [c.filename for c in chain] == [
            ".qmail-bob-sales-eu",
            ".qmail-bob-sales-default",
            ".qmail-bob-default",
            ".qmail-default",
        ]

    def test_local_chain_strips_user(self, resolver, owner):
        chain = resolver.resolve("bob", ("sales",), owner, None, strip_user=True)
        assert [c.filename for c in chain] == [".qmail-sales", ".qmail-default"]

    def test_local_plain_user(self, resolver, owner):
        chain = resolver.resolve("bob", (), owner, None, strip_user=True)
        assert [c.filename for c in chain] == [".qmail"]

    @pytest.mark.parametrize("n", [0, 1, 2, 5])
    def test_length(self, resolver, owner, alias, n):
        extension = tuple(f"e{i}" for i in range(n))
        assert len(resolver.resolve("bob", extension, owner, alias, strip_user=False)) == n + 2
        assert len(resolver.resolve("bob", extension, owner, None, strip_user=False)) == n + 1

    def test_each_step_replaces_trailing_segment(self, resolver, owner):
        chain = resolver.resolve("u", ("a", "b", "c"), owner, None, strip_user=False)
        names = [c.name for c in chain]
        assert names == ["u-a-b-c", "u-a-b-default", "u-a-default", "u-default"]

    def test_terminal_catchall_owner(self, resolver, owner, alias):
        chain = resolver.resolve("bob", (), owner, alias, strip_user=False)
        terminal = chain.candidates[-1]
        assert terminal.catchall is True
        assert terminal.owner == alias
        assert not any(c.catchall for c in chain.candidates[:-1])

    def test_dots_become_colons(self, resolver, owner):
        chain = resolver.resolve("j.doe", (), owner, None, strip_user=False)
        assert chain.candidates[0].filename == ".qmail-j:doe"

    def test_lowercased_by_default(self, resolver, owner):
        chain = resolver.resolve("Bob", ("Sales",), owner, None, strip_user=False)
        assert chain.candidates[0].filename == ".qmail-bob-sales"

    def test_case_sensitive(self, owner):
        resolver = DotFileResolver(HomeDirStorage(), case_sensitive=True)
        chain = resolver.resolve("Bob", (), owner, None, strip_user=False)
        assert chain.candidates[0].filename == ".qmail-Bob"


class TestFirstExisting:
    """DotFileResolver.first_existing()."""

    def test_most_specific_wins(self, resolver, owner, alias, tmp_path):
        (tmp_path / "bob" / ".qmail-sales").write_text("./Maildir/\n")
        (tmp_path / "bob" / ".qmail-default").write_text("&x@example.org\n")
        chain = resolver.resolve("bob", ("sales",), owner, alias, strip_user=True)
        matched = resolver.first_existing(chain)
        assert matched.filename == ".qmail-sales"
        assert matched.content == "./Maildir/\n"
        assert matched.owner == owner

    def test_falls_back_to_default(self, resolver, owner, alias, tmp_path):
        (tmp_path / "bob" / ".qmail-default").write_text("")
        chain = resolver.resolve("bob", ("sales", "eu"), owner, alias, strip_user=True)
        assert resolver.first_existing(chain).filename == ".qmail-default"

    def test_terminal_catchall(self, resolver, owner, alias, tmp_path):
        (tmp_path / "alias" / ".qmail-default").write_text("./Maildir/\n")
        chain = resolver.resolve("bob", ("x",), owner, alias, strip_user=False)
        matched = resolver.first_existing(chain)
        assert matched.catchall is True
        assert matched.owner == alias

    def test_none(self, resolver, owner, alias):
        chain = resolver.resolve("bob", ("x",), owner, alias, strip_user=False)
        assert resolver.first_existing(chain) is None

    def test_separator_in_data_is_positional(self, resolver, owner, tmp_path):
        # "sales-eu" as one logical extension still decomposes by position
        (tmp_path / "bob" / ".qmail-bob-sales-default").write_text("")
        chain = resolver.resolve(*resolver.split("bob-sales-eu"), owner, None, strip_user=False)
        assert resolver.first_existing(chain).filename == ".qmail-bob-sales-default"
