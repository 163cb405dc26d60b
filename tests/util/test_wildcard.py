from moltcore.core.global_paths import GlobalPath
from moltcore.util.wildcard import expand_home, match


def test_match() -> None:
    assert match("anything", "*")
    assert match("git status", "git *")
    assert not match("gitk", "git *")
    assert match("a/b/c.py", "a/*.py")
    assert match("v1", "v?")
    assert not match("v10", "v?")
    assert match("[x]+(y)", "[x]+(y)")


def test_expand_home() -> None:
    home = GlobalPath.home()
    assert expand_home("~") == home
    assert expand_home("~/x") == home + "/x"
    assert expand_home("$HOME/x") == home + "/x"
    assert expand_home("/etc/~") == "/etc/~"
