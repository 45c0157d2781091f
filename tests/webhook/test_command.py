from inline_snapshot import snapshot

from issue_fix_agent.webhook.command import ActivationCommand, looks_like_path, parse_command


def test_parse_command_with_paths():
    assert parse_command("@bot fix src/app.py docs/notes.md") == ActivationCommand(
        activated=True, target_paths=["src/app.py", "docs/notes.md"]
    )


def test_parse_command_alias():
    assert parse_command("/fix-issue README.md") == ActivationCommand(activated=True, target_paths=["README.md"])


def test_parse_command_is_case_insensitive():
    assert parse_command("@BOT FIX Makefile.am") == ActivationCommand(activated=True, target_paths=["Makefile.am"])


def test_parse_command_without_trigger():
    assert parse_command("Could someone look at src/app.py?") == ActivationCommand(activated=False, target_paths=[])


def test_parse_command_empty():
    assert parse_command(None) == ActivationCommand(activated=False, target_paths=[])
    assert parse_command("") == ActivationCommand(activated=False, target_paths=[])


def test_parse_command_without_paths():
    assert parse_command("@bot fix") == ActivationCommand(activated=True, target_paths=[])


def test_parse_command_keeps_order_and_duplicates():
    command = parse_command("please @bot fix b.py the a.py and b.py again")

    assert command.target_paths == snapshot(["b.py", "a.py", "b.py"])


def test_parse_command_only_reads_trigger_line():
    command = parse_command("Some context about lib/util.py\n@bot fix src/main.py\nAlso see tests/test_main.py")

    assert command == ActivationCommand(activated=True, target_paths=["src/main.py"])


def test_parse_command_windows_paths():
    assert parse_command(r"/fix-issue src\app\main") == ActivationCommand(activated=True, target_paths=[r"src\app\main"])


def test_parse_command_custom_triggers():
    assert parse_command("@helper patch a.txt", triggers=["@helper patch"]).target_paths == ["a.txt"]
    assert not parse_command("@bot fix a.txt", triggers=["@helper patch"]).activated


def test_looks_like_path():
    assert looks_like_path("a.txt")
    assert looks_like_path("src/app")
    assert looks_like_path(r"src\app")
    assert not looks_like_path("please")
