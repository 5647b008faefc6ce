import os

import pytest

from kmodtools.commands import (
    INSMOD_RECURSION_STEP,
    CommandError,
    has_recursion_loop,
    run_command,
)


def test_recursion_not_checked_between_steps():
    chain = ["mod"] * (INSMOD_RECURSION_STEP - 2)
    assert has_recursion_loop("mod", chain) is False


def test_recursion_loop_found_at_step():
    chain = [f"m{i}" for i in range(INSMOD_RECURSION_STEP - 1)]
    assert has_recursion_loop("m3", chain) is True


def test_recursion_no_loop_at_step():
    chain = [f"m{i}" for i in range(INSMOD_RECURSION_STEP - 1)]
    assert has_recursion_loop("other", chain) is False


def test_recursion_loop_found_at_second_step():
    chain = [f"m{i}" for i in range(2 * INSMOD_RECURSION_STEP - 1)]
    assert has_recursion_loop("m20", chain) is True


def test_dry_run_substitutes_and_skips():
    cmd = run_command("snd", "install", "exit 3 $CMDLINE_OPTS", "a=1", True)
    assert cmd == "exit 3 a=1"


def test_missing_options_become_empty():
    cmd = run_command("snd", "remove", "echo $CMDLINE_OPTS;$CMDLINE_OPTS", None, True)
    assert cmd == "echo ;"


def test_failing_command_raises_with_status():
    with pytest.raises(CommandError) as info:
        run_command("snd", "install", "exit 3", None, False)
    assert info.value.status == 3
    assert "install command for snd" in str(info.value)


def test_command_sees_module_name(tmp_path):
    target = tmp_path / "out.txt"
    cmd = run_command(
        "loop", "install", f'printf %s "$MODPROBE_MODULE" > {target}', None, False
    )
    assert target.read_text() == "loop"
    assert cmd.endswith(str(target))
    assert os.environ.get("MODPROBE_MODULE") != "loop"


def test_successful_command_returns_expanded(tmp_path):
    target = tmp_path / "opts.txt"
    cmd = run_command(
        "loop", "install", f"printf %s '$CMDLINE_OPTS' > {target}", "max_loop=8", False
    )
    assert target.read_text() == "max_loop=8"
    assert "max_loop=8" in cmd