"""Tests for the terminal environment setup."""

import pytest
import requests

from conftest import FakeDir, FakeHost, FakeSession
from rpw_setup.config import AppConfig
from rpw_setup.errors import PermissionError, ProvisioningError
from rpw_setup.shell import (
    BUNDLED_ZSHRC,
    ShellEnvironment,
    default_shell_user,
    with_zshrc_snippets,
)

CONFIG = AppConfig()
ZSHRC_URL = CONFIG.DOTFILES[".zshrc"]
TMUX_URL = CONFIG.DOTFILES[".tmux.conf"]


@pytest.fixture
def shell_host():
    host = FakeHost()
    host.add_account("alice")
    return host


@pytest.fixture
def dotfiles():
    return FakeSession({ZSHRC_URL: "export ZSH=$HOME/.oh-my-zsh\n", TMUX_URL: "set -g mouse on\n"})


def apt_installs(host):
    return [cmd[3:] for cmd in host.commands if cmd[:3] == ["apt-get", "install", "-y"]]


class TestSetup:
    def test_full_run(self, shell_host, dotfiles):
        result = ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert result.success
        assert ["apt-get", "update"] in shell_host.commands
        assert ["git", "curl", "zsh", "tmux"] in apt_installs(shell_host)
        assert ["ranger"] in apt_installs(shell_host)

        zshrc = shell_host.files["/home/alice/.zshrc"]
        assert zshrc.content.startswith("export ZSH=$HOME/.oh-my-zsh\n")
        assert "alias fm='ranger'" in zshrc.content
        assert "fastfetch" in zshrc.content
        assert zshrc.mode == 0o644
        assert zshrc.uid == shell_host.accounts["alice"].uid
        assert shell_host.files["/home/alice/.tmux.conf"].content == "set -g mouse on\n"

        assert shell_host.accounts["alice"].shell == "/usr/bin/zsh"
        assert result.step("login_shell").status == "success"

    def test_not_superuser(self, dotfiles):
        host = FakeHost(superuser=False)
        host.add_account("alice")

        with pytest.raises(PermissionError):
            ShellEnvironment(host, CONFIG, session=dotfiles).setup("alice")

        assert host.commands == []

    def test_missing_account(self, dotfiles):
        with pytest.raises(ProvisioningError, match="does not exist"):
            ShellEnvironment(FakeHost(), CONFIG, session=dotfiles).setup("ghost")

    def test_base_package_failure_is_fatal(self, shell_host, dotfiles):
        shell_host.failing_commands.append(["apt-get", "install", "-y", "git"])
        environment = ShellEnvironment(shell_host, CONFIG, session=dotfiles)

        with pytest.raises(ProvisioningError):
            environment.setup("alice")

        assert environment.result.step("base_packages").status == "failed"

    def test_package_list_failure_is_a_warning(self, shell_host, dotfiles):
        shell_host.failing_commands.append(["apt-get", "update"])

        result = ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert result.step("package_lists").status == "warning"
        assert result.success

    def test_second_run_does_not_rewrite_dotfiles(self, shell_host, dotfiles):
        environment = ShellEnvironment(shell_host, CONFIG, session=dotfiles)

        environment.setup("alice")
        environment.setup("alice")

        assert shell_host.backups == []
        assert environment.result.step("login_shell").status == "skipped"


class TestPackages:
    def test_alternative_used_when_first_choice_fails(self, shell_host, dotfiles):
        shell_host.failing_commands.append(["apt-get", "install", "-y", "fastfetch"])

        result = ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert ["neofetch"] in apt_installs(shell_host)
        assert ["batcat"] not in apt_installs(shell_host)
        assert result.step("optional_tools").status == "success"

    def test_unavailable_tools_are_a_warning(self, shell_host, dotfiles):
        shell_host.failing_commands.append(["apt-get", "install", "-y", "ncdu"])

        result = ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        step = result.step("optional_tools")
        assert step.status == "warning"
        assert "ncdu" in step.message


class TestCheckouts:
    def test_fresh_clone(self, shell_host, dotfiles):
        ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        clones = [cmd for cmd in shell_host.commands if cmd[:2] == ["git", "clone"]]
        assert [cmd[-1] for cmd in clones] == [
            "/home/alice/.zsh/zsh-autosuggestions",
            "/home/alice/.zsh/zsh-syntax-highlighting",
            "/home/alice/.oh-my-zsh",
        ]
        assert ["chown", "-R", "1000:1000", "/home/alice/.oh-my-zsh"] in shell_host.commands

    def test_existing_checkout_is_updated(self, shell_host, dotfiles):
        shell_host.dirs["/home/alice/.oh-my-zsh/.git"] = FakeDir(0o755, 1000, 1000)

        ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert ["git", "-C", "/home/alice/.oh-my-zsh", "pull", "--ff-only"] in shell_host.commands

    def test_clone_failure_is_a_warning(self, shell_host, dotfiles):
        shell_host.failing_commands.append(["git", "clone", "--depth", "1", CONFIG.OH_MY_ZSH_REPO])

        result = ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert result.step("oh_my_zsh").status == "warning"
        assert result.step("zsh_plugins").status == "success"


class TestDotfiles:
    def test_bundled_zshrc_when_download_fails(self, shell_host):
        session = FakeSession({ZSHRC_URL: requests.ConnectionError("offline")})

        result = ShellEnvironment(shell_host, CONFIG, session=session).setup("alice")

        zshrc = shell_host.files["/home/alice/.zshrc"].content
        assert zshrc.startswith(BUNDLED_ZSHRC.read_text(encoding="utf-8").rstrip("\n"))
        assert "/home/alice/.tmux.conf" not in shell_host.files
        step = result.step("dotfiles")
        assert step.status == "warning"
        assert ".tmux.conf" in step.message

    def test_existing_dotfile_is_backed_up(self, shell_host, dotfiles):
        shell_host.put_file("/home/alice/.tmux.conf", "set -g prefix C-a\n")

        ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert shell_host.backups == ["/home/alice/.tmux.conf.bak.0"]
        assert shell_host.files["/home/alice/.tmux.conf.bak.0"].content == "set -g prefix C-a\n"

    def test_snippets_appended_once(self):
        once = with_zshrc_snippets("export ZSH=x")

        assert once.startswith("export ZSH=x\n")
        assert once.count("alias fm='ranger'") == 1
        assert with_zshrc_snippets(once) == once


class TestRangerAndShell:
    def test_ranger_config_generated(self, shell_host, dotfiles):
        ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert ["su", "-", "alice", "-c", "ranger --copy-config=all"] in shell_host.commands
        assert shell_host.dirs["/home/alice/.config/ranger"].uid == 1000

    def test_existing_ranger_config_skipped(self, shell_host, dotfiles):
        shell_host.put_file("/home/alice/.config/ranger/rc.conf", "set preview_images false\n")

        result = ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert result.step("ranger").status == "skipped"
        assert not any(cmd[0] == "su" for cmd in shell_host.commands)

    def test_ranger_missing_is_a_warning(self, shell_host, dotfiles):
        shell_host.available_commands.discard("ranger")

        result = ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert result.step("ranger").status == "warning"

    def test_login_shell_failure_is_a_warning(self, shell_host, dotfiles):
        shell_host.failing_commands.append(["chsh"])

        result = ShellEnvironment(shell_host, CONFIG, session=dotfiles).setup("alice")

        assert result.step("login_shell").status == "warning"
        assert shell_host.accounts["alice"].shell == "/bin/bash"


class TestDefaultShellUser:
    def test_prefers_sudo_user(self):
        assert default_shell_user({"SUDO_USER": "alice"}) == "alice"

    def test_falls_back_to_current_user(self, monkeypatch):
        monkeypatch.setattr("rpw_setup.shell.getpass.getuser", lambda: "bob")

        assert default_shell_user({}) == "bob"
