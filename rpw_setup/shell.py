"""
Terminal environment setup.

Installs zsh, tmux, ranger, fzf and a handful of helper tools, pulls the zsh
plugins and Oh My Zsh into the account's home, drops in the shared dotfiles
(falling back to a bundled .zshrc when the download fails) and makes zsh the
login shell. Only the base packages are required; every optional piece that
fails is reported as a warning and the run carries on.
"""

import getpass
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from rpw_setup.config import AppConfig
from rpw_setup.errors import (
    ConfigWarning,
    ExecutionError,
    PermissionError,
    ProvisioningError,
)
from rpw_setup.host import Account, HostOperations
from rpw_setup.steps import ProvisionResult, StepOutcome, StepRunner

logger = logging.getLogger(__name__)

BUNDLED_ZSHRC = Path(__file__).parent / "data" / "zshrc"

# (marker, block) pairs appended to .zshrc when the marker is missing
ZSHRC_SNIPPETS = [
    ("alias fm='ranger'", "\n# Ranger file manager alias\nalias fm='ranger'\n"),
    (
        "# Run fastfetch on startup",
        "\n# Run fastfetch on startup (much faster than neofetch)\n"
        "if command -v fastfetch >/dev/null 2>&1; then\n"
        "  fastfetch\n"
        "fi\n",
    ),
]


class ShellEnvironment(StepRunner):
    """Install and configure the terminal environment for one account."""

    def __init__(
        self,
        host: HostOperations,
        config: Optional[AppConfig] = None,
        session: Optional[Any] = None,
    ) -> None:
        super().__init__()
        self.host = host
        self.config = config or AppConfig()
        self.session = session

    def setup(self, account_name: str) -> ProvisionResult:
        """
        Run every terminal environment step for ``account_name``.

        Raises:
            PermissionError: If not running as root
            ProvisioningError: If the account is missing or base packages fail
        """
        self.result = ProvisionResult()
        self._run_step("preflight", self._check_superuser)
        account = self.host.get_account(account_name)
        if account is None:
            self.result.record("preflight", "failed", f"User '{account_name}' does not exist")
            raise ProvisioningError(f"User '{account_name}' does not exist")
        logger.info(f"Starting terminal setup for user: {account.name}")
        logger.info(f"Home directory: {account.home}")

        self._run_step("package_lists", self._update_package_lists)
        self._run_step("base_packages", self._install_base_packages)
        self._run_step("optional_tools", self._install_optional_tools)
        self._run_step("zsh_plugins", self._install_zsh_plugins, account)
        self._run_step("oh_my_zsh", self._install_oh_my_zsh, account)
        self._run_step("dotfiles", self._install_dotfiles, account)
        self._run_step("ranger", self._configure_ranger, account)
        self._run_step("login_shell", self._set_login_shell, account)

        self.result.summary = [
            f"User: {account.name}",
            "Installed: zsh (Oh My Zsh), tmux, ranger, fzf, ripgrep, bat, htop, fastfetch, ncdu",
            "Configuration: ~/.zshrc, ~/.tmux.conf, ~/.config/ranger/",
            f"Log in again as {account.name} to start zsh",
        ]
        return self.result

    # ------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------
    def _check_superuser(self) -> StepOutcome:
        if not self.host.is_superuser():
            raise PermissionError("This script must be run as root or with sudo privileges.")
        return "success", "Root privileges confirmed"

    def _apt_install(self, packages: List[str]) -> None:
        self.host.run_command(
            ["apt-get", "install", "-y", *packages],
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )

    def _update_package_lists(self) -> StepOutcome:
        logger.info("Updating package lists...")
        try:
            self.host.run_command(["apt-get", "update"])
        except ExecutionError as e:
            raise ConfigWarning(f"Package list update had issues, continuing anyway: {e}") from e
        return "success", "Package lists updated"

    def _install_base_packages(self) -> StepOutcome:
        packages = self.config.REQUIRED_PACKAGES
        logger.info(f"Installing base packages: {', '.join(packages)}")
        try:
            self._apt_install(packages)
        except ExecutionError as e:
            raise ProvisioningError(f"Failed to install base packages: {e}") from e
        return "success", ", ".join(packages)

    def _install_optional_tools(self) -> StepOutcome:
        installed: List[str] = []
        failed: List[str] = []
        for pkg in self.config.OPTIONAL_PACKAGES:
            try:
                self._apt_install([pkg])
                installed.append(pkg)
            except ExecutionError:
                logger.warning(f"{pkg} installation failed, continuing...")
                failed.append(pkg)

        for alternatives in self.config.PACKAGE_ALTERNATIVES:
            for pkg in alternatives:
                try:
                    self._apt_install([pkg])
                except ExecutionError:
                    logger.warning(f"{pkg} not available, trying next alternative...")
                    continue
                installed.append(pkg)
                break
            else:
                failed.append("/".join(alternatives))

        if failed:
            raise ConfigWarning(
                f"Installed {len(installed)} tools; unavailable: {', '.join(failed)}"
            )
        return "success", f"Installed {len(installed)} tools"

    # ------------------------------------------------------------
    # Git checkouts
    # ------------------------------------------------------------
    def _clone_or_pull(self, account: Account, url: str, dest: str) -> None:
        if self.host.path_exists(os.path.join(dest, ".git")):
            logger.info(f"{os.path.basename(dest)} already installed, updating...")
            self.host.run_command(["git", "-C", dest, "pull", "--ff-only"])
        else:
            self.host.run_command(["git", "clone", "--depth", "1", url, dest])
        self.host.run_command(["chown", "-R", f"{account.uid}:{account.gid}", dest])

    def _install_zsh_plugins(self, account: Account) -> StepOutcome:
        plugin_dir = os.path.join(account.home, ".zsh")
        self.host.ensure_directory(plugin_dir, 0o755, uid=account.uid, gid=account.gid)
        failed = []
        for name, url in self.config.ZSH_PLUGINS.items():
            logger.info(f"Installing {name}...")
            try:
                self._clone_or_pull(account, url, os.path.join(plugin_dir, name))
            except ExecutionError as e:
                logger.warning(f"Failed to install or update {name}: {e}")
                failed.append(name)
        if failed:
            raise ConfigWarning(f"zsh plugins failed: {', '.join(failed)}")
        return "success", ", ".join(self.config.ZSH_PLUGINS)

    def _install_oh_my_zsh(self, account: Account) -> StepOutcome:
        logger.info("Installing Oh My Zsh...")
        try:
            self._clone_or_pull(
                account, self.config.OH_MY_ZSH_REPO, os.path.join(account.home, ".oh-my-zsh")
            )
        except ExecutionError as e:
            raise ConfigWarning(f"Failed to install or update Oh My Zsh: {e}") from e
        return "success", "~/.oh-my-zsh"

    # ------------------------------------------------------------
    # Dotfiles
    # ------------------------------------------------------------
    def _download(self, url: str) -> Optional[str]:
        http = self.session or requests
        try:
            response = http.get(url, timeout=self.config.FETCH_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Failed to download {url}: {e}")
            return None
        return response.text

    def _install_dotfiles(self, account: Account) -> StepOutcome:
        logger.info("Downloading configuration files...")
        installed: List[str] = []
        skipped: List[str] = []
        for name, url in self.config.DOTFILES.items():
            content = self._download(url)
            if content is None and name == ".zshrc":
                logger.warning("Using bundled default .zshrc")
                content = BUNDLED_ZSHRC.read_text(encoding="utf-8")
            if content is None:
                logger.warning(f"Skipping {name} configuration")
                skipped.append(name)
                continue
            if name == ".zshrc":
                content = with_zshrc_snippets(content)
            self._write_user_file(account, name, content)
            installed.append(name)

        if skipped:
            raise ConfigWarning(
                f"Installed {', '.join(installed) or 'nothing'}; skipped {', '.join(skipped)}"
            )
        return "success", ", ".join(installed)

    def _write_user_file(self, account: Account, name: str, content: str) -> None:
        path = os.path.join(account.home, name)
        existing = self.host.read_file(path)
        if existing == content:
            logger.debug(f"{path} is already up to date")
            return
        if existing is not None:
            self.host.backup_file(path)
        self.host.write_file(path, content, 0o644, uid=account.uid, gid=account.gid)
        logger.info(f"Installed {path}")

    def _configure_ranger(self, account: Account) -> StepOutcome:
        logger.info("Setting up ranger file manager...")
        config_dir = os.path.join(account.home, ".config", "ranger")
        self.host.ensure_directory(
            os.path.join(account.home, ".config"), 0o755, uid=account.uid, gid=account.gid
        )
        self.host.ensure_directory(config_dir, 0o755, uid=account.uid, gid=account.gid)
        if self.host.path_exists(os.path.join(config_dir, "rc.conf")):
            return "skipped", "ranger configuration already present"
        if not self.host.command_exists("ranger"):
            raise ConfigWarning("ranger is not installed; skipping its configuration")
        try:
            self.host.run_command(["su", "-", account.name, "-c", "ranger --copy-config=all"])
        except ExecutionError as e:
            raise ConfigWarning(f"Failed to generate ranger config: {e}") from e
        return "success", config_dir

    def _set_login_shell(self, account: Account) -> StepOutcome:
        try:
            zsh = self.host.run_command(["which", "zsh"]).stdout.strip()
        except ExecutionError as e:
            raise ConfigWarning(f"zsh not found, login shell unchanged: {e}") from e
        if account.shell == zsh:
            return "skipped", f"Login shell already {zsh}"
        logger.info("Setting zsh as default shell...")
        try:
            self.host.set_login_shell(account.name, zsh)
        except ExecutionError as e:
            raise ConfigWarning(f"Failed to set login shell: {e}") from e
        return "success", f"Login shell set to {zsh}"


def with_zshrc_snippets(content: str) -> str:
    """Append the alias and startup blocks that ``content`` does not have yet."""
    additions = [block for marker, block in ZSHRC_SNIPPETS if marker not in content]
    if additions and not content.endswith("\n"):
        content += "\n"
    return content + "".join(additions)


def default_shell_user(environ: Optional[Dict[str, str]] = None) -> str:
    """The account that invoked sudo, or the current user."""
    environ = os.environ if environ is None else environ
    return environ.get("SUDO_USER") or getpass.getuser()
