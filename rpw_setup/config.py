"""Runtime configuration with defaults and environment overrides."""

import os
from dataclasses import dataclass, field, asdict, replace
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_KEY_SOURCE = (
    "https://raw.githubusercontent.com/IEatCodeDaily/ssh-public-key/main/keys/ssh-rpw.pub"
)
CONFIG_BASE_URL = "https://raw.githubusercontent.com/IEatCodeDaily/ssh-public-key/main/config"

TRUE_VALUES = ("1", "true", "yes", "y", "on")


def env_flag(value: Optional[str]) -> bool:
    """Interpret an environment variable as a boolean switch."""
    if value is None:
        return False
    return value.strip().lower() in TRUE_VALUES


@dataclass
class AppConfig:
    # Account
    USERNAME: str = "rpw"
    KEY_SOURCE: str = DEFAULT_KEY_SOURCE
    LOGIN_SHELL: str = "/bin/bash"
    HOME_BASE: str = "/home"

    # Privileges
    PRIVILEGE_GROUPS: List[str] = field(default_factory=lambda: ["sudo", "wheel"])
    SUDOERS_DIR: str = "/etc/sudoers.d"
    SUDO_NOPASSWD: bool = False

    # SSH daemon
    CONFIGURE_SSHD: bool = True
    SSHD_CONFIG: str = "/etc/ssh/sshd_config"
    SSHD_SERVICES: List[str] = field(default_factory=lambda: ["sshd", "ssh"])

    # Behaviour
    ASSUME_YES: bool = False
    LOG_FILE: str = "/var/log/rpw_setup.log"
    FETCH_TIMEOUT: int = 30
    COMMAND_TIMEOUT: int = 300  # seconds

    # Terminal environment
    REQUIRED_PACKAGES: List[str] = field(
        default_factory=lambda: ["git", "curl", "zsh", "tmux"]
    )
    OPTIONAL_PACKAGES: List[str] = field(
        default_factory=lambda: [
            # File manager and previewers
            "ranger", "highlight", "atool", "w3m", "poppler-utils", "mediainfo",
            # Search and monitoring
            "fzf", "ripgrep", "ncdu", "htop",
        ]
    )
    # First package that installs wins
    PACKAGE_ALTERNATIVES: List[List[str]] = field(
        default_factory=lambda: [["fastfetch", "neofetch"], ["bat", "batcat"]]
    )
    ZSH_PLUGINS: Dict[str, str] = field(
        default_factory=lambda: {
            "zsh-autosuggestions": "https://github.com/zsh-users/zsh-autosuggestions",
            "zsh-syntax-highlighting": "https://github.com/zsh-users/zsh-syntax-highlighting.git",
        }
    )
    OH_MY_ZSH_REPO: str = "https://github.com/ohmyzsh/ohmyzsh.git"
    DOTFILES: Dict[str, str] = field(
        default_factory=lambda: {
            ".zshrc": f"{CONFIG_BASE_URL}/.zshrc",
            ".tmux.conf": f"{CONFIG_BASE_URL}/.tmux.conf",
        }
    )

    def home_dir(self, username: Optional[str] = None) -> str:
        """Default home directory for an account that does not exist yet."""
        username = username or self.USERNAME
        if username == "root":
            return "/root"
        return os.path.join(self.HOME_BASE, username)

    def sudoers_file(self, username: Optional[str] = None) -> str:
        return os.path.join(self.SUDOERS_DIR, username or self.USERNAME)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """
        Build a configuration from defaults plus environment overrides.

        Recognised variables: RPW_USERNAME, RPW_KEY_SOURCE, RPW_LOG_FILE and
        SUDO_NOPASSWD.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            A new AppConfig instance
        """
        environ = os.environ if environ is None else environ
        config = cls()
        overrides: Dict[str, Any] = {}
        if environ.get("RPW_USERNAME"):
            overrides["USERNAME"] = environ["RPW_USERNAME"]
        if environ.get("RPW_KEY_SOURCE"):
            overrides["KEY_SOURCE"] = environ["RPW_KEY_SOURCE"]
        if environ.get("RPW_LOG_FILE"):
            overrides["LOG_FILE"] = environ["RPW_LOG_FILE"]
        if "SUDO_NOPASSWD" in environ:
            overrides["SUDO_NOPASSWD"] = env_flag(environ["SUDO_NOPASSWD"])
        return replace(config, **overrides)
