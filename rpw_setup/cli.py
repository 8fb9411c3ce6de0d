"""
Command line entry point.

Usage:
  sudo rpw-setup user [--user rpw] [--key-source URL|PATH] [--nopasswd] [--yes]
  sudo rpw-setup shell [--user NAME]

Interactive prompts are only shown when stdin is a terminal and --yes was not
given; piped runs (curl ... | sudo ...) proceed with defaults.
"""

import sys
from dataclasses import replace
from typing import Callable, Optional

import click
from rich.prompt import Confirm

from rpw_setup import __version__
from rpw_setup.config import AppConfig
from rpw_setup.errors import SetupError
from rpw_setup.host import SystemHost
from rpw_setup.privilege import PrivilegeGrant
from rpw_setup.provisioner import Provisioner
from rpw_setup.shell import ShellEnvironment, default_shell_user
from rpw_setup.steps import ProvisionResult, StepRunner
from rpw_setup.ui import (
    NordColors,
    console,
    create_header,
    print_error,
    print_message,
    print_section,
    print_step,
    print_success,
    print_warning,
    setup_logging,
    status_report,
)


def is_interactive(assume_yes: bool) -> bool:
    return sys.stdin.isatty() and not assume_yes


def ask(question: str) -> bool:
    return Confirm.ask(f"[prompt]{question}[/prompt]", console=console, default=False)


def finish(runner: StepRunner, func: Callable[[], ProvisionResult], title: str) -> None:
    """Run a workflow, show its status table and exit with its status code."""
    try:
        result = func()
    except SetupError as e:
        print_error(str(e))
        status_report(runner.result.steps, title)
        sys.exit(1)
    except KeyboardInterrupt:
        print_warning("Process interrupted by user")
        sys.exit(130)

    status_report(result.steps, title)
    print_section("Summary")
    for line in result.summary:
        print_message(line, NordColors.GREEN, ">>")
    if not result.success:
        print_error("Setup finished with failed steps")
        sys.exit(1)
    print_success("Setup completed successfully")
    sys.exit(0)


@click.group()
@click.version_option(__version__, prog_name="rpw-setup")
def main() -> None:
    """Provision SSH key access, sudo and a shell environment for a user."""


@main.command("user")
@click.option("--user", "username", default=None, help="Account to provision (default: rpw)")
@click.option("--key-source", default=None, help="URL or path of the public key file")
@click.option("--sudo/--no-sudo", default=True, show_default=True, help="Grant sudo privileges")
@click.option("--nopasswd", is_flag=True, default=False, help="Passwordless sudo (or SUDO_NOPASSWD=true)")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Do not prompt; update existing users")
@click.option("--skip-sshd", is_flag=True, help="Leave sshd_config untouched")
@click.option("--log-file", default=None, help="Log file path")
@click.option("--debug", is_flag=True, help="Enable debug logging")
def user_cmd(
    username: Optional[str],
    key_source: Optional[str],
    sudo: bool,
    nopasswd: bool,
    assume_yes: bool,
    skip_sshd: bool,
    log_file: Optional[str],
    debug: bool,
) -> None:
    """Create the user and install its SSH public keys."""
    config = AppConfig.from_env()
    interactive = is_interactive(assume_yes)
    config = replace(
        config,
        USERNAME=username or config.USERNAME,
        KEY_SOURCE=key_source or config.KEY_SOURCE,
        LOG_FILE=log_file or config.LOG_FILE,
        CONFIGURE_SSHD=not skip_sshd,
        ASSUME_YES=not interactive,
        SUDO_NOPASSWD=nopasswd or config.SUDO_NOPASSWD,
    )
    logger = setup_logging(config.LOG_FILE, debug)
    console.print(create_header())

    logger.debug(f"Effective configuration: {config.to_dict()}")

    grant = PrivilegeGrant.from_flags(sudo, config.SUDO_NOPASSWD)
    if grant is PrivilegeGrant.SUDO_PASSWORD_REQUIRED and not interactive:
        logger.info("Non-interactive mode: using default sudo configuration (password required)")

    print_step(f"Provisioning '{config.USERNAME}' with {grant.describe()}")
    provisioner = Provisioner(
        SystemHost(config.COMMAND_TIMEOUT),
        config,
        confirm=ask if interactive else None,
        ask_nopasswd=ask if interactive else None,
    )
    finish(
        provisioner,
        lambda: provisioner.ensure_user_access(config.USERNAME, config.KEY_SOURCE, grant),
        "User Provisioning Status",
    )


@main.command("shell")
@click.option("--user", "username", default=None, help="Account to configure (default: $SUDO_USER)")
@click.option("--log-file", default=None, help="Log file path")
@click.option("--debug", is_flag=True, help="Enable debug logging")
def shell_cmd(username: Optional[str], log_file: Optional[str], debug: bool) -> None:
    """Install zsh, tmux, ranger, fzf and the shared dotfiles."""
    config = AppConfig.from_env()
    config = replace(config, LOG_FILE=log_file or config.LOG_FILE)
    logger = setup_logging(config.LOG_FILE, debug)
    logger.debug(f"Effective configuration: {config.to_dict()}")
    console.print(create_header())

    target = username or default_shell_user()
    print_step(f"Setting up the terminal environment for '{target}'")
    environment = ShellEnvironment(SystemHost(config.COMMAND_TIMEOUT), config)
    finish(environment, lambda: environment.setup(target), "Terminal Setup Status")


if __name__ == "__main__":
    main()
