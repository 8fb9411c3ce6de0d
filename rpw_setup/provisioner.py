"""
Account provisioning.

The Provisioner walks a fixed sequence of ensure-or-skip steps for one account:

    account -> SSH directory -> authorized_keys -> privileges -> sshd_config

Every step checks the current state before changing anything, so running it
again converges on the same result. Fatal problems raise a SetupError subclass
and stop the run; ConfigWarning is recorded and the run continues.
"""

import logging
import os
from typing import Any, Callable, Optional

from rpw_setup.config import AppConfig
from rpw_setup.errors import (
    ConfigWarning,
    ExecutionError,
    PermissionError,
    ProvisioningError,
    SetupError,
)
from rpw_setup.host import Account, HostOperations
from rpw_setup.keys import load_authorized_keys
from rpw_setup.privilege import SUDOERS_MODE, PrivilegeGrant, sudoers_line
from rpw_setup.sshd import harden_sshd_config
from rpw_setup.steps import ProvisionResult, StepOutcome, StepRunner

logger = logging.getLogger(__name__)

SSH_DIR_MODE = 0o700
AUTHORIZED_KEYS_MODE = 0o600


class Provisioner(StepRunner):
    """
    Ensure SSH key access (and optionally sudo) for one account.

    Args:
        host: Host operations capability
        config: Application configuration
        confirm: Asked before touching an account that already exists unless
            ``config.ASSUME_YES`` is set; returning False ends the run with
            no changes
        ask_nopasswd: Asked right before the privilege step when the grant is
            SUDO_PASSWORD_REQUIRED; True upgrades it to SUDO_NOPASSWD
        session: requests-compatible object used to download keys
    """

    def __init__(
        self,
        host: HostOperations,
        config: Optional[AppConfig] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        session: Optional[Any] = None,
        ask_nopasswd: Optional[Callable[[str], bool]] = None,
    ) -> None:
        super().__init__()
        self.host = host
        self.config = config or AppConfig()
        self.confirm = confirm
        self.ask_nopasswd = ask_nopasswd
        self.session = session

    # ------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------
    def ensure_user_access(
        self,
        account_name: Optional[str] = None,
        key_source: Optional[str] = None,
        grant: PrivilegeGrant = PrivilegeGrant.NONE,
    ) -> ProvisionResult:
        """
        Provision SSH key access for an account.

        Args:
            account_name: Account to provision (defaults to config.USERNAME)
            key_source: URL or path of the public keys (defaults to config.KEY_SOURCE)
            grant: Requested sudo privileges

        Returns:
            ProvisionResult describing every step

        Raises:
            PermissionError: If not running as root
            ProvisioningError: If the account or sudo setup fails
            FetchError: If the keys cannot be fetched or are empty
        """
        name = account_name or self.config.USERNAME
        source = key_source or self.config.KEY_SOURCE
        self.result = ProvisionResult()

        self._run_step("preflight", self._check_superuser)

        account = self.host.get_account(name)
        if account is not None and not self._confirm_update(name):
            logger.info("Exiting without making changes")
            self.result.record("account", "skipped", f"User '{name}' exists; update declined")
            self.result.summary = ["No changes made."]
            return self.result

        account = self._ensure_account(name, account)
        ssh_dir = os.path.join(account.home, ".ssh")
        self._run_step("ssh_directory", self._ensure_ssh_dir, account, ssh_dir)
        _, keys_message = self._run_step(
            "authorized_keys", self._install_keys, account, ssh_dir, source
        )
        if grant is PrivilegeGrant.SUDO_PASSWORD_REQUIRED and self.ask_nopasswd is not None:
            if self.ask_nopasswd("Do you want passwordless sudo access (NOPASSWD)?"):
                grant = PrivilegeGrant.SUDO_NOPASSWD
        self._run_step("privileges", self._apply_grant, account, grant)
        if self.config.CONFIGURE_SSHD:
            self._run_step("sshd_config", self._configure_sshd)
        else:
            self.result.record("sshd_config", "skipped", "SSH daemon configuration disabled")

        self.result.summary = [
            f"User: {name}",
            f"SSH Directory: {ssh_dir}",
            f"Public Keys: {keys_message}",
            f"Sudo Access: {grant.describe()}",
            f"The user can now log in using: ssh {name}@<server>",
        ]
        logger.info("Setup completed successfully!")
        return self.result

    # ------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------
    def _check_superuser(self) -> StepOutcome:
        if not self.host.is_superuser():
            raise PermissionError("This script must be run as root or with sudo")
        return "success", "Root privileges confirmed"

    def _confirm_update(self, name: str) -> bool:
        logger.warning(f"User '{name}' already exists")
        if self.config.ASSUME_YES or self.confirm is None:
            logger.info(f"Updating SSH keys and sudo privileges for existing user '{name}'")
            return True
        return self.confirm(
            f"Do you want to update SSH keys and sudo privileges for existing user '{name}'?"
        )

    def _ensure_account(self, name: str, account: Optional[Account]) -> Account:
        if account is not None:
            self.result.record("account", "skipped", f"User '{name}' already exists")
            return account
        logger.info(f"Creating new user '{name}'...")
        try:
            account = self.host.create_account(
                name, self.config.LOGIN_SHELL, self.config.home_dir(name)
            )
        except SetupError as e:
            logger.error(f"Failed to create user '{name}'")
            self.result.record("account", "failed", str(e))
            raise
        logger.info(f"User '{name}' created successfully")
        self.result.record("account", "success", f"User '{name}' created")
        return account

    def _ensure_ssh_dir(self, account: Account, ssh_dir: str) -> StepOutcome:
        logger.info("Setting up SSH directory...")
        created = self.host.ensure_directory(
            ssh_dir, SSH_DIR_MODE, uid=account.uid, gid=account.gid
        )
        return "success", f"{'Created' if created else 'Verified'} {ssh_dir} (0700)"

    def _install_keys(self, account: Account, ssh_dir: str, source: str) -> StepOutcome:
        keys = load_authorized_keys(source, self.config.FETCH_TIMEOUT, self.session)
        auth_file = os.path.join(ssh_dir, "authorized_keys")
        content = keys.render()
        unchanged = self.host.read_file(auth_file) == content
        # rewritten even when unchanged so mode and owner are always reset
        self.host.write_file(
            auth_file, content, AUTHORIZED_KEYS_MODE, uid=account.uid, gid=account.gid
        )
        plural = "s" if keys.key_count != 1 else ""
        if unchanged:
            logger.info("SSH public key already up to date")
            return "success", f"{keys.key_count} key{plural} already installed"
        logger.info("SSH public key installed successfully")
        return "success", f"{keys.key_count} key{plural} installed from {source}"

    def _apply_grant(self, account: Account, grant: PrivilegeGrant) -> StepOutcome:
        name = account.name
        sudoers_file = self.config.sudoers_file(name)
        if not grant.wants_sudo:
            existing = [g for g in self.config.PRIVILEGE_GROUPS if g in self.host.account_groups(name)]
            if self.host.path_exists(sudoers_file):
                existing.append(sudoers_file)
            if existing:
                return "skipped", f"No sudo requested; existing grants left in place: {', '.join(existing)}"
            return "skipped", "No sudo privileges requested"

        logger.info("Configuring sudo privileges...")
        group = next((g for g in self.config.PRIVILEGE_GROUPS if self.host.group_exists(g)), None)
        if group is None:
            if not self.host.path_exists(self.config.SUDOERS_DIR):
                raise ProvisioningError(
                    f"No sudo/wheel group and {self.config.SUDOERS_DIR} does not exist"
                )
            self._write_sudoers(sudoers_file, name, grant)
            logger.info(f"Added '{name}' to sudoers file")
            return "success", f"{grant.describe()} via {sudoers_file}"

        if group in self.host.account_groups(name):
            logger.info(f"'{name}' is already in the {group} group")
        else:
            self.host.add_to_group(name, group)
            logger.info(f"Added '{name}' to {group} group")

        if grant.nopasswd:
            if not self.host.path_exists(self.config.SUDOERS_DIR):
                raise ConfigWarning(
                    f"Cannot configure NOPASSWD: {self.config.SUDOERS_DIR} doesn't exist; "
                    f"'{name}' is in the {group} group but will need a password for sudo"
                )
            self._write_sudoers(sudoers_file, name, grant)
            logger.info("Configured passwordless sudo (NOPASSWD)")
            return "success", f"{group} group + NOPASSWD via {sudoers_file}"

        if self.host.path_exists(sudoers_file):
            # an earlier NOPASSWD run left a drop-in behind
            self._write_sudoers(sudoers_file, name, grant)
            return "success", f"{group} group; {sudoers_file} set to password required"
        return "success", f"{group} group (password required)"

    def _write_sudoers(self, path: str, name: str, grant: PrivilegeGrant) -> None:
        self.host.write_file(
            path,
            sudoers_line(name, grant),
            SUDOERS_MODE,
            uid=0,
            gid=0,
            validate=self.host.validate_sudoers,
        )

    def _configure_sshd(self) -> StepOutcome:
        path = self.config.SSHD_CONFIG
        try:
            content = self.host.read_file(path)
        except UnicodeError as e:
            raise ConfigWarning(f"Cannot decode {path}: {e}. Skipping SSH configuration.") from e
        if content is None:
            raise ConfigWarning(
                f"SSH config file not found at {path}. Skipping SSH configuration."
            )
        edit = harden_sshd_config(content)
        if not edit.changed:
            return "skipped", "SSH daemon already configured for key authentication"

        for change in edit.changes:
            logger.info(f"{change} in SSH config...")
        self.host.backup_file(path)
        mode = self.host.file_mode(path)
        self.host.write_file(path, edit.content, 0o644 if mode is None else mode, uid=0, gid=0)

        for service in self.config.SSHD_SERVICES:
            if self.host.service_active(service):
                logger.info("Restarting SSH service...")
                try:
                    self.host.restart_service(service)
                except ExecutionError as e:
                    raise ConfigWarning(f"Failed to restart {service}: {e}") from e
                return "success", f"{len(edit.changes)} directive(s) updated; {service} restarted"
        raise ConfigWarning(
            "SSH config updated but the SSH service doesn't appear to be running. "
            "Please start it manually."
        )
