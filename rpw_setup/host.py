"""
Host operations.

Everything that touches global host state (the user database, the filesystem,
services, external commands) goes through a HostOperations object so that the
provisioning logic can run against a fake host in tests.
"""

import datetime
import grp
import logging
import os
import pwd
import shutil
import stat
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from rpw_setup.errors import ExecutionError, ProvisioningError

logger = logging.getLogger(__name__)


@dataclass
class Account:
    name: str
    uid: int
    gid: int
    home: str
    shell: str


class HostOperations(ABC):
    """Capability interface over host-global state."""

    @abstractmethod
    def is_superuser(self) -> bool: ...

    @abstractmethod
    def get_account(self, name: str) -> Optional[Account]:
        """Return the account record, or None when the account does not exist."""

    @abstractmethod
    def create_account(self, name: str, shell: str, home: str) -> Account:
        """
        Create an account with a home directory and login shell.

        Raises:
            ProvisioningError: If the account cannot be created
        """

    @abstractmethod
    def group_exists(self, group: str) -> bool: ...

    @abstractmethod
    def account_groups(self, name: str) -> List[str]: ...

    @abstractmethod
    def add_to_group(self, name: str, group: str) -> None: ...

    @abstractmethod
    def set_login_shell(self, name: str, shell: str) -> None: ...

    @abstractmethod
    def path_exists(self, path: str) -> bool: ...

    @abstractmethod
    def ensure_directory(
        self, path: str, mode: int, uid: Optional[int] = None, gid: Optional[int] = None
    ) -> bool:
        """
        Ensure a directory exists with the given mode and ownership.

        Returns:
            True if the directory had to be created
        """

    @abstractmethod
    def write_file(
        self,
        path: str,
        content: str,
        mode: int,
        uid: Optional[int] = None,
        gid: Optional[int] = None,
        validate: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Replace a file atomically, with mode and ownership set before it appears.

        Args:
            validate: Called with the path of the fully written temporary
                file; raising aborts the write and leaves the target untouched.
        """

    @abstractmethod
    def read_file(self, path: str) -> Optional[str]:
        """
        Return the file content, or None when the file does not exist.

        Bytes that are not valid UTF-8 must survive a read followed by a
        write_file of the same text unchanged.
        """

    @abstractmethod
    def file_mode(self, path: str) -> Optional[int]:
        """Permission bits of an existing file, or None if it does not exist."""

    @abstractmethod
    def backup_file(self, path: str) -> Optional[str]: ...

    @abstractmethod
    def service_active(self, service: str) -> bool: ...

    @abstractmethod
    def restart_service(self, service: str) -> None: ...

    @abstractmethod
    def validate_sudoers(self, path: str) -> None:
        """
        Check a sudoers file for syntax errors.

        Raises:
            ProvisioningError: If the file does not parse
        """

    @abstractmethod
    def command_exists(self, cmd: str) -> bool: ...

    @abstractmethod
    def run_command(
        self,
        cmd: List[str],
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> subprocess.CompletedProcess: ...


class SystemHost(HostOperations):
    """HostOperations backed by the running system."""

    def __init__(self, timeout: int = 300) -> None:
        self.timeout = timeout

    # ------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------
    def run_command(
        self,
        cmd: List[str],
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """
        Execute a system command.

        Args:
            cmd: Command to execute
            check: Whether to raise on non-zero exit
            env: Extra environment variables merged over os.environ
            cwd: Working directory

        Returns:
            subprocess.CompletedProcess object

        Raises:
            ExecutionError: If the command fails, times out or is missing
        """
        cmd_str = " ".join(cmd)
        logger.debug(f"Executing: {cmd_str}")
        full_env = os.environ.copy()
        if env:
            full_env.update(env)
        try:
            return subprocess.run(
                cmd,
                env=full_env,
                cwd=cwd,
                check=check,
                text=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            error_msg = f"Command failed (code {e.returncode}): {cmd_str}"
            if e.stderr:
                error_msg += f"\nError: {e.stderr.strip()}"
            raise ExecutionError(error_msg) from e
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(
                f"Command timed out after {self.timeout} seconds: {cmd_str}"
            ) from e
        except OSError as e:
            raise ExecutionError(f"Error executing command: {cmd_str}: {e}") from e

    def command_exists(self, cmd: str) -> bool:
        return shutil.which(cmd) is not None

    # ------------------------------------------------------------
    # Users and groups
    # ------------------------------------------------------------
    def is_superuser(self) -> bool:
        return os.geteuid() == 0

    def get_account(self, name: str) -> Optional[Account]:
        try:
            pw = pwd.getpwnam(name)
        except KeyError:
            return None
        return Account(
            name=pw.pw_name, uid=pw.pw_uid, gid=pw.pw_gid, home=pw.pw_dir, shell=pw.pw_shell
        )

    def create_account(self, name: str, shell: str, home: str) -> Account:
        try:
            self.run_command(["useradd", "-m", "-d", home, "-s", shell, name])
        except ExecutionError as e:
            raise ProvisioningError(f"Failed to create user '{name}': {e}") from e
        account = self.get_account(name)
        if account is None:
            raise ProvisioningError(f"User '{name}' not found after useradd")
        return account

    def group_exists(self, group: str) -> bool:
        try:
            grp.getgrnam(group)
            return True
        except KeyError:
            return False

    def account_groups(self, name: str) -> List[str]:
        groups = [g.gr_name for g in grp.getgrall() if name in g.gr_mem]
        account = self.get_account(name)
        if account is not None:
            try:
                primary = grp.getgrgid(account.gid).gr_name
            except KeyError:
                primary = None
            if primary and primary not in groups:
                groups.insert(0, primary)
        return groups

    def add_to_group(self, name: str, group: str) -> None:
        try:
            self.run_command(["usermod", "-aG", group, name])
        except ExecutionError as e:
            raise ProvisioningError(f"Failed to add '{name}' to group '{group}': {e}") from e

    def set_login_shell(self, name: str, shell: str) -> None:
        self.run_command(["chsh", "-s", shell, name])

    # ------------------------------------------------------------
    # Files
    # ------------------------------------------------------------
    def path_exists(self, path: str) -> bool:
        return os.path.exists(path)

    def ensure_directory(
        self, path: str, mode: int, uid: Optional[int] = None, gid: Optional[int] = None
    ) -> bool:
        created = not os.path.isdir(path)
        os.makedirs(path, mode=mode, exist_ok=True)
        # makedirs is subject to the umask and ignores mode for existing dirs
        os.chmod(path, mode)
        if uid is not None or gid is not None:
            os.chown(path, -1 if uid is None else uid, -1 if gid is None else gid)
        logger.debug(f"Ensured directory: {path} ({oct(mode)})")
        return created

    def write_file(
        self,
        path: str,
        content: str,
        mode: int,
        uid: Optional[int] = None,
        gid: Optional[int] = None,
        validate: Optional[Callable[[str], None]] = None,
    ) -> None:
        directory = os.path.dirname(path) or "."
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".rpw_setup_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape") as f:
                f.write(content)
                f.flush()
                os.fchmod(f.fileno(), mode)
                if uid is not None or gid is not None:
                    os.fchown(f.fileno(), -1 if uid is None else uid, -1 if gid is None else gid)
                os.fsync(f.fileno())
            if validate is not None:
                validate(tmp_path)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.debug(f"Wrote {path} ({oct(mode)})")

    def read_file(self, path: str) -> Optional[str]:
        # surrogateescape keeps stray Latin-1 bytes in comments round-trippable
        try:
            with open(path, encoding="utf-8", errors="surrogateescape") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def file_mode(self, path: str) -> Optional[int]:
        try:
            return stat.S_IMODE(os.stat(path).st_mode)
        except FileNotFoundError:
            return None

    def backup_file(self, path: str) -> Optional[str]:
        """
        Backup a file with a timestamp suffix.

        Returns:
            Path to the backup file, or None if there was nothing to back up
        """
        if not os.path.isfile(path):
            return None
        ts = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
        backup = f"{path}.bak.{ts}"
        shutil.copy2(path, backup)
        logger.info(f"Backed up {path} to {backup}")
        return backup

    # ------------------------------------------------------------
    # Services
    # ------------------------------------------------------------
    def service_active(self, service: str) -> bool:
        try:
            result = self.run_command(["systemctl", "is-active", "--quiet", service], check=False)
        except ExecutionError:
            return False
        return result.returncode == 0

    def restart_service(self, service: str) -> None:
        self.run_command(["systemctl", "restart", service])

    def validate_sudoers(self, path: str) -> None:
        if not self.command_exists("visudo"):
            logger.debug("visudo not available; skipping sudoers syntax check")
            return
        try:
            self.run_command(["visudo", "-cf", path])
        except ExecutionError as e:
            raise ProvisioningError(f"Sudoers syntax check failed for {path}: {e}") from e

