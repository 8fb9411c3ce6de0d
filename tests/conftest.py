"""Shared fixtures: an in-memory host and a fake HTTP session."""

import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import pytest
import requests

from rpw_setup.config import AppConfig
from rpw_setup.errors import ExecutionError, ProvisioningError
from rpw_setup.host import Account, HostOperations

ED25519_KEY = (
    "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl rpw@laptop"
)
RSA_KEY = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC7vbqajDhA rpw@desktop"
KEY_URL = "https://keys.example.com/rpw.pub"


@dataclass
class FakeFile:
    content: str
    mode: int
    uid: Optional[int] = 0
    gid: Optional[int] = 0


@dataclass
class FakeDir:
    mode: int
    uid: Optional[int] = 0
    gid: Optional[int] = 0


class FakeHost(HostOperations):
    """HostOperations kept entirely in memory."""

    def __init__(self, superuser: bool = True) -> None:
        self.superuser = superuser
        self.files: Dict[str, FakeFile] = {}
        self.dirs: Dict[str, FakeDir] = {}
        self.accounts: Dict[str, Account] = {}
        self.groups: Dict[str, List[str]] = {}
        self.active_services: List[str] = []
        self.restarts: List[str] = []
        self.backups: List[str] = []
        self.commands: List[List[str]] = []
        self.failing_commands: List[List[str]] = []
        self.outputs: Dict[tuple, str] = {("which", "zsh"): "/usr/bin/zsh\n"}
        self.available_commands = {"visudo", "ranger", "zsh"}
        self.reject_sudoers = False
        self.fail_restart = False
        self.next_uid = 1000

    # helpers for tests
    def add_account(self, name: str, home: Optional[str] = None, shell: str = "/bin/bash") -> Account:
        uid = 0 if name == "root" else self.next_uid
        self.next_uid += 1
        home = home or ("/root" if name == "root" else f"/home/{name}")
        account = Account(name=name, uid=uid, gid=uid, home=home, shell=shell)
        self.accounts[name] = account
        self.dirs[home] = FakeDir(0o755, uid, uid)
        return account

    def put_file(self, path: str, content: str, mode: int = 0o644, uid: int = 0, gid: int = 0) -> None:
        self.files[path] = FakeFile(content, mode, uid, gid)

    # HostOperations
    def is_superuser(self) -> bool:
        return self.superuser

    def get_account(self, name: str) -> Optional[Account]:
        return self.accounts.get(name)

    def create_account(self, name: str, shell: str, home: str) -> Account:
        self.commands.append(["useradd", "-m", "-d", home, "-s", shell, name])
        if ["useradd"] in self.failing_commands:
            raise ProvisioningError(f"Failed to create user '{name}'")
        return self.add_account(name, home=home, shell=shell)

    def group_exists(self, group: str) -> bool:
        return group in self.groups

    def account_groups(self, name: str) -> List[str]:
        return [group for group, members in self.groups.items() if name in members]

    def add_to_group(self, name: str, group: str) -> None:
        self.groups[group].append(name)

    def set_login_shell(self, name: str, shell: str) -> None:
        self.run_command(["chsh", "-s", shell, name])
        self.accounts[name].shell = shell

    def path_exists(self, path: str) -> bool:
        return path in self.files or path in self.dirs

    def ensure_directory(
        self, path: str, mode: int, uid: Optional[int] = None, gid: Optional[int] = None
    ) -> bool:
        created = path not in self.dirs
        self.dirs[path] = FakeDir(mode, uid, gid)
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
        if validate is not None:
            tmp = f"{path}.tmp"
            self.files[tmp] = FakeFile(content, mode, uid, gid)
            try:
                validate(tmp)
            finally:
                del self.files[tmp]
        self.files[path] = FakeFile(content, mode, uid, gid)

    def read_file(self, path: str) -> Optional[str]:
        f = self.files.get(path)
        return None if f is None else f.content

    def file_mode(self, path: str) -> Optional[int]:
        f = self.files.get(path)
        return None if f is None else f.mode

    def backup_file(self, path: str) -> Optional[str]:
        if path not in self.files:
            return None
        backup = f"{path}.bak.{len(self.backups)}"
        original = self.files[path]
        self.files[backup] = FakeFile(original.content, original.mode, original.uid, original.gid)
        self.backups.append(backup)
        return backup

    def service_active(self, service: str) -> bool:
        return service in self.active_services

    def restart_service(self, service: str) -> None:
        if self.fail_restart:
            raise ExecutionError(f"Command failed (code 1): systemctl restart {service}")
        self.restarts.append(service)

    def validate_sudoers(self, path: str) -> None:
        if self.reject_sudoers:
            raise ProvisioningError(f"Sudoers syntax check failed for {path}")

    def command_exists(self, cmd: str) -> bool:
        return cmd in self.available_commands

    def run_command(
        self,
        cmd: List[str],
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        self.commands.append(list(cmd))
        for failing in self.failing_commands:
            if cmd[: len(failing)] == failing:
                raise ExecutionError(f"Command failed (code 1): {' '.join(cmd)}")
        return subprocess.CompletedProcess(cmd, 0, self.outputs.get(tuple(cmd), ""), "")


class FakeResponse:
    def __init__(self, content: bytes = b"", status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


class FakeSession:
    """requests-compatible ``get`` serving canned responses per URL."""

    def __init__(self, routes: Optional[Dict[str, object]] = None) -> None:
        self.routes = routes or {}
        self.calls: List[tuple] = []

    def get(self, url: str, timeout: Optional[int] = None) -> FakeResponse:
        self.calls.append((url, timeout))
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(b"Not Found", 404)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, str):
            return FakeResponse(route.encode("utf-8"))
        return route


@pytest.fixture
def host() -> FakeHost:
    fake = FakeHost()
    fake.dirs["/etc/sudoers.d"] = FakeDir(0o750)
    return fake


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(KEY_SOURCE=KEY_URL, ASSUME_YES=True)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession({KEY_URL: ED25519_KEY + "\n"})
