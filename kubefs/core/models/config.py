from __future__ import annotations

import logging
import os
import sys
from typing import Any, Optional

import pydantic as pd
from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.console import Console
from rich.logging import RichHandler

logger = logging.getLogger("kubefs")


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="KUBEFS_")

    quiet: bool = pd.Field(False)
    verbose: bool = pd.Field(False)
    log_to_stderr: bool = pd.Field(False)
    width: Optional[int] = pd.Field(None, ge=1)

    # Kubernetes Settings
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    impersonate_user: Optional[str] = None
    impersonate_group: Optional[str] = None
    request_timeout: float = pd.Field(10.0, gt=0)  # in seconds, per API request
    fetch_attempts: int = pd.Field(1, ge=1)

    # Filesystem Settings
    fsname: str = pd.Field("kubefs")
    attr_timeout: float = pd.Field(1.0, ge=0)  # in seconds
    entry_timeout: float = pd.Field(1.0, ge=0)  # in seconds
    uid: int = pd.Field(default_factory=os.getuid, ge=0)
    gid: int = pd.Field(default_factory=os.getgid, ge=0)
    debug_fuse: bool = pd.Field(False)

    # Threading settings
    max_workers: int = pd.Field(1, ge=1)

    # Internal
    inside_cluster: bool = False
    _logging_console: Optional[Console] = pd.PrivateAttr(None)

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)

    @pd.field_validator("fsname")
    @classmethod
    def validate_fsname(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("--fsname can not be empty")

        # NOTE: mount options are comma separated, so a comma would split the option in two
        if "," in v:
            raise ValueError("--fsname can not contain a comma")

        return v

    @property
    def mount_options(self) -> set[str]:
        return {"ro", "auto_unmount", f"fsname={self.fsname}"}

    @property
    def logging_console(self) -> Console:
        if getattr(self, "_logging_console") is None:
            self._logging_console = Console(file=sys.stderr if self.log_to_stderr else sys.stdout, width=self.width)
        return self._logging_console

    def load_kubeconfig(self) -> None:
        try:
            config.load_kube_config(config_file=self.kubeconfig, context=self.context)
            self.inside_cluster = False
        except ConfigException:
            config.load_incluster_config()
            self.inside_cluster = True

    def get_kube_client(self) -> Optional[client.ApiClient]:
        if self.context is None and self.impersonate_user is None and self.impersonate_group is None:
            # NOTE: None makes the kubernetes client use the configuration loaded by load_kubeconfig
            return None

        if self.inside_cluster:
            api_client = client.ApiClient()
        else:
            api_client = config.new_client_from_config(context=self.context, config_file=self.kubeconfig)
        if self.impersonate_user is not None:
            # trick copied from https://github.com/kubernetes-client/python/issues/362
            api_client.set_default_header("Impersonate-User", self.impersonate_user)
        if self.impersonate_group is not None:
            api_client.set_default_header("Impersonate-Group", self.impersonate_group)
        return api_client

    @staticmethod
    def set_config(config: Config) -> None:
        global _config

        _config = config
        logging.basicConfig(
            level="NOTSET",
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=config.logging_console)],
        )
        logging.getLogger("").setLevel(logging.CRITICAL)
        logger.setLevel(logging.DEBUG if config.verbose else logging.CRITICAL if config.quiet else logging.INFO)

    @staticmethod
    def get_config() -> Optional[Config]:
        return _config


# NOTE: This class is just a proxy for _config.
# Import settings from this module and use it like it is just a config object.
class _Settings:
    def __getattr__(self, name: str):
        if _config is None:
            raise AttributeError("Config is not set")

        return getattr(_config, name)


_config: Optional[Config] = None
settings: Config = _Settings()  # type: ignore
