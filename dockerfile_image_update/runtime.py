import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
import tomli

from dockerfile_image_update.github_client import GitHubClient


class Runtime:
    def __init__(self, config: Dict[str, Any], working_dir: Path, dry_run: bool, github_api_url: Optional[str] = None):
        self.config = config
        self.working_dir = working_dir
        self.dry_run = dry_run
        self.github_api_url = github_api_url or os.environ.get("git_api_url") or config.get("github", {}).get("api_url")
        self.logger = self.init_logger()

        # checks working_dir
        if not self.working_dir.is_dir():
            raise IOError(f"Working directory {self.working_dir.absolute()} doesn't exist.")

    @staticmethod
    def init_logger():
        root_logger = logging.getLogger()
        if root_logger.handlers:
            root_logger.removeHandler(root_logger.handlers[0])
        logger = logging.getLogger('dockerfile_image_update')
        if not logger.handlers:
            formatter = logging.Formatter('%(asctime)s %(name)s:%(levelname)s %(message)s')
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        return logger

    @classmethod
    def from_config_file(cls, config_filename: Path, working_dir: Path, dry_run: bool, must_exist: bool = True,
                         **kwargs):
        """ Loads a TOML config file. If `must_exist` is False, a missing file means an empty config. """
        config_filename = Path(config_filename).expanduser()
        if not must_exist and not config_filename.exists():
            return Runtime(config={}, working_dir=working_dir, dry_run=dry_run, **kwargs)
        with open(config_filename, "rb") as config_file:
            config_dict = tomli.load(config_file)
        return Runtime(config=config_dict, working_dir=working_dir, dry_run=dry_run, **kwargs)

    @property
    def defaults(self) -> Dict[str, Any]:
        return self.config.get("defaults", {})

    def new_github_client(self, token: Optional[str] = None) -> GitHubClient:
        if not token:
            token = os.environ.get("git_api_token") or os.environ.get("GITHUB_TOKEN")
            if not token:
                raise ValueError("git_api_token environment variable is not set")
        return GitHubClient.from_token(token, api_url=self.github_api_url)

    def new_s3_client(self):
        s3_config = self.config.get("s3", {})
        kwargs = {}
        if s3_config.get("region"):
            kwargs["region_name"] = s3_config["region"]
        if s3_config.get("endpoint_url"):
            kwargs["endpoint_url"] = s3_config["endpoint_url"]
        return boto3.client("s3", **kwargs)
