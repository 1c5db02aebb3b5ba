"""
Image tag stores: persistent image -> latest tag mappings that drive bulk updates.

Two backends exist. A Git store is a GitHub repository of the authenticated user holding a `store.json` file.
An S3 store is a bucket with one object per image, whose body is the tag.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import boto3
from botocore.exceptions import ClientError
from github import UnknownObjectException
from github.Repository import Repository

from dockerfile_image_update import constants
from dockerfile_image_update.github_client import GitHubClient

_LOGGER = logging.getLogger(__name__)

S3_SCHEME = "s3"


@dataclass(frozen=True)
class ImageTagStoreContent:
    image: str
    tag: str


class ImageTagStore(ABC):
    @abstractmethod
    async def update_store(self, image: str, tag: str):
        pass

    @abstractmethod
    async def get_store_content(self) -> List[ImageTagStoreContent]:
        pass


class GitHubJsonStore(ImageTagStore):
    """ A `store.json` file of the form {"images": {image: tag}} in the repository `<login>/<store>` """
    def __init__(self, gh: GitHubClient, store: Optional[str]):
        self.gh = gh
        self.store = store

    async def _get_store_repo(self) -> Repository:
        login = await self.gh.get_login()
        return await self.gh.get_repo(f"{login}/{self.store}")

    @staticmethod
    def modify_json(data: Any, image: str, tag: str) -> str:
        if not isinstance(data, dict):
            data = {}
        images = data.get("images")
        if not isinstance(images, dict):
            images = data["images"] = {}
        images[image] = tag
        return json.dumps(data, indent=2)

    def _update_store_on_github(self, repo: Repository, image: str, tag: str):
        try:
            repo.get_contents(constants.STORE_JSON_FILE)
        except UnknownObjectException:
            repo.create_file(constants.STORE_JSON_FILE, "initializing store", "")
        latest_commit = repo.get_branch(repo.default_branch).commit.sha
        _LOGGER.info("Loading image store at commit %s", latest_commit)
        content = repo.get_contents(constants.STORE_JSON_FILE, ref=latest_commit)
        try:
            data = json.loads(content.decoded_content or b"null")
        except ValueError:
            _LOGGER.warning("Not a JSON format store. Clearing and rewriting as JSON...")
            data = None
        repo.update_file(constants.STORE_JSON_FILE, f"Updated image {image} with tag {tag}.\n@rev none@",
                         self.modify_json(data, image, tag), content.sha, branch=repo.default_branch)

    async def update_store(self, image: str, tag: str):
        if not self.store:
            _LOGGER.info("Image tag store cannot be empty. Skipping store update...")
            return
        _LOGGER.info("Updating store: %s with image: %s tag: %s...", self.store, image, tag)
        try:
            repo = await self._get_store_repo()
        except UnknownObjectException:
            repo = await self.gh.create_public_repo(self.store)
        await asyncio.to_thread(self._update_store_on_github, repo, image, tag)

    async def get_store_content(self) -> List[ImageTagStoreContent]:
        repo = await self._get_store_repo()
        content = await self.gh.try_retrieving_content(repo, constants.STORE_JSON_FILE, repo.default_branch)
        if content is None:
            return []
        try:
            data = json.loads(content.decoded_content)
        except ValueError:
            _LOGGER.warning("Not a JSON format store.")
            return []
        images: Dict[str, str] = data.get("images") if isinstance(data, dict) else None
        if not isinstance(images, dict):
            _LOGGER.warning("Store %s has no images", self.store)
            return []
        return [ImageTagStoreContent(image, str(tag)) for image, tag in images.items()]


class S3BackedImageTagStore(ImageTagStore):
    """ One object per image in an S3 bucket; the key is the image name and the body is the tag """
    def __init__(self, s3_client, bucket: str):
        self.s3 = s3_client
        self.bucket = bucket

    def _check_bucket(self):
        try:
            self.s3.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchBucket"):
                raise IOError(f"The S3 bucket with name {self.bucket} does not exist. Cannot proceed.") from e
            raise

    def _update_store(self, image: str, tag: str):
        self._check_bucket()
        self.s3.put_object(Bucket=self.bucket, Key=image, Body=tag.encode("utf-8"))

    async def update_store(self, image: str, tag: str):
        _LOGGER.info("Updating store: %s with image: %s tag: %s...", self.bucket, image, tag)
        await asyncio.to_thread(self._update_store, image, tag)

    def _get_store_content(self) -> List[ImageTagStoreContent]:
        objects = []
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket):
            objects.extend(page.get("Contents", []))
        # most recently updated images are processed first
        objects.sort(key=lambda o: o["LastModified"], reverse=True)
        contents = []
        for obj in objects:
            body = self.s3.get_object(Bucket=self.bucket, Key=obj["Key"])["Body"]
            contents.append(ImageTagStoreContent(obj["Key"], body.read().decode("utf-8").strip()))
        return contents

    async def get_store_content(self) -> List[ImageTagStoreContent]:
        return await asyncio.to_thread(self._get_store_content)


def initialize_image_tag_store(gh: GitHubClient, store: str, s3_client=None) -> ImageTagStore:
    """ `s3://<bucket>` selects the S3 store; anything else names a GitHub repository """
    uri = urlparse(store)
    if uri.scheme == S3_SCHEME:
        _LOGGER.info("The underlying data store is S3.")
        return S3BackedImageTagStore(s3_client or boto3.client("s3"), uri.netloc)
    _LOGGER.info("The underlying data store is a Git repository.")
    return GitHubJsonStore(gh, store)
