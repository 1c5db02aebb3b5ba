from typing import Optional

import click
from botocore.exceptions import ClientError
from github import GithubException

from dockerfile_image_update.cli import cli, click_coroutine, pass_runtime, update_options
from dockerfile_image_update.pipelines.common import (ProcessingFailure, UpdateImagePipeline, UpdateOptions,
                                                      run_with_timeout)
from dockerfile_image_update.runtime import Runtime
from dockerfile_image_update.stores import initialize_image_tag_store


class ChildPipeline:
    """ Updates an image to an explicit tag in a single repository """
    def __init__(self, runtime: Runtime, repo_name: str, image: str, tag: str, options: UpdateOptions,
                 store: Optional[str] = None, gh=None, s3_client=None):
        self.runtime = runtime
        self.repo_name = repo_name
        self.image = image
        self.tag = tag
        self.store = store
        self.options = options
        self.logger = runtime.logger
        self.gh = gh or runtime.new_github_client()
        self.s3_client = s3_client

    async def update_store(self):
        if not self.store:
            return
        if self.runtime.dry_run:
            self.logger.warning("[DRY RUN] Would have updated store %s with %s:%s", self.store, self.image, self.tag)
            return
        s3_client = self.s3_client
        if s3_client is None and self.store.startswith("s3://"):
            s3_client = self.runtime.new_s3_client()
        try:
            image_tag_store = initialize_image_tag_store(self.gh, self.store, s3_client=s3_client)
            await image_tag_store.update_store(self.image, self.tag)
        except (GithubException, ClientError, OSError) as e:
            # the repository is still updated with the forced tag
            self.logger.error("Could not update image tag store %s: %s", self.store, e)

    async def run(self):
        await self.update_store()
        pipeline = UpdateImagePipeline(self.runtime, self.gh, self.options)
        await pipeline.update_child(self.repo_name, self.image, self.tag)
        pipeline.report()


@cli.command("child", short_help="Update an image in a single repository")
@click.argument("git_repo")
@click.argument("image")
@click.argument("forced_tag")
@click.option("--store", "-s", metavar="STORE", default=None,
              help="Also record FORCED_TAG as the latest tag of IMAGE in this image tag store")
@update_options
@pass_runtime
@click_coroutine
async def child(runtime: Runtime, git_repo: str, image: str, forced_tag: str, store: Optional[str], **kwargs):
    """
    Forks GIT_REPO (owner/name), changes every reference to IMAGE to FORCED_TAG and opens a pull request.
    """
    options = UpdateOptions.from_cli(runtime, **kwargs)
    try:
        await run_with_timeout(ChildPipeline(runtime, git_repo, image, forced_tag, options, store=store).run(),
                               options.timeout)
    except ProcessingFailure as e:
        raise click.ClickException(str(e)) from e
