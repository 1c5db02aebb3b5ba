import click

from dockerfile_image_update.cli import cli, click_coroutine, pass_runtime, update_options
from dockerfile_image_update.pipelines.common import (REPOSITORY_ERRORS, ProcessingFailure, UpdateImagePipeline,
                                                      UpdateOptions, run_with_timeout)
from dockerfile_image_update.runtime import Runtime
from dockerfile_image_update.stores import initialize_image_tag_store


class ParentPipeline:
    """ Records a new tag for an image, then updates every repository referencing the image """
    def __init__(self, runtime: Runtime, image: str, tag: str, store: str, options: UpdateOptions,
                 gh=None, s3_client=None):
        self.runtime = runtime
        self.image = image
        self.tag = tag
        self.store = store
        self.options = options
        self.logger = runtime.logger
        self.gh = gh or runtime.new_github_client()
        self.s3_client = s3_client

    async def update_store(self):
        if self.runtime.dry_run:
            self.logger.warning("[DRY RUN] Would have updated store %s with %s:%s", self.store, self.image, self.tag)
            return
        s3_client = self.s3_client
        if s3_client is None and self.store.startswith("s3://"):
            s3_client = self.runtime.new_s3_client()
        image_tag_store = initialize_image_tag_store(self.gh, self.store, s3_client=s3_client)
        await image_tag_store.update_store(self.image, self.tag)

    async def run(self):
        self.logger.info("Updating store...")
        await self.update_store()

        if self.options.skip_pr_creation:
            self.logger.info("Since the flag skip_pr_creation is set to True, skipping the creation of pull requests")
            return

        pipeline = UpdateImagePipeline(self.runtime, self.gh, self.options)
        try:
            await pipeline.update_image(self.image, self.tag)
        except REPOSITORY_ERRORS as e:
            self.logger.error("Error while processing %s:%s: %s", self.image, self.tag, e)
            pipeline._record_error(self.image, self.tag, None, str(e))
        pipeline.report()


@cli.command("parent", short_help="Update an image in every repository that uses it")
@click.argument("image")
@click.argument("tag")
@click.argument("store")
@update_options
@pass_runtime
@click_coroutine
async def parent(runtime: Runtime, image: str, tag: str, store: str, **kwargs):
    """
    Records TAG as the latest tag of IMAGE in STORE and opens pull requests in every repository whose
    Dockerfiles or docker-compose files use an older tag of IMAGE.
    """
    options = UpdateOptions.from_cli(runtime, **kwargs)
    try:
        await run_with_timeout(ParentPipeline(runtime, image, tag, store, options).run(), options.timeout)
    except ProcessingFailure as e:
        raise click.ClickException(str(e)) from e
