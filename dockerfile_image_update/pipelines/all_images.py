import click

from dockerfile_image_update.cli import cli, click_coroutine, pass_runtime, update_options
from dockerfile_image_update.pipelines.common import (REPOSITORY_ERRORS, ProcessingFailure, UpdateImagePipeline,
                                                      UpdateOptions, run_with_timeout)
from dockerfile_image_update.runtime import Runtime
from dockerfile_image_update.stores import initialize_image_tag_store


class AllPipeline:
    """ Updates every image recorded in a tag store """
    def __init__(self, runtime: Runtime, store: str, options: UpdateOptions, gh=None, s3_client=None):
        self.runtime = runtime
        self.store = store
        self.options = options
        self.logger = runtime.logger
        self.gh = gh or runtime.new_github_client()
        self.s3_client = s3_client
        self.pipeline = UpdateImagePipeline(runtime, self.gh, options)

    async def run(self):
        s3_client = self.s3_client
        if s3_client is None and self.store.startswith("s3://"):
            s3_client = self.runtime.new_s3_client()
        image_tag_store = initialize_image_tag_store(self.gh, self.store, s3_client=s3_client)
        contents = await image_tag_store.get_store_content()
        self.logger.info("Found %s image(s) in store %s", len(contents), self.store)

        for content in contents:
            self.logger.info("Updating %s to %s", content.image, content.tag)
            try:
                await self.pipeline.update_image(content.image, content.tag)
            except REPOSITORY_ERRORS as e:
                # e.g. the search itself failed; other images are still processed
                self.logger.error("Error while processing %s:%s: %s", content.image, content.tag, e)
                self.pipeline._record_error(content.image, content.tag, None, str(e))
            except Exception as e:
                self.logger.exception("Unexpected error while processing %s:%s", content.image, content.tag)
                self.pipeline._record_error(content.image, content.tag, None, f"{type(e).__name__}: {e}")

        self.pipeline.report()


@cli.command("all", short_help="Update every image of an image tag store")
@click.argument("store")
@update_options
@pass_runtime
@click_coroutine
async def all_images(runtime: Runtime, store: str, **kwargs):
    """
    Updates the base images of every repository referencing an image recorded in STORE.

    STORE is the name of a GitHub repository of the authenticated user holding store.json,
    or s3://<bucket> for an S3 backed store.
    """
    options = UpdateOptions.from_cli(runtime, **kwargs)
    try:
        await run_with_timeout(AllPipeline(runtime, store, options).run(), options.timeout)
    except ProcessingFailure as e:
        raise click.ClickException(str(e)) from e
