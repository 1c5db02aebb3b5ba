import os
import tempfile
import unittest
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from dockerfile_image_update.__main__ import main  # noqa: F401  registers the commands
from dockerfile_image_update.cli import cli
from dockerfile_image_update.pipelines.common import ProcessingError, ProcessingFailure


class TestCli(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.config = os.path.join(self.tmpdir.name, "dfiu.toml")
        with open(self.config, "w") as f:
            f.write('[defaults]\norg = "defaultorg"\n')

    def invoke(self, args):
        return self.runner.invoke(cli, ["--config", self.config, "--working-dir", self.tmpdir.name] + args)

    def test_version(self):
        result = self.runner.invoke(cli, ["--version"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("dockerfile-image-update v", result.output)

    def test_commands(self):
        result = self.runner.invoke(cli, ["--help"])
        self.assertEqual(result.exit_code, 0)
        for command in ("all", "parent", "child"):
            self.assertIn(command, result.output)

    def test_invalid_rate_limit_spec(self):
        result = self.invoke(["parent", "base", "2.0", "store", "--rate-limit-spec", "bogus"])
        self.assertEqual(result.exit_code, 2)
        self.assertIn("Unexpected format or unit", result.output)

    @patch("dockerfile_image_update.pipelines.parent.ParentPipeline")
    def test_parent(self, pipeline):
        pipeline.return_value.run = AsyncMock()
        result = self.invoke(["--dry-run", "parent", "base", "2.0", "store", "-b", "bump", "--rate-limit-spec", "5-per-m"])
        self.assertEqual(result.exit_code, 0, result.output)
        runtime, image, tag, store, options = pipeline.call_args.args
        self.assertTrue(runtime.dry_run)
        self.assertEqual((image, tag, store), ("base", "2.0", "store"))
        self.assertEqual(options.branch, "bump")
        self.assertEqual(options.org, "defaultorg")
        self.assertEqual(options.rate_limit_spec, "5-per-m")
        pipeline.return_value.run.assert_awaited_once()

    @patch("dockerfile_image_update.pipelines.parent.ParentPipeline")
    def test_org_option_wins_over_config(self, pipeline):
        pipeline.return_value.run = AsyncMock()
        result = self.invoke(["parent", "base", "2.0", "store", "--org", "cliorg"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(pipeline.call_args.args[4].org, "cliorg")

    @patch("dockerfile_image_update.pipelines.parent.ParentPipeline")
    def test_failure_exit_code(self, pipeline):
        errors = [ProcessingError("base", "2.0", "org/app", "boom")]
        pipeline.return_value.run = AsyncMock(side_effect=ProcessingFailure(errors))
        result = self.invoke(["parent", "base", "2.0", "store"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("There were 1 errors with changing Dockerfiles.", result.output)

    @patch("dockerfile_image_update.pipelines.child.ChildPipeline")
    def test_child(self, pipeline):
        pipeline.return_value.run = AsyncMock()
        result = self.invoke(["child", "org/app", "base", "2.0", "--store", "s3://bucket", "-f", "Dockerfile"])
        self.assertEqual(result.exit_code, 0, result.output)
        runtime, repo, image, tag, options = pipeline.call_args.args
        self.assertEqual((repo, image, tag), ("org/app", "base", "2.0"))
        self.assertEqual(pipeline.call_args.kwargs, {"store": "s3://bucket"})
        self.assertEqual(options.filenames_to_search, ["Dockerfile"])

    @patch("dockerfile_image_update.pipelines.all_images.AllPipeline")
    def test_all(self, pipeline):
        pipeline.return_value.run = AsyncMock()
        result = self.invoke(["all", "store", "--concurrency", "8", "--timeout", "60"])
        self.assertEqual(result.exit_code, 0, result.output)
        options = pipeline.call_args.args[2]
        self.assertEqual(options.worker_count, 8)
        self.assertEqual(options.timeout, 60)


if __name__ == "__main__":
    unittest.main()
