import asyncio
import logging
import sys
from functools import update_wrapper
from pathlib import Path
from typing import Optional

import click

from dockerfile_image_update import __version__, constants
from dockerfile_image_update.ratelimit import RateLimit
from dockerfile_image_update.runtime import Runtime

pass_runtime = click.make_pass_decorator(Runtime)


def click_coroutine(f):
    """ A wrapper to allow to use asyncio with click.
    https://github.com/pallets/click/issues/85
    """
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return update_wrapper(wrapper, f)


def print_version(ctx, param, value):
    if not value or ctx.resilient_parsing:
        return
    click.echo('dockerfile-image-update v{}'.format(__version__))
    click.echo('Python v{}'.format(sys.version))
    ctx.exit()


def validate_rate_limit(ctx, param, value):
    if value is None:
        return None
    try:
        RateLimit.from_string(value)
    except ValueError as e:
        raise click.BadParameter(str(e))
    return value


# ============================================================================
# GLOBAL OPTIONS: parameters for all commands
# ============================================================================
@click.group(context_settings=dict(help_option_names=['-h', '--help']))
@click.option('--version', is_flag=True, callback=print_version,
              expose_value=False, is_eager=True,
              help="Print version information and quit")
@click.option("--config", "-c", metavar='PATH',
              help=f"Configuration file ('{constants.DEFAULT_CONFIG_FILE}' by default)")
@click.option("--working-dir", "-C", metavar='PATH', default=None,
              help="Existing directory in which file operations should be performed (current directory by default)")
@click.option("--ghapi", "-g", metavar='URL', default=None,
              help="Link to the GitHub API; overrides the git_api_url environment variable")
@click.option("--dry-run", is_flag=True,
              help="don't fork, commit or open pull requests; just print what would be done")
@click.option("--verbosity", "-v", count=True,
              help="[MULTIPLE] increase output verbosity")
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], working_dir: Optional[str], ghapi: Optional[str], dry_run: bool,
        verbosity: int):

    config_filename = config or constants.DEFAULT_CONFIG_FILE
    working_dir = working_dir or Path.cwd()
    # configure logging
    if not verbosity:
        logging.basicConfig(level=logging.WARNING)
    elif verbosity == 1:
        logging.basicConfig(level=logging.INFO)
    elif verbosity >= 2:
        logging.basicConfig(level=logging.DEBUG)
        logging.getLogger("urllib3").setLevel(logging.INFO)
        logging.getLogger("botocore").setLevel(logging.INFO)
    else:
        raise ValueError(f"Invalid verbosity {verbosity}")
    ctx.obj = Runtime.from_config_file(config_filename, working_dir=Path(working_dir), dry_run=dry_run,
                                       must_exist=config is not None, github_api_url=ghapi)


def update_options(f):
    """ Options shared by every command that updates repositories """
    options = [
        click.option("--org", "-o", metavar="ORG", default=None,
                     help="Search within a specific organization (default: all of GitHub)"),
        click.option("--branch", "-b", metavar="BRANCH", default=None,
                     help="Push changes to this branch instead of one named after the image and tag"),
        click.option("--title", "-m", metavar="TITLE", default=None,
                     help=f"Pull request title (default: '{constants.DEFAULT_PULL_REQUEST_TITLE}')"),
        click.option("--body", "-B", metavar="BODY", default=None,
                     help="Pull request body (default: describes the new image tag)"),
        click.option("--commit-message", "-c", metavar="MESSAGE", default=None,
                     help="Additional commit message for the commits in pull requests"),
        click.option("--filenames", "-f", metavar="NAMES", default=None,
                     help=f"Comma separated names of the files to search "
                          f"(default: '{constants.DEFAULT_FILENAMES_TO_SEARCH}')"),
        click.option("--search-limit", type=click.IntRange(min=1), default=None,
                     help=f"Maximum number of search results processed per file name "
                          f"(default: {constants.DEFAULT_SEARCH_LIMIT})"),
        click.option("--rate-limit/--no-rate-limit", default=False,
                     help="Throttle pull request creation"),
        click.option("--rate-limit-spec", metavar="SPEC", default=None, callback=validate_rate_limit,
                     help="Pull request rate, e.g. 30-per-h or 500-per-60s (default: 30 per hour). "
                          "Implies --rate-limit"),
        click.option("--skip-pr-creation", is_flag=True,
                     help="Only update the image tag store; don't touch any repository"),
        click.option("--check-for-renovate", is_flag=True,
                     help=f"Skip repositories that have an enabled {constants.RENOVATE_CONFIG_FILENAME}"),
        click.option("--ignore-image-string", metavar="MARKER", default=None,
                     help=f"Leave lines whose comment contains MARKER untouched, as with '{constants.NO_DFIU}'"),
        click.option("--concurrency", type=click.IntRange(min=1), default=None,
                     help=f"Number of repositories processed in parallel (default: {constants.DEFAULT_CONCURRENCY})"),
        click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None,
                     help="Give up on the whole run after this many seconds"),
    ]
    for option in reversed(options):
        f = option(f)
    return f
