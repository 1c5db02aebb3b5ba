from typing import Optional, Sequence

from dockerfile_image_update.cli import cli
from dockerfile_image_update.pipelines import all_images, child, parent  # noqa: F401  registers the commands


def main(args: Optional[Sequence[str]] = None):
    # pylint: disable=no-value-for-parameter
    cli(args)


if __name__ == "__main__":
    main()
