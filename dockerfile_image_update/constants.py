DEFAULT_CONFIG_FILE = "~/.config/dfiu.toml"

DEFAULT_FILENAMES_TO_SEARCH = "Dockerfile,docker-compose"

DOCKERFILE = "dockerfile"
DOCKER_COMPOSE = "docker-compose"

# Appended to branch names when only one kind of file is searched
DOCKERFILE_BRANCH_SUFFIX = "_dockerfile"
DOCKER_COMPOSE_BRANCH_SUFFIX = "_dockercompose"

# Lines whose comment carries this marker are never rewritten
NO_DFIU = "no-dfiu"

DEFAULT_PULL_REQUEST_TITLE = "Automatic Dockerfile Image Updater"

STORE_JSON_FILE = "store.json"

RENOVATE_CONFIG_FILENAME = "renovate.json"

# Defaults for the pull request rate limiter: 30 pull requests per hour, one new token every 2 minutes
DEFAULT_RATE_LIMIT = 30
DEFAULT_RATE_LIMIT_DURATION = 60 * 60
DEFAULT_TOKEN_ADDING_RATE = 2 * 60

DEFAULT_CONCURRENCY = 4
DEFAULT_SEARCH_LIMIT = 1000

# GitHub code search queries are limited in length
SEARCH_QUERY_MAX_LENGTH = 256
