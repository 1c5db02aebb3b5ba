from unittest import IsolatedAsyncioTestCase
from unittest.mock import MagicMock

from github import GithubException, UnknownObjectException

from dockerfile_image_update.branch import GitForkBranch
from dockerfile_image_update.github_client import CandidateContent, GitHubClient

NOT_FOUND = UnknownObjectException(404, {"message": "Not Found"}, None)


def make_repo(full_name):
    repo = MagicMock()
    repo.full_name = full_name
    repo.owner.login = full_name.split("/")[0]
    repo.default_branch = "main"
    return repo


def make_paginated(items):
    paginated = MagicMock()
    paginated.totalCount = len(items)
    paginated.__iter__.return_value = iter(items)
    return paginated


def make_hit(full_name, path):
    item = MagicMock()
    item.repository.full_name = full_name
    item.path = path
    return item


class TestGitHubClient(IsolatedAsyncioTestCase):
    def setUp(self):
        self.github = MagicMock()
        self.github.get_user.return_value.login = "me"
        self.gh = GitHubClient(self.github, retry_delay=0)

    async def test_get_login_is_cached(self):
        self.assertEqual(await self.gh.get_login(), "me")
        self.assertEqual(await self.gh.get_login(), "me")
        self.github.get_user.assert_called_once_with()

    async def test_is_owner(self):
        self.assertTrue(await self.gh.is_owner(make_repo("me/app")))
        self.assertFalse(await self.gh.is_owner(make_repo("org/app")))

    async def test_search_code(self):
        self.github.search_code.side_effect = [
            make_paginated([]),
            make_paginated([make_hit("org/app", "Dockerfile"), make_hit("org/other", "x/Dockerfile")]),
        ]
        results = await self.gh.search_code('"FROM base" filename:Dockerfile', limit=1)
        self.assertEqual(results.total_count, 2)
        self.assertEqual(results.items, [CandidateContent("org/app", "Dockerfile", "org/app")])
        self.assertEqual(self.github.search_code.call_count, 2)

    async def test_search_code_nothing_found(self):
        self.github.search_code.side_effect = lambda query: make_paginated([])
        results = await self.gh.search_code("query", attempts=3)
        self.assertEqual(results.total_count, 0)
        self.assertEqual(results.items, [])
        self.assertEqual(self.github.search_code.call_count, 3)

    async def test_get_or_create_fork_reuses_fork(self):
        parent = make_repo("org/app")
        mine = make_repo("me/app")
        parent.get_forks.return_value = [make_repo("someone/app"), mine]
        self.assertIs(await self.gh.get_or_create_fork(parent), mine)
        parent.create_fork.assert_not_called()

    async def test_get_or_create_fork_creates_fork(self):
        parent = make_repo("org/app")
        parent.get_forks.return_value = []
        self.assertIs(await self.gh.get_or_create_fork(parent), parent.create_fork.return_value)

    async def test_get_or_create_fork_failure(self):
        parent = make_repo("org/app")
        parent.get_forks.return_value = []
        parent.create_fork.side_effect = GithubException(403, {"message": "Forking is disabled"}, None)
        self.assertIsNone(await self.gh.get_or_create_fork(parent))

    async def test_safe_delete_repo(self):
        fork = make_repo("me/app")
        fork.get_pulls.return_value.totalCount = 0
        self.assertTrue(await self.gh.safe_delete_repo(fork))
        fork.delete.assert_called_once_with()

        fork = make_repo("me/app")
        fork.get_pulls.return_value.totalCount = 1
        self.assertFalse(await self.gh.safe_delete_repo(fork))
        fork.delete.assert_not_called()

    async def test_ensure_branch_creates_branch(self):
        parent, fork = make_repo("org/app"), make_repo("me/app")
        parent.get_branch.return_value.commit.sha = "abc"
        fork.get_git_ref.side_effect = NOT_FOUND
        self.assertEqual(await self.gh.ensure_branch(parent, fork, "base-2.0"), "abc")
        parent.get_branch.assert_called_with("main")
        fork.get_git_ref.assert_called_with("heads/base-2.0")
        fork.create_git_ref.assert_called_once_with(ref="refs/heads/base-2.0", sha="abc")

    async def test_ensure_branch_resets_branch(self):
        parent, fork = make_repo("org/app"), make_repo("me/app")
        parent.get_branch.return_value.commit.sha = "abc"
        ref = fork.get_git_ref.return_value
        ref.object.sha = "old"
        await self.gh.ensure_branch(parent, fork, "base-2.0")
        ref.edit.assert_called_once_with("abc", force=True)
        fork.create_git_ref.assert_not_called()

    async def test_ensure_branch_keeps_branch(self):
        parent, fork = make_repo("org/app"), make_repo("me/app")
        ref = fork.get_git_ref.return_value
        ref.object.sha = "old"
        await self.gh.ensure_branch(parent, fork, "base-2.0", reset=False)
        ref.edit.assert_not_called()

    async def test_ensure_branch_retries(self):
        parent, fork = make_repo("org/app"), make_repo("me/app")
        parent.get_branch.return_value.commit.sha = "abc"
        fork.get_git_ref.side_effect = NOT_FOUND
        fork.create_git_ref.side_effect = [GithubException(409, {"message": "Git Repository is empty."}, None), None]
        await self.gh.ensure_branch(parent, fork, "base-2.0", attempts=2)
        self.assertEqual(fork.create_git_ref.call_count, 2)

    async def test_wait_for_branch(self):
        fork = make_repo("me/app")
        fork.get_branch.side_effect = [NOT_FOUND, "branch"]
        self.assertEqual(await self.gh.wait_for_branch(fork, "base-2.0"), "branch")

    async def test_find_pull_request(self):
        parent = make_repo("org/app")
        theirs = MagicMock()
        theirs.head.repo.owner.login = "someone"
        theirs.head.ref = "base-1.0"
        other_image = MagicMock()
        other_image.head.repo.owner.login = "me"
        other_image.head.ref = "other-1.0"
        ours = MagicMock()
        ours.head.repo.owner.login = "me"
        ours.head.ref = "base-1.0"
        parent.get_pulls.return_value = [theirs, other_image, ours]

        self.assertIs(await self.gh.find_pull_request(parent, GitForkBranch("base", "2.0")), ours)
        parent.get_pulls.assert_called_with(state="open")
        self.assertIsNone(await self.gh.find_pull_request(parent, GitForkBranch("third", "2.0")))

    async def test_create_pull(self):
        parent = make_repo("org/app")
        await self.gh.create_pull(parent, title="t", body="b", base="main", head="me:base-2.0")
        parent.create_pull.assert_called_once_with(title="t", body="b", base="main", head="me:base-2.0")

    async def test_try_retrieving_content(self):
        repo = make_repo("me/app")
        repo.get_contents.side_effect = [NOT_FOUND, "content"]
        self.assertEqual(await self.gh.try_retrieving_content(repo, "Dockerfile", "base-2.0"), "content")
        repo.get_contents.assert_called_with("Dockerfile", ref="base-2.0")

        repo.get_contents.side_effect = NOT_FOUND
        self.assertIsNone(await self.gh.try_retrieving_content(repo, "Dockerfile", "base-2.0", attempts=2))

    async def test_has_renovate_config(self):
        repo = make_repo("org/app")
        repo.get_contents.side_effect = NOT_FOUND
        self.assertFalse(await self.gh.has_renovate_config(repo))

        repo.get_contents.side_effect = None
        cases = [(b"{}", True), (b'{"enabled": false}', False), (b'{"enabled": true}', True), (b"{ // json5", True)]
        for data, expected in cases:
            with self.subTest(data=data):
                repo.get_contents.return_value.decoded_content = data
                self.assertEqual(await self.gh.has_renovate_config(repo), expected)
        repo.get_contents.assert_called_with("renovate.json", ref="main")
