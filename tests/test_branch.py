import unittest

from dockerfile_image_update.branch import GitForkBranch, branch_suffix, split_filenames


class TestGitForkBranch(unittest.TestCase):
    def test_branch_name(self):
        cases = [
            ("docker.io/some/container", "", "docker.io/some/container"),
            ("127.0.0.1:443/some/container", "", "127.0.0.1-443/some/container"),
            ("docker.io/some/container", "123", "docker.io/some/container-123"),
            ("docker.io/some/container", "   ", "docker.io/some/container"),
            ("docker.io/some/container", None, "docker.io/some/container"),
            ("Docker.io/Some/Container", "1.0", "docker.io/some/container-1.0"),
        ]
        for image, tag, expected in cases:
            with self.subTest(image=image, tag=tag):
                branch = GitForkBranch(image, tag)
                self.assertEqual(branch.branch_name, expected)
                self.assertFalse(branch.uses_explicit_override)

    def test_branch_name_is_deterministic(self):
        self.assertEqual(GitForkBranch("base", "2.0").branch_name, GitForkBranch("base", "2.0").branch_name)
        self.assertEqual(GitForkBranch("base", "2.0").branch_name, "base-2.0")

    def test_specified_branch(self):
        cases = [
            ("docker.io/some/container", "", "blah", "blah"),
            ("127.0.0.1:443/some/container", "", "test", "test"),
            ("docker.io/some/container", "123", "", "docker.io/some/container-123"),
            ("docker.io/some/container", "   ", None, "docker.io/some/container"),
            ("docker.io/some/container", None, "", "docker.io/some/container"),
            (None, None, "blah", "blah"),
        ]
        for image, tag, specified, expected in cases:
            with self.subTest(image=image, tag=tag, specified=specified):
                self.assertEqual(GitForkBranch(image, tag, specified).branch_name, expected)

    def test_image_required_without_branch(self):
        for image in (None, "", "   "):
            with self.subTest(image=image):
                with self.assertRaisesRegex(ValueError, "You must specify an imageName"):
                    GitForkBranch(image, "1.0")

    def test_is_same_branch_or_has_image_name_prefix(self):
        cases = [
            ("docker.io/some/container", "", "blah", "blah", True),
            ("docker.io/some/container", "", "blah", "blah-2", False),
            ("127.0.0.1:443/some/container", "", "test", "test", True),
            ("docker.io/some/container", "123", "", "docker.io/some/container-123", True),
            ("127.0.0.1:443/some/container", "123", "", "127.0.0.1-443/some/container-987", True),
            ("docker.io/some/container", "345", "", "docker.io/some/container-123", True),
            ("docker.io/some/container", "345", "", "docker.io/some/container-432", True),
            ("docker.io/some/container", "345", "", "docker.io/some/container", True),
            ("docker.io/some/container  ", "345", "", "docker.io/some/container", True),
            ("  docker.io/some/container", "345", "", "  docker.io/some/container  ", True),
            ("docker.io/some/container", "   ", None, "docker.io/some/container", True),
            ("docker.io/some/container", "12", "", None, False),
            ("docker.io/some/container", "12", "", "docker.io/some/other-12", False),
            ("my-image", "12", "", "my-other", False),
            ("my-image", "12", "", "my-image-x-11", False),
        ]
        for image, tag, specified, candidate, expected in cases:
            with self.subTest(image=image, tag=tag, specified=specified, candidate=candidate):
                branch = GitForkBranch(image, tag, specified)
                self.assertEqual(branch.is_same_branch_or_has_image_name_prefix(candidate), expected)

    def test_suffix(self):
        branch = GitForkBranch("base", "2.0", filenames_to_search="Dockerfile")
        self.assertEqual(branch.branch_name, "base-2.0_dockerfile")
        self.assertTrue(branch.is_same_branch_or_has_image_name_prefix("base-1.0_dockerfile"))
        self.assertFalse(branch.is_same_branch_or_has_image_name_prefix("base-1.0"))
        self.assertFalse(branch.is_same_branch_or_has_image_name_prefix("base-1.0_dockercompose"))

        compose = GitForkBranch("base", "2.0", filenames_to_search="docker-compose")
        self.assertEqual(compose.branch_name, "base-2.0_dockercompose")
        self.assertNotEqual(compose.branch_name, branch.branch_name)

        both = GitForkBranch("base", "2.0", filenames_to_search="Dockerfile,docker-compose")
        self.assertEqual(both.branch_name, "base-2.0")
        self.assertFalse(both.is_same_branch_or_has_image_name_prefix("base-1.0_dockerfile"))

    def test_suffix_is_ignored_with_specified_branch(self):
        branch = GitForkBranch("base", "2.0", "custom", "Dockerfile")
        self.assertEqual(branch.branch_name, "custom")


class TestBranchSuffix(unittest.TestCase):
    def test_branch_suffix(self):
        cases = [
            (None, ""),
            ("", ""),
            ("Dockerfile", "_dockerfile"),
            ("Dockerfile,Dockerfile.prod", "_dockerfile"),
            ("docker-compose", "_dockercompose"),
            (["docker-compose.yml"], "_dockercompose"),
            ("Dockerfile,docker-compose", ""),
            ("something-else", ""),
        ]
        for filenames, expected in cases:
            with self.subTest(filenames=filenames):
                self.assertEqual(branch_suffix(filenames), expected)

    def test_split_filenames(self):
        self.assertEqual(split_filenames(" Dockerfile , docker-compose,, "), ["Dockerfile", "docker-compose"])
        self.assertEqual(split_filenames(None), [])


if __name__ == "__main__":
    unittest.main()
