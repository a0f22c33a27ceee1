#!/usr/bin/env python3
"""Tests for the command line entry point."""

import unittest
from unittest.mock import Mock, patch

import main
from errors import CommandError


@patch('main.setup_logging', Mock())
class TestMain(unittest.TestCase):

    def parse(self, argv):
        own, extra = main.split_passthrough_args(argv)
        args = main.setup_argument_parser().parse_args(own)
        return main.build_run_config(args, extra)

    def test_split_passthrough_args(self):
        own, extra = main.split_passthrough_args(["-p", "x", "--", "--model", "opus"])
        self.assertEqual(own, ["-p", "x"])
        self.assertEqual(extra, ["--model", "opus"])

        own, extra = main.split_passthrough_args(["-p", "x"])
        self.assertEqual(extra, [])

    def test_build_run_config(self):
        cfg = self.parse([
            "-p", "Add tests", "-m", "5", "--max-cost", "10.5", "--max-duration", "1h30m",
            "--merge-strategy", "rebase", "--owner", "octo", "--repo", "hello",
            "--completion-threshold", "2", "--", "--model", "opus",
        ])

        self.assertEqual(cfg.prompt, "Add tests")
        self.assertEqual(cfg.max_runs, 5)
        self.assertEqual(cfg.max_cost, 10.5)
        self.assertEqual(cfg.max_duration, 5400)
        self.assertEqual(cfg.merge_strategy, "rebase")
        self.assertEqual(cfg.repository, "octo/hello")
        self.assertEqual(cfg.completion_threshold, 2)
        self.assertEqual(cfg.extra_claude_args, ("--model", "opus"))

    def test_flags(self):
        cfg = self.parse(["-p", "x", "-m", "1", "--dry-run", "--disable-commits",
                          "--worktree", "feature-a", "--cleanup-worktree"])

        self.assertTrue(cfg.dry_run)
        self.assertTrue(cfg.disable_commits)
        self.assertEqual(cfg.worktree, "feature-a")
        self.assertTrue(cfg.cleanup_worktree)

    @patch('main.run')
    def test_missing_limits_is_config_error(self, mock_run):
        self.assertEqual(main.main(["-p", "Add tests"]), main.EXIT_CONFIG_ERROR)
        mock_run.assert_not_called()

    @patch('main.run')
    def test_missing_prompt_is_config_error(self, mock_run):
        self.assertEqual(main.main(["-m", "3"]), main.EXIT_CONFIG_ERROR)
        mock_run.assert_not_called()

    @patch('main.run')
    def test_bad_duration_is_config_error(self, mock_run):
        self.assertEqual(main.main(["-p", "x", "--max-duration", "2 days"]), main.EXIT_CONFIG_ERROR)
        mock_run.assert_not_called()

    @patch('main.install_signal_handlers', Mock())
    @patch('main.run', return_value=main.EXIT_OK)
    def test_valid_config_runs(self, mock_run):
        self.assertEqual(main.main(["-p", "x", "-m", "2"]), main.EXIT_OK)

        cfg = mock_run.call_args[0][0]
        self.assertEqual(cfg.max_runs, 2)

    @patch('main.install_signal_handlers', Mock())
    @patch('main.run', side_effect=KeyboardInterrupt)
    def test_keyboard_interrupt(self, _mock_run):
        self.assertEqual(main.main(["-p", "x", "-m", "2"]), 130)

    @patch('main.GitClient')
    def test_list_worktrees(self, mock_git_cls):
        mock_git_cls.return_value.worktree_list.return_value = ["/repo", "/worktrees/a"]

        with patch('builtins.print') as mock_print:
            self.assertEqual(main.main(["list-worktrees"]), main.EXIT_OK)

        printed = [c[0][0] for c in mock_print.call_args_list]
        self.assertIn("  /worktrees/a", printed)

    @patch('main.GitClient')
    def test_list_worktrees_failure(self, mock_git_cls):
        mock_git_cls.return_value.worktree_list.side_effect = CommandError("not a repo")

        self.assertEqual(main.main(["list-worktrees"]), main.EXIT_FAILURE)


class TestRun(unittest.TestCase):

    def make_config(self, **kwargs):
        values = dict(prompt="x", max_runs=1, owner="o", repo="r")
        values.update(kwargs)
        return main.RunConfig(**values)

    @patch('main.GitClient')
    def test_not_a_repository(self, mock_git_cls):
        mock_git_cls.return_value.is_repo.return_value = False

        self.assertEqual(main.run(self.make_config(), "/tmp/nowhere"), main.EXIT_FAILURE)

    @patch('main.configure_session', side_effect=RuntimeError("No GitHub token found."))
    @patch('main.GitClient')
    def test_missing_token_fails(self, mock_git_cls, _mock_configure):
        git = mock_git_cls.return_value
        git.is_repo.return_value = True
        git.has_commits.return_value = True

        self.assertEqual(main.run(self.make_config(), "/repo"), main.EXIT_FAILURE)

    @patch('main.Orchestrator')
    @patch('main.NotesManager')
    @patch('main.ClaudeAgent')
    @patch('main.validate_repository_access')
    @patch('main.check_auth')
    @patch('main.configure_session')
    @patch('main.GitClient')
    def test_runs_orchestrator(self, mock_git_cls, _configure, _auth, mock_validate,
                               _agent, _notes, mock_orchestrator):
        git = mock_git_cls.return_value
        git.is_repo.return_value = True
        git.has_commits.return_value = True
        git.current_branch.return_value = "main"
        git.work_dir = "/repo"

        with patch('main.config.BASE_BRANCH', ''):
            self.assertEqual(main.run(self.make_config(), "/repo"), main.EXIT_OK)

        mock_validate.assert_called_once_with("o/r")
        self.assertEqual(mock_orchestrator.call_args[0][1], "main")
        mock_orchestrator.return_value.run.assert_called_once()

    @patch('main.Orchestrator')
    @patch('main.NotesManager', Mock())
    @patch('main.ClaudeAgent', Mock())
    @patch('main.validate_repository_access', Mock())
    @patch('main.check_auth', Mock())
    @patch('main.configure_session', Mock())
    @patch('main.ensure_worktree', return_value="/wt/a")
    @patch('main.GitClient')
    def test_worktree_targets_main_working_copy_branch(self, mock_git_cls, mock_ensure, mock_orchestrator):
        main_git = Mock(work_dir="/repo")
        main_git.is_repo.return_value = True
        main_git.has_commits.return_value = True
        main_git.current_branch.return_value = "main"
        wt_git = Mock(work_dir="/wt/a")
        wt_git.current_branch.return_value = "worktree/a"
        mock_git_cls.side_effect = [main_git, wt_git]

        with patch('main.config.BASE_BRANCH', ''):
            result = main.run(self.make_config(worktree="a"), "/repo")

        self.assertEqual(result, main.EXIT_OK)
        self.assertEqual(mock_ensure.call_args[0][0], main_git)
        self.assertEqual(mock_ensure.call_args[0][3], "main")
        self.assertEqual(mock_orchestrator.call_args[0][1], "main")
        self.assertEqual(mock_orchestrator.call_args[1]["git"], wt_git)
        self.assertEqual(mock_orchestrator.call_args[1]["home_branch"], "worktree/a")
        main_git.switch_branch.assert_not_called()


if __name__ == "__main__":
    unittest.main()
