#!/usr/bin/env python3
"""Continuous Claude - autonomous development loop with GitHub PRs.

This is the main entry point. It parses the command line, checks that the
Claude Code CLI, GitHub and the git working copy are usable, and then runs
the continuous development loop until a limit is reached.

Example:
    continuous-claude -p "Add comprehensive test coverage" --max-runs 5
    continuous-claude -p "Refactor authentication" --max-cost 10.00
    continuous-claude -p "Fix all linting errors" --max-duration 2h
"""

import os
import sys
import signal
import logging
import argparse
import requests
from typing import List, Optional, Tuple

import config
from claude_agent import ClaudeAgent
from config import RunConfig, parse_duration, validate_run_config
from errors import CommandError, ConfigurationError
from git_ops import GitClient, ensure_worktree
from github_api import check_auth, configure_session, validate_repository_access
from notes import NotesManager
from orchestrator import Orchestrator
from pr_manager import GitHubReviewSystem

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2

# Global flag for graceful shutdown
_shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully.

    The first signal lets the current iteration finish; a second Ctrl+C
    aborts immediately.
    """
    global _shutdown_requested
    if _shutdown_requested and signum == signal.SIGINT:
        raise KeyboardInterrupt
    logger.info("Shutdown signal received. Finishing current iteration (Ctrl+C again to abort)...")
    _shutdown_requested = True


def shutdown_requested() -> bool:
    return _shutdown_requested


def install_signal_handlers() -> None:
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def setup_logging(verbose: bool = False, log_file: str = config.LOG_FILE) -> None:
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='a'))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=handlers,
        force=True,
    )


def setup_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="continuous-claude",
        description="Run Claude Code iteratively with full GitHub PR integration.",
        epilog=(
            "At least one of --max-runs, --max-cost or --max-duration is required.\n"
            "Arguments after '--' are passed through to Claude Code.\n\n"
            "Subcommands:\n"
            "  list-worktrees    List active git worktrees"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('-p', '--prompt', default="", help='Task description for Claude (required)')

    limits = parser.add_argument_group("limits")
    limits.add_argument('-m', '--max-runs', type=int, default=config.MAX_RUNS,
                        help='Maximum number of iterations (0 = unlimited)')
    limits.add_argument('--max-cost', type=float, default=config.MAX_COST,
                        help='Maximum cost in USD (0 = unlimited)')
    limits.add_argument('--max-duration', default=config.MAX_DURATION,
                        help="Maximum duration, e.g. '2h', '30m', '1h30m'")

    github = parser.add_argument_group("github / git")
    github.add_argument('--owner', default="", help='GitHub repository owner (auto-detected)')
    github.add_argument('--repo', default="", help='GitHub repository name (auto-detected)')
    github.add_argument('--merge-strategy', default=config.MERGE_METHOD,
                        help='PR merge strategy: squash, merge, rebase (default: %(default)s)')
    github.add_argument('--git-branch-prefix', default=config.GIT_BRANCH_PREFIX,
                        help='Branch name prefix (default: %(default)s)')
    github.add_argument('--notes-file', default=config.NOTES_FILE,
                        help='Notes file carried between iterations (default: %(default)s)')
    github.add_argument('--unknown-check-state', default=config.UNKNOWN_CHECK_STATE,
                        help='Treat unrecognised check states as passed or pending (default: %(default)s)')

    execution = parser.add_argument_group("execution")
    execution.add_argument('--disable-commits', action='store_true', help='Run without creating commits/PRs')
    execution.add_argument('--dry-run', action='store_true', help='Simulate without committing or opening PRs')
    execution.add_argument('--completion-signal', default=config.COMPLETION_SIGNAL,
                           help='Phrase Claude emits when the whole goal is done')
    execution.add_argument('--completion-threshold', type=int, default=config.COMPLETION_THRESHOLD,
                           help='Consecutive completion signals needed to stop (default: %(default)s)')
    execution.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    worktree = parser.add_argument_group("worktrees")
    worktree.add_argument('--worktree', default="", help='Run inside a named git worktree (parallel execution)')
    worktree.add_argument('--worktree-base-dir', default=config.WORKTREE_BASE_DIR,
                          help='Base directory for worktrees (default: %(default)s)')
    worktree.add_argument('--cleanup-worktree', action='store_true', help='Remove the worktree when the run ends')
    return parser


def split_passthrough_args(argv: List[str]) -> Tuple[List[str], List[str]]:
    """Split argv at '--' into (our args, args for Claude Code)."""
    if "--" in argv:
        idx = argv.index("--")
        return argv[:idx], argv[idx + 1:]
    return argv, []


def build_run_config(args: argparse.Namespace, extra_claude_args: List[str]) -> RunConfig:
    """Turn parsed arguments into a RunConfig.

    Raises:
        ConfigurationError: if the duration cannot be parsed
    """
    return RunConfig(
        prompt=args.prompt,
        max_runs=args.max_runs,
        max_cost=args.max_cost,
        max_duration=parse_duration(args.max_duration),
        owner=args.owner,
        repo=args.repo,
        merge_strategy=args.merge_strategy,
        git_branch_prefix=args.git_branch_prefix,
        notes_file=args.notes_file,
        disable_commits=args.disable_commits,
        dry_run=args.dry_run,
        completion_signal=args.completion_signal,
        completion_threshold=args.completion_threshold,
        unknown_check_state=args.unknown_check_state,
        worktree=args.worktree,
        worktree_base_dir=args.worktree_base_dir,
        cleanup_worktree=args.cleanup_worktree,
        extra_claude_args=tuple(extra_claude_args),
    )


def ensure_initial_commit(git: GitClient) -> None:
    """Make sure the repository has at least one commit pushed to origin."""
    if git.has_commits():
        return

    logger.info("No commits found. Creating a blank CLAUDE.md, committing, and pushing.")
    claude_md = os.path.join(git.work_dir, "CLAUDE.md")
    if not os.path.exists(claude_md):
        with open(claude_md, "w", encoding="utf-8"):
            pass

    git.stage_all()
    git.commit("Initial commit")
    git.push(git.current_branch())
    logger.info("✓ Pushed initial commit to origin")


def list_worktrees(work_dir: str) -> int:
    try:
        worktrees = GitClient(work_dir).worktree_list()
    except CommandError as e:
        logger.error(f"✗ {e}")
        return EXIT_FAILURE

    if not worktrees:
        print("No worktrees found")
        return EXIT_OK

    print("Active worktrees:")
    for path in worktrees:
        print(f"  {path}")
    return EXIT_OK


def run(cfg: RunConfig, work_dir: str) -> int:
    """Check prerequisites and run the loop. Returns a process exit code."""
    git = GitClient(work_dir)
    if not git.is_repo():
        logger.error(f"✗ Not in a git repository: {work_dir}")
        return EXIT_FAILURE

    worktree_path = None
    try:
        ensure_initial_commit(git)

        # Resolved in the main working copy; a worktree sits on its own local branch
        base_branch = config.BASE_BRANCH or git.current_branch()

        if cfg.worktree:
            worktree_path = ensure_worktree(git, cfg.worktree, cfg.worktree_base_dir, base_branch)
            git = GitClient(worktree_path)
            home_branch = git.current_branch()
        else:
            if git.current_branch() != base_branch:
                git.switch_branch(base_branch)
            home_branch = base_branch

        owner, repo = cfg.owner, cfg.repo
        if not owner or not repo:
            detected_owner, detected_repo = git.detect_github_repo()
            owner = owner or detected_owner
            repo = repo or detected_repo
        repository = f"{owner}/{repo}"

        configure_session()
        check_auth()
        validate_repository_access(repository)

        agent = ClaudeAgent(git.work_dir, cfg.extra_claude_args)
        agent.check_available()

        notes = NotesManager(cfg.notes_file, work_dir=git.work_dir)
        try:
            notes.initialize(cfg.prompt)
        except OSError as e:
            logger.warning(f"⚠️  Could not initialize notes file: {e}")

        orchestrator = Orchestrator(
            cfg,
            base_branch,
            git=git,
            review_system=GitHubReviewSystem(repository),
            agent=agent,
            notes=notes,
            shutdown_check=shutdown_requested,
            home_branch=home_branch,
        )
        orchestrator.run()
    except (RuntimeError, ValueError, requests.RequestException) as e:
        logger.error(f"✗ {e}")
        return EXIT_FAILURE
    finally:
        if worktree_path and cfg.cleanup_worktree:
            try:
                GitClient(work_dir).worktree_remove(worktree_path)
                logger.info(f"✓ Removed worktree: {worktree_path}")
            except CommandError as e:
                logger.warning(f"Could not remove worktree {worktree_path}: {e}")

    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    if argv is None:
        argv = sys.argv[1:]

    own_args, extra_claude_args = split_passthrough_args(list(argv))

    if own_args and own_args[0] == "list-worktrees":
        setup_logging(log_file="")
        return list_worktrees(os.getcwd())

    args = setup_argument_parser().parse_args(own_args)
    setup_logging(verbose=args.verbose)

    try:
        cfg = build_run_config(args, extra_claude_args)
        validate_run_config(cfg)
    except ConfigurationError as e:
        logger.error(f"✗ Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    install_signal_handlers()
    try:
        return run(cfg, os.getcwd())
    except KeyboardInterrupt:
        logger.info("Aborted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
