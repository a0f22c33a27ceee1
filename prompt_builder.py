"""Prompt generation module.

This module contains the logic for building the prompts sent to Claude Code:
the per-iteration prompt, the commit prompt and the pull request body.
Everything here is pure string composition.
"""

DEFAULT_NOTES_FILE = "SHARED_TASK_NOTES.md"

COMMIT_PROMPT = """Review the staged changes and create an appropriate commit.

Instructions:
1. Review the changes with 'git diff --staged'
2. Write a clear, concise commit message following conventional commit style
3. The message should explain WHAT changed and WHY, not just describe the diff
4. Commit the changes with 'git commit -m "your message"'
5. Return the commit message you used"""


def build_iteration_prompt(
    goal: str,
    notes: str,
    completion_signal: str,
    iteration: int,
    notes_file: str = DEFAULT_NOTES_FILE,
) -> str:
    """Build the prompt for one iteration of the loop.

    Args:
        goal: The user's task, included verbatim
        notes: Contents of the shared notes file; the previous-iteration
            section is omitted when empty
        completion_signal: Phrase Claude should emit when the whole goal is
            done; the section is omitted when empty
        iteration: 1-based iteration index
        notes_file: Name of the notes file Claude is asked to update

    Returns:
        Formatted prompt string for Claude Code
    """
    prompt_parts = []

    # Header
    prompt_parts.append(f"""## CONTINUOUS WORKFLOW CONTEXT

This is part of a **continuous development loop** - you are one runner in a relay race.
Your work will be committed, reviewed via PR, and then the next iteration will continue from where you left off.

**Key Points:**
- You are iteration #{iteration}
- Focus on making incremental progress - you don't need to complete everything in one go
- Your changes will be committed and a PR created automatically
- The next iteration will continue your work based on the notes you leave
""")

    if completion_signal:
        prompt_parts.append(f"""**Project Completion Signal**: If you believe the ENTIRE project goal has been fully achieved and no more iterations are needed, include this exact phrase in your response: "{completion_signal}"
""")

    prompt_parts.append(f"""---

## PRIMARY GOAL

{goal}
""")

    if notes:
        prompt_parts.append(f"""---

## CONTEXT FROM PREVIOUS ITERATION

The following is from {notes_file} - these are notes left by the previous iteration:

```
{notes}
```
""")

    prompt_parts.append(f"""---

## ITERATION NOTES

Before completing your work, update the `{notes_file}` file with:
1. What you accomplished this iteration
2. What the next iteration should focus on
3. Any important context or decisions made
4. Known issues or blockers

**Keep notes concise and actionable** - no verbose logs, just key information for the next iteration.
""")

    return "\n".join(prompt_parts)


def format_pr_body(commit_message: str, iteration: int) -> str:
    """Build the pull request description for an iteration's commit."""
    return f"""## Continuous Claude - Iteration {iteration}

{commit_message}

---
*This PR was created automatically by Continuous Claude.*
"""
