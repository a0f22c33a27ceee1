"""Shared task notes module.

The notes file is the only state carried between iterations besides git
history. Claude updates it as instructed by the prompt; the loop only reads
it, seeds it on the first run and warns when it grows unwieldy.
"""

import os
import logging
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

MAX_NOTES_LINES = 200
VERBOSE_MARKERS = ("error log:", "full output:", "stack trace:")


class NotesManager:
    """Reads and seeds the shared notes file."""

    def __init__(self, file_path: str, work_dir: Optional[str] = None):
        if work_dir and not os.path.isabs(file_path):
            file_path = os.path.join(work_dir, file_path)
        self.file_path = file_path

    @property
    def path(self) -> str:
        return os.path.abspath(self.file_path)

    def exists(self) -> bool:
        return os.path.isfile(self.file_path)

    def read(self) -> str:
        """Return the notes, or an empty string if the file does not exist."""
        if not self.exists():
            return ""
        with open(self.file_path, "r", encoding="utf-8") as f:
            return f.read()

    def write(self, content: str) -> None:
        directory = os.path.dirname(self.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.file_path, "w", encoding="utf-8") as f:
            f.write(content)

    def initialize(self, project_goal: str) -> bool:
        """Create the notes file with starter content if it is missing.

        Returns:
            True if the file was created
        """
        if self.exists():
            return False

        created = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self.write(f"""# Shared Task Notes

## Project Goal
{project_goal}

## Current Status
- Iteration 1 starting
- No previous work done yet

## Next Steps
- Begin initial implementation based on project goal

## Notes
- Created: {created}

---
*This file is maintained by Continuous Claude to preserve context across iterations.*
""")
        logger.info(f"✓ Created notes file: {self.path}")
        return True

    def validate(self) -> Optional[str]:
        """Return a warning message if the notes look too verbose, else None."""
        content = self.read()

        line_count = len(content.splitlines())
        if line_count > MAX_NOTES_LINES:
            return f"notes file is too long ({line_count} lines) - consider condensing"

        lowered = content.lower()
        if any(marker in lowered for marker in VERBOSE_MARKERS):
            return "notes file contains verbose logs - keep it concise and actionable"

        return None
