"""Local stand-in agent for CLI backend integration tests.

Prints the first prompt line to stdout and exits. Behaviour is steered by env:
``AGENT_RUNNER_ECHO_PROMPT_FILE`` (write the full prompt there),
``AGENT_RUNNER_ECHO_STDERR`` (text written to stderr) and
``AGENT_RUNNER_ECHO_EXIT_CODE`` (process exit code).
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the task line and exit with the configured code."""

    parser = argparse.ArgumentParser()
    parser.add_argument("prompt")
    args = parser.parse_args(argv)

    prompt_file = os.getenv("AGENT_RUNNER_ECHO_PROMPT_FILE")
    if prompt_file:
        Path(prompt_file).write_text(args.prompt, "utf-8")

    first_line = args.prompt.splitlines()[0] if args.prompt else ""
    sys.stdout.write(f"echo_agent cwd={Path.cwd()} {first_line}\n")

    stderr_text = os.getenv("AGENT_RUNNER_ECHO_STDERR", "")
    if stderr_text:
        sys.stderr.write(stderr_text + "\n")
    return int(os.getenv("AGENT_RUNNER_ECHO_EXIT_CODE", "0"))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
