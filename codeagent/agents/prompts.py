"""Prompt builders for every backend call the dispatcher makes."""

from __future__ import annotations

_PLAN_SCHEMA = """{
  "summary": "one paragraph describing the change",
  "modifications": [
    {
      "file": "relative/path/to/file",
      "action": "create | modify | delete",
      "content": "full new file content (omit for delete)",
      "description": "what changed in this file"
    }
  ]
}"""


def workspace_modification_prompt(title: str, body: str) -> str:
    """Prompt for a backend that edits the checkout in its working directory."""
    return (
        "You are working inside a checkout of the repository.  Implement the "
        "GitHub issue below by editing, creating or deleting files directly.\n\n"
        f"## Issue: {title}\n\n{body or '(no description)'}\n\n"
        "Rules:\n"
        "- Explore the project structure before changing anything.\n"
        "- Follow the existing code style and conventions.\n"
        "- Keep changes minimal and focused on the issue.\n"
        "- Do not run shell commands; only use file tools.\n"
        "- Finish with a short summary of what you changed."
    )


def analysis_prompt(title: str, body: str, file_tree: str) -> str:
    return (
        "Analyse the following GitHub issue against the repository structure "
        "and explain which files need to change and why.\n\n"
        f"## Issue: {title}\n\n{body or '(no description)'}\n\n"
        f"## Repository\n\n{file_tree}"
    )


def modification_plan_prompt(title: str, body: str, file_tree: str, analysis: str = "") -> str:
    """Prompt asking for a strict JSON modification plan."""
    parts = [
        "Produce the code changes that resolve the GitHub issue below.",
        f"## Issue: {title}\n\n{body or '(no description)'}",
        f"## Repository\n\n{file_tree}",
    ]
    if analysis:
        parts.append(f"## Analysis\n\n{analysis}")
    parts.append(
        "Respond with ONLY a JSON object of this shape, no prose before or after:\n\n"
        + _PLAN_SCHEMA
    )
    return "\n\n".join(parts)


def continue_prompt(project_context: str, instruction: str) -> str:
    return (
        f"{project_context}\n\n"
        "## Task\n\nContinue development on this project.\n\n"
        f"Instruction: {instruction or 'continue with the next logical step'}\n\n"
        "Describe the next steps and provide the code needed to carry them out."
    )


def fix_prompt(project_context: str, problem: str) -> str:
    return (
        f"{project_context}\n\n"
        "## Task\n\nFix the following problem.\n\n"
        f"Problem: {problem or 'see the context above'}\n\n"
        "Explain the root cause, then provide the corrected code."
    )


def pr_review_prompt(title: str, body: str, diff: str, focus: str = "") -> str:
    focus_line = f"\nReviewer focus: {focus}\n" if focus else ""
    return (
        f"Review the following pull request.\n\n## PR: {title}\n\n{body or '(no description)'}\n"
        f"{focus_line}\n## Diff\n\n```diff\n{diff}\n```\n\n"
        "Structure the review as:\n"
        "1. Summary of the change\n"
        "2. Problems (bugs, security, correctness)\n"
        "3. Suggestions (readability, tests, performance)\n"
        "4. Verdict: approve, comment, or request changes"
    )


def project_review_prompt(project_context: str, file_tree: str, focus: str = "") -> str:
    focus_line = f"\nReviewer focus: {focus}\n" if focus else ""
    return (
        f"{project_context}\n\n## Repository\n\n{file_tree}\n{focus_line}\n"
        "Review the overall project: structure, code quality risks, missing "
        "tests or documentation, and the most valuable improvements."
    )


def summary_prompt(project_context: str, file_tree: str, focus: str = "") -> str:
    focus_line = f"\nFocus on: {focus}\n" if focus else ""
    return (
        f"{project_context}\n\n## Repository\n\n{file_tree}\n{focus_line}\n"
        "Summarise this project: purpose, main components, technology stack "
        "and current state."
    )
