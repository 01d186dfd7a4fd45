#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Claude‑Farmer ▸ Prompt Builders
===============================================================================

Purpose
-------
Reusable prompt text for the two AI calls of an iteration:
  • Review  – critique the working directory against GOAL.md → REVIEW.md body
  • Develop – implement GOAL.md / address REVIEW.md → JSON array of full files

Design choices
--------------
• The develop output contract is a raw JSON array of complete files
  (`[{"path": "...", "content": "..."}]`); the forgiving parser copes with
  prose or fences around it, but the prompt still asks for it plainly.
• The context block (goal, review, sources) is rendered by
  `format_context()` and appended after a `---` separator.

Logging
-------
Prompt sizes are trace‑logged (DEBUG).
"""
from __future__ import annotations

import textwrap

from claude_farmer import get_logger
from claude_farmer.fs_ops import language_for
from claude_farmer.models import WorkingDirContext

log = get_logger(__name__)


# =============================================================================
# Prompt bodies
# =============================================================================
REVIEW_PROMPT = textwrap.dedent(
    """
    # Review Prompt

    Review critically a working directory and provide improvement suggestions.

    ## Context Provided

    - **GOAL.md**: Project goals
    - **REVIEW.md**: Previous review (if any)
    - **Source Files**: Current implementation

    ## Your Task

    1. Read GOAL.md carefully.
    2. Analyze the implementation against the goals:
       - **Goal Clarification**: is any point in GOAL.md confusing? Raise the question.
       - **Goal Alignment**: does it meet the stated goals? Does it include things GOAL.md never asks for?
       - **Debugging**: what bugs can you find?
       - **Code Quality**: issues to address? Is it over‑engineered?
       - **Missing Features**: what is incomplete?
       - **Testing**: is coverage adequate?
    3. Produce the new REVIEW.md.

    ## Output Guidelines

    - Be concise: actionable items only, prioritized by impact.
    - Skip empty sections; no generic advice.
    - Do not invent features GOAL.md does not ask for.
    - Do not suggest changes outside this working directory.

    ## Output Format

    ```markdown
    # Review

    ## Summary
    One-line assessment.

    ## Goal Alignment
    - [x] Goal 1
    - [ ] Goal 2: missing X

    ## Bugs
    1. ...

    ## Suggested Improvements
    1. ...

    ## Next Steps
    1. ...
    ```
    """
).strip()

DEVELOP_PROMPT = textwrap.dedent(
    """
    # Develop Prompt

    Develop the project by writing or editing code.

    ## Context Provided

    - **GOAL.md**: Project goals
    - **REVIEW.md**: Review suggestions (if available)
    - **Source Files**: Current implementation (if any)

    ## Your Task

    1. Implement what GOAL.md specifies.
    2. Fix the issues raised in REVIEW.md (if present).
    3. Write tests for new functionality.
    4. Match existing code patterns.

    ## Guidelines

    - Minimal, focused changes; clean, readable code.
    - Every edit is a **complete file**, never a diff.
    - Paths are relative to the working directory.
    - Optionally include `claude-farmer/docs/DEVELOP.json` describing your
      changes: {"summary": "...", "changes": [{"path": "..."}], "problems": ["..."]}
    - If nothing needs to change, answer `[]`.
    """
).strip()

EDITS_RESPONSE_RULES = (
    'Respond with a JSON array of file edits: [{"path": "...", "content": "..."}]'
)


# =============================================================================
# Context rendering
# =============================================================================
def format_context(context: WorkingDirContext) -> str:
    """
    Render *context* as markdown: goal, optional review, then each source file
    in a fenced block tagged with its language.
    """
    parts = [f"# GOAL.md ({context.name})\n\n{context.goal.content}\n"]

    if context.review is not None:
        parts.append(f"# REVIEW.md\n\n{context.review.content}\n")

    if context.sources:
        parts.append("# Source Files\n")
        for snap in context.sources:
            rel = context.relpath(snap.path)
            lang = language_for(snap.path)
            parts.append(f"## {rel}\n\n```{lang}\n{snap.content}\n```\n")

    return "\n".join(parts)


def build_review_prompt(context: WorkingDirContext) -> str:
    prompt = f"{REVIEW_PROMPT}\n\n---\n\n{format_context(context)}"
    log.debug("Review prompt built (%d chars, %d sources).", len(prompt), len(context.sources))
    return prompt


def build_develop_prompt(context: WorkingDirContext) -> str:
    prompt = f"{DEVELOP_PROMPT}\n\n---\n\n{format_context(context)}\n\n---\n\n{EDITS_RESPONSE_RULES}"
    log.debug("Develop prompt built (%d chars, %d sources).", len(prompt), len(context.sources))
    return prompt


__all__ = [
    "REVIEW_PROMPT",
    "DEVELOP_PROMPT",
    "EDITS_RESPONSE_RULES",
    "format_context",
    "build_review_prompt",
    "build_develop_prompt",
]
