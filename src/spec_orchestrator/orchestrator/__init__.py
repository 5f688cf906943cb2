"""Spec-driven task orchestration with a bounded self-correction loop.

A spec directory holds three artifacts: ``requirements.md``, ``design.md`` and
``tasks.md``. Tasks run one at a time. When one fails, the error is classified,
a whole-document correction is written to the artifact most likely at fault,
and the task is retried. After ``max_attempts`` failed corrections the run
halts and the full failure context is handed to an operator.

Why whole-document replacement instead of line patches?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Corrections come from a generator that rewrites prose. Line-level patches
against a file that may have been edited since the plan was produced behave
like merge conflicts. Replacing the artifact atomically, with a backup of the
previous version, keeps every state on disk either the old document or the
new one.
"""
