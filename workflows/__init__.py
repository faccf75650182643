"""Workflow definitions module."""

from workflows.document_workflow import (
    DocumentPostingWorkflow,
    DocumentPostingInput,
    DocumentPostingOutput,
    TASK_QUEUE,
)

__all__ = ["DocumentPostingWorkflow", "DocumentPostingInput", "DocumentPostingOutput", "TASK_QUEUE"]
