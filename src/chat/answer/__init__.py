"""Answer stage service and UI hint selection."""

from .service import AnswerComposer, build_documents_context, select_ui_hints

__all__ = ["AnswerComposer", "build_documents_context", "select_ui_hints"]
