"""Built-in export formats, one module per platform layout."""

from chatlog_ingest.parser.base import FormatModule

from . import chatlab_json, chatlab_jsonl, generic_jsonl, qq_txt, telegram, whatsapp

FORMATS: list[FormatModule] = [
    chatlab_jsonl.module,
    chatlab_json.module,
    telegram.module,
    whatsapp.module,
    qq_txt.module,
    generic_jsonl.module,
]

__all__ = ["FORMATS"]
