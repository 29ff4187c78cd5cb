"""Parser for ChatLab bulk JSON exports (.json).

The file is a single JSON object:
    {"chatlab": {...}, "meta": {...}, "members": [...], "messages": [...]}

Member and message objects use the same fields as the JSONL format. Small
files are loaded whole. Files above the preprocess threshold are first
rewritten into ChatLab JSONL by ChatLabJsonPreprocessor, which streams the
document with ijson, and the parser then reads that intermediate file line
by line.
"""

import json
import os
import re
import shutil
import tempfile
from collections.abc import Iterator
from pathlib import Path

from chatlog_ingest.errors import ParseError
from chatlog_ingest.logging import get_logger, log_forwarder
from chatlog_ingest.models import (
    FormatFeature,
    FormatSignatures,
    ParseEvent,
    ParseOptions,
    ProgressCallback,
    ProgressStage,
)
from chatlog_ingest.parser.base import BatchBuffer, FormatModule, Parser, Preprocessor
from chatlog_ingest.parser.formats.chatlab_jsonl import (
    PLATFORM,
    member_from_record,
    message_from_record,
    meta_from_record,
    parse_chatlab_lines,
)
from chatlog_ingest.parser.utils import (
    ProgressThrottle,
    create_progress,
    get_file_size,
    iter_json_objects,
)

logger = get_logger("parser.chatlab")

DEFAULT_PREPROCESS_THRESHOLD = 50 * 1024 * 1024

INTERMEDIATE_SUFFIX = ".chatlab.jsonl"

_STREAM_TARGETS = {
    "chatlab": "chatlab",
    "meta": "meta",
    "members.item": "member",
    "messages.item": "message",
}

feature = FormatFeature(
    id="chatlab_json",
    name="ChatLab JSON",
    platform=PLATFORM,
    priority=2,
    extensions=(".json",),
    signatures=FormatSignatures(
        head=(re.compile(r'"chatlab"\s*:\s*\{'),),
        required_fields=("chatlab", "meta"),
    ),
)


class ChatLabJsonPreprocessor(Preprocessor):
    """Rewrites large ChatLab JSON documents into ChatLab JSONL.

    One ijson pass spools members and messages into two temporary files
    while capturing the header objects, then the output is assembled as
    header line, member lines, message lines. Only one record is held in
    memory at a time, whatever order the keys appear in.
    """

    def __init__(self, threshold_bytes: int = DEFAULT_PREPROCESS_THRESHOLD) -> None:
        self.threshold_bytes = threshold_bytes

    def needs_preprocess(self, path: Path, file_size: int) -> bool:
        return file_size >= self.threshold_bytes

    def preprocess(self, path: Path, on_progress: ProgressCallback | None = None) -> Path:
        """Write the JSONL intermediate for ``path``.

        Args:
            path: ChatLab JSON file
            on_progress: Optional callback receiving "reading" progress

        Returns:
            Path of the intermediate file (caller removes it via cleanup())

        Raises:
            ParseError: If the document is not valid JSON
        """
        total_bytes = get_file_size(path)
        throttle = ProgressThrottle()
        header: dict[str, object] = {"_type": "header", "chatlab": {}, "meta": {}}

        fd, out_name = tempfile.mkstemp(prefix=f"{Path(path).stem}-", suffix=INTERMEDIATE_SUFFIX)
        os.close(fd)
        out_path = Path(out_name)

        try:
            with (
                tempfile.TemporaryFile("w+", encoding="utf-8") as members_spool,
                tempfile.TemporaryFile("w+", encoding="utf-8") as messages_spool,
            ):
                with open(path, "rb") as f:
                    try:
                        for kind, value in iter_json_objects(f, _STREAM_TARGETS):
                            if kind in ("chatlab", "meta"):
                                header[kind] = value
                            elif kind == "member" and isinstance(value, dict):
                                members_spool.write(_jsonl_record("member", value))
                            elif kind == "message" and isinstance(value, dict):
                                messages_spool.write(_jsonl_record("message", value))

                            if on_progress is not None and throttle.should_emit(f.tell()):
                                on_progress(
                                    create_progress(
                                        ProgressStage.READING, f.tell(), total_bytes, 0, "Preprocessing large file"
                                    )
                                )
                    except ValueError as exc:
                        # ijson's JSONError and IncompleteJSONError are ValueErrors
                        raise ParseError(f"Invalid ChatLab JSON in {path}: {exc}") from exc

                # Fall back to the source file's name, not the intermediate's
                meta = header["meta"]
                if isinstance(meta, dict) and not meta.get("name"):
                    meta["name"] = Path(path).stem

                with open(out_path, "w", encoding="utf-8") as out:
                    out.write(json.dumps(header, ensure_ascii=False) + "\n")
                    for spool in (members_spool, messages_spool):
                        spool.seek(0)
                        shutil.copyfileobj(spool, out)
        except BaseException:
            out_path.unlink(missing_ok=True)
            raise

        logger.info("Preprocessed file: path=%s intermediate=%s", path, out_path)
        return out_path


def _jsonl_record(kind: str, value: dict) -> str:
    return json.dumps({**value, "_type": kind}, ensure_ascii=False) + "\n"


class ChatLabJsonParser(Parser):
    """Parser for ChatLab JSON exports.

    Accepts either the original document or the JSONL intermediate written
    by ChatLabJsonPreprocessor.
    """

    feature = feature

    def _parse(self, options: ParseOptions, total_bytes: int) -> Iterator[ParseEvent]:
        path = Path(options.file_path)
        if path.name.endswith(INTERMEDIATE_SUFFIX):
            yield from parse_chatlab_lines(options, total_bytes, path.stem)
            return

        try:
            with open(path, "r", encoding="utf-8-sig") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Invalid ChatLab JSON in {path}: {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("meta"), dict):
            raise ParseError(f"ChatLab JSON in {path} has no meta object")

        yield ParseEvent.meta(meta_from_record(data["meta"], path.stem))

        buffer = BatchBuffer(options.batch_size)
        for raw in data.get("members") or []:
            member = member_from_record(raw) if isinstance(raw, dict) else None
            if member is not None:
                yield from buffer.add_member(member)

        raw_messages = data.get("messages") or []
        throttle = ProgressThrottle(options.progress_interval, options.chunk_size)
        skipped = 0
        for index, raw in enumerate(raw_messages, start=1):
            message = message_from_record(raw) if isinstance(raw, dict) else None
            if message is None:
                skipped += 1
                continue
            yield from buffer.add_message(message)

            # Whole document is in memory; report progress by record position
            position = total_bytes * index // len(raw_messages)
            if throttle.should_emit(position):
                yield ParseEvent.progress(
                    create_progress(ProgressStage.PARSING, position, total_bytes, buffer.messages_processed)
                )

        yield from buffer.flush()

        if skipped:
            log_forwarder(logger, options.on_log)("warning", f"Skipped {skipped} malformed messages in {path}")


module = FormatModule(
    feature=feature,
    parser=ChatLabJsonParser(),
    preprocessor=ChatLabJsonPreprocessor(),
)
