#!/usr/bin/env python3
"""
Generate a synthetic chat export for stress-testing imports.

Writes ChatLab JSONL, ChatLab JSON or generic JSONL with a chosen number of
members and messages. Records are written one at a time, so fixtures of any
size can be produced without holding them in memory.

    python scripts/generate_fixture.py big.jsonl --messages 2000000 --members 300
"""

import json
import random
import sys
from pathlib import Path

import click

# Add src to path if running from repo root
repo_root = Path(__file__).parent.parent
if (repo_root / "src").exists():
    sys.path.insert(0, str(repo_root / "src"))

from chatlog_ingest.models import MessageType

WORDS = "lorem ipsum dolor sit amet consectetur adipiscing elit sed do eiusmod tempor".split()
START_TS = 1_700_000_000


def member_record(index: int) -> dict:
    return {"platformId": f"u{index}", "accountName": f"User {index}", "groupNickname": f"nick{index}"}


def message_record(index: int, members: int, rng: random.Random) -> dict:
    sender = rng.randrange(members)
    return {
        "sender": f"u{sender}",
        "accountName": f"User {sender}",
        "timestamp": START_TS + index * 7,
        "type": int(MessageType.TEXT),
        "content": " ".join(rng.choices(WORDS, k=rng.randint(3, 20))),
        "platformMessageId": str(index),
    }


def dumps(obj: dict) -> str:
    return json.dumps(obj, ensure_ascii=False)


def write_chatlab_jsonl(out, messages: int, members: int, rng: random.Random) -> None:
    header = {
        "_type": "header",
        "chatlab": {"version": "0.0.2", "exportedAt": START_TS},
        "meta": {"name": "Stress fixture", "platform": "chatlab", "type": "group"},
    }
    out.write(dumps(header) + "\n")
    for i in range(members):
        out.write(dumps({"_type": "member", **member_record(i)}) + "\n")
    for i in range(messages):
        out.write(dumps({"_type": "message", **message_record(i, members, rng)}) + "\n")


def write_chatlab_json(out, messages: int, members: int, rng: random.Random) -> None:
    out.write('{"chatlab": {"version": "0.0.2", "exportedAt": %d},\n' % START_TS)
    out.write(' "meta": {"name": "Stress fixture", "platform": "chatlab", "type": "group"},\n')
    out.write(' "members": [\n')
    out.write(",\n".join(dumps(member_record(i)) for i in range(members)))
    out.write('\n ],\n "messages": [\n')
    for i in range(messages):
        if i:
            out.write(",\n")
        out.write(dumps(message_record(i, members, rng)))
    out.write("\n ]\n}\n")


def write_generic_jsonl(out, messages: int, members: int, rng: random.Random) -> None:
    for i in range(messages):
        record = message_record(i, members, rng)
        out.write(
            dumps({
                "sender": record["sender"],
                "senderName": record["accountName"],
                "content": record["content"],
                "ts": record["timestamp"],
                "id": record["platformMessageId"],
            })
            + "\n"
        )


WRITERS = {
    "chatlab-jsonl": write_chatlab_jsonl,
    "chatlab-json": write_chatlab_json,
    "generic-jsonl": write_generic_jsonl,
}


@click.command()
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--format", "fmt", type=click.Choice(sorted(WRITERS)), default="chatlab-jsonl", show_default=True)
@click.option("--messages", "-k", type=click.IntRange(min=0), default=10000, show_default=True)
@click.option("--members", "-m", type=click.IntRange(min=1), default=50, show_default=True)
@click.option("--seed", type=int, default=0, show_default=True)
def main(output: Path, fmt: str, messages: int, members: int, seed: int) -> None:
    """Write a synthetic chat export to OUTPUT."""
    rng = random.Random(seed)
    with open(output, "w", encoding="utf-8") as out:
        WRITERS[fmt](out, messages, members, rng)
    click.echo(f"Wrote {fmt} fixture: {output} ({output.stat().st_size} bytes, {messages} messages, {members} members)")


if __name__ == "__main__":
    main()
