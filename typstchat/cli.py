"""Command line interface for typstchat."""

from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path
from typing import Optional, Tuple

import typer

from typstchat.backends import get_backend
from typstchat.config import load_config
from typstchat.constants import DEFAULT_LIST_LIMIT
from typstchat.contracts import PDF_DATA_URL_PREFIX, StreamEventKind
from typstchat.persistence import generate_conversation_id, get_store
from typstchat.renderers import get_renderer
from typstchat.replay import build_transcript, prior_turns_from_entries
from typstchat.turn import TurnEngine

app = typer.Typer(help="CLI for typstchat conversations")

conversation_app = typer.Typer(help="Commands for inspecting conversations")

app.add_typer(conversation_app, name="conversation")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default from config)"
    ),
) -> None:
    """typstchat CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


async def _run_chat(
    engine: TurnEngine, conversation_id: str, message: str
) -> Tuple[Optional[str], bool]:
    entries = await engine.store.read_all(conversation_id)
    prior_turns = prior_turns_from_entries(entries)
    pdf_url: Optional[str] = None
    failed = False

    async for event in engine.run_turn(conversation_id, prior_turns, message):
        data = event.data
        if event.kind is StreamEventKind.TEXT_DELTA:
            typer.echo(data["text"], nl=False)
        elif event.kind is StreamEventKind.TOOL_STARTED:
            typer.echo(f"\n[{data['tool']}] started")
        elif event.kind is StreamEventKind.TOOL_EXECUTING:
            typer.echo(f"[{data['tool']}] rendering...")
        elif event.kind is StreamEventKind.TOOL_FINISHED:
            if data["success"]:
                output = data["output"]
                pdf_url = output.get("pdfUrl")
                typer.echo(f"[{data['tool']}] rendered {len(output['pages'])} page(s)")
            else:
                typer.secho(f"[{data['tool']}] failed: {data['error']}", fg=typer.colors.RED)
        elif event.kind is StreamEventKind.TURN_COMPLETE:
            typer.echo("")
        elif event.kind is StreamEventKind.TURN_FAILED:
            typer.secho(f"\nError: {data['error']}", fg=typer.colors.RED)
            failed = True

    await engine.wait_for_tools()
    return pdf_url, failed


@app.command("chat")
def chat(
    message: str,
    conversation_id: Optional[str] = typer.Option(
        None, "--conversation-id", help="Continue an existing conversation"
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the rendered PDF to this file"
    ),
) -> None:
    """
    Run one chat turn and print the streamed response.

    Example:
        typstchat chat "Create a one-page resume" --output resume.pdf
        typstchat chat "Make the heading blue" --conversation-id 2025-01-31_14-05-09_k3x9q2
    """
    config = load_config()
    engine = TurnEngine(
        get_store(),
        get_backend(config=config),
        get_renderer(config=config),
        config.model,
    )
    conversation_id = conversation_id or generate_conversation_id()
    typer.echo(f"Conversation: {conversation_id}")

    pdf_url, failed = asyncio.run(_run_chat(engine, conversation_id, message))
    if failed:
        raise typer.Exit(code=1)

    if output is not None:
        if not pdf_url:
            typer.secho("No PDF was produced in this turn", fg=typer.colors.YELLOW)
            return
        output.write_bytes(base64.b64decode(pdf_url[len(PDF_DATA_URL_PREFIX) :]))
        typer.echo(f"PDF written to {output}")


@conversation_app.command("list")
def conversation_list(
    limit: int = typer.Option(DEFAULT_LIST_LIMIT, help="Maximum number of conversations"),
    offset: int = typer.Option(0, help="Number of conversations to skip"),
) -> None:
    """
    List conversations, most recently updated first.

    Example:
        typstchat conversation list --limit 10
        # Output: 2025-01-31_14-05-09_k3x9q2    Create a one-page resume
    """
    store = get_store()
    conversations = asyncio.run(store.list_conversations(limit=limit, offset=offset))
    if not conversations:
        typer.echo("No conversations found")
        return
    for conversation in conversations:
        typer.echo(f"{conversation.id}\t{conversation.title or '(untitled)'}")


@conversation_app.command("show")
def conversation_show(conversation_id: str) -> None:
    """Show the replayed transcript of a conversation."""
    store = get_store()
    conversation = asyncio.run(store.get_conversation(conversation_id))
    if conversation is None:
        typer.echo("Conversation not found")
        raise typer.Exit(code=1)

    transcript = build_transcript(asyncio.run(store.read_all(conversation_id)))
    typer.echo(f"Conversation {conversation.id}: {conversation.title or '(untitled)'}")
    for message in transcript.messages:
        if message.role == "tool":
            line = f"- tool {message.tool}: {message.status}"
            if message.error:
                line += f" ({message.error})"
            typer.echo(line)
        else:
            typer.echo(f"- {message.role}: {message.content}")
    if transcript.artifact is not None:
        typer.echo(f"Artifact: {len(transcript.artifact.pages)} page(s)")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, help="Port (default from config)"),
) -> None:
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from typstchat.server import create_app

    config = load_config()
    uvicorn.run(
        create_app(config=config),
        host=host or config.server.host,
        port=port or config.server.port,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
