"""Run one chat turn offline with a scripted model and the local typst binary."""

import asyncio

from typstchat import TurnEngine, encode_event, get_renderer
from typstchat.backends import ScriptedBackend, scripted_text, scripted_tool_call
from typstchat.persistence import InMemoryTranscriptStore, generate_conversation_id
from typstchat.replay import build_transcript

POSTER = """#set page(width: 12cm, height: 8cm)
#align(center + horizon)[
  = Typst Meetup
  Thursday, 7pm
]
"""


async def main():
    """Stream a scripted turn and replay the stored transcript."""
    store = InMemoryTranscriptStore()
    backend = ScriptedBackend(
        [
            scripted_text("Here is a small poster.") + scripted_tool_call(POSTER, "Meetup poster"),
            scripted_text(" Let me know if you want another color scheme."),
        ]
    )
    engine = TurnEngine(store, backend, get_renderer())
    conversation_id = generate_conversation_id()

    async for event in engine.run_turn(conversation_id, [], "Make a meetup poster"):
        print(encode_event(event)[:120].rstrip())

    transcript = build_transcript(await store.read_all(conversation_id))
    print(f"📋 Conversation: {conversation_id}")
    for message in transcript.messages:
        print(f"- {message.role}: {message.content or message.status}")
    if transcript.artifact:
        print(f"🖼️ Pages rendered: {len(transcript.artifact.pages)}")


if __name__ == "__main__":
    asyncio.run(main())
