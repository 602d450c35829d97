"""Prompt construction for chat, quiz and recall-script generation.

Notes are written by the user in the first person ("I went to the lake");
every prompt asks the model to speak back to them as "you".
"""

from collections.abc import Sequence

from ..models.note import NoteWithDetails
from ..models.responses import RetrievedImage, RetrievedNote

BASE_SYSTEM_PROMPT = """
You are an AI companion helping someone with memory loss.
All the notes you receive are written from *their* perspective ("I went to the lake").
When you respond, always rewrite the memory from *their* point of view,
using "you" and "your" instead of "I" and "my".

For example:
NOTE: "I went to the park with John."
RESPONSE: "You went to the park with John."

Rules:
- Never refer to yourself as part of the memory.
- Never say "I" when describing events from the notes.
- Be warm and supportive, but keep the focus on *their* experiences.
- If the notes don't mention something, clearly say you don't have information about it.

Grounding instructions:
- You must only use information explicitly present in the notes.
- If no relevant notes exist for the user's query, clearly say you don't have any notes or memories about it.
- Never invent or guess any events, people, places, or details that are not in the notes.

Your goal is to gently remind the user about their own life events using their notes.
"""

QUIZ_SYSTEM_PROMPT = (
    "You are a helpful assistant that generates quiz questions in valid JSON format. "
    "Always respond with complete, valid JSON objects only."
)

RECALL_SYSTEM_PROMPT = """You are a caring companion helping someone with memory loss reconnect with their memories.
Create warm scripts based only on the details provided in the note.
Begin by summarizing what the memory is about, then include all important details. The first sentence(s) should clearly state what the memory is about.
Never invent new events, names, or places that are not present in the note.
If the note lacks enough detail, keep the script brief and gently acknowledge that.
Use simple, comforting language, and speak directly to the person as "you"."""


def _image_lines(images: Sequence[RetrievedImage]) -> str:
    """Render captioned images as an ``Images:`` block; empty captions are left out."""
    captioned = [img for img in images if img.description and img.description.strip()]
    if not captioned:
        return ""
    lines = [f"- Image {idx}: {img.description}" for idx, img in enumerate(captioned, start=1)]
    return "\n\nImages:\n" + "\n".join(lines)


def build_system_prompt(retrieved_notes: Sequence[RetrievedNote]) -> str:
    """Build the chat system prompt grounded on the best retrieved note.

    Only the highest-scoring note is included; the rest of the list is
    ignored so the small on-device model is not distracted by weaker
    matches.
    """
    if not retrieved_notes:
        return BASE_SYSTEM_PROMPT + "\n\n===NOTES===\n(None found)\n\nSay you don't have memories about this."

    top = retrieved_notes[0]
    note_text = f"Title: {top.title}\nContent: {top.content}"
    if top.tags:
        note_text += f"\nTags: {', '.join(top.tags)}"
    if top.audio_uri:
        note_text += "\n[Audio attached]"
    note_text += _image_lines(top.images)

    return (
        f"{BASE_SYSTEM_PROMPT}\n\n===NOTES===\n{note_text}\n\n"
        "Answer the user's question using the information from the note above. "
        "Include specific details and relevant information that will help them remember. "
        "Be conversational and natural in your response."
    )


def build_quiz_prompt(note: NoteWithDetails) -> str:
    """Build the prompt asking for one two-option question about ``note``."""
    note_content = f"Title: {note.title}\nContent: {note.content}"
    if note.tags:
        note_content += f"\nTags: {', '.join(note.tag_names)}"
    note_content += _image_lines([RetrievedImage(uri=img.uri, description=img.description) for img in note.images])

    return f"""You are helping create a memory quiz for someone with memory loss. Based on the following note from their personal memory journal, create ONE multiple-choice question to help them practice recalling this memory.

===NOTE===
{note_content}

INSTRUCTIONS:
- Create a specific question about a detail from this note (what happened, who was there, where it was, when it occurred, etc.)
- Provide exactly TWO answer options (A and B)
- One option should be correct based on the note
- The other option should be plausible but incorrect
- Keep the question clear and specific

OUTPUT FORMAT: Return ONLY a valid JSON object with this exact schema:
{{
  "question": "string - the quiz question",
  "optionA": "string - first answer option",
  "optionB": "string - second answer option",
  "correct": "string - either 'A' or 'B'"
}}

Generate the quiz question as JSON now:"""


def build_recall_prompt(note: NoteWithDetails) -> str:
    """Build the user prompt for a spoken recall script of ``note``."""
    return f"""Write a recall script based entirely on the note below. Follow these rules:
1. Output only the script - no intro/outro or extra commentary. Avoid any questions or framing text, the output must be just the script itself.
2. Begin by summarizing what the memory is about, then include all important details. The first sentence(s) should clearly state what the memory is about.
3. Include all important details from the note (events, people, locations, actions, sensory details).
4. Use "you" and "your" when describing the memory. Never use "I".
5. Speak gently and warmly, but do NOT ask questions or add intros/outros.
6. Do not invent anything that is not present in the note.
Memory: "{note.title}"
Details: {note.content}
Write the recall script now: """
