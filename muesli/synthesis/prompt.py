"""Prompt construction for folder synthesis."""

from collections.abc import Iterable

from muesli.constants import NOTE_TYPE_LABELS
from muesli.models import Note

SYNTHESIS_INSTRUCTIONS = """You are a research assistant helping someone organize their ideas.

Please synthesize and organize the following notes and recordings into a coherent and meaningful summary.

Guidelines:
1. Group related ideas together, even when they came from different notes
2. Keep every distinct idea - merge duplicates, do not drop unique points
3. Call out open questions and next steps the notes imply
4. Use ## for main sections, ### for subsections
5. Use bullet points where appropriate
"""


def format_note(note: Note) -> str:
    """Render one note as a labelled prompt section."""
    label = NOTE_TYPE_LABELS.get(note.type.value, note.type.value)
    lines = [f"[{label}]", note.content.strip()]
    if note.transcription and note.transcription.strip():
        lines.append(f"Transcription: {note.transcription.strip()}")
    return "\n".join(lines)


def build_synthesis_prompt(notes: Iterable[Note], folder_name: str | None = None) -> str:
    """Concatenate notes, in the given order, into a single synthesis prompt."""
    sections = [SYNTHESIS_INSTRUCTIONS]
    if folder_name:
        sections.append(f"## Folder\n{folder_name}\n")
    sections.append("## Notes")
    sections.append("\n\n".join(format_note(note) for note in notes))
    sections.append(
        "\nStructure the output in a clear, organized manner with sections and bullet points. "
        "Return ONLY the synthesis, formatted as markdown."
    )
    return "\n".join(sections)
