from __future__ import annotations

from studyguide.services.chunked.types import ChunkDescriptor

STUDY_GUIDE_PAGE_PROMPT = (
    "You are writing a personalized, page-by-page study guide for the attached PDF. "
    "Respond with a single JSON object with the keys document_title, total_pages, "
    "pages (a list of objects with page_number, page_title, page_content, key_concepts, "
    "difficulty_level, prerequisites, learning_objectives), overall_summary and "
    "learning_path."
)


def build_chunk_prompt(
    descriptor: ChunkDescriptor,
    context_text: str,
    *,
    base_prompt: str = STUDY_GUIDE_PAGE_PROMPT,
) -> str:
    return (
        f"{base_prompt}\n\n"
        f"{context_text.strip()}\n\n"
        "IMPORTANT: analyze only the following page range.\n"
        f"- First page: {descriptor.start_page}\n"
        f"- Last page: {descriptor.end_page}\n"
        f"- Chunk {descriptor.index + 1}/{descriptor.total_chunks}\n\n"
        "Write page commentary only for pages inside this range. "
        "Do not include content from any other page."
    )
