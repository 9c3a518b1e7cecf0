from __future__ import annotations

from collections.abc import Iterable

from studyguide.services.chunked.types import ChunkResult, MergedResult, StudyGuidePage


def merge_chunk_results(
    results: Iterable[ChunkResult],
    document_title: str,
    total_pages: int,
) -> MergedResult:
    successful = sorted(
        ((result.descriptor, result.payload) for result in results if result.payload is not None),
        key=lambda pair: pair[0].index,
    )

    pages_by_number: dict[int, StudyGuidePage] = {}
    summaries: list[str] = []
    learning_path: list[str] = []

    for descriptor, payload in successful:
        for page in payload.pages:
            # first chunk in plan order wins a repeated page number
            pages_by_number.setdefault(page.page_number, page)

        summary = payload.overall_summary.strip()
        if summary:
            summaries.append(f"[Pages {descriptor.start_page}-{descriptor.end_page}] {summary}")

        for step in payload.learning_path or ():
            if step not in learning_path:
                learning_path.append(step)

    return MergedResult(
        document_title=document_title,
        total_pages=total_pages,
        pages=tuple(pages_by_number[number] for number in sorted(pages_by_number)),
        overall_summary="\n\n".join(summaries)
        or f"Comprehensive page-by-page study guide for {document_title}.",
        learning_path=tuple(learning_path) or None,
    )
