"""Tests for the attachment resolver.

The resolver never raises for a single bad attachment: every requested id
ends up either in ``resolved`` or in ``skipped`` with a reason.
"""

import asyncio
from uuid import uuid4

import pytest
from sqlalchemy.orm import object_session

from doggo.db.models import AttachmentKind
from doggo.services.resolver import AttachmentResolver, SkipReason
from tests.factories import create_agent, create_attachment, create_conversation
from tests.image_fixtures import CORRUPT_PDF, TEXT_PDF


async def _resolve(resolver, conversation, ids):
    return await resolver.resolve(
        object_session(conversation),
        viewer_id=conversation.user_id,
        conversation_id=conversation.id,
        ids=ids,
    )


class TestPassThrough:
    @pytest.mark.asyncio
    async def test_text_and_images_untouched(self, db_session, storage, conversation):
        pdf = create_attachment(db_session, conversation, extracted_text="Report body")
        image = create_attachment(
            db_session,
            conversation,
            kind=AttachmentKind.image,
            file_name="photo.jpg",
            file_type="image/jpeg",
        )

        result = await _resolve(AttachmentResolver(storage), conversation, [image.id, pdf.id])

        assert result.resolved_ids == [image.id, pdf.id]
        assert result.skipped == []
        assert result.resolved[1].extracted_text == "Report body"
        assert result.resolved[0].kind is AttachmentKind.image
        # Nothing had to be downloaded
        assert storage.paths == []

    @pytest.mark.asyncio
    async def test_duplicates_collapsed_in_first_seen_order(self, db_session, storage, conversation):
        a = create_attachment(db_session, conversation, extracted_text="A")
        b = create_attachment(db_session, conversation, extracted_text="B")

        result = await _resolve(AttachmentResolver(storage), conversation, [b.id, a.id, b.id])

        assert result.resolved_ids == [b.id, a.id]

    @pytest.mark.asyncio
    async def test_empty_input(self, storage, conversation):
        result = await _resolve(AttachmentResolver(storage), conversation, [])

        assert result.resolved == []
        assert result.skipped == []

    @pytest.mark.asyncio
    async def test_metadata_carried(self, db_session, storage, conversation):
        page = create_attachment(
            db_session,
            conversation,
            kind=AttachmentKind.text,
            file_name="example-com-index.md",
            file_type="text/markdown",
            extracted_text="Scraped",
            metadata={"source_url": "https://example.com"},
        )

        result = await _resolve(AttachmentResolver(storage), conversation, [page.id])

        assert result.resolved[0].metadata["source_url"] == "https://example.com"


class TestLazyExtraction:
    @pytest.mark.asyncio
    async def test_pdf_extracted_on_demand(self, db_session, storage, conversation):
        pdf = create_attachment(db_session, conversation)
        storage.seed(pdf.storage_path, TEXT_PDF)

        result = await _resolve(AttachmentResolver(storage), conversation, [pdf.id])

        assert "Quarterly report body" in result.resolved[0].extracted_text
        # The row is not rewritten
        db_session.refresh(pdf)
        assert pdf.extracted_text is None

    @pytest.mark.asyncio
    async def test_text_decoded_on_demand(self, db_session, storage, conversation):
        note = create_attachment(
            db_session, conversation, kind=AttachmentKind.text, file_name="n.txt", file_type="text/plain"
        )
        storage.seed(note.storage_path, b"plain words", "text/plain")

        result = await _resolve(AttachmentResolver(storage), conversation, [note.id])

        assert result.resolved[0].extracted_text == "plain words"


class TestSkipped:
    @pytest.mark.asyncio
    async def test_unknown_and_foreign_ids(self, db_session, storage, conversation, agent):
        other_conversation = create_conversation(db_session, agent)
        elsewhere = create_attachment(db_session, other_conversation, extracted_text="x")
        stranger_agent = create_agent(db_session, uuid4())
        strangers = create_attachment(
            db_session, create_conversation(db_session, stranger_agent), extracted_text="y"
        )
        missing = uuid4()

        result = await _resolve(
            AttachmentResolver(storage), conversation, [missing, elsewhere.id, strangers.id]
        )

        assert result.resolved == []
        assert [(s.id, s.reason) for s in result.skipped] == [
            (missing, SkipReason.not_found),
            (elsewhere.id, SkipReason.not_found),
            (strangers.id, SkipReason.not_found),
        ]

    @pytest.mark.asyncio
    async def test_missing_blob(self, db_session, storage, conversation):
        pdf = create_attachment(db_session, conversation)

        result = await _resolve(AttachmentResolver(storage), conversation, [pdf.id])

        assert result.resolved == []
        assert result.skipped[0].reason == SkipReason.blob_unavailable

    @pytest.mark.asyncio
    async def test_unparsable_pdf(self, db_session, storage, conversation):
        pdf = create_attachment(db_session, conversation)
        storage.seed(pdf.storage_path, CORRUPT_PDF)

        result = await _resolve(AttachmentResolver(storage), conversation, [pdf.id])

        assert result.skipped[0].reason == SkipReason.extraction_failed

    @pytest.mark.asyncio
    async def test_slow_fetch_times_out(self, db_session, storage, conversation, monkeypatch):
        pdf = create_attachment(db_session, conversation)
        ready = create_attachment(db_session, conversation, extracted_text="ready")

        async def slow_get(path):
            await asyncio.sleep(1)
            return TEXT_PDF

        monkeypatch.setattr(storage, "get_object", slow_get)

        result = await _resolve(
            AttachmentResolver(storage, fetch_timeout_s=0.05), conversation, [pdf.id, ready.id]
        )

        assert result.resolved_ids == [ready.id]
        assert result.skipped[0].id == pdf.id
        assert result.skipped[0].reason == SkipReason.timeout

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, db_session, storage, conversation, monkeypatch):
        pdf = create_attachment(db_session, conversation)

        async def broken_get(path):
            raise RuntimeError("driver bug")

        monkeypatch.setattr(storage, "get_object", broken_get)

        result = await _resolve(AttachmentResolver(storage), conversation, [pdf.id])

        assert result.skipped[0].reason == SkipReason.error

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_the_rest(self, db_session, storage, conversation):
        good = create_attachment(db_session, conversation, extracted_text="good")
        bad = create_attachment(db_session, conversation)

        result = await _resolve(AttachmentResolver(storage), conversation, [bad.id, good.id])

        assert result.resolved_ids == [good.id]
        assert [s.id for s in result.skipped] == [bad.id]
