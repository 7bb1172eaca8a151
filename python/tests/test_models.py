"""Schema constraint tests.

The database rejects rows the services never write: LLM fields on user
turns, thumbnails on documents, extracted text on images, negative costs.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from doggo.db.models import Attachment, AttachmentKind, Message, UsageEvent


def _assert_rejected(session, row):
    session.add(row)
    with pytest.raises(IntegrityError):
        session.flush()
    session.rollback()


class TestMessageConstraints:
    def test_llm_fields_on_user_turn(self, db_session, conversation):
        _assert_rejected(
            db_session,
            Message(
                conversation_id=conversation.id,
                seq=1,
                role="user",
                content="hi",
                model_used="claude-3-haiku-20240307",
            ),
        )

    @pytest.mark.parametrize("field,value", [("role", "system"), ("status", "pending")])
    def test_enumerated_columns(self, db_session, conversation, field, value):
        values = {"role": "user", "status": "complete"} | {field: value}
        _assert_rejected(
            db_session,
            Message(conversation_id=conversation.id, seq=1, content="hi", **values),
        )


class TestAttachmentConstraints:
    def _attachment(self, conversation, **overrides):
        values = {
            "conversation_id": conversation.id,
            "user_id": conversation.user_id,
            "kind": AttachmentKind.pdf.value,
            "file_name": "a.pdf",
            "file_type": "application/pdf",
            "file_size": 10,
            "storage_path": "u/c/documents/a.pdf",
        } | overrides
        return Attachment(**values)

    def test_thumbnail_on_document(self, db_session, conversation):
        _assert_rejected(
            db_session, self._attachment(conversation, thumbnail_path="u/c/thumbnails/a.jpg")
        )

    def test_extracted_text_on_image(self, db_session, conversation):
        _assert_rejected(
            db_session,
            self._attachment(
                conversation, kind="image", file_type="image/jpeg", extracted_text="nope"
            ),
        )

    def test_unknown_kind(self, db_session, conversation):
        _assert_rejected(db_session, self._attachment(conversation, kind="video"))

    def test_metadata_defaults_to_empty(self, db_session, conversation):
        attachment = self._attachment(conversation)
        db_session.add(attachment)
        db_session.commit()

        db_session.refresh(attachment)
        assert attachment.meta == {}
        assert attachment.attachment_kind is AttachmentKind.pdf


class TestUsageEventConstraints:
    def test_negative_cost(self, db_session, test_user_id):
        _assert_rejected(
            db_session,
            UsageEvent(user_id=test_user_id, event_type="message", cost_usd=Decimal("-1")),
        )

    def test_unknown_event_type(self, db_session, test_user_id):
        _assert_rejected(db_session, UsageEvent(user_id=test_user_id, event_type="embedding"))
