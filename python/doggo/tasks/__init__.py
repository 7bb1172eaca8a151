"""Celery tasks for Doggo.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.

Usage in API (enqueue):
    from doggo.tasks import generate_conversation_title
    generate_conversation_title.apply_async(
        args=[conversation_id],
        kwargs={"request_id": request_id},
        queue="titles",
    )
"""

from doggo.tasks.generate_title import generate_conversation_title

__all__ = ["generate_conversation_title"]
