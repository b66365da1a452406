from farmtrust.db import db
from farmtrust.models import Notification, User
from farmtrust.services.errors import NotFound
from farmtrust.utils.responses import commit_or_rollback


def notify(user_id: int, title: str, message: str, type_: str,
           priority: str = "medium", related: tuple[str, int] | None = None) -> Notification:
    """Queue an in-app notification in the current session. Caller commits."""
    n = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type_,
        priority=priority,
        related_type=related[0] if related else None,
        related_id=related[1] if related else None,
    )
    db.session.add(n)
    return n


def list_for(user: User, unread_only: bool, page: int, limit: int):
    q = Notification.query.filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()) \
        .paginate(page=page, per_page=limit, error_out=False)


def mark_read(notification_id: int, user: User) -> Notification:
    n = db.session.get(Notification, notification_id)
    if not n or n.user_id != user.id:
        raise NotFound("Notification not found")
    n.read = True
    commit_or_rollback()
    return n
