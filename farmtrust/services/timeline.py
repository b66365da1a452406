from farmtrust.db import db
from farmtrust.models import Order, OrderEvent, User


def add_event(order: Order, event_type: str, actor: User | None = None,
              description: str | None = None, **extra) -> OrderEvent:
    """Append an entry to the order timeline. Caller commits."""
    event = OrderEvent(
        order=order,
        event_type=event_type,
        actor_type=actor.role.value if actor else "system",
        actor_id=actor.id if actor else None,
        description=description,
        extra_data=extra or None,
    )
    db.session.add(event)
    return event
