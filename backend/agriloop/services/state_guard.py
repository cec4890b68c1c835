from __future__ import annotations

from datetime import datetime

from sqlalchemy import update

from agriloop.extensions import db


def compare_and_set(model, row_id: int, *conditions, **values) -> bool:
    """UPDATE one row only while ``conditions`` still hold.

    Returns False when another writer got there first (zero rows matched).
    The caller decides whether that is a Conflict or a silent no-op.
    """
    if "updated_at" in model.__table__.c and "updated_at" not in values:
        values["updated_at"] = datetime.utcnow()
    stmt = (
        update(model)
        .where(model.id == int(row_id), *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return int(result.rowcount or 0) == 1
