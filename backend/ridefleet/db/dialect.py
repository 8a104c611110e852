from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def insert_ignore(db: Session, model, values: dict, index_elements: list[str]) -> int:
    """INSERT ... ON CONFLICT DO NOTHING. Returns the number of rows inserted."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise RuntimeError(f"Unsupported dialect for insert_ignore: {dialect}")
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return db.execute(stmt).rowcount or 0
