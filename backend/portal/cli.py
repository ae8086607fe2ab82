"""Management CLI for the state permissions store.

Usage:
    python -m portal.cli seed-states     # Insert the 50 US states + DC if missing
    python -m portal.cli list-states     # Show states and their product counts
"""

import sys

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from portal.config import settings
from portal.models.catalog import State
from portal.models.state_allowed_product import StateAllowedProduct

US_STATES = (
    "Alabama", "Alaska", "Arizona", "Arkansas", "California", "Colorado",
    "Connecticut", "Delaware", "District of Columbia", "Florida", "Georgia",
    "Hawaii", "Idaho", "Illinois", "Indiana", "Iowa", "Kansas", "Kentucky",
    "Louisiana", "Maine", "Maryland", "Massachusetts", "Michigan", "Minnesota",
    "Mississippi", "Missouri", "Montana", "Nebraska", "Nevada", "New Hampshire",
    "New Jersey", "New Mexico", "New York", "North Carolina", "North Dakota",
    "Ohio", "Oklahoma", "Oregon", "Pennsylvania", "Rhode Island",
    "South Carolina", "South Dakota", "Tennessee", "Texas", "Utah", "Vermont",
    "Virginia", "Washington", "West Virginia", "Wisconsin", "Wyoming",
)


def seed_states() -> int:
    """Insert any missing states. Returns the number inserted."""
    engine = create_engine(settings.database_url_sync)
    with Session(engine) as session:
        existing = set(session.scalars(select(State.name)))
        missing = [name for name in US_STATES if name not in existing]
        session.add_all(State(name=name) for name in missing)
        session.commit()
    for name in missing:
        print(f"  Added {name}")
    print(f"\n{len(missing)} state(s) added, {len(existing)} already present")
    return len(missing)


def list_states():
    engine = create_engine(settings.database_url_sync)
    stmt = (
        select(State.name, func.count(StateAllowedProduct.product_id))
        .outerjoin(StateAllowedProduct, StateAllowedProduct.state_id == State.id)
        .group_by(State.id, State.name)
        .order_by(State.name)
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).all()
    for name, count in rows:
        print(f"  {name:<22} {count} product(s)")
    print(f"\n{len(rows)} state(s)")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "seed-states":
        seed_states()
    elif cmd == "list-states":
        list_states()
    else:
        print("Usage: python -m portal.cli [seed-states|list-states]")
