from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Matches the names PostgreSQL generates for the unnamed keys in the migrations.
NAMING_CONVENTION = {
    "pk": "%(table_name)s_pkey",
    "ix": "ix_%(column_0_label)s",
    "fk": "%(table_name)s_%(column_0_name)s_fkey",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
