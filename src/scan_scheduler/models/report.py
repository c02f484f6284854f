"""Report model shared with the report management layer."""

from typing_extensions import override

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Report(Base):
    """Scan report row.

    Owned by the report/task management layer. The scheduler only reads it
    to denormalise queue entries (report UUID, task and owner identifiers);
    task and owner are opaque handles and are never interpreted here.
    """

    __tablename__ = "reports"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    task: Mapped[int | None] = mapped_column(Integer, nullable=True)
    owner: Mapped[int | None] = mapped_column(Integer, nullable=True)

    @override
    def __repr__(self) -> str:
        return f"<Report(id={self.id}, uuid={self.uuid}, task={self.task})>"
