from __future__ import annotations

from sqlalchemy import types
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.orm import Mapped
from sqlalchemy.schema import Column
from sqlalchemy.schema import ForeignKey
from sqlalchemy.schema import Table

from uniwash.db.models.base import ORMBase
from uniwash.db.models.timestamp import TimestampMixin


from typing import Literal
from typing import TypeAlias


PostStatus: TypeAlias = Literal['draft', 'published', 'archived']
TaxonomyType: TypeAlias = Literal['city', 'workspace', 'dormitory']


post_taxonomies = Table(
    'post_taxonomies',
    ORMBase.metadata,
    Column('post_id', ForeignKey('posts.id'), primary_key=True),
    Column('taxonomy_id', ForeignKey('taxonomies.id'), primary_key=True),
)


class Taxonomy(ORMBase):
    """ A location a post is found at, one of city, workspace (a campus for
    example) or dormitory.

    """

    __tablename__ = 'taxonomies'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    type: Mapped[TaxonomyType] = mapped_column(
        types.Enum('city', 'workspace', 'dormitory', name='taxonomy_type')
    )

    title: Mapped[str] = mapped_column(types.Unicode(200))


class Post(TimestampMixin, ORMBase):
    """ The listing a business publishes its devices under. Reminders are
    only sent for devices whose post is published.

    """

    __tablename__ = 'posts'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    business_id: Mapped[int] = mapped_column(index=True)

    title: Mapped[str] = mapped_column(types.Unicode(200), default='')

    status: Mapped[PostStatus] = mapped_column(
        types.Enum('draft', 'published', 'archived', name='post_status'),
        default='draft'
    )

    taxonomies: Mapped[list[Taxonomy]] = relationship(
        secondary=post_taxonomies
    )

    @property
    def is_published(self) -> bool:
        return self.status == 'published'
