from uniwash.db.models.base import ORMBase
from uniwash.db.models.user import User
from uniwash.db.models.post import Post, Taxonomy, post_taxonomies
from uniwash.db.models.device import Device
from uniwash.db.models.reservation import Reservation


__all__ = (
    'ORMBase',
    'Device',
    'Post',
    'Reservation',
    'Taxonomy',
    'User',
    'post_taxonomies',
)
