""" The dispatcher is called from two surfaces with different policies, the
end-user surface and the business surface. The verified identity is
supplied by the upstream authentication, uniwash only turns it into one of
the two actor variants.

"""
from __future__ import annotations

from types import MappingProxyType

from uniwash.modules import errors


from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Collection
    from collections.abc import Mapping
    from typing_extensions import TypeAlias


BUSINESS_ROLES = frozenset(('owner', 'admin', 'operator'))


class ActorIdentity(NamedTuple):
    """ The verified identity handed over by the authentication middleware.

    :id:
        The id of the user.

    :roles:
        Maps business ids to the roles the user has in that business.

    """

    id: int
    roles: Mapping[int, frozenset[str]] = MappingProxyType({})

    def roles_for(self, business_id: int) -> frozenset[str]:
        return frozenset(self.roles.get(business_id, ()))


class EndUser(NamedTuple):
    user_id: int

    @classmethod
    def from_identity(cls, identity: ActorIdentity) -> EndUser:
        return cls(identity.id)


class BusinessAgent(NamedTuple):
    user_id: int
    business_id: int

    @classmethod
    def for_business(
        cls,
        identity: ActorIdentity,
        business_id: int,
        roles: Collection[str] = BUSINESS_ROLES
    ) -> BusinessAgent:
        """ Returns an agent acting on behalf of the given business, if the
        identity has one of the given roles there.

        """
        if not identity.roles_for(business_id) & frozenset(roles):
            raise errors.NotAuthorized

        return cls(identity.id, business_id)


Actor: TypeAlias = 'EndUser | BusinessAgent'
