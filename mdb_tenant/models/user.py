"""
User entity.

Users are global: they live in the shared default database whatever
tenant the request runs under. The acting user of a request is also the
source of every audit stamp and of the default tenant id.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..constants import USERS_COLLECTION
from ..exceptions import CardinalityError, ValidationError
from ..query import FindOptions
from .base import BaseModel, UserLog

if TYPE_CHECKING:
    from ..requests import BaseRequest, BaseResponse


@dataclass
class User(BaseModel):
    """
    Attributes:
        username: Unique login name
        email: Contact address
        connection: Connection string of the user's tenant; empty means the default
        tenant_id: Database of the user's tenant
    """

    username: str = ""
    email: str = ""
    connection: str = ""
    tenant_id: str = ""

    def get_collection(self) -> tuple[str, bool]:
        return USERS_COLLECTION, True

    def get_user_log(self) -> UserLog:
        """Audit stamp for actions performed by this user."""
        return UserLog(user=self.get_id_str())

    def get_find_options(self, request: "BaseRequest") -> FindOptions:
        options = self.get_base_find_options(request)
        if self.username:
            options.add_equals("username", self.username)
        return options

    def validate(self) -> None:
        if not self.username:
            raise ValidationError("User.username is required")
        if " " in self.username:
            raise ValidationError(
                "User.username cannot contain spaces", context={"username": self.username}
            )

    async def update(self, request: "BaseRequest") -> "BaseResponse":
        """Create or update the user, refusing a username that is already taken."""
        try:
            self.validate()
            await self._check_username_available(request)
        except (ValidationError, CardinalityError) as e:
            return request.response_from_error(e.with_operation("User.update"))
        return await super().update(request)

    async def find_or_create(self, request: "BaseRequest") -> "BaseResponse":
        """Load the user matching this one's filters, creating it when none exists."""
        response = await self.find(request.clone(self))
        if response.error is not None:
            return response
        if response.total_rows == 1:
            self.apply_document(response.get_first().to_document())
            return response
        if response.total_rows > 1:
            return request.response_from_error(
                CardinalityError(
                    "User.find_or_create: more than one user found", found=response.total_rows
                )
            )
        return await self.update(request)

    async def _check_username_available(self, request: "BaseRequest") -> None:
        probe = User(username=self.username)
        response = await probe.find(request.clone(probe))
        response.raise_for_error()
        for other in response.items:
            if other.id != self.id:
                raise ValidationError(
                    "User.update: username already exists", context={"username": self.username}
                )
