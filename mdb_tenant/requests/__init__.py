"""
Request/response orchestration.

Entities compose these generic verbs with their own filters to expose
find, update, delete and the array mutations.
"""

from .request import BaseRequest
from .response import BaseResponse

__all__ = [
    "BaseRequest",
    "BaseResponse",
]
