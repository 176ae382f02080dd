from typing import Optional, TypedDict


# Profiles are owned by the user service; this side only reads these fields.
PUBLIC_PROFILE_FIELDS = ("full_name", "username", "profile_picture")


class UserDocument(TypedDict, total=False):

    _id: str
    email: str
    full_name: Optional[str]
    username: Optional[str]
    profile_picture: Optional[str]
