from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MediaRef(BaseModel):

    type: Literal["image", "video"]
    url: str = Field(min_length=1)


class UploadedMedia(BaseModel):

    kind: Literal["image", "video"]
    url: str
    # transformed rendition for images; what the message stores when present
    variant_url: Optional[str] = None

    def as_ref(self) -> MediaRef:
        return MediaRef(type=self.kind, url=self.variant_url or self.url)


class SendMessageRequest(BaseModel):

    to_user_id: str = Field(min_length=1)
    text: Optional[str] = None
    media: Optional[MediaRef] = None


class PeerRequest(BaseModel):

    to_user_id: str = Field(min_length=1)


class DeleteMessageRequest(BaseModel):

    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId", min_length=1)
    type: Literal["me", "everyone"]
