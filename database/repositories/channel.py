from typing import List
from sqlalchemy import select

from database.models import ChatChannel
from database.repositories.base import BaseRepository
from dispatch.dto import ChannelDTO


def _to_dto(channel: ChatChannel) -> ChannelDTO:
    return ChannelDTO(
        id=channel.id,
        tenant_id=channel.tenant_id,
        name=channel.name,
        webhook_url=channel.webhook_url,
        is_active=bool(channel.is_active),
        description=channel.description,
    )


class ChannelRepository(BaseRepository):
    def get_channels(self, tenant_id: int) -> List[ChannelDTO]:
        """Active channels for a tenant, newest first."""
        stmt = select(ChatChannel).where(
            ChatChannel.tenant_id == tenant_id,
            ChatChannel.is_active.is_(True)
        ).order_by(ChatChannel.created_at.desc(), ChatChannel.id.desc())
        return [_to_dto(c) for c in self.db.execute(stmt).scalars().all()]
