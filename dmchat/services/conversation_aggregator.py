"""Per-partner conversation view derived from the message log.

Conversations have no stored identity: they are folded from the ordered
message sequence a viewer can see. ``ConversationIndex`` keeps the fold
open so new messages can be applied one at a time.
"""

from typing import Dict, Iterable, List, Mapping, Optional

from dmchat.schemas.conversation import ConversationSummary
from dmchat.schemas.message import Message
from dmchat.schemas.user import UserProfile


class ConversationIndex:

    def __init__(self, viewer_id: str) -> None:
        self.viewer_id = viewer_id
        self._by_partner: Dict[str, ConversationSummary] = {}

    def __len__(self) -> int:
        return len(self._by_partner)

    def get(self, partner_id: str) -> Optional[ConversationSummary]:
        return self._by_partner.get(partner_id)

    def apply(self, message: Message) -> Optional[ConversationSummary]:
        """Fold one message into the index.

        Messages must arrive in (created_at, id) order; the last write per
        partner wins. Messages the viewer is not part of are ignored.
        """
        if not message.involves(self.viewer_id):
            return None
        partner_id = message.partner_of(self.viewer_id)
        summary = self._by_partner.get(partner_id)
        if summary is None:
            summary = ConversationSummary(
                partner_id=partner_id,
                last_message=message.content,
                last_message_id=message.id,
                last_message_subject=message.subject,
                last_message_time=message.created_at,
                last_sender_id=message.sender_id,
            )
            self._by_partner[partner_id] = summary
        else:
            summary.last_message = message.content
            summary.last_message_id = message.id
            summary.last_message_subject = message.subject
            summary.last_message_time = message.created_at
            summary.last_sender_id = message.sender_id
        if message.recipient_id == self.viewer_id and message.read_at is None:
            summary.unread_count += 1
        return summary

    def mark_read(self, partner_id: str) -> None:
        summary = self._by_partner.get(partner_id)
        if summary is not None:
            summary.unread_count = 0

    def attach_profiles(self, profiles: Mapping[str, UserProfile]) -> None:
        for partner_id, summary in self._by_partner.items():
            summary.partner = profiles.get(partner_id)

    def summaries(self) -> List[ConversationSummary]:
        return sorted(
            self._by_partner.values(),
            key=lambda s: (s.last_message_time, s.last_message_id),
            reverse=True,
        )

    @property
    def total_unread(self) -> int:
        return sum(s.unread_count for s in self._by_partner.values())


def aggregate_conversations(viewer_id: str, messages: Iterable[Message]) -> List[ConversationSummary]:
    """Build the viewer's conversation list from a chronologically ordered query result."""

    index = ConversationIndex(viewer_id)
    for message in messages:
        index.apply(message)
    return index.summaries()


def filter_conversations(summaries: List[ConversationSummary], term: Optional[str]) -> List[ConversationSummary]:
    needle = (term or "").strip().lower()
    if not needle:
        return summaries
    matched = []
    for summary in summaries:
        haystack = [summary.partner_id, summary.last_message]
        if summary.partner is not None:
            haystack.append(summary.partner.display_name)
        if any(needle in value.lower() for value in haystack):
            matched.append(summary)
    return matched
