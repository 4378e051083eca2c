from typing import NamedTuple, Optional


class ReplyTriple(NamedTuple):
    message_id: Optional[str] = None
    content: Optional[str] = None
    username: Optional[str] = None

    @property
    def present(self) -> bool:
        return self.message_id is not None


NO_REPLY = ReplyTriple()


class ReplyResolver:
    """
    Collapses the optional reply fields of a send into one all-or-nothing snapshot.

    The referenced message is trusted as sent: nothing is looked up in the store,
    so the snapshot can never drift from what the sender saw.
    """

    @staticmethod
    def normalize(
        reply_id: Optional[str] = None,
        reply_content: Optional[str] = None,
        reply_username: Optional[str] = None,
    ) -> ReplyTriple:
        fields = (reply_id, reply_content, reply_username)
        # Blank counts as missing, same rule as the required send fields
        if any(not isinstance(value, str) or not value.strip() for value in fields):
            return NO_REPLY
        return ReplyTriple(reply_id, reply_content, reply_username)
