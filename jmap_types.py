"""JMAP type definitions (RFC 8620 core, RFC 8621 mail).

Wire-level shapes (requests, responses, references) are plain dataclasses.
Records and result envelopes are pydantic models that accept the server's
camelCase JSON and keep unknown properties around untouched.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Capability:
    CORE = "urn:ietf:params:jmap:core"
    MAIL = "urn:ietf:params:jmap:mail"
    SUBMISSION = "urn:ietf:params:jmap:submission"


# Capability required by each method namespace ("Email" in "Email/get").
NAMESPACE_CAPABILITIES = {
    "Core": Capability.CORE,
    "Mailbox": Capability.MAIL,
    "Thread": Capability.MAIL,
    "Email": Capability.MAIL,
    "SearchSnippet": Capability.MAIL,
    "Identity": Capability.SUBMISSION,
    "EmailSubmission": Capability.SUBMISSION,
}


class Keyword:
    SEEN = "$seen"
    FLAGGED = "$flagged"
    DRAFT = "$draft"
    ANSWERED = "$answered"
    FORWARDED = "$forwarded"


class Role:
    ALL = "all"
    ARCHIVE = "archive"
    DRAFTS = "drafts"
    FLAGGED = "flagged"
    IMPORTANT = "important"
    INBOX = "inbox"
    JUNK = "junk"
    SENT = "sent"
    SUBSCRIBED = "subscribed"
    TRASH = "trash"


ERROR_METHOD = "error"
DEFAULT_PAGE_SIZE = 50
MAX_BODY_VALUE_BYTES = 1024 * 1024

EMAIL_LIST_PROPERTIES = [
    "id",
    "threadId",
    "mailboxIds",
    "keywords",
    "receivedAt",
    "from",
    "to",
    "subject",
    "preview",
    "hasAttachment",
]

EMAIL_FULL_PROPERTIES = [
    "id",
    "blobId",
    "threadId",
    "mailboxIds",
    "keywords",
    "size",
    "receivedAt",
    "messageId",
    "inReplyTo",
    "references",
    "sender",
    "from",
    "to",
    "cc",
    "bcc",
    "replyTo",
    "subject",
    "sentAt",
    "bodyStructure",
    "bodyValues",
    "textBody",
    "htmlBody",
    "attachments",
    "hasAttachment",
    "preview",
]


def keyword_path(keyword: str) -> str:
    return f"keywords/{keyword}"


def mailbox_path(mailbox_id: str) -> str:
    return f"mailboxIds/{mailbox_id}"


@dataclass(frozen=True)
class ResultReference:
    """Points at a path inside the result of an earlier call in the same batch.

    Only `RequestBuilder.ref` creates these. Put one in an argument dict under
    the plain argument name; the builder emits it as ``"#name"`` on the wire.
    """

    result_of: str
    name: str
    path: str

    def to_json(self) -> dict[str, str]:
        return {"resultOf": self.result_of, "name": self.name, "path": self.path}


@dataclass(frozen=True)
class CreationReference:
    """The server-assigned id of a record created earlier in the batch.

    Serialises to the literal ``"#<creation_id>"`` token, both as a value and
    as a dict key.
    """

    creation_id: str

    def __str__(self) -> str:
        return f"#{self.creation_id}"


@dataclass(frozen=True)
class MethodCall:
    name: str
    args: dict[str, Any]
    call_id: str

    def to_json(self) -> list:
        return [self.name, self.args, self.call_id]


@dataclass(frozen=True)
class BatchRequest:
    using: tuple[str, ...]
    method_calls: tuple[MethodCall, ...]

    def to_json(self) -> dict[str, Any]:
        return {
            "using": list(self.using),
            "methodCalls": [c.to_json() for c in self.method_calls],
        }


# [name or "error", result, call id]
MethodResponse = tuple[str, dict[str, Any], str]


@dataclass
class BatchResponse:
    method_responses: list[MethodResponse] = field(default_factory=list)
    session_state: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "BatchResponse":
        responses = [
            (name, result, call_id)
            for name, result, call_id in data.get("methodResponses", [])
        ]
        return cls(method_responses=responses, session_state=data.get("sessionState"))


@dataclass(frozen=True)
class Success:
    method: str
    data: dict[str, Any]


@dataclass(frozen=True)
class Failure:
    type: str
    description: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


MethodResult = Union[Success, Failure]


class JMAPModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class Account(JMAPModel):
    name: str
    is_personal: bool = True
    is_read_only: bool = False
    account_capabilities: dict[str, Any] = Field(default_factory=dict)


class Session(JMAPModel):
    """Session resource served at /.well-known/jmap."""

    capabilities: dict[str, Any] = Field(default_factory=dict)
    accounts: dict[str, Account] = Field(default_factory=dict)
    primary_accounts: dict[str, str] = Field(default_factory=dict)
    username: str = ""
    api_url: str
    download_url: str | None = None
    upload_url: str | None = None
    event_source_url: str | None = None
    state: str | None = None


class EmailAddress(JMAPModel):
    name: str | None = None
    email: str

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


class EmailBodyPart(JMAPModel):
    part_id: str | None = None
    blob_id: str | None = None
    size: int | None = None
    name: str | None = None
    type: str | None = None
    charset: str | None = None
    disposition: str | None = None
    cid: str | None = None
    sub_parts: list["EmailBodyPart"] | None = None


class EmailBodyValue(JMAPModel):
    value: str
    is_encoding_problem: bool = False
    is_truncated: bool = False


class EmailListItem(JMAPModel):
    id: str
    thread_id: str | None = None
    mailbox_ids: dict[str, bool] = Field(default_factory=dict)
    keywords: dict[str, bool] = Field(default_factory=dict)
    received_at: str | None = None
    from_: list[EmailAddress] | None = Field(default=None, alias="from")
    to: list[EmailAddress] | None = None
    subject: str | None = None
    preview: str | None = None
    has_attachment: bool = False

    @property
    def is_seen(self) -> bool:
        return bool(self.keywords.get(Keyword.SEEN))

    @property
    def is_flagged(self) -> bool:
        return bool(self.keywords.get(Keyword.FLAGGED))


class Email(EmailListItem):
    blob_id: str | None = None
    size: int | None = None
    message_id: list[str] | None = None
    in_reply_to: list[str] | None = None
    references: list[str] | None = None
    sender: list[EmailAddress] | None = None
    cc: list[EmailAddress] | None = None
    bcc: list[EmailAddress] | None = None
    reply_to: list[EmailAddress] | None = None
    sent_at: str | None = None
    body_structure: EmailBodyPart | None = None
    body_values: dict[str, EmailBodyValue] = Field(default_factory=dict)
    text_body: list[EmailBodyPart] = Field(default_factory=list)
    html_body: list[EmailBodyPart] = Field(default_factory=list)
    attachments: list[EmailBodyPart] = Field(default_factory=list)

    def body_text(self) -> str:
        """Concatenated text body values, falling back to the HTML ones."""
        for parts in (self.text_body, self.html_body):
            text = "".join(
                self.body_values[p.part_id].value
                for p in parts
                if p.part_id in self.body_values
            )
            if text:
                return text
        return ""


class MailboxRights(JMAPModel):
    may_read_items: bool = True
    may_add_items: bool = True
    may_remove_items: bool = True
    may_set_seen: bool = True
    may_set_keywords: bool = True
    may_create_child: bool = True
    may_rename: bool = True
    may_delete: bool = True
    may_submit: bool = True


class Mailbox(JMAPModel):
    id: str
    name: str = ""
    parent_id: str | None = None
    role: str | None = None
    sort_order: int = 0
    total_emails: int = 0
    unread_emails: int = 0
    total_threads: int = 0
    unread_threads: int = 0
    my_rights: MailboxRights | None = None
    is_subscribed: bool = False


class Thread(JMAPModel):
    id: str
    email_ids: list[str] = Field(default_factory=list)


class Identity(JMAPModel):
    id: str
    name: str = ""
    email: str
    reply_to: list[EmailAddress] | None = None
    bcc: list[EmailAddress] | None = None
    text_signature: str = ""
    html_signature: str = ""
    may_delete: bool = False


UndoStatus = Literal["pending", "final", "canceled"]


class EmailSubmission(JMAPModel):
    id: str
    identity_id: str | None = None
    email_id: str | None = None
    thread_id: str | None = None
    send_at: str | None = None
    undo_status: UndoStatus = "pending"
    delivery_status: dict[str, Any] | None = None


class SetError(JMAPModel):
    type: str
    description: str | None = None
    properties: list[str] | None = None


T = TypeVar("T")


class GetResult(JMAPModel, Generic[T]):
    account_id: str | None = None
    state: str | None = None
    items: list[T] = Field(default_factory=list, alias="list")
    not_found: list[str] = Field(default_factory=list)


class QueryResult(JMAPModel):
    account_id: str | None = None
    query_state: str | None = None
    can_calculate_changes: bool = False
    position: int = 0
    ids: list[str] = Field(default_factory=list)
    total: int | None = None
    limit: int | None = None


class SetResult(JMAPModel, Generic[T]):
    account_id: str | None = None
    old_state: str | None = None
    new_state: str | None = None
    created: dict[str, T] | None = None
    updated: dict[str, dict[str, Any] | None] | None = None
    destroyed: list[str] | None = None
    not_created: dict[str, SetError] | None = None
    not_updated: dict[str, SetError] | None = None
    not_destroyed: dict[str, SetError] | None = None


class ChangesResult(JMAPModel):
    account_id: str | None = None
    old_state: str
    new_state: str
    has_more_changes: bool = False
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    destroyed: list[str] = Field(default_factory=list)
