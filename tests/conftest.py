from jmap_client import JMAPClient, ResponseParser


class FakeJMAP(JMAPClient):
    """JMAPClient that answers requests from canned per-method results.

    `responses` maps a method name to the result payload, to an
    ``("error", {...})`` tuple, or to a callable taking the MethodCall and
    returning either. Every built request is kept in `requests`.
    """

    def __init__(self, responses=None, account_id="test-account"):
        super().__init__(base_url="https://jmap.example.com", token="fake-token")
        self.responses = dict(responses or {})
        self.account_id = account_id
        self.api_url = "https://jmap.example.com/api/"
        self.requests = []

    @property
    def calls(self):
        return [c for r in self.requests for c in r.method_calls]

    async def connect(self):
        return self.account_id

    async def execute(self, builder):
        request = builder.build()
        self.requests.append(request)
        method_responses = []
        for call in request.method_calls:
            answer = self.responses.get(call.name, {})
            if callable(answer):
                answer = answer(call)
            if isinstance(answer, tuple):
                name, data = answer
            else:
                name, data = call.name, answer
            method_responses.append([name, data, call.call_id])
        return ResponseParser({"methodResponses": method_responses, "sessionState": "s1"})


MAILBOXES = [
    {"id": "mb-inbox", "name": "Inbox", "role": "inbox", "totalEmails": 10, "unreadEmails": 3},
    {"id": "mb-drafts", "name": "Drafts", "role": "drafts", "totalEmails": 1, "unreadEmails": 0},
    {"id": "mb-sent", "name": "Sent", "role": "sent", "totalEmails": 50, "unreadEmails": 0},
    {"id": "mb-trash", "name": "Trash", "role": "trash", "totalEmails": 0, "unreadEmails": 0},
    {"id": "mb-archive", "name": "Archive", "role": "archive", "totalEmails": 7, "unreadEmails": 0},
    {"id": "mb-projects", "name": "Projects", "role": None, "totalEmails": 4, "unreadEmails": 1},
]

IDENTITIES = [
    {"id": "id-1", "name": "Evie", "email": "evie@example.com"},
]
