"""JMAP request builder, response parser and HTTP transport."""

import copy
import itertools
import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

import httpx

from jmap_errors import (
    DuplicateCallId,
    NoMailAccount,
    RemoteMethodError,
    SessionDiscoveryFailed,
    TransportError,
    Unauthorized,
    UnknownCallId,
    UnknownCreationId,
)
from jmap_types import (
    ERROR_METHOD,
    NAMESPACE_CAPABILITIES,
    BatchRequest,
    BatchResponse,
    Capability,
    CreationReference,
    Failure,
    MethodCall,
    MethodResponse,
    MethodResult,
    ResultReference,
    Session,
    Success,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.fastmail.com"
WELL_KNOWN_PATH = "/.well-known/jmap"


class CallIdGenerator:
    """Monotonic call IDs: ``call-0``, ``call-1``, ..."""

    def __init__(self, start: int = 0) -> None:
        self._counter = itertools.count(start)

    def next(self, prefix: str = "call") -> str:
        return f"{prefix}-{next(self._counter)}"


def _walk(value: Any, depth: int = 0) -> Iterator[tuple[Any, int]]:
    """Yield every dict key and value nested in `value`, with its depth."""
    if isinstance(value, dict):
        for key, item in value.items():
            yield key, depth
            yield item, depth
            yield from _walk(item, depth + 1)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield item, depth
            yield from _walk(item, depth + 1)


def _encode(value: Any, top_level: bool = False) -> Any:
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if isinstance(key, CreationReference):
                key = str(key)
            if top_level and isinstance(item, ResultReference):
                out[f"#{key}"] = item.to_json()
            else:
                out[key] = _encode(item)
        return out
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, CreationReference):
        return str(value)
    if isinstance(value, ResultReference):
        raise TypeError("Result references are only allowed as top-level arguments")
    return value


class RequestBuilder:
    """Accumulates method calls for one JMAP request.

    A builder belongs to a single batch: it owns its call ID counter and
    capability set, and is thrown away after the request is sent.

        builder = RequestBuilder()
        query = builder.call("Email/query", {"accountId": acc, "limit": 10})
        builder.call("Email/get", {"accountId": acc, "ids": builder.ref(query, "/ids")})
        request = builder.build()
    """

    def __init__(self) -> None:
        self._using = {Capability.CORE: None}
        self._calls: list[MethodCall] = []
        self._call_index: dict[str, int] = {}
        self._creation_ids: set[str] = set()
        self._ids = CallIdGenerator()

    def __len__(self) -> int:
        return len(self._calls)

    def add_capability(self, capability: str) -> "RequestBuilder":
        self._using[capability] = None
        return self

    def add_capabilities(self, capabilities: Iterable[str]) -> "RequestBuilder":
        for capability in capabilities:
            self.add_capability(capability)
        return self

    def call(self, method_name: str, args: dict[str, Any], call_id: str | None = None) -> str:
        """Register a method call and return its call ID.

        `args` may hold `ResultReference` values (from `ref`) at the top level
        and `CreationReference` values or keys anywhere.
        """
        if call_id is None:
            call_id = self._ids.next()
            while call_id in self._call_index:
                call_id = self._ids.next()
        elif call_id in self._call_index:
            raise DuplicateCallId(call_id)

        creating = set(args.get("create") or ())
        self._check_references(args, creating)

        namespace = method_name.split("/", 1)[0]
        if namespace in NAMESPACE_CAPABILITIES:
            self.add_capability(NAMESPACE_CAPABILITIES[namespace])

        self._calls.append(MethodCall(method_name, _encode(args, top_level=True), call_id))
        self._call_index[call_id] = len(self._calls) - 1
        self._creation_ids.update(creating)
        return call_id

    def _check_references(self, args: dict[str, Any], creating: set[str]) -> None:
        for value, depth in _walk(args):
            if isinstance(value, ResultReference):
                if depth > 0:
                    raise TypeError("Result references are only allowed as top-level arguments")
                if value.result_of not in self._call_index:
                    raise UnknownCallId(value.result_of)
            elif isinstance(value, CreationReference):
                known = value.creation_id in self._creation_ids or value.creation_id in creating
                if not known:
                    raise UnknownCreationId(value.creation_id)

    def ref(self, call_id: str, path: str) -> ResultReference:
        """Back-reference to `path` in the result of an earlier call."""
        index = self._call_index.get(call_id)
        if index is None:
            raise UnknownCallId(call_id)
        return ResultReference(result_of=call_id, name=self._calls[index].name, path=path)

    def creation_ref(self, creation_id: str) -> CreationReference:
        """Reference to the id of a record created in this request.

        Validated when the call using it is registered, since a create and an
        ``onSuccess*`` argument of the same call may refer to each other.
        """
        return CreationReference(creation_id)

    def build(self) -> BatchRequest:
        return BatchRequest(
            using=tuple(self._using),
            method_calls=tuple(
                MethodCall(c.name, copy.deepcopy(c.args), c.call_id) for c in self._calls
            ),
        )


def _decode(name: str, data: dict[str, Any]) -> MethodResult:
    if name == ERROR_METHOD:
        return Failure(
            type=data.get("type", "serverFail"),
            description=data.get("description"),
            data=data,
        )
    return Success(method=name, data=data)


class ResponseParser:
    """Read-only view of one JMAP response, indexed by call ID."""

    def __init__(self, response: BatchResponse | dict[str, Any]) -> None:
        if isinstance(response, dict):
            response = BatchResponse.from_json(response)
        self.response = response
        self.session_state = response.session_state
        self._results: dict[str, MethodResult] = {}
        for name, data, call_id in response.method_responses:
            if call_id in self._results:
                # Precedence is undefined by the protocol; the last one wins.
                logger.warning("Server returned call ID %s more than once", call_id)
            self._results[call_id] = _decode(name, data)

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._results

    def result(self, call_id: str) -> MethodResult:
        try:
            return self._results[call_id]
        except KeyError:
            raise UnknownCallId(call_id) from None

    def get(self, call_id: str, model: Any = None) -> Any:
        """Payload of a successful call, optionally validated into `model`.

        Raises `RemoteMethodError` if the server answered that call with an
        error, and `UnknownCallId` if it did not answer it at all.
        """
        result = self.result(call_id)
        if isinstance(result, Failure):
            raise RemoteMethodError(result.type, result.description)
        if model is not None:
            return model.model_validate(result.data)
        return result.data

    def is_error(self, call_id: str) -> bool:
        return isinstance(self._results.get(call_id), Failure)

    def get_all(self) -> list[MethodResponse]:
        return list(self.response.method_responses)


@dataclass(frozen=True)
class AuthContext:
    access_token: str
    scheme: str = "Basic"
    api_url: str | None = None

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"{self.scheme} {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }


@dataclass(frozen=True)
class SessionInfo:
    session: Session
    api_url: str
    account_id: str


def _problem_details(r: httpx.Response) -> dict | None:
    try:
        body = r.json()
    except ValueError:
        return None
    if isinstance(body, dict) and "type" in body:
        return body
    return None


async def execute_batch(
    http: httpx.AsyncClient, request: BatchRequest, auth: AuthContext
) -> BatchResponse:
    """POST one request to the API endpoint. No retries."""
    if not auth.api_url:
        raise ValueError("AuthContext.api_url is required to execute a request")
    try:
        r = await http.post(auth.api_url, json=request.to_json(), headers=auth.headers())
    except httpx.RequestError as exc:
        raise TransportError(None, f"{type(exc).__name__}: {exc}") from exc

    if not r.is_success:
        raise TransportError(r.status_code, r.reason_phrase, _problem_details(r))
    try:
        return BatchResponse.from_json(r.json())
    except (ValueError, TypeError, AttributeError) as exc:
        raise TransportError(r.status_code, "Malformed JMAP response") from exc


async def discover_session(
    http: httpx.AsyncClient, server_url: str, auth: AuthContext
) -> SessionInfo:
    """Fetch the session resource and pick the primary mail account."""
    url = f"{server_url.rstrip('/')}{WELL_KNOWN_PATH}"
    try:
        r = await http.get(url, headers=auth.headers(), follow_redirects=True)
    except httpx.RequestError as exc:
        raise TransportError(None, f"{type(exc).__name__}: {exc}") from exc

    if r.status_code == 401:
        raise Unauthorized()
    if not r.is_success:
        raise SessionDiscoveryFailed(r.status_code, r.reason_phrase)

    try:
        session = Session.model_validate(r.json())
    except ValueError as exc:
        # Non-JSON bodies and pydantic ValidationError both land here.
        raise SessionDiscoveryFailed(r.status_code, "invalid session resource") from exc
    account_id = session.primary_accounts.get(Capability.MAIL)
    if not account_id:
        raise NoMailAccount()
    return SessionInfo(session=session, api_url=session.api_url, account_id=account_id)


class JMAPClient:
    """JMAP client with session caching.

    Settings come from the constructor, falling back to the environment:
    JMAP_BASE_URL, JMAP_ACCESS_TOKEN, JMAP_AUTH_SCHEME and JMAP_TIMEOUT.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        auth_scheme: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or os.environ.get("JMAP_BASE_URL", DEFAULT_BASE_URL)
        self.token = token or os.environ["JMAP_ACCESS_TOKEN"]
        self.auth_scheme = auth_scheme or os.environ.get("JMAP_AUTH_SCHEME", "Basic")
        if timeout is None:
            timeout = float(os.environ.get("JMAP_TIMEOUT", "30"))
        self.timeout = timeout
        self.session: Session | None = None
        self.api_url: str | None = None
        self.account_id: str | None = None
        self._transport = transport

    @property
    def auth(self) -> AuthContext:
        return AuthContext(access_token=self.token, scheme=self.auth_scheme, api_url=self.api_url)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def connect(self) -> str:
        """Discover the JMAP session once and return the mail account ID."""
        if self.account_id:
            return self.account_id
        async with self._http() as http:
            info = await discover_session(http, self.base_url, self.auth)
        self.session = info.session
        self.api_url = info.api_url
        self.account_id = info.account_id
        logger.info("Discovered JMAP session for account %s at %s", self.account_id, self.api_url)
        return self.account_id

    async def execute(self, builder: RequestBuilder) -> ResponseParser:
        """Send the builder's request as a single round trip."""
        if not self.api_url:
            await self.connect()
        request = builder.build()
        logger.debug(
            "JMAP request: %s",
            ", ".join(f"{c.name}[{c.call_id}]" for c in request.method_calls),
        )
        async with self._http() as http:
            response = await execute_batch(http, request, self.auth)
        return ResponseParser(response)

    async def call(
        self, method_name: str, args: dict[str, Any], capabilities: Iterable[str] = ()
    ) -> dict[str, Any]:
        """Run a single method call and return its payload."""
        builder = RequestBuilder().add_capabilities(capabilities)
        call_id = builder.call(method_name, args)
        parser = await self.execute(builder)
        return parser.get(call_id)
