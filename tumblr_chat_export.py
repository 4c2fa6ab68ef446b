#!/usr/bin/env python3
"""
Tumblr Chat Export Tool

Export the messages of a Tumblr conversation as a chronological transcript.
Tumblr has no public API for direct messages, so the tool logs in through the
web login flow (with optional two-factor code) and walks the same paginated
JSON feeds the web client uses.
"""

import argparse
import contextlib
import getpass
import io
import os
import re
import sys
import tempfile
import time
from datetime import date, datetime, timezone
from enum import Enum
from http.cookiejar import MozillaCookieJar
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import requests
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

# Constants
TUMBLR_BASE_URL = "https://www.tumblr.com"
LOGIN_URL = f"{TUMBLR_BASE_URL}/login"
LOGIN_MODE_URL = f"{TUMBLR_BASE_URL}/api/v2/login/mode"
TOKEN_URL = f"{TUMBLR_BASE_URL}/api/v2/oauth2/token"
CONVERSATIONS_URL = f"{TUMBLR_BASE_URL}/svc/conversations"
MESSAGES_URL = f"{TUMBLR_BASE_URL}/svc/conversations/messages"

API_TOKEN_PATTERN = re.compile(r'"API_TOKEN":"(.*?)"')
XHR_HEADERS = {"X-Requested-With": "XMLHttpRequest"}
BLOG_SUFFIX = ".tumblr.com"

MAX_LOGIN_ATTEMPTS = 3
MAX_PAGE_RETRIES = 5
REQUEST_TIMEOUT = 30  # seconds

MESSAGE_TIME_FORMAT = "%d/%m/%Y, %H:%M:%S"
DAY_FORMAT = "%Y%m%d"
POST_UNAVAILABLE_NOTICE = "sent a post that's no longer available."

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1


class TumblrExportError(Exception):
    """Base exception for Tumblr export errors."""
    pass


class CapabilityMissingError(TumblrExportError):
    """The interpreter lacks a transport feature the export needs."""
    pass


class SecureStorageError(TumblrExportError):
    """The permission-restricted cookie file could not be created."""
    pass


class ProtocolShapeError(TumblrExportError):
    """An expected token or feed envelope was not found in a response."""
    pass


class ProtocolResponseError(TumblrExportError):
    """A response that had to be JSON was not."""
    pass


class AuthRejectedError(TumblrExportError):
    """The login endpoint returned an error."""
    pass


class AuthExhaustedError(TumblrExportError):
    """Maximum login attempts exceeded."""
    pass


class SelectionError(TumblrExportError):
    """Invalid conversation menu choice."""
    pass


class ConversationNotFoundError(TumblrExportError):
    """No conversation matched the requested target."""
    pass


class OutputWriteError(TumblrExportError):
    """Transcript destination could not be written."""
    pass


class Traversal(str, Enum):
    """Signal returned by page handlers to the paginated fetcher."""
    CONTINUE = "continue"
    STOP = "stop"


class MessageKind(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    POSTREF = "POSTREF"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def of(cls, message: Dict[str, Any]) -> "MessageKind":
        """Classify a raw message, mapping unrecognized types to UNKNOWN."""
        try:
            kind = cls(message.get("type"))
        except ValueError:
            return cls.UNKNOWN
        return kind


def print_progress(message: str, verbose: bool = True) -> None:
    """Print progress message to stderr."""
    if verbose:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        print(f"[{timestamp}] {message}", file=sys.stderr)


def load_env_file(env_path: Optional[str] = None) -> bool:
    """
    Load TUMBLR_* settings from a .env file.

    Variables already present in the environment win over the file.

    Args:
        env_path: Path to the .env file (default: ./.env)

    Returns:
        True if a file was found and loaded
    """
    path = Path(env_path) if env_path else Path.cwd() / ".env"
    if not path.is_file():
        return False
    return load_dotenv(path, override=False)


def normalize_blog(name: str) -> str:
    """
    Return the full blog hostname for a blog name.

    Accepts ``name``, ``name.tumblr.com`` or a URL-ish ``https://name.tumblr.com/``.
    """
    name = name.strip().lower()
    for prefix in ("https://", "http://"):
        if name.startswith(prefix):
            name = name[len(prefix):]
    name = name.rstrip("/")
    if name.endswith(BLOG_SUFFIX):
        name = name[: -len(BLOG_SUFFIX)]
    if not name:
        raise ValueError("Blog name must not be empty")
    return f"{name}{BLOG_SUFFIX}"


def parse_cutoff_date(date_str: str) -> date:
    """
    Parse a cutoff date.

    Accepts:
    - YYYY-MM-DD
    - YYYYMMDD

    Raises:
        ValueError: If date string is invalid
    """
    for fmt in ("%Y-%m-%d", DAY_FORMAT):
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue

    raise ValueError(
        f"Invalid date format: {date_str}. Expected YYYY-MM-DD or YYYYMMDD."
    )


def message_datetime(ts_millis: int) -> datetime:
    """Convert a feed timestamp (milliseconds since epoch) to a UTC datetime."""
    return datetime.fromtimestamp(int(ts_millis) / 1000, tz=timezone.utc)


def check_transport() -> None:
    """
    Verify the interpreter can speak HTTPS.

    Raises:
        CapabilityMissingError: If the ssl module is unavailable
    """
    try:
        import ssl  # noqa: F401
    except ImportError as e:
        raise CapabilityMissingError(
            f"Python was built without SSL support ({e}). HTTPS is required."
        )


def create_cookie_file(directory: Optional[str] = None) -> str:
    """
    Create an empty cookie file readable only by the current user.

    Raises:
        SecureStorageError: If the file cannot be created or restricted
    """
    try:
        fd, path = tempfile.mkstemp(prefix="tumblr_cookie_", dir=directory)
        os.close(fd)
        os.chmod(path, 0o600)
    except OSError as e:
        raise SecureStorageError(f"Unable to create secure cookie file: {e}")
    return path


class TumblrSession:
    """
    Authenticated Tumblr web session.

    Holds the bearer token scraped from the login page and a cookie jar backed
    by a 0600 temp file. The file is removed by ``close()``; use the session as
    a context manager so that happens on every exit path.
    """

    def __init__(self, skip_ssl: bool = False, cookie_dir: Optional[str] = None):
        self.auth_token: Optional[str] = None
        self.cookie_file = create_cookie_file(cookie_dir)
        self.cookies = MozillaCookieJar(self.cookie_file)
        self.http = requests.Session()
        self.http.cookies = self.cookies
        self.http.verify = not skip_ssl

    def __enter__(self) -> "TumblrSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def is_authenticated(self) -> bool:
        return self.auth_token is not None

    def _auth_headers(self) -> Dict[str, str]:
        if self.auth_token:
            return {"Authorization": f"Bearer {self.auth_token}"}
        return {}

    def _persist(self) -> None:
        self.cookies.save(ignore_discard=True, ignore_expires=True)

    def get(self, url: str, params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None) -> requests.Response:
        response = self.http.get(
            url, params=params, headers=headers, timeout=REQUEST_TIMEOUT
        )
        self._persist()
        return response

    def post(self, url: str, data: Dict[str, Any]) -> requests.Response:
        response = self.http.post(
            url, data=data, headers=self._auth_headers(), timeout=REQUEST_TIMEOUT
        )
        self._persist()
        return response

    def close(self) -> None:
        """Close the connection pool and erase the cookie file."""
        self.http.close()
        self.cookies.clear()
        if os.path.exists(self.cookie_file):
            os.unlink(self.cookie_file)


def authenticate(
    session: TumblrSession,
    email: str,
    password: str,
    tfa_code: Optional[str] = None,
    prompt_tfa: Optional[Callable[[], str]] = None,
    max_attempts: int = MAX_LOGIN_ATTEMPTS,
    verbose: bool = True,
) -> TumblrSession:
    """
    Log in through Tumblr's web login flow.

    Args:
        session: Fresh session; its cookie jar receives the login cookies
        email: Account email
        password: Account password
        tfa_code: Two-factor code, if already known
        prompt_tfa: Called to obtain a two-factor code when the login
            endpoint asks for one
        max_attempts: Bound on password submissions
        verbose: Print progress messages

    Returns:
        The authenticated session

    Raises:
        ProtocolShapeError: If the login page no longer embeds API_TOKEN
        ProtocolResponseError: If the token endpoint does not answer JSON
        AuthRejectedError: If Tumblr rejects the login
        AuthExhaustedError: If max_attempts password submissions did not succeed
    """
    print_progress("Fetching auth token...", verbose)
    response = session.get(LOGIN_URL)
    match = API_TOKEN_PATTERN.search(response.text)
    if not match:
        raise ProtocolShapeError(
            "Failed to extract API_TOKEN. Tumblr layout may have changed."
        )
    session.auth_token = match.group(1)

    # Only sets the login mode server-side; the answer carries nothing we need.
    print_progress("Sending username...", verbose)
    session.post(LOGIN_MODE_URL, {"authentication": "oauth2_cookie", "email": email})

    attempts = 0
    while True:
        attempts += 1
        if attempts > max_attempts:
            raise AuthExhaustedError("Maximum login attempts exceeded.")

        print_progress("Sending password...", verbose)
        form = {"grant_type": "password", "username": email, "password": password}
        if tfa_code:
            form["tfa_token"] = tfa_code
        response = session.post(TOKEN_URL, form)

        try:
            data = response.json()
        except ValueError:
            raise ProtocolResponseError("Invalid JSON response during login.")
        if not isinstance(data, dict):
            raise ProtocolResponseError("Invalid JSON response during login.")

        if "error" in data:
            description = data.get("error_description") or ""
            if "tfa_token" in description.lower() and not tfa_code and prompt_tfa:
                tfa_code = prompt_tfa().strip()
                continue
            raise AuthRejectedError(f"Login failed. {description or data['error']}")

        print_progress("Login successful", verbose)
        return session


def _dig(data: Any, path: Tuple[str, ...]) -> Any:
    """Follow ``path`` through nested dicts, returning None on any miss."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


class TumblrClient:
    """Client for Tumblr's internal conversation feeds with pagination and retry logic."""

    def __init__(self, session: TumblrSession, verbose: bool = True):
        """
        Initialize the feed client.

        Args:
            session: Authenticated session
            verbose: Print progress messages
        """
        self.session = session
        self.base_url = TUMBLR_BASE_URL
        self.max_retries = MAX_PAGE_RETRIES
        self.verbose = verbose

    def _get_page(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Fetch one feed page, retrying while the body is not a JSON object.

        Transport errors and 5xx pages with HTML bodies are handled the same
        way since both surface as unparseable bodies.

        Returns:
            Parsed page, or None if every attempt failed
        """
        for attempt in range(self.max_retries):
            try:
                response = self.session.get(url, params=params, headers=XHR_HEADERS)
                page = response.json()
                if isinstance(page, dict):
                    return page
                reason = "response is not a JSON object"
            except (requests.RequestException, ValueError) as e:
                reason = str(e) or e.__class__.__name__

            print_progress(
                f"Bad page ({reason}). Retrying... "
                f"(attempt {attempt + 1}/{self.max_retries})",
                self.verbose,
            )

        print_progress(
            f"Giving up on {url} after {self.max_retries} attempts; "
            f"treating it as the end of the feed",
            self.verbose,
        )
        return None

    def fetch_all(
        self,
        url: str,
        on_page: Callable[[Dict[str, Any]], Optional[Traversal]],
        links_path: Tuple[str, ...] = ("response",),
        params: Optional[Dict[str, Any]] = None,
        rate_limit: Optional[float] = None,
    ) -> int:
        """
        Walk a cursor-linked feed page by page.

        Args:
            url: Initial URL
            on_page: Called with each parsed page; return Traversal.STOP to
                end the traversal early
            links_path: Keys leading to the object holding ``_links``
            params: Query parameters (only used for first request)
            rate_limit: Requests per minute; sleeps between pages when set

        Returns:
            Number of pages handed to on_page
        """
        current_url: Optional[str] = url
        current_params = params
        pages = 0

        while current_url:
            if pages and rate_limit:
                time.sleep(60.0 / rate_limit)

            page = self._get_page(current_url, current_params)
            if page is None:
                break

            pages += 1
            if on_page(page) == Traversal.STOP:
                break

            next_href = _dig(page, links_path + ("_links", "next", "href"))
            current_url = urljoin(self.base_url, next_href) if next_href else None
            current_params = None  # next href carries its own query string

        return pages


def cache_buster() -> str:
    return f"{int(time.time())}000"


def page_conversations(page: Dict[str, Any]) -> List[Dict[str, Any]]:
    conversations = _dig(page, ("response", "conversations"))
    if not isinstance(conversations, list):
        raise ProtocolShapeError(
            "Conversation feed page has no response.conversations list. "
            "Tumblr may have changed the feed format."
        )
    return conversations


def resolve_conversation(
    client: TumblrClient,
    blog: str,
    conversation_id: Optional[str] = None,
    partner: Optional[str] = None,
    choose: Optional[Callable[[str], str]] = None,
) -> Tuple[str, Dict[str, str]]:
    """
    Find the conversation to export and map participant uuids to blog names.

    Args:
        client: Feed client
        blog: Own blog hostname (name.tumblr.com)
        conversation_id: Explicit conversation id
        partner: Blog name of the other participant
        choose: Prompt function for the interactive menu (default: input)

    Returns:
        (conversation id, {participant uuid: blog name})

    Raises:
        ConversationNotFoundError: If the requested conversation does not
            exist or there is nothing to choose from
    """
    identities: Dict[str, str] = {}
    menu: Dict[str, List[str]] = {}
    menu_identities: Dict[str, Dict[str, str]] = {}
    found: Dict[str, str] = {}

    def remember(conversation: Dict[str, Any]) -> None:
        for participant in conversation.get("participants", []):
            identities[participant["uuid"]] = participant["name"]

    def on_page(page: Dict[str, Any]) -> Traversal:
        for conversation in page_conversations(page):
            for participant in conversation.get("participants", []):
                if participant["name"] + BLOG_SUFFIX == blog:
                    identities[participant["uuid"]] = participant["name"]

                if partner and not conversation_id:
                    if participant["name"] == partner:
                        found["id"] = conversation["id"]
                        remember(conversation)
                        return Traversal.STOP
                elif conversation_id:
                    if conversation["id"] == conversation_id:
                        found["id"] = conversation["id"]
                        remember(conversation)
                        return Traversal.STOP
                else:
                    menu.setdefault(conversation["id"], []).append(participant["name"])
                    menu_identities.setdefault(conversation["id"], {})[
                        participant["uuid"]
                    ] = participant["name"]
        return Traversal.CONTINUE

    print_progress("Retrieving conversations...", client.verbose)
    client.fetch_all(
        CONVERSATIONS_URL,
        on_page,
        params={"participant": blog, "_": cache_buster()},
    )

    if "id" in found:
        print_progress(f"Using conversation {found['id']}", client.verbose)
        return found["id"], identities

    if conversation_id or partner:
        target = conversation_id or f"with {partner}"
        raise ConversationNotFoundError(f"Conversation not found: {target}")
    if not menu:
        raise ConversationNotFoundError(f"No conversations found for {blog}")

    selected = select_conversation(menu, choose)
    identities.update(menu_identities[selected])
    return selected, identities


def format_menu(menu: Dict[str, List[str]]) -> List[str]:
    """Render the conversation menu, numbered from 1."""
    return [
        f"[{number}] {conversation_id}: {' <=> '.join(names)}"
        for number, (conversation_id, names) in enumerate(menu.items(), start=1)
    ]


def parse_choice(choice: str, count: int) -> int:
    """
    Validate a menu answer.

    Returns:
        0-based index of the chosen entry

    Raises:
        SelectionError: If the answer is not a number between 1 and count
    """
    choice = choice.strip()
    if not choice.isdigit() or not 1 <= int(choice) <= count:
        raise SelectionError(f"Choose a number between 1 and {count}")
    return int(choice) - 1


def select_conversation(
    menu: Dict[str, List[str]],
    choose: Optional[Callable[[str], str]] = None,
) -> str:
    """Print the menu and ask until a valid entry is chosen."""
    choose = choose or input
    conversation_ids = list(menu)

    print("\nConversations:")
    for line in format_menu(menu):
        print(line)

    while True:
        try:
            index = parse_choice(choose("Select conversation by number: "), len(conversation_ids))
        except SelectionError:
            continue
        break

    selected = conversation_ids[index]
    print(f"Selected conversation ID: {selected}\n")
    return selected


def _render_text(message: Dict[str, Any]) -> str:
    return message.get("message", "")


def _render_image(message: Dict[str, Any]) -> str:
    urls = [
        image.get("original_size", {}).get("url", "")
        for image in message.get("images", [])
    ]
    return " , ".join(urls)


def _render_postref(message: Dict[str, Any]) -> str:
    post_url = (message.get("post") or {}).get("post_url", "")
    return post_url or POST_UNAVAILABLE_NOTICE


MESSAGE_RENDERERS: Dict[MessageKind, Callable[[Dict[str, Any]], str]] = {
    MessageKind.TEXT: _render_text,
    MessageKind.IMAGE: _render_image,
    MessageKind.POSTREF: _render_postref,
}


def render_message(message: Dict[str, Any], identities: Dict[str, str]) -> Optional[str]:
    """
    Render one feed message as a transcript line.

    Args:
        message: Raw message from the messages feed
        identities: Participant uuid to blog name map

    Returns:
        "<dd/mm/YYYY, HH:MM:SS> <author>: <body>", or None for unknown kinds
    """
    renderer = MESSAGE_RENDERERS.get(MessageKind.of(message))
    if renderer is None:
        return None

    participant = message.get("participant", "")
    author = identities.get(participant, participant)
    stamp = message_datetime(message["ts"]).strftime(MESSAGE_TIME_FORMAT)
    return f"{stamp} {author}: {renderer(message)}"


def collect_messages(
    client: TumblrClient,
    conversation_id: str,
    blog: str,
    identities: Dict[str, str],
    date_cutoff: Optional[date] = None,
    only_day: bool = False,
    rate_limit: Optional[float] = None,
) -> Dict[int, str]:
    """
    Retrieve and render every message of a conversation.

    The feed is delivered newest first, so the first message older than
    date_cutoff ends the traversal.

    Args:
        client: Feed client
        conversation_id: Conversation to export
        blog: Own blog hostname
        identities: Participant uuid to blog name map
        date_cutoff: Oldest calendar day (UTC) to include
        only_day: Also skip messages newer than date_cutoff
        rate_limit: Page requests per minute

    Returns:
        {timestamp in ms: rendered line}; a repeated timestamp keeps the
        last message seen
    """
    messages: Dict[int, str] = {}

    def on_page(page: Dict[str, Any]) -> Traversal:
        data = _dig(page, ("response", "messages", "data"))
        if not isinstance(data, list):
            print_progress("Message page without data; stopping", client.verbose)
            return Traversal.STOP

        if data:
            first = message_datetime(data[0]["ts"]).strftime(MESSAGE_TIME_FORMAT)
            print_progress(f"Messages from {first}...", client.verbose)

        for message in data:
            ts = int(message["ts"])
            if date_cutoff is not None:
                day = message_datetime(ts).date()
                if day < date_cutoff:
                    return Traversal.STOP
                if only_day and day > date_cutoff:
                    continue

            line = render_message(message, identities)
            if line is None:
                print_progress(
                    f"UNKNOWN message type {message.get('type')!r} skipped: {message}",
                    client.verbose,
                )
                continue
            messages[ts] = line
        return Traversal.CONTINUE

    print_progress(f"Retrieving messages for conversation {conversation_id}...", client.verbose)
    client.fetch_all(
        MESSAGES_URL,
        on_page,
        links_path=("response", "messages"),
        params={
            "conversation_id": conversation_id,
            "participant": blog,
            "_": cache_buster(),
        },
        rate_limit=rate_limit,
    )
    print_progress(f"Retrieved {len(messages)} messages", client.verbose)
    return messages


def split_output_path(output_path: str, day: str) -> str:
    """Insert ``-<day>`` before the final extension of output_path."""
    stem, ext = os.path.splitext(output_path)
    return f"{stem}-{day}{ext}"


def _write_lines(path: str, lines: List[str]) -> None:
    try:
        output_file = Path(path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with open(output_file, 'w', encoding='utf-8') as f:
            f.writelines(line + "\n" for line in lines)
    except OSError as e:
        raise OutputWriteError(f"Could not write to {path}: {e}")


def emit_transcript(
    messages: Dict[int, str],
    output_path: Optional[str] = None,
    split: bool = False,
    stream: Optional[Any] = None,
    verbose: bool = True,
) -> List[str]:
    """
    Write the transcript in timestamp order.

    Args:
        messages: {timestamp in ms: rendered line}
        output_path: Output file path (None for stdout)
        split: Write one file per UTC day instead of a single file
        stream: Stream used when output_path is None (default: sys.stdout)
        verbose: Report the files written on stderr

    Returns:
        Paths of the files written

    Raises:
        OutputWriteError: If a file cannot be written
    """
    ordered = sorted(messages)

    if not output_path:
        if ordered:
            stream = stream or sys.stdout
            stream.write("\n".join(messages[ts] for ts in ordered) + "\n")
        return []

    if not split:
        _write_lines(output_path, [messages[ts] for ts in ordered])
        print_progress(f"Exported to {output_path}", verbose)
        return [output_path]

    days: Dict[str, List[str]] = {}
    for ts in ordered:
        day = message_datetime(ts).strftime(DAY_FORMAT)
        days.setdefault(day, []).append(messages[ts])

    written = []
    for day, lines in days.items():
        path = split_output_path(output_path, day)
        _write_lines(path, lines)
        written.append(path)
    print_progress(f"Exported {len(written)} daily files next to {output_path}", verbose)
    return written


@contextlib.contextmanager
def captured_stdout(path: str):
    """Capture everything printed to stdout and save it to path on exit."""
    buffer = io.StringIO()
    with contextlib.redirect_stdout(buffer):
        yield buffer
    try:
        Path(path).write_text(buffer.getvalue(), encoding="utf-8")
    except OSError as e:
        raise OutputWriteError(f"Could not write to {path}: {e}")
    print(f"Conversation output saved to {path}")


class ExportOptions(BaseModel):
    """Validated inputs for one export run."""

    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
    blog: str
    tfa_code: Optional[str] = None
    conversation_id: Optional[str] = None
    partner: Optional[str] = None
    date_cutoff: Optional[date] = None
    only_day: bool = False
    rate_limit: Optional[float] = Field(default=None, gt=0)
    output: Optional[str] = None
    split: bool = False
    save: bool = False
    skip_ssl: bool = False
    verbose: bool = True

    @field_validator("blog")
    @classmethod
    def normalize_blog_name(cls, value: str) -> str:
        return normalize_blog(value)

    @field_validator("date_cutoff", mode="before")
    @classmethod
    def parse_cutoff(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_cutoff_date(value) if value else None
        return value

    @field_validator("tfa_code", "conversation_id", "partner", "output", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def check_companions(self) -> "ExportOptions":
        if self.split and not self.output:
            raise ValueError("--split requires --output")
        if self.only_day and self.date_cutoff is None:
            raise ValueError("--only-day requires --date")
        if self.save and self.output:
            raise ValueError("--save cannot be combined with --output")
        return self


def _ask(prompt: str) -> str:
    print(prompt, end="", file=sys.stderr, flush=True)
    return input().strip()


def resolve_credentials(args: argparse.Namespace) -> Tuple[str, str, str]:
    """
    Return (email, password, blog) from flags, then environment/.env, then prompts.
    """
    load_env_file(args.env_file)

    blog = args.blog or os.environ.get("TUMBLR_BLOG") or _ask("Enter blog name (without .tumblr.com): ")
    email = args.username or os.environ.get("TUMBLR_EMAIL") or _ask("Enter email: ")
    password = args.password or os.environ.get("TUMBLR_PASSWORD") or getpass.getpass("Enter password: ")
    return email, password, blog


def add_login_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the flags shared by every command that logs in."""
    parser.add_argument("-u", "--username", help="Tumblr email (prompted if omitted)")
    parser.add_argument("-p", "--password", help="Password (prompted if omitted)")
    parser.add_argument("-b", "--blog", help="Blog name (without .tumblr.com)")
    parser.add_argument("-t", "--tfa", help="2FA code (prompted if omitted when required)")
    parser.add_argument(
        "-s", "--skip-ssl",
        action="store_true",
        help="Disable SSL verification (not recommended)"
    )
    parser.add_argument("--env-file", help="Path to .env file (default: ./.env)")


def gather_options(args: argparse.Namespace) -> ExportOptions:
    """
    Merge CLI flags, environment and interactive prompts into ExportOptions.

    Raises:
        ValidationError: If the merged values are invalid
    """
    email, password, blog = resolve_credentials(args)

    return ExportOptions(
        email=email,
        password=password,
        blog=blog,
        tfa_code=args.tfa,
        conversation_id=args.conversation,
        partner=args.partner,
        date_cutoff=args.date,
        only_day=args.only_day,
        rate_limit=args.rate,
        output=args.output,
        split=args.split,
        save=args.save,
        skip_ssl=args.skip_ssl,
        verbose=not args.quiet,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Export a Tumblr conversation as a text transcript",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fully interactive
  python tumblr_chat_export.py

  # Conversation with a given blog, written to one file per day
  python tumblr_chat_export.py -u me@example.com -b myblog \\
    --partner otherblog --output ./out/chat.txt --split

  # Everything since June 2025, two page requests per minute
  python tumblr_chat_export.py -b myblog -c 123456789 --date 2025-06-01 --rate 2

Credentials may also come from TUMBLR_EMAIL, TUMBLR_PASSWORD and TUMBLR_BLOG
in the environment or a .env file.
        """
    )

    add_login_arguments(parser)

    target = parser.add_mutually_exclusive_group()
    target.add_argument("-c", "--conversation", help="Conversation id (menu if omitted)")
    target.add_argument("-n", "--partner", help="Blog name of the other participant")

    parser.add_argument("-d", "--date", help="Oldest day to export (YYYY-MM-DD or YYYYMMDD)")
    parser.add_argument(
        "--only-day",
        action="store_true",
        help="Export only the day given by --date"
    )
    parser.add_argument("-r", "--rate", type=float, help="Maximum page requests per minute")
    parser.add_argument("-o", "--output", help="Output file path (default: stdout)")
    parser.add_argument(
        "--split",
        action="store_true",
        help="Write one file per day, named <output>-YYYYMMDD.<ext>"
    )
    parser.add_argument(
        "--save",
        action="store_true",
        help="Save the printed transcript to <conversation id>.txt without asking"
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Only print errors")
    return parser


def _wants_capture(options: ExportOptions) -> bool:
    if options.output:
        return False
    if options.save:
        return True
    if not sys.stdin.isatty():
        return False
    answer = _ask("Do you want to save the conversation to a file? (y/N): ")
    return answer.lower() in ("y", "yes")


def run_export(options: ExportOptions) -> int:
    """
    Log in, resolve the conversation, and write its transcript.

    Returns:
        Exit code
    """
    check_transport()
    if options.skip_ssl:
        print_progress("Warning: SSL verification disabled", options.verbose)

    with TumblrSession(skip_ssl=options.skip_ssl) as session:
        authenticate(
            session,
            options.email,
            options.password,
            tfa_code=options.tfa_code,
            prompt_tfa=lambda: _ask("Enter 2FA code: "),
            verbose=options.verbose,
        )

        client = TumblrClient(session, options.verbose)
        conversation_id, identities = resolve_conversation(
            client,
            options.blog,
            conversation_id=options.conversation_id,
            partner=options.partner,
        )

        capture = _wants_capture(options)

        messages = collect_messages(
            client,
            conversation_id,
            options.blog,
            identities,
            date_cutoff=options.date_cutoff,
            only_day=options.only_day,
            rate_limit=options.rate_limit,
        )

    if capture:
        with captured_stdout(f"{conversation_id}.txt"):
            emit_transcript(messages)
    else:
        emit_transcript(messages, options.output, options.split, verbose=options.verbose)

    print_progress(f"Successfully exported {len(messages)} messages", options.verbose)
    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code
    """
    args = build_parser().parse_args(argv)

    try:
        try:
            options = gather_options(args)
        except (ValidationError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_ERROR

        return run_export(options)

    except (AuthRejectedError, AuthExhaustedError) as e:
        print(f"Authentication error: {e}", file=sys.stderr)
        return EXIT_ERROR

    except requests.RequestException as e:
        print(f"Network error: {e}", file=sys.stderr)
        return EXIT_ERROR

    except TumblrExportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
