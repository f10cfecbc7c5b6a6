"""
Sync marker embedded in mirror event bodies.

The marker is the only state the engine keeps between runs: a trailing line
``Synced UID: <tag> <uid>`` in the event's plain-text body.  Exchange keeps the
body verbatim (X-properties and categories do not survive every client), so a
mirror event can always be traced back to its source by re-reading it.
"""

import re

from icloud_exchange_sync.models import SyncMeta

MARKER_TOKEN = "Synced UID:"

# Tolerates leading/trailing whitespace and any run of blanks between tokens.
_MARKER_RE = re.compile(r"^[ \t]*Synced UID:[ \t]*(\S+)[ \t]+(\S+)[ \t]*$", re.MULTILINE)
# Any line carrying the marker token, well-formed or not.
_MARKER_LINE_RE = re.compile(r"^[ \t]*Synced UID:.*$\n?", re.MULTILINE)


def decode_meta(body: str | None) -> SyncMeta:
    """Extract (tag, uid) from a body; an absent or malformed marker is unclaimed."""
    if not body or not isinstance(body, str):
        return SyncMeta()
    # Graph bodies come back with CRLF line endings.
    matches = _MARKER_RE.findall(body.replace("\r\n", "\n").replace("\r", "\n"))
    if not matches:
        return SyncMeta()
    tag, uid = matches[-1]
    return SyncMeta(source_tag=tag, origin_uid=uid)


def strip_meta(body: str | None) -> str:
    """Return the body with every marker line removed."""
    if not body:
        return ""
    text = body.replace("\r\n", "\n").replace("\r", "\n")
    return _MARKER_LINE_RE.sub("", text).rstrip()


def encode_meta(source_tag: str, uid: str, body: str | None = "") -> str:
    """Append the marker for (source_tag, uid) to body, replacing any previous one."""
    text = strip_meta(body)
    marker = f"{MARKER_TOKEN} {source_tag} {uid}"
    if text:
        return f"{text}\n\n{marker}"
    return marker
