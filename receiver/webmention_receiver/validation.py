from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence
from urllib.parse import parse_qs, urlsplit

from webmention_receiver.models import Notification, Submission

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_ALLOWED_TARGET_SCHEMES = {"http", "https"}


@dataclass(frozen=True)
class ValidationRule:
    key: str
    is_violated: Callable[[Submission, Sequence[str]], bool]


def parse_notification(body: str) -> Notification | None:
    """Decode a form body into a notification, or None if a field is missing."""
    payload = parse_qs(body, keep_blank_values=True)
    source = (payload.get("source") or [""])[0]
    target = (payload.get("target") or [""])[0]
    if not source or not target:
        return None
    return Notification(source=source, target=target)


def media_type(content_type: str | None) -> str | None:
    if content_type is None:
        return None
    return content_type.split(";", 1)[0].strip().lower()


def is_absolute_url(value: str) -> bool:
    try:
        parts = urlsplit(value)
        # Accessing port validates it.
        parts.port
    except ValueError:
        return False

    scheme = parts.scheme
    if not scheme or not scheme[0].isalpha():
        return False
    if any(ch.isspace() for ch in value):
        return False
    if scheme in _ALLOWED_TARGET_SCHEMES:
        return bool(parts.hostname)
    return bool(parts.netloc or parts.path)


def _target_outside_allow_list(submission: Submission, allowed_targets: Sequence[str]) -> bool:
    if not allowed_targets:
        return False
    target = submission.notification.target
    return not any(target.startswith(prefix) for prefix in allowed_targets)


def _target_scheme_not_http(submission: Submission, _allowed_targets: Sequence[str]) -> bool:
    target = submission.notification.target
    return not (target.startswith("https://") or target.startswith("http://"))


# Order matters: later rules assume earlier ones passed.
BAD_REQUEST_RULES: tuple[ValidationRule, ...] = (
    ValidationRule("method_not_post", lambda s, _a: s.method.upper() != "POST"),
    ValidationRule("missing_content_type", lambda s, _a: s.content_type is None),
    ValidationRule(
        "content_type_not_form",
        lambda s, _a: media_type(s.content_type) != FORM_CONTENT_TYPE,
    ),
    ValidationRule("missing_source_or_target", lambda s, _a: s.notification is None),
    ValidationRule(
        "source_equals_target",
        lambda s, _a: s.notification.source == s.notification.target,
    ),
    ValidationRule("source_not_url", lambda s, _a: not is_absolute_url(s.notification.source)),
    ValidationRule("target_not_url", lambda s, _a: not is_absolute_url(s.notification.target)),
    ValidationRule("target_not_allowed", _target_outside_allow_list),
    ValidationRule("target_not_http", _target_scheme_not_http),
)


def first_violation(submission: Submission, allowed_targets: Sequence[str] = ()) -> int | None:
    for index, rule in enumerate(BAD_REQUEST_RULES):
        if rule.is_violated(submission, allowed_targets):
            return index
    return None


def is_valid(submission: Submission, allowed_targets: Sequence[str] = ()) -> bool:
    return first_violation(submission, allowed_targets) is None
