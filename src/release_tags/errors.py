"""Error taxonomy — every failure carries the tag, commit and invariant involved."""


class TagError(Exception):
    """Base for all release-tags failures."""

    kind = "error"

    def __init__(
        self,
        message: str,
        tag: str | None = None,
        commit: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.tag = tag
        self.commit = commit
        self.detail = detail

    def to_dict(self) -> dict:
        data = {"kind": self.kind, "message": self.message}
        for key in ("tag", "commit", "detail"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class ParseError(TagError):
    """Malformed version string, tag name or environment name."""

    kind = "parse_error"


class AlreadyExists(TagError):
    """Version or state tag name is taken."""

    kind = "already_exists"


class NotFound(TagError):
    """Referenced tag or commit is absent."""

    kind = "not_found"


class InvalidReferent(TagError):
    """A tag would point at something its invariants forbid."""

    kind = "invalid_referent"


class ImmutableTag(TagError):
    """Attempt to move a version or state tag."""

    kind = "immutable_tag"


class Conflict(TagError):
    """The tag store changed between read and atomic update."""

    kind = "conflict"


class LockTimeout(TagError):
    """Local advisory lock not acquired in time."""

    kind = "lock_timeout"


class NoCurrentVersion(TagError):
    kind = "no_current_version"


class NoRollbackTarget(TagError):
    kind = "no_rollback_target"


class InvalidTransition(TagError):
    """Deployment lifecycle step not allowed from its current status."""

    kind = "invalid_transition"


class Cancelled(TagError):
    kind = "cancelled"


class TagStoreError(TagError):
    """git failed for a reason other than a lost race."""

    kind = "tag_store_error"


class ConfigError(TagError):
    kind = "config_error"
