class PageMirrorError(Exception):
    pass


class ConfigError(PageMirrorError):
    pass


class SourceError(PageMirrorError):
    """The page itself could not be obtained."""


class DiscoveryError(PageMirrorError):
    """A snapshot fragment could not be interpreted; the node is skipped."""


class FetchError(PageMirrorError):
    """Per-asset fetch failure. Never aborts a run."""

    TIMEOUT = "timeout"
    HTTP_STATUS = "http-status"
    NETWORK = "network"
    REDIRECT_LIMIT = "redirect-limit"
    TOO_LARGE = "too-large"

    def __init__(self, url: str, reason: str, detail: str = ""):
        self.url = url
        self.reason = reason
        self.detail = detail
        msg = f"{reason}: {url}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class RewriteError(PageMirrorError):
    """A reference with no catalog record was found while rewriting."""


class EmitError(PageMirrorError):
    pass


class RunCancelled(PageMirrorError):
    pass
