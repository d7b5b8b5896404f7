import argparse
import logging
import signal
import sys
from typing import List, Optional
from urllib.parse import urlparse

from .analysis import openai_completion
from .errors import ConfigError, EmitError, PageMirrorError, RunCancelled
from .fetch import apply_auth_to_session, build_session
from .orchestrator import Orchestrator
from .settings import Settings, flatten_config, load_config_file
from .sources import get_page_source

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_EMIT = 2
EXIT_CANCELLED = 130


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Mirror a single rendered page into an offline-runnable bundle.",
        add_help=True,
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    p.add_argument("url", help="http(s) URL of the page")
    p.add_argument("output_folder", help="output directory")
    p.add_argument(
        "--html", type=str, default=None, help="use this saved HTML file instead of fetching the page"
    )
    p.add_argument("--timeout", type=float, default=15.0, help="per-asset timeout seconds")
    p.add_argument("--workers", type=int, default=8, help="concurrent downloads")
    p.add_argument("--max-bytes", type=int, default=50_000_000, help="max bytes per file")
    p.add_argument("--max-redirects", type=int, default=5, help="redirect hops per asset")
    p.add_argument(
        "--css-passes", type=int, default=2, help="levels of stylesheet-referenced assets to follow"
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")

    # output
    p.add_argument(
        "--clean", action="store_true", help="strip tracking scripts, attributes and <noscript>"
    )
    p.add_argument(
        "--utility-css", type=str, default=None, help="CSS file prepended to styles.css"
    )

    # render
    p.add_argument(
        "--render-js", action="store_true", help="render with Playwright if installed"
    )
    p.add_argument(
        "--render-timeout-ms", type=int, default=10000, help="Playwright timeout ms"
    )
    p.add_argument(
        "--wait-until", type=str, default="networkidle", help="Playwright wait_until"
    )
    p.add_argument(
        "--no-scroll", action="store_true", help="do not scroll the page to trigger lazy loading"
    )

    # ai
    p.add_argument("--ai", action="store_true", help="ask a language model to review the page")
    p.add_argument("--ai-model", type=str, default="gpt-4o-mini", help="OpenAI model name")
    p.add_argument("--ai-timeout", type=float, default=30.0, help="AI analysis timeout seconds")

    # auth / session
    p.add_argument(
        "--cookies",
        type=str,
        default=None,
        help="cookies.txt (Netscape/Mozilla format)",
    )
    p.add_argument(
        "--header",
        action="append",
        default=[],
        help="extra request header 'Name: value'",
    )
    p.add_argument("--auth-basic", type=str, default=None, help="basic auth user:pass")
    p.add_argument("--auth-bearer", type=str, default=None, help="bearer token")

    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        parser.set_defaults(**flatten_config(load_config_file(preliminary.config)))
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        timeout=args.timeout,
        workers=max(1, args.workers),
        max_bytes=max(1024, args.max_bytes),
        max_redirects=max(0, args.max_redirects),
        css_passes=max(0, args.css_passes),
        clean=args.clean,
        utility_css=args.utility_css,
        render_js=args.render_js,
        render_timeout_ms=args.render_timeout_ms,
        wait_until=args.wait_until,
        scroll=not args.no_scroll,
        ai=args.ai,
        ai_model=args.ai_model,
        ai_timeout=max(1.0, args.ai_timeout),
        cookies_file=args.cookies,
        extra_headers=args.header or [],
        auth_basic=args.auth_basic,
        auth_bearer=args.auth_bearer,
    )


def run(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_args(argv)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return EXIT_ERROR
    if urlparse(args.url).scheme not in {"http", "https"}:
        print("Invalid URL. Use http:// or https://", file=sys.stderr)
        return EXIT_ERROR

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    settings = settings_from_args(args)

    session = build_session(pool_size=max(10, settings.workers))
    apply_auth_to_session(session, settings)
    completion = openai_completion(settings.ai_model) if settings.ai else None
    orchestrator = Orchestrator(settings, completion=completion)

    def _on_sigint(signum, frame):
        logging.warning("cancelling; no output will be written")
        orchestrator.cancel()

    previous = signal.signal(signal.SIGINT, _on_sigint)

    print("Reminder: only clone content you own or have permission to copy.")
    try:
        with get_page_source(args.url, settings, session, html_file=args.html) as source:
            report = orchestrator.run(source, args.output_folder)
    except RunCancelled:
        print("Cancelled", file=sys.stderr)
        return EXIT_CANCELLED
    except EmitError as e:
        print(f"Critical error: {e}", file=sys.stderr)
        return EXIT_EMIT
    except PageMirrorError as e:
        print(f"Critical error: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        signal.signal(signal.SIGINT, previous)

    print("Mirroring complete")
    for line in report.summary_lines():
        print(line)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> None:
    sys.exit(run(argv))


if __name__ == "__main__":
    main()
